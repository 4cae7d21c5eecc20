"""
Error Ledger
============
Cross-iteration memory of every ErrorRecord the loop has observed.

Merging a diagnosis:
    - a known id gets ``occurrence_count += 1`` and its last-seen
      iteration / diagnostics refreshed (counts never decrease)
    - an unknown id is inserted as-is
    - a previously resolved id that resurfaces is reopened with its
      history intact

Records leave the open set only through ``resolve()`` (a verified fix
made them disappear).
"""
import logging
from typing import Dict, Iterable, List, Optional

from fixloop.models.error_record import ErrorRecord

logger = logging.getLogger(__name__)


class ErrorLedger:
    def __init__(self) -> None:
        self._open: Dict[str, ErrorRecord] = {}
        self._resolved: Dict[str, ErrorRecord] = {}

    def merge(self, window: Iterable[ErrorRecord]) -> List[ErrorRecord]:
        """Fold one diagnosis into the ledger; return the merged records in window order."""
        merged: List[ErrorRecord] = []
        for record in window:
            known = self._open.get(record.id) or self._resolved.pop(record.id, None)
            if known is None:
                current = record.model_copy()
            else:
                current = known.model_copy(update={
                    "last_seen_iteration": max(known.last_seen_iteration, record.last_seen_iteration),
                    "occurrence_count": known.occurrence_count + 1,
                    "last_diagnostics": record.last_diagnostics or known.last_diagnostics,
                })
                if record.id not in self._open:
                    logger.warning("Resolved error %s resurfaced: %s", record.id, record.message)
            self._open[record.id] = current
            merged.append(current)
        return merged

    def resolve(self, error_id: str) -> Optional[ErrorRecord]:
        record = self._open.pop(error_id, None)
        if record is not None:
            self._resolved[error_id] = record
        return record

    def get(self, error_id: str) -> Optional[ErrorRecord]:
        return self._open.get(error_id) or self._resolved.get(error_id)

    @property
    def open_records(self) -> List[ErrorRecord]:
        return list(self._open.values())

    @property
    def resolved_records(self) -> List[ErrorRecord]:
        return list(self._resolved.values())

    def __len__(self) -> int:
        return len(self._open)

    def __contains__(self, error_id: str) -> bool:
        return error_id in self._open
