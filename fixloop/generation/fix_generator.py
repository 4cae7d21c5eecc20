"""
Fix Generator
=============
ErrorRecord → ranked FixCandidates, highest confidence first.

Rules:
    - Only catalog signatures produce candidates.
    - A record without a file location gets no candidate (nothing to patch).
    - When a source reader is supplied, rewrites whose ``find`` text does
      not occur in the target file are dropped before ranking.
    - Candidate ids are deterministic, so re-proposing the same patch in a
      later iteration yields the same id.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from fixloop.generation.signatures import BUILTIN_SIGNATURES, FixSignature, render
from fixloop.models.error_record import ErrorRecord
from fixloop.models.fix_candidate import FixCandidate, SourcePatch
from fixloop.models.health_report import HealthReport
from fixloop.utils.fingerprint import compute_candidate_id

logger = logging.getLogger(__name__)


@dataclass
class GenerationContext:
    report: Optional[HealthReport] = None
    # tree-relative path -> file text (None when unreadable)
    read_source: Optional[Callable[[str], Optional[str]]] = None


class FixGenerator:
    def __init__(self, extra_signatures: Iterable[FixSignature] = ()) -> None:
        self.signatures: List[FixSignature] = [*BUILTIN_SIGNATURES, *extra_signatures]

    def generate(self, record: ErrorRecord,
                 context: Optional[GenerationContext] = None) -> List[FixCandidate]:
        if record.location is None or not record.location.file:
            logger.debug("No location for %s; no candidates", record.id)
            return []

        source = None
        if context is not None and context.read_source is not None:
            source = context.read_source(record.location.file)

        candidates: dict[str, FixCandidate] = {}
        for signature in self.signatures:
            groups = signature.match(record)
            if groups is None:
                continue
            for rewrite in signature.rewrites:
                patch = SourcePatch(
                    file=record.location.file,
                    line=record.location.line,
                    find=render(rewrite.find, groups),
                    replace=render(rewrite.replace, groups),
                )
                if source is not None and patch.find not in source and patch.replace not in source:
                    continue
                candidate_id = compute_candidate_id(record.id, signature.id, patch)
                candidates.setdefault(candidate_id, FixCandidate(
                    id=candidate_id,
                    target_error_id=record.id,
                    signature_id=signature.id,
                    confidence=rewrite.confidence,
                    description=render(rewrite.description, groups),
                    patch=patch,
                    target_location=record.location,
                ))

        ranked = sorted(candidates.values(), key=lambda c: -c.confidence)
        if ranked:
            logger.info(
                "Generated %d candidate(s) for %s [%s]",
                len(ranked), record.id, ", ".join(sorted({c.signature_id for c in ranked})),
            )
        else:
            logger.info("No signature matched %s: %s", record.id, record.message[:120])
        return ranked
