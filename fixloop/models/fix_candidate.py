"""
Fix Candidate Model
===================
A proposed, unapplied source delta addressing exactly one ErrorRecord.

Fields:
    id               — deterministic hash of target + signature + patch
    target_error_id  — ErrorRecord.id this candidate tries to resolve
    signature_id     — catalog signature that produced it
    confidence       — fixed integer 0–100 attached by the signature
    description      — human-readable delta description
    patch            — SourcePatch (opaque to generator and controller)
    target_location  — file + optional line the patch addresses

Candidates are frozen: never mutated after creation and consumed exactly
once by the FixValidator.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .error_record import SourceLocation


class SourcePatch(BaseModel):
    """
    Addressable, reversible text delta.

    ``find`` is replaced by ``replace`` once, on ``line`` when given
    (or the nearest line within the locality window), otherwise at the
    first occurrence in ``file``.
    """
    model_config = ConfigDict(frozen=True)

    file: str
    line: Optional[int] = None
    find: str
    replace: str

    def describe(self) -> str:
        where = f"{self.file}:{self.line}" if self.line else self.file
        return f"{where}: {self.find!r} {chr(0x2192)} {self.replace!r}"


class FixCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    target_error_id: str
    signature_id: str
    confidence: int = Field(ge=0, le=100)
    description: str
    patch: SourcePatch
    target_location: SourceLocation


class AppliedPatch(BaseModel):
    """An Applied candidate, attributed to exactly one ErrorRecord."""
    candidate_id: str
    error_id: str
    patch: SourcePatch
    applied_line: Optional[int] = None
    applied_column: Optional[int] = None
    confidence: int = 0
    description: str = ""
    # False when the tree already contained the replacement (no-op apply)
    changed: bool = True
