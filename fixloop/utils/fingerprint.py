"""
Fingerprint Utility
===================
Deterministic identities for error records and fix candidates.

Rules:
    - SHA-256 truncated to 16 hex chars for compactness.
    - Deterministic: the same inputs always produce the same id.
    - Error id hashes the *normalized* message plus location only, so the
      same failure seen in two windows merges into one record.
    - Candidate id hashes target + signature + patch content, so an
      identical proposal in a later iteration is recognised as consumed.
"""
import hashlib
from typing import Optional

from fixloop.models.error_record import SourceLocation
from fixloop.models.fix_candidate import SourcePatch


def _digest(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def compute_error_id(message: str, location: Optional[SourceLocation] = None) -> str:
    """
    Generate the record id for a normalized message.

    Parameters
    ----------
    message : str
        Normalized message (volatile substrings already removed).
    location : SourceLocation, optional
        Tree-relative file + line when known.

    Returns
    -------
    str
        16-character hex id.
    """
    where = str(location) if location else ""
    return _digest(f"{message}\x00{where}")


def compute_patch_hash(patch: SourcePatch) -> str:
    """Hash of the patch content only."""
    return _digest(f"{patch.file}\x00{patch.line}\x00{patch.find}\x00{patch.replace}")


def compute_candidate_id(target_error_id: str, signature_id: str, patch: SourcePatch) -> str:
    combined = f"{target_error_id}:{signature_id}:{compute_patch_hash(patch)}"
    return _digest(combined)
