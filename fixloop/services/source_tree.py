"""
Source Tree
===========
The on-disk tree being repaired, and the only component that writes to it.

Patch semantics (SourcePatch = file, line?, find, replace):
    - An occurrence of ``find`` that sits inside an occurrence of ``replace``
      does not count (``.name`` inside ``?.name`` is already guarded).
    - With a line: ``find`` is replaced once on that line. If the line
      already holds ``replace`` and no bare ``find``, applying is a no-op.
      Otherwise the nearest line within ±LOCALITY_WINDOW with a bare
      ``find`` is patched.
    - Without a line: the first bare occurrence in the file is replaced,
      or the apply is a no-op when only ``replace`` remains.
    - If ``find`` cannot be located, PatchApplyError.

Rollback reverses the delta at the line and column it was applied to. At
most one applied patch is active per ErrorRecord: applying a second
candidate for the same record first rolls back the previous one.

Writes are serialized under an asyncio.Lock and performed off the event
loop. ``scratch_copy()`` gives validators a private disposable copy.
"""
import asyncio
import logging
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, List, NamedTuple, Optional, Tuple

from fixloop.core.exceptions import PatchApplyError
from fixloop.models.fix_candidate import AppliedPatch, FixCandidate, SourcePatch

logger = logging.getLogger(__name__)

LOCALITY_WINDOW = 5
_COPY_IGNORE = shutil.ignore_patterns(".git", "__pycache__", "logs")


class PatchSite(NamedTuple):
    offset: int
    line: int
    column: int
    changed: bool


def _nearby(line: int, count: int) -> List[int]:
    """0-based indices: ``line`` first, then outward within the window."""
    base = line - 1
    order = [base]
    for offset in range(1, LOCALITY_WINDOW + 1):
        order.extend([base - offset, base + offset])
    return [i for i in order if 0 <= i < count]


def _spans(segment: str, needle: str) -> List[Tuple[int, int]]:
    spans = []
    start = segment.find(needle) if needle else -1
    while start != -1:
        spans.append((start, start + len(needle)))
        start = segment.find(needle, start + 1)
    return spans


def _bare_find(segment: str, patch: SourcePatch) -> int:
    """Offset of the first ``find`` not covered by a ``replace``, or -1."""
    covered = _spans(segment, patch.replace)
    for start, end in _spans(segment, patch.find):
        if not any(a <= start and end <= b for a, b in covered):
            return start
    return -1


def locate_patch(text: str, patch: SourcePatch) -> PatchSite:
    """Where ``patch`` applies in ``text``, or PatchApplyError."""
    if patch.line:
        lines = text.splitlines(keepends=True)
        starts = [0]
        for line in lines:
            starts.append(starts[-1] + len(line))
        base = patch.line - 1
        if 0 <= base < len(lines):
            column = _bare_find(lines[base], patch)
            if column >= 0:
                return PatchSite(starts[base] + column, base + 1, column, True)
            column = lines[base].find(patch.replace) if patch.replace else -1
            if column >= 0:
                return PatchSite(starts[base] + column, base + 1, column, False)
        for index in _nearby(patch.line, len(lines)):
            column = _bare_find(lines[index], patch)
            if column >= 0:
                return PatchSite(starts[index] + column, index + 1, column, True)
        raise PatchApplyError(
            f"{patch.find!r} not found within {LOCALITY_WINDOW} lines of {patch.file}:{patch.line}"
        )

    at = _bare_find(text, patch)
    changed = at >= 0
    if not changed:
        at = text.find(patch.replace) if patch.replace else -1
        if at < 0:
            raise PatchApplyError(f"{patch.find!r} not found in {patch.file}")
    line_start = text.rfind("\n", 0, at) + 1
    return PatchSite(at, text.count("\n", 0, at) + 1, at - line_start, changed)


def apply_patch_text(text: str, patch: SourcePatch) -> Tuple[str, Optional[int], bool]:
    """
    Apply ``patch`` to ``text``.

    Returns (new_text, 1-based applied line, changed).
    """
    site = locate_patch(text, patch)
    if not site.changed:
        return text, site.line, False
    return _splice(text, patch, site), site.line, True


def _splice(text: str, patch: SourcePatch, site: PatchSite) -> str:
    return text[:site.offset] + patch.replace + text[site.offset + len(patch.find):]


def revert_patch_text(
    text: str, patch: SourcePatch, applied_line: Optional[int], column: Optional[int] = None
) -> str:
    """Reverse delta of ``apply_patch_text`` on the line it was applied to."""
    if applied_line:
        lines = text.splitlines(keepends=True)
        index = applied_line - 1
        if index < len(lines) and patch.replace in lines[index]:
            line = lines[index]
            if column is None or not line.startswith(patch.replace, column):
                column = line.index(patch.replace)
            lines[index] = line[:column] + patch.find + line[column + len(patch.replace):]
            return "".join(lines)
        raise PatchApplyError(f"Cannot roll back {patch.file}:{applied_line}: replacement not present")
    if patch.replace not in text:
        raise PatchApplyError(f"Cannot roll back {patch.file}: replacement not present")
    return text.replace(patch.replace, patch.find, 1)


class SourceTree:
    def __init__(self, root) -> None:
        self.root = Path(root).resolve()
        self.active: Dict[str, AppliedPatch] = {}
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------
    # File access
    # -------------------------------------------------------------------
    def path_for(self, relative: str) -> Path:
        target = (self.root / relative).resolve()
        if not target.is_relative_to(self.root):
            raise PatchApplyError(f"Refusing to touch path outside tree: {relative}")
        return target

    def read(self, relative: str) -> Optional[str]:
        try:
            with open(self.path_for(relative), encoding="utf-8", newline="") as f:
                return f.read()
        except (OSError, UnicodeDecodeError, PatchApplyError):
            return None

    def _write(self, relative: str, content: str) -> None:
        with open(self.path_for(relative), "w", encoding="utf-8", newline="") as f:
            f.write(content)

    # -------------------------------------------------------------------
    # Apply / rollback
    # -------------------------------------------------------------------
    async def apply(self, candidate: FixCandidate) -> AppliedPatch:
        async with self._lock:
            return await asyncio.to_thread(self.apply_sync, candidate)

    async def rollback(self, error_id: str) -> Optional[AppliedPatch]:
        async with self._lock:
            return await asyncio.to_thread(self.rollback_sync, error_id)

    def apply_sync(self, candidate: FixCandidate) -> AppliedPatch:
        previous = self.active.get(candidate.target_error_id)
        if previous is not None:
            logger.info("Superseding %s for error %s", previous.candidate_id, candidate.target_error_id)
            self.rollback_sync(candidate.target_error_id)
        try:
            applied = self._apply_patch(candidate)
        except PatchApplyError:
            if previous is not None:
                self._reapply(previous)
            raise
        self.active[candidate.target_error_id] = applied
        return applied

    def rollback_sync(self, error_id: str) -> Optional[AppliedPatch]:
        applied = self.active.pop(error_id, None)
        if applied is None:
            return None
        if applied.changed:
            text = self.read(applied.patch.file)
            if text is None:
                raise PatchApplyError(f"Cannot read {applied.patch.file} for rollback")
            self._write(applied.patch.file, revert_patch_text(
                text, applied.patch, applied.applied_line, applied.applied_column,
            ))
        logger.info("Rolled back %s (%s)", applied.candidate_id, applied.patch.describe())
        return applied

    def _apply_patch(self, candidate: FixCandidate) -> AppliedPatch:
        patch = candidate.patch
        text = self.read(patch.file)
        if text is None:
            raise PatchApplyError(f"Cannot read {patch.file}")
        site = locate_patch(text, patch)
        if site.changed:
            self._write(patch.file, _splice(text, patch, site))
        logger.info(
            "%s %s at %s:%s",
            "Applied" if site.changed else "Already present:", candidate.id, patch.file, site.line,
        )
        return AppliedPatch(
            candidate_id=candidate.id,
            error_id=candidate.target_error_id,
            patch=patch,
            applied_line=site.line,
            applied_column=site.column,
            confidence=candidate.confidence,
            description=candidate.description,
            changed=site.changed,
        )

    def _reapply(self, applied: AppliedPatch) -> None:
        text = self.read(applied.patch.file) or ""
        if applied.changed:
            restored = applied.patch.model_copy(update={"line": applied.applied_line})
            new_text, _, _ = apply_patch_text(text, restored)
            self._write(applied.patch.file, new_text)
        self.active[applied.error_id] = applied

    # -------------------------------------------------------------------
    # Scratch copies
    # -------------------------------------------------------------------
    @asynccontextmanager
    async def scratch_copy(self) -> AsyncIterator["SourceTree"]:
        """Private copy of the current tree, deleted on exit whatever happens."""
        tmp = await asyncio.to_thread(tempfile.mkdtemp, prefix="fixloop-scratch-")
        try:
            target = Path(tmp) / self.root.name
            async with self._lock:
                await asyncio.to_thread(shutil.copytree, self.root, target, ignore=_COPY_IGNORE)
            yield SourceTree(target)
        finally:
            await asyncio.to_thread(shutil.rmtree, tmp, True)
