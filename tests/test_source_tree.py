"""
Source Tree Tests
=================
Patch application, locality, rollback, supersession, scratch copies and
serialization of concurrent commits.
"""
import asyncio
from pathlib import Path

import pytest

from fixloop.core.exceptions import PatchApplyError
from fixloop.models.error_record import SourceLocation
from fixloop.models.fix_candidate import FixCandidate, SourcePatch
from fixloop.services.source_tree import SourceTree, apply_patch_text, locate_patch, revert_patch_text

from fake_browser import write_tree


def _candidate(find, replace, line=None, file="js/app.js", error_id="err1", cid="cand1", confidence=80):
    return FixCandidate(
        id=cid,
        target_error_id=error_id,
        signature_id="test",
        confidence=confidence,
        description="test patch",
        patch=SourcePatch(file=file, line=line, find=find, replace=replace),
        target_location=SourceLocation(file=file, line=line),
    )


APP = "const a = 1;\nconst hp = state.player.hp;\nrender(hp);\n"


# ===================================================================
# Pure text deltas
# ===================================================================
def test_apply_on_exact_line():
    text, line, changed = apply_patch_text(APP, SourcePatch(file="f", line=2, find=".hp", replace="?.hp"))
    assert changed and line == 2
    assert "state.player?.hp" in text


def test_apply_within_locality_window():
    patch = SourcePatch(file="f", line=5, find=".hp", replace="?.hp")
    text, line, changed = apply_patch_text(APP, patch)
    assert line == 2 and changed


def test_apply_outside_window_fails():
    source = "x.hp;\n" + "\n" * 20
    with pytest.raises(PatchApplyError):
        apply_patch_text(source, SourcePatch(file="f", line=15, find=".hp", replace="?.hp"))


def test_apply_without_line_uses_first_occurrence():
    source = "a.on('change', f);\nb.on('change', g);\n"
    text, line, changed = apply_patch_text(source, SourcePatch(file="f", find="'change'", replace="'input'"))
    assert text == "a.on('input', f);\nb.on('change', g);\n"
    assert line == 1


def test_already_applied_is_noop():
    source = "const hp = state.player?.hp;\n"
    text, line, changed = apply_patch_text(source, SourcePatch(file="f", line=1, find=".hp", replace="?.hp"))
    assert text == source
    assert not changed


def test_revert_restores_original():
    patch = SourcePatch(file="f", line=2, find=".hp", replace="?.hp")
    patched, line, _ = apply_patch_text(APP, patch)
    assert revert_patch_text(patched, patch, line) == APP


def test_replacement_on_neighbouring_line_does_not_mask_target():
    source = "const a = user?.name;\nconst b = 1;\nconst c = other.name;\n"
    text, line, changed = apply_patch_text(source, SourcePatch(file="f", line=3, find=".name", replace="?.name"))
    assert changed and line == 3
    assert text == "const a = user?.name;\nconst b = 1;\nconst c = other?.name;\n"


def test_guarded_occurrence_is_skipped_on_same_line():
    source = "show(user?.name, other.name);\n"
    text, line, changed = apply_patch_text(source, SourcePatch(file="f", line=1, find=".name", replace="?.name"))
    assert changed
    assert text == "show(user?.name, other?.name);\n"


def test_replacement_inside_unrelated_text_is_not_a_noop():
    source = "const hp = state.player.hp;\nrender(); // syntax\n"
    with pytest.raises(PatchApplyError):
        apply_patch_text(source, SourcePatch(file="f", line=1, find="nowhere", replace="x"))


def test_without_line_skips_guarded_occurrence():
    source = "a = user?.name;\nb = other.name;\n"
    text, line, changed = apply_patch_text(source, SourcePatch(file="f", find=".name", replace="?.name"))
    assert changed and line == 2
    assert text == "a = user?.name;\nb = other?.name;\n"


def test_revert_uses_applied_column():
    patch = SourcePatch(file="f", line=1, find=".name", replace="?.name")
    source = "show(user?.name, other.name);\n"
    site = locate_patch(source, patch)
    patched, line, _ = apply_patch_text(source, patch)
    assert revert_patch_text(patched, patch, line, site.column) == source


# ===================================================================
# SourceTree
# ===================================================================
@pytest.fixture
def tree(tmp_path: Path) -> SourceTree:
    write_tree(tmp_path / "site", {"js/app.js": APP, "index.html": "<script src='js/app.js'></script>"})
    return SourceTree(tmp_path / "site")


def test_apply_and_rollback(tree):
    async def run_test():
        applied = await tree.apply(_candidate(".hp", "?.hp", line=2))
        assert applied.applied_line == 2
        assert tree.active["err1"].candidate_id == "cand1"
        assert "player?.hp" in tree.read("js/app.js")

        rolled = await tree.rollback("err1")
        assert rolled.candidate_id == "cand1"
        assert tree.read("js/app.js") == APP
        assert tree.active == {}
        assert await tree.rollback("err1") is None

    asyncio.run(run_test())


def test_missing_find_raises_and_leaves_file(tree):
    with pytest.raises(PatchApplyError):
        asyncio.run(tree.apply(_candidate("nowhere", "x", line=2)))
    assert tree.read("js/app.js") == APP
    assert tree.active == {}


def test_superseding_fix_rolls_back_previous(tree):
    async def run_test():
        await tree.apply(_candidate(".hp", "?.hp", line=2, cid="first"))
        await tree.apply(_candidate("render(hp)", "render(hp ?? 0)", line=3, cid="second"))

    asyncio.run(run_test())
    text = tree.read("js/app.js")
    assert "player.hp" in text and "player?.hp" not in text
    assert "render(hp ?? 0)" in text
    assert tree.active["err1"].candidate_id == "second"


def test_failed_supersede_keeps_previous(tree):
    async def run_test():
        await tree.apply(_candidate(".hp", "?.hp", line=2, cid="first"))
        with pytest.raises(PatchApplyError):
            await tree.apply(_candidate("nowhere", "x", line=2, cid="second"))

    asyncio.run(run_test())
    assert "player?.hp" in tree.read("js/app.js")
    assert tree.active["err1"].candidate_id == "first"


def test_path_outside_tree_rejected(tree):
    with pytest.raises(PatchApplyError):
        asyncio.run(tree.apply(_candidate("a", "b", file="../outside.js")))


def test_scratch_copy_is_private_and_discarded(tree):
    async def run_test():
        async with tree.scratch_copy() as scratch:
            assert scratch.root != tree.root
            scratch.apply_sync(_candidate(".hp", "?.hp", line=2))
            assert "player?.hp" in scratch.read("js/app.js")
            return scratch.root

    scratch_root = asyncio.run(run_test())
    assert tree.read("js/app.js") == APP
    assert not scratch_root.exists()


def test_concurrent_commits_to_one_file_are_serialized(tmp_path: Path):
    count = 12
    source = "".join(f"slot{i} = old;\n" for i in range(1, count + 1))
    write_tree(tmp_path, {"js/slots.js": source})
    tree = SourceTree(tmp_path)

    async def run_test():
        await asyncio.gather(*[
            tree.apply(_candidate("old", f"new{i}", line=i, file="js/slots.js",
                                  error_id=f"err{i}", cid=f"cand{i}"))
            for i in range(1, count + 1)
        ])

    asyncio.run(run_test())
    lines = tree.read("js/slots.js").splitlines()
    assert lines == [f"slot{i} = new{i};" for i in range(1, count + 1)]
    assert len(tree.active) == count
