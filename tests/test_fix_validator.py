"""
Fix Validator Tests
===================
Stage ordering, short-circuiting, Inconclusive handling and isolation of
the live tree, driven through the fake browser.
"""
import asyncio

import pytest

from fixloop.detection.diagnoser import Diagnoser
from fixloop.detection.error_detector import ErrorDetector
from fixloop.generation.fix_generator import FixGenerator
from fixloop.health.builtin_checks import default_registry
from fixloop.models.fix_candidate import FixCandidate, SourcePatch
from fixloop.models.validation_verdict import STAGE_ORDER, ValidationStage, VerdictOutcome
from fixloop.services.source_tree import SourceTree
from fixloop.validation.fix_validator import FixValidator, ValidationContext

from fake_browser import FakeProvider, fast_settings, write_tree

NAME_ERROR = "TypeError: Cannot read properties of undefined (reading 'name')"
INDEX = "<html><body><script src='js/app.js'></script></body></html>"


def _app(extra_markers=""):
    return (
        f'const name = state.player.name; // @fake pageerror when="player.name" msg="{NAME_ERROR}"'
        f"{extra_markers}\n"
        "render(); // @fake syntax when=\"render(!\"\n"
    )


def _setup(tmp_path, app_js):
    root = write_tree(tmp_path / "site", {"index.html": INDEX, "js/app.js": app_js})
    settings = fast_settings()
    diagnoser = Diagnoser(
        ErrorDetector(window=0.01, quiet_grace=0.01, max_extension=0.05),
        default_registry(),
        settings=settings,
    )
    tree = SourceTree(root)
    validator = FixValidator(tree, FakeProvider(), diagnoser, settings)
    return tree, diagnoser, validator


def _validate(tree, diagnoser, validator, make_candidate=None):
    """Diagnose the live tree, build the candidate, validate it."""
    async def run_test():
        async with FakeProvider().open(tree.root) as session:
            baseline = await diagnoser.diagnose(session, 1)
        record = baseline.records[0]
        if make_candidate is None:
            candidate = FixGenerator().generate(record)[0]
        else:
            candidate = make_candidate(record)
        context = ValidationContext(
            record=record,
            known_error_ids=frozenset(baseline.diagnosis.error_ids),
            baseline=baseline.diagnosis.report,
            baseline_ready_ms=baseline.diagnosis.page_ready_ms,
            iteration=1,
        )
        return await validator.validate(candidate, context)

    return asyncio.run(run_test())


def _manual(find, replace, line=1):
    def make(record):
        patch = SourcePatch(file="js/app.js", line=line, find=find, replace=replace)
        return FixCandidate(
            id=f"manual-{replace}", target_error_id=record.id, signature_id="manual",
            confidence=75, description="manual patch", patch=patch,
            target_location=record.location,
        )
    return make


def test_guard_fix_passes_every_stage(tmp_path):
    tree, diagnoser, validator = _setup(tmp_path, _app())
    original = tree.read("js/app.js")

    verdict = _validate(tree, diagnoser, validator)

    assert verdict.outcome == VerdictOutcome.PASS
    assert [s.stage for s in verdict.stages] == STAGE_ORDER
    assert verdict.failed_stage is None
    # validation never touches the live tree
    assert tree.read("js/app.js") == original
    assert tree.active == {}


def test_patch_that_does_not_fix_fails_functional_replay(tmp_path):
    tree, diagnoser, validator = _setup(tmp_path, _app())

    verdict = _validate(tree, diagnoser, validator, _manual("const name", "let name"))

    assert verdict.outcome == VerdictOutcome.FAIL
    assert verdict.failed_stage == ValidationStage.FUNCTIONAL_REPLAY
    assert [s.stage for s in verdict.stages] == [ValidationStage.SYNTAX_CHECK,
                                                  ValidationStage.FUNCTIONAL_REPLAY]


def test_unappliable_patch_fails_syntax_check(tmp_path):
    tree, diagnoser, validator = _setup(tmp_path, _app())

    verdict = _validate(tree, diagnoser, validator, _manual("nowhere", "x"))

    assert verdict.failed_stage == ValidationStage.SYNTAX_CHECK
    assert "not found" in verdict.notes


def test_unparsable_patch_fails_syntax_check(tmp_path):
    tree, diagnoser, validator = _setup(tmp_path, _app())

    verdict = _validate(tree, diagnoser, validator, _manual("render()", "render(!!)", line=2))

    assert verdict.failed_stage == ValidationStage.SYNTAX_CHECK
    assert "does not parse" in verdict.notes
    assert len(verdict.stages) == 1


def test_fix_that_blanks_the_page_fails_regression(tmp_path):
    tree, diagnoser, validator = _setup(tmp_path, _app(' @fake blank when="player?."'))

    verdict = _validate(tree, diagnoser, validator)

    assert verdict.failed_stage == ValidationStage.REGRESSION_SUBSET
    assert "document-content" in verdict.notes


def test_fix_that_slows_the_page_fails_performance(tmp_path):
    tree, diagnoser, validator = _setup(tmp_path, _app(' @fake slow when="player?."'))

    verdict = _validate(tree, diagnoser, validator)

    assert verdict.failed_stage == ValidationStage.PERFORMANCE_DELTA
    assert "Slower page-ready" in verdict.notes


def test_fix_that_surfaces_new_error_fails_side_effect_scan(tmp_path):
    tree, diagnoser, validator = _setup(
        tmp_path, _app(' @fake console when="player?." msg="Error: Save slot corrupted"'),
    )

    verdict = _validate(tree, diagnoser, validator)

    assert verdict.failed_stage == ValidationStage.SIDE_EFFECT_SCAN
    assert verdict.stages[-1].outcome == VerdictOutcome.FAIL


def test_timeout_during_replay_is_inconclusive(tmp_path):
    tree, diagnoser, validator = _setup(tmp_path, _app(' @fake hang when="player?."'))

    verdict = _validate(tree, diagnoser, validator)

    assert verdict.outcome == VerdictOutcome.INCONCLUSIVE
    assert not verdict.passed
    assert "timed out" in verdict.notes


def test_driver_failure_during_replay_is_inconclusive(tmp_path):
    tree, diagnoser, validator = _setup(tmp_path, _app(' @fake crash when="player?."'))

    verdict = _validate(tree, diagnoser, validator)

    assert verdict.outcome == VerdictOutcome.INCONCLUSIVE
    assert "could not be driven" in verdict.notes
    assert "player.name" in tree.read("js/app.js")


def test_launch_failure_is_inconclusive(tmp_path):
    tree, diagnoser, _ = _setup(tmp_path, _app())
    validator = FixValidator(tree, FakeProvider(fail_launch=True), diagnoser, fast_settings())

    verdict = _validate(tree, diagnoser, validator)

    assert verdict.outcome == VerdictOutcome.INCONCLUSIVE
    assert "Chromium failed to launch" in verdict.notes


def test_candidate_is_validated_at_most_once(tmp_path):
    tree, diagnoser, validator = _setup(tmp_path, _app())

    async def run_test():
        async with FakeProvider().open(tree.root) as session:
            baseline = await diagnoser.diagnose(session, 1)
        record = baseline.records[0]
        candidate = FixGenerator().generate(record)[0]
        context = ValidationContext(record=record, known_error_ids=frozenset(baseline.diagnosis.error_ids))
        await validator.validate(candidate, context)
        with pytest.raises(ValueError):
            await validator.validate(candidate, context)

    asyncio.run(run_test())


def test_es_module_skips_parse_check(tmp_path):
    app = "import { boot } from './boot.js';\n" + _app()
    tree, diagnoser, validator = _setup(tmp_path, app)

    verdict = _validate(tree, diagnoser, validator)

    assert verdict.passed
