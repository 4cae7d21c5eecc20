"""
CLI Tests
=========
Argument parsing, override mapping and exit codes of ``fixloop run``.
"""
import json
from unittest.mock import AsyncMock, patch

import pytest

from fixloop import cli
from fixloop.models.loop_report import FinalStatus, LoopReport


@pytest.fixture(autouse=True)
def _no_log_files():
    with patch("fixloop.cli.setup_logging"):
        yield


@pytest.mark.parametrize("status, code", [
    (FinalStatus.CONVERGED, 0),
    (FinalStatus.EXHAUSTED, 1),
    (FinalStatus.LAUNCH_FAILED, 2),
])
def test_exit_code_follows_final_status(tmp_path, status, code, capsys):
    report = LoopReport(final_status=status, summary="done")
    output = tmp_path / "out.json"

    with patch("fixloop.cli.run_loop", new=AsyncMock(return_value=report)):
        assert cli.main(["run", str(tmp_path), "--output", str(output)]) == code

    assert json.loads(output.read_text())["exit_code"] == code
    assert "fixloop:" in capsys.readouterr().out


def test_flags_become_overrides(tmp_path):
    report = LoopReport(final_status=FinalStatus.CONVERGED)

    with patch("fixloop.cli.run_loop", new=AsyncMock(return_value=report)) as mocked:
        cli.main(["run", str(tmp_path), "--entry-point", "game.html", "--max-iterations", "3",
                  "--workers", "2", "--headed", "--output", str(tmp_path / "r.json")])

    source_dir, overrides = mocked.call_args.args
    assert source_dir == str(tmp_path)
    assert overrides == {"entry_point": "game.html", "max_iterations": 3,
                         "worker_limit": 2, "headless": False}


def test_unset_flags_leave_settings_alone(tmp_path):
    report = LoopReport(final_status=FinalStatus.CONVERGED)

    with patch("fixloop.cli.run_loop", new=AsyncMock(return_value=report)) as mocked:
        cli.main(["run", str(tmp_path), "--output", str(tmp_path / "r.json")])

    overrides = mocked.call_args.args[1]
    assert all(value is None for value in overrides.values())


def test_bad_project_file_exits_2(tmp_path):
    with patch("fixloop.cli.run_loop", new=AsyncMock(side_effect=ValueError("Invalid fixloop.yml"))):
        assert cli.main(["run", str(tmp_path)]) == 2


def test_run_requires_source_dir():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["run"])
