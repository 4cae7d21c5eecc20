"""
Project Config Tests
====================
fixloop.yml loading, validation and settings precedence.
"""
import pytest

from fixloop.core.config import LoopSettings
from fixloop.core.project_config import load_project_config

YAML = """
settings:
  max_iterations: 3
  entry_point: game.html
noise_patterns:
  - "analytics"
required_selectors:
  - "#game-view"
expectations:
  - name: begin-enabled
    selector: "#begin"
    source: js/creation.js
scenarios:
  - name: character-creation
    steps:
      - {action: fill, selector: "#name", value: "Lin"}
      - {action: click, selector: "#begin"}
    checks: [begin-enabled]
signatures:
  - id: missing-guard
    pattern: "(?P<fn>\\\\w+) is not a function"
    rewrites:
      - {find: "{fn}(", replace: "{fn}?.(", confidence: 65}
"""


def test_missing_file_gives_defaults(tmp_path):
    config = load_project_config(tmp_path)
    assert config.scenario_list()[0].name == "page-load"
    assert config.fix_signatures() == []
    assert config.loop_settings(LoopSettings(max_iterations=9)).max_iterations == 9


def test_full_file_is_loaded(tmp_path):
    (tmp_path / "fixloop.yml").write_text(YAML, encoding="utf-8")

    config = load_project_config(tmp_path)

    settings = config.loop_settings(LoopSettings(max_iterations=9, worker_limit=4))
    assert settings.max_iterations == 3
    assert settings.entry_point == "game.html"
    assert settings.worker_limit == 4

    assert config.noise_patterns == ["analytics"]
    assert config.expectations[0].state == "enabled"
    scenario = config.scenario_list()[0]
    assert scenario.name == "character-creation"
    assert [s.action.value for s in scenario.steps] == ["fill", "click"]
    assert scenario.checks == ["begin-enabled"]
    assert config.fix_signatures()[0].rewrites[0].confidence == 65


@pytest.mark.parametrize("content", [
    "settings: [1, 2\n",
    "- just\n- a list\n",
    "scenarios:\n  - name: x\n    steps:\n      - {action: teleport}\n",
    "signatures:\n  - id: broken\n    pattern: x\n",
])
def test_malformed_file_raises_value_error(tmp_path, content):
    (tmp_path / "fixloop.yml").write_text(content, encoding="utf-8")
    with pytest.raises(ValueError):
        load_project_config(tmp_path)
