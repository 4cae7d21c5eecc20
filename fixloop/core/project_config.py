"""
Project Configuration
=====================
Reads the optional ``fixloop.yml`` at the root of the source tree.

Example:

    settings:
      max_iterations: 3
      entry_point: game.html
    noise_patterns:
      - "Failed to load resource: .*analytics"
    required_selectors:
      - "#game-view"
    expectations:
      - name: begin-enabled
        selector: "#begin"
        state: enabled
        source: js/creation.js
    scenarios:
      - name: character-creation
        steps:
          - {action: fill, selector: "#name", value: "Lin"}
        checks: [begin-enabled]
    signatures:
      - id: missing-guard
        kinds: [Runtime]
        pattern: "(?P<fn>\\w+) is not a function"
        rewrites:
          - {find: "{fn}(", replace: "{fn}?.(", confidence: 65}

A missing file gives the defaults. A malformed file raises ValueError.
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ValidationError

from fixloop.browser.scenario import Scenario, default_scenarios
from fixloop.core.config import LoopSettings
from fixloop.generation.signatures import FixSignature, signature_from_config
from fixloop.health.builtin_checks import ElementExpectation

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "fixloop.yml"


class ProjectConfig(BaseModel):
    settings: Dict[str, Any] = {}
    noise_patterns: List[str] = []
    required_selectors: List[str] = []
    expectations: List[ElementExpectation] = []
    scenarios: List[Scenario] = []
    signatures: List[Dict[str, Any]] = []

    def loop_settings(self, base: Optional[LoopSettings] = None) -> LoopSettings:
        """``base`` overlaid with the file's ``settings`` block."""
        base = base or LoopSettings()
        if not self.settings:
            return base
        return LoopSettings.model_validate({**base.model_dump(), **self.settings})

    def scenario_list(self) -> List[Scenario]:
        return self.scenarios or default_scenarios()

    def fix_signatures(self) -> List[FixSignature]:
        return [signature_from_config(entry) for entry in self.signatures]


def load_project_config(root) -> ProjectConfig:
    path = Path(root) / CONFIG_FILENAME
    if not path.is_file():
        return ProjectConfig()

    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")

    try:
        config = ProjectConfig.model_validate(raw)
        config.fix_signatures()
    except (ValidationError, ValueError) as exc:
        raise ValueError(f"Invalid {CONFIG_FILENAME}: {exc}") from exc

    logger.info(
        "Loaded %s: %d scenario(s), %d extra signature(s), %d noise pattern(s)",
        path, len(config.scenarios), len(config.signatures), len(config.noise_patterns),
    )
    return config
