from __future__ import annotations

from .loader import Scenario, parse_scenario, parse_scenario_file, parse_url
from .validator import ScenarioValidator, ValidationError

__all__ = [
    "Scenario",
    "parse_scenario",
    "parse_scenario_file",
    "parse_url",
    "ScenarioValidator",
    "ValidationError",
]
