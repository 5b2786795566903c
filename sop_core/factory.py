"""
SOP Core Factory
================
Builds PolicyChecker instances from scenario files or dicts.
This module handles the heavy lifting (Loading & Validation)
so the checker itself only deals with typed model objects.
"""

import os
from dataclasses import replace
from typing import Any, Dict, Mapping, Optional, Union
from pathlib import Path

from .checker import PolicyChecker
from .scenario.loader import Scenario, parse_scenario, parse_scenario_file
from .scenario.validator import ScenarioValidator


def load_scenario(scenario_path: Union[str, Path]) -> Scenario:
    """
    Loads and validates a .json scenario from disk.

    Raises:
        FileNotFoundError: If the scenario file does not exist.
        ValidationError: If the scenario is structurally or semantically invalid.
    """
    path_obj = Path(scenario_path).expanduser().resolve()

    if not path_obj.exists():
        raise FileNotFoundError(
            f"Scenario file not found at: '{path_obj}'\n"
            f"   (Current working directory: '{os.getcwd()}')"
        )

    scenario = parse_scenario_file(str(path_obj))
    ScenarioValidator().validate(scenario)
    return scenario


def checker_for(
    scenario: Scenario,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    debug: bool = False,
) -> PolicyChecker:
    """
    Constructs a checker for an already validated scenario.
    `overrides` replaces ExplorerConfig fields (e.g. from CLI flags); None values are ignored.
    """
    config = scenario.config
    if overrides:
        config = replace(config, **{k: v for k, v in overrides.items() if v is not None})
        # re-run predicate / enforce checks against the overridden config
        ScenarioValidator().validate(replace(scenario, config=config))

    return PolicyChecker(
        scenario.pools,
        config,
        fixed_facts=scenario.fixed_facts,
        seed=scenario.seed,
        name=scenario.name,
        debug=debug,
    )


def load_checker(
    scenario_path: Union[str, Path],
    overrides: Optional[Mapping[str, Any]] = None,
) -> PolicyChecker:
    """Factory Method: scenario file -> validated, ready-to-use PolicyChecker."""
    return checker_for(load_scenario(scenario_path), overrides)


def create_checker_from_dict(
    data: Dict[str, Any],
    overrides: Optional[Mapping[str, Any]] = None,
) -> PolicyChecker:
    """
    Factory Method: Creates a checker directly from an in-memory scenario.
    Useful for unit testing and REPL usage.
    """
    scenario = parse_scenario(data)
    ScenarioValidator().validate(scenario)
    return checker_for(scenario, overrides)
