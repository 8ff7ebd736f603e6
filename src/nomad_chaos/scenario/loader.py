"""YAML loader for chaos scenarios."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from nomad_chaos.errors import NotFoundError, ScenarioValidationError
from nomad_chaos.scenario.models import Scenario

SCENARIO_SUFFIXES = (".yaml", ".yml")


def load_scenario(path: str | Path) -> Scenario:
    """Load and validate a scenario from a YAML file.

    YAML format:
        name: leader-failover
        description: Kill the leader and expect a new one
        timeout: 5m
        steps:
          - name: baseline
            assert: nomad-api-healthy
          - name: kill
            action: kill-leader
            args:
              signal: KILL
          - name: settle
            wait: 5s
          - name: new leader
            assert: leader-elected
            args:
              within: 30s
            retries: 3
            on_error: fail
        cleanup:
          - name: final health
            assert: nomad-api-healthy
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data: Any = yaml.safe_load(f)
    except OSError as e:
        raise ScenarioValidationError(f"reading scenario file: {e}") from e
    except yaml.YAMLError as e:
        raise ScenarioValidationError(f"parsing scenario file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ScenarioValidationError(f"scenario file {path} must contain a mapping")
    try:
        return Scenario.model_validate(data)
    except ValidationError as e:
        raise ScenarioValidationError(f"validating scenario {path}: {e}") from e


def load_scenarios_from_dir(directory: str | Path) -> list[Scenario]:
    """Load every ``*.yaml`` / ``*.yml`` scenario below *directory*."""
    directory = Path(directory)
    paths = sorted(p for p in directory.rglob("*") if p.is_file() and p.suffix in SCENARIO_SUFFIXES)
    return [load_scenario(p) for p in paths]


def find_scenario(name: str, search_paths: list[str | Path]) -> Path:
    """Resolve a scenario name or path.

    *name* may be an existing file, or a name (with or without extension,
    possibly nested like ``raft/leader-failover``) looked up in each search
    path in order.
    """
    direct = Path(name)
    if direct.is_file():
        return direct

    candidates = [name]
    if not Path(name).suffix:
        candidates += [name + suffix for suffix in SCENARIO_SUFFIXES]

    for base in search_paths:
        for candidate in candidates:
            path = Path(base) / candidate
            if path.is_file():
                return path

    raise NotFoundError(f"scenario '{name}' not found in {[str(p) for p in search_paths]}")
