"""Scenarios — declarative chaos tests, their loader and the runner."""

from .loader import find_scenario, load_scenario, load_scenarios_from_dir
from .models import OnError, Scenario, Step, StepKind
from .runner import Runner, RunnerState, StepOutcome

__all__ = [
    "OnError", "Scenario", "Step", "StepKind",
    "find_scenario", "load_scenario", "load_scenarios_from_dir",
    "Runner", "RunnerState", "StepOutcome",
]
