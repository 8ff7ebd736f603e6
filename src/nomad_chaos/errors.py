"""Error taxonomy shared by the engine, capabilities and drivers."""

from __future__ import annotations

from typing import Any


class ChaosError(Exception):
    """Base class for every error raised by nomad-chaos."""


class InvalidArgumentError(ChaosError):
    """A step or capability argument is missing or malformed. Never retried."""


class NotFoundError(ChaosError):
    """An unknown action, assertion or node name was referenced. Never retried."""


class AlreadyRegisteredError(ChaosError):
    """A capability name collides with an existing registry entry."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} '{name}' already registered")


class RemoteFailureError(ChaosError):
    """A remote command failed or returned a meaningful non-zero status."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = "") -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class StepTimeoutError(ChaosError):
    """A context deadline elapsed inside a capability, a wait or a step."""


class RunCancelledError(ChaosError):
    """The parent run context was cancelled. Never retried."""


class AssertionFailedError(ChaosError):
    """An assertion ran to completion but reported ``success=False``."""

    def __init__(self, result: Any) -> None:
        self.result = result
        super().__init__(result.message or f"assertion {result.assertion} failed")


class PartialRollbackError(ChaosError):
    """A rollback could only partly reverse an action."""

    def __init__(self, action: str, failures: list[str]) -> None:
        self.action = action
        self.failures = failures
        super().__init__(f"rollback of {action} incomplete: {'; '.join(failures)}")


class ScenarioValidationError(ChaosError):
    """A scenario file could not be read, parsed or validated."""


class ConfigError(ChaosError):
    """The tool configuration could not be read, parsed or validated."""


NON_RETRYABLE = (InvalidArgumentError, NotFoundError, RunCancelledError)
