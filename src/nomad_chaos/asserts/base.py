"""Assertion contract — read-only validation of cluster state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from nomad_chaos.args import Args
    from nomad_chaos.context import RunContext
    from nomad_chaos.driver.base import AssertContext


@dataclass
class AssertionResult:
    """Outcome of one assertion check."""

    assertion: str
    success: bool = False
    message: str = ""
    duration: float = 0.0  # seconds
    attempts: int = 0
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "assertion": self.assertion,
            "success": self.success,
            "message": self.message,
            "duration": round(self.duration, 3),
            "attempts": self.attempts,
            "details": self.details,
        }


class Assertion(ABC):
    """A validation check. Never mutates the cluster; safe to call repeatedly."""

    name: str = ""
    description: str = ""

    @abstractmethod
    def check(self, ctx: RunContext, actx: AssertContext, args: Args) -> AssertionResult:
        """Validate the expected behaviour.

        A failed expectation is reported through ``success=False``; exceptions
        are reserved for bad arguments and context cancellation.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
