"""Scenario models — declarative chaos tests as validated pydantic models."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from nomad_chaos.args import Args, coerce_duration
from nomad_chaos.errors import InvalidArgumentError


def _duration(value: Any) -> Any:
    if value is None:
        return None
    try:
        return coerce_duration(value)
    except InvalidArgumentError as e:
        raise ValueError(str(e)) from e


# Seconds; accepts "15s" / "1m30s" strings or plain numbers.
Duration = Annotated[float, BeforeValidator(_duration)]


class OnError(str, Enum):
    """What the runner does when a step exhausts its retries."""

    FAIL = "fail"  # stop, mark the run failed (default)
    CONTINUE = "continue"  # record the failure and move on
    CLEANUP = "cleanup"  # stop and go straight to teardown


class StepKind(str, Enum):
    ACTION = "action"
    ASSERT = "assert"
    WAIT = "wait"


class Step(BaseModel):
    """One executable unit: exactly one of action, assert or wait."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    name: str = ""
    action: Optional[str] = None
    assertion: Optional[str] = Field(default=None, alias="assert")
    wait: Optional[Duration] = None
    args: dict[str, Any] = Field(default_factory=dict)
    on_error: OnError = OnError.FAIL
    retries: int = Field(default=1, ge=1)
    timeout: Optional[Duration] = None

    @model_validator(mode="after")
    def _check_kind(self) -> Step:
        chosen = [k for k in ("action", "assertion", "wait") if getattr(self, k) not in (None, "")]
        if not chosen:
            raise ValueError("step must have action, assert, or wait")
        if len(chosen) > 1:
            raise ValueError(f"step must have exactly one of action, assert, or wait (got {', '.join(chosen)})")
        if self.wait is not None and self.wait < 0:
            raise ValueError(f"wait must not be negative, got {self.wait}s")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}s")
        try:
            Args(self.args)
        except InvalidArgumentError as e:
            raise ValueError(str(e)) from e
        return self

    @property
    def kind(self) -> StepKind:
        if self.action:
            return StepKind.ACTION
        if self.assertion:
            return StepKind.ASSERT
        return StepKind.WAIT

    @property
    def target(self) -> str:
        """The capability name, or the wait duration for wait steps."""
        if self.kind is StepKind.ACTION:
            return self.action or ""
        if self.kind is StepKind.ASSERT:
            return self.assertion or ""
        return f"{self.wait}s"

    @property
    def label(self) -> str:
        return self.name or f"{self.kind.value}:{self.target}"

    def typed_args(self) -> Args:
        return Args(self.args)


class Scenario(BaseModel):
    """A chaos test: ordered steps plus explicit cleanup steps."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, description="Scenario name")
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    timeout: Optional[Duration] = Field(default=None, description="Overall timeout in seconds")
    steps: list[Step] = Field(..., min_length=1)
    cleanup: list[Step] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_timeouts(self) -> Scenario:
        if not self.name.strip():
            raise ValueError("scenario name is required")
        if self.timeout is None:
            return self
        if self.timeout <= 0:
            raise ValueError(f"scenario timeout must be positive, got {self.timeout}s")
        for section, steps in (("step", self.steps), ("cleanup step", self.cleanup)):
            for i, step in enumerate(steps, start=1):
                if step.timeout is not None and step.timeout > self.timeout:
                    raise ValueError(
                        f"{section} {i} ({step.label}): timeout {step.timeout}s exceeds "
                        f"scenario timeout {self.timeout}s"
                    )
        return self
