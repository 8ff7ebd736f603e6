"""Run report — append-only event timeline with rolling counters."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(Enum):
    """Category of a timeline event."""

    START = "start"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"
    CLEANUP = "cleanup"
    INFO = "info"


# start/info events annotate the timeline; they are not step outcomes.
_COUNTED = {EventType.SUCCESS, EventType.FAILURE, EventType.ERROR, EventType.CLEANUP}


@dataclass(frozen=True)
class Event:
    """A single entry of the scenario timeline."""

    type: EventType
    step: str
    message: str
    duration: float = 0.0  # seconds
    details: dict[str, Any] = field(default_factory=dict, hash=False)
    time: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "time": self.time,
            "type": self.type.value,
            "step": self.step,
            "message": self.message,
        }
        if self.duration:
            d["duration"] = round(self.duration, 3)
        if self.details:
            d["details"] = self.details
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        return cls(
            type=EventType(data["type"]),
            step=data.get("step", ""),
            message=data.get("message", ""),
            duration=float(data.get("duration", 0.0)),
            details=dict(data.get("details") or {}),
            time=float(data.get("time", 0.0)),
        )


@dataclass
class Stats:
    """Summary counters kept in step with the event list."""

    total_steps: int = 0
    success_steps: int = 0
    failed_steps: int = 0
    cleanup_steps: int = 0

    def record(self, event_type: EventType) -> None:
        if event_type not in _COUNTED:
            return
        self.total_steps += 1
        if event_type is EventType.SUCCESS:
            self.success_steps += 1
        elif event_type in (EventType.FAILURE, EventType.ERROR):
            self.failed_steps += 1
        elif event_type is EventType.CLEANUP:
            self.cleanup_steps += 1

    def to_dict(self) -> dict[str, int]:
        return {
            "total_steps": self.total_steps,
            "success_steps": self.success_steps,
            "failed_steps": self.failed_steps,
            "cleanup_steps": self.cleanup_steps,
        }


class Report:
    """Complete record of one scenario run.

    ``success`` distinguishes an absorbed failure (``True`` with failure
    events on the timeline) from a failed scenario (``False`` with
    ``error`` set).
    """

    def __init__(self, scenario: str, description: str = "") -> None:
        self.scenario = scenario
        self.description = description
        self.start_time: float = time.time()
        self.end_time: float | None = None
        self.success: bool = False
        self.error: BaseException | None = None
        self._error_message: str = ""
        self._events: list[Event] = []
        self.stats = Stats()

    @property
    def events(self) -> tuple[Event, ...]:
        return tuple(self._events)

    @property
    def error_message(self) -> str:
        if self.error is not None:
            return str(self.error)
        return self._error_message

    @property
    def duration(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return end - self.start_time

    @property
    def finished(self) -> bool:
        return self.end_time is not None

    def add_event(self, event: Event) -> Event:
        """Append *event* and update the counters."""
        self._events.append(event)
        self.stats.record(event.type)
        return event

    def fail(self, error: BaseException) -> None:
        self.success = False
        self.error = error

    def finish(self) -> None:
        """Stamp the end time. Later calls keep the first stamp."""
        if self.end_time is None:
            self.end_time = time.time()

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "scenario": self.scenario,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": round(self.duration, 3),
            "success": self.success,
            "events": [e.to_dict() for e in self._events],
            "stats": self.stats.to_dict(),
        }
        if self.description:
            d["description"] = self.description
        if self.error_message:
            d["error"] = self.error_message
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Report:
        """Rebuild a report saved with :meth:`to_dict`."""
        report = cls(data.get("scenario", ""), data.get("description", ""))
        report.start_time = float(data.get("start_time") or 0.0)
        end_time = data.get("end_time")
        report.end_time = float(end_time) if end_time is not None else None
        report.success = bool(data.get("success", False))
        report._error_message = data.get("error", "")
        for raw in data.get("events", []):
            report.add_event(Event.from_dict(raw))
        return report

    def __repr__(self) -> str:
        return (
            f"Report(scenario={self.scenario!r}, success={self.success}, "
            f"events={len(self._events)})"
        )
