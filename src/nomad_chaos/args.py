"""Typed capability arguments.

Step arguments arrive either from YAML (native values) or from ``key=value``
command-line pairs (strings). Both are normalised into :class:`ArgValue`
variants so capabilities read them through explicit, typed accessors that
raise :class:`InvalidArgumentError` on a mismatch.

Strings are parsed best-effort in this order: bool, int, duration, string.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any

from nomad_chaos.errors import InvalidArgumentError

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_FULL = re.compile(r"(?:(?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|ms|s|m|h))+")
_INT = re.compile(r"[+-]?\d+")

_MISSING: Any = object()


def parse_duration(text: str) -> float:
    """Parse a Go-style duration (``"15s"``, ``"1m30s"``, ``"250ms"``) into seconds."""
    value = text.strip()
    sign = 1.0
    if value[:1] in ("+", "-"):
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]
    if value == "0":
        return 0.0
    if not value or not _DURATION_FULL.fullmatch(value):
        raise InvalidArgumentError(f"invalid duration {text!r}")
    total = sum(float(num) * _UNITS[unit] for num, unit in _DURATION_PART.findall(value))
    return sign * total


def format_duration(seconds: float) -> str:
    """Render seconds the way Go prints a ``time.Duration``."""
    if seconds == 0:
        return "0s"
    sign = "-" if seconds < 0 else ""
    seconds = abs(seconds)
    if seconds < 1:
        ms = seconds * 1000
        return f"{sign}{ms:g}ms" if ms >= 1 else f"{sign}{seconds * 1e6:g}µs"
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    out = sign
    if hours:
        out += f"{int(hours)}h"
    if hours or minutes:
        out += f"{int(minutes)}m"
    out += f"{round(secs, 6):g}s"
    return out


def coerce_duration(value: Any) -> float:
    """Accept seconds, ``timedelta`` or a duration string; return seconds."""
    if isinstance(value, bool):
        raise InvalidArgumentError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, str):
        return parse_duration(value)
    raise InvalidArgumentError(f"invalid duration {value!r}")


class ArgKind(Enum):
    """Variant tag of an argument value."""

    STRING = "string"
    BOOL = "bool"
    INT = "int"
    DURATION = "duration"


@dataclass(frozen=True)
class ArgValue:
    """A single typed argument value. Durations are stored in seconds."""

    kind: ArgKind
    value: str | bool | int | float

    @classmethod
    def parse(cls, text: str) -> ArgValue:
        """Parse a command-line string: bool, then int, then duration, then string."""
        raw = text.strip()
        lowered = raw.lower()
        if lowered == "true":
            return cls(ArgKind.BOOL, True)
        if lowered == "false":
            return cls(ArgKind.BOOL, False)
        if _INT.fullmatch(raw):
            return cls(ArgKind.INT, int(raw))
        try:
            return cls(ArgKind.DURATION, parse_duration(raw))
        except InvalidArgumentError:
            return cls(ArgKind.STRING, raw)

    @classmethod
    def from_raw(cls, raw: Any) -> ArgValue:
        """Wrap a native value, e.g. one decoded from YAML."""
        if isinstance(raw, ArgValue):
            return raw
        if isinstance(raw, bool):
            return cls(ArgKind.BOOL, raw)
        if isinstance(raw, int):
            return cls(ArgKind.INT, raw)
        if isinstance(raw, float):
            return cls(ArgKind.DURATION, raw)
        if isinstance(raw, timedelta):
            return cls(ArgKind.DURATION, raw.total_seconds())
        if isinstance(raw, str):
            return cls.parse(raw)
        raise InvalidArgumentError(f"unsupported argument value {raw!r}")

    def to_raw(self) -> str | bool | int:
        if self.kind is ArgKind.DURATION:
            return format_duration(float(self.value))
        return self.value  # type: ignore[return-value]


class Args(Mapping[str, ArgValue]):
    """Immutable mapping of argument name to :class:`ArgValue`."""

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, ArgValue] = {
            key: ArgValue.from_raw(raw) for key, raw in (values or {}).items()
        }

    @classmethod
    def parse(cls, pairs: Iterable[str]) -> Args:
        """Build from ``key=value`` strings."""
        values: dict[str, ArgValue] = {}
        for pair in pairs:
            key, sep, value = pair.partition("=")
            if not sep or not key.strip():
                raise InvalidArgumentError(f"invalid argument {pair!r}: must be key=value")
            values[key.strip()] = ArgValue.parse(value)
        return cls(values)

    def __getitem__(self, key: str) -> ArgValue:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def merged(self, **overrides: Any) -> Args:
        values: dict[str, Any] = dict(self._values)
        values.update(overrides)
        return Args(values)

    def _lookup(self, key: str, default: Any) -> ArgValue | None:
        if key in self._values:
            return self._values[key]
        if default is _MISSING:
            raise InvalidArgumentError(f"argument '{key}' is required")
        return None

    def get_string(self, key: str, default: Any = _MISSING) -> str:
        arg = self._lookup(key, default)
        if arg is None:
            return default
        if arg.kind is not ArgKind.STRING:
            raise InvalidArgumentError(f"argument '{key}' must be a string, got {arg.kind.value}")
        return str(arg.value)

    def get_bool(self, key: str, default: Any = _MISSING) -> bool:
        arg = self._lookup(key, default)
        if arg is None:
            return default
        if arg.kind is not ArgKind.BOOL:
            raise InvalidArgumentError(f"argument '{key}' must be a bool, got {arg.kind.value}")
        return bool(arg.value)

    def get_int(self, key: str, default: Any = _MISSING) -> int:
        arg = self._lookup(key, default)
        if arg is None:
            return default
        if arg.kind is not ArgKind.INT:
            raise InvalidArgumentError(f"argument '{key}' must be an integer, got {arg.kind.value}")
        return int(arg.value)

    def get_duration(self, key: str, default: Any = _MISSING) -> float:
        """Duration in seconds. Bare integers are read as seconds."""
        arg = self._lookup(key, default)
        if arg is None:
            return default
        if arg.kind in (ArgKind.DURATION, ArgKind.INT):
            return float(arg.value)
        raise InvalidArgumentError(f"argument '{key}' must be a duration, got {arg.kind.value}")

    def to_dict(self) -> dict[str, Any]:
        return {key: arg.to_raw() for key, arg in self._values.items()}

    def __repr__(self) -> str:
        return f"Args({self.to_dict()!r})"
