"""Report — structured timeline of a scenario run and its renderers."""

from .formatter import (
    FORMATTERS, format_compact, format_json, format_markdown, format_table, render,
)
from .report import Event, EventType, Report, Stats

__all__ = [
    "Event", "EventType", "Report", "Stats",
    "FORMATTERS", "format_compact", "format_json", "format_markdown",
    "format_table", "render",
]
