"""Report rendering — table, JSON, markdown and one-line summaries."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Callable

from nomad_chaos.args import format_duration
from nomad_chaos.report.report import EventType, Report

_ICONS = {
    EventType.START: "▶",
    EventType.SUCCESS: "✓",
    EventType.FAILURE: "✗",
    EventType.ERROR: "!",
    EventType.CLEANUP: "↺",
    EventType.INFO: "•",
}

_WIDTH = 64


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3] + "..."


def _clock(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%H:%M:%S")


def _row(text: str) -> str:
    return f"║ {text:<{_WIDTH}} ║\n"


def format_table(report: Report) -> str:
    """Human-readable boxed summary with the event timeline."""
    report.finish()
    rule = "═" * (_WIDTH + 2)
    thin = "─" * (_WIDTH + 2)
    out = [f"╔{rule}╗\n", _row(f"Scenario: {_truncate(report.scenario, _WIDTH - 10)}")]
    if report.description:
        out.append(_row(_truncate(report.description, _WIDTH)))
    out.append(f"╠{rule}╣\n")

    stats = report.stats
    out.append(_row(f"Status: {'✓ PASSED' if report.success else '✗ FAILED'}"))
    out.append(_row(f"Duration: {format_duration(round(report.duration, 3))}"))
    out.append(_row(
        f"Steps: {stats.total_steps} total, {stats.success_steps} success, "
        f"{stats.failed_steps} failed, {stats.cleanup_steps} cleanup"
    ))
    out.append(f"╠{rule}╣\n")
    out.append(_row("Timeline:"))
    out.append(f"╟{thin}╢\n")
    for event in report.events:
        line = (
            f"{_ICONS[event.type]} {_clock(event.time)} "
            f"{_truncate(event.step, 20):<20} {_truncate(event.message, 31)}"
        )
        out.append(_row(line))
    out.append(f"╚{rule}╝\n")

    if report.error_message:
        out.append(f"\nError: {report.error_message}\n")
    return "".join(out)


def format_json(report: Report) -> str:
    report.finish()
    return json.dumps(report.to_dict(), indent=2, default=str)


def format_markdown(report: Report) -> str:
    report.finish()
    stats = report.stats
    out = [f"# Chaos Test Report: {report.scenario}\n\n"]
    if report.description:
        out.append(f"_{report.description}_\n\n")

    status = "✅ **PASSED**" if report.success else "❌ **FAILED**"
    out.append("## Summary\n\n")
    out.append(f"- **Status**: {status}\n")
    out.append(f"- **Duration**: {format_duration(round(report.duration, 3))}\n")
    out.append(
        f"- **Steps**: {stats.total_steps} total, {stats.success_steps} success, "
        f"{stats.failed_steps} failed\n\n"
    )

    out.append("## Timeline\n\n")
    out.append("| Time | Status | Step | Message |\n")
    out.append("|------|--------|------|---------|\n")
    for event in report.events:
        message = event.message.replace("|", "\\|")
        out.append(f"| {_clock(event.time)} | {_ICONS[event.type]} | {event.step} | {message} |\n")
    out.append("\n")

    if report.error_message:
        out.append(f"## Error\n\n```\n{report.error_message}\n```\n")
    return "".join(out)


def format_compact(report: Report) -> str:
    report.finish()
    status = "PASS" if report.success else "FAIL"
    return (
        f"[{status}] {report.scenario} - {report.stats.total_steps} steps "
        f"in {format_duration(round(report.duration, 3))}"
    )


FORMATTERS: dict[str, Callable[[Report], str]] = {
    "table": format_table,
    "json": format_json,
    "markdown": format_markdown,
    "md": format_markdown,
    "compact": format_compact,
}


def render(report: Report, fmt: str = "table") -> str:
    try:
        formatter = FORMATTERS[fmt]
    except KeyError:
        raise ValueError(f"unknown format: {fmt}") from None
    return formatter(report)
