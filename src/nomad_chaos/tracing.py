"""OpenTelemetry span helpers for scenario runs.

The helpers only depend on ``opentelemetry-api``; without an SDK and
exporter configured they produce non-recording spans.
"""

from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode, Tracer

CHAOS_SCENARIO_NAME = "chaos.scenario.name"
CHAOS_SCENARIO_SUCCESS = "chaos.scenario.success"
CHAOS_STEP_NAME = "chaos.step.name"
CHAOS_STEP_KIND = "chaos.step.kind"
CHAOS_STEP_TARGET = "chaos.step.target"
CHAOS_STEP_ATTEMPTS = "chaos.step.attempts"
CHAOS_STEP_OUTCOME = "chaos.step.outcome"

_INSTRUMENTATION = "nomad_chaos"


def get_tracer(tracer_provider: trace.TracerProvider | None = None) -> Tracer:
    if tracer_provider is not None:
        return tracer_provider.get_tracer(_INSTRUMENTATION)
    return trace.get_tracer(_INSTRUMENTATION)


def start_scenario_span(tracer: Tracer, scenario_name: str, **kwargs: Any) -> Span:
    """Start the root span of a scenario run.

    Args:
        tracer: OpenTelemetry tracer instance.
        scenario_name: Name of the scenario being run.
        **kwargs: Extra attributes to set on the span.
    """
    span = tracer.start_span(f"chaos_scenario:{scenario_name}")
    span.set_attribute(CHAOS_SCENARIO_NAME, scenario_name)
    for key, value in kwargs.items():
        span.set_attribute(key, value)
    return span


def start_step_span(
    tracer: Tracer,
    parent: Span,
    step_name: str,
    kind: str,
    target: str,
) -> Span:
    """Start a span for one step (or cleanup/rollback) nested under *parent*."""
    span = tracer.start_span(
        f"chaos_step:{step_name}",
        context=trace.set_span_in_context(parent),
    )
    span.set_attribute(CHAOS_STEP_NAME, step_name)
    span.set_attribute(CHAOS_STEP_KIND, kind)
    span.set_attribute(CHAOS_STEP_TARGET, target)
    return span


def end_step_span(span: Span, outcome: str, attempts: int, error: BaseException | None = None) -> None:
    span.set_attribute(CHAOS_STEP_OUTCOME, outcome)
    span.set_attribute(CHAOS_STEP_ATTEMPTS, attempts)
    if error is not None:
        span.record_exception(error)
        span.set_status(Status(StatusCode.ERROR, str(error)))
    else:
        span.set_status(Status(StatusCode.OK))
    span.end()
