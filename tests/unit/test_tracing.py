"""Tests for scenario and step spans."""

from __future__ import annotations

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    SimpleSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from opentelemetry.trace import StatusCode

from nomad_chaos.errors import RemoteFailureError
from nomad_chaos.scenario import Runner, Scenario
from nomad_chaos.tracing import (
    CHAOS_SCENARIO_NAME,
    CHAOS_SCENARIO_SUCCESS,
    CHAOS_STEP_ATTEMPTS,
    CHAOS_STEP_KIND,
    CHAOS_STEP_OUTCOME,
    CHAOS_STEP_TARGET,
    end_step_span,
    get_tracer,
    start_scenario_span,
    start_step_span,
)


class _InMemorySpanExporter(SpanExporter):
    def __init__(self) -> None:
        self._spans: list = []

    def export(self, spans):  # type: ignore[override]
        self._spans.extend(spans)
        return SpanExportResult.SUCCESS

    def get_finished_spans(self) -> list:
        return list(self._spans)

    def shutdown(self) -> None:
        pass


@pytest.fixture()
def span_exporter():
    return _InMemorySpanExporter()


@pytest.fixture()
def tracer_provider(span_exporter):
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider


@pytest.fixture()
def tracer(tracer_provider):
    return get_tracer(tracer_provider)


def _by_name(exporter) -> dict:
    return {span.name: span for span in exporter.get_finished_spans()}


class TestSpanHelpers:
    def test_step_nested_under_scenario(self, tracer, span_exporter) -> None:
        root = start_scenario_span(tracer, "leader-failover", **{"chaos.scenario.steps": 2})
        step = start_step_span(tracer, root, "kill", "action", "kill-leader")
        end_step_span(step, "success", 2)
        root.end()

        spans = _by_name(span_exporter)
        scenario_span = spans["chaos_scenario:leader-failover"]
        step_span = spans["chaos_step:kill"]
        assert scenario_span.attributes[CHAOS_SCENARIO_NAME] == "leader-failover"
        assert scenario_span.attributes["chaos.scenario.steps"] == 2
        assert step_span.parent.span_id == scenario_span.context.span_id
        assert step_span.attributes[CHAOS_STEP_KIND] == "action"
        assert step_span.attributes[CHAOS_STEP_TARGET] == "kill-leader"
        assert step_span.attributes[CHAOS_STEP_ATTEMPTS] == 2
        assert step_span.attributes[CHAOS_STEP_OUTCOME] == "success"
        assert step_span.status.status_code is StatusCode.OK

    def test_failed_step_records_error(self, tracer, span_exporter) -> None:
        root = start_scenario_span(tracer, "s")
        step = start_step_span(tracer, root, "kill", "action", "kill-leader")
        end_step_span(step, "failure", 1, RemoteFailureError("ssh refused"))
        root.end()

        step_span = _by_name(span_exporter)["chaos_step:kill"]
        assert step_span.status.status_code is StatusCode.ERROR
        assert step_span.status.description == "ssh refused"
        assert step_span.events[0].name == "exception"


class TestRunnerSpans:
    def test_run_produces_spans(self, ctx, driver, tracer, span_exporter) -> None:
        scenario = Scenario.model_validate({
            "name": "kill-and-wait",
            "steps": [
                {"name": "kill", "action": "kill-leader"},
                {"wait": "10ms"},
            ],
        })
        runner = Runner(driver, driver.cluster, retry_interval=0, teardown_timeout=10, tracer=tracer)
        report = runner.run(ctx, scenario)
        assert report.success

        spans = _by_name(span_exporter)
        root = spans["chaos_scenario:kill-and-wait"]
        assert root.attributes[CHAOS_SCENARIO_SUCCESS] is True
        assert spans["chaos_step:kill"].attributes[CHAOS_STEP_OUTCOME] == "success"
        assert any(name.startswith("chaos_step:wait:") for name in spans)
        rollback = spans["chaos_step:rollback-kill-leader"]
        assert rollback.attributes[CHAOS_STEP_KIND] == "rollback"
        assert rollback.parent.span_id == root.context.span_id
