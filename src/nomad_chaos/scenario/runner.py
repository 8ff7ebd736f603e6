"""Scenario runner — the step state machine with retries, on-error policies and teardown."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from opentelemetry.trace import Span, Tracer

from nomad_chaos.actions import new_action_registry
from nomad_chaos.asserts import new_assertion_registry
from nomad_chaos.context import RunContext
from nomad_chaos.driver.base import ActionContext, AssertContext
from nomad_chaos.errors import NON_RETRYABLE, AssertionFailedError, ChaosError
from nomad_chaos.report.report import Event, EventType, Report
from nomad_chaos.scenario.models import OnError, StepKind
from nomad_chaos.tracing import (
    CHAOS_SCENARIO_SUCCESS, end_step_span, get_tracer, start_scenario_span, start_step_span,
)

if TYPE_CHECKING:
    from nomad_chaos.actions.base import Action
    from nomad_chaos.asserts.base import Assertion
    from nomad_chaos.driver.base import Cluster, Driver
    from nomad_chaos.registry import Registry
    from nomad_chaos.scenario.models import Scenario, Step

logger = logging.getLogger(__name__)

DEFAULT_RETRY_INTERVAL = 1.0
DEFAULT_TEARDOWN_TIMEOUT = 300.0


class RunnerState(Enum):
    """Where the runner is within one scenario run."""

    RUNNING = "running"
    STEP_SUCCEEDED = "step_succeeded"
    STEP_FAILED = "step_failed"
    CLEANING_UP = "cleaning_up"
    FINISHED = "finished"


@dataclass
class StepOutcome:
    """Aggregate result of all attempts of one step."""

    success: bool = False
    attempts: int = 0
    message: str = ""
    duration: float = 0.0
    error: BaseException | None = None
    details: dict[str, Any] = field(default_factory=dict)


class Runner:
    """Executes scenarios against one discovered cluster.

    Steps run strictly in order. Every action attempt is remembered and
    rolled back in reverse order during teardown, which runs after every
    scenario whatever its outcome. A runner performs one run at a time.
    """

    def __init__(
        self,
        driver: Driver,
        cluster: Cluster,
        actions: Registry[Action] | None = None,
        assertions: Registry[Assertion] | None = None,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        teardown_timeout: float = DEFAULT_TEARDOWN_TIMEOUT,
        tracer: Tracer | None = None,
    ) -> None:
        self.driver = driver
        self.cluster = cluster
        self.actions = actions if actions is not None else new_action_registry()
        self.assertions = assertions if assertions is not None else new_assertion_registry()
        self.retry_interval = retry_interval
        self.teardown_timeout = teardown_timeout
        self._tracer = tracer or get_tracer()
        self._state = RunnerState.FINISHED
        self._executed: list[tuple[Action, ActionContext]] = []

    @property
    def state(self) -> RunnerState:
        return self._state

    def run(self, ctx: RunContext, scenario: Scenario) -> Report:
        """Run *scenario* to completion and return its report.

        A failed scenario is reported through ``report.success`` and
        ``report.error``; nothing is raised for step failures.
        """
        report = Report(scenario.name, scenario.description)
        self._executed = []
        self._set_state(RunnerState.RUNNING)
        span = start_scenario_span(self._tracer, scenario.name, **{"chaos.scenario.steps": len(scenario.steps)})

        self._emit(report, Event(
            EventType.START,
            scenario.name,
            f"Starting scenario with {len(scenario.steps)} steps",
            details={"cluster": self.cluster.name, "servers": len(self.cluster.servers)},
        ))

        run_ctx = ctx.with_timeout(scenario.timeout)
        try:
            self._run_steps(run_ctx, scenario, report, span)
        finally:
            run_ctx.close()
            self._teardown(scenario, report, span)
            report.success = report.error is None
            report.finish()
            span.set_attribute(CHAOS_SCENARIO_SUCCESS, report.success)
            span.end()
            self._set_state(RunnerState.FINISHED)

        logger.info(
            "Scenario '%s' finished: success=%s steps=%d failed=%d",
            scenario.name, report.success, report.stats.total_steps, report.stats.failed_steps,
        )
        return report

    # ------------------------------------------------------------------
    # Main step loop
    # ------------------------------------------------------------------

    def _run_steps(self, ctx: RunContext, scenario: Scenario, report: Report, span: Span) -> None:
        total = len(scenario.steps)
        for index, step in enumerate(scenario.steps, start=1):
            if ctx.done():
                error = ctx.error()
                self._emit(report, Event(
                    EventType.ERROR, step.label, f"Scenario stopped before step {index}/{total}: {error}",
                ))
                report.fail(error)  # type: ignore[arg-type]
                return

            self._set_state(RunnerState.RUNNING)
            logger.info("Step %d/%d: %s", index, total, step.label)
            outcome = self._execute_step(ctx, step, report, span)

            if outcome.success:
                self._set_state(RunnerState.STEP_SUCCEEDED)
                self._emit(report, Event(
                    EventType.SUCCESS, step.label, outcome.message,
                    duration=outcome.duration, details=outcome.details,
                ))
                continue

            self._set_state(RunnerState.STEP_FAILED)
            self._emit(report, Event(
                EventType.FAILURE, step.label, outcome.message,
                duration=outcome.duration, details=outcome.details,
            ))

            if ctx.done():
                # Cancellation or the scenario deadline always ends the run.
                report.fail(ctx.error())  # type: ignore[arg-type]
                return
            if step.on_error is OnError.CONTINUE:
                logger.info("Step '%s' failed, continuing (on_error=continue)", step.label)
                continue
            if step.on_error is OnError.CLEANUP:
                logger.info("Step '%s' failed, going to cleanup (on_error=cleanup)", step.label)
                return
            report.fail(outcome.error or ChaosError(outcome.message))
            return

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    def _execute_step(self, ctx: RunContext, step: Step, report: Report, parent: Span) -> StepOutcome:
        """Run every attempt of *step* under *ctx* and aggregate the result."""
        span = start_step_span(self._tracer, parent, step.label, step.kind.value, step.target)
        outcome = StepOutcome(details={"kind": step.kind.value, "target": step.target})
        start = time.monotonic()

        for attempt in range(1, step.retries + 1):
            outcome.attempts = attempt
            try:
                with ctx.with_timeout(step.timeout) as attempt_ctx:
                    message, details = self._dispatch(attempt_ctx, step)
            except Exception as e:  # noqa: BLE001 - every capability error is a failed attempt
                outcome.error = e
                outcome.message = self._describe_failure(step, e)
                if isinstance(e, AssertionFailedError):
                    outcome.details["result"] = e.result.to_dict()
            else:
                outcome.success = True
                outcome.error = None
                outcome.message = message
                outcome.details.update(details)
                break

            if isinstance(outcome.error, NON_RETRYABLE) or ctx.done() or attempt == step.retries:
                break

            self._emit(report, Event(
                EventType.INFO, step.label,
                f"Attempt {attempt}/{step.retries} failed: {outcome.error}; retrying",
            ))
            if ctx.wait(self.retry_interval):
                break

        outcome.duration = time.monotonic() - start
        outcome.details["attempts"] = outcome.attempts
        end_step_span(span, "success" if outcome.success else "failure", outcome.attempts, outcome.error)
        return outcome

    def _dispatch(self, ctx: RunContext, step: Step) -> tuple[str, dict[str, Any]]:
        kind = step.kind
        if kind is StepKind.ACTION:
            action = self.actions.get(step.action or "")
            actx = ActionContext(self.driver, self.cluster)
            # Retained before execute: a failed action may still have changed the cluster.
            self._executed.append((action, actx))
            action.execute(ctx, actx, step.typed_args())
            return f"Action {action.name} executed", {}

        if kind is StepKind.ASSERT:
            assertion = self.assertions.get(step.assertion or "")
            result = assertion.check(ctx, AssertContext(self.driver, self.cluster), step.typed_args())
            if not result.success:
                raise AssertionFailedError(result)
            return result.message or f"Assertion {assertion.name} passed", {"result": result.to_dict()}

        duration = step.wait or 0.0
        if ctx.wait(duration):
            ctx.raise_if_done()
        return f"Waited {step.target}", {}

    @staticmethod
    def _describe_failure(step: Step, error: BaseException) -> str:
        if isinstance(error, AssertionFailedError):
            return f"Assertion {step.target} failed: {error}"
        if step.kind is StepKind.ACTION:
            return f"Action {step.target} failed: {error}"
        if step.kind is StepKind.WAIT:
            return f"Wait interrupted: {error}"
        return f"Assertion {step.target} error: {error}"

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _teardown(self, scenario: Scenario, report: Report, span: Span) -> None:
        """Run cleanup steps, then roll back every executed action, newest first.

        Uses its own context so a cancelled or expired run is still cleaned up.
        """
        self._set_state(RunnerState.CLEANING_UP)
        with RunContext(timeout=self.teardown_timeout) as ctx:
            for step in scenario.cleanup:
                outcome = self._execute_step(ctx, step, report, span)
                if outcome.success:
                    self._emit(report, Event(
                        EventType.CLEANUP, step.label, outcome.message,
                        duration=outcome.duration, details=outcome.details,
                    ))
                else:
                    self._emit(report, Event(
                        EventType.ERROR, step.label, f"Cleanup step failed: {outcome.message}",
                        duration=outcome.duration, details=outcome.details,
                    ))

            # Actions run by cleanup steps are rolled back too, first.
            executed, self._executed = self._executed, []
            for action, actx in reversed(executed):
                self._rollback(ctx, action, actx, report, span)

    def _rollback(
        self,
        ctx: RunContext,
        action: Action,
        actx: ActionContext,
        report: Report,
        parent: Span,
    ) -> None:
        label = f"rollback-{action.name}"
        span = start_step_span(self._tracer, parent, label, "rollback", action.name)
        start = time.monotonic()
        try:
            action.rollback(ctx, actx)
        except Exception as e:  # noqa: BLE001 - one failed rollback must not block the rest
            logger.warning("Rollback failed for action '%s': %s", action.name, e)
            self._emit(report, Event(
                EventType.ERROR, label, f"Rollback failed: {e}",
                duration=time.monotonic() - start, details={"state": dict(actx.state)},
            ))
            end_step_span(span, "failure", 1, e)
        else:
            self._emit(report, Event(
                EventType.CLEANUP, label, f"Rolled back {action.name}",
                duration=time.monotonic() - start,
            ))
            end_step_span(span, "success", 1)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: RunnerState) -> None:
        if state is not self._state:
            logger.info("Runner state %s -> %s", self._state.value, state.value)
        self._state = state

    @staticmethod
    def _emit(report: Report, event: Event) -> None:
        report.add_event(event)
        logger.info("chaos event: [%s] %s: %s", event.type.value, event.step, event.message)
