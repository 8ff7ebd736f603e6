"""Tests for out-of-band inject and heal."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from nomad_chaos.actions.base import Action
from nomad_chaos.args import Args
from nomad_chaos.context import RunContext
from nomad_chaos.errors import InvalidArgumentError, NotFoundError, RemoteFailureError, RunCancelledError
from nomad_chaos.heal import FaultHandle, heal, inject
from nomad_chaos.registry import Registry


class TestFaultHandle:
    def test_save_and_load(self, tmp_path: Path) -> None:
        handle = FaultHandle("kill-leader", "lab", state={"killed_node": "server-1"}, args={"signal": "KILL"})
        path = tmp_path / "state" / "fault.json"
        handle.save(path)
        assert json.loads(path.read_text())["action"] == "kill-leader"
        assert FaultHandle.load(path) == handle

    def test_load_missing(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidArgumentError, match="no fault to heal"):
            FaultHandle.load(tmp_path / "missing.json")

    def test_load_garbage(self, tmp_path: Path) -> None:
        path = tmp_path / "fault.json"
        path.write_text("[1, 2]")
        with pytest.raises(InvalidArgumentError, match="must contain an object"):
            FaultHandle.load(path)
        path.write_text("{oops")
        with pytest.raises(InvalidArgumentError, match="reading fault handle"):
            FaultHandle.load(path)

    def test_requires_action(self) -> None:
        with pytest.raises(InvalidArgumentError, match="no action"):
            FaultHandle.from_dict({"cluster": "lab"})


class TestInjectHeal:
    def test_inject_then_heal(self, ctx, driver) -> None:
        driver.leader = "server-2"
        handle = inject(ctx, "kill-leader", driver, driver.cluster, Args({"signal": "KILL"}))
        assert handle.action == "kill-leader"
        assert handle.cluster == "test"
        assert handle.state["killed_node"] == "server-2"
        assert handle.args == {"signal": "KILL"}
        assert driver.restarted == []

        heal(ctx, handle, driver, driver.cluster)
        assert driver.restarted == ["server-2"]

    def test_partition_survives_handle_file(self, ctx, driver, tmp_path: Path) -> None:
        args = Args.parse(["source=server-0", "target=server-1"])
        inject(ctx, "partition", driver, driver.cluster, args).save(tmp_path / "f.json")
        assert driver.rule_count("server-0") == 2
        assert driver.rule_count("server-1") == 2

        heal(ctx, FaultHandle.load(tmp_path / "f.json"), driver, driver.cluster)
        assert driver.rule_count("server-0") == 0
        assert driver.rule_count("server-1") == 0

    def test_failed_inject_rolls_back(self, ctx, driver) -> None:
        driver.pkill_exit = 1
        with pytest.raises(RemoteFailureError, match="no nomad process"):
            inject(ctx, "kill-leader", driver, driver.cluster, Args({}))
        assert driver.restarted == ["server-0"]

    def test_failed_inject_without_state(self, ctx, driver) -> None:
        with pytest.raises(InvalidArgumentError):
            inject(ctx, "kill-leader", driver, driver.cluster, Args({"signal": "HUP"}))
        assert driver.commands == []

    def test_unknown_action(self, ctx, driver) -> None:
        with pytest.raises(NotFoundError):
            inject(ctx, "flood", driver, driver.cluster, Args({}))

    def test_heal_other_cluster_still_heals(self, ctx, driver) -> None:
        handle = FaultHandle("kill-leader", "elsewhere", state={"killed_node": "server-1"})
        heal(ctx, handle, driver, driver.cluster)
        assert driver.restarted == ["server-1"]


class CrashingAction(Action):
    """Records state, then fails with a non-chaos error."""

    name = "crash"

    def __init__(self) -> None:
        self.rollback_contexts: list[RunContext] = []
        self.live: list[bool] = []

    def execute(self, ctx, actx, args) -> None:
        actx.state["touched"] = True
        raise OSError("spawn failed")

    def rollback(self, ctx, actx) -> None:
        assert actx.state == {"touched": True}
        self.rollback_contexts.append(ctx)
        self.live.append(not ctx.done())


class TestInjectRollbackOnAnyError:
    def test_non_chaos_error_still_rolled_back(self, ctx, driver) -> None:
        action = CrashingAction()
        registry: Registry = Registry("action")
        registry.register(action)
        with pytest.raises(OSError, match="spawn failed"):
            inject(ctx, "crash", driver, driver.cluster, Args({}), actions=registry)
        assert len(action.rollback_contexts) == 1

    def test_rollback_uses_live_context(self, driver) -> None:
        class CancellingAction(CrashingAction):
            def execute(self, ctx, actx, args) -> None:
                actx.state["touched"] = True
                ctx.cancel("interrupted")
                ctx.raise_if_done()

        action = CancellingAction()
        registry: Registry = Registry("action")
        registry.register(action)
        ctx = RunContext()
        with pytest.raises(RunCancelledError):
            inject(ctx, "crash", driver, driver.cluster, Args({}), actions=registry)
        assert action.rollback_contexts[0] is not ctx
        assert action.live == [True]
