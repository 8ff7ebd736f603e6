"""Tests for the built-in actions — kill-leader and partition."""

from __future__ import annotations

import pytest

from nomad_chaos.actions import KillLeaderAction, PartitionAction
from nomad_chaos.args import Args
from nomad_chaos.driver.base import ActionContext
from nomad_chaos.errors import (
    InvalidArgumentError,
    NotFoundError,
    PartialRollbackError,
    RemoteFailureError,
)


def _actx(driver) -> ActionContext:
    return ActionContext(driver, driver.cluster)


def _commands(driver, node: str) -> list[str]:
    return [cmd for name, cmd in driver.commands if name == node]


# ---------------------------------------------------------------------------
# kill-leader
# ---------------------------------------------------------------------------

class TestKillLeader:
    def test_default_signal(self, driver, ctx) -> None:
        driver.leader = "server-1"
        actx = _actx(driver)
        KillLeaderAction().execute(ctx, actx, Args({}))

        assert _commands(driver, "server-1") == ["pkill -TERM nomad"]
        assert actx.state["killed_node"] == "server-1"
        assert actx.state["killed_ip"] == "192.168.1.11"
        assert actx.state["signal"] == "TERM"
        assert all(s.closed for s in driver.sessions)

    def test_kill_signal_case_insensitive(self, driver, ctx) -> None:
        KillLeaderAction().execute(ctx, _actx(driver), Args({"signal": "kill"}))
        assert _commands(driver, "server-0") == ["pkill -KILL nomad"]

    def test_invalid_signal(self, driver, ctx) -> None:
        actx = _actx(driver)
        with pytest.raises(InvalidArgumentError, match="TERM or KILL"):
            KillLeaderAction().execute(ctx, actx, Args({"signal": "HUP"}))
        assert driver.commands == []
        assert actx.state == {}

    def test_no_process(self, driver, ctx) -> None:
        driver.pkill_exit = 1
        actx = _actx(driver)
        with pytest.raises(RemoteFailureError, match="no nomad process found"):
            KillLeaderAction().execute(ctx, actx, Args({}))
        # Recorded anyway so rollback restarts the service.
        assert actx.state["killed_node"] == "server-0"

    def test_other_failure(self, driver, ctx) -> None:
        driver.pkill_exit = 2
        with pytest.raises(RemoteFailureError, match="pkill failed"):
            KillLeaderAction().execute(ctx, _actx(driver), Args({}))

    def test_unknown_leader(self, driver, ctx) -> None:
        driver.leader = "server-9"
        with pytest.raises(NotFoundError):
            KillLeaderAction().execute(ctx, _actx(driver), Args({}))

    def test_rollback_restarts(self, driver, ctx) -> None:
        action = KillLeaderAction()
        actx = _actx(driver)
        action.execute(ctx, actx, Args({}))
        action.rollback(ctx, actx)
        assert driver.restarted == ["server-0"]
        assert _commands(driver, "server-0")[-1] == "systemctl restart nomad"

    def test_rollback_failure(self, driver, ctx) -> None:
        driver.restart_exit = 5
        actx = ActionContext(driver, driver.cluster, state={"killed_node": "server-2"})
        with pytest.raises(RemoteFailureError, match="failed to restart nomad on server-2"):
            KillLeaderAction().rollback(ctx, actx)

    def test_rollback_without_state_is_noop(self, driver, ctx) -> None:
        KillLeaderAction().rollback(ctx, _actx(driver))
        assert driver.commands == []


# ---------------------------------------------------------------------------
# partition
# ---------------------------------------------------------------------------

class TestPartition:
    def test_bidirectional(self, driver, ctx) -> None:
        actx = _actx(driver)
        PartitionAction().execute(ctx, actx, Args({"source": "server-0", "target": "server-1"}))

        assert driver.rule_count("server-0") == 2
        assert driver.rule_count("server-1") == 2
        assert any("-s 10.0.0.11" in r for r in driver.rules["server-0"])
        assert any("-d 10.0.0.10" in r for r in driver.rules["server-1"])
        assert all("chaos-partition" in r for r in driver.rules["server-0"])
        assert actx.state["applied_sides"] == ["server-0", "server-1"]
        assert actx.state["bidirectional"] is True
        assert actx.state["source_ip"] == "10.0.0.10"
        assert actx.state["target_ip"] == "10.0.0.11"

    def test_unidirectional(self, driver, ctx) -> None:
        actx = _actx(driver)
        PartitionAction().execute(
            ctx, actx, Args.parse(["source=server-0", "target=server-2", "bidirectional=false"])
        )
        assert driver.rule_count("server-0") == 2
        assert driver.rule_count("server-2") == 0
        assert actx.state["applied_sides"] == ["server-0"]

    def test_rollback_removes_all_rules(self, driver, ctx) -> None:
        action = PartitionAction()
        actx = _actx(driver)
        action.execute(ctx, actx, Args({"source": "server-0", "target": "server-1"}))
        action.rollback(ctx, actx)
        assert driver.rule_count("server-0") == 0
        assert driver.rule_count("server-1") == 0
        assert actx.state["applied_sides"] == []

    def test_target_failure_reverts_source(self, driver, ctx) -> None:
        driver.fail("server-1", "iptables -I")
        actx = _actx(driver)
        with pytest.raises(RemoteFailureError):
            PartitionAction().execute(ctx, actx, Args({"source": "server-0", "target": "server-1"}))

        assert driver.rule_count("server-0") == 0
        assert driver.rule_count("server-1") == 0
        assert actx.state["applied_sides"] == []

    def test_target_failure_midway_reverts_both(self, driver, ctx) -> None:
        driver.fail("server-1", "iptables -I OUTPUT")
        actx = _actx(driver)
        with pytest.raises(RemoteFailureError):
            PartitionAction().execute(ctx, actx, Args({"source": "server-0", "target": "server-1"}))
        assert driver.rule_count("server-0") == 0
        assert driver.rule_count("server-1") == 0

    def test_target_transport_error_reverts_source(self, driver, ctx) -> None:
        driver.raise_on_failure = True
        driver.fail("server-1", "iptables -I")
        actx = _actx(driver)
        with pytest.raises(RemoteFailureError, match="injected failure"):
            PartitionAction().execute(ctx, actx, Args({"source": "server-0", "target": "server-1"}))
        assert driver.rule_count("server-0") == 0
        assert actx.state["applied_sides"] == []

    def test_failed_execute_rollback_is_noop(self, driver, ctx) -> None:
        driver.fail("server-1", "iptables -I")
        action = PartitionAction()
        actx = _actx(driver)
        with pytest.raises(RemoteFailureError):
            action.execute(ctx, actx, Args({"source": "server-0", "target": "server-1"}))
        issued = len(driver.commands)
        action.rollback(ctx, actx)
        assert len(driver.commands) == issued

    def test_same_node_rejected(self, driver, ctx) -> None:
        with pytest.raises(InvalidArgumentError, match="different"):
            PartitionAction().execute(ctx, _actx(driver), Args({"source": "server-0", "target": "server-0"}))

    def test_missing_args(self, driver, ctx) -> None:
        with pytest.raises(InvalidArgumentError, match="'target' is required"):
            PartitionAction().execute(ctx, _actx(driver), Args({"source": "server-0"}))

    def test_unknown_node(self, driver, ctx) -> None:
        with pytest.raises(NotFoundError, match="server-7"):
            PartitionAction().execute(ctx, _actx(driver), Args({"source": "server-0", "target": "server-7"}))
        assert driver.commands == []

    def test_rollback_attempts_every_side(self, driver, ctx) -> None:
        action = PartitionAction()
        actx = _actx(driver)
        action.execute(ctx, actx, Args({"source": "server-0", "target": "server-1"}))
        driver.fail("server-0", "iptables -D")

        with pytest.raises(PartialRollbackError) as exc_info:
            action.rollback(ctx, actx)

        assert driver.rule_count("server-1") == 0
        assert driver.rule_count("server-0") == 2
        assert len(exc_info.value.failures) == 1
        assert exc_info.value.failures[0].startswith("server-0")
        assert actx.state["applied_sides"] == ["server-0"]
