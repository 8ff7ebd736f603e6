"""kill-leader — terminate the Nomad process on the current leader."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from nomad_chaos.actions.base import Action
from nomad_chaos.errors import InvalidArgumentError, RemoteFailureError

if TYPE_CHECKING:
    from nomad_chaos.args import Args
    from nomad_chaos.context import RunContext
    from nomad_chaos.driver.base import ActionContext

logger = logging.getLogger(__name__)

SIGNALS = ("TERM", "KILL")
# pkill exits 1 when no process matched.
PKILL_NO_MATCH = 1


class KillLeaderAction(Action):
    name = "kill-leader"
    description = "Kill the Nomad leader process using SIGTERM or SIGKILL"

    def execute(self, ctx: RunContext, actx: ActionContext, args: Args) -> None:
        signal = args.get_string("signal", "TERM").upper()
        if signal not in SIGNALS:
            raise InvalidArgumentError(f"invalid signal {signal!r}: must be TERM or KILL")

        leader = actx.driver.resolve_leader(ctx, actx.cluster)

        # Recorded before the kill: a failed pkill may still have hit the process.
        actx.state["killed_node"] = leader.name
        actx.state["killed_ip"] = leader.public_ip
        actx.state["signal"] = signal

        logger.info("Sending SIG%s to nomad on leader %s", signal, leader.name)
        with actx.driver.open_session(ctx, leader) as session:
            result = session.run_privileged(ctx, f"pkill -{signal} nomad")

        if result.exit_code == PKILL_NO_MATCH:
            raise RemoteFailureError(f"no nomad process found on {leader.name}", exit_code=1)
        if not result.ok:
            raise RemoteFailureError(
                f"pkill failed (exit {result.exit_code}): "
                f"stdout={result.stdout.strip()} stderr={result.stderr.strip()}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

    def rollback(self, ctx: RunContext, actx: ActionContext) -> None:
        node_name = actx.state.get("killed_node")
        if not node_name:
            logger.debug("kill-leader rollback: nothing recorded")
            return

        node = actx.cluster.server_by_name(node_name)
        logger.info("Restarting nomad on %s", node.name)
        with actx.driver.open_session(ctx, node) as session:
            result = session.run_privileged(ctx, "systemctl restart nomad")
        if not result.ok:
            raise RemoteFailureError(
                f"failed to restart nomad on {node.name} (exit {result.exit_code}): "
                f"{result.stderr.strip()}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
