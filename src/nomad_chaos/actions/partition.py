"""partition — drop traffic between two servers with iptables rules."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from nomad_chaos.actions.base import Action
from nomad_chaos.context import RunContext
from nomad_chaos.driver.ssh import quote
from nomad_chaos.errors import InvalidArgumentError, PartialRollbackError, RemoteFailureError

if TYPE_CHECKING:
    from nomad_chaos.args import Args
    from nomad_chaos.driver.base import ActionContext, Node

logger = logging.getLogger(__name__)

RULE_COMMENT = "chaos-partition"
# Undoing a half-applied partition must not depend on the (possibly cancelled) step context.
UNDO_TIMEOUT = 30.0


def _rules(op: str, block_ip: str) -> list[str]:
    ip = quote(block_ip)
    return [
        f"iptables {op} INPUT -s {ip} -j DROP -m comment --comment {RULE_COMMENT}",
        f"iptables {op} OUTPUT -d {ip} -j DROP -m comment --comment {RULE_COMMENT}",
    ]


class PartitionAction(Action):
    name = "partition"
    description = "Create a network partition between two nodes using iptables DROP rules"

    def execute(self, ctx: RunContext, actx: ActionContext, args: Args) -> None:
        source_name = args.get_string("source")
        target_name = args.get_string("target")
        bidirectional = args.get_bool("bidirectional", True)
        if source_name == target_name:
            raise InvalidArgumentError("source and target must be different nodes")

        source = actx.cluster.server_by_name(source_name)
        target = actx.cluster.server_by_name(target_name)

        state = actx.state
        state["source_node"] = source.name
        state["target_node"] = target.name
        state["source_ip"] = source.private_ip
        state["target_ip"] = target.private_ip
        state["bidirectional"] = bidirectional
        state["applied_sides"] = []

        self._add_rules(ctx, actx, source, target.private_ip)
        state["applied_sides"].append(source.name)

        if bidirectional:
            try:
                self._add_rules(ctx, actx, target, source.private_ip)
            except Exception:
                logger.warning(
                    "Partition rules failed on %s, reverting %s", target.name, source.name
                )
                with RunContext(timeout=UNDO_TIMEOUT) as undo_ctx:
                    try:
                        self._remove_rules(undo_ctx, actx, source, target.private_ip)
                    except Exception:
                        # Left in applied_sides so the runner's rollback retries it.
                        logger.warning("Reverting %s failed", source.name, exc_info=True)
                    else:
                        state["applied_sides"].remove(source.name)
                raise
            state["applied_sides"].append(target.name)

        logger.info(
            "Partitioned %s %s %s",
            source.name, "<->" if bidirectional else "->", target.name,
        )

    def rollback(self, ctx: RunContext, actx: ActionContext) -> None:
        state = actx.state
        applied = list(state.get("applied_sides") or [])
        if not applied:
            logger.debug("partition rollback: no rules recorded")
            return

        blocked_by_side = {
            state["source_node"]: state["target_ip"],
            state["target_node"]: state["source_ip"],
        }
        failures: list[str] = []
        for side in applied:
            try:
                node = actx.cluster.server_by_name(side)
                self._remove_rules(ctx, actx, node, blocked_by_side[side])
            except Exception as e:
                failures.append(f"{side}: {e}")
            else:
                state["applied_sides"].remove(side)
        if failures:
            raise PartialRollbackError(self.name, failures)

    def _add_rules(self, ctx: RunContext, actx: ActionContext, node: Node, block_ip: str) -> None:
        """Insert DROP rules on *node*; a failure removes the rules already inserted."""
        with actx.driver.open_session(ctx, node) as session:
            inserted: list[str] = []
            for add, delete in zip(_rules("-I", block_ip), _rules("-D", block_ip)):
                try:
                    result = session.run_privileged(ctx, add)
                    if not result.ok:
                        raise RemoteFailureError(
                            f"iptables failed on {node.name} (exit {result.exit_code}): "
                            f"{result.stderr.strip()}",
                            exit_code=result.exit_code,
                            stderr=result.stderr,
                        )
                except Exception:
                    with RunContext(timeout=UNDO_TIMEOUT) as undo_ctx:
                        for rule in reversed(inserted):
                            try:
                                session.run_privileged(undo_ctx, rule)
                            except Exception:
                                logger.warning("Undo %r on %s failed", rule, node.name, exc_info=True)
                    raise
                inserted.append(delete)

    def _remove_rules(self, ctx: RunContext, actx: ActionContext, node: Node, block_ip: str) -> None:
        """Delete the DROP rules on *node*, attempting every rule."""
        errors: list[str] = []
        with actx.driver.open_session(ctx, node) as session:
            for rule in _rules("-D", block_ip):
                try:
                    result = session.run_privileged(ctx, rule)
                except RemoteFailureError as e:
                    errors.append(str(e))
                    continue
                if not result.ok:
                    errors.append(f"iptables failed (exit {result.exit_code}): {result.stderr.strip()}")
        if errors:
            raise RemoteFailureError(f"removing rules on {node.name}: {'; '.join(errors)}")
