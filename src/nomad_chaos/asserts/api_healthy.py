"""nomad-api-healthy — a quorum of servers answers the agent health endpoint."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import TYPE_CHECKING

from nomad_chaos import nomad_api
from nomad_chaos.args import format_duration
from nomad_chaos.asserts.base import Assertion, AssertionResult
from nomad_chaos.errors import ChaosError, InvalidArgumentError

if TYPE_CHECKING:
    from nomad_chaos.args import Args
    from nomad_chaos.context import RunContext
    from nomad_chaos.driver.base import AssertContext, Node

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def default_quorum(server_count: int) -> int:
    return server_count // 2 + 1


class NomadAPIHealthyAssertion(Assertion):
    name = "nomad-api-healthy"
    description = "Verify that a quorum of Nomad servers respond to API health checks"

    def check(self, ctx: RunContext, actx: AssertContext, args: Args) -> AssertionResult:
        timeout = args.get_duration("timeout", DEFAULT_TIMEOUT)
        servers = actx.cluster.servers
        min_healthy = args.get_int("min_healthy", default_quorum(len(servers)))
        if min_healthy < 1:
            raise InvalidArgumentError(f"min_healthy must be at least 1, got {min_healthy}")

        result = AssertionResult(assertion=self.name, attempts=1)
        result.details["total_servers"] = len(servers)
        result.details["min_healthy"] = min_healthy
        result.details["timeout"] = format_duration(timeout)

        start = time.monotonic()
        statuses: dict[str, str] = {}
        healthy_count = 0

        if servers:
            with ThreadPoolExecutor(max_workers=len(servers), thread_name_prefix="health") as pool:
                futures = [pool.submit(self._probe, ctx, actx, node, timeout) for node in servers]
                wait(futures)
            for future in futures:
                node_name, status = future.result()
                statuses[node_name] = status
                if status == "healthy":
                    healthy_count += 1

        # Every probe has finished; a cancelled parent still wins over the aggregate.
        ctx.raise_if_done()

        result.duration = time.monotonic() - start
        result.details["healthy_count"] = healthy_count
        result.details["server_statuses"] = statuses

        total = len(servers)
        if healthy_count >= min_healthy:
            result.success = True
            result.message = f"{healthy_count}/{total} servers healthy (quorum: {min_healthy})"
        else:
            result.message = (
                f"Only {healthy_count}/{total} servers healthy (need {min_healthy} for quorum)"
            )
        return result

    def _probe(self, ctx: RunContext, actx: AssertContext, node: Node, timeout: float) -> tuple[str, str]:
        address = actx.driver.control_address(node)
        token = actx.driver.control_token()
        with ctx.with_timeout(timeout) as check_ctx:
            try:
                healthy = check_ctx.call(
                    nomad_api.check_health, address, check_ctx.bound(timeout), token
                )
            except ChaosError as e:
                logger.debug("Health check of %s failed: %s", node.name, e)
                return node.name, f"error: {e}"
        return node.name, "healthy" if healthy else "unhealthy"
