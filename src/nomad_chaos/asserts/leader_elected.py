"""leader-elected — poll servers until one reports an elected leader."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from nomad_chaos import nomad_api
from nomad_chaos.args import format_duration
from nomad_chaos.asserts.base import Assertion, AssertionResult
from nomad_chaos.errors import RemoteFailureError

if TYPE_CHECKING:
    from nomad_chaos.args import Args
    from nomad_chaos.context import RunContext
    from nomad_chaos.driver.base import AssertContext

logger = logging.getLogger(__name__)

DEFAULT_WITHIN = 15.0
DEFAULT_POLL = 1.0
QUERY_TIMEOUT = 2.0


class LeaderElectedAssertion(Assertion):
    name = "leader-elected"
    description = "Verify that a Nomad leader is elected within the specified timeout"

    def check(self, ctx: RunContext, actx: AssertContext, args: Args) -> AssertionResult:
        within = args.get_duration("within", DEFAULT_WITHIN)
        poll = args.get_duration("poll", DEFAULT_POLL)

        result = AssertionResult(assertion=self.name)
        result.details["timeout"] = format_duration(within)
        result.details["poll_interval"] = format_duration(poll)

        token = actx.driver.control_token()
        start = time.monotonic()
        deadline = start + within
        attempts = 0

        while time.monotonic() < deadline:
            attempts += 1
            for server in actx.cluster.servers:
                address = actx.driver.control_address(server)
                try:
                    leader = ctx.call(
                        nomad_api.query_leader, address, ctx.bound(QUERY_TIMEOUT), token
                    )
                except RemoteFailureError as e:
                    logger.debug("Leader query to %s failed: %s", server.name, e)
                    continue
                if leader:
                    result.success = True
                    result.message = f"Leader elected: {leader}"
                    result.duration = time.monotonic() - start
                    result.attempts = attempts
                    result.details["leader"] = leader
                    result.details["responding_server"] = server.name
                    return result

            pause = min(poll, max(0.0, deadline - time.monotonic()))
            if ctx.wait(pause):
                logger.info("leader-elected interrupted after %d attempts", attempts)
                ctx.raise_if_done()

        result.message = (
            f"No leader elected within {format_duration(within)} after {attempts} attempts"
        )
        result.duration = time.monotonic() - start
        result.attempts = attempts
        return result
