"""nomad-chaos — fault-injection scenarios for Nomad server clusters.

A scenario is an ordered list of steps, each an *action* (inject a
fault), an *assertion* (validate cluster state) or a *wait*. The
:class:`~nomad_chaos.scenario.runner.Runner` executes the steps with
per-step timeouts, retries and on-error policies, and always tears
down: explicit cleanup steps first, then a rollback of every executed
action in reverse order.

Quick start::

    from nomad_chaos import RunContext, Runner, load_config, load_scenario
    from nomad_chaos.driver import NomadDriver

    config = load_config("chaos.yaml")
    with NomadDriver(config) as driver, RunContext(timeout=300) as ctx:
        cluster = driver.discover(ctx)
        report = Runner(driver, cluster).run(ctx, load_scenario("leader-failover.yaml"))
    print(report.success)
"""

__version__ = "0.1.0"

from nomad_chaos.args import Args, ArgValue
from nomad_chaos.config import Config, load_config
from nomad_chaos.context import RunContext
from nomad_chaos.errors import ChaosError
from nomad_chaos.registry import Registry
from nomad_chaos.report import Event, EventType, Report
from nomad_chaos.scenario import Runner, Scenario, Step, load_scenario

__all__ = [
    "Args",
    "ArgValue",
    "ChaosError",
    "Config",
    "Event",
    "EventType",
    "Registry",
    "Report",
    "RunContext",
    "Runner",
    "Scenario",
    "Step",
    "load_config",
    "load_scenario",
]
