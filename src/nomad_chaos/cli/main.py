"""
nomad-chaos CLI — command-line interface for chaos testing Nomad clusters.

Usage:
    nomad-chaos run raft/leader-failover --timeout 5m
    nomad-chaos inject kill-leader --arg signal=KILL
    nomad-chaos heal
    nomad-chaos assert leader-elected --within 15s
    nomad-chaos report results.json --format markdown
    nomad-chaos list
    nomad-chaos version
"""

import argparse
import json
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from nomad_chaos import __version__
from nomad_chaos.actions import new_action_registry
from nomad_chaos.args import Args, format_duration, parse_duration
from nomad_chaos.asserts import new_assertion_registry
from nomad_chaos.config import Config, load_config, load_config_from_dir
from nomad_chaos.context import RunContext
from nomad_chaos.driver.base import AssertContext, Cluster, Driver
from nomad_chaos.driver.nomad import NomadDriver
from nomad_chaos.errors import ChaosError
from nomad_chaos.heal import DEFAULT_HANDLE_PATH, FaultHandle, heal, inject
from nomad_chaos.report import FORMATTERS, Report, format_json, format_table, render
from nomad_chaos.scenario.loader import find_scenario, load_scenario, load_scenarios_from_dir
from nomad_chaos.scenario.runner import Runner


def make_driver(config: Config) -> Driver:
    return NomadDriver(config)


def _duration(text: str) -> float:
    try:
        return parse_duration(text)
    except ChaosError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _load_config(path: Optional[str]) -> Config:
    if path:
        return load_config(path)
    return load_config_from_dir(Path.cwd())


@contextmanager
def _interruptible(ctx: RunContext) -> Iterator[RunContext]:
    """Cancel *ctx* on Ctrl-C so teardown still runs."""
    if threading.current_thread() is not threading.main_thread():
        yield ctx
        return

    def on_interrupt(signum: int, frame: object) -> None:
        print("\nInterrupted, cancelling...", file=sys.stderr)
        ctx.cancel("interrupted")

    previous = signal.signal(signal.SIGINT, on_interrupt)
    try:
        yield ctx
    finally:
        signal.signal(signal.SIGINT, previous)


def _print_cluster(cluster: Cluster) -> None:
    print(f"Discovered {len(cluster.servers)} servers")
    for server in cluster.servers:
        print(f"  {server.name}: {server.public_ip} ({server.private_ip})")


def _scenario_search_paths(scenario_dir: Optional[str]) -> List[Path]:
    cwd = Path.cwd()
    paths = [Path(".")]
    if scenario_dir:
        paths.append(Path(scenario_dir))
    paths += [cwd / "scenarios", cwd / "chaos" / "scenarios"]
    return paths


def _write_or_print(output: str, path: Optional[str]) -> None:
    if path:
        Path(path).write_text(output, encoding="utf-8")
        print(f"Report written to {path}")
    else:
        print(output)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_run(parsed: argparse.Namespace) -> int:
    scenario_path = find_scenario(parsed.scenario, _scenario_search_paths(parsed.scenarios))
    scenario = load_scenario(scenario_path)

    print(f"Running scenario: {scenario.name}")
    if scenario.description:
        print(f"Description: {scenario.description}")
    print(f"Steps: {len(scenario.steps)}")
    print()

    config = _load_config(parsed.config)
    with make_driver(config) as driver, RunContext(timeout=parsed.timeout) as ctx:
        with _interruptible(ctx):
            cluster = driver.discover(ctx)
            if parsed.verbose:
                _print_cluster(cluster)
                print()
            runner = Runner(driver, cluster)
            report = runner.run(ctx, scenario)

    output = format_json(report) if parsed.json else format_table(report)
    _write_or_print(output, parsed.output)
    return 0 if report.success else 1


def _cmd_inject(parsed: argparse.Namespace) -> int:
    actions = new_action_registry()
    if parsed.action not in actions:
        print(f"Available actions: {', '.join(actions.list())}")
        print(f"Error: unknown action '{parsed.action}'", file=sys.stderr)
        return 1
    args = Args.parse(parsed.arg or [])

    config = _load_config(parsed.config)
    with make_driver(config) as driver, RunContext(timeout=parsed.timeout) as ctx:
        with _interruptible(ctx):
            cluster = driver.discover(ctx)
            if parsed.verbose:
                _print_cluster(cluster)
            print(f"Executing action: {parsed.action}")
            handle = inject(ctx, parsed.action, driver, cluster, args, actions=actions)

    handle.save(parsed.handle)
    print(f"Action completed; fault handle saved to {parsed.handle}")
    return 0


def _cmd_heal(parsed: argparse.Namespace) -> int:
    handle = FaultHandle.load(parsed.handle)

    config = _load_config(parsed.config)
    with make_driver(config) as driver, RunContext(timeout=parsed.timeout) as ctx:
        with _interruptible(ctx):
            cluster = driver.discover(ctx)
            print(f"Rolling back action: {handle.action}")
            heal(ctx, handle, driver, cluster)

    Path(parsed.handle).unlink()
    print("Rollback completed")
    return 0


def _cmd_assert(parsed: argparse.Namespace) -> int:
    assertions = new_assertion_registry()
    if parsed.assertion not in assertions:
        print(f"Available assertions: {', '.join(assertions.list())}")
        print(f"Error: unknown assertion '{parsed.assertion}'", file=sys.stderr)
        return 1
    assertion = assertions.get(parsed.assertion)
    args = Args.parse(parsed.arg or [])
    if parsed.within:
        args = args.merged(within=parsed.within)

    config = _load_config(parsed.config)
    with make_driver(config) as driver, RunContext(timeout=parsed.timeout) as ctx:
        with _interruptible(ctx):
            cluster = driver.discover(ctx)
            if parsed.verbose:
                _print_cluster(cluster)
            print(f"Running assertion: {assertion.name}")
            result = assertion.check(ctx, AssertContext(driver, cluster), args)

    if result.success:
        print(f"✓ PASS: {result.message}")
    else:
        print(f"✗ FAIL: {result.message}")
    if parsed.verbose:
        print(f"  Duration: {format_duration(round(result.duration, 3))}")
        print(f"  Attempts: {result.attempts}")
        for key, value in result.details.items():
            print(f"  {key}: {value}")
    return 0 if result.success else 1


def _cmd_report(parsed: argparse.Namespace) -> int:
    try:
        data = json.loads(Path(parsed.file).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        print(f"Error: reading report file: {e}", file=sys.stderr)
        return 1
    report = Report.from_dict(data)
    output = render(report, parsed.format)
    print(output, end="" if output.endswith("\n") else "\n")
    return 0


def _cmd_list(parsed: argparse.Namespace) -> int:
    print("Actions:")
    for action in sorted(new_action_registry().all(), key=lambda a: a.name):
        print(f"  {action.name:<20} {action.description}")
    print("Assertions:")
    for assertion in sorted(new_assertion_registry().all(), key=lambda a: a.name):
        print(f"  {assertion.name:<20} {assertion.description}")
    if parsed.scenarios:
        print("Scenarios:")
        for scenario in load_scenarios_from_dir(parsed.scenarios):
            print(f"  {scenario.name:<20} {scenario.description}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nomad-chaos",
        description="Chaos testing tool for Nomad clusters",
    )
    parser.add_argument("-c", "--config", help="config file (default: chaos.yaml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose output")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run a chaos scenario")
    run_parser.add_argument("scenario", help="scenario file, name or relative path")
    run_parser.add_argument("-t", "--timeout", type=_duration, default=300.0, help="scenario timeout")
    run_parser.add_argument("-s", "--scenarios", help="scenarios directory (default: ./scenarios)")
    run_parser.add_argument("-o", "--output", help="write report to file")
    run_parser.add_argument("--json", action="store_true", help="output report as JSON")

    inject_parser = subparsers.add_parser("inject", help="Inject a fault into the cluster")
    inject_parser.add_argument("action", help="action name")
    inject_parser.add_argument("-a", "--arg", action="append", help="action argument (key=value)")
    inject_parser.add_argument("-t", "--timeout", type=_duration, default=30.0, help="action timeout")
    inject_parser.add_argument("--handle", default=DEFAULT_HANDLE_PATH, help="where to save the fault handle")

    heal_parser = subparsers.add_parser("heal", help="Roll back a previously injected fault")
    heal_parser.add_argument("-t", "--timeout", type=_duration, default=30.0, help="rollback timeout")
    heal_parser.add_argument("--handle", default=DEFAULT_HANDLE_PATH, help="fault handle written by inject")

    assert_parser = subparsers.add_parser("assert", help="Run an assertion against the cluster")
    assert_parser.add_argument("assertion", help="assertion name")
    assert_parser.add_argument("-a", "--arg", action="append", help="assertion argument (key=value)")
    assert_parser.add_argument("-t", "--timeout", type=_duration, default=30.0, help="assertion timeout")
    assert_parser.add_argument("--within", type=_duration, default=0.0, help="maximum time to wait for the assertion to pass")

    report_parser = subparsers.add_parser("report", help="Display or convert a saved JSON report")
    report_parser.add_argument("file", help="JSON report file")
    report_parser.add_argument("-f", "--format", choices=sorted(FORMATTERS), default="table", help="output format")

    list_parser = subparsers.add_parser("list", help="List actions, assertions and scenarios")
    list_parser.add_argument("-s", "--scenarios", help="scenarios directory to list")

    subparsers.add_parser("version", help="Show version")
    return parser


_COMMANDS = {
    "run": _cmd_run,
    "inject": _cmd_inject,
    "heal": _cmd_heal,
    "assert": _cmd_assert,
    "report": _cmd_report,
    "list": _cmd_list,
}


def cli(args: Optional[List[str]] = None) -> int:
    """Main CLI entry point. Returns exit code."""
    parser = build_parser()
    parsed = parser.parse_args(args)

    logging.basicConfig(
        level=logging.INFO if parsed.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if parsed.command == "version":
        print(f"nomad-chaos {__version__}")
        return 0

    handler = _COMMANDS.get(parsed.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(parsed)
    except ChaosError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    sys.exit(cli())


if __name__ == "__main__":
    main()
