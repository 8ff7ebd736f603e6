"""Shared fixtures: an in-memory cluster and a driver that fakes remote commands."""

from __future__ import annotations

import json
import socketserver
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Iterator, TextIO

import pytest

from nomad_chaos.context import RunContext
from nomad_chaos.driver.base import Cluster, CommandResult, Driver, Node, NodeRole, Session
from nomad_chaos.errors import RemoteFailureError


def make_cluster(servers: int = 3, clients: int = 0, name: str = "test") -> Cluster:
    return Cluster(
        name=name,
        servers=[
            Node(f"server-{i}", f"192.168.1.{10 + i}", f"10.0.0.{10 + i}", NodeRole.SERVER, i)
            for i in range(servers)
        ],
        clients=[
            Node(f"client-{i}", f"192.168.1.{50 + i}", f"10.0.0.{50 + i}", NodeRole.CLIENT, i)
            for i in range(clients)
        ],
    )


class FakeSession(Session):
    """Interprets the handful of commands the built-in actions issue."""

    def __init__(self, driver: FakeDriver, node: Node) -> None:
        self.driver = driver
        self.node = node
        self.closed = False

    def run(self, ctx: RunContext, command: str) -> CommandResult:
        ctx.raise_if_done()
        return self._execute(command, privileged=False)

    def run_privileged(self, ctx: RunContext, command: str) -> CommandResult:
        ctx.raise_if_done()
        return self._execute(command, privileged=True)

    def stream(self, ctx: RunContext, command: str, stdout: TextIO, stderr: TextIO) -> int:
        result = self.run(ctx, command)
        stdout.write(result.stdout)
        stderr.write(result.stderr)
        return result.exit_code

    def close(self) -> None:
        self.closed = True

    def _execute(self, command: str, privileged: bool) -> CommandResult:
        driver = self.driver
        driver.commands.append((self.node.name, command))
        for pattern in driver.failures.get(self.node.name, ()):
            if pattern in command:
                if driver.raise_on_failure:
                    raise RemoteFailureError(f"injected failure: {command}")
                return CommandResult("", "injected failure", 1)

        if command.startswith("iptables "):
            _, op, rule = command.split(" ", 2)
            rules = driver.rules.setdefault(self.node.name, [])
            if op == "-I":
                rules.insert(0, rule)
                return CommandResult("", "", 0)
            if op == "-D":
                if rule not in rules:
                    return CommandResult("", "Bad rule (does a matching rule exist in that chain?)", 1)
                rules.remove(rule)
                return CommandResult("", "", 0)
        if command.startswith("pkill "):
            return CommandResult("", "", driver.pkill_exit)
        if command.startswith("systemctl restart"):
            driver.restarted.append(self.node.name)
            return CommandResult("", "", driver.restart_exit)
        return CommandResult(f"ran {command}\n", "", 0)


class FakeDriver(Driver):
    def __init__(self, cluster: Cluster, leader: str = "server-0") -> None:
        self.cluster = cluster
        self.leader = leader
        self.commands: list[tuple[str, str]] = []
        self.rules: dict[str, list[str]] = {}
        self.failures: dict[str, list[str]] = {}
        self.raise_on_failure = False
        self.pkill_exit = 0
        self.restart_exit = 0
        self.restarted: list[str] = []
        self.sessions: list[FakeSession] = []
        self.addresses: dict[str, str] = {}
        self.token = ""
        self.closed = False

    def discover(self, ctx: RunContext) -> Cluster:
        return self.cluster

    def open_session(self, ctx: RunContext, node: Node) -> Session:
        ctx.raise_if_done()
        session = FakeSession(self, node)
        self.sessions.append(session)
        return session

    def resolve_leader(self, ctx: RunContext, cluster: Cluster) -> Node:
        return cluster.server_by_name(self.leader)

    def control_address(self, node: Node) -> str:
        return self.addresses.get(node.name, f"http://{node.public_ip}:4646")

    def control_token(self) -> str:
        return self.token

    def close(self) -> None:
        self.closed = True

    def fail(self, node: str, pattern: str) -> None:
        """Make commands on *node* containing *pattern* exit 1."""
        self.failures.setdefault(node, []).append(pattern)

    def rule_count(self, node: str) -> int:
        return len(self.rules.get(node, []))


@pytest.fixture
def cluster() -> Cluster:
    return make_cluster()


@pytest.fixture
def driver(cluster: Cluster) -> FakeDriver:
    return FakeDriver(cluster)


@pytest.fixture
def ctx() -> Iterator[RunContext]:
    context = RunContext(timeout=30)
    yield context
    context.close()


@pytest.fixture
def cluster_factory() -> Callable[..., Cluster]:
    return make_cluster


@pytest.fixture
def driver_factory() -> Callable[..., FakeDriver]:
    return FakeDriver


class FakeNomad:
    """Answers served by the local Nomad HTTP fixture."""

    def __init__(self) -> None:
        self.leader_status = 200
        self.leader_body = json.dumps("10.0.0.11:4647")
        self.health_status = 200
        self.tokens: list[str | None] = []


def _nomad_handler(state: FakeNomad) -> type[BaseHTTPRequestHandler]:
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            state.tokens.append(self.headers.get("X-Nomad-Token"))
            if self.path == "/v1/status/leader":
                status, body = state.leader_status, state.leader_body
            elif self.path == "/v1/agent/health":
                status, body = state.health_status, "{}"
            else:
                status, body = 404, ""
            data = body.encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def log_message(self, format: str, *args: object) -> None:
            pass

    return Handler


class _GarbageHandler(socketserver.StreamRequestHandler):
    """Reads a request and answers with something that is not HTTP."""

    def handle(self) -> None:
        while self.rfile.readline() not in (b"\r\n", b"\n", b""):
            pass
        self.wfile.write(b"GARBAGE\r\n\r\n")


class _GarbageServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True


def _serve(server: socketserver.BaseServer) -> None:
    threading.Thread(target=server.serve_forever, daemon=True).start()


@pytest.fixture
def nomad() -> Iterator[tuple[FakeNomad, str]]:
    """A local Nomad HTTP API and its base address."""
    state = FakeNomad()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _nomad_handler(state))
    server.daemon_threads = True
    _serve(server)
    try:
        yield state, f"http://127.0.0.1:{server.server_port}/"
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def garbage_address() -> Iterator[str]:
    """Address of a server whose responses are not valid HTTP."""
    server = _GarbageServer(("127.0.0.1", 0), _GarbageHandler)
    _serve(server)
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
