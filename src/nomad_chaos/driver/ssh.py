"""SSH sessions backed by the system ``ssh`` client.

Each session keeps one multiplexed master connection (``ControlMaster``) so
consecutive commands on a node do not pay the handshake again. Commands run
as child processes raced against the run context; on cancellation the child
is killed, which tears down the remote command with it.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING, TextIO

from nomad_chaos.driver.base import CommandResult, Node, Session
from nomad_chaos.errors import RemoteFailureError

if TYPE_CHECKING:
    from nomad_chaos.context import RunContext

logger = logging.getLogger(__name__)

# ssh exits with 255 when the connection itself fails.
SSH_CONNECTION_ERROR = 255
REAP_TIMEOUT = 5.0


@dataclass(frozen=True)
class SSHOptions:
    user: str
    key_path: str
    port: int = 22
    connect_timeout: float = 10.0


class SSHSession(Session):
    """Remote control channel to one node."""

    def __init__(self, node: Node, options: SSHOptions) -> None:
        self.node = node
        self.options = options
        self._control_dir = tempfile.mkdtemp(prefix="nomad-chaos-ssh-")
        self._closed = False

    @classmethod
    def open(cls, ctx: RunContext, node: Node, options: SSHOptions) -> SSHSession:
        """Connect to *node*, bounded by the connect timeout and *ctx*."""
        session = cls(node, options)
        try:
            result = session.run(ctx, "true")
        except Exception:
            session.close()
            raise
        if not result.ok:
            session.close()
            raise RemoteFailureError(
                f"connecting to {node.name} ({node.public_ip}): {result.stderr.strip()}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return session

    @property
    def _control_path(self) -> str:
        return str(Path(self._control_dir) / "master")

    def _argv(self, command: str | None = None, *extra: str) -> list[str]:
        opts = self.options
        argv = [
            "ssh",
            "-i", opts.key_path,
            "-p", str(opts.port),
            "-o", "BatchMode=yes",
            "-o", "StrictHostKeyChecking=no",
            "-o", "UserKnownHostsFile=/dev/null",
            "-o", "LogLevel=ERROR",
            "-o", f"ConnectTimeout={max(1, int(opts.connect_timeout))}",
            "-o", "ControlMaster=auto",
            "-o", f"ControlPath={self._control_path}",
            "-o", "ControlPersist=60",
            *extra,
            f"{opts.user}@{self.node.public_ip}",
        ]
        if command is not None:
            argv.append(command)
        return argv

    def _spawn(self, command: str) -> subprocess.Popen[str]:
        try:
            return subprocess.Popen(
                self._argv(command),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            raise RemoteFailureError(f"starting ssh to {self.node.name}: {e}") from e

    def run(self, ctx: RunContext, command: str) -> CommandResult:
        logger.debug("ssh %s: %s", self.node.name, command)
        proc = self._spawn(command)
        stdout, stderr = ctx.call(proc.communicate, on_cancel=lambda: kill_and_reap(proc))
        if proc.returncode == SSH_CONNECTION_ERROR:
            raise RemoteFailureError(
                f"ssh to {self.node.name} failed: {stderr.strip()}",
                exit_code=proc.returncode,
                stderr=stderr,
            )
        return CommandResult(stdout=stdout, stderr=stderr, exit_code=proc.returncode)

    def run_privileged(self, ctx: RunContext, command: str) -> CommandResult:
        return self.run(ctx, f"sudo -n {command}")

    def stream(self, ctx: RunContext, command: str, stdout: TextIO, stderr: TextIO) -> int:
        proc = self._spawn(command)
        pumps = [
            threading.Thread(target=_pump, args=(proc.stdout, stdout), daemon=True),
            threading.Thread(target=_pump, args=(proc.stderr, stderr), daemon=True),
        ]
        for pump in pumps:
            pump.start()
        code = ctx.call(proc.wait, on_cancel=lambda: kill_and_reap(proc))
        for pump in pumps:
            pump.join(timeout=1.0)
        if code == SSH_CONNECTION_ERROR:
            raise RemoteFailureError(f"ssh to {self.node.name} failed", exit_code=code)
        return code

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            subprocess.run(
                self._argv(None, "-O", "exit"),
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=5,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired):
            logger.debug("Closing ssh master for %s failed", self.node.name, exc_info=True)
        shutil.rmtree(self._control_dir, ignore_errors=True)

    def __repr__(self) -> str:
        return f"SSHSession({self.options.user}@{self.node.public_ip}:{self.options.port})"


def _pump(source: IO[str] | None, sink: TextIO) -> None:
    if source is None:
        return
    for line in source:
        sink.write(line)
    source.close()


def quote(value: str) -> str:
    """Shell-quote a single argument for a remote command line."""
    return shlex.quote(value)


def kill_and_reap(proc: subprocess.Popen[str]) -> None:
    """Kill a child process and wait for it so no zombie is left behind."""
    proc.kill()
    try:
        proc.wait(timeout=REAP_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.warning("Process %d did not exit %.0fs after SIGKILL", proc.pid, REAP_TIMEOUT)
