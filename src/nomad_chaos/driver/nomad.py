"""Driver for Nomad clusters provisioned with Terraform (or listed statically)."""

from __future__ import annotations

import json
import logging
import subprocess
from typing import TYPE_CHECKING, Any

from nomad_chaos import nomad_api
from nomad_chaos.config import DEFAULT_NOMAD_ADDRESS, Config, DiscoveryMethod
from nomad_chaos.driver.base import Cluster, Driver, Node, NodeRole, Session
from nomad_chaos.driver.ssh import SSHOptions, SSHSession, kill_and_reap
from nomad_chaos.errors import ConfigError, NotFoundError, RemoteFailureError

if TYPE_CHECKING:
    from nomad_chaos.context import RunContext

logger = logging.getLogger(__name__)

NOMAD_HTTP_PORT = 4646
LEADER_QUERY_TIMEOUT = 5.0


class NomadDriver(Driver):
    """Discovers nodes from Terraform outputs and reaches them over SSH."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.ssh_options = SSHOptions(
            user=config.ssh.user,
            key_path=config.ssh.key_path,
            port=config.ssh.port or 22,
            connect_timeout=float(config.ssh.connect_timeout or 10),
        )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self, ctx: RunContext) -> Cluster:
        method = self.config.discovery.method
        if method is DiscoveryMethod.TERRAFORM:
            outputs = self._terraform_outputs(ctx)
            cluster = cluster_from_terraform(self.config.cluster.name, outputs)
        elif method is DiscoveryMethod.STATIC:
            cluster = cluster_from_static(
                self.config.cluster.name,
                self.config.discovery.static.servers,
                self.config.discovery.static.clients,
            )
        else:
            raise ConfigError(f"unknown discovery method: {method}")
        cluster.validate()
        logger.info(
            "Discovered cluster %s: %d servers, %d clients",
            cluster.name, len(cluster.servers), len(cluster.clients),
        )
        return cluster

    def _terraform_outputs(self, ctx: RunContext) -> dict[str, Any]:
        working_dir = self.config.discovery.terraform.working_dir
        try:
            proc = subprocess.Popen(
                ["terraform", "output", "-json"],
                cwd=working_dir,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            raise RemoteFailureError(f"running terraform output: {e}") from e
        stdout, stderr = ctx.call(proc.communicate, on_cancel=lambda: kill_and_reap(proc))
        if proc.returncode != 0:
            raise RemoteFailureError(
                f"terraform output failed: {stderr.strip()}",
                exit_code=proc.returncode,
                stderr=stderr,
            )
        try:
            return json.loads(stdout)
        except ValueError as e:
            raise RemoteFailureError(f"parsing terraform output: {e}") from e

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def open_session(self, ctx: RunContext, node: Node) -> Session:
        return SSHSession.open(ctx, node, self.ssh_options)

    def control_address(self, node: Node) -> str:
        address = self.config.nomad.address
        if address and address != DEFAULT_NOMAD_ADDRESS:
            return address
        return f"http://{node.public_ip}:{NOMAD_HTTP_PORT}"

    def control_token(self) -> str:
        return self.config.nomad.token

    def resolve_leader(self, ctx: RunContext, cluster: Cluster) -> Node:
        """Ask servers in turn for the leader address and map it to a node."""
        last_error: Exception | None = None
        for server in cluster.servers:
            try:
                leader_addr = ctx.call(
                    nomad_api.query_leader,
                    self.control_address(server),
                    ctx.bound(LEADER_QUERY_TIMEOUT),
                    self.control_token(),
                )
            except RemoteFailureError as e:
                last_error = e
                continue
            if not leader_addr:
                last_error = RemoteFailureError(f"{server.name} reports no leader elected")
                continue

            leader_ip = leader_addr.rsplit(":", 1)[0]
            for candidate in cluster.servers:
                if candidate.private_ip == leader_ip:
                    return candidate
            raise NotFoundError(f"leader IP {leader_ip} not found in cluster nodes")

        if last_error is not None:
            raise RemoteFailureError(f"could not determine leader: {last_error}") from last_error
        raise RemoteFailureError("could not determine leader: no servers available")


def _output_list(outputs: dict[str, Any], key: str) -> list[str]:
    entry = outputs.get(key) or {}
    value = entry.get("value") if isinstance(entry, dict) else None
    return [str(v) for v in value] if isinstance(value, list) else []


def cluster_from_terraform(name: str, outputs: dict[str, Any]) -> Cluster:
    """Build a cluster from ``terraform output -json``.

    Reads ``server_public_ips`` / ``server_private_ips`` and, when present,
    ``client_public_ips`` / ``client_private_ips``.
    """
    roles: dict[NodeRole, list[Node]] = {}
    for role in (NodeRole.SERVER, NodeRole.CLIENT):
        public = _output_list(outputs, f"{role.value}_public_ips")
        private = _output_list(outputs, f"{role.value}_private_ips")
        if len(public) != len(private):
            raise RemoteFailureError(
                f"mismatch between {role.value} public IPs ({len(public)}) "
                f"and private IPs ({len(private)})"
            )
        roles[role] = [
            Node(name=f"{role.value}-{i}", public_ip=pub, private_ip=priv, role=role, index=i)
            for i, (pub, priv) in enumerate(zip(public, private))
        ]
    return Cluster(name=name, servers=roles[NodeRole.SERVER], clients=roles[NodeRole.CLIENT])


def cluster_from_static(name: str, servers: list[str], clients: list[str]) -> Cluster:
    """Build a cluster from ``public_ip`` or ``public_ip/private_ip`` entries."""

    def nodes(entries: list[str], role: NodeRole) -> list[Node]:
        out = []
        for i, entry in enumerate(entries):
            public, _, private = entry.partition("/")
            out.append(Node(
                name=f"{role.value}-{i}",
                public_ip=public.strip(),
                private_ip=(private or public).strip(),
                role=role,
                index=i,
            ))
        return out

    return Cluster(
        name=name,
        servers=nodes(servers, NodeRole.SERVER),
        clients=nodes(clients, NodeRole.CLIENT),
    )
