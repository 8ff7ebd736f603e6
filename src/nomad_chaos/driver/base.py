"""Cluster model and the driver/session contracts the engine depends on."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TextIO

from nomad_chaos.errors import InvalidArgumentError, NotFoundError

if TYPE_CHECKING:
    from nomad_chaos.context import RunContext


class NodeRole(Enum):
    """Role of a node within the cluster."""

    SERVER = "server"
    CLIENT = "client"


@dataclass(frozen=True)
class Node:
    """A single machine of the cluster under test."""

    name: str  # e.g. "server-0"
    public_ip: str  # control-plane access (SSH, HTTP API)
    private_ip: str  # intra-cluster traffic
    role: NodeRole = NodeRole.SERVER
    index: int = 0
    labels: dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "public_ip": self.public_ip,
            "private_ip": self.private_ip,
            "role": self.role.value,
            "index": self.index,
            "labels": dict(self.labels),
        }


@dataclass(frozen=True)
class Cluster:
    """The discovered set of nodes. Immutable once discovery returns it."""

    name: str
    servers: tuple[Node, ...] = ()
    clients: tuple[Node, ...] = ()

    def __post_init__(self) -> None:
        # Accept lists from callers but store tuples.
        object.__setattr__(self, "servers", tuple(self.servers))
        object.__setattr__(self, "clients", tuple(self.clients))

    def all_nodes(self) -> list[Node]:
        return [*self.servers, *self.clients]

    def server_by_name(self, name: str) -> Node:
        for node in self.servers:
            if node.name == name:
                return node
        raise NotFoundError(f"server '{name}' not found")

    def server_by_index(self, index: int) -> Node:
        if index < 0 or index >= len(self.servers):
            raise NotFoundError(
                f"server index {index} out of range (have {len(self.servers)} servers)"
            )
        return self.servers[index]

    def node_by_private_ip(self, ip: str) -> Node:
        for node in self.all_nodes():
            if node.private_ip == ip:
                return node
        raise NotFoundError(f"no node with private address {ip}")

    def validate(self) -> None:
        """Check that names are unique and indices dense per role."""
        names = [n.name for n in self.all_nodes()]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise InvalidArgumentError(f"duplicate node names: {', '.join(duplicates)}")
        for role, nodes in ((NodeRole.SERVER, self.servers), (NodeRole.CLIENT, self.clients)):
            indices = sorted(n.index for n in nodes)
            if indices != list(range(len(nodes))):
                raise InvalidArgumentError(f"{role.value} indices are not dense from 0: {indices}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "servers": [n.to_dict() for n in self.servers],
            "clients": [n.to_dict() for n in self.clients],
        }


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a remote command. ``exit_code`` 0 means success."""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Session(ABC):
    """A remote control channel to one node."""

    @abstractmethod
    def run(self, ctx: RunContext, command: str) -> CommandResult:
        """Run *command*; a non-zero exit is returned, not raised."""

    @abstractmethod
    def run_privileged(self, ctx: RunContext, command: str) -> CommandResult:
        """Run *command* with elevated privilege."""

    @abstractmethod
    def stream(self, ctx: RunContext, command: str, stdout: TextIO, stderr: TextIO) -> int:
        """Run *command*, copying its output to the given sinks. Returns the exit code."""

    @abstractmethod
    def close(self) -> None: ...

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class Driver(ABC):
    """Node discovery and remote access for one cluster."""

    @abstractmethod
    def discover(self, ctx: RunContext) -> Cluster: ...

    @abstractmethod
    def open_session(self, ctx: RunContext, node: Node) -> Session: ...

    @abstractmethod
    def resolve_leader(self, ctx: RunContext, cluster: Cluster) -> Node:
        """Return the server currently holding leadership."""

    @abstractmethod
    def control_address(self, node: Node) -> str:
        """Base URL of the node's HTTP API, e.g. ``http://10.0.0.1:4646``."""

    def control_token(self) -> str:
        """ACL token sent with HTTP API requests (empty when ACLs are off)."""
        return ""

    def close(self) -> None:
        """Release driver resources."""

    def __enter__(self) -> Driver:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


@dataclass
class ActionContext:
    """Per-invocation context of one action.

    ``state`` carries whatever ``execute`` records for the matching
    ``rollback`` and belongs to that pair alone.
    """

    driver: Driver
    cluster: Cluster
    state: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AssertContext:
    """Read-only view handed to assertions."""

    driver: Driver
    cluster: Cluster
