"""Driver — node discovery and remote access to the cluster under test."""

from .base import (
    ActionContext, AssertContext, Cluster, CommandResult, Driver, Node,
    NodeRole, Session,
)
from .nomad import NomadDriver, cluster_from_static, cluster_from_terraform
from .ssh import SSHOptions, SSHSession

__all__ = [
    "ActionContext", "AssertContext", "Cluster", "CommandResult", "Driver",
    "Node", "NodeRole", "Session",
    "NomadDriver", "cluster_from_static", "cluster_from_terraform",
    "SSHOptions", "SSHSession",
]
