"""Actions — reversible fault injections."""

from __future__ import annotations

from nomad_chaos.registry import Registry

from .base import Action
from .kill_leader import KillLeaderAction
from .partition import PartitionAction

BUILTIN_ACTIONS: tuple[type[Action], ...] = (KillLeaderAction, PartitionAction)


def register_builtin_actions(registry: Registry[Action]) -> Registry[Action]:
    """Register every built-in action on *registry* and return it."""
    for action_cls in BUILTIN_ACTIONS:
        registry.register(action_cls())
    return registry


def new_action_registry() -> Registry[Action]:
    """A fresh registry holding the built-in actions."""
    return register_builtin_actions(Registry("action"))


__all__ = [
    "Action", "KillLeaderAction", "PartitionAction", "BUILTIN_ACTIONS",
    "register_builtin_actions", "new_action_registry",
]
