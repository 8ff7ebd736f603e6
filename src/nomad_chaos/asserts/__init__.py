"""Assertions — non-mutating validation checks."""

from __future__ import annotations

from nomad_chaos.registry import Registry

from .api_healthy import NomadAPIHealthyAssertion
from .base import Assertion, AssertionResult
from .leader_elected import LeaderElectedAssertion

BUILTIN_ASSERTIONS: tuple[type[Assertion], ...] = (
    LeaderElectedAssertion,
    NomadAPIHealthyAssertion,
)


def register_builtin_assertions(registry: Registry[Assertion]) -> Registry[Assertion]:
    """Register every built-in assertion on *registry* and return it."""
    for assertion_cls in BUILTIN_ASSERTIONS:
        registry.register(assertion_cls())
    return registry


def new_assertion_registry() -> Registry[Assertion]:
    """A fresh registry holding the built-in assertions."""
    return register_builtin_assertions(Registry("assertion"))


__all__ = [
    "Assertion", "AssertionResult", "LeaderElectedAssertion",
    "NomadAPIHealthyAssertion", "BUILTIN_ASSERTIONS",
    "register_builtin_assertions", "new_assertion_registry",
]
