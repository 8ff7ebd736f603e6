"""Out-of-band inject / heal.

``inject`` runs one action outside a scenario and returns a
:class:`FaultHandle` carrying the action's run state. The handle can be
saved to disk and loaded by a later process to ``heal`` the fault.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from nomad_chaos.actions import new_action_registry
from nomad_chaos.context import RunContext
from nomad_chaos.driver.base import ActionContext
from nomad_chaos.errors import InvalidArgumentError

if TYPE_CHECKING:
    from nomad_chaos.actions.base import Action
    from nomad_chaos.args import Args
    from nomad_chaos.driver.base import Cluster, Driver
    from nomad_chaos.registry import Registry

logger = logging.getLogger(__name__)

DEFAULT_HANDLE_PATH = ".chaos-fault.json"
ROLLBACK_TIMEOUT = 30.0


@dataclass
class FaultHandle:
    """Everything needed to reverse one injected fault."""

    action: str
    cluster: str
    state: dict[str, Any] = field(default_factory=dict)
    args: dict[str, Any] = field(default_factory=dict)
    injected_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "cluster": self.cluster,
            "state": self.state,
            "args": self.args,
            "injected_at": self.injected_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FaultHandle:
        if not data.get("action"):
            raise InvalidArgumentError("fault handle has no action")
        return cls(
            action=data["action"],
            cluster=data.get("cluster", ""),
            state=dict(data.get("state") or {}),
            args=dict(data.get("args") or {}),
            injected_at=float(data.get("injected_at") or 0.0),
        )

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: str | Path) -> FaultHandle:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise InvalidArgumentError(f"no fault to heal: {path} does not exist") from None
        except (OSError, ValueError) as e:
            raise InvalidArgumentError(f"reading fault handle {path}: {e}") from e
        if not isinstance(data, dict):
            raise InvalidArgumentError(f"fault handle {path} must contain an object")
        return cls.from_dict(data)


def inject(
    ctx: RunContext,
    action_name: str,
    driver: Driver,
    cluster: Cluster,
    args: Args,
    actions: Registry[Action] | None = None,
) -> FaultHandle:
    """Execute *action_name* once and return a handle for healing it.

    If the action fails it is rolled back on the spot, so a failed inject
    never leaves a fault without a handle.
    """
    registry = actions if actions is not None else new_action_registry()
    action = registry.get(action_name)
    actx = ActionContext(driver, cluster)

    logger.info("Injecting %s on cluster %s", action.name, cluster.name)
    try:
        action.execute(ctx, actx, args)
    except Exception:
        if actx.state:
            logger.warning("Inject of %s failed; rolling back recorded state", action.name)
            # The inject context may be the reason it failed.
            with RunContext(timeout=ROLLBACK_TIMEOUT) as undo_ctx:
                try:
                    action.rollback(undo_ctx, actx)
                except Exception as rollback_error:  # noqa: BLE001 - the inject error is the one to report
                    logger.warning(
                        "Rollback after failed inject of %s failed: %s", action.name, rollback_error
                    )
        raise

    return FaultHandle(
        action=action.name,
        cluster=cluster.name,
        state=dict(actx.state),
        args=args.to_dict(),
    )


def heal(
    ctx: RunContext,
    handle: FaultHandle,
    driver: Driver,
    cluster: Cluster,
    actions: Registry[Action] | None = None,
) -> None:
    """Roll back the fault described by *handle*."""
    registry = actions if actions is not None else new_action_registry()
    action = registry.get(handle.action)
    if handle.cluster and handle.cluster != cluster.name:
        logger.warning(
            "Fault was injected on cluster %s, healing on %s", handle.cluster, cluster.name
        )
    logger.info("Healing %s", action.name)
    action.rollback(ctx, ActionContext(driver, cluster, state=dict(handle.state)))
