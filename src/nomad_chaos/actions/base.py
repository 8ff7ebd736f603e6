"""Action contract — reversible fault injections."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nomad_chaos.args import Args
    from nomad_chaos.context import RunContext
    from nomad_chaos.driver.base import ActionContext


class Action(ABC):
    """A fault injection that can be executed and rolled back.

    ``execute`` must record in ``actx.state`` everything ``rollback`` needs;
    ``rollback`` never sees the original arguments.
    """

    name: str = ""
    description: str = ""

    @abstractmethod
    def execute(self, ctx: RunContext, actx: ActionContext, args: Args) -> None:
        """Inject the fault.

        Raises:
            InvalidArgumentError: required arguments are missing or malformed.
            NotFoundError: a referenced node does not exist.
            RemoteFailureError: a remote command failed.
        """

    @abstractmethod
    def rollback(self, ctx: RunContext, actx: ActionContext) -> None:
        """Best-effort reversal of what ``execute`` recorded. May raise."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
