"""Cancellable run contexts with deadlines.

A :class:`RunContext` bounds every blocking point of a scenario run: waits,
retry pauses, remote commands and HTTP polls. Contexts form a tree; when a
parent finishes (cancelled or past its deadline) every child finishes with
the same error, and a child's deadline is never later than its parent's.

Typical use::

    ctx = RunContext(timeout=300)
    with ctx.with_timeout(15) as step_ctx:
        if step_ctx.wait(5):
            raise step_ctx.error()
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, TypeVar

from nomad_chaos.errors import ChaosError, RunCancelledError, StepTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunContext:
    """Cancellation signal plus optional deadline for one unit of work."""

    def __init__(self, timeout: float | None = None, parent: RunContext | None = None) -> None:
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._error: ChaosError | None = None
        self._callbacks: list[Callable[[], None]] = []
        self._timer: threading.Timer | None = None
        self._unlink: Callable[[], None] | None = None

        deadline = None
        if timeout is not None:
            deadline = time.monotonic() + max(timeout, 0.0)
        if parent is not None and parent.deadline is not None:
            if deadline is None or parent.deadline < deadline:
                deadline = parent.deadline
        self.deadline: float | None = deadline

        if parent is not None:
            self._unlink = parent.on_done(lambda: self._finish(parent.error()))

        if timeout is not None and not self._done.is_set():
            self._timer = threading.Timer(max(timeout, 0.0), self._expire)
            self._timer.daemon = True
            self._timer.start()

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def with_timeout(self, seconds: float | None) -> RunContext:
        """Derive a child context that expires after *seconds* (or never, if None)."""
        return RunContext(timeout=seconds, parent=self)

    def child(self) -> RunContext:
        return RunContext(parent=self)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def done(self) -> bool:
        return self._done.is_set()

    def error(self) -> ChaosError | None:
        """Return why the context finished, or None while it is still live."""
        return self._error

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def bound(self, seconds: float) -> float:
        """Clamp *seconds* to the time left before the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return seconds
        return min(seconds, remaining)

    def raise_if_done(self) -> None:
        if self._error is not None:
            raise self._error

    def cancel(self, reason: str = "context cancelled") -> None:
        self._finish(RunCancelledError(reason))

    def close(self) -> None:
        """Release the timer and detach from the parent."""
        self._finish(RunCancelledError("context closed"))

    def on_done(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Invoke *callback* once the context finishes.

        Returns a function that unregisters the callback. If the context is
        already finished the callback runs immediately.
        """
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(callback)

                def remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return remove
        callback()
        return lambda: None

    # ------------------------------------------------------------------
    # Suspension points
    # ------------------------------------------------------------------

    def wait(self, seconds: float | None = None) -> bool:
        """Block up to *seconds*. Returns True if the context finished meanwhile."""
        if seconds is not None and seconds <= 0:
            return self._done.is_set()
        return self._done.wait(seconds)

    def sleep(self, seconds: float) -> None:
        """Sleep for *seconds*, raising the context error if interrupted."""
        if self.wait(seconds):
            raise self._error  # type: ignore[misc]

    def call(
        self,
        fn: Callable[..., T],
        *args: Any,
        on_cancel: Callable[[], None] | None = None,
        **kwargs: Any,
    ) -> T:
        """Run a blocking *fn* on a worker thread, racing it against this context.

        Returns the call's result if it completes first. If the context
        finishes first, *on_cancel* is invoked (to abort the remote side) and
        the context error is raised; the worker thread is abandoned.
        """
        self.raise_if_done()

        future: Future[T] = Future()

        def target() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as exc:  # noqa: BLE001 - re-raised in the caller
                future.set_exception(exc)

        wake = threading.Event()
        future.add_done_callback(lambda _f: wake.set())
        remove = self.on_done(wake.set)
        threading.Thread(target=target, daemon=True).start()
        try:
            wake.wait()
        finally:
            remove()

        if future.done():
            return future.result()

        if on_cancel is not None:
            try:
                on_cancel()
            except Exception:
                logger.warning("Abort after cancellation failed", exc_info=True)
        raise self._error  # type: ignore[misc]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _expire(self) -> None:
        self._finish(StepTimeoutError("context deadline exceeded"))

    def _finish(self, error: ChaosError | None) -> None:
        with self._lock:
            if self._done.is_set():
                return
            self._error = error or RunCancelledError("context cancelled")
            self._done.set()
            callbacks = self._callbacks
            self._callbacks = []
        if self._timer is not None:
            self._timer.cancel()
        if self._unlink is not None:
            self._unlink()
        for callback in callbacks:
            callback()

    def __enter__(self) -> RunContext:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        state = type(self._error).__name__ if self._error else "live"
        return f"RunContext(state={state}, remaining={self.remaining()})"
