"""Latch-aware timer bookkeeping for one capture run.

Every deferred action in the engine (URL polling, username retries,
heartbeats, cookie re-checks, the username wait window, delivery) goes
through a ``Scheduler`` so that live timers can be listed and cancelled
together. Guarded tasks check the ``CompletionLatch`` when they fire and
do nothing once it is set.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class CompletionLatch:
    """One-shot flag gating finalization."""

    def __init__(self) -> None:
        self._set = False

    @property
    def is_set(self) -> bool:
        return self._set

    def set(self) -> bool:
        """Set the latch. Returns True only for the call that set it."""
        if self._set:
            return False
        self._set = True
        return True


class ScheduledTask:
    """A named, cancellable deferred call.

    Args:
        name: Label used in logs and for ``Scheduler.cancel``.
        delay: Seconds between scheduling and firing.
        guarded: If True, firing is a no-op once the latch is set.
    """

    def __init__(self, name: str, delay: float, guarded: bool = True) -> None:
        self.name = name
        self.delay = delay
        self.guarded = guarded
        self.cancelled = False
        self.fired = False
        self._handle: asyncio.TimerHandle | None = None

    @property
    def active(self) -> bool:
        """True while the task is waiting to fire."""
        return not (self.cancelled or self.fired)

    def cancel(self) -> None:
        if self.active:
            self.cancelled = True
            if self._handle is not None:
                self._handle.cancel()

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "fired" if self.fired else "pending"
        return f"<ScheduledTask {self.name} {self.delay:.2f}s {state}>"


class Scheduler:
    """Owns every timer and in-flight coroutine of a capture run.

    Callbacks may be plain functions or return an awaitable; awaitables
    are run as tasks and tracked until they finish.

    Args:
        latch: The run's completion latch.
    """

    def __init__(self, latch: CompletionLatch) -> None:
        self._latch = latch
        self._tasks: list[ScheduledTask] = []
        self._inflight: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def pending(self) -> list[ScheduledTask]:
        """Tasks still waiting to fire."""
        return [t for t in self._tasks if t.active]

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def schedule(
        self,
        name: str,
        delay: float,
        callback: Callable[..., Any],
        *args: Any,
        guarded: bool = True,
    ) -> ScheduledTask:
        """Arrange for ``callback(*args)`` to run after *delay* seconds.

        Must be called from within a running event loop.
        """
        task = ScheduledTask(name, delay, guarded=guarded)
        if self._closed or (guarded and self._latch.is_set):
            task.cancelled = True
            return task

        loop = asyncio.get_running_loop()
        task._handle = loop.call_later(max(delay, 0.0), self._fire, task, callback, args)
        self._tasks = [t for t in self._tasks if t.active]
        self._tasks.append(task)
        return task

    def has_pending(self, name: str) -> bool:
        return any(task.name == name for task in self.pending)

    def cancel(self, name: str) -> int:
        """Cancel every pending task called *name*. Returns how many."""
        count = 0
        for task in self.pending:
            if task.name == name:
                task.cancel()
                count += 1
        return count

    def cancel_all(self, include_unguarded: bool = False) -> None:
        """Cancel pending guarded tasks (and unguarded ones, if asked) plus in-flight work."""
        for task in self.pending:
            if task.guarded or include_unguarded:
                task.cancel()
        for inflight in list(self._inflight):
            inflight.cancel()

    def close(self) -> None:
        """Cancel everything and refuse further scheduling."""
        self.cancel_all(include_unguarded=True)
        self._closed = True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fire(self, task: ScheduledTask, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        if not task.active:
            return
        task.fired = True
        if task.guarded and self._latch.is_set:
            logger.debug("Skipping %s: capture already completed", task.name)
            return
        try:
            result = callback(*args)
        except Exception:
            logger.exception("Scheduled task %s failed", task.name)
            return
        if inspect.isawaitable(result):
            self._track(asyncio.ensure_future(result), task.name)

    def _track(self, future: asyncio.Future[Any], name: str) -> None:
        self._inflight.add(future)

        def _done(fut: asyncio.Future[Any]) -> None:
            self._inflight.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                logger.warning("Scheduled task %s raised: %s", name, exc)

        future.add_done_callback(_done)
