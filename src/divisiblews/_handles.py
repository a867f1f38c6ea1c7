"""Releasable handles for timers and subscriptions.

Everything a state registers (heartbeat entries, event subscriptions,
timers) is represented by an object exposing one idempotent release
operation, so clearing a state can never double-release or leak.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

_logger = logging.getLogger(__name__)


class Releasable(Protocol):
    def release(self) -> None:
        ...


class Subscription:
    """Wraps an unsubscribe callback; ``release()`` runs it at most once."""

    __slots__ = ("_on_release", "_released", "name")

    def __init__(self, on_release: Callable[[], None] | None = None, *, name: str = "") -> None:
        self._on_release = on_release
        self._released = False
        self.name = name

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        callback = self._on_release
        self._on_release = None
        if callback is not None:
            callback()

    def __repr__(self) -> str:
        return f"Subscription(name={self.name!r}, released={self._released})"


class SubscriptionList:
    """Owned collection of handles, drained (not merely discarded) on clear."""

    def __init__(self) -> None:
        self._handles: list[Releasable] = []

    def __len__(self) -> int:
        return len(self._handles)

    def add(self, handle: Releasable) -> Releasable:
        self._handles.append(handle)
        return handle

    def drain(self) -> int:
        """Release every handle; returns how many were drained.

        A failing release is logged and does not stop the others.
        """
        count = 0
        while self._handles:
            handle = self._handles.pop()
            count += 1
            try:
                handle.release()
            except Exception:
                _logger.warning("Releasing %r failed", handle, exc_info=True)
        return count


class OneShotTimer:
    """A ``loop.call_later`` wrapper with an idempotent ``cancel()``."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay: float,
        callback: Callable[[], None],
    ) -> None:
        self._callback = callback
        self._fired = False
        self._cancelled = False
        self._handle: asyncio.TimerHandle | None = loop.call_later(delay, self._fire)
        self.deadline = loop.time() + delay

    @property
    def active(self) -> bool:
        return not (self._fired or self._cancelled)

    def _fire(self) -> None:
        self._handle = None
        if self._cancelled:
            return
        self._fired = True
        self._callback()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        handle = self._handle
        self._handle = None
        if handle is not None:
            handle.cancel()

    release = cancel


class RepeatingTimer:
    """Calls ``callback`` every ``interval`` seconds until cancelled.

    The next tick is scheduled before the callback runs, so a failing
    callback does not stop the timer.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        interval: float,
        callback: Callable[[], None],
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._cancelled = False
        self.ticks = 0
        self._handle: asyncio.TimerHandle | None = loop.call_later(interval, self._tick)

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def active(self) -> bool:
        return not self._cancelled

    def _tick(self) -> None:
        if self._cancelled:
            return
        self._handle = self._loop.call_later(self._interval, self._tick)
        self.ticks += 1
        try:
            self._callback()
        except Exception:
            _logger.warning("Repeating timer callback failed", exc_info=True)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        handle = self._handle
        self._handle = None
        if handle is not None:
            handle.cancel()

    release = cancel
