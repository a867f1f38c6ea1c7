"""Control panel sync: a two-way binding between a UI widget and the state machine.

Pressing a value on the widget applies that state; every applied state
(whatever its source) is reflected back onto the widget.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Coroutine
from typing import Any, Protocol

from divisiblews._handles import Subscription, SubscriptionList
from divisiblews.state.events import StateChange, TransitionSource
from divisiblews.state.machine import StateMachine

_logger = logging.getLogger(__name__)

PressCallback = Callable[[str, str], Any]


class UiSurface(Protocol):
    """Device touch-panel API used by :class:`PanelSync`."""

    async def render(self, widget_id: str, label: str, values: tuple[str, ...]) -> None:
        ...

    async def update(self, widget_id: str, value: str) -> None:
        ...

    async def remove(self, widget_id: str) -> None:
        ...

    def on_press(self, callback: PressCallback) -> Subscription:
        """Register ``callback(widget_id, value)`` for widget presses."""
        ...


class LoggingSurface:
    """Headless surface: records what would have been shown and logs it."""

    def __init__(self) -> None:
        self.widgets: dict[str, tuple[str, tuple[str, ...]]] = {}
        self.values: dict[str, str] = {}
        self._callbacks: list[PressCallback] = []

    async def render(self, widget_id: str, label: str, values: tuple[str, ...]) -> None:
        _logger.info("Panel %s (%s): %s", widget_id, label, " / ".join(values))
        self.widgets[widget_id] = (label, values)

    async def update(self, widget_id: str, value: str) -> None:
        _logger.info("Panel %s -> %s", widget_id, value)
        self.values[widget_id] = value

    async def remove(self, widget_id: str) -> None:
        self.widgets.pop(widget_id, None)
        self.values.pop(widget_id, None)

    def on_press(self, callback: PressCallback) -> Subscription:
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return Subscription(_remove, name="panel-press")

    def press(self, widget_id: str, value: str) -> None:
        """Simulate a user press (CLI, tests)."""
        for callback in list(self._callbacks):
            callback(widget_id, value)


class PanelSync:
    def __init__(
        self,
        surface: UiSurface,
        machine: StateMachine,
        *,
        widget_id: str = "combineState",
        label: str = "Combine Room",
    ) -> None:
        self._surface = surface
        self._machine = machine
        self._widget_id = widget_id
        self._label = label
        self._subscriptions = SubscriptionList()
        self._tasks: set[asyncio.Task[None]] = set()
        self._pending: deque[str] = deque()
        self._drainer: asyncio.Task[None] | None = None
        self._active = False

    @property
    def widget_id(self) -> str:
        return self._widget_id

    @property
    def active(self) -> bool:
        return self._active

    async def activate(self) -> None:
        """Render the widget and start mirroring state in both directions."""
        if self._active:
            return
        self._active = True
        try:
            await self._surface.render(self._widget_id, self._label, self._machine.state_names)
        except Exception:
            _logger.warning("Unable to render panel %s", self._widget_id, exc_info=True)

        self._subscriptions.add(self._surface.on_press(self._on_press))
        self._subscriptions.add(self._machine.add_listener(self._on_state_change))

        current = self._machine.get_state()
        if current is not None:
            await self._push(current)

    async def deactivate(self) -> None:
        if not self._active:
            return
        self._active = False
        self._subscriptions.drain()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        try:
            await self._surface.remove(self._widget_id)
        except Exception:
            _logger.warning("Unable to remove panel %s", self._widget_id, exc_info=True)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_press(self, widget_id: str, value: str) -> None:
        if widget_id != self._widget_id:
            return
        _logger.info("Panel %s pressed: %s", widget_id, value)
        self._spawn(self._apply(value))

    async def _apply(self, value: str) -> None:
        try:
            await self._machine.set_state(value, source=TransitionSource.PANEL)
        except Exception:
            _logger.warning("Panel press %s could not be applied", value, exc_info=True)

    def _on_state_change(self, change: StateChange) -> None:
        # A single drain task pushes updates in transition order.
        self._pending.append(change.state)
        if self._drainer is None:
            self._drainer = asyncio.get_running_loop().create_task(self._drain())
            self._tasks.add(self._drainer)
            self._drainer.add_done_callback(self._tasks.discard)

    async def _drain(self) -> None:
        try:
            while self._pending:
                value = self._pending.popleft()
                await self._push(value)
        finally:
            self._drainer = None

    async def _push(self, value: str) -> None:
        try:
            await self._surface.update(self._widget_id, value)
        except Exception:
            _logger.warning("Unable to update panel %s to %s", self._widget_id, value, exc_info=True)
