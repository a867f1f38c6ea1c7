"""Role-specific state machine.

A state is a name plus an entry action.  Applying a state:

1. rejects names not defined for this device's role (no side effects),
2. persists the name,
3. releases every handle registered by the previous state,
4. runs the new entry action,
5. notifies listeners.

The name is persisted before the entry action completes.  A crash in the
middle of an entry action therefore restores into a state whose side
effects were only partly applied; there is no rollback.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, TypeVar

from divisiblews._handles import OneShotTimer, Releasable, Subscription, SubscriptionList
from divisiblews.exceptions import UnknownStateError
from divisiblews.heartbeat import HeartbeatMonitor
from divisiblews.messages import ChangeState, Notification
from divisiblews.messaging import Messenger, NotificationCallback
from divisiblews.models import DeviceDescriptor
from divisiblews.roles import ResolvedRoles
from divisiblews.state.events import StateChange, TransitionSource
from divisiblews.state.store import STATE_KEY, PersistentStore

_logger = logging.getLogger(__name__)

H = TypeVar("H", bound=Releasable)

EntryAction = Callable[["StateContext"], Awaitable[None] | None]
StateListener = Callable[[StateChange], Any]


class _HeartbeatView:
    """Heartbeat monitor facade whose started entries belong to one state."""

    def __init__(self, context: StateContext, monitor: HeartbeatMonitor) -> None:
        self._context = context
        self._monitor = monitor

    def start_sending(self, role: str, period_minutes: float) -> Subscription:
        return self._context.track(self._monitor.start_sending(role, period_minutes))

    def stop_sending(self, role: str) -> None:
        self._monitor.stop_sending(role)

    def start_listening(self, role: str, fallback_state: str, timeout_minutes: float) -> Subscription:
        return self._context.track(self._monitor.start_listening(role, fallback_state, timeout_minutes))

    def stop_listening(self, role: str) -> None:
        self._monitor.stop_listening(role)

    def stop_all(self) -> None:
        self._monitor.stop_all()


class StateContext:
    """What an entry action can see and register.

    Handles registered through a context are released when the next state
    is applied.  A context whose state has already been replaced releases
    new registrations immediately.
    """

    def __init__(
        self,
        machine: StateMachine,
        *,
        state: str,
        previous: str | None,
        source: TransitionSource,
        generation: int,
    ) -> None:
        self._machine = machine
        self._generation = generation
        self.state = state
        self.previous = previous
        self.source = source
        self.heartbeat = _HeartbeatView(self, machine.heartbeat)

    @property
    def role(self) -> str:
        return self._machine.role

    @property
    def roles(self) -> ResolvedRoles:
        return self._machine.roles

    @property
    def peers(self) -> tuple[DeviceDescriptor, ...]:
        return self._machine.roles.peers

    @property
    def counterparts(self) -> tuple[DeviceDescriptor, ...]:
        return self._machine.roles.counterparts()

    @property
    def active(self) -> bool:
        """Whether this context's state is still the applied one."""
        return self._machine.generation == self._generation

    def track(self, handle: H) -> H:
        if not self.active:
            _logger.debug("State %s already replaced; releasing %r", self.state, handle)
            handle.release()
            return handle
        self._machine._subscriptions.add(handle)
        return handle

    def subscribe(self, kind: str, callback: NotificationCallback) -> Subscription:
        """Receive inbound notifications of ``kind`` while this state is applied."""
        return self.track(self._machine.messenger.subscribe(kind, callback))

    def call_later(self, delay: float, callback: Callable[[], None]) -> OneShotTimer:
        timer = OneShotTimer(asyncio.get_running_loop(), delay, callback)
        return self.track(timer)

    def notify(self, kind: str, *values: str, roles: Iterable[str] | None = None) -> None:
        """Send a ``kind`` notification to peers (all peers when ``roles`` is None)."""
        self._machine.messenger.broadcast(
            Notification(sender=self.role, kind=kind, values=tuple(values)),
            roles,
        )

    def propagate(self, state: str | None = None, *, roles: Iterable[str] | None = None) -> None:
        """Ask peers to apply ``state`` (this context's state by default)."""
        self._machine.messenger.broadcast(
            ChangeState(sender=self.role, state=state or self.state),
            roles,
        )


class StateMachine:
    """Applies the named states defined for this device's role."""

    def __init__(
        self,
        *,
        roles: ResolvedRoles,
        states: Mapping[str, EntryAction],
        store: PersistentStore,
        messenger: Messenger,
        heartbeat: HeartbeatMonitor,
    ) -> None:
        if not states:
            raise ValueError(f"No states defined for role {roles.role}")
        self._roles = roles
        self._states: dict[str, EntryAction] = dict(states)
        self._store = store
        self._messenger = messenger
        self._heartbeat = heartbeat
        self._subscriptions = SubscriptionList()
        self._listeners: list[tuple[Subscription, StateListener]] = []
        self._current: str | None = None
        self._generation = 0
        self._requested = 0
        self._write_lock = asyncio.Lock()

        heartbeat.bind(on_fallback=self._fallback)
        messenger.bind(
            on_change_state=self._remote_change,
            on_heartbeat=heartbeat.on_heartbeat,
            status_provider=self.get_state,
        )

    @property
    def role(self) -> str:
        return self._roles.role

    @property
    def roles(self) -> ResolvedRoles:
        return self._roles

    @property
    def messenger(self) -> Messenger:
        return self._messenger

    @property
    def heartbeat(self) -> HeartbeatMonitor:
        return self._heartbeat

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state_names(self) -> tuple[str, ...]:
        return tuple(self._states)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def get_state(self) -> str | None:
        return self._current

    def has_state(self, name: str) -> bool:
        return name in self._states

    def add_listener(self, listener: StateListener) -> Subscription:
        def _remove() -> None:
            self._listeners = [entry for entry in self._listeners if entry[0] is not subscription]

        subscription = Subscription(_remove, name="state-listener")
        self._listeners.append((subscription, listener))
        return subscription

    async def set_state(self, name: str, *, source: TransitionSource = TransitionSource.LOCAL) -> None:
        """Apply state ``name``.

        Raises :class:`UnknownStateError` (without side effects) for names
        not defined for this role.  Errors raised by the entry action
        propagate; the state is already persisted and current by then.

        Overlapping calls resolve to the most recent one: a call that is
        still persisting when a newer call starts is dropped.
        """
        action = self._states.get(name)
        if action is None:
            raise UnknownStateError(name, role=self.role)

        self._requested += 1
        token = self._requested
        async with self._write_lock:
            try:
                await self._store.write(STATE_KEY, name)
            except Exception:
                _logger.warning("Unable to persist state %s", name, exc_info=True)

        if token != self._requested:
            _logger.debug("State %s superseded by a newer transition; dropping", name)
            return

        previous = self._current
        self._generation += 1
        released = self._subscriptions.drain()
        self._current = name
        context = StateContext(
            self,
            state=name,
            previous=previous,
            source=source,
            generation=self._generation,
        )
        _logger.info("Applying state %s (from %s, source=%s, released %d handle(s))", name, previous, source, released)

        result = action(context)
        if inspect.isawaitable(result):
            await result

        if not context.active:
            _logger.debug("State %s was replaced while applying; skipping notification", name)
            return
        await self._notify(StateChange(state=name, previous=previous, role=self.role, source=source))

    async def restore_state(self, default_name: str) -> str:
        """Re-apply the persisted state, or ``default_name`` when none is stored."""
        try:
            stored = await self._store.read(STATE_KEY)
        except Exception:
            _logger.warning("Unable to read persisted state", exc_info=True)
            stored = None

        name = default_name
        if stored is not None:
            if stored in self._states:
                name = stored
            else:
                _logger.warning("Persisted state %s is not defined for %s; using %s", stored, self.role, default_name)
        _logger.info("Restoring state %s", name)
        await self.set_state(name, source=TransitionSource.RESTORE)
        return name

    def clear(self) -> int:
        """Release everything the current state registered."""
        self._generation += 1
        return self._subscriptions.drain()

    async def _notify(self, change: StateChange) -> None:
        for subscription, listener in list(self._listeners):
            if subscription.released:
                continue
            try:
                result = listener(change)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _logger.warning("State listener failed for %s", change.state, exc_info=True)

    async def _fallback(self, name: str) -> None:
        await self.set_state(name, source=TransitionSource.FALLBACK)

    async def _remote_change(self, name: str) -> None:
        await self.set_state(name, source=TransitionSource.REMOTE)
