"""Heartbeat monitor: periodic liveness sends and deadline-based listening.

Two independent sub-protocols, each keyed by peer role:

* sending - a repeating timer enqueues one heartbeat to the peer per period;
* listening - a one-shot deadline, pushed back by every heartbeat received
  from that role.  When it expires the device falls back to a local state.

Heartbeats are never acknowledged.  The only failure signal is the local
fallback firing after a full missed window.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from divisiblews._handles import OneShotTimer, RepeatingTimer, Subscription
from divisiblews.messages import Heartbeat
from divisiblews.messaging import Messenger
from divisiblews.models import DeviceDescriptor

_logger = logging.getLogger(__name__)

_SECONDS_PER_MINUTE = 60.0

FallbackHandler = Callable[[str], Awaitable[Any]]


@dataclass(slots=True)
class HeartbeatSendEntry:
    role: str
    period_minutes: float
    timer: RepeatingTimer


@dataclass(slots=True)
class HeartbeatListenEntry:
    role: str
    fallback_state: str
    timeout_minutes: float
    timer: OneShotTimer


class HeartbeatMonitor:
    """Owns at most one send entry and one listen entry per peer role."""

    def __init__(
        self,
        *,
        messenger: Messenger,
        on_fallback: FallbackHandler | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._messenger = messenger
        self._on_fallback = on_fallback
        self._loop = loop
        self._send: dict[str, HeartbeatSendEntry] = {}
        self._listen: dict[str, HeartbeatListenEntry] = {}
        self._fallback_tasks: set[asyncio.Task[None]] = set()

    def bind(self, *, on_fallback: FallbackHandler) -> None:
        """Set the transition run when a listen deadline expires."""
        self._on_fallback = on_fallback

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def sending_roles(self) -> tuple[str, ...]:
        return tuple(entry.role for entry in self._send.values())

    @property
    def listening_roles(self) -> tuple[str, ...]:
        return tuple(entry.role for entry in self._listen.values())

    def listen_entry(self, role: str) -> HeartbeatListenEntry | None:
        return self._listen.get(role.lower())

    def send_entry(self, role: str) -> HeartbeatSendEntry | None:
        return self._send.get(role.lower())

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def start_sending(self, role: str, period_minutes: float) -> Subscription:
        """Send a heartbeat to ``role`` every ``period_minutes``, replacing any prior sender."""
        peer = self._messenger.roles.peer(role)
        key = peer.role.lower()
        self.stop_sending(key)

        _logger.info("Sending heartbeats to %s every %s min", peer.role, period_minutes)
        timer = RepeatingTimer(
            self._get_loop(),
            period_minutes * _SECONDS_PER_MINUTE,
            lambda: self._send_heartbeat(peer),
        )
        entry = HeartbeatSendEntry(role=peer.role, period_minutes=period_minutes, timer=timer)
        self._send[key] = entry

        def _release() -> None:
            if self._send.get(key) is entry:
                self.stop_sending(key)

        return Subscription(_release, name=f"heartbeat-send:{peer.role}")

    def stop_sending(self, role: str) -> None:
        entry = self._send.pop(role.lower(), None)
        if entry is None:
            return
        entry.timer.cancel()
        _logger.info("Stopped sending heartbeats to %s", entry.role)

    def _send_heartbeat(self, peer: DeviceDescriptor) -> None:
        _logger.debug("Sending heartbeat to %s", peer.role)
        self._messenger.send_message(peer, Heartbeat(sender=self._messenger.roles.role))

    # ------------------------------------------------------------------
    # Listening
    # ------------------------------------------------------------------

    def start_listening(self, role: str, fallback_state: str, timeout_minutes: float) -> Subscription:
        """Require a heartbeat from ``role`` at least every ``timeout_minutes``.

        Restarting for a role that is already monitored replaces the
        previous entry, including its fallback state and timeout.
        """
        peer = self._messenger.roles.peer(role)
        key = peer.role.lower()
        self.stop_listening(key)

        _logger.info(
            "Listening for heartbeats from %s (timeout %s min, fallback %s)",
            peer.role,
            timeout_minutes,
            fallback_state,
        )
        entry = HeartbeatListenEntry(
            role=peer.role,
            fallback_state=fallback_state,
            timeout_minutes=timeout_minutes,
            timer=self._arm_deadline(key, timeout_minutes),
        )
        self._listen[key] = entry

        def _release() -> None:
            if self._listen.get(key) is entry:
                self.stop_listening(key)

        return Subscription(_release, name=f"heartbeat-listen:{peer.role}")

    def stop_listening(self, role: str) -> None:
        entry = self._listen.pop(role.lower(), None)
        if entry is None:
            return
        entry.timer.cancel()
        _logger.info("Stopped listening for heartbeats from %s", entry.role)

    def _arm_deadline(self, key: str, timeout_minutes: float) -> OneShotTimer:
        return OneShotTimer(
            self._get_loop(),
            timeout_minutes * _SECONDS_PER_MINUTE,
            lambda: self._on_deadline(key),
        )

    def on_heartbeat(self, source_role: str) -> None:
        """Reset the full listen window for ``source_role``, if it is monitored."""
        key = source_role.lower()
        entry = self._listen.get(key)
        if entry is None:
            _logger.debug("Heartbeat from %s ignored; not listening", source_role)
            return
        _logger.debug("Received heartbeat from %s - resetting fallback timer", entry.role)
        entry.timer.cancel()
        entry.timer = self._arm_deadline(key, entry.timeout_minutes)

    def _on_deadline(self, key: str) -> None:
        # The entry goes before the transition runs, so a fallback state
        # that listens to the same role again keeps its new entry.
        entry = self._listen.pop(key, None)
        if entry is None:
            return
        _logger.warning(
            "Haven't heard from %s in %s min, falling back to %s",
            entry.role,
            entry.timeout_minutes,
            entry.fallback_state,
        )
        task = self._get_loop().create_task(self._run_fallback(entry))
        self._fallback_tasks.add(task)
        task.add_done_callback(self._fallback_tasks.discard)

    async def _run_fallback(self, entry: HeartbeatListenEntry) -> None:
        if self._on_fallback is None:
            _logger.warning("No fallback handler bound; staying in the current state")
            return
        try:
            await self._on_fallback(entry.fallback_state)
        except Exception:
            _logger.error("Fallback to %s failed", entry.fallback_state, exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def stop_all(self) -> None:
        for key in list(self._send):
            self.stop_sending(key)
        for key in list(self._listen):
            self.stop_listening(key)

    async def aclose(self) -> None:
        self.stop_all()
        if self._fallback_tasks:
            await asyncio.gather(*list(self._fallback_tasks), return_exceptions=True)
