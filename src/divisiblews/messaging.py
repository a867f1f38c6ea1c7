"""Peer messaging: debounced batching, correlated status requests, inbound dispatch.

Owns:
- one buffer per peer address, flushed as a single envelope after the
  debounce window
- waiters for correlated status replies
- routing of inbound payloads to the state machine, the heartbeat
  monitor and notification subscribers
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from divisiblews._envelope import EnvelopeSource, build_envelope
from divisiblews._handles import OneShotTimer, Subscription
from divisiblews._transport import PeerTransport
from divisiblews.exceptions import DwsTransportError, MessageParseError, PeerTimeoutError, UnknownStateError
from divisiblews.messages import (
    ChangeState,
    Heartbeat,
    Message,
    Notification,
    StatusReply,
    StatusRequest,
    decode,
    encode,
)
from divisiblews.models import DeviceDescriptor
from divisiblews.roles import ResolvedRoles

_logger = logging.getLogger(__name__)

#: Reported in status replies before any state has been applied.
UNKNOWN_STATUS = "Unknown"


@dataclass(slots=True)
class _MessageBuffer:
    """Payloads waiting for one peer, in enqueue order."""

    peer: DeviceDescriptor
    payloads: list[str] = field(default_factory=list)
    timer: OneShotTimer | None = None


@dataclass(slots=True)
class _StatusWaiter:
    """A pending ``request_status`` call.

    Matching rules: the reply must come from ``role``; when the reply
    carries a request id it must equal ``request_id``.
    """

    role: str
    request_id: str
    future: asyncio.Future[str]
    created_at: float = field(default_factory=time.monotonic)


ChangeStateHandler = Callable[[str], Awaitable[Any]]
HeartbeatHandler = Callable[[str], None]
StatusProvider = Callable[[], str | None]
NotificationCallback = Callable[[Notification], Any]


class Messenger:
    """Best-effort, at-most-once messaging between paired devices."""

    def __init__(
        self,
        *,
        roles: ResolvedRoles,
        transport: PeerTransport,
        namespace: str,
        source: EnvelopeSource,
        debounce_seconds: float = 0.3,
        status_timeout: float = 5.5,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._roles = roles
        self._transport = transport
        self._namespace = namespace
        self._source = source
        self._debounce = debounce_seconds
        self._status_timeout = status_timeout
        self._loop = loop
        self._buffers: dict[str, _MessageBuffer] = {}
        self._flush_tasks: set[asyncio.Task[bool]] = set()
        self._status_waiters: list[_StatusWaiter] = []
        self._subscribers: dict[str, list[tuple[Subscription, NotificationCallback]]] = {}
        self._on_change_state: ChangeStateHandler | None = None
        self._on_heartbeat: HeartbeatHandler | None = None
        self._status_provider: StatusProvider | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    @property
    def roles(self) -> ResolvedRoles:
        return self._roles

    @property
    def namespace(self) -> str:
        return self._namespace

    def bind(
        self,
        *,
        on_change_state: ChangeStateHandler | None = None,
        on_heartbeat: HeartbeatHandler | None = None,
        status_provider: StatusProvider | None = None,
    ) -> None:
        """Connect inbound routing to the state machine and heartbeat monitor."""
        if on_change_state is not None:
            self._on_change_state = on_change_state
        if on_heartbeat is not None:
            self._on_heartbeat = on_heartbeat
        if status_provider is not None:
            self._status_provider = status_provider

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def pending(self, peer: DeviceDescriptor) -> tuple[str, ...]:
        """Payloads currently buffered for ``peer``."""
        buffer = self._buffers.get(peer.netloc)
        return tuple(buffer.payloads) if buffer is not None else ()

    def send(self, peer: DeviceDescriptor, payload: str) -> None:
        """Queue ``payload`` for ``peer``; the batch is flushed after the debounce window."""
        if self._closed:
            _logger.debug("Messenger closed; dropping payload for %s", peer.role)
            return
        key = peer.netloc
        buffer = self._buffers.get(key)
        if buffer is not None:
            _logger.debug("Appending to buffer for %s (%d pending)", peer.role, len(buffer.payloads))
            buffer.payloads.append(payload)
            return

        _logger.debug("Creating new buffer for %s", peer.role)
        buffer = _MessageBuffer(peer=peer, payloads=[payload])
        self._buffers[key] = buffer
        buffer.timer = OneShotTimer(self._get_loop(), self._debounce, lambda: self._schedule_flush(key))

    def send_message(self, peer: DeviceDescriptor, message: Message) -> None:
        self.send(peer, encode(message, self._namespace))

    def send_to_role(self, role: str, message: Message) -> None:
        self.send_message(self._roles.peer(role), message)

    def broadcast(self, message: Message, roles: Iterable[str] | None = None) -> None:
        """Send ``message`` to the peers holding ``roles`` (all peers when ``None``)."""
        peers = self._roles.peers if roles is None else tuple(self._roles.peer(r) for r in roles)
        payload = encode(message, self._namespace)
        for peer in peers:
            self.send(peer, payload)

    def _schedule_flush(self, key: str) -> None:
        task = self._get_loop().create_task(self.flush(key))
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def flush(self, key: str | DeviceDescriptor) -> bool:
        """Deliver everything buffered for a peer as one batch.

        The buffer is detached before serialization, so payloads queued
        while the request is in flight start a fresh batch.  Failures are
        logged and the batch is dropped.  Returns whether delivery
        succeeded (``False`` also when nothing was pending).
        """
        if isinstance(key, DeviceDescriptor):
            key = key.netloc
        buffer = self._buffers.pop(key, None)
        if buffer is None:
            return False
        if buffer.timer is not None:
            buffer.timer.cancel()

        body = build_envelope(buffer.payloads, self._source)
        _logger.debug("Sending %d message(s) to %s: %s", len(buffer.payloads), buffer.peer.role, buffer.payloads)
        try:
            await self._transport.post_batch(buffer.peer, body)
        except DwsTransportError as exc:
            _logger.warning(
                "Dropping %d message(s) for %s: %s",
                len(buffer.payloads),
                buffer.peer.role,
                exc,
            )
            return False
        except Exception:
            _logger.warning("Unexpected failure sending to %s", buffer.peer.role, exc_info=True)
            return False
        return True

    async def aclose(self, *, flush: bool = True) -> None:
        """Stop accepting payloads; flush (or drop) what is buffered and wait for in-flight batches."""
        self._closed = True
        keys = list(self._buffers)
        if flush:
            await asyncio.gather(*(self.flush(key) for key in keys))
        else:
            for key in keys:
                buffer = self._buffers.pop(key)
                if buffer.timer is not None:
                    buffer.timer.cancel()
        if self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks), return_exceptions=True)
        for waiter in self._status_waiters:
            if not waiter.future.done():
                waiter.future.cancel()
        self._status_waiters.clear()

    # ------------------------------------------------------------------
    # Correlated requests
    # ------------------------------------------------------------------

    async def request_status(self, role: str, *, timeout: float | None = None) -> str:
        """Ask the peer holding ``role`` for its current state.

        Raises :class:`PeerTimeoutError` when no matching reply arrives in
        time.  The waiter is removed on every outcome, so a late reply is
        ignored.
        """
        peer = self._roles.peer(role)
        effective_timeout = timeout if timeout is not None else self._status_timeout
        fut: asyncio.Future[str] = self._get_loop().create_future()
        waiter = _StatusWaiter(role=peer.role.lower(), request_id=secrets.token_hex(4), future=fut)
        self._status_waiters.append(waiter)
        try:
            self.send_message(peer, StatusRequest(sender=self._roles.role, request_id=waiter.request_id))
            return await asyncio.wait_for(fut, effective_timeout)
        except TimeoutError as exc:
            raise PeerTimeoutError(
                f"No status reply from {peer.role} within {effective_timeout}s",
                role=peer.role,
                timeout=effective_timeout,
            ) from exc
        finally:
            if waiter in self._status_waiters:
                self._status_waiters.remove(waiter)

    def _resolve_status(self, reply: StatusReply) -> None:
        sender = reply.sender.lower()
        candidates = [w for w in self._status_waiters if w.role == sender and not w.future.done()]
        if reply.request_id is not None:
            candidates = [w for w in candidates if w.request_id == reply.request_id]
        if not candidates:
            _logger.debug("Status reply from %s matched no pending request", reply.sender)
            return
        # Uncorrelated replies resolve the oldest request only.
        waiter = min(candidates, key=lambda w: w.created_at)
        self._status_waiters.remove(waiter)
        waiter.future.set_result(reply.value)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def subscribe(self, kind: str, callback: NotificationCallback) -> Subscription:
        """Call ``callback`` for every inbound notification of ``kind``."""
        entries = self._subscribers.setdefault(kind, [])

        def _remove() -> None:
            current = self._subscribers.get(kind)
            if current is None:
                return
            self._subscribers[kind] = [entry for entry in current if entry[0] is not subscription]
            if not self._subscribers[kind]:
                self._subscribers.pop(kind, None)

        subscription = Subscription(_remove, name=f"notification:{kind}")
        entries.append((subscription, callback))
        return subscription

    async def dispatch_batch(self, payloads: Iterable[str]) -> None:
        for payload in payloads:
            await self.dispatch(payload)

    async def dispatch(self, text: str) -> None:
        """Route one inbound payload.  Never raises."""
        try:
            message = decode(text, self._namespace)
        except MessageParseError as exc:
            _logger.debug("Discarding inbound payload: %s", exc)
            return

        if message.sender.lower() == self._roles.role.lower():
            _logger.debug("Ignoring message from own role: %s", text)
            return

        try:
            await self._route(message)
        except Exception:
            _logger.warning("Handling inbound %s from %s failed", message.event_type, message.sender, exc_info=True)

    async def _route(self, message: Message) -> None:
        if isinstance(message, Heartbeat):
            if self._on_heartbeat is not None:
                self._on_heartbeat(message.sender)
            return

        if isinstance(message, ChangeState):
            _logger.info("Peer %s requested state %s", message.sender, message.state)
            if self._on_change_state is None:
                return
            try:
                await self._on_change_state(message.state)
            except UnknownStateError as exc:
                _logger.warning("Ignoring state change from %s: %s", message.sender, exc)
            return

        if isinstance(message, StatusRequest):
            if not self._roles.has_peer(message.sender):
                _logger.debug("Status request from unknown role %s", message.sender)
                return
            current = self._status_provider() if self._status_provider is not None else None
            self.send_to_role(
                message.sender,
                StatusReply(sender=self._roles.role, value=current or UNKNOWN_STATUS, request_id=message.request_id),
            )
            return

        if isinstance(message, StatusReply):
            self._resolve_status(message)
            return

        for subscription, callback in list(self._subscribers.get(message.kind, ())):
            if subscription.released:
                continue
            try:
                result = callback(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _logger.warning("Notification subscriber for %s failed", message.kind, exc_info=True)
