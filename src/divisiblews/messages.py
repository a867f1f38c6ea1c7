"""Wire messages exchanged between paired devices.

Text form::

    <namespace>-<senderRole>-<eventType>[-<arg1>[-<arg2>]]

e.g. ``divisibleWorkspaces-Secondary-heartbeat`` or
``divisibleWorkspaces-Primary-changeState-Combined``.

:func:`decode` turns text into one of the message variants below and
:func:`encode` is its inverse.  Decoding never indexes into a split
string: the whole payload must match the grammar and the namespace
must match exactly, otherwise :class:`MessageParseError` is raised.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import ClassVar

from divisiblews.exceptions import MessageParseError

_TOKEN = r"[A-Za-z0-9_]+"
_ARG = r"[^-\s]+"

_GRAMMAR = re.compile(
    rf"^(?P<namespace>{_TOKEN})"
    rf"-(?P<sender>{_TOKEN})"
    rf"-(?P<event>[A-Za-z]\w*)"
    rf"(?:-(?P<arg1>{_ARG}))?"
    rf"(?:-(?P<arg2>{_ARG}))?$"
)
_ARG_RE = re.compile(rf"^{_ARG}$")


@dataclass(frozen=True)
class Heartbeat:
    """Liveness signal from ``sender``."""

    event_type: ClassVar[str] = "heartbeat"

    sender: str

    def args(self) -> tuple[str, ...]:
        return ()


@dataclass(frozen=True)
class ChangeState:
    """Ask the receiver to apply ``state``."""

    event_type: ClassVar[str] = "changeState"

    sender: str
    state: str

    def args(self) -> tuple[str, ...]:
        return (self.state,)


@dataclass(frozen=True)
class StatusRequest:
    """Ask the receiver for its current state; the reply echoes ``request_id``."""

    event_type: ClassVar[str] = "statusRequest"

    sender: str
    request_id: str

    def args(self) -> tuple[str, ...]:
        return (self.request_id,)


@dataclass(frozen=True)
class StatusReply:
    event_type: ClassVar[str] = "status"

    sender: str
    value: str
    request_id: str | None = None

    def args(self) -> tuple[str, ...]:
        if self.request_id is None:
            return (self.value,)
        return (self.value, self.request_id)


@dataclass(frozen=True)
class Notification:
    """Any other event (``standby-Off``, ``volumeChange-50`` ...)."""

    sender: str
    kind: str
    values: tuple[str, ...] = field(default_factory=tuple)

    @property
    def event_type(self) -> str:
        return self.kind

    def args(self) -> tuple[str, ...]:
        return self.values


Message = Heartbeat | ChangeState | StatusRequest | StatusReply | Notification

_RESERVED = {
    Heartbeat.event_type,
    ChangeState.event_type,
    StatusRequest.event_type,
    StatusReply.event_type,
}


def decode(text: str, namespace: str) -> Message:
    """Parse ``text`` into a message variant.

    Raises :class:`MessageParseError` for payloads outside ``namespace``
    or not following the grammar.
    """
    if not isinstance(text, str):
        raise MessageParseError(f"Payload must be text, got {type(text).__name__}")
    match = _GRAMMAR.match(text.strip())
    if match is None:
        raise MessageParseError(f"Payload does not follow the wire grammar: {text[:64]!r}")
    if match["namespace"] != namespace:
        raise MessageParseError(f"Payload namespace {match['namespace']!r} != {namespace!r}")

    sender = match["sender"]
    event = match["event"]
    args = tuple(a for a in (match["arg1"], match["arg2"]) if a is not None)

    if event == Heartbeat.event_type:
        if args:
            raise MessageParseError("heartbeat takes no arguments")
        return Heartbeat(sender=sender)
    if event == ChangeState.event_type:
        if len(args) != 1:
            raise MessageParseError("changeState takes exactly one argument")
        return ChangeState(sender=sender, state=args[0])
    if event == StatusRequest.event_type:
        if len(args) != 1:
            raise MessageParseError("statusRequest takes exactly one argument")
        return StatusRequest(sender=sender, request_id=args[0])
    if event == StatusReply.event_type:
        if not args:
            raise MessageParseError("status takes one or two arguments")
        return StatusReply(sender=sender, value=args[0], request_id=args[1] if len(args) > 1 else None)
    return Notification(sender=sender, kind=event, values=args)


def encode(message: Message, namespace: str) -> str:
    """Render ``message`` as wire text.

    Raises :class:`ValueError` when a field would break the grammar
    (e.g. an argument containing ``-``).
    """
    if not re.fullmatch(_TOKEN, namespace):
        raise ValueError(f"Invalid namespace {namespace!r}")
    if not re.fullmatch(_TOKEN, message.sender):
        raise ValueError(f"Invalid sender role {message.sender!r}")
    event = message.event_type
    if isinstance(message, Notification):
        if not re.fullmatch(r"[A-Za-z]\w*", event) or event in _RESERVED:
            raise ValueError(f"Invalid notification kind {event!r}")
    args = message.args()
    if len(args) > 2:
        raise ValueError("At most two arguments are allowed")
    for arg in args:
        if not _ARG_RE.match(arg):
            raise ValueError(f"Invalid argument {arg!r}")
    return "-".join((namespace, message.sender, event, *args))
