"""Custom exception hierarchy for divisiblews."""

from __future__ import annotations


class DwsError(Exception):
    """Base exception for all divisiblews errors."""


class DwsConfigError(DwsError):
    """Invalid or missing configuration.

    Covers the roster, credentials, heartbeat settings and state
    definitions.  Raised during bootstrap only; the workspace tears
    itself down rather than running partially configured.
    """


class UnknownStateError(DwsError):
    """A state name that is not defined for the local role."""

    def __init__(self, state: str, *, role: str = "") -> None:
        self.state = state
        self.role = role
        super().__init__(f"State [{state}] was not found for role [{role}]")


class DwsTransportError(DwsError):
    """HTTP-level failure delivering a batch to a peer (network, auth, non-2xx)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        peer: str = "",
    ) -> None:
        self.status_code = status_code
        self.peer = peer
        super().__init__(message)


class PeerTimeoutError(DwsError, TimeoutError):
    """A correlated request to a peer went unanswered."""

    def __init__(self, message: str, *, role: str = "", timeout: float | None = None) -> None:
        self.role = role
        self.timeout = timeout
        super().__init__(message)


class MessageParseError(DwsError, ValueError):
    """Inbound payload does not follow the wire grammar or envelope format."""
