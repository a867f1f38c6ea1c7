"""Role resolution: which roster entry is this device, and who are its peers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from divisiblews.exceptions import DwsConfigError
from divisiblews.models import DeviceDescriptor

_logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """Source of this device's hardware identity (serial number)."""

    async def get_identity(self) -> str:
        ...


class StaticIdentityProvider:
    """Identity fixed at construction (CLI flag, ``DWS_SERIAL``)."""

    def __init__(self, identity: str) -> None:
        self._identity = identity

    async def get_identity(self) -> str:
        return self._identity


class MachineIdIdentityProvider:
    """Derives a 12-character identity from ``/etc/machine-id``."""

    def __init__(self, path: str | Path = "/etc/machine-id") -> None:
        self._path = Path(path)

    async def get_identity(self) -> str:
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(None, self._path.read_text)
        except OSError as exc:
            raise DwsConfigError(f"Unable to read machine identity from {self._path}: {exc}") from exc
        identity = raw.strip()[:12].upper()
        if len(identity) != 12:
            raise DwsConfigError(f"Machine identity in {self._path} is too short")
        return identity


@dataclass(frozen=True)
class ResolvedRoles:
    """The roster partitioned into this device and its peers."""

    local: DeviceDescriptor
    peers: tuple[DeviceDescriptor, ...]

    @property
    def role(self) -> str:
        return self.local.role

    @property
    def is_primary(self) -> bool:
        return self.local.is_primary

    def peer(self, role: str) -> DeviceDescriptor:
        """Look a peer up by role (case-insensitive)."""
        wanted = role.lower()
        for peer in self.peers:
            if peer.role.lower() == wanted:
                return peer
        raise DwsConfigError(f"No peer with role [{role}] in roster")

    def has_peer(self, role: str) -> bool:
        wanted = role.lower()
        return any(peer.role.lower() == wanted for peer in self.peers)

    def counterparts(self) -> tuple[DeviceDescriptor, ...]:
        """Peers this device exchanges liveness with.

        The primary pairs with every other device; any other device pairs
        with the primary only (or with all peers when no primary exists).
        """
        if self.is_primary:
            return self.peers
        primaries = tuple(peer for peer in self.peers if peer.is_primary)
        return primaries or self.peers


def resolve(roster: Sequence[DeviceDescriptor], local_identity: str) -> ResolvedRoles:
    """Find this device in ``roster`` by hardware identity.

    Raises :class:`DwsConfigError` when no entry matches; nothing
    role-specific can run without a role, so callers treat it as fatal.
    """
    identity = local_identity.strip()
    matches = [device for device in roster if device.serial == identity]
    if not matches:
        raise DwsConfigError(f"Unable to match this device's serial [{identity}] with the configured roster")
    if len(matches) > 1:
        raise DwsConfigError(f"Serial [{identity}] appears more than once in the roster")

    me = matches[0]
    peers = tuple(device for device in roster if device is not me)
    _logger.info("This device's role is %s; peers: %s", me.role, ", ".join(p.role for p in peers) or "none")
    return ResolvedRoles(local=me, peers=peers)
