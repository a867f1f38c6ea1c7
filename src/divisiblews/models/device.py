"""Roster records: device descriptors and the shared credential."""

from __future__ import annotations

import re

import aiohttp
from pydantic import Field, field_validator

from divisiblews.models._base import DwsBaseModel

_IPV4_RE = re.compile(r"^(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]\d|\d)(?:\.(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]\d|\d)){3}$")
_SERIAL_RE = re.compile(r"^[a-zA-Z0-9]{12}$")
_ROLE_RE = re.compile(r"^[A-Za-z0-9_]+$")


class DeviceDescriptor(DwsBaseModel):
    """One paired device.

    Parameters
    ----------
    role : str
        Logical role within the pairing (e.g. ``"Primary"``).  Travels on
        the wire, so it may only contain letters, digits and underscores.
    ip : str
        Dotted IPv4 address the device's endpoint listens on.
    serial : str
        12-character hardware serial, the device's unique identity.
    port : int or None
        Port of the device's endpoint; ``None`` uses the scheme default.
    """

    role: str
    ip: str
    serial: str = Field(..., description="Hardware identity")
    port: int | None = Field(default=None, ge=1, le=65535)

    @field_validator("role")
    @classmethod
    def _check_role(cls, value: str) -> str:
        if not _ROLE_RE.match(value):
            raise ValueError(f"role must match [A-Za-z0-9_]+, got {value!r}")
        return value

    @field_validator("ip")
    @classmethod
    def _check_ip(cls, value: str) -> str:
        if not _IPV4_RE.match(value):
            raise ValueError(f"ip must be a dotted IPv4 address, got {value!r}")
        return value

    @field_validator("serial")
    @classmethod
    def _check_serial(cls, value: str) -> str:
        if not _SERIAL_RE.match(value):
            raise ValueError("serial must be 12 alphanumeric characters")
        return value

    @property
    def netloc(self) -> str:
        return self.ip if self.port is None else f"{self.ip}:{self.port}"

    @property
    def is_primary(self) -> bool:
        return self.role.lower() == "primary"


class Credential(DwsBaseModel):
    """Shared secret used to authenticate every peer request."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, repr=False)

    def basic_auth(self) -> aiohttp.BasicAuth:
        return aiohttp.BasicAuth(self.username, self.password)

    def matches(self, auth: aiohttp.BasicAuth | None) -> bool:
        """Whether a decoded ``Authorization`` header carries this credential."""
        if auth is None:
            return False
        return auth.login == self.username and auth.password == self.password
