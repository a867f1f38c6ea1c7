"""Configuration records for divisiblews."""

from divisiblews.models.device import Credential, DeviceDescriptor
from divisiblews.models.settings import HeartbeatSettings

__all__ = [
    "Credential",
    "DeviceDescriptor",
    "HeartbeatSettings",
]
