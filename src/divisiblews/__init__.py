"""divisiblews - keep the devices of a divisible room in a shared combined/divided state."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("divisiblews")
except PackageNotFoundError:
    __version__ = "0+local"
from divisiblews.accounts import AccountProvisioner, identify_missing_roles
from divisiblews.config import DwsConfig
from divisiblews.exceptions import (
    DwsConfigError,
    DwsError,
    DwsTransportError,
    MessageParseError,
    PeerTimeoutError,
    UnknownStateError,
)
from divisiblews.messages import ChangeState, Heartbeat, Notification, StatusReply, StatusRequest
from divisiblews.models import Credential, DeviceDescriptor, HeartbeatSettings
from divisiblews.panel import LoggingSurface, PanelSync, UiSurface
from divisiblews.presets import COMBINED, DIVIDED, canonical_states
from divisiblews.roles import IdentityProvider, ResolvedRoles, StaticIdentityProvider, resolve
from divisiblews.state.events import StateChange, TransitionSource
from divisiblews.state.machine import StateContext, StateMachine
from divisiblews.state.store import JsonFileStore, MemoryStore, PersistentStore
from divisiblews.workspace import Workspace

__all__ = [
    "__version__",
    "AccountProvisioner",
    "COMBINED",
    "ChangeState",
    "Credential",
    "DIVIDED",
    "DeviceDescriptor",
    "DwsConfig",
    "DwsConfigError",
    "DwsError",
    "DwsTransportError",
    "Heartbeat",
    "HeartbeatSettings",
    "IdentityProvider",
    "JsonFileStore",
    "LoggingSurface",
    "MemoryStore",
    "MessageParseError",
    "Notification",
    "PanelSync",
    "PeerTimeoutError",
    "PersistentStore",
    "ResolvedRoles",
    "StateChange",
    "StateContext",
    "StateMachine",
    "StaticIdentityProvider",
    "StatusReply",
    "StatusRequest",
    "TransitionSource",
    "UiSurface",
    "UnknownStateError",
    "Workspace",
    "canonical_states",
    "identify_missing_roles",
    "resolve",
]
