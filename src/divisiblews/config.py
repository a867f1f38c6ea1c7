"""Workspace configuration for divisiblews."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from divisiblews.exceptions import DwsConfigError
from divisiblews.models import Credential, DeviceDescriptor, HeartbeatSettings

_logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "divisibleWorkspaces"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise DwsConfigError(f"Config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise DwsConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise DwsConfigError(f"Config file {path} must hold a JSON object")
    return data


def _validation_summary(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ()))
        parts.append(f"{loc}: {error.get('msg', '')}" if loc else str(error.get("msg", "")))
    return "; ".join(parts)


@dataclasses.dataclass(frozen=True)
class DwsConfig:
    """Workspace configuration.

    Parameters
    ----------
    roster : tuple[DeviceDescriptor, ...]
        Every device in the pairing, in configuration order.
    credential : Credential
        Shared username/password used for all peer requests.
    heartbeat : HeartbeatSettings
        Liveness parameters for the canonical states.
    namespace : str
        Wire prefix; inbound payloads with another prefix are discarded.
    app_name : str
        Application name stamped into outbound envelopes.
    local_ip : str
        Address reported as the source of outbound envelopes.
    debounce_seconds : float
        Delay between the first enqueued payload for a peer and the flush
        of that peer's batch.
    request_timeout : float
        Per-request HTTP timeout in seconds.
    status_timeout : float
        Seconds to wait for a correlated status reply.
    allow_insecure_https : bool
        Skip TLS certificate verification (peers use self-signed certs).
    scheme : str
        URL scheme used to reach peers.
    endpoint_path : str
        Path of the peer endpoint receiving batches.
    listen_host, listen_port : str, int
        Where the local inbound endpoint listens.
    state_file : str or None
        JSON file holding the persisted state.  ``None`` keeps the state
        in memory only.
    default_state : str
        State applied at startup when nothing was persisted.
    panel_label : str
        Label of the control panel widget.
    tls_certfile, tls_keyfile : str or None
        Certificate chain and key served by the inbound endpoint.  Without
        a certificate the endpoint speaks plain HTTP.
    """

    roster: tuple[DeviceDescriptor, ...]
    credential: Credential
    heartbeat: HeartbeatSettings = dataclasses.field(default_factory=HeartbeatSettings)
    namespace: str = DEFAULT_NAMESPACE
    app_name: str = "divisiblews"
    local_ip: str = ""
    debounce_seconds: float = 0.3
    request_timeout: float = 5.0
    status_timeout: float = 5.5
    allow_insecure_https: bool = True
    scheme: str = "https"
    endpoint_path: str = "/putxml"
    listen_host: str = "0.0.0.0"
    listen_port: int = 8443
    state_file: str | None = None
    default_state: str = "Divided"
    panel_label: str = "Combine Room"
    tls_certfile: str | None = None
    tls_keyfile: str | None = None

    def __post_init__(self) -> None:
        if len(self.roster) < 2:
            raise DwsConfigError("Roster must contain at least two devices")
        serials = [d.serial for d in self.roster]
        if len(set(serials)) != len(serials):
            raise DwsConfigError("Roster contains duplicate serials")
        roles = [d.role.lower() for d in self.roster]
        if len(set(roles)) != len(roles):
            raise DwsConfigError("Roster contains duplicate roles")
        if not self.namespace or "-" in self.namespace:
            raise DwsConfigError(f"Invalid namespace {self.namespace!r}")
        if self.debounce_seconds < 0:
            raise DwsConfigError("debounce_seconds must not be negative")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], **overrides: Any) -> DwsConfig:
        """Build configuration from a JSON-like mapping.

        The mapping follows the macro configuration layout: ``codecs`` is
        the roster, ``credentials`` the shared credential and ``heartbeat``
        the liveness settings.  ``combinePanel.button.name`` becomes the
        panel label and ``lockPanelText`` is ignored.  Any other key must
        be a field name of :class:`DwsConfig`.
        """
        if not isinstance(data, Mapping):
            raise DwsConfigError("No config provided")

        raw = dict(data)
        codecs = raw.pop("codecs", None)
        credentials = raw.pop("credentials", raw.pop("authentication", None))
        heartbeat = raw.pop("heartbeat", None)
        combine_panel = raw.pop("combinePanel", None)
        if raw.pop("lockPanelText", None) is not None:
            _logger.debug("Ignoring lockPanelText; secondary lock panels are not rendered")

        if isinstance(combine_panel, Mapping):
            button = combine_panel.get("button")
            if isinstance(button, Mapping) and button.get("name") and "panel_label" not in raw:
                raw["panel_label"] = str(button["name"])

        if not isinstance(codecs, list) or not codecs:
            raise DwsConfigError("Config is missing the 'codecs' list")
        if not isinstance(credentials, Mapping):
            raise DwsConfigError("Config is missing 'credentials'")

        roster: list[DeviceDescriptor] = []
        for index, entry in enumerate(codecs):
            try:
                roster.append(DeviceDescriptor.model_validate(entry))
            except ValidationError as exc:
                raise DwsConfigError(f"Invalid codec config at index {index}: {_validation_summary(exc)}") from exc

        try:
            credential = Credential.model_validate(credentials)
        except ValidationError as exc:
            raise DwsConfigError(f"Invalid credentials config: {_validation_summary(exc)}") from exc

        kwargs: dict[str, Any] = {"roster": tuple(roster), "credential": credential}
        if heartbeat is not None:
            try:
                kwargs["heartbeat"] = HeartbeatSettings.model_validate(heartbeat)
            except ValidationError as exc:
                raise DwsConfigError(f"Invalid heartbeat config: {_validation_summary(exc)}") from exc

        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise DwsConfigError(f"Unknown config keys: {', '.join(unknown)}")
        kwargs.update(raw)
        kwargs.update(overrides)

        try:
            return cls(**kwargs)
        except TypeError as exc:
            raise DwsConfigError(f"Invalid config: {exc}") from exc

    @classmethod
    def from_file(cls, path: str | os.PathLike[str], **overrides: Any) -> DwsConfig:
        """Load configuration from a JSON file."""
        return cls.from_mapping(_read_config_file(Path(path)), **overrides)

    @classmethod
    def from_env(cls, **overrides: Any) -> DwsConfig:
        """Create configuration from environment variables.

        Reads the JSON file named by ``DWS_CONFIG_FILE`` and applies
        ``DWS_*`` overrides on top.  Explicit keyword arguments override
        environment values.
        """
        env = os.environ

        config_file = overrides.pop("config_file", None) or env.get("DWS_CONFIG_FILE")
        if not config_file:
            raise DwsConfigError("DWS_CONFIG_FILE is not set")
        data = _read_config_file(Path(config_file))

        # Credentials usually come from the environment rather than the file.
        username = env.get("DWS_USERNAME")
        password = env.get("DWS_PASSWORD")
        if username is not None or password is not None:
            credentials = dict(data.get("credentials") or {})
            if username is not None:
                credentials["username"] = username
            if password is not None:
                credentials["password"] = password
            data["credentials"] = credentials

        _ENV_CONFIG_MAP = {
            "DWS_NAMESPACE": "namespace",
            "DWS_APP_NAME": "app_name",
            "DWS_LOCAL_IP": "local_ip",
            "DWS_SCHEME": "scheme",
            "DWS_ENDPOINT_PATH": "endpoint_path",
            "DWS_LISTEN_HOST": "listen_host",
            "DWS_STATE_FILE": "state_file",
            "DWS_DEFAULT_STATE": "default_state",
            "DWS_TLS_CERTFILE": "tls_certfile",
            "DWS_TLS_KEYFILE": "tls_keyfile",
        }
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                data[field_name] = val

        port_env = env.get("DWS_LISTEN_PORT")
        if port_env is not None and "listen_port" not in overrides:
            try:
                data["listen_port"] = int(port_env)
            except ValueError as exc:
                raise DwsConfigError(f"DWS_LISTEN_PORT must be an integer, got {port_env!r}") from exc

        if "allow_insecure_https" not in overrides and "DWS_ALLOW_INSECURE_HTTPS" in env:
            data["allow_insecure_https"] = _env_bool(env.get("DWS_ALLOW_INSECURE_HTTPS"), True)

        return cls.from_mapping(data, **overrides)
