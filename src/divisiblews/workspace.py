"""Workspace: wires one device's components together and owns their lifecycle."""

from __future__ import annotations

import logging
import ssl
from collections.abc import Mapping
from typing import Any

import aiohttp

from divisiblews._envelope import EnvelopeSource
from divisiblews._redact import redact_for_log
from divisiblews._transport import HttpPeerTransport, PeerTransport
from divisiblews.accounts import REQUIRED_ROLES, AccountProvisioner
from divisiblews.config import DwsConfig
from divisiblews.exceptions import DwsConfigError, DwsError
from divisiblews.heartbeat import HeartbeatMonitor
from divisiblews.messaging import Messenger
from divisiblews.panel import LoggingSurface, PanelSync, UiSurface
from divisiblews.roles import IdentityProvider, MachineIdIdentityProvider, ResolvedRoles, resolve
from divisiblews.server import InboundServer
from divisiblews.state.events import TransitionSource
from divisiblews.state.machine import EntryAction, StateMachine
from divisiblews.state.store import JsonFileStore, MemoryStore, PersistentStore

_logger = logging.getLogger(__name__)


def _states_for_role(states: Mapping[str, Mapping[str, EntryAction]], role: str) -> Mapping[str, EntryAction] | None:
    if role in states:
        return states[role]
    wanted = role.lower()
    for key, value in states.items():
        if key.lower() == wanted:
            return value
    return None


def _build_ssl_context(config: DwsConfig) -> ssl.SSLContext | None:
    if not config.tls_certfile:
        return None
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    try:
        context.load_cert_chain(config.tls_certfile, config.tls_keyfile)
    except (OSError, ssl.SSLError) as exc:
        raise DwsConfigError(f"Unable to load TLS certificate {config.tls_certfile}: {exc}") from exc
    return context


class Workspace:
    """One device of a divisible room.

    Usage::

        async with Workspace(config, canonical_states(config.roster, config.heartbeat)) as ws:
            await ws.set_state("Combined")

    ``start()`` fails closed: any bootstrap error tears down what was
    already started and is re-raised.
    """

    def __init__(
        self,
        config: DwsConfig,
        states: Mapping[str, Mapping[str, EntryAction]],
        *,
        identity: IdentityProvider | None = None,
        store: PersistentStore | None = None,
        surface: UiSurface | None = None,
        transport: PeerTransport | None = None,
        provisioner: AccountProvisioner | None = None,
        http_session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._states = states
        self._identity = identity or MachineIdIdentityProvider()
        self._store = store
        self._surface = surface
        self._transport = transport
        self._provisioner = provisioner
        self._external_session = http_session is not None
        self._http_session = http_session

        self._roles: ResolvedRoles | None = None
        self._messenger: Messenger | None = None
        self._heartbeat: HeartbeatMonitor | None = None
        self._machine: StateMachine | None = None
        self._server: InboundServer | None = None
        self._panel: PanelSync | None = None
        self._started = False
        self._closed = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> Workspace:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> DwsConfig:
        return self._config

    @property
    def role(self) -> str:
        return self._require_machine().role

    @property
    def roles(self) -> ResolvedRoles:
        if self._roles is None:
            raise DwsError("Workspace not started")
        return self._roles

    @property
    def machine(self) -> StateMachine:
        return self._require_machine()

    @property
    def messenger(self) -> Messenger | None:
        return self._messenger

    @property
    def server(self) -> InboundServer | None:
        return self._server

    @property
    def panel(self) -> PanelSync | None:
        return self._panel

    @property
    def closed(self) -> bool:
        return self._closed

    def get_state(self) -> str | None:
        return self._machine.get_state() if self._machine is not None else None

    def _require_machine(self) -> StateMachine:
        if self._machine is None:
            raise DwsError("Workspace not started. Use 'async with Workspace(...) as ws:'")
        return self._machine

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def _validate_roster_states(self) -> None:
        missing = [d.role for d in self._config.roster if not _states_for_role(self._states, d.role)]
        if missing:
            raise DwsConfigError(f"No states defined for role(s): {', '.join(missing)}")

    def _validate_local_states(self, states: Mapping[str, EntryAction], role: str) -> None:
        if self._config.default_state not in states:
            raise DwsConfigError(f"Default state [{self._config.default_state}] is not defined for role [{role}]")
        heartbeat = self._config.heartbeat
        if heartbeat.enabled and heartbeat.fallback_state not in states:
            raise DwsConfigError(f"Fallback state [{heartbeat.fallback_state}] is not defined for role [{role}]")

    async def start(self) -> None:
        """Bring the device up and restore its last persisted state."""
        if self._closed:
            raise DwsError("Workspace already closed")
        if self._started:
            return
        self._started = True
        _logger.debug("Starting workspace with config %s", redact_for_log(self._config))
        try:
            await self._start()
        except DwsConfigError as exc:
            _logger.error("Configuration problem, deactivating: %s", exc)
            await self.aclose()
            raise
        except BaseException:
            _logger.exception("Workspace failed to start; deactivating")
            await self.aclose()
            raise

    async def _start(self) -> None:
        config = self._config
        self._validate_roster_states()

        identity = await self._identity.get_identity()
        roles = resolve(config.roster, identity)
        self._roles = roles
        local_states = _states_for_role(self._states, roles.role)
        assert local_states is not None  # noqa: S101
        self._validate_local_states(local_states, roles.role)

        transport = self._transport
        if transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            transport = HttpPeerTransport(config, self._http_session)

        store = self._store
        if store is None:
            store = JsonFileStore(config.state_file) if config.state_file else MemoryStore()

        self._messenger = Messenger(
            roles=roles,
            transport=transport,
            namespace=config.namespace,
            source=EnvelopeSource(app=config.app_name, ipv4=config.local_ip),
            debounce_seconds=config.debounce_seconds,
            status_timeout=config.status_timeout,
        )
        self._heartbeat = HeartbeatMonitor(messenger=self._messenger)
        self._machine = StateMachine(
            roles=roles,
            states=local_states,
            store=store,
            messenger=self._messenger,
            heartbeat=self._heartbeat,
        )

        self._server = InboundServer(
            self._messenger,
            config.credential,
            path=config.endpoint_path,
            ssl_context=_build_ssl_context(config),
        )
        try:
            await self._server.start(config.listen_host, config.listen_port)
        except OSError as exc:
            raise DwsConfigError(f"Unable to listen on {config.listen_host}:{config.listen_port}: {exc}") from exc

        if self._provisioner is not None:
            await self._provisioner.ensure_account(
                config.credential.username,
                config.credential.password,
                REQUIRED_ROLES,
            )

        if self._surface is not None or roles.is_primary:
            self._panel = PanelSync(
                self._surface or LoggingSurface(),
                self._machine,
                label=config.panel_label,
            )
            await self._panel.activate()

        await self._machine.restore_state(config.default_state)
        _logger.info("Workspace ready as %s in state %s", roles.role, self._machine.get_state())

    async def aclose(self) -> None:
        """Tear everything down.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self._panel is not None:
            await self._panel.deactivate()
        if self._machine is not None:
            self._machine.clear()
        if self._heartbeat is not None:
            await self._heartbeat.aclose()
        if self._server is not None:
            await self._server.stop()
        if self._messenger is not None:
            await self._messenger.aclose()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        _logger.info("Workspace closed")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def set_state(self, name: str) -> None:
        await self._require_machine().set_state(name, source=TransitionSource.LOCAL)

    async def request_status(self, role: str, *, timeout: float | None = None) -> str:
        if self._messenger is None:
            raise DwsError("Workspace not started")
        return await self._messenger.request_status(role, timeout=timeout)
