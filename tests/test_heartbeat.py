from __future__ import annotations

import asyncio

import pytest

from divisiblews._envelope import EnvelopeSource, parse_envelope
from divisiblews.exceptions import DwsConfigError
from divisiblews.heartbeat import HeartbeatMonitor
from divisiblews.messaging import Messenger
from divisiblews.models import DeviceDescriptor
from divisiblews.roles import ResolvedRoles

PRIMARY = DeviceDescriptor(role="Primary", ip="10.0.0.10", serial="AAAAAAAAAAAA")
SECONDARY = DeviceDescriptor(role="Secondary", ip="10.0.0.11", serial="BBBBBBBBBBBB")


def _minutes(seconds: float) -> float:
    return seconds / 60.0


class _RecordingTransport:
    def __init__(self) -> None:
        self.payloads: list[str] = []

    async def post_batch(self, peer: DeviceDescriptor, body: str) -> None:
        self.payloads.extend(parse_envelope(body))


class _Harness:
    def __init__(self) -> None:
        self.transport = _RecordingTransport()
        self.messenger = Messenger(
            roles=ResolvedRoles(local=PRIMARY, peers=(SECONDARY,)),
            transport=self.transport,
            namespace="divisibleWorkspaces",
            source=EnvelopeSource(app="divisiblews"),
            debounce_seconds=0.01,
        )
        self.fallbacks: list[str] = []
        self.monitor = HeartbeatMonitor(messenger=self.messenger, on_fallback=self._fallback)

    async def _fallback(self, state: str) -> None:
        self.fallbacks.append(state)

    async def aclose(self) -> None:
        await self.monitor.aclose()
        await self.messenger.aclose(flush=False)


@pytest.mark.asyncio
async def test_missed_heartbeats_trigger_fallback_once() -> None:
    harness = _Harness()
    harness.monitor.start_listening("Secondary", "Divided", _minutes(0.05))

    await asyncio.sleep(0.25)

    assert harness.fallbacks == ["Divided"]
    assert harness.monitor.listen_entry("Secondary") is None
    await harness.aclose()


@pytest.mark.asyncio
async def test_heartbeats_within_window_prevent_fallback() -> None:
    harness = _Harness()
    harness.monitor.start_listening("Secondary", "Divided", _minutes(0.15))

    for _ in range(6):
        await asyncio.sleep(0.05)
        harness.monitor.on_heartbeat("secondary")
    assert harness.fallbacks == []

    await asyncio.sleep(0.3)
    assert harness.fallbacks == ["Divided"]
    await harness.aclose()


@pytest.mark.asyncio
async def test_inbound_heartbeat_message_resets_the_window() -> None:
    harness = _Harness()
    harness.messenger.bind(on_heartbeat=harness.monitor.on_heartbeat)
    harness.monitor.start_listening("Secondary", "Divided", _minutes(0.15))

    for _ in range(4):
        await asyncio.sleep(0.05)
        await harness.messenger.dispatch("divisibleWorkspaces-Secondary-heartbeat")
    assert harness.fallbacks == []
    await harness.aclose()


@pytest.mark.asyncio
async def test_restarting_listen_replaces_the_previous_entry() -> None:
    harness = _Harness()
    first = harness.monitor.start_listening("Secondary", "Divided", _minutes(0.05))
    second = harness.monitor.start_listening("Secondary", "Standalone", _minutes(0.1))

    # Releasing the replaced entry's handle must not stop the new one.
    first.release()
    entry = harness.monitor.listen_entry("Secondary")
    assert entry is not None
    assert entry.fallback_state == "Standalone"

    await asyncio.sleep(0.3)
    assert harness.fallbacks == ["Standalone"]
    second.release()
    await harness.aclose()


@pytest.mark.asyncio
async def test_stopped_listener_never_falls_back() -> None:
    harness = _Harness()
    subscription = harness.monitor.start_listening("Secondary", "Divided", _minutes(0.05))
    subscription.release()
    harness.monitor.stop_listening("Secondary")

    await asyncio.sleep(0.15)
    assert harness.fallbacks == []
    assert harness.monitor.listening_roles == ()
    await harness.aclose()


@pytest.mark.asyncio
async def test_heartbeat_from_unmonitored_role_is_ignored() -> None:
    harness = _Harness()
    harness.monitor.on_heartbeat("Secondary")
    assert harness.monitor.listening_roles == ()
    await harness.aclose()


@pytest.mark.asyncio
async def test_sending_emits_heartbeats_until_stopped() -> None:
    harness = _Harness()
    harness.monitor.start_sending("Secondary", _minutes(0.03))
    assert harness.monitor.sending_roles == ("Secondary",)

    await asyncio.sleep(0.2)
    harness.monitor.stop_sending("Secondary")
    await asyncio.sleep(0.05)
    sent = list(harness.transport.payloads)

    assert len(sent) >= 2
    assert set(sent) == {"divisibleWorkspaces-Primary-heartbeat"}

    await asyncio.sleep(0.1)
    assert harness.transport.payloads == sent
    assert harness.monitor.sending_roles == ()
    await harness.aclose()


@pytest.mark.asyncio
async def test_unknown_role_is_a_configuration_error() -> None:
    harness = _Harness()
    with pytest.raises(DwsConfigError):
        harness.monitor.start_sending("Nobody", 1)
    await harness.aclose()
