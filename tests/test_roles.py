from __future__ import annotations

from pathlib import Path

import pytest

from divisiblews.exceptions import DwsConfigError
from divisiblews.models import DeviceDescriptor
from divisiblews.roles import MachineIdIdentityProvider, StaticIdentityProvider, resolve

PRIMARY = DeviceDescriptor(role="Primary", ip="10.0.0.10", serial="AAAAAAAAAAAA")
SECONDARY = DeviceDescriptor(role="Secondary", ip="10.0.0.11", serial="BBBBBBBBBBBB")
TERTIARY = DeviceDescriptor(role="Tertiary", ip="10.0.0.12", serial="CCCCCCCCCCCC")


def test_resolve_partitions_roster_into_self_and_peers() -> None:
    roles = resolve((PRIMARY, SECONDARY), "BBBBBBBBBBBB")

    assert roles.role == "Secondary"
    assert roles.local == SECONDARY
    assert roles.peers == (PRIMARY,)
    assert not roles.is_primary


def test_resolve_without_match_is_fatal() -> None:
    with pytest.raises(DwsConfigError):
        resolve((PRIMARY, SECONDARY), "ZZZZZZZZZZZZ")


def test_resolve_rejects_duplicate_serials() -> None:
    clone = DeviceDescriptor(role="Clone", ip="10.0.0.20", serial="AAAAAAAAAAAA")
    with pytest.raises(DwsConfigError):
        resolve((PRIMARY, clone), "AAAAAAAAAAAA")


def test_peer_lookup_is_case_insensitive() -> None:
    roles = resolve((PRIMARY, SECONDARY), PRIMARY.serial)

    assert roles.peer("secondary") == SECONDARY
    assert roles.has_peer("SECONDARY")
    assert not roles.has_peer("Primary")
    with pytest.raises(DwsConfigError):
        roles.peer("Tertiary")


def test_counterparts_follow_the_primary() -> None:
    roster = (PRIMARY, SECONDARY, TERTIARY)

    assert resolve(roster, PRIMARY.serial).counterparts() == (SECONDARY, TERTIARY)
    assert resolve(roster, SECONDARY.serial).counterparts() == (PRIMARY,)


@pytest.mark.asyncio
async def test_static_identity_provider() -> None:
    assert await StaticIdentityProvider("AAAAAAAAAAAA").get_identity() == "AAAAAAAAAAAA"


@pytest.mark.asyncio
async def test_machine_id_identity_provider(tmp_path: Path) -> None:
    path = tmp_path / "machine-id"
    path.write_text("0123456789abcdef0123456789abcdef\n", encoding="utf-8")

    assert await MachineIdIdentityProvider(path).get_identity() == "0123456789AB"


@pytest.mark.asyncio
async def test_machine_id_identity_provider_missing_file(tmp_path: Path) -> None:
    with pytest.raises(DwsConfigError):
        await MachineIdIdentityProvider(tmp_path / "absent").get_identity()
