from __future__ import annotations

import aiohttp
import pytest
from pydantic import ValidationError

from divisiblews.models import Credential, DeviceDescriptor, HeartbeatSettings


def test_device_descriptor_netloc_and_primary_flag() -> None:
    device = DeviceDescriptor(role="Primary", ip=" 10.0.0.10 ", serial="AAAAAAAAAAAA")
    assert device.ip == "10.0.0.10"
    assert device.netloc == "10.0.0.10"
    assert device.is_primary

    other = DeviceDescriptor(role="Secondary", ip="10.0.0.11", serial="BBBBBBBBBBBB", port=8443)
    assert other.netloc == "10.0.0.11:8443"
    assert not other.is_primary


def test_device_descriptor_is_frozen_and_strict() -> None:
    device = DeviceDescriptor(role="Primary", ip="10.0.0.10", serial="AAAAAAAAAAAA")
    with pytest.raises(ValidationError):
        device.role = "Secondary"  # type: ignore[misc]
    with pytest.raises(ValidationError):
        DeviceDescriptor(role="Primary", ip="10.0.0.10", serial="AAAAAAAAAAAA", mac="00:11")  # type: ignore[call-arg]
    with pytest.raises(ValidationError):
        DeviceDescriptor(role="Primary", ip="10.0.0.10", serial="AAAAAAAAAAAA", port=70000)


def test_credential_matches_decoded_basic_auth() -> None:
    credential = Credential(username="integrator", password="secret")
    header = credential.basic_auth().encode()

    assert credential.matches(aiohttp.BasicAuth.decode(header))
    assert not credential.matches(aiohttp.BasicAuth("integrator", "wrong"))
    assert not credential.matches(None)


def test_heartbeat_settings_accept_macro_aliases_and_field_names() -> None:
    from_macro = HeartbeatSettings.model_validate({"period": 2, "timeOut": 4, "fallbackState": "Standalone"})
    by_name = HeartbeatSettings(period_minutes=2, timeout_minutes=4, fallback_state="Standalone")

    assert from_macro == by_name
    assert HeartbeatSettings().timeout_minutes == 10
    with pytest.raises(ValidationError):
        HeartbeatSettings(period_minutes=0)
