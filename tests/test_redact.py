from __future__ import annotations

import aiohttp

from divisiblews._redact import redact_for_log, redact_headers
from divisiblews.config import DwsConfig
from divisiblews.models import Credential, DeviceDescriptor


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "username": "integrator",
        "password": "pw",
        "nested": {"Authorization": "Basic abc", "secret": "s"},
    }

    redacted = redact_for_log(payload)
    assert redacted["username"] == "integrator"
    assert redacted["password"] == "<redacted>"
    assert redacted["nested"]["Authorization"] == "<redacted>"
    assert redacted["nested"]["secret"] == "<redacted>"


def test_redact_for_log_handles_config_objects() -> None:
    config = DwsConfig(
        roster=(
            DeviceDescriptor(role="Primary", ip="10.0.0.10", serial="AAAAAAAAAAAA"),
            DeviceDescriptor(role="Secondary", ip="10.0.0.11", serial="BBBBBBBBBBBB"),
        ),
        credential=Credential(username="integrator", password="hunter2"),
    )

    redacted = redact_for_log(config)
    assert redacted["credential"]["password"] == "<redacted>"
    assert redacted["roster"][0]["serial"] == "AAAAAAAAAAAA"
    assert "hunter2" not in repr(redacted)


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_headers_keeps_login_and_masks_password() -> None:
    headers = {
        "Authorization": aiohttp.BasicAuth("integrator", "hunter2").encode(),
        "Content-Type": "text/xml",
    }

    redacted = redact_headers(headers)
    assert redacted["Authorization"] == "Basic integrator:<redacted>"
    assert redacted["Content-Type"] == "text/xml"


def test_redact_headers_masks_unparseable_authorization() -> None:
    assert redact_headers({"authorization": "Bearer abc"})["authorization"] == "<redacted>"
    assert redact_headers({"Authorization": "Basic !!!"})["Authorization"] == "Basic <redacted>"
