from __future__ import annotations

import json
from pathlib import Path

import pytest

from divisiblews.config import DwsConfig
from divisiblews.exceptions import DwsConfigError


def _raw() -> dict:
    return {
        "codecs": [
            {"role": "Primary", "ip": "10.0.0.10", "serial": "AAAAAAAAAAAA"},
            {"role": "Secondary", "ip": "10.0.0.11", "serial": "BBBBBBBBBBBB"},
        ],
        "credentials": {"username": "integrator", "password": "secret"},
        "heartbeat": {"period": 2, "timeOut": 5, "fallbackState": "Divided"},
    }


def test_from_mapping_builds_roster_and_heartbeat() -> None:
    config = DwsConfig.from_mapping(_raw())

    assert [d.role for d in config.roster] == ["Primary", "Secondary"]
    assert config.credential.username == "integrator"
    assert config.heartbeat.period_minutes == 2
    assert config.heartbeat.timeout_minutes == 5
    assert config.namespace == "divisibleWorkspaces"
    assert config.endpoint_path == "/putxml"
    assert config.debounce_seconds == 0.3


def test_from_mapping_accepts_flat_overrides() -> None:
    data = _raw()
    data["listen_port"] = 9443
    config = DwsConfig.from_mapping(data, default_state="Combined")

    assert config.listen_port == 9443
    assert config.default_state == "Combined"


def test_credential_password_is_not_in_repr() -> None:
    config = DwsConfig.from_mapping(_raw())
    assert "secret" not in repr(config.credential)


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("ip", "10.0.0"),
        ("ip", "300.0.0.1"),
        ("serial", "SHORT"),
        ("serial", "AAAA-AAAAAAA"),
        ("role", "Pri-mary"),
        ("role", ""),
    ],
)
def test_malformed_codec_is_rejected(field: str, value: str) -> None:
    data = _raw()
    data["codecs"][0][field] = value
    with pytest.raises(DwsConfigError):
        DwsConfig.from_mapping(data)


def test_roster_needs_two_devices() -> None:
    data = _raw()
    data["codecs"] = data["codecs"][:1]
    with pytest.raises(DwsConfigError):
        DwsConfig.from_mapping(data)


def test_duplicate_serials_are_rejected() -> None:
    data = _raw()
    data["codecs"][1]["serial"] = "AAAAAAAAAAAA"
    with pytest.raises(DwsConfigError):
        DwsConfig.from_mapping(data)


def test_empty_credentials_are_rejected() -> None:
    data = _raw()
    data["credentials"] = {"username": "", "password": "secret"}
    with pytest.raises(DwsConfigError):
        DwsConfig.from_mapping(data)


def test_non_positive_heartbeat_timeout_is_rejected() -> None:
    data = _raw()
    data["heartbeat"]["timeOut"] = 0
    with pytest.raises(DwsConfigError):
        DwsConfig.from_mapping(data)


def test_macro_panel_sections_are_accepted() -> None:
    data = _raw()
    data["combinePanel"] = {
        "button": {"name": "Join Rooms", "icon": "Sliders", "color": ""},
        "panel": {"title": "Tap the toggle to combine or divide"},
    }
    data["lockPanelText"] = {"Title": "Combined Mode", "Text": "This codec is in combined mode"}

    assert DwsConfig.from_mapping(data).panel_label == "Join Rooms"
    assert DwsConfig.from_mapping(data, panel_label="Override").panel_label == "Override"

    del data["combinePanel"]
    assert DwsConfig.from_mapping(data).panel_label == "Combine Room"


def test_unknown_keys_are_rejected() -> None:
    data = _raw()
    data["listen_prot"] = 1
    with pytest.raises(DwsConfigError):
        DwsConfig.from_mapping(data)


def test_from_file_missing_and_invalid(tmp_path: Path) -> None:
    with pytest.raises(DwsConfigError):
        DwsConfig.from_file(tmp_path / "absent.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(DwsConfigError):
        DwsConfig.from_file(broken)


def test_from_env_applies_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    data = _raw()
    del data["credentials"]
    path = tmp_path / "workspace.json"
    path.write_text(json.dumps(data), encoding="utf-8")

    monkeypatch.setenv("DWS_CONFIG_FILE", str(path))
    monkeypatch.setenv("DWS_USERNAME", "envuser")
    monkeypatch.setenv("DWS_PASSWORD", "envpass")
    monkeypatch.setenv("DWS_LISTEN_PORT", "9000")
    monkeypatch.setenv("DWS_ALLOW_INSECURE_HTTPS", "false")
    monkeypatch.setenv("DWS_STATE_FILE", str(tmp_path / "state.json"))

    config = DwsConfig.from_env()

    assert config.credential.username == "envuser"
    assert config.credential.password == "envpass"
    assert config.listen_port == 9000
    assert config.allow_insecure_https is False
    assert config.state_file == str(tmp_path / "state.json")


def test_from_env_requires_config_file(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DWS_CONFIG_FILE", raising=False)
    with pytest.raises(DwsConfigError):
        DwsConfig.from_env()
