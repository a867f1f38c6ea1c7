from __future__ import annotations

import json
import xml.etree.ElementTree as ET

import pytest

from divisiblews._envelope import EnvelopeSource, build_envelope, parse_envelope
from divisiblews.exceptions import MessageParseError


def test_envelope_preserves_payload_order() -> None:
    payloads = [
        "divisibleWorkspaces-Primary-changeState-Combined",
        "divisibleWorkspaces-Primary-heartbeat",
        "divisibleWorkspaces-Primary-statusRequest-0001",
    ]
    body = build_envelope(payloads, EnvelopeSource(app="divisiblews", ipv4="10.0.0.10"))
    assert parse_envelope(body) == payloads


def test_envelope_entries_carry_app_and_source() -> None:
    body = build_envelope(["divisibleWorkspaces-Primary-heartbeat"], EnvelopeSource(app="dws", ipv4="10.0.0.10"))
    root = ET.fromstring(body)
    assert root.tag == "Command"
    texts = root.findall("./Message/Send/Text")
    assert len(texts) == 1
    entry = json.loads(texts[0].text or "")
    assert entry["App"] == "dws"
    assert entry["Type"] == "Status"
    assert entry["Source"]["IPv4"] == "10.0.0.10"
    assert entry["Value"] == "divisibleWorkspaces-Primary-heartbeat"


def test_parse_envelope_skips_bad_entries_and_passes_bare_text() -> None:
    body = (
        "<Command>"
        "<Message><Send><Text>{not json</Text></Send></Message>"
        '<Message><Send><Text>{"Value": 5}</Text></Send></Message>'
        "<Message><Send><Text>divisibleWorkspaces-Secondary-heartbeat</Text></Send></Message>"
        "<Message><Send><Text></Text></Send></Message>"
        "</Command>"
    )
    assert parse_envelope(body) == ["divisibleWorkspaces-Secondary-heartbeat"]


def test_parse_envelope_accepts_bytes() -> None:
    body = build_envelope(["a", "b"], EnvelopeSource(app="dws")).encode("utf-8")
    assert parse_envelope(body) == ["a", "b"]


@pytest.mark.parametrize("body", ["<Command>", "not xml at all", "<Other><Message/></Other>"])
def test_parse_envelope_rejects_malformed_documents(body: str) -> None:
    with pytest.raises(MessageParseError):
        parse_envelope(body)
