"""Batch envelope: many wire payloads in one ``putxml`` document.

Outbound::

    <Command>
      <Message><Send><Text>{"App": ..., "Source": {...}, "Type": "Status", "Value": "<wire text>"}</Text></Send></Message>
      ...
    </Command>

One ``<Message>`` per payload, in enqueue order.
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from divisiblews.exceptions import MessageParseError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvelopeSource:
    """Sender details stamped into every entry of a batch."""

    app: str
    ipv4: str = ""


def _entry(source: EnvelopeSource, value: str) -> dict[str, Any]:
    return {
        "App": source.app,
        "Source": {"Type": "Remote_IP", "Id": "", "IPv4": source.ipv4},
        "Type": "Status",
        "Value": value,
    }


def build_envelope(payloads: Sequence[str], source: EnvelopeSource) -> str:
    """Serialize ``payloads`` into one XML document, preserving order."""
    root = ET.Element("Command")
    for payload in payloads:
        message = ET.SubElement(root, "Message")
        send = ET.SubElement(message, "Send")
        text = ET.SubElement(send, "Text")
        text.text = json.dumps(_entry(source, payload), separators=(",", ":"))
    return ET.tostring(root, encoding="unicode")


def parse_envelope(body: str | bytes) -> list[str]:
    """Extract wire payloads from a batch document, in document order.

    Raises :class:`MessageParseError` if the document is not XML or not a
    ``Command`` batch.  Individual entries that are not valid JSON objects
    with a string ``Value`` are skipped; bare text entries are passed
    through unchanged.
    """
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise MessageParseError(f"Envelope is not valid XML: {exc}") from exc
    if root.tag != "Command":
        raise MessageParseError(f"Unexpected envelope root <{root.tag}>")

    values: list[str] = []
    for text_el in root.iterfind("./Message/Send/Text"):
        raw = (text_el.text or "").strip()
        if not raw:
            continue
        if not raw.startswith("{"):
            values.append(raw)
            continue
        try:
            entry = json.loads(raw)
        except json.JSONDecodeError:
            _logger.debug("Skipping envelope entry with invalid JSON: %.64s", raw)
            continue
        value = entry.get("Value") if isinstance(entry, dict) else None
        if isinstance(value, str):
            values.append(value)
        else:
            _logger.debug("Skipping envelope entry without a Value: %.64s", raw)
    return values
