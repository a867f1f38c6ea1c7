"""Helpers for safe debug logging.

Peer requests carry the shared credential in every ``Authorization``
header, and configuration dumps contain the password.  This module
redacts such fields before they reach DEBUG logs.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "passphrase",
        "authorization",
        "cookie",
        "secret",
    }
)


def _mask_authorization(value: str) -> str:
    """Keep the scheme and Basic-auth login, drop the secret."""
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "basic" or not token:
        return "<redacted>"
    try:
        login = base64.b64decode(token, validate=True).decode("utf-8").partition(":")[0]
    except (binascii.Error, UnicodeDecodeError):
        return "Basic <redacted>"
    return f"Basic {login}:<redacted>"


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy HTTP headers with the ``Authorization`` secret masked."""
    result: dict[str, str] = {}
    for key, value in headers.items():
        lowered = key.lower()
        if lowered == "authorization":
            result[key] = _mask_authorization(value)
        elif lowered in _SENSITIVE_VALUE_KEYS:
            result[key] = "<redacted>"
        else:
            result[key] = value
    return result


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs.

    Pydantic models and dataclasses (e.g. the workspace configuration)
    are converted to plain mappings first.
    """
    if _depth > 20:
        return "<max-depth>"

    if value is None or isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, BaseModel):
        value = value.model_dump()
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}

    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"

    if isinstance(value, Mapping):
        return {
            str(k): "<redacted>"
            if str(k).lower() in _SENSITIVE_VALUE_KEYS
            else redact_for_log(v, max_string=max_string, _depth=_depth + 1)
            for k, v in value.items()
        }

    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
