"""Heartbeat settings used by the canonical Combined/Divided states."""

from __future__ import annotations

from pydantic import Field

from divisiblews.models._base import DwsBaseModel


class HeartbeatSettings(DwsBaseModel):
    """Liveness parameters.

    ``timeout_minutes`` is the listen window: with no heartbeat from a
    counterpart for that long, the device falls back to ``fallback_state``.
    """

    enabled: bool = True
    period_minutes: float = Field(default=1.0, gt=0, alias="period")
    timeout_minutes: float = Field(default=10.0, gt=0, alias="timeOut")
    fallback_state: str = Field(default="Divided", min_length=1, alias="fallbackState")
