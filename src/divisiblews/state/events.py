"""State transition records.

Every applied state produces a :class:`StateChange`, handed to listeners
such as the control panel.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class TransitionSource(StrEnum):
    LOCAL = "local"
    PANEL = "panel"
    REMOTE = "remote"
    FALLBACK = "fallback"
    RESTORE = "restore"

    @property
    def is_user_initiated(self) -> bool:
        """Whether the transition originated on this device on purpose."""
        return self in (TransitionSource.LOCAL, TransitionSource.PANEL)


class StateChange(BaseModel):
    """A state that has just been applied."""

    model_config = ConfigDict(frozen=True)

    state: str
    previous: str | None = None
    role: str
    source: TransitionSource
    applied_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
