"""Standard ``Combined`` / ``Divided`` state definitions.

Combined
    Every device exchanges heartbeats with its counterparts: the primary
    with every other device, any other device with the primary.  A device
    that stops hearing from a counterpart falls back to the configured
    fallback state.
Divided
    All heartbeats stop.

On the primary, a state applied locally (API call or panel press) is
also sent to the counterparts, so one press re-arranges the whole room.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from divisiblews.models import DeviceDescriptor, HeartbeatSettings
from divisiblews.state.machine import EntryAction, StateContext

_logger = logging.getLogger(__name__)

COMBINED = "Combined"
DIVIDED = "Divided"

StateDefinitions = dict[str, dict[str, EntryAction]]


def _counterpart_roles(roster: Sequence[DeviceDescriptor], role: str, primary_role: str) -> list[str]:
    others = [device.role for device in roster if device.role != role]
    if role.lower() == primary_role.lower():
        return others
    primaries = [other for other in others if other.lower() == primary_role.lower()]
    return primaries or others


def _combined(counterparts: list[str], heartbeat: HeartbeatSettings, *, is_primary: bool) -> EntryAction:
    def enter(context: StateContext) -> None:
        if is_primary and context.source.is_user_initiated:
            context.propagate(COMBINED, roles=counterparts)
        if not heartbeat.enabled:
            return
        for role in counterparts:
            context.heartbeat.start_sending(role, heartbeat.period_minutes)
            context.heartbeat.start_listening(role, heartbeat.fallback_state, heartbeat.timeout_minutes)

    return enter


def _divided(counterparts: list[str], *, is_primary: bool) -> EntryAction:
    def enter(context: StateContext) -> None:
        if is_primary and context.source.is_user_initiated:
            context.propagate(DIVIDED, roles=counterparts)
        context.heartbeat.stop_all()

    return enter


def canonical_states(
    roster: Sequence[DeviceDescriptor],
    heartbeat: HeartbeatSettings,
    *,
    primary_role: str = "Primary",
) -> StateDefinitions:
    """Build ``Combined`` and ``Divided`` for every role in ``roster``."""
    states: StateDefinitions = {}
    for device in roster:
        counterparts = _counterpart_roles(roster, device.role, primary_role)
        is_primary = device.role.lower() == primary_role.lower()
        if not counterparts:
            _logger.warning("Role %s has no counterpart; no heartbeats will be exchanged", device.role)
        states[device.role] = {
            COMBINED: _combined(counterparts, heartbeat, is_primary=is_primary),
            DIVIDED: _divided(counterparts, is_primary=is_primary),
        }
    return states
