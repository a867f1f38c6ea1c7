"""Provisioning of the local account peers authenticate against."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Protocol

_logger = logging.getLogger(__name__)

#: Roles the shared account needs to accept inbound batches.
REQUIRED_ROLES: tuple[str, ...] = ("Integrator", "User")


class AccountProvisioner(Protocol):
    """Creates or updates the local account used by peers."""

    async def ensure_account(self, username: str, password: str, roles: Sequence[str]) -> None:
        ...


def identify_missing_roles(current: Iterable[str], required: Iterable[str] = REQUIRED_ROLES) -> list[str]:
    """Return the roles in ``required`` absent from ``current``, in ``required`` order.

    >>> identify_missing_roles(["User"], ["Integrator", "User"])
    ['Integrator']
    """
    have = set(current)
    return [role for role in required if role not in have]


class InMemoryProvisioner:
    """Keeps accounts in a dict; for headless runs and tests."""

    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, list[str]]] = {}

    async def ensure_account(self, username: str, password: str, roles: Sequence[str]) -> None:
        existing = self.accounts.get(username)
        if existing is None:
            _logger.info("Creating account %s with roles %s", username, ", ".join(roles))
            self.accounts[username] = (password, list(roles))
            return
        _, current = existing
        missing = identify_missing_roles(current, roles)
        if missing:
            _logger.info("Adding roles %s to account %s", ", ".join(missing), username)
        self.accounts[username] = (password, [*current, *missing])
