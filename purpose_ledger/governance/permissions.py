"""
Role Enforcement — owner and compliance (blacklister) capability checks.

Two independent roles gate the administrative operations:

- OWNER:       assigns purposes to accounts, mints tokens
- BLACKLISTER: releases restricted balance

The restriction core never sees this engine; it receives plain
``Callable[[str], bool]`` predicates built by :meth:`PermissionEngine.predicate`,
so it can be exercised with any role system (or a lambda in tests).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Administrative roles."""

    OWNER = "owner"
    BLACKLISTER = "blacklister"


class PermissionDecision(str, Enum):
    """Result of a permission check."""

    AUTHORIZED = "authorized"
    FORBIDDEN = "forbidden"


@dataclass
class PermissionCheckResult:
    """Result of checking a caller against a role."""

    decision: PermissionDecision
    role: Role
    caller: str
    reason: str

    @property
    def is_allowed(self) -> bool:
        return self.decision == PermissionDecision.AUTHORIZED


class PermissionEngine:
    """
    Central role registry.

    Holders are kept per role; an account may hold both roles. Changes made
    through :meth:`grant` and :meth:`revoke` are visible immediately to every
    predicate previously handed out.
    """

    def __init__(self, holders: dict[Role, set[str]] | None = None) -> None:
        """
        Initialize with role holders.

        Args:
            holders: Accounts per role. Roles missing here have no holders.
        """
        self.holders: dict[Role, set[str]] = {role: set() for role in Role}
        for role, accounts in (holders or {}).items():
            self.holders[Role(role)].update(a for a in accounts if a)

    @classmethod
    def from_accounts(cls, owner: str = "", blacklister: str = "") -> PermissionEngine:
        return cls({Role.OWNER: {owner}, Role.BLACKLISTER: {blacklister}})

    def check_permission(self, role: Role, caller: str) -> PermissionCheckResult:
        """Check whether ``caller`` holds ``role``."""
        role = Role(role)
        if caller in self.holders[role]:
            return PermissionCheckResult(
                decision=PermissionDecision.AUTHORIZED,
                role=role,
                caller=caller,
                reason=f"Account {caller!r} holds role '{role.value}'",
            )
        return PermissionCheckResult(
            decision=PermissionDecision.FORBIDDEN,
            role=role,
            caller=caller,
            reason=f"Account {caller!r} does not hold role '{role.value}'",
        )

    def predicate(self, role: Role) -> Callable[[str], bool]:
        """A capability check for ``role`` suitable for the restriction core."""
        role = Role(role)

        def has_role(caller: str) -> bool:
            result = self.check_permission(role, caller)
            if not result.is_allowed:
                logger.warning("Permission denied: %s", result.reason)
            return result.is_allowed

        return has_role

    def grant(self, role: Role, account: str) -> None:
        self.holders[Role(role)].add(account)
        logger.info("Role granted: %s -> %s", Role(role).value, account)

    def revoke(self, role: Role, account: str) -> None:
        self.holders[Role(role)].discard(account)
        logger.info("Role revoked: %s -> %s", Role(role).value, account)

    def list_holders(self, role: Role) -> set[str]:
        return set(self.holders[Role(role)])
