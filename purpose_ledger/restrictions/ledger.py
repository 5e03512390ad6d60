"""
Restriction Ledger — purpose assignments and purpose-tagged restrictions.

Owns the three restriction mappings:

- PurposeAssignment       account → ordered purpose tags
- TotalRestrictedBalance  account → floor under the spendable balance
- PurposePoolBalance      (account, purpose) → restricted amount

Restrictions are recorded against the *sender* of an earmarking transfer:
they describe what the sender committed to a purpose, not a lock on the
recipient. Role checks arrive as plain predicates so this class has no
knowledge of how roles are managed.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from purpose_ledger.errors import (
    InsufficientPoolBalanceError,
    InvalidPurposeError,
    RestrictedFloorViolationError,
    UnauthorizedError,
)
from purpose_ledger.ledger.events import EventLog
from purpose_ledger.ledger.models import PurposeAssignmentDB, PurposePoolDB, RestrictedTotalDB
from purpose_ledger.ledger.token import TokenLedger
from purpose_ledger.ledger.uint256 import checked_add, require_amount
from purpose_ledger.schema import (
    MAX_UINT256,
    ZERO_PURPOSE,
    AccountRestrictions,
    PurposesAssigned,
    PurposeTransferExecuted,
    RestrictionBalanceUpdated,
    purpose_hex,
    require_account,
    to_purpose,
)

logger = logging.getLogger(__name__)

RolePredicate = Callable[[str], bool]


class RestrictionLedger:
    """
    Restriction bookkeeping for one session (one transaction).

    Usage:
        restrictions = RestrictionLedger(session, events, token, is_owner, is_blacklister)
        restrictions.assign_purposes(owner, "0xclinic", [to_purpose("tax-reserve")])
        restrictions.create_restriction("0xalice", "0xclinic", 50, to_purpose("tax-reserve"))
    """

    def __init__(
        self,
        session: Session,
        events: EventLog,
        token: TokenLedger,
        is_owner: RolePredicate,
        is_blacklister: RolePredicate,
    ) -> None:
        self.session = session
        self.events = events
        self.token = token
        self.is_owner = is_owner
        self.is_blacklister = is_blacklister

    # ── Purpose assignments ─────────────────────────────────────

    def assign_purposes(
        self,
        caller: str,
        account: str,
        purposes: Iterable[bytes | str],
    ) -> PurposesAssigned:
        """
        Replace ``account``'s whole purpose assignment. Owner-only.

        Duplicates and an empty sequence are accepted as given; an empty
        sequence clears the assignment.
        """
        if not self.is_owner(caller):
            raise UnauthorizedError(caller, "owner")
        require_account(account)
        new_purposes = [to_purpose(p) for p in purposes]

        # Snapshot before the overwrite; reading afterwards yields the new value.
        old_purposes = self.assigned_purposes(account)

        self.session.execute(
            delete(PurposeAssignmentDB).where(PurposeAssignmentDB.account == account)
        )
        self.session.add_all(
            PurposeAssignmentDB(account=account, position=i, purpose=purpose)
            for i, purpose in enumerate(new_purposes)
        )
        self.session.flush()

        event = PurposesAssigned(
            account=account, new_purposes=new_purposes, old_purposes=old_purposes,
        )
        self.events.emit(event)
        logger.info(
            "Purposes assigned: account=%s count=%d (was %d)",
            account, len(new_purposes), len(old_purposes),
        )
        return event

    def assigned_purposes(self, account: str) -> list[bytes]:
        return list(
            self.session.execute(
                select(PurposeAssignmentDB.purpose)
                .where(PurposeAssignmentDB.account == account)
                .order_by(PurposeAssignmentDB.position.asc())
            ).scalars()
        )

    # ── Restrictions ────────────────────────────────────────────

    def create_restriction(
        self,
        sender: str,
        recipient: str,
        amount: int,
        purpose: bytes | str,
    ) -> bool:
        """
        Earmarking transfer: move value, then restrict it on the sender.

        The transfer runs through the token ledger (and therefore through
        every before-transfer hook). If it raises, no restriction is
        recorded; the surrounding transaction rolls back everything. The
        sender must still hold at least its new restricted total afterwards.
        """
        purpose = self._require_purpose(purpose)
        require_amount(amount)

        self.token.transfer(sender, recipient, amount)

        total = checked_add(self.total_restricted(sender), amount)
        pool = checked_add(self.pool_balance(sender, purpose), amount)
        balance = self.token.balance_of(sender)
        if balance < total:
            raise RestrictedFloorViolationError(sender, balance, total, 0)
        self.set_pool_balance(sender, purpose, pool)
        self.set_total_restricted(sender, total)

        self.events.emit(
            PurposeTransferExecuted(
                sender=sender, recipient=recipient, amount=amount, purpose=purpose,
            )
        )
        logger.info(
            "Restriction created: %s earmarked %d for %s (pool=%d total=%d)",
            sender, amount, purpose_hex(purpose), pool, total,
        )
        return True

    def release_restriction(
        self,
        caller: str,
        account: str,
        amount: int,
        purpose: bytes | str,
    ) -> int:
        """
        Remove restricted balance from a purpose pool. Blacklister-only.

        ``amount == MAX_UINT256`` releases whatever the pool currently holds.

        Returns:
            The amount actually released.

        Raises:
            InsufficientPoolBalanceError: If the amount exceeds the pool
                or the account's total restricted balance.
        """
        if not self.is_blacklister(caller):
            raise UnauthorizedError(caller, "blacklister")
        purpose = self._require_purpose(purpose)
        require_account(account)
        require_amount(amount)

        pool = self.pool_balance(account, purpose)
        total = self.total_restricted(account)
        if amount == MAX_UINT256:
            amount = pool

        if amount > pool:
            raise InsufficientPoolBalanceError(account, purpose, amount, pool)
        if amount > total:
            raise InsufficientPoolBalanceError(account, ZERO_PURPOSE, amount, total)

        pool -= amount
        self.set_pool_balance(account, purpose, pool)
        self.set_total_restricted(account, total - amount)

        logger.info(
            "Restriction released: %s purpose=%s amount=%d (pool=%d)",
            account, purpose_hex(purpose), amount, pool,
        )
        return amount

    def balance_of_restricted(self, account: str, purpose: bytes | str = ZERO_PURPOSE) -> int:
        """Pool balance for ``purpose``, or the account's total for the zero tag."""
        purpose = to_purpose(purpose)
        if purpose == ZERO_PURPOSE:
            return self.total_restricted(account)
        return self.pool_balance(account, purpose)

    # ── Storage accessors ───────────────────────────────────────

    def total_restricted(self, account: str) -> int:
        row = self.session.get(RestrictedTotalDB, account)
        return 0 if row is None else row.total

    def set_total_restricted(self, account: str, total: int) -> None:
        row = self.session.get(RestrictedTotalDB, account, with_for_update=True)
        if row is None:
            self.session.add(RestrictedTotalDB(account=account, total=total))
        else:
            row.total = total
        self.session.flush()

    def pool_balance(self, account: str, purpose: bytes) -> int:
        row = self.session.get(PurposePoolDB, (account, purpose))
        return 0 if row is None else row.balance

    def set_pool_balance(self, account: str, purpose: bytes, balance: int) -> None:
        """Write a pool balance and emit RestrictionBalanceUpdated."""
        row = self.session.get(PurposePoolDB, (account, purpose), with_for_update=True)
        if row is None:
            self.session.add(PurposePoolDB(account=account, purpose=purpose, balance=balance))
        else:
            row.balance = balance
        self.session.flush()
        self.events.emit(
            RestrictionBalanceUpdated(account=account, purpose=purpose, balance=balance)
        )

    def snapshot(self, account: str) -> AccountRestrictions:
        pools = self.session.execute(
            select(PurposePoolDB).where(PurposePoolDB.account == account)
        ).scalars()
        return AccountRestrictions(
            account=account,
            balance=self.token.balance_of(account),
            total_restricted=self.total_restricted(account),
            pools={purpose_hex(p.purpose): p.balance for p in pools if p.balance},
        )

    def restricted_accounts(self) -> list[str]:
        """Every account that has ever held a restriction row."""
        totals = set(self.session.execute(select(RestrictedTotalDB.account)).scalars())
        pools = set(self.session.execute(select(PurposePoolDB.account)).scalars())
        return sorted(totals | pools)

    @staticmethod
    def _require_purpose(purpose: bytes | str) -> bytes:
        purpose = to_purpose(purpose)
        if purpose == ZERO_PURPOSE:
            raise InvalidPurposeError(purpose_hex(purpose))
        return purpose
