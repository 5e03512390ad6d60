"""
Purpose Ledger Service — transactional façade over token and restriction state.

This service is the primary interface for all ledger operations:
- Base token operations (mint, burn, transfer, approve, transfer_from)
- Purpose assignment and purpose-tagged restrictions
- Restricted balance queries and the invariant audit
- Event log queries, chain verification and subscriptions

Every public operation runs in exactly one database transaction behind a
process-wide lock. Any exception rolls the whole transaction back, so a
rejected transfer leaves balances, pools and the event log untouched, and
subscribers are only notified about committed work.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from purpose_ledger.governance.permissions import PermissionEngine, Role
from purpose_ledger.ledger.events import EventLog
from purpose_ledger.ledger.models import Base, EventLogDB
from purpose_ledger.ledger.token import TokenLedger
from purpose_ledger.restrictions.hook import TransferEnforcementHook
from purpose_ledger.restrictions.ledger import RestrictionLedger
from purpose_ledger.schema import (
    MAX_UINT256,
    ZERO_PURPOSE,
    AccountRestrictions,
    EventType,
    InvariantViolation,
    LedgerEvent,
    PurposesAssigned,
    ViolationKind,
)

logger = logging.getLogger(__name__)

Subscriber = Callable[[LedgerEvent], None]


@dataclass
class LedgerContext:
    """Collaborators bound to one transaction."""

    session: Session
    events: EventLog
    token: TokenLedger
    restrictions: RestrictionLedger


class PurposeLedgerService:
    """
    Purpose-restricted token ledger.

    Usage:
        service = PurposeLedgerService("sqlite://", PermissionEngine.from_accounts(
            owner="0xowner", blacklister="0xcompliance",
        ))
        service.initialize()
        service.mint("0xowner", "0xalice", 200)
        service.assign_purposes("0xowner", "0xclinic", ["tax-reserve"])
        service.transfer_with_purpose("0xalice", "0xbob", 50, "tax-reserve")
        service.transfer("0xalice", "0xclinic", 30)  # unlocks 30 of the 50
    """

    def __init__(
        self,
        database_url: str,
        permissions: PermissionEngine | None = None,
        echo: bool = False,
    ) -> None:
        """
        Initialize the ledger service.

        Args:
            database_url: SQLAlchemy connection string. ``sqlite://`` gives a
                private in-memory database shared by all sessions.
            permissions: Role registry. Defaults to one with no role holders.
            echo: Log every SQL statement.
        """
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            self.engine = create_engine(
                database_url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(database_url, echo=echo)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self.permissions = permissions or PermissionEngine()
        self._lock = threading.RLock()
        self._subscribers: list[Subscriber] = []

    def initialize(self) -> None:
        """Create the schema if it does not exist yet."""
        Base.metadata.create_all(self.engine)
        logger.info("Ledger schema ready: %s", self.engine.url.render_as_string())

    def subscribe(self, callback: Subscriber) -> None:
        """Receive every event of each operation after it commits."""
        self._subscribers.append(callback)

    # ── Token operations ────────────────────────────────────────

    def mint(self, caller: str, account: str, amount: int) -> None:
        with self._transaction() as ctx:
            ctx.token.mint(caller, account, amount)

    def burn(self, account: str, amount: int) -> None:
        with self._transaction() as ctx:
            ctx.token.burn(account, amount)

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        with self._transaction() as ctx:
            return ctx.token.transfer(sender, recipient, amount)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        with self._transaction() as ctx:
            return ctx.token.approve(owner, spender, amount)

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        with self._transaction() as ctx:
            return ctx.token.transfer_from(spender, owner, recipient, amount)

    def balance_of(self, account: str) -> int:
        with self._read() as ctx:
            return ctx.token.balance_of(account)

    def allowance(self, owner: str, spender: str) -> int:
        with self._read() as ctx:
            return ctx.token.allowance(owner, spender)

    def total_supply(self) -> int:
        with self._read() as ctx:
            return ctx.token.total_supply()

    # ── Restriction operations ──────────────────────────────────

    def assign_purposes(
        self,
        caller: str,
        account: str,
        purposes: Iterable[bytes | str],
    ) -> PurposesAssigned:
        with self._transaction() as ctx:
            return ctx.restrictions.assign_purposes(caller, account, purposes)

    def assigned_purposes(self, account: str) -> list[bytes]:
        with self._read() as ctx:
            return ctx.restrictions.assigned_purposes(account)

    def transfer_with_purpose(
        self,
        sender: str,
        recipient: str,
        amount: int,
        purpose: bytes | str,
    ) -> bool:
        with self._transaction() as ctx:
            return ctx.restrictions.create_restriction(sender, recipient, amount, purpose)

    create_restriction = transfer_with_purpose

    def release_restriction(
        self,
        caller: str,
        account: str,
        amount: int,
        purpose: bytes | str,
    ) -> int:
        with self._transaction() as ctx:
            return ctx.restrictions.release_restriction(caller, account, amount, purpose)

    def release_all(self, caller: str, account: str, purpose: bytes | str) -> int:
        return self.release_restriction(caller, account, MAX_UINT256, purpose)

    def balance_of_restricted(self, account: str, purpose: bytes | str = ZERO_PURPOSE) -> int:
        with self._read() as ctx:
            return ctx.restrictions.balance_of_restricted(account, purpose)

    def free_balance(self, account: str) -> int:
        """Token balance above the restricted floor."""
        with self._read() as ctx:
            return ctx.restrictions.snapshot(account).free_balance

    # ── Audit ───────────────────────────────────────────────────

    def account_restrictions(self) -> list[AccountRestrictions]:
        with self._read() as ctx:
            accounts = sorted(set(ctx.token.holders()) | set(ctx.restrictions.restricted_accounts()))
            return [ctx.restrictions.snapshot(account) for account in accounts]

    def check_invariants(self) -> list[InvariantViolation]:
        """
        Check every account's restriction state.

        Reports accounts whose restricted total exceeds their token balance
        and accounts whose restricted total differs from the sum of their
        purpose pools.
        """
        violations: list[InvariantViolation] = []
        for snap in self.account_restrictions():
            if snap.total_restricted > snap.balance:
                violations.append(InvariantViolation(
                    kind=ViolationKind.TOTAL_EXCEEDS_BALANCE,
                    account=snap.account,
                    expected=snap.balance,
                    actual=snap.total_restricted,
                    detail=(
                        f"{snap.total_restricted} restricted but only "
                        f"{snap.balance} held"
                    ),
                ))
            if snap.total_restricted != snap.pool_sum:
                violations.append(InvariantViolation(
                    kind=ViolationKind.TOTAL_POOL_MISMATCH,
                    account=snap.account,
                    expected=snap.pool_sum,
                    actual=snap.total_restricted,
                    detail=(
                        f"total restricted {snap.total_restricted} != "
                        f"sum of pools {snap.pool_sum}"
                    ),
                ))
        for violation in violations:
            logger.warning("Invariant violated: %s %s", violation.account, violation.detail)
        return violations

    # ── Event log ───────────────────────────────────────────────

    def events(
        self,
        event_type: EventType | str | None = None,
        account: str | None = None,
        limit: int = 100,
    ) -> list[EventLogDB]:
        with self._read() as ctx:
            return ctx.events.entries(event_type=event_type, account=account, limit=limit)

    def event_count(self) -> int:
        with self._read() as ctx:
            return ctx.events.count()

    def verify_chain(self) -> tuple[bool, int, str]:
        with self._read() as ctx:
            return ctx.events.verify_chain()

    # ── Internal ────────────────────────────────────────────────

    def _bind(self, session: Session) -> LedgerContext:
        events = EventLog(session)
        token = TokenLedger(session, events, self.permissions.predicate(Role.OWNER))
        restrictions = RestrictionLedger(
            session,
            events,
            token,
            is_owner=self.permissions.predicate(Role.OWNER),
            is_blacklister=self.permissions.predicate(Role.BLACKLISTER),
        )
        token.register_hook(TransferEnforcementHook(restrictions, token))
        return LedgerContext(session, events, token, restrictions)

    @contextmanager
    def _transaction(self) -> Iterator[LedgerContext]:
        with self._lock:
            with self.SessionLocal.begin() as session:
                ctx = self._bind(session)
                yield ctx
            emitted = list(ctx.events.emitted)
        for event in emitted:
            for callback in self._subscribers:
                callback(event)

    @contextmanager
    def _read(self) -> Iterator[LedgerContext]:
        with self._lock:
            with self.SessionLocal() as session:
                yield self._bind(session)
