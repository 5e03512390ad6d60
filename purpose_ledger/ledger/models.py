"""
Ledger Storage — SQLAlchemy models for balances, restrictions and events.

One table per logical mapping:

1. token_balances      — account → token balance
2. allowances          — (owner, spender) → allowance
3. purpose_assignments — account → ordered purpose tags (position column)
4. restricted_totals   — account → TotalRestrictedBalance
5. purpose_pools       — (account, purpose) → PurposePoolBalance
6. event_log           — append-only, hash-chained event record

Missing rows read as zero; a zero balance is the terminal state and rows
are never deleted, except purpose assignments which are replaced wholesale.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    Index,
    Integer,
    String,
    TypeDecorator,
)
from sqlalchemy.orm import DeclarativeBase

from purpose_ledger.schema import MAX_ACCOUNT_LENGTH, PURPOSE_SIZE


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ledger models."""
    pass


# ════════════════════════════════════════════════════════════════
# Column Types
# ════════════════════════════════════════════════════════════════


class Uint256(TypeDecorator):
    """Unsigned 256-bit integer stored as its decimal string (78 digits max)."""

    impl = String(78)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class Bytes32(TypeDecorator):
    """32-byte purpose tag stored as 64 lowercase hex digits."""

    impl = String(2 * PURPOSE_SIZE)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return bytes(value).hex()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return bytes.fromhex(value)


AccountColumn = String(MAX_ACCOUNT_LENGTH)


# ════════════════════════════════════════════════════════════════
# Token Ledger
# ════════════════════════════════════════════════════════════════


class TokenBalanceDB(Base):
    """Token balance per account."""

    __tablename__ = "token_balances"

    account = Column(AccountColumn, primary_key=True)
    balance = Column(Uint256, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<TokenBalance {self.account}={self.balance}>"


class AllowanceDB(Base):
    """Amount ``spender`` may move out of ``owner``'s balance."""

    __tablename__ = "allowances"

    owner = Column(AccountColumn, primary_key=True)
    spender = Column(AccountColumn, primary_key=True)
    amount = Column(Uint256, nullable=False, default=0)


# ════════════════════════════════════════════════════════════════
# Restrictions
# ════════════════════════════════════════════════════════════════


class PurposeAssignmentDB(Base):
    """
    One purpose in an account's assignment.

    The enforcement hook drains pools in ``position`` order, so the
    assignment is an ordered sequence and duplicates are allowed.
    """

    __tablename__ = "purpose_assignments"

    account = Column(AccountColumn, primary_key=True)
    position = Column(Integer, primary_key=True)
    purpose = Column(Bytes32, nullable=False)


class RestrictedTotalDB(Base):
    """TotalRestrictedBalance: the floor under an account's spendable balance."""

    __tablename__ = "restricted_totals"

    account = Column(AccountColumn, primary_key=True)
    total = Column(Uint256, nullable=False, default=0)


class PurposePoolDB(Base):
    """PurposePoolBalance: restricted amount the account committed to one purpose."""

    __tablename__ = "purpose_pools"

    account = Column(AccountColumn, primary_key=True)
    purpose = Column(Bytes32, primary_key=True)
    balance = Column(Uint256, nullable=False, default=0)


# ════════════════════════════════════════════════════════════════
# Event Log
# ════════════════════════════════════════════════════════════════


class EventLogDB(Base):
    """
    A single emitted event — APPEND-ONLY.

    Each entry stores the SHA-256 hash of
    (previous_hash || canonical_json(entry_fields)), so any retroactive
    alteration is detectable by recomputing the chain.
    """

    __tablename__ = "event_log"

    sequence_number = Column(Integer, primary_key=True, autoincrement=False)
    event_type = Column(String(50), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    timestamp = Column(
        String(40), nullable=False,
        comment="ISO-8601 UTC emission time; hashed verbatim",
    )
    previous_hash = Column(String(64), nullable=False)
    entry_hash = Column(String(64), nullable=False, unique=True)

    __table_args__ = (
        Index("ix_event_log_type_sequence", "event_type", "sequence_number"),
    )

    def __repr__(self) -> str:
        return (
            f"<Event seq={self.sequence_number} "
            f"type={self.event_type} hash={self.entry_hash[:12]}...>"
        )
