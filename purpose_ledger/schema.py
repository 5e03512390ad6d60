"""
Ledger Schema — Pydantic models and constants for the purpose-restricted ledger.

These models are the canonical shapes of everything the ledger emits:
the three restriction events, the base token events, and the audit
findings produced by the invariant checker. Purposes travel through the
system as raw 32-byte values and are rendered as ``0x`` hex whenever they
leave it (event payloads, CLI output).
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_serializer

from purpose_ledger.errors import InvalidAccountError, InvalidPurposeError


# ════════════════════════════════════════════════════════════════
# Constants
# ════════════════════════════════════════════════════════════════

PURPOSE_SIZE = 32
ZERO_PURPOSE = bytes(PURPOSE_SIZE)  # Reserved; never a real purpose
MAX_UINT256 = 2**256 - 1  # Also the "release everything" sentinel
MAX_ACCOUNT_LENGTH = 64


# ════════════════════════════════════════════════════════════════
# Purpose and account helpers
# ════════════════════════════════════════════════════════════════


def to_purpose(value: bytes | bytearray | str) -> bytes:
    """
    Normalize a purpose tag to 32 raw bytes.

    Accepts 32 raw bytes, a ``0x``-prefixed 64-digit hex string, or a short
    UTF-8 label (at most 32 bytes) which is right-padded with NULs, the
    same way a fixed-size string literal is packed into a 32-byte word.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != PURPOSE_SIZE:
            raise InvalidPurposeError(value, f"expected {PURPOSE_SIZE} bytes, got {len(value)}")
        return bytes(value)

    if isinstance(value, str):
        if value.startswith("0x") and len(value) == 2 + 2 * PURPOSE_SIZE:
            try:
                return bytes.fromhex(value[2:])
            except ValueError as exc:
                raise InvalidPurposeError(value, "malformed hex") from exc
        encoded = value.encode("utf-8")
        if len(encoded) > PURPOSE_SIZE:
            raise InvalidPurposeError(value, f"label longer than {PURPOSE_SIZE} bytes")
        return encoded.ljust(PURPOSE_SIZE, b"\x00")

    raise InvalidPurposeError(repr(value), "unsupported purpose type")


def purpose_hex(purpose: bytes) -> str:
    return "0x" + purpose.hex()


def purpose_label(purpose: bytes) -> str:
    """Best-effort human label: the NUL-stripped UTF-8 text, or the hex form."""
    stripped = purpose.rstrip(b"\x00")
    if stripped and b"\x00" not in stripped:
        try:
            return stripped.decode("utf-8")
        except UnicodeDecodeError:
            pass
    return purpose_hex(purpose)


def require_account(account: object) -> str:
    if not isinstance(account, str) or not account or len(account) > MAX_ACCOUNT_LENGTH:
        raise InvalidAccountError(account)
    return account


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class EventType(str, enum.Enum):
    """Types of event log entries."""

    # Restriction events
    PURPOSES_ASSIGNED = "purposes_assigned"
    RESTRICTION_BALANCE_UPDATED = "restriction_balance_updated"
    PURPOSE_TRANSFER_EXECUTED = "purpose_transfer_executed"

    # Base token events
    TRANSFER = "transfer"
    APPROVAL = "approval"


class ViolationKind(str, enum.Enum):
    """Invariant failures the auditor can report."""

    TOTAL_EXCEEDS_BALANCE = "total_exceeds_balance"
    TOTAL_POOL_MISMATCH = "total_pool_mismatch"


# ════════════════════════════════════════════════════════════════
# Events
# ════════════════════════════════════════════════════════════════

ACCOUNT_FIELDS = ("account", "sender", "recipient", "owner", "spender")


class LedgerEvent(BaseModel):
    """Base class for every event the ledger emits."""

    event_type: EventType
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def payload(self) -> dict[str, Any]:
        """JSON-ready event body, as stored in the event log."""
        return self.model_dump(mode="json", exclude={"event_type", "emitted_at"})

    def involves(self, account: str) -> bool:
        return any(getattr(self, name, None) == account for name in ACCOUNT_FIELDS)


class PurposesAssigned(LedgerEvent):
    """An account's purpose assignment was replaced wholesale."""

    event_type: EventType = EventType.PURPOSES_ASSIGNED
    account: str
    new_purposes: list[bytes]
    old_purposes: list[bytes]

    @field_serializer("new_purposes", "old_purposes")
    def _serialize_purposes(self, value: list[bytes]) -> list[str]:
        return [purpose_hex(p) for p in value]


class RestrictionBalanceUpdated(LedgerEvent):
    """A purpose pool changed; carries the pool's new balance."""

    event_type: EventType = EventType.RESTRICTION_BALANCE_UPDATED
    account: str
    purpose: bytes
    balance: int

    @field_serializer("purpose")
    def _serialize_purpose(self, value: bytes) -> str:
        return purpose_hex(value)

    @field_serializer("balance")
    def _serialize_balance(self, value: int) -> str:
        return str(value)


class PurposeTransferExecuted(LedgerEvent):
    """An earmarking transfer moved value and recorded a restriction on the sender."""

    event_type: EventType = EventType.PURPOSE_TRANSFER_EXECUTED
    sender: str
    recipient: str
    amount: int
    purpose: bytes

    @field_serializer("purpose")
    def _serialize_purpose(self, value: bytes) -> str:
        return purpose_hex(value)

    @field_serializer("amount")
    def _serialize_amount(self, value: int) -> str:
        return str(value)


class Transfer(LedgerEvent):
    """Value moved between accounts. ``sender`` is None on mint, ``recipient`` on burn."""

    event_type: EventType = EventType.TRANSFER
    sender: str | None
    recipient: str | None
    amount: int

    @field_serializer("amount")
    def _serialize_amount(self, value: int) -> str:
        return str(value)


class Approval(LedgerEvent):
    """An owner set a spender's allowance."""

    event_type: EventType = EventType.APPROVAL
    owner: str
    spender: str
    amount: int

    @field_serializer("amount")
    def _serialize_amount(self, value: int) -> str:
        return str(value)


# ════════════════════════════════════════════════════════════════
# Audit findings
# ════════════════════════════════════════════════════════════════


class AccountRestrictions(BaseModel):
    """Snapshot of one account's restriction state, used by the auditor."""

    account: str
    balance: int
    total_restricted: int
    pools: dict[str, int] = Field(default_factory=dict)  # purpose hex -> balance

    @property
    def pool_sum(self) -> int:
        return sum(self.pools.values())

    @property
    def free_balance(self) -> int:
        return max(self.balance - self.total_restricted, 0)


class InvariantViolation(BaseModel):
    """A broken restriction invariant for one account."""

    kind: ViolationKind
    account: str
    expected: int
    actual: int
    detail: str
