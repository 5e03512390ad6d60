"""
Event Log — Append-only, hash-chained record of every emitted event.

Events are appended inside the caller's transaction, so an operation that
rolls back leaves no trace in the log. The log provides:
- Append with automatic hash chain computation
- Verification of the full hash chain
- Queries by event type and by involved account
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from purpose_ledger.errors import EventLogIntegrityError
from purpose_ledger.ledger.models import EventLogDB
from purpose_ledger.schema import ACCOUNT_FIELDS, EventType, LedgerEvent

logger = logging.getLogger(__name__)


GENESIS_HASH = "0" * 64  # The "previous hash" for the first entry in the chain


class EventLog:
    """
    Event log bound to one session (one transaction).

    Every event appended through :meth:`emit` is also kept in
    :attr:`emitted`, in order, so the service can notify subscribers once
    the transaction has committed.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.emitted: list[LedgerEvent] = []

    def emit(self, event: LedgerEvent) -> EventLogDB:
        """
        Append an event to the log.

        Returns:
            The newly created EventLogDB record (flushed, not committed).
        """
        last_entry = self.session.execute(
            select(EventLogDB)
            .order_by(EventLogDB.sequence_number.desc())
            .limit(1)
        ).scalar_one_or_none()

        if last_entry is None:
            new_seq, previous_hash = 0, GENESIS_HASH
        else:
            new_seq, previous_hash = last_entry.sequence_number + 1, last_entry.entry_hash

        payload = event.payload()
        timestamp = event.emitted_at.isoformat()
        entry_hash = compute_hash(
            sequence_number=new_seq,
            previous_hash=previous_hash,
            timestamp=timestamp,
            event_type=event.event_type.value,
            payload=payload,
        )

        entry = EventLogDB(
            sequence_number=new_seq,
            event_type=event.event_type.value,
            payload=payload,
            timestamp=timestamp,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
        )
        self.session.add(entry)
        self.session.flush()
        self.emitted.append(event)

        logger.debug(
            "Event appended: seq=%d type=%s hash=%s",
            new_seq, event.event_type.value, entry_hash[:16],
        )
        return entry

    def entries(
        self,
        event_type: EventType | str | None = None,
        account: str | None = None,
        limit: int = 100,
    ) -> list[EventLogDB]:
        """Retrieve log entries, newest first, optionally filtered."""
        stmt = select(EventLogDB).order_by(EventLogDB.sequence_number.desc())
        if event_type is not None:
            stmt = stmt.where(EventLogDB.event_type == EventType(event_type).value)
        if account is None:
            return list(self.session.execute(stmt.limit(limit)).scalars().all())

        # Payload JSON is not portably queryable; filter in Python.
        matches: list[EventLogDB] = []
        for entry in self.session.execute(stmt).scalars():
            if any(entry.payload.get(name) == account for name in ACCOUNT_FIELDS):
                matches.append(entry)
                if len(matches) >= limit:
                    break
        return matches

    def count(self) -> int:
        last = self.session.execute(
            select(EventLogDB.sequence_number)
            .order_by(EventLogDB.sequence_number.desc())
            .limit(1)
        ).scalar_one_or_none()
        return 0 if last is None else last + 1

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Verify the integrity of the entire hash chain.

        Walks every entry from the first forward, recomputing each hash and
        checking it against the stored hash and the next entry's link.

        Returns:
            Tuple of (is_valid, entries_verified, message).
        """
        entries = self.session.execute(
            select(EventLogDB).order_by(EventLogDB.sequence_number.asc())
        ).scalars().all()

        if not entries:
            return True, 0, "Event log is empty"

        if entries[0].previous_hash != GENESIS_HASH:
            return False, 0, "First entry does not chain from the genesis hash"

        for i, entry in enumerate(entries):
            if entry.sequence_number != i:
                return (
                    False, i,
                    f"Sequence gap: expected {i}, found {entry.sequence_number}"
                )

            expected_hash = compute_hash(
                sequence_number=entry.sequence_number,
                previous_hash=entry.previous_hash,
                timestamp=entry.timestamp,
                event_type=entry.event_type,
                payload=entry.payload,
            )
            if entry.entry_hash != expected_hash:
                return (
                    False, i,
                    f"Hash mismatch at sequence {entry.sequence_number}: "
                    f"stored={entry.entry_hash[:16]}... "
                    f"computed={expected_hash[:16]}..."
                )

            if i > 0 and entry.previous_hash != entries[i - 1].entry_hash:
                return (
                    False, i,
                    f"Chain break at sequence {entry.sequence_number}: "
                    f"previous_hash does not match prior entry's hash"
                )

        return (
            True, len(entries),
            f"Chain verified: {len(entries)} entries, integrity intact"
        )

    def require_valid_chain(self) -> int:
        is_valid, verified, message = self.verify_chain()
        if not is_valid:
            raise EventLogIntegrityError(message)
        return verified


def compute_hash(
    sequence_number: int,
    previous_hash: str,
    timestamp: str,
    event_type: str,
    payload: dict[str, Any],
) -> str:
    """
    Compute the SHA-256 hash for an event log entry.

    Hash = SHA-256(previous_hash || canonical_json(entry_fields))
    """
    hashable = {
        "sequence_number": sequence_number,
        "previous_hash": previous_hash,
        "timestamp": timestamp,
        "event_type": event_type,
        "payload": payload,
    }
    canonical = json.dumps(hashable, sort_keys=True, default=str)
    return hashlib.sha256(
        (previous_hash + canonical).encode("utf-8")
    ).hexdigest()
