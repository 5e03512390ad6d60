"""
Tests for the Restriction Ledger and the Transfer Enforcement Hook.

Validates:
- Earmarking transfers record restrictions on the sender
- Transfers to purpose-matching recipients unlock restricted balance
- The restricted floor rejects other transfers, atomically
- Release by the compliance role, including the release-all sentinel
- Purpose assignment snapshots and ordering
"""

from __future__ import annotations

import pytest

from purpose_ledger.errors import (
    ArithmeticUnderflowError,
    InsufficientBalanceError,
    InsufficientPoolBalanceError,
    InvalidPurposeError,
    RestrictedFloorViolationError,
    UnauthorizedError,
    UnderlyingTransferError,
)
from purpose_ledger.governance.permissions import PermissionEngine
from purpose_ledger.ledger.models import RestrictedTotalDB
from purpose_ledger.schema import MAX_UINT256, ZERO_PURPOSE, ViolationKind, to_purpose
from purpose_ledger.service import PurposeLedgerService

OWNER = "0xowner"
COMPLIANCE = "0xcompliance"
ALICE = "0xalice"
BOB = "0xbob"
CLINIC = "0xclinic"
DAVE = "0xdave"

P1 = to_purpose("tax-reserve")
P2 = to_purpose("payroll")


def make_service() -> PurposeLedgerService:
    service = PurposeLedgerService(
        "sqlite://",
        PermissionEngine.from_accounts(owner=OWNER, blacklister=COMPLIANCE),
    )
    service.initialize()
    return service


class LedgerTestCase:
    def setup_method(self):
        self.service = make_service()

    def restricted(self, account: str, purpose: bytes = ZERO_PURPOSE) -> int:
        return self.service.balance_of_restricted(account, purpose)


class TestEarmarking(LedgerTestCase):
    """Scenario A and B: plain transfers and earmarking transfers."""

    def test_unrestricted_transfer_is_unaffected(self):
        """Scenario A: no purposes, no restrictions, transfer succeeds."""
        self.service.mint(OWNER, ALICE, 100)
        assert self.service.transfer(ALICE, BOB, 100) is True
        assert self.service.balance_of(ALICE) == 0
        assert self.service.balance_of(BOB) == 100
        assert self.restricted(ALICE) == 0

    def test_earmark_restricts_sender(self):
        """Scenario B: restriction is recorded on the sender, not the recipient."""
        self.service.mint(OWNER, ALICE, 200)
        assert self.service.transfer_with_purpose(ALICE, BOB, 50, P1) is True

        assert self.restricted(ALICE, P1) == 50
        assert self.restricted(ALICE) == 50
        assert self.service.balance_of(ALICE) == 150
        assert self.service.balance_of(BOB) == 50
        assert self.restricted(BOB) == 0

    def test_earmark_accepts_labels_and_hex(self):
        self.service.mint(OWNER, ALICE, 200)
        self.service.create_restriction(ALICE, BOB, 10, "tax-reserve")
        self.service.create_restriction(ALICE, BOB, 5, "0x" + P1.hex())
        assert self.restricted(ALICE, P1) == 15

    def test_earmark_zero_purpose_rejected_before_transfer(self):
        self.service.mint(OWNER, ALICE, 200)
        with pytest.raises(InvalidPurposeError):
            self.service.transfer_with_purpose(ALICE, BOB, 50, ZERO_PURPOSE)
        assert self.service.balance_of(ALICE) == 200
        assert self.service.balance_of(BOB) == 0

    def test_earmark_failed_transfer_records_nothing(self):
        self.service.mint(OWNER, ALICE, 10)
        with pytest.raises(InsufficientBalanceError) as exc_info:
            self.service.transfer_with_purpose(ALICE, BOB, 50, P1)
        assert isinstance(exc_info.value, UnderlyingTransferError)
        assert self.restricted(ALICE) == 0
        assert self.restricted(ALICE, P1) == 0
        assert self.service.balance_of(ALICE) == 10

    def test_earmark_cannot_leave_restriction_above_balance(self):
        self.service.mint(OWNER, ALICE, 100)
        with pytest.raises(RestrictedFloorViolationError):
            self.service.transfer_with_purpose(ALICE, BOB, 100, P1)
        assert self.service.balance_of(ALICE) == 100
        assert self.service.balance_of(BOB) == 0
        assert self.restricted(ALICE) == 0


class TestEnforcementHook(LedgerTestCase):
    """Scenario C and D plus ordering and atomicity of the hook."""

    def test_transfer_to_matching_recipient_unlocks(self):
        """Scenario C: 30 paid to a P1 recipient unlocks 30 of the 50."""
        self.service.mint(OWNER, ALICE, 250)
        self.service.transfer_with_purpose(ALICE, DAVE, 50, P1)
        assert self.service.balance_of(ALICE) == 200
        self.service.assign_purposes(OWNER, BOB, [P1])

        self.service.transfer(ALICE, BOB, 30)

        assert self.restricted(ALICE, P1) == 20
        assert self.restricted(ALICE) == 20
        assert self.service.balance_of(ALICE) == 170
        assert self.service.check_invariants() == []

    def test_fully_consumed_pool_counts_its_pre_zero_balance(self):
        """A drained pool must reduce the remaining amount by what it held."""
        self.service.mint(OWNER, ALICE, 150)
        self.service.transfer_with_purpose(ALICE, DAVE, 10, P1)
        self.service.transfer_with_purpose(ALICE, DAVE, 40, P2)
        self.service.assign_purposes(OWNER, CLINIC, [P1, P2])

        self.service.transfer(ALICE, CLINIC, 30)

        # P1 drained (10), remaining 20 taken from P2.
        assert self.restricted(ALICE, P1) == 0
        assert self.restricted(ALICE, P2) == 20
        assert self.restricted(ALICE) == 20
        assert self.service.check_invariants() == []

    def test_floor_violation_at_boundary(self):
        """Scenario D: restricted == balance, 1 unit to a non-matching account fails."""
        self.service.mint(OWNER, ALICE, 200)
        self.service.transfer_with_purpose(ALICE, DAVE, 100, P1)
        assert self.service.balance_of(ALICE) == 100
        assert self.restricted(ALICE) == 100

        with pytest.raises(RestrictedFloorViolationError) as exc_info:
            self.service.transfer(ALICE, BOB, 1)

        assert exc_info.value.balance == 100
        assert exc_info.value.restricted == 100
        assert self.service.balance_of(ALICE) == 100
        assert self.service.balance_of(BOB) == 0

    def test_boundary_transfer_to_matching_recipient_passes(self):
        self.service.mint(OWNER, ALICE, 200)
        self.service.transfer_with_purpose(ALICE, DAVE, 100, P1)
        self.service.assign_purposes(OWNER, CLINIC, [P1])

        self.service.transfer(ALICE, CLINIC, 1)

        assert self.restricted(ALICE, P1) == 99
        assert self.service.balance_of(ALICE) == 99

    def test_rejected_transfer_keeps_pools(self):
        """A partial unlock computed before the floor check is not kept."""
        self.service.mint(OWNER, ALICE, 200)
        self.service.transfer_with_purpose(ALICE, DAVE, 30, P1)
        self.service.transfer_with_purpose(ALICE, DAVE, 70, P2)
        self.service.assign_purposes(OWNER, CLINIC, [P1])
        events_before = self.service.event_count()

        with pytest.raises(RestrictedFloorViolationError):
            self.service.transfer(ALICE, CLINIC, 50)

        assert self.restricted(ALICE, P1) == 30
        assert self.restricted(ALICE, P2) == 70
        assert self.restricted(ALICE) == 100
        assert self.service.balance_of(ALICE) == 100
        assert self.service.event_count() == events_before

    def test_pools_drain_in_assignment_order(self):
        self.service.mint(OWNER, ALICE, 100)
        self.service.transfer_with_purpose(ALICE, DAVE, 20, P1)
        self.service.transfer_with_purpose(ALICE, DAVE, 20, P2)
        self.service.assign_purposes(OWNER, CLINIC, [P2, P1])

        self.service.transfer(ALICE, CLINIC, 10)

        assert self.restricted(ALICE, P2) == 10
        assert self.restricted(ALICE, P1) == 20

    def test_duplicate_purpose_drains_pool_once(self):
        self.service.mint(OWNER, ALICE, 120)
        self.service.transfer_with_purpose(ALICE, DAVE, 20, P1)
        self.service.assign_purposes(OWNER, CLINIC, [P1, P1])

        self.service.transfer(ALICE, CLINIC, 50)

        assert self.restricted(ALICE, P1) == 0
        assert self.restricted(ALICE) == 0
        assert self.service.balance_of(ALICE) == 50
        assert self.service.check_invariants() == []

    def test_burn_is_checked_against_floor(self):
        self.service.mint(OWNER, ALICE, 200)
        self.service.transfer_with_purpose(ALICE, DAVE, 100, P1)
        with pytest.raises(RestrictedFloorViolationError):
            self.service.burn(ALICE, 1)
        self.service.release_all(COMPLIANCE, ALICE, P1)
        self.service.burn(ALICE, 1)
        assert self.service.balance_of(ALICE) == 99

    def test_transfer_from_is_checked_against_floor(self):
        self.service.mint(OWNER, ALICE, 200)
        self.service.transfer_with_purpose(ALICE, DAVE, 100, P1)
        self.service.approve(ALICE, BOB, 50)
        with pytest.raises(RestrictedFloorViolationError):
            self.service.transfer_from(BOB, ALICE, BOB, 50)
        assert self.service.allowance(ALICE, BOB) == 50


class TestRelease(LedgerTestCase):
    """Release by the compliance role."""

    def setup_method(self):
        super().setup_method()
        self.service.mint(OWNER, ALICE, 200)

    def test_round_trip(self):
        self.service.transfer_with_purpose(ALICE, BOB, 50, P1)
        self.service.release_restriction(COMPLIANCE, ALICE, 50, P1)
        assert self.restricted(ALICE, P1) == 0
        assert self.restricted(ALICE) == 0

    def test_partial_release(self):
        self.service.transfer_with_purpose(ALICE, BOB, 50, P1)
        assert self.service.release_restriction(COMPLIANCE, ALICE, 20, P1) == 20
        assert self.restricted(ALICE, P1) == 30
        assert self.restricted(ALICE) == 30

    def test_release_all_sentinel(self):
        self.service.transfer_with_purpose(ALICE, BOB, 50, P1)
        self.service.transfer_with_purpose(ALICE, BOB, 10, P2)
        released = self.service.release_restriction(COMPLIANCE, ALICE, MAX_UINT256, P1)
        assert released == 50
        assert self.restricted(ALICE, P1) == 0
        assert self.restricted(ALICE, P2) == 10
        assert self.restricted(ALICE) == 10

    def test_release_more_than_pool_fails(self):
        self.service.transfer_with_purpose(ALICE, BOB, 50, P1)
        with pytest.raises(InsufficientPoolBalanceError) as exc_info:
            self.service.release_restriction(COMPLIANCE, ALICE, 51, P1)
        assert isinstance(exc_info.value, ArithmeticUnderflowError)
        assert exc_info.value.available == 50
        assert self.restricted(ALICE, P1) == 50
        assert self.restricted(ALICE) == 50
        assert self.service.balance_of(ALICE) == 150

    def test_release_requires_blacklister(self):
        self.service.transfer_with_purpose(ALICE, BOB, 50, P1)
        with pytest.raises(UnauthorizedError):
            self.service.release_restriction(OWNER, ALICE, 50, P1)
        assert self.restricted(ALICE, P1) == 50

    def test_release_zero_purpose_rejected(self):
        with pytest.raises(InvalidPurposeError):
            self.service.release_restriction(COMPLIANCE, ALICE, 0, ZERO_PURPOSE)


class TestPurposeAssignment(LedgerTestCase):
    """Owner-only wholesale replacement of purpose assignments."""

    def test_assign_replaces_and_reports_old(self):
        first = self.service.assign_purposes(OWNER, CLINIC, [P1])
        assert first.old_purposes == []
        second = self.service.assign_purposes(OWNER, CLINIC, [P2, P1])
        assert second.old_purposes == [P1]
        assert second.new_purposes == [P2, P1]
        assert self.service.assigned_purposes(CLINIC) == [P2, P1]

    def test_clearing_twice_reports_previous_result(self):
        self.service.assign_purposes(OWNER, CLINIC, [P1, P2])
        first = self.service.assign_purposes(OWNER, CLINIC, [])
        assert first.new_purposes == []
        assert first.old_purposes == [P1, P2]

        second = self.service.assign_purposes(OWNER, CLINIC, [])
        assert second.new_purposes == []
        assert second.old_purposes == []
        assert self.service.assigned_purposes(CLINIC) == []

    def test_duplicates_are_stored(self):
        self.service.assign_purposes(OWNER, CLINIC, [P1, P1])
        assert self.service.assigned_purposes(CLINIC) == [P1, P1]

    def test_assign_requires_owner(self):
        with pytest.raises(UnauthorizedError):
            self.service.assign_purposes(ALICE, CLINIC, [P1])
        assert self.service.assigned_purposes(CLINIC) == []

    def test_unassigned_account_has_no_purposes(self):
        assert self.service.assigned_purposes("0xnobody") == []


class TestInvariants(LedgerTestCase):
    """Restricted totals against balances and pool sums."""

    def test_invariants_hold_through_mixed_operations(self):
        self.service.mint(OWNER, ALICE, 1_000)
        self.service.assign_purposes(OWNER, CLINIC, [P1, P2])
        self.service.transfer_with_purpose(ALICE, BOB, 100, P1)
        self.service.transfer_with_purpose(ALICE, BOB, 200, P2)
        self.service.transfer(ALICE, CLINIC, 150)
        self.service.release_restriction(COMPLIANCE, ALICE, 25, P2)
        self.service.transfer(ALICE, DAVE, 100)

        assert self.service.check_invariants() == []
        total = self.restricted(ALICE)
        assert total == self.restricted(ALICE, P1) + self.restricted(ALICE, P2)
        assert total <= self.service.balance_of(ALICE)
        assert self.service.free_balance(ALICE) == self.service.balance_of(ALICE) - total

    def test_divergence_is_reported(self):
        self.service.mint(OWNER, ALICE, 200)
        self.service.transfer_with_purpose(ALICE, BOB, 50, P1)
        with self.service.SessionLocal.begin() as session:
            session.get(RestrictedTotalDB, ALICE).total = 500

        kinds = {v.kind for v in self.service.check_invariants()}
        assert kinds == {
            ViolationKind.TOTAL_EXCEEDS_BALANCE,
            ViolationKind.TOTAL_POOL_MISMATCH,
        }
