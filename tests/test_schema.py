"""
Tests for purpose tags, account validation and event models.
"""

from __future__ import annotations

import pytest

from purpose_ledger.errors import InvalidAccountError, InvalidPurposeError
from purpose_ledger.schema import (
    ZERO_PURPOSE,
    AccountRestrictions,
    Transfer,
    purpose_hex,
    purpose_label,
    require_account,
    to_purpose,
)


class TestPurposeTags:
    """Test purpose normalization."""

    def test_label_is_right_padded(self):
        tag = to_purpose("tax")
        assert len(tag) == 32
        assert tag.startswith(b"tax")
        assert tag[3:] == bytes(29)

    def test_hex_round_trips(self):
        tag = to_purpose("tax")
        assert to_purpose(purpose_hex(tag)) == tag

    def test_raw_bytes_pass_through(self):
        raw = bytes(range(32))
        assert to_purpose(raw) == raw

    def test_wrong_length_bytes_rejected(self):
        with pytest.raises(InvalidPurposeError):
            to_purpose(b"short")

    def test_long_label_rejected(self):
        with pytest.raises(InvalidPurposeError):
            to_purpose("x" * 33)

    def test_malformed_hex_rejected(self):
        with pytest.raises(InvalidPurposeError):
            to_purpose("0x" + "zz" * 32)

    def test_labels(self):
        assert purpose_label(to_purpose("payroll")) == "payroll"
        assert purpose_label(ZERO_PURPOSE) == purpose_hex(ZERO_PURPOSE)


class TestModels:
    """Test event and snapshot models."""

    def test_transfer_payload_for_mint(self):
        event = Transfer(sender=None, recipient="0xalice", amount=5)
        assert event.payload() == {"sender": None, "recipient": "0xalice", "amount": "5"}
        assert event.involves("0xalice")
        assert not event.involves("0xbob")

    def test_free_balance_never_negative(self):
        snap = AccountRestrictions(account="0xa", balance=10, total_restricted=50)
        assert snap.free_balance == 0

    def test_require_account(self):
        assert require_account("0xa") == "0xa"
        with pytest.raises(InvalidAccountError):
            require_account(None)
