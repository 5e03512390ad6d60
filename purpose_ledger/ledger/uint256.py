"""Checked unsigned 256-bit arithmetic for ledger amounts."""

from __future__ import annotations

from purpose_ledger.errors import (
    ArithmeticOverflowError,
    ArithmeticUnderflowError,
    InvalidAmountError,
)
from purpose_ledger.schema import MAX_UINT256


def require_amount(amount: object) -> int:
    # bool is an int subclass; a True amount is always a caller bug
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(amount)
    if amount < 0 or amount > MAX_UINT256:
        raise InvalidAmountError(amount)
    return amount


def checked_add(a: int, b: int) -> int:
    result = a + b
    if result > MAX_UINT256:
        raise ArithmeticOverflowError(a, b)
    return result


def checked_sub(a: int, b: int) -> int:
    if b > a:
        raise ArithmeticUnderflowError(a, b)
    return a - b
