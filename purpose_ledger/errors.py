"""Exception hierarchy for the purpose-restricted ledger."""

from __future__ import annotations


class PurposeLedgerError(Exception):
    """Base exception for every rejected ledger operation."""

    pass


class InvalidPurposeError(PurposeLedgerError):
    """A zero or malformed purpose tag was given where a real purpose is required."""

    def __init__(self, purpose: bytes | str, reason: str = "purpose must not be zero") -> None:
        self.purpose = purpose
        super().__init__(f"Invalid purpose {purpose!r}: {reason}")


class UnauthorizedError(PurposeLedgerError):
    """Caller does not hold the role an operation requires."""

    def __init__(self, caller: str, role: str, reason: str | None = None) -> None:
        self.caller = caller
        self.role = role
        super().__init__(reason or f"Account {caller!r} does not hold role {role!r}")


class ArithmeticOverflowError(PurposeLedgerError):
    """A uint256 addition exceeded 2**256 - 1."""

    def __init__(self, a: int, b: int) -> None:
        self.a = a
        self.b = b
        super().__init__(f"uint256 overflow: {a} + {b}")


class ArithmeticUnderflowError(PurposeLedgerError):
    """A uint256 subtraction went below zero."""

    def __init__(self, a: int, b: int, message: str | None = None) -> None:
        self.a = a
        self.b = b
        super().__init__(message or f"uint256 underflow: {a} - {b}")


class InsufficientPoolBalanceError(ArithmeticUnderflowError):
    """A release asked for more than is restricted for the (account, purpose) pair."""

    def __init__(self, account: str, purpose: bytes, requested: int, available: int) -> None:
        self.account = account
        self.purpose = purpose
        self.requested = requested
        self.available = available
        super().__init__(
            available, requested,
            f"Cannot release {requested} from {account!r} purpose "
            f"0x{purpose.hex()}: only {available} restricted",
        )


class RestrictedFloorViolationError(PurposeLedgerError):
    """Transfer exceeds restricted amount: the sender would dip below its floor."""

    def __init__(self, account: str, balance: int, restricted: int, amount: int) -> None:
        self.account = account
        self.balance = balance
        self.restricted = restricted
        self.amount = amount
        super().__init__(
            f"Transfer exceeds restricted amount: {account!r} holds {balance}, "
            f"{restricted} restricted, cannot send {amount}"
        )


class UnderlyingTransferError(PurposeLedgerError):
    """The base token ledger refused to move value."""

    pass


class InvalidAccountError(UnderlyingTransferError):
    """Account identifier is empty or malformed."""

    def __init__(self, account: object) -> None:
        self.account = account
        super().__init__(f"Invalid account identifier: {account!r}")


class InvalidAmountError(UnderlyingTransferError):
    """Amount is not an integer in the uint256 range."""

    def __init__(self, amount: object) -> None:
        self.amount = amount
        super().__init__(f"Invalid amount: {amount!r}")


class InsufficientBalanceError(UnderlyingTransferError):
    """Sender's token balance is lower than the amount moved."""

    def __init__(self, account: str, balance: int, amount: int) -> None:
        self.account = account
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Insufficient balance: {account!r} holds {balance}, needs {amount}"
        )


class InsufficientAllowanceError(UnderlyingTransferError):
    """Spender's allowance is lower than the amount moved."""

    def __init__(self, owner: str, spender: str, allowance: int, amount: int) -> None:
        self.owner = owner
        self.spender = spender
        self.allowance = allowance
        self.amount = amount
        super().__init__(
            f"Insufficient allowance: {spender!r} may spend {allowance} "
            f"of {owner!r}, needs {amount}"
        )


class EventLogIntegrityError(PurposeLedgerError):
    """Raised when the event log hash chain cannot be extended or verified."""

    pass
