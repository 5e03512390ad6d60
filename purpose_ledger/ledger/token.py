"""
Token Ledger — the base fungible-token collaborator.

Provides balances, allowances, mint/burn and transfers, plus the
transfer-lifecycle hook point: every registered before-transfer hook is
called with ``(sender, recipient, amount)`` after argument checks and
before any balance is changed. ``sender`` is None for a mint and
``recipient`` is None for a burn.
"""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from purpose_ledger.errors import (
    InsufficientAllowanceError,
    InsufficientBalanceError,
    InvalidAccountError,
    UnauthorizedError,
)
from purpose_ledger.ledger.events import EventLog
from purpose_ledger.ledger.models import AllowanceDB, TokenBalanceDB
from purpose_ledger.ledger.uint256 import checked_add, checked_sub, require_amount
from purpose_ledger.schema import MAX_UINT256, Approval, Transfer, require_account

logger = logging.getLogger(__name__)

BeforeTransferHook = Callable[[str | None, str | None, int], None]


class TokenLedger:
    """Balance bookkeeping for a single fungible token, scoped to one session."""

    def __init__(
        self,
        session: Session,
        events: EventLog,
        is_minter: Callable[[str], bool] | None = None,
    ) -> None:
        self.session = session
        self.events = events
        self.is_minter = is_minter or (lambda caller: False)
        self._hooks: list[BeforeTransferHook] = []

    def register_hook(self, hook: BeforeTransferHook) -> None:
        self._hooks.append(hook)

    # ── Reads ───────────────────────────────────────────────────

    def balance_of(self, account: str) -> int:
        row = self.session.get(TokenBalanceDB, account)
        return 0 if row is None else row.balance

    def total_supply(self) -> int:
        return sum(self.session.execute(select(TokenBalanceDB.balance)).scalars())

    def allowance(self, owner: str, spender: str) -> int:
        row = self.session.get(AllowanceDB, (owner, spender))
        return 0 if row is None else row.amount

    def holders(self) -> list[str]:
        return list(
            self.session.execute(
                select(TokenBalanceDB.account).order_by(TokenBalanceDB.account)
            ).scalars()
        )

    # ── Writes ──────────────────────────────────────────────────

    def mint(self, caller: str, account: str, amount: int) -> None:
        """Create ``amount`` new tokens in ``account``. Minter-only."""
        require_account(account)
        require_amount(amount)
        if not self.is_minter(caller):
            raise UnauthorizedError(caller, "owner", f"Account {caller!r} may not mint")

        self._run_hooks(None, account, amount)
        self._set_balance(account, checked_add(self.balance_of(account), amount))
        self.events.emit(Transfer(sender=None, recipient=account, amount=amount))
        logger.info("Minted %d to %s", amount, account)

    def burn(self, account: str, amount: int) -> None:
        """Destroy ``amount`` of the holder's own tokens."""
        require_account(account)
        require_amount(amount)

        self._run_hooks(account, None, amount)
        self._debit(account, amount)
        self.events.emit(Transfer(sender=account, recipient=None, amount=amount))
        logger.info("Burned %d from %s", amount, account)

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Move ``amount`` from ``sender`` to ``recipient``.

        Raises:
            UnderlyingTransferError: For a malformed account or amount, or
                an insufficient balance. Hooks may raise their own errors.
        """
        require_account(sender)
        require_account(recipient)
        require_amount(amount)

        self._run_hooks(sender, recipient, amount)
        self._debit(sender, amount)
        self._set_balance(recipient, checked_add(self.balance_of(recipient), amount))
        self.events.emit(Transfer(sender=sender, recipient=recipient, amount=amount))
        logger.info("Transfer %s -> %s: %d", sender, recipient, amount)
        return True

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        require_account(owner)
        require_account(spender)
        require_amount(amount)
        if owner == spender:
            raise InvalidAccountError(spender)

        self._set_allowance(owner, spender, amount)
        self.events.emit(Approval(owner=owner, spender=spender, amount=amount))
        return True

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        """
        Move ``amount`` out of ``owner``'s balance on behalf of ``spender``.

        An allowance of MAX_UINT256 is treated as unlimited and not decreased.
        """
        require_account(spender)
        require_amount(amount)
        allowance = self.allowance(owner, spender)
        if allowance < amount:
            raise InsufficientAllowanceError(owner, spender, allowance, amount)

        self.transfer(owner, recipient, amount)
        if allowance != MAX_UINT256:
            self._set_allowance(owner, spender, allowance - amount)
        return True

    # ── Internal ────────────────────────────────────────────────

    def _run_hooks(self, sender: str | None, recipient: str | None, amount: int) -> None:
        for hook in self._hooks:
            hook(sender, recipient, amount)

    def _debit(self, account: str, amount: int) -> None:
        balance = self.balance_of(account)
        if balance < amount:
            raise InsufficientBalanceError(account, balance, amount)
        self._set_balance(account, checked_sub(balance, amount))

    def _set_balance(self, account: str, balance: int) -> None:
        row = self.session.get(TokenBalanceDB, account, with_for_update=True)
        if row is None:
            self.session.add(TokenBalanceDB(account=account, balance=balance))
        else:
            row.balance = balance
        self.session.flush()

    def _set_allowance(self, owner: str, spender: str, amount: int) -> None:
        row = self.session.get(AllowanceDB, (owner, spender), with_for_update=True)
        if row is None:
            self.session.add(AllowanceDB(owner=owner, spender=spender, amount=amount))
        else:
            row.amount = amount
        self.session.flush()
