"""
Transfer Enforcement Hook — keeps senders above their restricted floor.

Restricted balance is not escrow: it is a floor under the sender's
spendable balance. Before each transfer the hook works out how much of
the sender's restricted commitments the transfer itself satisfies (value
paid to a recipient assigned a matching purpose), lowers the floor by that
much, and only then checks that the transfer fits above the floor.

Pools are drained in the recipient's assignment order. All arithmetic is
done on pending copies; nothing is written until the floor check passes.
"""

from __future__ import annotations

import logging

from purpose_ledger.errors import RestrictedFloorViolationError
from purpose_ledger.ledger.token import TokenLedger
from purpose_ledger.ledger.uint256 import checked_sub
from purpose_ledger.restrictions.ledger import RestrictionLedger
from purpose_ledger.schema import purpose_hex

logger = logging.getLogger(__name__)


class TransferEnforcementHook:
    """Before-transfer hook registered on the token ledger."""

    def __init__(self, restrictions: RestrictionLedger, token: TokenLedger) -> None:
        self.restrictions = restrictions
        self.token = token

    def __call__(self, sender: str | None, recipient: str | None, amount: int) -> None:
        self.before_transfer(sender, recipient, amount)

    def before_transfer(self, sender: str | None, recipient: str | None, amount: int) -> None:
        """
        Unlock matching restrictions and enforce the floor for one transfer.

        Args:
            sender: Account being debited (None for a mint).
            recipient: Account being credited (None for a burn).
            amount: Amount moved.

        Raises:
            RestrictedFloorViolationError: If the sender's pre-transfer
                balance is below the reduced floor plus ``amount``.
        """
        if sender is None:
            return

        restricted = self.restrictions.total_restricted(sender)
        if restricted == 0:
            return

        remaining = amount
        pending: dict[bytes, int] = {}
        purposes = self.restrictions.assigned_purposes(recipient) if recipient else []

        for purpose in purposes:
            if purpose in pending:
                pool = pending[purpose]
            else:
                pool = self.restrictions.pool_balance(sender, purpose)
            if pool == 0:
                continue

            if pool > remaining:
                restricted = checked_sub(restricted, remaining)
                pool -= remaining
                remaining = 0
            else:
                consumed = pool
                restricted = checked_sub(restricted, consumed)
                pool = 0
                remaining -= consumed

            pending[purpose] = pool
            if remaining == 0:
                break

        balance = self.token.balance_of(sender)
        if balance < restricted + amount:
            logger.warning(
                "Transfer rejected: %s -> %s amount=%d balance=%d restricted=%d",
                sender, recipient, amount, balance, restricted,
            )
            raise RestrictedFloorViolationError(sender, balance, restricted, amount)

        for purpose, pool in pending.items():
            self.restrictions.set_pool_balance(sender, purpose, pool)
            logger.info(
                "Restriction unlocked by transfer: %s purpose=%s pool=%d",
                sender, purpose_hex(purpose), pool,
            )
        if pending:
            self.restrictions.set_total_restricted(sender, restricted)
