"""Token ledger collaborator: the only place funds actually move.

The settlement engine only needs two calls from a token, mirroring ERC-20:
``allowance_of(owner, spender)`` and ``transfer_from(owner, recipient,
amount)`` performed by the coordinator as spender. ``SqlTokenLedger`` is the
development ledger kept in the coordinator database; because it shares the
caller's session, a settlement that rolls back also rolls back every
transfer it made.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from coordinator.digest import UINT256_MAX, normalize_address, require_uint256
from coordinator.models import TokenAllowance, TokenBalance

logger = logging.getLogger(__name__)


class TokenLedger(Protocol):
    def allowance_of(self, owner: str, spender: str) -> int: ...

    def transfer_from(self, owner: str, recipient: str, amount: int) -> bool: ...


LedgerFactory = Callable[[Session, str, str], TokenLedger]


def _lock(stmt):
    return stmt.with_for_update()


class SqlTokenLedger:
    def __init__(self, session: Session, token: str, caller: str) -> None:
        self.session = session
        self.token = normalize_address(token, "token")
        self.caller = normalize_address(caller, "caller")

    def _balance_row(self, holder: str, *, create: bool = False) -> TokenBalance | None:
        row = self.session.execute(
            _lock(select(TokenBalance).where(TokenBalance.token == self.token, TokenBalance.holder == holder))
        ).scalar_one_or_none()
        if row is None and create:
            row = TokenBalance(token=self.token, holder=holder, amount=0)
            self.session.add(row)
            self.session.flush()
        return row

    def _allowance_row(self, owner: str, spender: str, *, create: bool = False) -> TokenAllowance | None:
        row = self.session.execute(
            _lock(
                select(TokenAllowance).where(
                    TokenAllowance.token == self.token,
                    TokenAllowance.owner == owner,
                    TokenAllowance.spender == spender,
                )
            )
        ).scalar_one_or_none()
        if row is None and create:
            row = TokenAllowance(token=self.token, owner=owner, spender=spender, amount=0)
            self.session.add(row)
            self.session.flush()
        return row

    def balance_of(self, holder: str) -> int:
        row = self._balance_row(normalize_address(holder, "holder"))
        return int(row.amount) if row is not None else 0

    def allowance_of(self, owner: str, spender: str) -> int:
        row = self._allowance_row(normalize_address(owner, "owner"), normalize_address(spender, "spender"))
        return int(row.amount) if row is not None else 0

    def mint(self, holder: str, amount: int) -> int:
        holder = normalize_address(holder, "holder")
        require_uint256(amount, "amount")
        row = self._balance_row(holder, create=True)
        row.amount = require_uint256(int(row.amount) + amount, "balance")
        self.session.add(row)
        self.session.flush()
        return int(row.amount)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        """Set (not add to) the allowance ``owner`` grants ``spender``."""
        row = self._allowance_row(
            normalize_address(owner, "owner"),
            normalize_address(spender, "spender"),
            create=True,
        )
        row.amount = require_uint256(amount, "amount")
        self.session.add(row)
        self.session.flush()

    def transfer_from(self, owner: str, recipient: str, amount: int) -> bool:
        owner = normalize_address(owner, "owner")
        recipient = normalize_address(recipient, "recipient")

        allowance = self._allowance_row(owner, self.caller)
        if allowance is None or int(allowance.amount) < amount:
            logger.info("transfer_from %s -> %s refused: allowance too low", owner, recipient)
            return False
        source = self._balance_row(owner)
        if source is None or int(source.amount) < amount:
            logger.info("transfer_from %s -> %s refused: balance too low", owner, recipient)
            return False

        if int(allowance.amount) != UINT256_MAX:
            allowance.amount = int(allowance.amount) - amount
            self.session.add(allowance)

        source.amount = int(source.amount) - amount
        self.session.add(source)
        target = self._balance_row(recipient, create=True)
        target.amount = int(target.amount) + amount
        self.session.add(target)
        self.session.flush()
        return True
