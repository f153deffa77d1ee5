"""
Value transfer of the settlement asset.

``ValueTransfer`` is the capability the escrow calls to move funds.
``LocalToken`` is a store-backed stand-in for the host's token contract,
suitable for local development and tests.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .errors import TransferFailedError
from .money import checked_add
from .storage import KeyValueStore, WriteBatch


logger = logging.getLogger(__name__)

_BALANCE_PREFIX = "balance:"


class ValueTransfer(Protocol):
    def transfer(self, from_: str, to: str, amount: int) -> None: ...

    def balance(self, holder: str) -> int: ...


class LocalToken:
    """Balances kept in a keyed store; each transfer commits on its own."""

    def __init__(self, store: KeyValueStore, asset: str):
        self.store = store
        self.asset = asset

    def _key(self, holder: str) -> str:
        return f"{_BALANCE_PREFIX}{self.asset}:{holder}"

    def balance(self, holder: str) -> int:
        return int(self.store.get(self._key(holder)) or 0)

    def mint(self, to: str, amount: int) -> int:
        if amount <= 0:
            raise ValueError(f"Mint amount must be positive, got {amount}")
        new_balance = checked_add(self.balance(to), amount)
        self.store.set(self._key(to), new_balance)
        logger.info("Minted %d to %s", amount, to)
        return new_balance

    def transfer(self, from_: str, to: str, amount: int) -> None:
        if amount <= 0:
            raise TransferFailedError(
                f"Transfer amount must be positive, got {amount}",
                from_=from_, to=to, amount=amount,
            )
        available = self.balance(from_)
        if available < amount:
            raise TransferFailedError(
                f"Insufficient balance: {from_} holds {available}, needs {amount}",
                from_=from_, to=to, amount=amount,
            )
        if from_ == to:
            return
        batch = WriteBatch()
        batch.set(self._key(from_), available - amount)
        batch.set(self._key(to), checked_add(self.balance(to), amount))
        self.store.apply(batch)
        logger.info("Transferred %d from %s to %s", amount, from_, to)
