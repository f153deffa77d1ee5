"""Running total of platform fees collected from confirmed remittances."""

from __future__ import annotations

from .money import checked_add
from .storage import KeyValueStore, WriteBatch


FEES_KEY = "accumulated_fees"


class FeeAccumulator:
    """
    Fee balance held in custody, logically separate from escrowed principal.

    Equals the sum of fees of confirmed remittances minus everything
    withdrawn so far.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def balance(self) -> int:
        return int(self.store.get(FEES_KEY) or 0)

    def stage_credit(self, batch: WriteBatch, amount: int) -> int:
        total = checked_add(self.balance(), amount)
        batch.set(FEES_KEY, total)
        return total

    def stage_reset(self, batch: WriteBatch) -> None:
        batch.set(FEES_KEY, 0)
