"""
Per-sender daily send limit.

Sends are kept as a short history per sender; the window is a rolling
24 hours measured on the ledger's logical clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .errors import DailySendLimitExceededError
from .money import checked_add
from .storage import KeyValueStore, WriteBatch


SECONDS_IN_24_HOURS = 86_400

_SENDS_PREFIX = "sends:"


@dataclass
class SendRecord:
    timestamp: int
    amount: int


class SendLimiter:
    """Checks and records sends against an optional daily limit."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _key(self, sender: str) -> str:
        return f"{_SENDS_PREFIX}{sender}"

    def window(self, sender: str, now: int) -> list[SendRecord]:
        """Sends by ``sender`` inside the 24-hour window ending at ``now``."""
        # Window is (now - 24h, now], unclamped so a send stamped 0 counts.
        cutoff = now - SECONDS_IN_24_HOURS
        records = [SendRecord(**r) for r in self.store.get(self._key(sender)) or []]
        return [r for r in records if r.timestamp > cutoff]

    def sent_today(self, sender: str, now: int) -> int:
        return _total(self.window(sender, now))

    def stage_send(
        self,
        batch: WriteBatch,
        sender: str,
        amount: int,
        now: int,
        daily_limit: Optional[int],
    ) -> None:
        """Reject ``amount`` if it would exceed the limit, else record it."""
        if daily_limit is None:
            return
        records = self.window(sender, now)
        total = _total(records)
        if checked_add(total, amount) > daily_limit:
            raise DailySendLimitExceededError(amount, max(0, daily_limit - total))
        records.append(SendRecord(timestamp=now, amount=amount))
        batch.set(self._key(sender), [{"timestamp": r.timestamp, "amount": r.amount} for r in records])


def _total(records: list[SendRecord]) -> int:
    total = 0
    for record in records:
        total = checked_add(total, record.amount)
    return total
