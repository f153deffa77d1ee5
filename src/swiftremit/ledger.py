"""
Remittance records and the id allocator.

Remittances are never deleted; terminal records stay queryable as an
audit trail.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Mapping, Optional

from .errors import AmountOverflowError, NotFoundError
from .money import checked_add
from .storage import KeyValueStore, WriteBatch


COUNTER_KEY = "remittance_counter"
MAX_REMITTANCE_ID = 2**64 - 1

_REMITTANCE_PREFIX = "remittance:"


class RemittanceStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RemittanceStatus.PENDING


@dataclass
class Remittance:
    """One sender-to-agent transfer request."""

    remittance_id: int
    sender: str
    agent: str
    principal: int
    fee: int
    status: RemittanceStatus
    created_at: int

    @property
    def payout(self) -> int:
        return self.principal - self.fee

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, d: Mapping) -> Remittance:
        data = dict(d)
        data["status"] = RemittanceStatus(data["status"])
        return cls(**data)


class RemittanceLedger:
    """Stores remittances and allocates strictly increasing ids."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _key(self, remittance_id: int) -> str:
        # Zero-padded so prefix scans return records in id order.
        return f"{_REMITTANCE_PREFIX}{remittance_id:020d}"

    def find(self, remittance_id: int) -> Optional[Remittance]:
        if not isinstance(remittance_id, int) or remittance_id < 1 or remittance_id > MAX_REMITTANCE_ID:
            return None
        raw = self.store.get(self._key(remittance_id))
        return None if raw is None else Remittance.from_dict(raw)

    def get(self, remittance_id: int) -> Remittance:
        remittance = self.find(remittance_id)
        if remittance is None:
            raise NotFoundError(remittance_id)
        return remittance

    def last_id(self) -> int:
        return int(self.store.get(COUNTER_KEY) or 0)

    def next_id(self) -> int:
        next_id = self.last_id() + 1
        if next_id > MAX_REMITTANCE_ID:
            raise AmountOverflowError("Remittance id sequence exhausted")
        return next_id

    def list_remittances(self, status: Optional[RemittanceStatus] = None) -> list[Remittance]:
        records = [Remittance.from_dict(raw) for _, raw in self.store.scan(_REMITTANCE_PREFIX)]
        if status is not None:
            records = [r for r in records if r.status is status]
        return records

    def pending_principal(self) -> int:
        total = 0
        for remittance in self.list_remittances(RemittanceStatus.PENDING):
            total = checked_add(total, remittance.principal)
        return total

    def stage_create(self, batch: WriteBatch, remittance: Remittance) -> None:
        batch.set(COUNTER_KEY, remittance.remittance_id)
        self.stage_save(batch, remittance)

    def stage_save(self, batch: WriteBatch, remittance: Remittance) -> None:
        batch.set(self._key(remittance.remittance_id), remittance.to_dict())
