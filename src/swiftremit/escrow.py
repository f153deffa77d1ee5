"""
Remittance escrow operations.

Flow of every mutating call:
1. Verify the caller's proof against the required identity
2. Validate business preconditions
3. Stage all state changes in one write batch
4. Move funds through the value-transfer collaborator
5. Commit the batch, moving the funds back if the commit fails
6. Emit the notification event

Nothing is written until every fallible step has succeeded, so a failed
call leaves no trace in storage.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .auth import Proof, normalize_address, require_identity
from .config import Config, ConfigStore, validate_daily_limit, validate_fee_bps
from .errors import (
    AgentNotRegisteredError,
    AlreadyInitializedError,
    InvalidAmountError,
    InvalidStatusError,
    TransferFailedError,
)
from .events import Event, EventLog, EventSink, EventTopic
from .fees import FeeAccumulator
from .ledger import Remittance, RemittanceLedger, RemittanceStatus
from .limits import SendLimiter
from .money import compute_fee, ensure_amount
from .registry import AgentRegistry
from .storage import KeyValueStore, WriteBatch
from .transfer import ValueTransfer


logger = logging.getLogger(__name__)


@dataclass
class CustodyReport:
    """Pooled custody balance against the claims on it."""

    pending_principal: int
    accumulated_fees: int
    custody_balance: int

    @property
    def claims(self) -> int:
        return self.pending_principal + self.accumulated_fees

    @property
    def surplus(self) -> int:
        return self.custody_balance - self.claims

    @property
    def is_solvent(self) -> bool:
        return self.claims <= self.custody_balance

    def to_dict(self) -> dict:
        return {
            "pending_principal": self.pending_principal,
            "accumulated_fees": self.accumulated_fees,
            "custody_balance": self.custody_balance,
            "surplus": self.surplus,
            "solvent": self.is_solvent,
        }


class RemittanceEscrow:
    """Sender-to-agent remittance escrow with a proportional platform fee."""

    def __init__(
        self,
        store: KeyValueStore,
        transfer: ValueTransfer,
        custody: str,
        events: Optional[EventSink] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store
        self.transfer = transfer
        self.custody = normalize_address(custody)
        self.events = events if events is not None else EventLog()
        self.clock = clock or (lambda: int(time.time()))

        self.config = ConfigStore(store)
        self.agents = AgentRegistry(store)
        self.fees = FeeAccumulator(store)
        self.ledger = RemittanceLedger(store)
        self.limits = SendLimiter(store)

    # ── Administration ────────────────────────────────────────────

    def initialize(self, admin: str, settlement_asset: str, fee_bps: int) -> Config:
        """One-time setup. A second call fails and leaves the config untouched."""
        if self.config.is_initialized():
            raise AlreadyInitializedError("Contract is already initialized")
        config = Config(
            admin=normalize_address(admin),
            settlement_asset=normalize_address(settlement_asset),
            fee_bps=validate_fee_bps(fee_bps),
        )
        batch = WriteBatch()
        self.config.stage(batch, config)
        self.store.apply(batch)
        logger.info(
            "Escrow initialized (admin: %s, asset: %s, fee: %d bps)",
            config.admin,
            config.settlement_asset,
            config.fee_bps,
        )
        return config

    def _require_admin(self, proof: Optional[Proof]) -> Config:
        config = self.config.require()
        require_identity(proof, config.admin)
        return config

    def update_fee(self, proof: Optional[Proof], new_fee_bps: int) -> None:
        """Change the platform rate. Pending remittances keep their fee."""
        config = self._require_admin(proof)
        config.fee_bps = validate_fee_bps(new_fee_bps)
        batch = WriteBatch()
        self.config.stage(batch, config)
        self.store.apply(batch)
        logger.info("Platform fee updated to %d bps", new_fee_bps)
        self._emit(EventTopic.FEE_UPDATED, fee_bps=new_fee_bps)

    def set_daily_limit(self, proof: Optional[Proof], limit: Optional[int]) -> None:
        """Set or clear (``None``) the per-sender rolling 24-hour send limit."""
        config = self._require_admin(proof)
        config.daily_send_limit = validate_daily_limit(limit)
        batch = WriteBatch()
        self.config.stage(batch, config)
        self.store.apply(batch)
        logger.info("Daily send limit set to %s", limit)
        self._emit(EventTopic.LIMIT_UPDATED, daily_limit=limit)

    def register_agent(self, proof: Optional[Proof], agent: str) -> None:
        self._require_admin(proof)
        agent = normalize_address(agent)
        batch = WriteBatch()
        self.agents.stage_add(batch, agent)
        self.store.apply(batch)
        logger.info("Agent registered: %s", agent)
        self._emit(EventTopic.AGENT_REGISTERED, agent=agent)

    def remove_agent(self, proof: Optional[Proof], agent: str) -> None:
        self._require_admin(proof)
        agent = normalize_address(agent)
        batch = WriteBatch()
        self.agents.stage_remove(batch, agent)
        self.store.apply(batch)
        logger.info("Agent removed: %s", agent)
        self._emit(EventTopic.AGENT_REMOVED, agent=agent)

    # ── Remittance lifecycle ──────────────────────────────────────

    def create_remittance(
        self,
        proof: Optional[Proof],
        sender: str,
        agent: str,
        principal: int,
    ) -> int:
        """Escrow ``principal`` from ``sender`` for payout by ``agent``; returns the id."""
        sender = normalize_address(sender)
        require_identity(proof, sender)
        config = self.config.require()

        ensure_amount(principal)
        if principal <= 0:
            raise InvalidAmountError(principal)
        agent = normalize_address(agent)
        if not self.agents.is_registered(agent):
            raise AgentNotRegisteredError(agent)

        fee = compute_fee(principal, config.fee_bps)
        now = self.clock()
        remittance = Remittance(
            remittance_id=self.ledger.next_id(),
            sender=sender,
            agent=agent,
            principal=principal,
            fee=fee,
            status=RemittanceStatus.PENDING,
            created_at=now,
        )

        batch = WriteBatch()
        self.limits.stage_send(batch, sender, principal, now, config.daily_send_limit)
        self.ledger.stage_create(batch, remittance)

        self._move(sender, self.custody, principal)
        self._commit(batch, sender, self.custody, principal)

        logger.info(
            "Remittance %d created: %s -> %s, principal %d, fee %d",
            remittance.remittance_id,
            sender,
            agent,
            principal,
            fee,
        )
        self._emit(
            EventTopic.CREATED,
            id=remittance.remittance_id,
            sender=sender,
            agent=agent,
            principal=principal,
            fee=fee,
        )
        return remittance.remittance_id

    def confirm_payout(self, proof: Optional[Proof], remittance_id: int) -> Remittance:
        """Pay ``principal - fee`` to the agent and collect the fee."""
        self.config.require()
        remittance = self.ledger.get(remittance_id)
        require_identity(proof, remittance.agent)
        if remittance.status.is_terminal:
            raise InvalidStatusError(remittance_id, remittance.status.value)

        payout = remittance.payout
        remittance.status = RemittanceStatus.COMPLETED
        batch = WriteBatch()
        self.ledger.stage_save(batch, remittance)
        self.fees.stage_credit(batch, remittance.fee)

        if payout > 0:
            self._move(self.custody, remittance.agent, payout)
            self._commit(batch, self.custody, remittance.agent, payout)
        else:
            self.store.apply(batch)

        logger.info("Remittance %d completed: paid %d to %s", remittance_id, payout, remittance.agent)
        self._emit(EventTopic.COMPLETED, id=remittance_id, agent=remittance.agent, payout=payout)
        return remittance

    def cancel_remittance(self, proof: Optional[Proof], remittance_id: int) -> Remittance:
        """Refund the full principal to the sender; no fee is retained."""
        self.config.require()
        remittance = self.ledger.get(remittance_id)
        require_identity(proof, remittance.sender)
        if remittance.status.is_terminal:
            raise InvalidStatusError(remittance_id, remittance.status.value)

        remittance.status = RemittanceStatus.CANCELLED
        batch = WriteBatch()
        self.ledger.stage_save(batch, remittance)

        self._move(self.custody, remittance.sender, remittance.principal)
        self._commit(batch, self.custody, remittance.sender, remittance.principal)

        logger.info(
            "Remittance %d cancelled: refunded %d to %s",
            remittance_id,
            remittance.principal,
            remittance.sender,
        )
        self._emit(
            EventTopic.CANCELLED,
            id=remittance_id,
            sender=remittance.sender,
            refund=remittance.principal,
        )
        return remittance

    # ── Fees ──────────────────────────────────────────────────────

    def withdraw_fees(self, proof: Optional[Proof], recipient: str) -> int:
        """Send all accumulated fees to ``recipient``; returns the amount sent."""
        self._require_admin(proof)
        recipient = normalize_address(recipient)
        amount = self.fees.balance()
        if amount == 0:
            logger.info("No fees to withdraw")
            return 0

        batch = WriteBatch()
        self.fees.stage_reset(batch)
        self._move(self.custody, recipient, amount)
        self._commit(batch, self.custody, recipient, amount)

        logger.info("Withdrew %d in fees to %s", amount, recipient)
        self._emit(EventTopic.FEES_WITHDRAWN, recipient=recipient, amount=amount)
        return amount

    # ── Queries ───────────────────────────────────────────────────

    def get_remittance(self, remittance_id: int) -> Remittance:
        return self.ledger.get(remittance_id)

    def list_remittances(self, status: Optional[RemittanceStatus] = None) -> list[Remittance]:
        return self.ledger.list_remittances(status)

    def get_accumulated_fees(self) -> int:
        return self.fees.balance()

    def get_platform_fee_bps(self) -> int:
        return self.config.require().fee_bps

    def get_daily_send_limit(self) -> Optional[int]:
        return self.config.require().daily_send_limit

    def is_agent_registered(self, agent: str) -> bool:
        return self.agents.is_registered(normalize_address(agent))

    def list_agents(self) -> list[str]:
        return self.agents.list_agents()

    def custody_report(self) -> CustodyReport:
        return CustodyReport(
            pending_principal=self.ledger.pending_principal(),
            accumulated_fees=self.fees.balance(),
            custody_balance=self.transfer.balance(self.custody),
        )

    # ── Internals ─────────────────────────────────────────────────

    def _move(self, from_: str, to: str, amount: int) -> None:
        try:
            self.transfer.transfer(from_, to, amount)
        except TransferFailedError as e:
            logger.warning("Transfer of %d from %s to %s failed: %s", amount, from_, to, e)
            raise

    def _commit(self, batch: WriteBatch, from_: str, to: str, amount: int) -> None:
        """Apply ``batch`` after ``amount`` moved ``from_`` -> ``to``; undo the move on failure."""
        try:
            self.store.apply(batch)
        except Exception as e:
            logger.exception("Commit failed after moving %d from %s to %s; reversing", amount, from_, to)
            try:
                self._move(to, from_, amount)
            except TransferFailedError as reversal_error:
                raise reversal_error from e
            raise

    def _emit(self, topic: EventTopic, **payload) -> None:
        self.events.emit(Event(topic=topic, payload=payload))
