"""Tests for the remittance escrow lifecycle."""

from types import SimpleNamespace

import pytest
from eth_account import Account

from swiftremit.auth import Proof
from swiftremit.errors import (
    AgentNotRegisteredError,
    AlreadyInitializedError,
    AmountOverflowError,
    InvalidAddressError,
    InvalidAmountError,
    InvalidConfigurationError,
    InvalidStatusError,
    NotFoundError,
    NotInitializedError,
    TransferFailedError,
    UnauthorizedError,
)
from swiftremit.escrow import RemittanceEscrow
from swiftremit.events import EventLog, EventTopic
from swiftremit.ledger import RemittanceStatus
from swiftremit.money import I128_MAX
from swiftremit.storage import MemoryStore
from swiftremit.transfer import LocalToken


ADMIN = Account.create().address
ASSET = Account.create().address
CUSTODY = Account.create().address
SENDER = Account.create().address
AGENT = Account.create().address
OTHER_AGENT = Account.create().address
RECIPIENT = Account.create().address


class FlakyToken:
    """Wraps a token and declines the next transfer when asked."""

    def __init__(self, inner: LocalToken):
        self.inner = inner
        self.fail_next = False

    def balance(self, holder):
        return self.inner.balance(holder)

    def transfer(self, from_, to, amount):
        if self.fail_next:
            self.fail_next = False
            raise TransferFailedError("declined by host", from_=from_, to=to, amount=amount)
        self.inner.transfer(from_, to, amount)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def token(store):
    token = LocalToken(store, ASSET)
    token.mint(SENDER, 10_000)
    return token


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def escrow(store, token, events):
    escrow = RemittanceEscrow(store, token, custody=CUSTODY, events=events, clock=lambda: 1_700_000_000)
    escrow.initialize(ADMIN, ASSET, 250)
    escrow.register_agent(Proof(ADMIN), AGENT)
    return escrow


@pytest.fixture
def bare_escrow(store, token, events):
    return RemittanceEscrow(store, token, custody=CUSTODY, events=events)


class TestInitialize:
    def test_initialize_sets_fee(self, bare_escrow):
        bare_escrow.initialize(ADMIN, ASSET, 250)
        assert bare_escrow.get_platform_fee_bps() == 250

    def test_initialize_twice_keeps_original_config(self, bare_escrow):
        bare_escrow.initialize(ADMIN, ASSET, 250)
        with pytest.raises(AlreadyInitializedError):
            bare_escrow.initialize(OTHER_AGENT, ASSET, 500)

        config = bare_escrow.config.require()
        assert config.admin == ADMIN
        assert config.fee_bps == 250

    def test_initialize_rejects_fee_above_100_percent(self, bare_escrow):
        with pytest.raises(InvalidConfigurationError):
            bare_escrow.initialize(ADMIN, ASSET, 10_001)
        assert not bare_escrow.config.is_initialized()

    def test_initialize_accepts_bounds(self, store, token):
        RemittanceEscrow(MemoryStore(), token, custody=CUSTODY).initialize(ADMIN, ASSET, 0)
        RemittanceEscrow(MemoryStore(), token, custody=CUSTODY).initialize(ADMIN, ASSET, 10_000)

    def test_initialize_rejects_bad_address(self, bare_escrow):
        with pytest.raises(InvalidAddressError):
            bare_escrow.initialize("not-an-address", ASSET, 250)

    @pytest.mark.parametrize(
        "call",
        [
            lambda e: e.register_agent(Proof(ADMIN), AGENT),
            lambda e: e.remove_agent(Proof(ADMIN), AGENT),
            lambda e: e.update_fee(Proof(ADMIN), 100),
            lambda e: e.set_daily_limit(Proof(ADMIN), 1_000),
            lambda e: e.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000),
            lambda e: e.confirm_payout(Proof(AGENT), 1),
            lambda e: e.cancel_remittance(Proof(SENDER), 1),
            lambda e: e.withdraw_fees(Proof(ADMIN), RECIPIENT),
        ],
    )
    def test_mutations_before_initialize_fail(self, bare_escrow, token, call):
        with pytest.raises(NotInitializedError):
            call(bare_escrow)
        assert token.balance(SENDER) == 10_000
        assert token.balance(CUSTODY) == 0


class TestAgentRegistry:
    def test_register_and_remove(self, escrow):
        assert escrow.is_agent_registered(AGENT)
        escrow.remove_agent(Proof(ADMIN), AGENT)
        assert not escrow.is_agent_registered(AGENT)

    def test_register_is_idempotent(self, escrow):
        escrow.register_agent(Proof(ADMIN), AGENT)
        assert escrow.list_agents() == [AGENT]

    def test_remove_absent_agent_succeeds(self, escrow):
        escrow.remove_agent(Proof(ADMIN), OTHER_AGENT)
        assert not escrow.is_agent_registered(OTHER_AGENT)

    def test_register_requires_admin(self, escrow):
        with pytest.raises(UnauthorizedError):
            escrow.register_agent(Proof(SENDER), OTHER_AGENT)
        assert not escrow.is_agent_registered(OTHER_AGENT)

    def test_register_without_proof(self, escrow):
        with pytest.raises(UnauthorizedError):
            escrow.register_agent(None, OTHER_AGENT)

    def test_lowercase_address_is_normalized(self, escrow):
        escrow.register_agent(Proof(ADMIN), OTHER_AGENT.lower())
        assert escrow.is_agent_registered(OTHER_AGENT)

    def test_events(self, escrow, events):
        escrow.remove_agent(Proof(ADMIN), AGENT)
        assert [e.topic for e in events.events] == [
            EventTopic.AGENT_REGISTERED,
            EventTopic.AGENT_REMOVED,
        ]
        assert events.last.payload == {"agent": AGENT}

    def test_idempotent_calls_still_emit(self, escrow, events):
        escrow.register_agent(Proof(ADMIN), AGENT)
        assert len(events.of(EventTopic.AGENT_REGISTERED)) == 2


class TestUpdateFee:
    def test_update_fee(self, escrow, events):
        escrow.update_fee(Proof(ADMIN), 500)
        assert escrow.get_platform_fee_bps() == 500
        assert events.last.topic is EventTopic.FEE_UPDATED
        assert events.last.payload == {"fee_bps": 500}

    def test_update_fee_invalid(self, escrow):
        with pytest.raises(InvalidConfigurationError):
            escrow.update_fee(Proof(ADMIN), 10_001)
        assert escrow.get_platform_fee_bps() == 250

    def test_update_fee_requires_admin(self, escrow):
        with pytest.raises(UnauthorizedError):
            escrow.update_fee(Proof(AGENT), 0)
        assert escrow.get_platform_fee_bps() == 250

    def test_pending_remittance_keeps_snapshotted_fee(self, escrow, token):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.update_fee(Proof(ADMIN), 1_000)
        assert escrow.get_remittance(rid).fee == 25

        escrow.confirm_payout(Proof(AGENT), rid)
        assert token.balance(AGENT) == 975
        assert escrow.get_accumulated_fees() == 25


class TestCreateRemittance:
    def test_create(self, escrow, token):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        assert rid == 1

        remittance = escrow.get_remittance(rid)
        assert remittance.sender == SENDER
        assert remittance.agent == AGENT
        assert remittance.principal == 1_000
        assert remittance.fee == 25
        assert remittance.status is RemittanceStatus.PENDING
        assert remittance.created_at == 1_700_000_000

        assert token.balance(CUSTODY) == 1_000
        assert token.balance(SENDER) == 9_000

    def test_created_event(self, escrow, events):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        assert events.last.topic is EventTopic.CREATED
        assert events.last.payload == {
            "id": rid,
            "sender": SENDER,
            "agent": AGENT,
            "principal": 1_000,
            "fee": 25,
        }

    def test_ids_increase(self, escrow, token):
        second_sender = Account.create().address
        token.mint(second_sender, 10_000)

        first = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        second = escrow.create_remittance(Proof(second_sender), second_sender, AGENT, 2_000)
        assert (first, second) == (1, 2)

    @pytest.mark.parametrize("amount", [0, -1])
    def test_invalid_amount(self, escrow, amount):
        with pytest.raises(InvalidAmountError):
            escrow.create_remittance(Proof(SENDER), SENDER, AGENT, amount)

    def test_unregistered_agent(self, escrow, token):
        with pytest.raises(AgentNotRegisteredError):
            escrow.create_remittance(Proof(SENDER), SENDER, OTHER_AGENT, 1_000)
        assert token.balance(SENDER) == 10_000

    def test_requires_sender_proof(self, escrow, token):
        with pytest.raises(UnauthorizedError):
            escrow.create_remittance(Proof(AGENT), SENDER, AGENT, 1_000)
        assert token.balance(SENDER) == 10_000

    def test_fee_overflow_is_rejected(self, escrow, token):
        principal = I128_MAX // 100
        token.mint(SENDER, principal)
        with pytest.raises(AmountOverflowError):
            escrow.create_remittance(Proof(SENDER), SENDER, AGENT, principal)
        assert escrow.ledger.last_id() == 0
        assert token.balance(CUSTODY) == 0

    def test_principal_above_range(self, escrow):
        with pytest.raises(AmountOverflowError):
            escrow.create_remittance(Proof(SENDER), SENDER, AGENT, I128_MAX + 1)

    def test_insufficient_balance_records_nothing(self, escrow, token, events):
        before = len(events.events)
        with pytest.raises(TransferFailedError):
            escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 10_001)

        assert escrow.ledger.last_id() == 0
        with pytest.raises(NotFoundError):
            escrow.get_remittance(1)
        assert len(events.events) == before
        assert escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 10_000) == 1

    def test_fee_rounds_down(self, escrow):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 39)
        assert escrow.get_remittance(rid).fee == 0


class TestConfirmPayout:
    def test_confirm(self, escrow, token, events):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.confirm_payout(Proof(AGENT), rid)

        assert escrow.get_remittance(rid).status is RemittanceStatus.COMPLETED
        assert token.balance(AGENT) == 975
        assert escrow.get_accumulated_fees() == 25
        assert token.balance(CUSTODY) == 25
        assert events.last.topic is EventTopic.COMPLETED
        assert events.last.payload == {"id": rid, "agent": AGENT, "payout": 975}

    def test_split_law(self, escrow, token):
        token.mint(SENDER, 1_000_000)
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000_000)
        escrow.confirm_payout(Proof(AGENT), rid)

        assert token.balance(AGENT) == 975_000
        assert escrow.get_accumulated_fees() == 25_000
        assert token.balance(AGENT) + escrow.get_accumulated_fees() == 1_000_000

    def test_multiple_remittances(self, escrow, token):
        second_sender = Account.create().address
        token.mint(second_sender, 10_000)
        first = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        second = escrow.create_remittance(Proof(second_sender), second_sender, AGENT, 2_000)

        escrow.confirm_payout(Proof(AGENT), first)
        escrow.confirm_payout(Proof(AGENT), second)

        assert escrow.get_accumulated_fees() == 75
        assert token.balance(AGENT) == 2_925

    def test_only_assigned_agent_may_confirm(self, escrow):
        escrow.register_agent(Proof(ADMIN), OTHER_AGENT)
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)

        for caller in (OTHER_AGENT, ADMIN, SENDER):
            with pytest.raises(UnauthorizedError):
                escrow.confirm_payout(Proof(caller), rid)
        assert escrow.get_remittance(rid).status is RemittanceStatus.PENDING
        assert escrow.get_accumulated_fees() == 0

    def test_confirm_twice(self, escrow):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.confirm_payout(Proof(AGENT), rid)
        with pytest.raises(InvalidStatusError):
            escrow.confirm_payout(Proof(AGENT), rid)
        assert escrow.get_accumulated_fees() == 25

    def test_confirm_after_cancel(self, escrow):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.cancel_remittance(Proof(SENDER), rid)
        with pytest.raises(InvalidStatusError):
            escrow.confirm_payout(Proof(AGENT), rid)
        assert escrow.get_remittance(rid).status is RemittanceStatus.CANCELLED

    def test_unknown_id(self, escrow):
        with pytest.raises(NotFoundError):
            escrow.confirm_payout(Proof(AGENT), 99)

    def test_agent_removed_after_creation_can_still_confirm(self, escrow, token):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.remove_agent(Proof(ADMIN), AGENT)
        escrow.confirm_payout(Proof(AGENT), rid)
        assert token.balance(AGENT) == 975

    def test_transfer_failure_is_retryable(self, store, token):
        flaky = FlakyToken(token)
        escrow = RemittanceEscrow(store, flaky, custody=CUSTODY)
        escrow.initialize(ADMIN, ASSET, 250)
        escrow.register_agent(Proof(ADMIN), AGENT)
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)

        flaky.fail_next = True
        with pytest.raises(TransferFailedError):
            escrow.confirm_payout(Proof(AGENT), rid)
        assert escrow.get_remittance(rid).status is RemittanceStatus.PENDING
        assert escrow.get_accumulated_fees() == 0
        assert token.balance(CUSTODY) == 1_000

        escrow.confirm_payout(Proof(AGENT), rid)
        assert escrow.get_remittance(rid).status is RemittanceStatus.COMPLETED
        assert token.balance(AGENT) == 975

    def test_full_fee_rate_pays_nothing_to_agent(self, store, token):
        escrow = RemittanceEscrow(store, token, custody=CUSTODY)
        escrow.initialize(ADMIN, ASSET, 10_000)
        escrow.register_agent(Proof(ADMIN), AGENT)
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)

        escrow.confirm_payout(Proof(AGENT), rid)
        assert token.balance(AGENT) == 0
        assert escrow.get_accumulated_fees() == 1_000


class TestCancelRemittance:
    def test_cancel_refunds_full_principal(self, escrow, token, events):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.cancel_remittance(Proof(SENDER), rid)

        assert escrow.get_remittance(rid).status is RemittanceStatus.CANCELLED
        assert token.balance(SENDER) == 10_000
        assert token.balance(CUSTODY) == 0
        assert escrow.get_accumulated_fees() == 0
        assert events.last.topic is EventTopic.CANCELLED
        assert events.last.payload == {"id": rid, "sender": SENDER, "refund": 1_000}

    def test_round_trip_restores_custody(self, escrow, token):
        token.mint(SENDER, 1_000_000)
        before = escrow.custody_report()

        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000_000)
        escrow.cancel_remittance(Proof(SENDER), rid)

        assert token.balance(SENDER) == 1_010_000
        assert escrow.custody_report() == before
        assert escrow.list_remittances(RemittanceStatus.PENDING) == []

    def test_only_sender_may_cancel(self, escrow):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        for caller in (AGENT, ADMIN):
            with pytest.raises(UnauthorizedError):
                escrow.cancel_remittance(Proof(caller), rid)
        assert escrow.get_remittance(rid).status is RemittanceStatus.PENDING

    def test_cancel_after_confirm(self, escrow, token):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.confirm_payout(Proof(AGENT), rid)
        with pytest.raises(InvalidStatusError):
            escrow.cancel_remittance(Proof(SENDER), rid)
        assert token.balance(SENDER) == 9_000

    def test_cancel_twice(self, escrow):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.cancel_remittance(Proof(SENDER), rid)
        with pytest.raises(InvalidStatusError):
            escrow.cancel_remittance(Proof(SENDER), rid)

    def test_transfer_failure_keeps_pending(self, store, token):
        flaky = FlakyToken(token)
        escrow = RemittanceEscrow(store, flaky, custody=CUSTODY)
        escrow.initialize(ADMIN, ASSET, 250)
        escrow.register_agent(Proof(ADMIN), AGENT)
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)

        flaky.fail_next = True
        with pytest.raises(TransferFailedError):
            escrow.cancel_remittance(Proof(SENDER), rid)
        assert escrow.get_remittance(rid).status is RemittanceStatus.PENDING

        escrow.cancel_remittance(Proof(SENDER), rid)
        assert token.balance(SENDER) == 10_000


class TestWithdrawFees:
    def test_withdraw(self, escrow, token, events):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.confirm_payout(Proof(AGENT), rid)

        assert escrow.withdraw_fees(Proof(ADMIN), RECIPIENT) == 25
        assert token.balance(RECIPIENT) == 25
        assert escrow.get_accumulated_fees() == 0
        assert token.balance(CUSTODY) == 0
        assert events.last.topic is EventTopic.FEES_WITHDRAWN
        assert events.last.payload == {"recipient": RECIPIENT, "amount": 25}

    def test_second_withdraw_is_noop(self, escrow, token, events):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.confirm_payout(Proof(AGENT), rid)
        escrow.withdraw_fees(Proof(ADMIN), RECIPIENT)
        emitted = len(events.events)

        assert escrow.withdraw_fees(Proof(ADMIN), RECIPIENT) == 0
        assert token.balance(RECIPIENT) == 25
        assert len(events.events) == emitted

    def test_withdraw_never_touches_pending_principal(self, escrow, token):
        escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        assert escrow.withdraw_fees(Proof(ADMIN), RECIPIENT) == 0
        assert token.balance(CUSTODY) == 1_000

    def test_withdraw_requires_admin(self, escrow):
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.confirm_payout(Proof(AGENT), rid)
        with pytest.raises(UnauthorizedError):
            escrow.withdraw_fees(Proof(AGENT), AGENT)
        assert escrow.get_accumulated_fees() == 25

    def test_failed_transfer_keeps_fees(self, store, token):
        flaky = FlakyToken(token)
        escrow = RemittanceEscrow(store, flaky, custody=CUSTODY)
        escrow.initialize(ADMIN, ASSET, 250)
        escrow.register_agent(Proof(ADMIN), AGENT)
        rid = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        escrow.confirm_payout(Proof(AGENT), rid)

        flaky.fail_next = True
        with pytest.raises(TransferFailedError):
            escrow.withdraw_fees(Proof(ADMIN), RECIPIENT)
        assert escrow.get_accumulated_fees() == 25


class TestQueries:
    def test_unknown_remittance(self, escrow):
        with pytest.raises(NotFoundError):
            escrow.get_remittance(1)

    def test_list_by_status(self, escrow):
        first = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        second = escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 2_000)
        escrow.confirm_payout(Proof(AGENT), first)

        assert [r.remittance_id for r in escrow.list_remittances()] == [first, second]
        assert [r.remittance_id for r in escrow.list_remittances(RemittanceStatus.PENDING)] == [second]
        assert [r.remittance_id for r in escrow.list_remittances(RemittanceStatus.COMPLETED)] == [first]

    def test_queries_do_not_emit(self, escrow, events):
        emitted = len(events.events)
        escrow.get_accumulated_fees()
        escrow.get_platform_fee_bps()
        escrow.is_agent_registered(AGENT)
        escrow.custody_report()
        assert len(events.events) == emitted

    def test_is_agent_registered_rejects_bad_address(self, escrow):
        with pytest.raises(InvalidAddressError):
            escrow.is_agent_registered("0x1234")


class FailingCommitStore(MemoryStore):
    """Rejects the next batch that writes a key starting with ``fail_prefix``."""

    def __init__(self):
        super().__init__()
        self.fail_prefix = None
        self.on_fail = None

    def apply(self, batch):
        prefix = self.fail_prefix
        if prefix is not None and any(key.startswith(prefix) for key in batch.writes()):
            self.fail_prefix = None
            if self.on_fail is not None:
                self.on_fail()
            raise OSError("disk full")
        super().apply(batch)


@pytest.fixture
def failing():
    store = FailingCommitStore()
    token = LocalToken(store, ASSET)
    token.mint(SENDER, 10_000)
    flaky = FlakyToken(token)
    escrow = RemittanceEscrow(store, flaky, custody=CUSTODY)
    escrow.initialize(ADMIN, ASSET, 250)
    escrow.register_agent(Proof(ADMIN), AGENT)
    return SimpleNamespace(store=store, token=token, flaky=flaky, escrow=escrow)


class TestCommitFailure:
    def test_create_returns_principal(self, failing):
        failing.store.fail_prefix = "remittance:"
        with pytest.raises(OSError, match="disk full"):
            failing.escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)

        assert failing.token.balance(SENDER) == 10_000
        assert failing.token.balance(CUSTODY) == 0
        assert failing.store.get("remittance_counter") is None
        assert failing.store.scan("remittance:") == []
        assert failing.escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000) == 1

    def test_failed_reversal_keeps_commit_error_as_cause(self, failing):
        failing.store.fail_prefix = "remittance:"
        failing.store.on_fail = lambda: setattr(failing.flaky, "fail_next", True)

        with pytest.raises(TransferFailedError) as exc_info:
            failing.escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_confirm_reverses_payout_and_stays_retryable(self, failing):
        first = failing.escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        failing.escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)

        failing.store.fail_prefix = "remittance:"
        with pytest.raises(OSError):
            failing.escrow.confirm_payout(Proof(AGENT), first)

        assert failing.token.balance(AGENT) == 0
        assert failing.escrow.get_remittance(first).status is RemittanceStatus.PENDING
        assert failing.escrow.get_accumulated_fees() == 0
        assert failing.escrow.custody_report().surplus == 0

        failing.escrow.confirm_payout(Proof(AGENT), first)
        assert failing.token.balance(AGENT) == 975
        report = failing.escrow.custody_report()
        assert report.is_solvent
        assert report.surplus == 0

    def test_cancel_reverses_refund(self, failing):
        rid = failing.escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)

        failing.store.fail_prefix = "remittance:"
        with pytest.raises(OSError):
            failing.escrow.cancel_remittance(Proof(SENDER), rid)

        assert failing.token.balance(SENDER) == 9_000
        assert failing.token.balance(CUSTODY) == 1_000
        assert failing.escrow.get_remittance(rid).status is RemittanceStatus.PENDING

        failing.escrow.cancel_remittance(Proof(SENDER), rid)
        assert failing.token.balance(SENDER) == 10_000

    def test_withdraw_reverses_transfer(self, failing):
        rid = failing.escrow.create_remittance(Proof(SENDER), SENDER, AGENT, 1_000)
        failing.escrow.confirm_payout(Proof(AGENT), rid)

        failing.store.fail_prefix = "accumulated_fees"
        with pytest.raises(OSError):
            failing.escrow.withdraw_fees(Proof(ADMIN), RECIPIENT)

        assert failing.token.balance(RECIPIENT) == 0
        assert failing.escrow.get_accumulated_fees() == 25
        assert failing.token.balance(CUSTODY) == 25

        assert failing.escrow.withdraw_fees(Proof(ADMIN), RECIPIENT) == 25
        assert failing.token.balance(RECIPIENT) == 25
