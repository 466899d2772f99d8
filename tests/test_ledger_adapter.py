"""Ledger adapter tests: intent translation, error taxonomy and windowed reads."""
from decimal import Decimal

import pytest

from stepclimb.errors import (
    AuthorizationError,
    ErrorCode,
    InsolvencyError,
    LedgerRejectedError,
    ProtocolMismatchError,
    TransportError,
    ValidationError,
)
from stepclimb.ledger.adapter import LedgerAdapter, iter_block_windows
from stepclimb.ledger.client import LedgerRevert, LedgerUnavailable
from stepclimb.ledger.models import (
    EVENT_GAME_STARTED,
    EVENT_STEP_REQUESTED,
    EVENT_STEP_RESULT,
    Receipt,
)
from stepclimb.ledger.variants import EntropyBased, Standard, variant_for
from stepclimb.logic.tiers import DifficultyTier
from tests.conftest import PLAYER, FakeLedgerClient, log


class TestBlockWindows:
    def test_partition_is_contiguous(self):
        assert list(iter_block_windows(0, 70, 30)) == [(0, 29), (30, 59), (60, 70)]

    def test_single_block_range(self):
        assert list(iter_block_windows(5, 5, 30)) == [(5, 5)]

    def test_empty_range(self):
        assert list(iter_block_windows(10, 9, 30)) == []

    def test_zero_width_rejected(self):
        with pytest.raises(ValueError):
            list(iter_block_windows(0, 10, 0))


class TestSubmitStart:
    @pytest.mark.asyncio
    async def test_start_returns_confirmed_session(self, adapter, fake_ledger):
        fake_ledger.queue_started(session_id=7, bet="0.1")

        outcome = await adapter.submit_start(DifficultyTier.EASY, Decimal("0.1"))

        assert outcome.session_id == 7
        assert outcome.confirmed_stake == Decimal("0.1")
        function, args, sender, value = fake_ledger.sent[0]
        assert function == "startGame"
        assert args == [0]
        assert sender == PLAYER
        assert value == Decimal("0.1")

    @pytest.mark.asyncio
    async def test_tier_index_is_sent(self, adapter, fake_ledger):
        fake_ledger.queue_started(session_id=1, bet="1", difficulty=3)
        await adapter.submit_start(DifficultyTier.HARDCORE, Decimal("1"))
        assert fake_ledger.sent[0][1] == [3]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stake", ["0", "-1", "NaN"])
    async def test_invalid_stake_never_reaches_ledger(self, adapter, fake_ledger, stake):
        with pytest.raises(ValidationError) as exc_info:
            await adapter.submit_start(DifficultyTier.EASY, Decimal(stake))

        assert exc_info.value.code == ErrorCode.VALIDATION_FAILED
        assert fake_ledger.sent == []

    @pytest.mark.asyncio
    async def test_receipt_without_start_event_is_protocol_mismatch(self, adapter, fake_ledger):
        fake_ledger.queue_receipt()

        with pytest.raises(ProtocolMismatchError):
            await adapter.submit_start(DifficultyTier.EASY, Decimal("0.1"))

    @pytest.mark.asyncio
    async def test_malformed_start_event_is_protocol_mismatch(self, adapter, fake_ledger):
        fake_ledger.queue_receipt(log(EVENT_GAME_STARTED, gameId=1))

        with pytest.raises(ProtocolMismatchError):
            await adapter.submit_start(DifficultyTier.EASY, Decimal("0.1"))

    @pytest.mark.asyncio
    async def test_zero_stake_revert_is_validation_error(self, adapter, fake_ledger):
        fake_ledger.send_errors.append(LedgerRevert("stake == 0"))

        with pytest.raises(ValidationError):
            await adapter.submit_start(DifficultyTier.EASY, Decimal("0.1"))


class TestSubmitStep:
    @pytest.mark.asyncio
    async def test_successful_step(self, adapter, fake_ledger):
        fake_ledger.queue_step(session_id=3, new_step=2, success=True)

        outcome = await adapter.submit_step(3)

        assert outcome.succeeded is True
        assert outcome.new_step == 2
        assert fake_ledger.sent[0][:2] == ("playStep", [3])
        assert fake_ledger.sent[0][3] == Decimal(0)

    @pytest.mark.asyncio
    async def test_failed_step(self, adapter, fake_ledger):
        fake_ledger.queue_step(session_id=3, new_step=2, success=False)

        outcome = await adapter.submit_step(3)

        assert outcome.succeeded is False

    @pytest.mark.asyncio
    async def test_not_your_game_carries_reason_verbatim(self, adapter, fake_ledger):
        fake_ledger.send_errors.append(LedgerRevert("not-your-game"))

        with pytest.raises(AuthorizationError) as exc_info:
            await adapter.submit_step(3)

        assert exc_info.value.reason == "not-your-game"
        assert exc_info.value.code == ErrorCode.NOT_YOUR_GAME

    @pytest.mark.asyncio
    async def test_reverted_receipt_is_translated(self, adapter, fake_ledger):
        fake_ledger.receipts.append(
            Receipt(tx_hash="", block_number=1, status=False, revert_reason="not-your-game")
        )

        with pytest.raises(AuthorizationError):
            await adapter.submit_step(3)

    @pytest.mark.asyncio
    async def test_unknown_revert_is_ledger_rejected(self, adapter, fake_ledger):
        fake_ledger.send_errors.append(LedgerRevert("game-not-active"))

        with pytest.raises(LedgerRejectedError) as exc_info:
            await adapter.submit_step(3)

        assert exc_info.value.reason == "game-not-active"

    @pytest.mark.asyncio
    async def test_result_for_other_session_is_protocol_mismatch(self, adapter, fake_ledger):
        fake_ledger.queue_step(session_id=4, new_step=2, success=True)

        with pytest.raises(ProtocolMismatchError):
            await adapter.submit_step(3)

    @pytest.mark.asyncio
    async def test_receipt_without_step_result_is_protocol_mismatch(self, adapter, fake_ledger):
        fake_ledger.queue_receipt()

        with pytest.raises(ProtocolMismatchError) as exc_info:
            await adapter.submit_step(3)

        assert exc_info.value.code == ErrorCode.PROTOCOL_MISMATCH


class TestSubmitCashout:
    @pytest.mark.asyncio
    async def test_payout_is_ledger_amount(self, adapter, fake_ledger):
        fake_ledger.queue_cashout(session_id=3, payout="0.104040000000000001")

        outcome = await adapter.submit_cashout(3)

        assert outcome.payout == Decimal("0.104040000000000001")
        assert fake_ledger.sent[0][:2] == ("doCashout", [3])

    @pytest.mark.asyncio
    async def test_insolvency(self, adapter, fake_ledger):
        fake_ledger.send_errors.append(LedgerRevert("contract-insolvent"))

        with pytest.raises(InsolvencyError) as exc_info:
            await adapter.submit_cashout(3)

        assert exc_info.value.recoverable is True
        assert "contract-insolvent" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_receipt_without_cashout_event_is_protocol_mismatch(self, adapter, fake_ledger):
        fake_ledger.queue_step(session_id=3, new_step=2, success=True)

        with pytest.raises(ProtocolMismatchError):
            await adapter.submit_cashout(3)


class TestTransportErrors:
    @pytest.mark.asyncio
    async def test_send_failure_was_not_broadcast(self, adapter, fake_ledger):
        fake_ledger.send_errors.append(LedgerUnavailable("rpc down"))

        with pytest.raises(TransportError) as exc_info:
            await adapter.submit_step(3)

        assert exc_info.value.possibly_broadcast is False

    @pytest.mark.asyncio
    async def test_receipt_failure_was_possibly_broadcast(self, adapter, fake_ledger):
        fake_ledger.receipts.append(LedgerUnavailable("timeout waiting for receipt"))

        with pytest.raises(TransportError) as exc_info:
            await adapter.submit_cashout(3)

        assert exc_info.value.possibly_broadcast is True
        assert len(fake_ledger.sent) == 1

    @pytest.mark.asyncio
    async def test_adapter_never_retries(self, adapter, fake_ledger):
        fake_ledger.send_errors.append(LedgerUnavailable("rpc down"))

        with pytest.raises(TransportError):
            await adapter.submit_start(DifficultyTier.EASY, Decimal("1"))

        assert len(fake_ledger.sent) == 1

    def test_error_body_exposes_broadcast_flag(self):
        response = TransportError("boom", possibly_broadcast=True).to_response()
        assert response.status_code == 502
        assert b'"possiblyBroadcast":true' in response.body


class TestEntropyVariant:
    @pytest.fixture
    def entropy_adapter(self, fake_ledger: FakeLedgerClient, wallet) -> LedgerAdapter:
        return LedgerAdapter(
            fake_ledger, wallet, variant=variant_for("entropy", fake_ledger), poll_interval=0
        )

    def test_variant_for(self, fake_ledger):
        assert isinstance(variant_for("standard", fake_ledger), Standard)
        assert isinstance(variant_for("entropy", fake_ledger), EntropyBased)
        with pytest.raises(ValueError):
            variant_for("quantum", fake_ledger)

    @pytest.mark.asyncio
    async def test_fee_attached_and_result_polled(self, entropy_adapter, fake_ledger):
        fake_ledger.queue_receipt(log(EVENT_STEP_REQUESTED, block=5, gameId=3, sequenceNumber=1),
                                  block=5)
        fake_ledger.head = 6
        fake_ledger.logs.append(log(EVENT_STEP_RESULT, block=6, gameId=3, newStep=2, success=True))

        outcome = await entropy_adapter.submit_step(3)

        assert outcome.succeeded is True
        assert outcome.new_step == 2
        assert fake_ledger.sent[0][3] == Decimal("0.001")

    @pytest.mark.asyncio
    async def test_missing_request_event_is_protocol_mismatch(self, entropy_adapter, fake_ledger):
        fake_ledger.queue_receipt()

        with pytest.raises(ProtocolMismatchError):
            await entropy_adapter.submit_step(3)

    @pytest.mark.asyncio
    async def test_fee_lookup_failure_is_not_broadcast(self, fake_ledger, wallet):
        async def failing_fee():
            raise LedgerUnavailable("fee lookup failed")

        adapter = LedgerAdapter(
            fake_ledger, wallet,
            variant=EntropyBased(entropy_fee_lookup=failing_fee), poll_interval=0,
        )

        with pytest.raises(TransportError) as exc_info:
            await adapter.submit_step(3)

        assert exc_info.value.possibly_broadcast is False
        assert fake_ledger.sent == []


class TestReads:
    @pytest.mark.asyncio
    async def test_query_wider_than_window_rejected(self, adapter):
        with pytest.raises(ValidationError):
            await adapter.query_events(EVENT_GAME_STARTED, 0, 30)

    @pytest.mark.asyncio
    async def test_query_within_window(self, adapter, fake_ledger):
        fake_ledger.logs.append(log(EVENT_GAME_STARTED, block=12, gameId=1))
        entries = await adapter.query_events(EVENT_GAME_STARTED, 0, 29)
        assert len(entries) == 1

    def test_adapter_reports_wallet_chain(self, adapter):
        assert adapter.chain.id == "berachain"
        assert adapter.chain.currency == "BERA"
