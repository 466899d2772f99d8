"""Ledger adapter: session intents in, typed outcomes out.

The adapter never retries. A value-bearing call retried blindly can stake
twice, so retry policy belongs to the caller.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator

from stepclimb.config import ChainConfig, WalletContext, settings
from stepclimb.errors import (
    AuthorizationError,
    GameError,
    InsolvencyError,
    LedgerRejectedError,
    ProtocolMismatchError,
    TransportError,
    ValidationError,
)
from stepclimb.ledger.client import LedgerClient, LedgerRevert, LedgerUnavailable
from stepclimb.ledger.models import (
    EVENT_CASHOUT,
    EVENT_GAME_STARTED,
    EVENT_STEP_REQUESTED,
    EVENT_STEP_RESULT,
    LedgerGame,
    LogEntry,
    Receipt,
)
from stepclimb.ledger.variants import EntropyBased, LedgerVariant, Standard
from stepclimb.logic.tiers import DifficultyTier
from stepclimb.validators import validate_stake


logger = logging.getLogger(__name__)

# Revert strings emitted by the game contract.
REVERT_ZERO_STAKE = "stake == 0"
REVERT_NOT_OWNER = "not-your-game"
REVERT_INSOLVENT = "contract-insolvent"


@dataclass
class StartOutcome:
    session_id: int
    confirmed_stake: Decimal
    tx_hash: str
    block_number: int


@dataclass
class StepOutcome:
    succeeded: bool
    new_step: int
    tx_hash: str


@dataclass
class CashoutOutcome:
    payout: Decimal
    tx_hash: str


def iter_block_windows(lower: int, upper: int, width: int) -> Iterator[tuple[int, int]]:
    """
    Split [lower, upper] into consecutive inclusive windows of at most `width` blocks.

    >>> list(iter_block_windows(0, 70, 30))
    [(0, 29), (30, 59), (60, 70)]
    """
    if width < 1:
        raise ValueError("Window width must be positive")
    start = lower
    while start <= upper:
        end = min(start + width - 1, upper)
        yield start, end
        start = end + 1


def _as_decimal(value: Any) -> Decimal:
    return Decimal(str(value))


class LedgerAdapter:
    """Translate game intents into contract calls for one wallet connection."""

    def __init__(
        self,
        client: LedgerClient,
        wallet: WalletContext,
        variant: LedgerVariant | None = None,
        poll_interval: float | None = None,
    ):
        self._client = client
        self._wallet = wallet
        self.variant = variant or Standard()
        self._poll_interval = (
            settings.receipt_poll_interval_seconds if poll_interval is None else poll_interval
        )

    @property
    def player(self) -> str:
        return self._wallet.address

    @property
    def chain(self) -> ChainConfig:
        return self._wallet.chain

    @property
    def max_query_window(self) -> int:
        return self._client.max_query_window

    # === State-changing operations ===

    async def submit_start(self, tier: DifficultyTier, stake: Decimal) -> StartOutcome:
        """Stake on a new session. The first step resolves as part of the start."""
        validate_stake(stake)
        receipt = await self._transact("startGame", [tier.index], value=stake)
        event = self._require_event(receipt, EVENT_GAME_STARTED)
        try:
            session_id = int(event.args["gameId"])
            confirmed_stake = _as_decimal(event.args["bet"])
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise self._mismatch(f"{EVENT_GAME_STARTED} in {receipt.tx_hash} is malformed: {e}")
        logger.info(
            "Session %d started by %s on %s (tier=%s, stake=%s, tx=%s)",
            session_id, self.player, self.chain.id, tier.value, confirmed_stake, receipt.tx_hash,
        )
        return StartOutcome(
            session_id=session_id,
            confirmed_stake=confirmed_stake,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )

    async def submit_step(self, session_id: int) -> StepOutcome:
        """Request the next step of a session and return its resolution."""
        value = Decimal(0)
        if isinstance(self.variant, EntropyBased):
            try:
                value = await self.variant.entropy_fee_lookup()
            except LedgerUnavailable as e:
                raise TransportError(
                    f"Could not look up entropy fee: {e}", possibly_broadcast=False
                ) from e

        receipt = await self._transact("playStep", [session_id], value=value)

        if isinstance(self.variant, EntropyBased):
            self._require_event(receipt, EVENT_STEP_REQUESTED)
            event = await self._await_step_result(session_id, receipt.block_number)
        else:
            event = self._require_event(receipt, EVENT_STEP_RESULT)

        try:
            if int(event.args["gameId"]) != session_id:
                raise ValueError(f"result is for session {event.args['gameId']}")
            succeeded = bool(event.args["success"])
            new_step = int(event.args["newStep"])
        except (KeyError, TypeError, ValueError) as e:
            raise self._mismatch(f"{EVENT_STEP_RESULT} in {event.tx_hash} is malformed: {e}")
        return StepOutcome(succeeded=succeeded, new_step=new_step, tx_hash=receipt.tx_hash)

    async def submit_cashout(self, session_id: int) -> CashoutOutcome:
        """Settle a session at its current step. Payout is the ledger's figure."""
        receipt = await self._transact("doCashout", [session_id])
        event = self._require_event(receipt, EVENT_CASHOUT)
        try:
            if int(event.args["gameId"]) != session_id:
                raise ValueError(f"cashout is for session {event.args['gameId']}")
            payout = _as_decimal(event.args["payout"])
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise self._mismatch(f"{EVENT_CASHOUT} in {receipt.tx_hash} is malformed: {e}")
        logger.info("Session %d cashed out for %s (tx=%s)", session_id, payout, receipt.tx_hash)
        return CashoutOutcome(payout=payout, tx_hash=receipt.tx_hash)

    # === Read operations ===

    async def head(self) -> int:
        try:
            return await self._client.block_number()
        except LedgerUnavailable as e:
            raise TransportError(f"Could not read block number: {e}", possibly_broadcast=False) from e

    async def query_events(
        self,
        event: str,
        from_block: int,
        to_block: int,
        session_id: int | None = None,
    ) -> list[LogEntry]:
        """One bounded log query. Callers partition with iter_block_windows."""
        if to_block - from_block + 1 > self.max_query_window:
            raise ValidationError(
                f"Block range {from_block}-{to_block} exceeds {self.max_query_window} blocks"
            )
        try:
            return await self._client.get_logs(event, from_block, to_block, session_id=session_id)
        except LedgerUnavailable as e:
            raise TransportError(
                f"Log query {event} {from_block}-{to_block} failed: {e}",
                possibly_broadcast=False,
            ) from e

    async def read_session(self, session_id: int) -> LedgerGame | None:
        try:
            return await self._client.read_game(session_id)
        except LedgerUnavailable as e:
            raise TransportError(
                f"Could not read session {session_id}: {e}", possibly_broadcast=False
            ) from e

    async def block_timestamp(self, block_number: int) -> datetime:
        try:
            return await self._client.block_timestamp(block_number)
        except LedgerUnavailable as e:
            raise TransportError(
                f"Could not read block {block_number}: {e}", possibly_broadcast=False
            ) from e

    # === Internals ===

    async def _transact(
        self, function: str, args: list[Any], value: Decimal = Decimal(0)
    ) -> Receipt:
        try:
            tx_hash = await self._client.send_transaction(
                function, args, sender=self.player, value=value
            )
        except LedgerRevert as e:
            raise self._translate_revert(e.reason) from e
        except LedgerUnavailable as e:
            raise TransportError(
                f"{function} was not broadcast: {e}", possibly_broadcast=False
            ) from e

        try:
            receipt = await self._client.wait_for_receipt(tx_hash)
        except LedgerUnavailable as e:
            raise TransportError(
                f"{function} ({tx_hash}) was broadcast but not confirmed: {e}",
                possibly_broadcast=True,
            ) from e

        if not receipt.status:
            raise self._translate_revert(receipt.revert_reason or "execution reverted")
        return receipt

    async def _await_step_result(self, session_id: int, from_block: int) -> LogEntry:
        """
        Poll the log for the StepResult of an entropy-based step request.

        No timeout: the request is already on the ledger and cannot be recalled.
        """
        while True:
            try:
                head = await self._client.block_number()
                for lower, upper in iter_block_windows(from_block, head, self.max_query_window):
                    found = await self._client.get_logs(
                        EVENT_STEP_RESULT, lower, upper, session_id=session_id
                    )
                    if found:
                        return found[0]
            except LedgerUnavailable as e:
                raise TransportError(
                    f"Lost track of step result for session {session_id}: {e}",
                    possibly_broadcast=True,
                ) from e
            from_block = max(from_block, head + 1)
            await asyncio.sleep(self._poll_interval)

    def _require_event(self, receipt: Receipt, event: str) -> LogEntry:
        entry = receipt.find_event(event)
        if entry is None:
            raise self._mismatch(
                f"Receipt {receipt.tx_hash} confirmed without a {event} event"
            )
        return entry

    @staticmethod
    def _mismatch(message: str) -> ProtocolMismatchError:
        logger.error("Ledger protocol mismatch: %s", message)
        return ProtocolMismatchError(message)

    @staticmethod
    def _translate_revert(reason: str) -> GameError:
        if reason == REVERT_NOT_OWNER:
            return AuthorizationError(reason)
        if reason == REVERT_INSOLVENT:
            return InsolvencyError(reason)
        if reason == REVERT_ZERO_STAKE:
            return ValidationError(reason)
        return LedgerRejectedError(reason)
