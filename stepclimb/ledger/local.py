"""In-process implementation of the step-climb game contract.

Mirrors the deployed contract closely enough for development, tests and
simulations: same functions, revert strings and events, one block per
transaction.
"""
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Any

from stepclimb.ledger.client import LedgerClient, LedgerRevert, LedgerUnavailable
from stepclimb.ledger.entropy import EntropySource, SecureEntropy
from stepclimb.ledger.models import (
    EVENT_CASHOUT,
    EVENT_GAME_LOST,
    EVENT_GAME_STARTED,
    EVENT_STEP_REQUESTED,
    EVENT_STEP_RESULT,
    LedgerGame,
    LogEntry,
    Receipt,
)
from stepclimb.logic.multiplier import multiplier_for
from stepclimb.logic.tiers import DifficultyTier


logger = logging.getLogger(__name__)

WEI = Decimal("1e-18")
BLOCK_TIME = timedelta(seconds=2)
MULTIPLIER_BASIS_POINTS = Decimal(10_000)


class LocalLedger(LedgerClient):
    """Single-process ledger holding games, a reserve and an event log."""

    def __init__(
        self,
        entropy: EntropySource | None = None,
        reserve: Decimal = Decimal("100"),
        owner: str = "0x0000000000000000000000000000000000000001",
        entropy_based: bool = False,
        entropy_fee: Decimal = Decimal("0.0001"),
        max_query_window: int = 30,
        genesis_time: datetime | None = None,
    ):
        self.entropy = entropy or SecureEntropy()
        self.reserve = reserve
        self.owner = owner
        self.entropy_based = entropy_based
        self._entropy_fee = entropy_fee
        self._max_query_window = max_query_window
        self._genesis_time = genesis_time or datetime.now(timezone.utc)

        self._games: dict[int, LedgerGame] = {}
        self._logs: list[LogEntry] = []
        self._receipts: dict[str, Receipt] = {}
        self._multiplier_tables: dict[int, list[int]] = {}
        self._head = 0
        self._tx_count = 0
        self._sequence = 0

        # Simulated outage: every call raises LedgerUnavailable.
        self.offline = False

    @property
    def max_query_window(self) -> int:
        return self._max_query_window

    # === LedgerClient ===

    async def send_transaction(
        self,
        function: str,
        args: list[Any],
        sender: str,
        value: Decimal = Decimal(0),
    ) -> str:
        self._check_online()
        handler = {
            "startGame": self._start_game,
            "playStep": self._play_step,
            "doCashout": self._do_cashout,
            "setMultipliers": self._set_multipliers,
        }.get(function)
        if handler is None:
            raise LedgerRevert(f"unknown function {function}")

        # Handlers check every require() before touching state, so a revert
        # leaves the ledger untouched.
        tx_hash = "0x" + hashlib.sha256(f"tx:{self._tx_count + 1}".encode()).hexdigest()
        block = self._head + 1
        logs = handler(tx_hash, block, sender, value, *args)
        self._tx_count += 1
        self._head = max(self._head, block)
        self._receipts[tx_hash] = Receipt(tx_hash=tx_hash, block_number=block, logs=logs)
        logger.debug("Mined %s in block %d (%s)", function, block, tx_hash)
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> Receipt:
        self._check_online()
        receipt = self._receipts.get(tx_hash)
        if receipt is None:
            raise LedgerUnavailable(f"Transaction {tx_hash} not found")
        return receipt

    async def block_number(self) -> int:
        self._check_online()
        return self._head

    async def get_logs(
        self,
        event: str,
        from_block: int,
        to_block: int,
        session_id: int | None = None,
    ) -> list[LogEntry]:
        self._check_online()
        if to_block - from_block + 1 > self._max_query_window:
            raise LedgerUnavailable(
                f"query exceeds max block range {self._max_query_window}"
            )
        return [
            entry
            for entry in self._logs
            if entry.event == event
            and from_block <= entry.block_number <= to_block
            and (session_id is None or entry.args.get("gameId") == session_id)
        ]

    async def read_game(self, session_id: int) -> LedgerGame | None:
        self._check_online()
        game = self._games.get(session_id)
        return game.model_copy() if game else None

    async def block_timestamp(self, block_number: int) -> datetime:
        self._check_online()
        if not 0 <= block_number <= self._head:
            raise LedgerUnavailable(f"Block {block_number} not found")
        return self._genesis_time + BLOCK_TIME * block_number

    async def entropy_fee(self) -> Decimal:
        self._check_online()
        return self._entropy_fee

    # === Helpers for callers driving the ledger directly ===

    def mine_blocks(self, count: int) -> int:
        """Advance the chain with empty blocks; returns the new head."""
        for _ in range(count):
            self._mine()
        return self._head

    # === Contract functions ===

    def _start_game(
        self, tx_hash: str, block: int, sender: str, value: Decimal, difficulty: int
    ) -> list[LogEntry]:
        if value <= 0:
            raise self._revert("stake == 0")
        try:
            DifficultyTier.from_index(difficulty)
        except ValueError:
            raise self._revert("bad-difficulty")

        session_id = len(self._games)
        self.reserve += value
        # The first step is resolved as part of the start.
        self._games[session_id] = LedgerGame(
            session_id=session_id,
            player=sender,
            difficulty=difficulty,
            bet=value,
            current_step=1,
            active=True,
            lost=False,
        )
        return [self._emit(EVENT_GAME_STARTED, tx_hash, block, gameId=session_id,
                           player=sender, difficulty=difficulty, bet=value)]

    def _play_step(
        self, tx_hash: str, block: int, sender: str, value: Decimal, session_id: int
    ) -> list[LogEntry]:
        game = self._owned_active_game(sender, session_id)
        tier = DifficultyTier.from_index(game.difficulty)
        if game.current_step >= tier.config.max_steps:
            raise self._revert("max-steps-reached")

        if not self.entropy_based:
            return self._resolve_step(game, tier, tx_hash, block)

        if value < self._entropy_fee:
            raise self._revert("insufficient-fee")
        self._sequence += 1
        requested = self._emit(EVENT_STEP_REQUESTED, tx_hash, block, gameId=session_id,
                               sequenceNumber=self._sequence)
        # Provider callback lands in the next block.
        callback_block = block + 1
        self._head = callback_block
        callback_hash = "0x" + hashlib.sha256(f"cb:{self._sequence}".encode()).hexdigest()
        self._resolve_step(game, tier, callback_hash, callback_block)
        return [requested]

    def _do_cashout(
        self, tx_hash: str, block: int, sender: str, value: Decimal, session_id: int
    ) -> list[LogEntry]:
        game = self._owned_active_game(sender, session_id)
        payout = self._payout_for(game)
        if payout > self.reserve:
            raise self._revert("contract-insolvent")
        self.reserve -= payout
        game.active = False
        game.payout = payout
        return [self._emit(EVENT_CASHOUT, tx_hash, block, gameId=session_id, payout=payout)]

    def _set_multipliers(
        self, tx_hash: str, block: int, sender: str, value: Decimal,
        difficulty: int, table: list[int],
    ) -> list[LogEntry]:
        if sender != self.owner:
            raise self._revert("OwnableUnauthorizedAccount")
        self._multiplier_tables[difficulty] = list(table)
        return []

    # === Internals ===

    def _resolve_step(
        self, game: LedgerGame, tier: DifficultyTier, tx_hash: str, block: int
    ) -> list[LogEntry]:
        attempted = game.current_step + 1
        if self.entropy.step_succeeds(tier.config.win_probability):
            game.current_step = attempted
            return [self._emit(EVENT_STEP_RESULT, tx_hash, block, gameId=game.session_id,
                               newStep=attempted, success=True)]
        game.active = False
        game.lost = True
        return [
            self._emit(EVENT_STEP_RESULT, tx_hash, block, gameId=game.session_id,
                       newStep=attempted, success=False),
            self._emit(EVENT_GAME_LOST, tx_hash, block, gameId=game.session_id,
                       step=attempted),
        ]

    def _payout_for(self, game: LedgerGame) -> Decimal:
        table = self._multiplier_tables.get(game.difficulty)
        if table and game.current_step < len(table):
            payout = game.bet * Decimal(table[game.current_step]) / MULTIPLIER_BASIS_POINTS
        else:
            tier = DifficultyTier.from_index(game.difficulty)
            payout = game.bet * Decimal(repr(multiplier_for(tier, game.current_step)))
        return payout.quantize(WEI, rounding=ROUND_DOWN)

    def _owned_active_game(self, sender: str, session_id: int) -> LedgerGame:
        game = self._games.get(session_id)
        if game is None:
            raise self._revert("no-such-game")
        if game.player != sender:
            raise self._revert("not-your-game")
        if not game.active:
            raise self._revert("game-not-active")
        return game

    def _emit(self, event: str, tx_hash: str, block: int, **args: Any) -> LogEntry:
        entry = LogEntry(
            event=event,
            args=args,
            block_number=block,
            tx_hash=tx_hash,
            log_index=len(self._logs),
        )
        self._logs.append(entry)
        return entry

    def _mine(self) -> int:
        self._head += 1
        return self._head

    @staticmethod
    def _revert(reason: str) -> LedgerRevert:
        logger.debug("Call reverted: %s", reason)
        return LedgerRevert(reason)

    def _check_online(self) -> None:
        if self.offline:
            raise LedgerUnavailable("ledger unreachable")
