"""Rebuild recently finished sessions from the ledger's event log.

The log can only be read in windows of adapter.max_query_window blocks.
Windows are scanned one after another; a failing window or a malformed
event is logged and skipped, so the result may be partial but the scan
always completes.

A session counts as a win only if a Cashout event exists for it. Anything
else, including a session that was simply abandoned, is reported as a loss.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from stepclimb.config import settings
from stepclimb.ledger.adapter import LedgerAdapter, iter_block_windows
from stepclimb.ledger.models import (
    EVENT_CASHOUT,
    EVENT_GAME_LOST,
    EVENT_GAME_STARTED,
    LogEntry,
)
from stepclimb.logic.models import GameResult, HistoricalGameRecord
from stepclimb.logic.tiers import DifficultyTier


logger = logging.getLogger(__name__)


@dataclass
class _StartedGame:
    session_id: int
    player: str
    difficulty: DifficultyTier
    stake: Decimal
    block_number: int
    log_index: int
    tx_hash: str


class SessionHistoryReconciler:
    """Read-only view over past sessions. Never mutates ledger or live session."""

    def __init__(self, adapter: LedgerAdapter):
        self._adapter = adapter

    async def reconstruct_recent(
        self,
        window_blocks: int | None = None,
        max_records: int | None = None,
    ) -> list[HistoricalGameRecord]:
        """Most recent sessions started in the last `window_blocks` blocks, newest first."""
        window_blocks = settings.history_window_blocks if window_blocks is None else window_blocks
        max_records = settings.history_max_records if max_records is None else max_records
        if max_records <= 0:
            return []

        try:
            head = await self._adapter.head()
        except Exception as e:
            logger.warning("History scan skipped, ledger head unavailable: %s", e)
            return []
        lower = max(0, head - window_blocks)
        logger.debug("Scanning %s events in blocks %d-%d", EVENT_GAME_STARTED, lower, head)

        started: list[_StartedGame] = []
        for entry in await self._scan(EVENT_GAME_STARTED, lower, head):
            parsed = self._parse_started(entry)
            if parsed is not None:
                started.append(parsed)
        started.sort(key=lambda g: (g.block_number, g.log_index), reverse=True)

        retained: list[_StartedGame] = []
        seen: set[int] = set()
        for game in started:
            if game.session_id in seen:
                continue
            seen.add(game.session_id)
            retained.append(game)
            if len(retained) == max_records:
                break

        records = []
        for game in retained:
            records.append(await self._assemble(game, head))
        return records

    async def _assemble(self, game: _StartedGame, head: int) -> HistoricalGameRecord:
        # Outcome events cannot precede the start, so scan from its block.
        lost_entries = await self._scan(EVENT_GAME_LOST, game.block_number, head, game.session_id)
        cashout_entries = await self._scan(EVENT_CASHOUT, game.block_number, head, game.session_id)

        steps = 1
        try:
            stored = await self._adapter.read_session(game.session_id)
        except Exception as e:
            logger.warning("Point lookup of session %d failed: %s", game.session_id, e)
            stored = None
        if stored is not None:
            steps = stored.current_step

        lost_step = self._first_lost_step(lost_entries)
        if lost_step is not None:
            steps = lost_step

        result = GameResult.LOSS
        multiplier = None
        payout = self._first_payout(cashout_entries)
        if payout is not None:
            result = GameResult.WIN
            multiplier = float(payout / game.stake)

        timestamp = None
        try:
            timestamp = await self._adapter.block_timestamp(game.block_number)
        except Exception as e:
            logger.warning("Timestamp of block %d unavailable: %s", game.block_number, e)

        return HistoricalGameRecord(
            session_id=game.session_id,
            player=game.player,
            difficulty=game.difficulty,
            stake=game.stake,
            result=result,
            steps=steps,
            multiplier=multiplier,
            payout=payout,
            block_number=game.block_number,
            timestamp=timestamp,
            tx_hash=game.tx_hash,
        )

    async def _scan(
        self,
        event: str,
        lower: int,
        upper: int,
        session_id: int | None = None,
    ) -> list[LogEntry]:
        entries: list[LogEntry] = []
        for start, end in iter_block_windows(lower, upper, self._adapter.max_query_window):
            try:
                entries.extend(
                    await self._adapter.query_events(event, start, end, session_id=session_id)
                )
            except Exception as e:
                logger.warning("Skipping %s window %d-%d: %s", event, start, end, e)
        return entries

    @staticmethod
    def _parse_started(entry: LogEntry) -> _StartedGame | None:
        try:
            stake = Decimal(str(entry.args["bet"]))
            if not stake > 0:
                raise ValueError(f"non-positive bet {stake}")
            player = entry.args["player"]
            if not player:
                raise ValueError("missing player")
            return _StartedGame(
                session_id=int(entry.args["gameId"]),
                player=str(player),
                difficulty=DifficultyTier.from_index(int(entry.args["difficulty"])),
                stake=stake,
                block_number=entry.block_number,
                log_index=entry.log_index,
                tx_hash=entry.tx_hash,
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            logger.warning("Skipping malformed %s in %s: %s", entry.event, entry.tx_hash, e)
            return None

    @staticmethod
    def _first_lost_step(entries: list[LogEntry]) -> int | None:
        for entry in entries:
            try:
                return int(entry.args["step"])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed %s in %s: %s", entry.event, entry.tx_hash, e)
        return None

    @staticmethod
    def _first_payout(entries: list[LogEntry]) -> Decimal | None:
        for entry in entries:
            try:
                return Decimal(str(entry.args["payout"]))
            except (KeyError, InvalidOperation) as e:
                logger.warning("Skipping malformed %s in %s: %s", entry.event, entry.tx_hash, e)
        return None
