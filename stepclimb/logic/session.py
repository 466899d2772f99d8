"""Game session state machine.

Owns the single live GameSession of one wallet connection and is the only
code that mutates it. Ledger outcomes drive every transition; local state
is never advanced on a guess.

    Idle -> Starting -> Active -> Stepping -> Active | Lost
                        Active -> CashingOut -> CashedOut | Active

Stepping and CashingOut double as the session lock: any action arriving
while one of them is set is refused without touching the ledger.
"""
import asyncio
import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Coroutine

from stepclimb.archive import GameArchiver
from stepclimb.errors import (
    ErrorCode,
    GameError,
    InsolvencyError,
    ProtocolMismatchError,
    SessionStateError,
    TransportError,
)
from stepclimb.ledger.adapter import LedgerAdapter
from stepclimb.logic.models import GameSession, SessionStatus
from stepclimb.logic.tiers import DifficultyTier
from stepclimb.rewards import RewardDispatcher
from stepclimb.telemetry import (
    ActionRejectedEvent,
    GameFinishedEvent,
    GameStartedEvent,
    StepResolvedEvent,
    TelemetryService,
    telemetry_service,
)
from stepclimb.validators import validate_stake


logger = logging.getLogger(__name__)


class MachineState(str, Enum):
    IDLE = "Idle"
    STARTING = "Starting"
    ACTIVE = "Active"
    STEPPING = "Stepping"
    CASHING_OUT = "CashingOut"
    LOST = "Lost"
    CASHED_OUT = "CashedOut"


IN_FLIGHT = {MachineState.STARTING, MachineState.STEPPING, MachineState.CASHING_OUT}
TERMINAL = {MachineState.LOST, MachineState.CASHED_OUT}


class GameSessionMachine:
    """Drives one player's session through the ledger adapter."""

    def __init__(
        self,
        adapter: LedgerAdapter,
        rewards: RewardDispatcher | None = None,
        archiver: GameArchiver | None = None,
        telemetry: TelemetryService | None = None,
    ):
        self._adapter = adapter
        self._rewards = rewards
        self._archiver = archiver
        self._telemetry = telemetry or telemetry_service
        self._state = MachineState.IDLE
        self._session: GameSession | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def state(self) -> MachineState:
        return self._state

    @property
    def session(self) -> GameSession | None:
        return self._session

    @property
    def player(self) -> str:
        return self._adapter.player

    # === Transitions ===

    async def start(self, tier: DifficultyTier, stake: Decimal) -> GameSession:
        """Stake on a new session. Allowed from Idle or a finished session."""
        if self._state in IN_FLIGHT:
            raise self._refuse("start", ErrorCode.ACTION_IN_PROGRESS,
                               f"Cannot start while {self._state.value}")
        if self._state == MachineState.ACTIVE:
            raise self._refuse("start", ErrorCode.INVALID_STATE,
                               "Finish the current session before starting another")
        try:
            validate_stake(stake)
        except GameError as e:
            self._emit_rejected("start", e)
            raise

        # A finished session is dropped from the live view first.
        self._session = None
        self._state = MachineState.IDLE

        session = GameSession(player=self.player, difficulty=tier, stake=stake)
        self._session = session
        self._state = MachineState.STARTING
        try:
            outcome = await self._adapter.submit_start(tier, stake)
        except BaseException as e:
            self._session = None
            self._state = MachineState.IDLE
            if isinstance(e, GameError):
                self._emit_rejected("start", e)
            raise

        if outcome.confirmed_stake != stake:
            logger.warning(
                "Session %d confirmed stake %s differs from requested %s",
                outcome.session_id, outcome.confirmed_stake, stake,
            )
            session.stake = outcome.confirmed_stake
        session.session_id = outcome.session_id
        session.start_tx_hash = outcome.tx_hash
        session.record_step(1, succeeded=True)
        self._state = MachineState.ACTIVE

        self._telemetry.emit_game_started(
            GameStartedEvent(
                player=self.player,
                session_id=outcome.session_id,
                difficulty=tier.value,
                stake=str(session.stake),
                tx_hash=outcome.tx_hash,
            )
        )
        if self._rewards is not None:
            self._spawn(self._rewards.dispatch_reward(self.player))
        return session

    async def play_step(self) -> GameSession:
        """Request the next step. Reaching the last step cashes out automatically."""
        session = self._require_playable("step")
        if session.at_step_ceiling:
            raise self._refuse("step", ErrorCode.INVALID_STATE,
                               "Session is at its last step; cash out instead")

        self._state = MachineState.STEPPING
        try:
            outcome = await self._adapter.submit_step(session.session_id)
        except GameError as e:
            self._abort_to_active(session, "step", e)
            raise
        except BaseException:
            # Cancelled mid-flight: the request may already be on the ledger.
            session.stale = True
            self._state = MachineState.ACTIVE
            raise

        if outcome.new_step != session.current_step + 1:
            logger.warning(
                "Session %d: ledger resolved step %d, expected %d",
                session.session_id, outcome.new_step, session.current_step + 1,
            )
        session.record_step(outcome.new_step, succeeded=outcome.succeeded)
        self._telemetry.emit_step_resolved(
            StepResolvedEvent(
                player=self.player,
                session_id=session.session_id,
                step=outcome.new_step,
                succeeded=outcome.succeeded,
                multiplier=session.current_multiplier,
            )
        )

        if not outcome.succeeded:
            self._finish(MachineState.LOST)
            return session

        self._state = MachineState.ACTIVE
        if session.at_step_ceiling:
            logger.info(
                "Session %d reached step %d, securing winnings",
                session.session_id, session.current_step,
            )
            await self._cash_out(auto=True)
        return session

    async def cash_out(self) -> GameSession:
        """Settle at the current step. Insolvency keeps the session Active."""
        session = self._require_playable("cashout")
        if session.current_step == 0:
            raise self._refuse("cashout", ErrorCode.INVALID_STATE,
                               "Nothing to cash out before the first step")
        await self._cash_out(auto=False)
        return session

    async def refresh(self) -> GameSession:
        """
        Re-read the session from the ledger and adopt its state.

        Clears the stale flag left by a possibly-broadcast failure.
        """
        if self._state in IN_FLIGHT:
            raise self._refuse("refresh", ErrorCode.ACTION_IN_PROGRESS,
                               f"Cannot refresh while {self._state.value}")
        session = self._session
        if session is None or session.session_id is None:
            raise self._refuse("refresh", ErrorCode.INVALID_STATE, "No session to refresh")
        if session.is_terminal:
            return session

        game = await self._adapter.read_session(session.session_id)
        if game is None:
            raise ProtocolMismatchError(f"Ledger has no session {session.session_id}")

        for step in range(session.current_step + 1, game.current_step + 1):
            session.record_step(step, succeeded=True)
        session.stale = False

        if game.lost:
            session.record_step(game.current_step + 1, succeeded=False)
            self._finish(MachineState.LOST)
        elif not game.active:
            if game.payout is None:
                raise ProtocolMismatchError(
                    f"Session {session.session_id} is closed without a payout"
                )
            session.record_cashout(game.payout)
            self._finish(MachineState.CASHED_OUT)
        return session

    def reset(self) -> None:
        """Drop the live session (navigate away). The ledger keeps the record."""
        if self._state in IN_FLIGHT:
            raise self._refuse("reset", ErrorCode.ACTION_IN_PROGRESS,
                               f"Cannot leave while {self._state.value}")
        self._session = None
        self._state = MachineState.IDLE

    async def drain(self) -> None:
        """Wait for pending reward and archive side effects."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # === Internals ===

    async def _cash_out(self, auto: bool) -> None:
        session = self._session
        self._state = MachineState.CASHING_OUT
        try:
            outcome = await self._adapter.submit_cashout(session.session_id)
        except InsolvencyError as e:
            self._state = MachineState.ACTIVE
            self._emit_rejected("cashout", e)
            raise
        except GameError as e:
            self._abort_to_active(session, "cashout", e)
            raise
        except BaseException:
            session.stale = True
            self._state = MachineState.ACTIVE
            raise

        session.record_cashout(outcome.payout)
        self._finish(MachineState.CASHED_OUT, auto_cashout=auto)

    def _finish(self, state: MachineState, auto_cashout: bool = False) -> None:
        session = self._session
        self._state = state
        self._telemetry.emit_game_finished(
            GameFinishedEvent(
                player=self.player,
                session_id=session.session_id,
                status=session.status.value,
                steps=session.current_step,
                payout=str(session.payout) if session.payout is not None else None,
                auto_cashout=auto_cashout,
            )
        )
        if self._archiver is not None:
            self._spawn(self._archiver.archive(session.model_copy(deep=True)))

    def _require_playable(self, action: str) -> GameSession:
        if self._state in IN_FLIGHT:
            raise self._refuse(action, ErrorCode.ACTION_IN_PROGRESS,
                               f"Another request is in flight ({self._state.value})")
        session = self._session
        if session is None or self._state == MachineState.IDLE:
            raise self._refuse(action, ErrorCode.INVALID_STATE, "No active session")
        if session.status != SessionStatus.ACTIVE:
            raise self._refuse(action, ErrorCode.INVALID_STATE,
                               f"Session is {session.status.value}")
        if session.stale:
            raise self._refuse(action, ErrorCode.INVALID_STATE,
                               "Session state is unknown after a failed request; refresh first")
        return session

    def _abort_to_active(self, session: GameSession, action: str, error: GameError) -> None:
        if isinstance(error, TransportError) and error.possibly_broadcast:
            session.stale = True
        self._state = MachineState.ACTIVE
        self._emit_rejected(action, error)

    def _refuse(self, action: str, code: ErrorCode, message: str) -> SessionStateError:
        error = SessionStateError(code, message)
        self._emit_rejected(action, error)
        return error

    def _emit_rejected(self, action: str, error: GameError) -> None:
        self._telemetry.emit_action_rejected(
            ActionRejectedEvent(
                player=self.player,
                session_id=self._session.session_id if self._session else None,
                action=action,
                reason=error.code.value,
                possibly_broadcast=getattr(error, "possibly_broadcast", False),
            )
        )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
