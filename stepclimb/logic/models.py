"""Game session models."""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from stepclimb.logic.multiplier import multiplier_for
from stepclimb.logic.tiers import DifficultyTier


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """Ledger-facing status of a session."""

    ACTIVE = "Active"
    LOST = "Lost"
    CASHED_OUT = "CashedOut"


class GameResult(str, Enum):
    WIN = "win"
    LOSS = "loss"


class StepRecord(BaseModel):
    """One resolved step, in resolution order."""

    step_number: int
    succeeded: bool
    observed_at: datetime = Field(default_factory=utcnow)


class GameSession(BaseModel):
    """
    One wager as seen by the client.

    session_id is None until the ledger confirms the start. Once status is
    LOST or CASHED_OUT the session no longer changes.
    """

    session_id: int | None = None
    player: str
    difficulty: DifficultyTier
    stake: Decimal = Field(gt=0)
    current_step: int = 0
    status: SessionStatus = SessionStatus.ACTIVE
    step_history: list[StepRecord] = Field(default_factory=list)
    payout: Decimal | None = None
    start_tx_hash: str | None = None

    # Set when a step or cashout may have been broadcast without a receipt.
    stale: bool = False

    @property
    def current_multiplier(self) -> float:
        return multiplier_for(self.difficulty, self.current_step)

    @property
    def is_terminal(self) -> bool:
        return self.status != SessionStatus.ACTIVE

    @property
    def at_step_ceiling(self) -> bool:
        return self.current_step >= self.difficulty.config.max_steps

    def _ensure_active(self) -> None:
        if self.is_terminal:
            raise RuntimeError(
                f"Session {self.session_id} is {self.status.value} and immutable"
            )

    def record_step(self, step_number: int, succeeded: bool) -> None:
        """Append a resolved step; a failed step ends the session."""
        self._ensure_active()
        self.step_history.append(StepRecord(step_number=step_number, succeeded=succeeded))
        if succeeded:
            self.current_step = max(self.current_step, step_number)
        else:
            self.status = SessionStatus.LOST

    def record_cashout(self, payout: Decimal) -> None:
        """Mark the session cashed out with the ledger-confirmed payout."""
        self._ensure_active()
        self.payout = payout
        self.status = SessionStatus.CASHED_OUT


class HistoricalGameRecord(BaseModel):
    """Finished session rebuilt from the ledger event log. Read-only."""

    model_config = ConfigDict(frozen=True)

    session_id: int
    player: str
    difficulty: DifficultyTier
    stake: Decimal
    result: GameResult
    steps: int
    multiplier: float | None = None
    payout: Decimal | None = None
    block_number: int
    timestamp: datetime | None = None
    tx_hash: str | None = None
