"""Ledger wire models: receipts, log entries and stored game records."""
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

# Event names emitted by the game contract.
EVENT_GAME_STARTED = "GameStarted"
EVENT_STEP_REQUESTED = "StepRequested"
EVENT_STEP_RESULT = "StepResult"
EVENT_GAME_LOST = "GameLost"
EVENT_CASHOUT = "Cashout"


class LogEntry(BaseModel):
    """A decoded contract event."""

    event: str
    args: dict[str, Any] = Field(default_factory=dict)
    block_number: int
    tx_hash: str
    log_index: int = 0


class Receipt(BaseModel):
    """Confirmation receipt of an included transaction."""

    tx_hash: str
    block_number: int
    status: bool = True
    revert_reason: str | None = None
    logs: list[LogEntry] = Field(default_factory=list)

    def find_event(self, event: str) -> LogEntry | None:
        """First log with the given event name, or None."""
        for entry in self.logs:
            if entry.event == event:
                return entry
        return None


class LedgerGame(BaseModel):
    """Session fields as stored by the contract (point lookup)."""

    session_id: int
    player: str
    difficulty: int
    bet: Decimal
    current_step: int
    active: bool
    lost: bool
    payout: Decimal | None = None
