"""Client-side game telemetry."""
import logging
from dataclasses import asdict, dataclass
from typing import Any, Protocol


logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    """Protocol for telemetry sinks."""

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        """Emit a telemetry event."""
        ...


class LoggingTelemetrySink:
    """Default sink that logs telemetry events."""

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        logger.info("TELEMETRY %s: %s", event_name, data)


@dataclass
class GameStartedEvent:
    """game_started: ledger confirmed a new session."""

    player: str
    session_id: int
    difficulty: str
    stake: str
    tx_hash: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StepResolvedEvent:
    """step_resolved: one confirmed step outcome."""

    player: str
    session_id: int
    step: int
    succeeded: bool
    multiplier: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class GameFinishedEvent:
    """game_finished: session reached Lost or CashedOut."""

    player: str
    session_id: int
    status: str  # "Lost" | "CashedOut"
    steps: int
    payout: str | None
    auto_cashout: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ActionRejectedEvent:
    """action_rejected: an action failed locally or on the ledger."""

    player: str
    session_id: int | None
    action: str  # "start" | "step" | "cashout" | "refresh"
    reason: str  # ErrorCode value
    possibly_broadcast: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class TelemetryService:
    """Service for emitting game telemetry events."""

    def __init__(self, sink: TelemetrySink | None = None):
        self._sink = sink or LoggingTelemetrySink()
        self._sink_errors = 0

    def set_sink(self, sink: TelemetrySink) -> None:
        """Set the telemetry sink (useful for testing)."""
        self._sink = sink

    def _safe_emit(self, event_name: str, data: dict[str, Any]) -> None:
        """Emit an event. Sink failures never reach game code."""
        try:
            self._sink.emit(event_name, data)
        except Exception as e:
            self._sink_errors += 1
            logger.warning(
                "Telemetry sink error (count=%d): %s - %s",
                self._sink_errors,
                event_name,
                str(e),
            )

    def emit_game_started(self, event: GameStartedEvent) -> None:
        self._safe_emit("game_started", event.to_dict())

    def emit_step_resolved(self, event: StepResolvedEvent) -> None:
        self._safe_emit("step_resolved", event.to_dict())

    def emit_game_finished(self, event: GameFinishedEvent) -> None:
        self._safe_emit("game_finished", event.to_dict())

    def emit_action_rejected(self, event: ActionRejectedEvent) -> None:
        self._safe_emit("action_rejected", event.to_dict())


# Global instance
telemetry_service = TelemetryService()
