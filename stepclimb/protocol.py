"""HTTP protocol models for the browser client."""
from datetime import datetime

from pydantic import BaseModel, Field

from stepclimb.config import ChainConfig, settings
from stepclimb.logic.models import GameSession, HistoricalGameRecord
from stepclimb.logic.multiplier import (
    format_amount,
    format_multiplier,
    potential_payout,
    step_ladder,
    visible_steps,
)
from stepclimb.logic.session import GameSessionMachine
from stepclimb.logic.tiers import TIER_CONFIGS


# === Request Models ===


class StartRequest(BaseModel):
    """POST /game/start request body."""

    difficulty: str = Field(..., description="Easy | Medium | Hard | Hardcore")
    stake: str = Field(..., description="Stake in native currency, decimal string")


# === Response Models ===


class LadderStep(BaseModel):
    step: int
    multiplier: float
    display: str


class TierView(BaseModel):
    difficulty: str
    index: int
    maxSteps: int
    startMultiplier: float
    maxWin: float
    winProbability: float
    ladder: list[LadderStep]


class TiersResponse(BaseModel):
    """GET /tiers response."""

    protocolVersion: str = settings.protocol_version
    tiers: list[TierView]


class StepView(BaseModel):
    step: int
    succeeded: bool
    observedAt: datetime


class SessionView(BaseModel):
    sessionId: int | None
    player: str
    difficulty: str
    stake: str
    currentStep: int
    maxSteps: int
    status: str
    currentMultiplier: float
    multiplierDisplay: str
    potentialPayout: str
    payout: str | None = None
    stale: bool = False
    stepHistory: list[StepView] = Field(default_factory=list)
    visibleSteps: list[LadderStep] = Field(default_factory=list)


class GameResponse(BaseModel):
    """Response of every /game endpoint."""

    protocolVersion: str = settings.protocol_version
    state: str
    session: SessionView | None = None


class HistoryRecordView(BaseModel):
    sessionId: int
    player: str
    difficulty: str
    stake: str
    result: str
    steps: int
    multiplier: str | None = None
    payout: str | None = None
    blockNumber: int
    timestamp: datetime | None = None
    txHash: str | None = None


class HistoryResponse(BaseModel):
    """GET /history response."""

    protocolVersion: str = settings.protocol_version
    games: list[HistoryRecordView]


class NativeCurrency(BaseModel):
    name: str
    symbol: str
    decimals: int = 18


class ChainResponse(BaseModel):
    """GET /chain response, shaped like the wallet add-network request."""

    protocolVersion: str = settings.protocol_version
    id: str
    chainId: str
    chainName: str
    nativeCurrency: NativeCurrency
    rpcUrls: list[str]
    blockExplorerUrls: list[str]


# === Builders ===


def _ladder(steps: list[tuple[int, float]]) -> list[LadderStep]:
    return [LadderStep(step=s, multiplier=m, display=format_multiplier(m)) for s, m in steps]


def tiers_response() -> TiersResponse:
    return TiersResponse(
        tiers=[
            TierView(
                difficulty=tier.value,
                index=tier.index,
                maxSteps=config.max_steps,
                startMultiplier=config.start_multiplier,
                maxWin=config.max_win,
                winProbability=config.win_probability,
                ladder=_ladder(step_ladder(tier)),
            )
            for tier, config in TIER_CONFIGS.items()
        ]
    )


def session_view(session: GameSession) -> SessionView:
    return SessionView(
        sessionId=session.session_id,
        player=session.player,
        difficulty=session.difficulty.value,
        stake=str(session.stake),
        currentStep=session.current_step,
        maxSteps=session.difficulty.config.max_steps,
        status=session.status.value,
        currentMultiplier=session.current_multiplier,
        multiplierDisplay=format_multiplier(session.current_multiplier),
        potentialPayout=format_amount(
            potential_payout(session.stake, session.difficulty, session.current_step)
        ),
        payout=str(session.payout) if session.payout is not None else None,
        stale=session.stale,
        stepHistory=[
            StepView(step=r.step_number, succeeded=r.succeeded, observedAt=r.observed_at)
            for r in session.step_history
        ],
        visibleSteps=_ladder(visible_steps(session.difficulty, session.current_step)),
    )


def game_response(machine: GameSessionMachine) -> GameResponse:
    session = machine.session
    return GameResponse(
        state=machine.state.value,
        session=session_view(session) if session is not None else None,
    )


def chain_response(chain: ChainConfig) -> ChainResponse:
    return ChainResponse(
        id=chain.id,
        chainId=hex(chain.chain_id),
        chainName=chain.display_name,
        nativeCurrency=NativeCurrency(name=chain.currency, symbol=chain.currency),
        rpcUrls=[chain.rpc_url],
        blockExplorerUrls=[chain.explorer_url],
    )


def history_response(records: list[HistoricalGameRecord]) -> HistoryResponse:
    return HistoryResponse(
        games=[
            HistoryRecordView(
                sessionId=r.session_id,
                player=r.player,
                difficulty=r.difficulty.value,
                stake=str(r.stake),
                result=r.result.value,
                steps=r.steps,
                multiplier=f"{r.multiplier:.2f}" if r.multiplier is not None else None,
                payout=str(r.payout) if r.payout is not None else None,
                blockNumber=r.block_number,
                timestamp=r.timestamp,
                txHash=r.tx_hash,
            )
            for r in records
        ]
    )
