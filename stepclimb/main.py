"""Step climb game client API."""
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from stepclimb.archive import blob_store
from stepclimb.config import settings
from stepclimb.errors import ErrorCode, GameError
from stepclimb.logic.session import MachineState
from stepclimb.middleware import ErrorHandlerMiddleware, PlayerAddressMiddleware
from stepclimb.protocol import (
    GameResponse,
    StartRequest,
    chain_response,
    game_response,
    history_response,
    tiers_response,
)
from stepclimb.service import build_game_service
from stepclimb.validators import parse_difficulty, parse_stake


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage Redis connection lifecycle."""
    await blob_store.connect()
    yield
    await blob_store.close()


app = FastAPI(
    title="Step Climb",
    version="0.1.0",
    description="Client API for the step-climb wagering game",
    lifespan=lifespan,
    debug=settings.debug,
)

app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(PlayerAddressMiddleware)


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError) -> JSONResponse:
    return exc.to_response()


# Session machines and ledger wiring
game_service = build_game_service()


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/tiers")
async def tiers() -> dict:
    """Static tier table with the multiplier ladder of each tier."""
    return tiers_response().model_dump()


@app.get("/chain")
async def chain() -> dict:
    """Network the service plays on, for the wallet network switch."""
    return chain_response(game_service.chain).model_dump()


@app.get("/game")
async def get_game(request: Request) -> dict:
    """Live session of the calling player, if any."""
    machine = game_service.machine_for(request.state.player_address)
    return game_response(machine).model_dump(mode="json")


@app.post("/game/start")
async def start_game(request: Request, body: StartRequest) -> dict:
    """Stake on a new session; returns once the ledger confirms the start."""
    tier = parse_difficulty(body.difficulty)
    stake = parse_stake(body.stake)
    machine = game_service.machine_for(request.state.player_address)
    await machine.start(tier, stake)
    return game_response(machine).model_dump(mode="json")


@app.post("/game/step")
async def play_step(request: Request) -> dict:
    machine = game_service.machine_for(request.state.player_address)
    await machine.play_step()
    return game_response(machine).model_dump(mode="json")


@app.post("/game/cashout")
async def cash_out(request: Request) -> dict:
    machine = game_service.machine_for(request.state.player_address)
    await machine.cash_out()
    return game_response(machine).model_dump(mode="json")


@app.post("/game/refresh")
async def refresh_game(request: Request) -> dict:
    """Re-read the live session from the ledger after an unconfirmed request."""
    machine = game_service.machine_for(request.state.player_address)
    await machine.refresh()
    return game_response(machine).model_dump(mode="json")


@app.post("/game/leave")
async def leave_game(request: Request) -> dict:
    """Drop the player's connection. A live session stays on the ledger."""
    game_service.disconnect(request.state.player_address)
    return GameResponse(state=MachineState.IDLE.value).model_dump(mode="json")


@app.get("/history")
async def history(limit: int = Query(default=settings.history_max_records, ge=1, le=50)) -> dict:
    """Recently finished games rebuilt from the ledger log."""
    records = await game_service.recent_history(limit)
    return history_response(records).model_dump(mode="json")


@app.get("/archive/{session_id}")
async def archived_game(session_id: int) -> dict:
    if game_service.archiver is None:
        raise GameError(ErrorCode.NOT_FOUND, "Archive is not configured")
    summary = await game_service.archiver.fetch(session_id)
    if summary is None:
        raise GameError(ErrorCode.NOT_FOUND, f"No archived game {session_id}")
    return summary.model_dump(mode="json")


@app.get("/merits/user/{address}")
async def merits_user(address: str):
    """Points service user and leaderboard lookup, proxied."""
    try:
        user_resp = await game_service.points.get_user(address)
        if not user_resp.is_success:
            return JSONResponse(
                status_code=user_resp.status_code,
                content={"error": "Failed to fetch user info"},
            )
        leaderboard_resp = await game_service.points.get_leaderboard_entry(address)
        if not leaderboard_resp.is_success:
            return JSONResponse(
                status_code=leaderboard_resp.status_code,
                content={"error": "Failed to fetch leaderboard info"},
            )
        return leaderboard_resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Error fetching Merits data for %s: %s", address, e)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
