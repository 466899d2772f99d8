"""Archive of finished sessions in a Redis-backed blob store."""
import json
import logging
from datetime import datetime
from typing import Any, Protocol

import redis.asyncio as redis
from pydantic import BaseModel, Field

from stepclimb.config import settings
from stepclimb.logic.models import GameResult, GameSession, SessionStatus, utcnow
from stepclimb.logic.multiplier import format_multiplier


logger = logging.getLogger(__name__)


def archive_key(session_id: int) -> str:
    return f"game-{session_id}"


class BlobStore(Protocol):
    """Key/value store for JSON blobs."""

    async def put(self, key: str, blob: dict[str, Any]) -> None:
        ...

    async def get(self, key: str) -> dict[str, Any] | None:
        ...

    async def delete(self, key: str) -> None:
        ...


class RedisBlobStore:
    """BlobStore on Redis."""

    def __init__(self, redis_url: str | None = None, ttl_seconds: int | None = None):
        self._url = redis_url or settings.redis_url
        self._ttl = settings.archive_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        """Get Redis client, raise if not connected."""
        if self._client is None:
            raise RuntimeError("Redis not connected")
        return self._client

    async def put(self, key: str, blob: dict[str, Any]) -> None:
        payload = json.dumps(blob, sort_keys=True, separators=(",", ":"))
        if self._ttl > 0:
            await self.client.setex(key, self._ttl, payload)
        else:
            await self.client.set(key, payload)

    async def get(self, key: str) -> dict[str, Any] | None:
        cached = await self.client.get(key)
        if cached is None:
            return None
        return json.loads(cached)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)


class StepSummary(BaseModel):
    step: int
    success: bool
    timestamp: datetime


class GameSummary(BaseModel):
    """Archived record of one finished session."""

    session_id: int
    player: str
    difficulty: str
    stake: str
    result: GameResult
    steps: int
    timestamp: datetime = Field(default_factory=utcnow)
    step_history: list[StepSummary] = Field(default_factory=list)
    tx_hash: str | None = None
    payout: str | None = None
    multiplier: str | None = None

    @classmethod
    def from_session(cls, session: GameSession) -> "GameSummary":
        won = session.status == SessionStatus.CASHED_OUT
        return cls(
            session_id=session.session_id,
            player=session.player,
            difficulty=session.difficulty.value,
            stake=str(session.stake),
            result=GameResult.WIN if won else GameResult.LOSS,
            steps=session.current_step,
            step_history=[
                StepSummary(step=r.step_number, success=r.succeeded, timestamp=r.observed_at)
                for r in session.step_history
            ],
            tx_hash=session.start_tx_hash,
            payout=str(session.payout) if won else None,
            multiplier=format_multiplier(session.current_multiplier) if won else None,
        )


class GameArchiver:
    """
    Best-effort archive of finished sessions.

    archive() never raises: a failed write is logged and dropped.
    """

    def __init__(self, store: BlobStore):
        self._store = store

    async def archive(self, session: GameSession) -> bool:
        if session.session_id is None or not session.is_terminal:
            logger.warning("Refusing to archive unfinished session %s", session.session_id)
            return False
        try:
            summary = GameSummary.from_session(session)
            await self._store.put(archive_key(session.session_id), summary.model_dump(mode="json"))
        except Exception as e:
            logger.warning("Archive of session %s failed: %s", session.session_id, e)
            return False
        logger.info("Archived session %d", session.session_id)
        return True

    async def fetch(self, session_id: int) -> GameSummary | None:
        blob = await self._store.get(archive_key(session_id))
        if blob is None:
            return None
        return GameSummary.model_validate(blob)

    async def delete(self, session_id: int) -> None:
        await self._store.delete(archive_key(session_id))


# Global instance
blob_store = RedisBlobStore()
