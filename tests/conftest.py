"""Pytest fixtures for client tests."""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Generator

import httpx
import pytest
from fastapi.testclient import TestClient

from stepclimb.archive import GameArchiver, RedisBlobStore
from stepclimb.config import WalletContext, get_chain_config
from stepclimb.ledger.adapter import LedgerAdapter
from stepclimb.ledger.client import LedgerClient
from stepclimb.ledger.entropy import ScriptedEntropy
from stepclimb.ledger.local import LocalLedger
from stepclimb.ledger.models import (
    EVENT_CASHOUT,
    EVENT_GAME_STARTED,
    EVENT_STEP_RESULT,
    LedgerGame,
    LogEntry,
    Receipt,
)
from stepclimb.logic.session import GameSessionMachine
from stepclimb.rewards import PointsServiceClient, RewardDispatcher
from stepclimb.service import GameService
from stepclimb.telemetry import TelemetryService


PLAYER = "0x1111111111111111111111111111111111111111"
OTHER_PLAYER = "0x2222222222222222222222222222222222222222"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (full simulations)"
    )


class MockRedis:
    """Mock Redis client for testing."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._last_set_ex: int | None = None

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(
        self, key: str, value: str, nx: bool = False, ex: int | None = None
    ) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        self._last_set_ex = ex
        return True

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self._store[key] = value
        self._last_set_ex = ttl
        return True

    async def delete(self, key: str) -> int:
        if key in self._store:
            del self._store[key]
            return 1
        return 0

    async def close(self) -> None:
        pass

    def clear(self) -> None:
        self._store.clear()
        self._last_set_ex = None


class FailingRedis(MockRedis):
    """Redis whose writes always fail."""

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None):
        raise ConnectionError("redis down")

    async def setex(self, key: str, ttl: int, value: str):
        raise ConnectionError("redis down")


class RecordingTelemetrySink:
    """Telemetry sink that keeps every event for assertions."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        self.events.append((event_name, data))

    def get_events(self, event_name: str) -> list[dict[str, Any]]:
        return [data for name, data in self.events if name == event_name]


class FakeLedgerClient(LedgerClient):
    """
    Scripted ledger client.

    Receipts (or exceptions) queued in `receipts` are handed out by
    wait_for_receipt in order; exceptions queued in `send_errors` are raised
    by send_transaction. Log queries are answered from `logs`, and any
    window whose start block is in `failing_windows` raises.
    """

    def __init__(self, max_query_window: int = 30):
        self._max_query_window = max_query_window
        self.sent: list[tuple[str, list[Any], str, Decimal]] = []
        self.receipts: list[Receipt | Exception] = []
        self.send_errors: list[Exception] = []
        self.head = 0
        self.logs: list[LogEntry] = []
        self.failing_windows: set[int] = set()
        self.log_queries: list[tuple[str, int, int, int | None]] = []
        self.games: dict[int, LedgerGame] = {}
        self.fee = Decimal("0.001")

    @property
    def max_query_window(self) -> int:
        return self._max_query_window

    async def send_transaction(self, function, args, sender, value=Decimal(0)) -> str:
        self.sent.append((function, list(args), sender, value))
        if self.send_errors:
            raise self.send_errors.pop(0)
        return f"0xtx{len(self.sent)}"

    async def wait_for_receipt(self, tx_hash: str) -> Receipt:
        item = self.receipts.pop(0)
        if isinstance(item, Exception):
            raise item
        return item.model_copy(update={"tx_hash": tx_hash})

    async def block_number(self) -> int:
        return self.head

    async def get_logs(self, event, from_block, to_block, session_id=None) -> list[LogEntry]:
        self.log_queries.append((event, from_block, to_block, session_id))
        if from_block in self.failing_windows:
            raise RuntimeError(f"provider error for {from_block}-{to_block}")
        return [
            entry
            for entry in self.logs
            if entry.event == event
            and from_block <= entry.block_number <= to_block
            and (session_id is None or entry.args.get("gameId") == session_id)
        ]

    async def read_game(self, session_id: int) -> LedgerGame | None:
        return self.games.get(session_id)

    async def block_timestamp(self, block_number: int) -> datetime:
        return datetime(2025, 1, 1, tzinfo=timezone.utc)

    async def entropy_fee(self) -> Decimal:
        return self.fee

    # === Builders ===

    def queue_receipt(self, *logs: LogEntry, block: int = 1) -> None:
        self.receipts.append(Receipt(tx_hash="", block_number=block, logs=list(logs)))

    def queue_started(self, session_id: int, bet: str, player: str = PLAYER, difficulty: int = 0) -> None:
        self.queue_receipt(log(EVENT_GAME_STARTED, gameId=session_id, player=player,
                               difficulty=difficulty, bet=Decimal(bet)))

    def queue_step(self, session_id: int, new_step: int, success: bool) -> None:
        self.queue_receipt(log(EVENT_STEP_RESULT, gameId=session_id, newStep=new_step,
                               success=success))

    def queue_cashout(self, session_id: int, payout: str) -> None:
        self.queue_receipt(log(EVENT_CASHOUT, gameId=session_id, payout=Decimal(payout)))


def log(event: str, block: int = 1, tx_hash: str = "0xlog", log_index: int = 0, **args: Any) -> LogEntry:
    """Build a decoded log entry."""
    return LogEntry(event=event, args=args, block_number=block, tx_hash=tx_hash, log_index=log_index)


@pytest.fixture
def wallet() -> WalletContext:
    return WalletContext(address=PLAYER, chain=get_chain_config("berachain"))


@pytest.fixture
def fake_ledger() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def adapter(fake_ledger: FakeLedgerClient, wallet: WalletContext) -> LedgerAdapter:
    return LedgerAdapter(fake_ledger, wallet, poll_interval=0)


@pytest.fixture
def telemetry_sink() -> RecordingTelemetrySink:
    return RecordingTelemetrySink()


@pytest.fixture
def telemetry(telemetry_sink: RecordingTelemetrySink) -> TelemetryService:
    return TelemetryService(sink=telemetry_sink)


@pytest.fixture
def machine(adapter: LedgerAdapter, telemetry: TelemetryService) -> GameSessionMachine:
    return GameSessionMachine(adapter, telemetry=telemetry)


@pytest.fixture
def entropy() -> ScriptedEntropy:
    return ScriptedEntropy()


@pytest.fixture
def local_ledger(entropy: ScriptedEntropy) -> LocalLedger:
    return LocalLedger(entropy=entropy, reserve=Decimal("10"))


@pytest.fixture
def mock_redis() -> MockRedis:
    """Create a fresh mock Redis for each test."""
    return MockRedis()


@pytest.fixture
def blob_store_with_mock(mock_redis: MockRedis) -> Generator[RedisBlobStore, None, None]:
    """RedisBlobStore with mock client."""
    store = RedisBlobStore(ttl_seconds=0)
    store._client = mock_redis
    yield store
    mock_redis.clear()


@pytest.fixture
def points_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def points_transport(points_requests: list[httpx.Request]) -> httpx.MockTransport:
    """Points service that accepts every distribution."""

    def handler(request: httpx.Request) -> httpx.Response:
        points_requests.append(request)
        if request.url.path.endswith("/distribute"):
            return httpx.Response(200, json={"accepted": True})
        if "/leaderboard/users/" in request.url.path:
            return httpx.Response(200, json={"total_balance": "12", "users_below": 3, "top_percent": 10})
        if "/auth/user/" in request.url.path:
            return httpx.Response(200, json={"address": request.url.path.rsplit("/", 1)[-1]})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.fixture
def client_with_service(
    local_ledger: LocalLedger,
    mock_redis: MockRedis,
    points_transport: httpx.MockTransport,
    telemetry: TelemetryService,
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[tuple[TestClient, GameService], None, None]:
    """TestClient on a service backed by the local ledger and mocked Redis."""
    import stepclimb.main as main
    from stepclimb.archive import blob_store

    points = PointsServiceClient(api_url="http://merits.test/api/v1",
                                 partner_api_url="http://merits.test/partner/api/v1",
                                 api_key="key", transport=points_transport)
    service = GameService(
        local_ledger,
        get_chain_config("berachain"),
        archiver=GameArchiver(blob_store),
        points=points,
        rewards=RewardDispatcher(points),
        telemetry=telemetry,
        variant_name="standard",
    )
    monkeypatch.setattr(main, "game_service", service)

    original_client = blob_store._client
    blob_store._client = mock_redis

    with TestClient(main.app) as client:
        yield client, service

    blob_store._client = original_client
    mock_redis.clear()
