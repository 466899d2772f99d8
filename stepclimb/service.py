"""Wiring of ledger, session machines and side-effect services."""
import logging

from stepclimb.archive import GameArchiver, blob_store
from stepclimb.config import ChainConfig, WalletContext, get_chain_config, settings
from stepclimb.ledger.adapter import LedgerAdapter
from stepclimb.ledger.client import LedgerClient
from stepclimb.ledger.local import LocalLedger
from stepclimb.ledger.variants import variant_for
from stepclimb.logic.history import SessionHistoryReconciler
from stepclimb.logic.models import HistoricalGameRecord
from stepclimb.logic.session import GameSessionMachine
from stepclimb.rewards import PointsServiceClient, RewardDispatcher
from stepclimb.telemetry import TelemetryService, telemetry_service


logger = logging.getLogger(__name__)

READ_ONLY_ADDRESS = "0x0000000000000000000000000000000000000000"


class GameService:
    """
    One session machine per connected player, all on the same ledger.

    Sessions live in memory only; the ledger is the durable record.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        chain: ChainConfig,
        archiver: GameArchiver | None = None,
        points: PointsServiceClient | None = None,
        rewards: RewardDispatcher | None = None,
        telemetry: TelemetryService | None = None,
        variant_name: str | None = None,
    ):
        self.ledger = ledger
        self.chain = chain
        self.archiver = archiver
        self.points = points or PointsServiceClient(api_url=chain.merits_api_url)
        self.rewards = rewards or RewardDispatcher(self.points)
        self.telemetry = telemetry or telemetry_service
        self.variant = variant_for(variant_name or settings.ledger_variant, ledger)
        self._machines: dict[str, GameSessionMachine] = {}
        self.reconciler = SessionHistoryReconciler(self._adapter(READ_ONLY_ADDRESS))

    def _adapter(self, address: str) -> LedgerAdapter:
        wallet = WalletContext(address=address, chain=self.chain)
        return LedgerAdapter(self.ledger, wallet, variant=self.variant)

    def machine_for(self, player: str) -> GameSessionMachine:
        """Session machine of a player, created on first use."""
        key = player.lower()
        machine = self._machines.get(key)
        if machine is None:
            machine = GameSessionMachine(
                self._adapter(player),
                rewards=self.rewards,
                archiver=self.archiver,
                telemetry=self.telemetry,
            )
            self._machines[key] = machine
            logger.debug("Created session machine for %s", player)
        return machine

    def disconnect(self, player: str) -> None:
        """Forget a player's connection and its live session view."""
        key = player.lower()
        machine = self._machines.get(key)
        if machine is not None:
            machine.reset()
            del self._machines[key]

    async def recent_history(self, limit: int | None = None) -> list[HistoricalGameRecord]:
        return await self.reconciler.reconstruct_recent(max_records=limit)


def build_game_service() -> GameService:
    """Default service: the configured chain backed by the in-process ledger."""
    chain = get_chain_config(settings.default_chain)
    ledger = LocalLedger(entropy_based=settings.ledger_variant == "entropy",
                         max_query_window=settings.max_query_window)
    return GameService(ledger, chain, archiver=GameArchiver(blob_store))
