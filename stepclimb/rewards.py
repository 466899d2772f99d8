"""Points service (Merits) client and the reward dispatcher.

Rewards are a side effect of a confirmed start. Nothing here may fail a
game: dispatch_reward logs every failure and returns.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any

import httpx

from stepclimb.config import settings


logger = logging.getLogger(__name__)


class PointsServiceError(Exception):
    def __init__(self, status_code: int | None, message: str):
        self.status_code = status_code
        super().__init__(f"[points {status_code}] {message}")


@dataclass
class Distribution:
    address: str
    amount: float


class PointsServiceClient:
    """Thin async client over the points service REST API."""

    def __init__(
        self,
        api_url: str | None = None,
        partner_api_url: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        self._api_url = (api_url or settings.merits_api_url).rstrip("/")
        self._partner_api_url = (partner_api_url or settings.merits_partner_api_url).rstrip("/")
        self._api_key = settings.merits_api_key if api_key is None else api_key
        self._transport = transport
        self._timeout = httpx.Timeout(timeout or settings.http_timeout_seconds)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _partner_headers(self) -> dict[str, str]:
        return {"Authorization": self._api_key, "Content-Type": "application/json"}

    async def distribute(
        self,
        distributions: list[Distribution],
        description: str,
        distribution_id: str | None = None,
    ) -> dict[str, Any]:
        """POST /distribute. Raises PointsServiceError on non-2xx."""
        body = {
            "id": distribution_id or str(uuid.uuid4()),
            "description": description,
            "distributions": [
                {"address": d.address, "amount": str(d.amount)} for d in distributions
            ],
            "create_missing_accounts": True,
            "expected_total": str(sum(d.amount for d in distributions)),
        }
        async with self._client() as client:
            resp = await client.post(
                f"{self._partner_api_url}/distribute",
                headers=self._partner_headers(),
                json=body,
            )
        if not resp.is_success:
            raise PointsServiceError(resp.status_code, resp.text)
        return resp.json()

    async def get_user(self, address: str) -> httpx.Response:
        """GET /auth/user/{address}; the raw response is returned for proxying."""
        async with self._client() as client:
            return await client.get(
                f"{self._api_url}/auth/user/{address}",
                headers={"Accept": "application/json"},
            )

    async def get_leaderboard_entry(self, address: str) -> httpx.Response:
        """GET /leaderboard/users/{address}."""
        async with self._client() as client:
            return await client.get(
                f"{self._api_url}/leaderboard/users/{address}",
                headers={"Accept": "application/json"},
            )


class RewardDispatcher:
    """
    Credits points to a player after a confirmed start.

    There is no idempotency key tied to the start transaction: a retried
    start may award twice.
    """

    def __init__(
        self,
        client: PointsServiceClient | None = None,
        amount: float | None = None,
        description: str | None = None,
    ):
        self._client = client or PointsServiceClient()
        self._amount = settings.reward_amount_per_start if amount is None else amount
        self._description = description or settings.reward_description
        self.failures = 0

    async def dispatch_reward(self, player: str) -> None:
        try:
            await self._client.distribute(
                [Distribution(address=player, amount=self._amount)],
                description=self._description,
            )
        except (PointsServiceError, httpx.HTTPError, ValueError) as e:
            self.failures += 1
            logger.warning("Reward dispatch for %s failed: %s", player, e)
            return
        except Exception:
            self.failures += 1
            logger.exception("Unexpected error dispatching reward for %s", player)
            return
        logger.info("Rewarded %s with %s points", player, self._amount)
