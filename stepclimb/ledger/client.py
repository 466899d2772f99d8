"""Ledger client interface.

A LedgerClient speaks to one deployment of the game contract. It knows
nothing about sessions or tiers; LedgerAdapter turns its receipts and
reverts into typed outcomes.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any

from stepclimb.ledger.models import LedgerGame, LogEntry, Receipt


class LedgerRevert(Exception):
    """Contract rejected the call. reason is the revert string, verbatim."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class LedgerUnavailable(Exception):
    """Transport to the ledger failed (network, signer, dropped tx)."""


class LedgerClient(ABC):
    """Abstract ledger interface."""

    @property
    @abstractmethod
    def max_query_window(self) -> int:
        """Widest block range a single get_logs call may span."""
        pass

    @abstractmethod
    async def send_transaction(
        self,
        function: str,
        args: list[Any],
        sender: str,
        value: Decimal = Decimal(0),
    ) -> str:
        """
        Sign and broadcast a contract call, return its transaction hash.

        Raises LedgerRevert if pre-broadcast simulation reverts and
        LedgerUnavailable if nothing could be broadcast.
        """
        pass

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str) -> Receipt:
        """Block until the transaction is included. Raises LedgerUnavailable."""
        pass

    @abstractmethod
    async def block_number(self) -> int:
        pass

    @abstractmethod
    async def get_logs(
        self,
        event: str,
        from_block: int,
        to_block: int,
        session_id: int | None = None,
    ) -> list[LogEntry]:
        """Events in [from_block, to_block], optionally for one session."""
        pass

    @abstractmethod
    async def read_game(self, session_id: int) -> LedgerGame | None:
        pass

    @abstractmethod
    async def block_timestamp(self, block_number: int) -> datetime:
        pass

    @abstractmethod
    async def entropy_fee(self) -> Decimal:
        """Fee the randomness provider charges per step request."""
        pass
