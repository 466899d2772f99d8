"""Capability descriptors for the deployed contract variants.

The variant is chosen by configuration, never by inspecting the contract.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Union

from stepclimb.ledger.client import LedgerClient


@dataclass(frozen=True)
class Standard:
    """playStep resolves in the same transaction; no fee attached."""

    kind = "standard"


@dataclass(frozen=True)
class EntropyBased:
    """
    playStep requests randomness from an external provider.

    The provider fee is attached as value, the receipt carries a
    StepRequested event and the StepResult lands in a later block.
    """

    entropy_fee_lookup: Callable[[], Awaitable[Decimal]]
    kind = "entropy"


LedgerVariant = Union[Standard, EntropyBased]


def variant_for(name: str, client: LedgerClient) -> LedgerVariant:
    """Build the descriptor named in settings.ledger_variant."""
    if name == Standard.kind:
        return Standard()
    if name == EntropyBased.kind:
        return EntropyBased(entropy_fee_lookup=client.entropy_fee)
    raise ValueError(f"Unknown ledger variant: {name}")
