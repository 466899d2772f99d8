"""Difficulty tiers and their fixed configuration."""
from enum import Enum
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict


class DifficultyTier(str, Enum):
    """Difficulty tiers. Declaration order is the ledger's difficulty index."""

    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"
    HARDCORE = "Hardcore"

    @property
    def index(self) -> int:
        """Index passed to and emitted by the ledger contract."""
        return list(DifficultyTier).index(self)

    @classmethod
    def from_index(cls, index: int) -> "DifficultyTier":
        """Map a ledger difficulty index back to a tier. Raises ValueError."""
        tiers = list(cls)
        if not 0 <= index < len(tiers):
            raise ValueError(f"Unknown difficulty index: {index}")
        return tiers[index]

    @property
    def config(self) -> "TierConfig":
        return TIER_CONFIGS[self]


class TierConfig(BaseModel):
    """
    Immutable tier configuration.

    max_win and win_probability are informational; the ledger decides
    step outcomes and final payouts.
    """

    model_config = ConfigDict(frozen=True)

    max_steps: int
    start_multiplier: float
    max_win: float
    win_probability: float  # percent


TIER_CONFIGS = MappingProxyType({
    DifficultyTier.EASY: TierConfig(
        max_steps=24, start_multiplier=1.02, max_win=24.50, win_probability=96
    ),
    DifficultyTier.MEDIUM: TierConfig(
        max_steps=22, start_multiplier=1.11, max_win=2254, win_probability=88
    ),
    DifficultyTier.HARD: TierConfig(
        max_steps=20, start_multiplier=1.22, max_win=52067.39, win_probability=80
    ),
    DifficultyTier.HARDCORE: TierConfig(
        max_steps=15, start_multiplier=1.63, max_win=3203384.80, win_probability=60
    ),
})
