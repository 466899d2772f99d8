"""Randomness sources for the local ledger.

On a real deployment the contract (or its entropy provider) owns
randomness; the local ledger draws from one of these instead.
"""
import random
import secrets
from abc import ABC, abstractmethod
from typing import Iterable


class EntropySource(ABC):
    """Draws step outcomes."""

    @abstractmethod
    def roll(self) -> float:
        """Return a percentage roll in [0, 100)."""
        pass

    def step_succeeds(self, win_probability: float) -> bool:
        return self.roll() < win_probability


class SecureEntropy(EntropySource):
    """Cryptographically secure source, no fixed seed."""

    def roll(self) -> float:
        return secrets.randbelow(10_000) / 100


class SeededEntropy(EntropySource):
    """
    Deterministic source for simulations.

    The seed fully determines the sequence of rolls.
    """

    def __init__(self, seed: int):
        self._rng = random.Random(seed)
        self.seed = seed

    def roll(self) -> float:
        return self._rng.random() * 100


class ScriptedEntropy(EntropySource):
    """Replays a fixed list of step outcomes, then always succeeds."""

    def __init__(self, outcomes: Iterable[bool] = ()):
        self._outcomes = list(outcomes)

    def push(self, *outcomes: bool) -> None:
        self._outcomes.extend(outcomes)

    def roll(self) -> float:
        if not self._outcomes:
            return 0.0
        return 0.0 if self._outcomes.pop(0) else 100.0
