"""Multiplier engine: pure arithmetic over tier configuration.

Values stay full-precision floats internally; rounding happens only in the
format_* helpers used at the presentation boundary.
"""
from decimal import ROUND_DOWN, Decimal

from stepclimb.logic.tiers import DifficultyTier

VISIBLE_STEP_COUNT = 6


def multiplier_for(tier: DifficultyTier, step: int) -> float:
    """
    Payout multiplier after `step` confirmed steps.

    Caller keeps 0 <= step <= tier max_steps; no clamping here.
    """
    if step == 0:
        return 1.0
    return tier.config.start_multiplier ** step


def step_ladder(tier: DifficultyTier) -> list[tuple[int, float]]:
    """Every step of the tier with the multiplier reached on it."""
    return [
        (step, multiplier_for(tier, step))
        for step in range(1, tier.config.max_steps + 1)
    ]


def visible_steps(tier: DifficultyTier, current_step: int) -> list[tuple[int, float]]:
    """
    Window of the ladder shown on the board.

    Idle boards show the first six steps; during play the previous step,
    the current one and the next four.
    """
    ladder = step_ladder(tier)
    if current_step == 0:
        return ladder[:VISIBLE_STEP_COUNT]
    start = max(0, current_step - 2)
    end = min(len(ladder), current_step + 5)
    return ladder[start:end]


def potential_payout(stake: Decimal, tier: DifficultyTier, step: int) -> Decimal:
    """Indicative payout for display. Settlement always uses the ledger amount."""
    return stake * Decimal(repr(multiplier_for(tier, step)))


def format_multiplier(multiplier: float) -> str:
    return f"{multiplier:.2f}x"


def format_amount(amount: Decimal) -> str:
    return str(amount.quantize(Decimal("0.0001"), rounding=ROUND_DOWN))
