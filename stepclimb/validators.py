"""Request validators."""
from decimal import Decimal, InvalidOperation

from stepclimb.errors import ValidationError
from stepclimb.logic.tiers import DifficultyTier


def validate_stake(stake: Decimal) -> None:
    """
    Stake must be a positive finite amount.

    Raises VALIDATION_FAILED before anything is sent to the ledger.
    """
    if not stake.is_finite() or stake <= 0:
        raise ValidationError(f"Stake must be greater than zero, got {stake}")


def parse_stake(raw: str | float | Decimal) -> Decimal:
    """Parse a user-entered stake and validate it."""
    try:
        stake = Decimal(str(raw))
    except InvalidOperation:
        raise ValidationError(f"Stake is not a number: {raw!r}")
    validate_stake(stake)
    return stake


def parse_difficulty(raw: str) -> DifficultyTier:
    """Accept a tier by name, case-insensitively."""
    for tier in DifficultyTier:
        if tier.value.lower() == raw.strip().lower():
            return tier
    allowed = ", ".join(t.value for t in DifficultyTier)
    raise ValidationError(f"Unknown difficulty {raw!r}. Allowed: {allowed}")
