#!/usr/bin/env python3
"""
Headless tier simulation against the local ledger.

Plays full sessions through the session state machine with a seeded
entropy source and a fixed cash-out strategy, then writes one CSV row of
observed return per tier.

Usage:
    python -m scripts.simulate_tiers --sessions 20000 --cashout-at 5 --seed SIM_2025 --out out/tiers.csv
    python -m scripts.simulate_tiers --tier Hard --sessions 5000 --cashout-at max --seed SIM_2025 --out out/hard.csv
"""
import argparse
import asyncio
import csv
import hashlib
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from stepclimb.config import WalletContext, get_chain_config, settings
from stepclimb.ledger.adapter import LedgerAdapter
from stepclimb.ledger.entropy import SeededEntropy
from stepclimb.ledger.local import LocalLedger
from stepclimb.logic.models import SessionStatus
from stepclimb.logic.session import GameSessionMachine
from stepclimb.logic.tiers import DifficultyTier
from stepclimb.telemetry import TelemetryService
from stepclimb.validators import parse_difficulty


PLAYER = "0x00000000000000000000000000000000000051a1"
STAKE = Decimal("1")


class _NullSink:
    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        pass


@dataclass
class TierStats:
    """Statistics accumulated for one tier."""

    tier: DifficultyTier
    sessions: int = 0
    cashed_out: int = 0
    total_staked: Decimal = Decimal(0)
    total_paid: Decimal = Decimal(0)
    max_payout_x: float = 0.0

    @property
    def rtp(self) -> float:
        if not self.total_staked:
            return 0.0
        return float(self.total_paid / self.total_staked * 100)


def seed_to_int(seed_str: str) -> int:
    """Convert string seed to integer deterministically."""
    return int(hashlib.sha256(seed_str.encode()).hexdigest(), 16) % (2**31)


async def simulate_tier(
    tier: DifficultyTier,
    sessions: int,
    cashout_at: int,
    seed_str: str,
) -> TierStats:
    """Play `sessions` games, cashing out once `cashout_at` steps are confirmed."""
    target = min(cashout_at, tier.config.max_steps)
    ledger = LocalLedger(
        entropy=SeededEntropy(seed_to_int(f"{seed_str}:{tier.value}")),
        reserve=Decimal(10) ** 12,
    )
    wallet = WalletContext(address=PLAYER, chain=get_chain_config(settings.default_chain))
    machine = GameSessionMachine(
        LedgerAdapter(ledger, wallet),
        telemetry=TelemetryService(sink=_NullSink()),
    )

    stats = TierStats(tier=tier)
    for _ in range(sessions):
        session = await machine.start(tier, STAKE)
        while session.status == SessionStatus.ACTIVE and session.current_step < target:
            await machine.play_step()
        if session.status == SessionStatus.ACTIVE:
            await machine.cash_out()

        stats.sessions += 1
        stats.total_staked += session.stake
        if session.status == SessionStatus.CASHED_OUT:
            stats.cashed_out += 1
            stats.total_paid += session.payout
            stats.max_payout_x = max(stats.max_payout_x, float(session.payout / session.stake))
    return stats


def write_csv(rows: list[TierStats], cashout_at: int, seed_str: str, output_path: str) -> None:
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    fieldnames = [
        "timestamp", "seed", "tier", "cashout_at", "sessions", "cashed_out",
        "cashout_rate", "total_staked", "total_paid", "rtp", "max_payout_x",
    ]
    with open(output_file, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for stats in rows:
            writer.writerow({
                "timestamp": timestamp,
                "seed": seed_str,
                "tier": stats.tier.value,
                "cashout_at": cashout_at,
                "sessions": stats.sessions,
                "cashed_out": stats.cashed_out,
                "cashout_rate": f"{stats.cashed_out / stats.sessions * 100:.4f}" if stats.sessions else "0",
                "total_staked": str(stats.total_staked),
                "total_paid": str(stats.total_paid),
                "rtp": f"{stats.rtp:.4f}",
                "max_payout_x": f"{stats.max_payout_x:.4f}",
            })
    print(f"CSV written to: {output_path}")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Simulate tiers against the local ledger")
    parser.add_argument("--tier", type=str, default=None, help="Single tier (default: all)")
    parser.add_argument("--sessions", type=int, required=True, help="Sessions per tier")
    parser.add_argument(
        "--cashout-at",
        type=str,
        default="max",
        help="Cash out after this many confirmed steps, or 'max'",
    )
    parser.add_argument("--seed", type=str, required=True, help="Seed string for reproducibility")
    parser.add_argument("--out", type=str, required=True, help="Output CSV path")
    args = parser.parse_args()

    tiers = [parse_difficulty(args.tier)] if args.tier else list(DifficultyTier)
    cashout_at = 10**6 if args.cashout_at == "max" else int(args.cashout_at)
    if cashout_at < 1:
        parser.error("--cashout-at must be at least 1")

    rows = []
    for tier in tiers:
        print(f"Simulating {tier.value}: sessions={args.sessions}, cashout_at={args.cashout_at}")
        stats = asyncio.run(simulate_tier(tier, args.sessions, cashout_at, args.seed))
        print(f"  Cash-out rate: {stats.cashed_out / stats.sessions * 100:.2f}%")
        print(f"  RTP: {stats.rtp:.4f}%")
        rows.append(stats)

    write_csv(rows, cashout_at, args.seed, args.out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
