"""
Public, immutable rules of the prize wheel.

These values define how milestones pay out and how draws are seeded.
Changing them changes the audit trail semantics and MUST be publicly announced.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Award:
    count: int
    amount: float  # USD


@dataclass(frozen=True)
class Milestone:
    cap: float  # observed FDV in USD
    once: Tuple[Award, ...]
    starts_recurring: bool = False


# One-time batches, ascending by cap.
MILESTONES: Tuple[Milestone, ...] = (
    Milestone(cap=100_000, once=(Award(count=5, amount=100),)),
    Milestone(cap=500_000, once=(Award(count=5, amount=200),)),
    Milestone(cap=1_000_000, once=(Award(count=2, amount=500),), starts_recurring=True),
)

# Draw seeding identifiers (recorded on every event)
RNG_METHOD_SEEDED = "sha256(blockhash|height|bucket)+xorshift32"
RNG_METHOD_FALLBACK = "lcg(wallclock)"
SEED_FALLBACK = "fallback"
SEED_DEMO = "demo"

# Interval guard slack for scheduler jitter
INTERVAL_TOLERANCE_MS = 15_000
MIN_DELAY_MS = 5_000
FIRST_RUN_MAX_DELAY_MS = 60_000

# Solana
LAMPORTS_PER_SOL = 1_000_000_000
FEE_BUFFER_LAMPORTS = 5_000
# Rent-exempt minimum for a 165-byte SPL token account, paid when creating a winner ATA
ATA_RENT_LAMPORTS = 2_039_280
USDC_MINT_MAINNET = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
WSOL_MINT = "So11111111111111111111111111111111111111112"

HTTP_USER_AGENT = "solana-spin/1.0"
