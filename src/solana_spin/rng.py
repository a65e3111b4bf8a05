"""
Reproducible randomness for draws.

A draw's stream is seeded from the latest blockhash, its validity height and
a coarse time bucket, so anyone holding the recorded seed can replay it.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, Tuple

from .project_constants import (
    RNG_METHOD_FALLBACK,
    RNG_METHOD_SEEDED,
    SEED_DEMO,
    SEED_FALLBACK,
)

log = logging.getLogger("rng")

MASK32 = 0xFFFFFFFF
TWO_POW_32 = 0x100000000
DEFAULT_STATE = 0x9E3779B9


class EntropySource(Protocol):
    def get_latest_entropy(self) -> Awaitable[Tuple[str, int]]: ...


def xorshift32(x: int) -> int:
    x ^= (x << 13) & MASK32
    x ^= x >> 17
    x ^= (x << 5) & MASK32
    return x & MASK32


class Xorshift32Stream:
    def __init__(self, state: int) -> None:
        self.state = (state & MASK32) or DEFAULT_STATE

    def __call__(self) -> float:
        self.state = xorshift32(self.state)
        return self.state / TWO_POW_32


class LcgStream:
    """Numerical Recipes LCG. Low quality; only for non-verifiable draws."""

    def __init__(self, state: int) -> None:
        self.state = state & MASK32

    def __call__(self) -> float:
        self.state = (1664525 * self.state + 1013904223) & MASK32
        return self.state / TWO_POW_32


@dataclass
class SeededRng:
    seed: str
    method: str
    next: Callable[[], float]

    def __call__(self) -> float:
        return self.next()

    def record(self) -> dict:
        return {"seed": self.seed, "method": self.method}


def seed_hex(blockhash: str, height: int, bucket: int) -> str:
    material = f"{blockhash}:{height}:{bucket}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def rng_from_seed(seed: str) -> Xorshift32Stream:
    try:
        state = int(seed[:8], 16)
    except ValueError:
        raise ValueError(f"Seed {seed!r} is not a replayable hex digest.")
    return Xorshift32Stream(state)


def _wallclock_lcg(now_ms: int) -> LcgStream:
    return LcgStream((now_ms & MASK32) ^ 0x85EBCA6B)


async def derive_seed_rng(
    entropy: EntropySource,
    interval_ms: int,
    now_ms: int,
) -> SeededRng:
    """One generator per draw cycle. Degrades to a wall-clock LCG if entropy is unavailable."""
    try:
        blockhash, height = await entropy.get_latest_entropy()
        bucket = now_ms // interval_ms if interval_ms > 0 else 0
        digest = seed_hex(blockhash, height, bucket)
        return SeededRng(seed=digest, method=RNG_METHOD_SEEDED, next=rng_from_seed(digest))
    except Exception as e:  # any entropy failure keeps the system live
        log.warning("Entropy unavailable (%s); using fallback RNG (not verifiable).", e)
        return SeededRng(seed=SEED_FALLBACK, method=RNG_METHOD_FALLBACK, next=_wallclock_lcg(now_ms))


def demo_rng(now_ms: int) -> SeededRng:
    """Non-committing generator for unpaid preview draws."""
    return SeededRng(seed=SEED_DEMO, method=RNG_METHOD_FALLBACK, next=_wallclock_lcg(now_ms))
