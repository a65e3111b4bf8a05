from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

Rng = Callable[[], float]


@dataclass(frozen=True)
class AliasTable:
    """Vose alias tables for O(1) weighted picks."""

    prob: List[float]
    alias: List[int]
    total: float

    def __len__(self) -> int:
        return len(self.prob)


def build_alias(weights: Sequence[float]) -> AliasTable:
    n = len(weights)
    total = float(sum(weights))
    if n == 0 or total <= 0:
        return AliasTable(prob=[], alias=[], total=0.0)

    scaled = [(w / total) * n for w in weights]
    prob = [0.0] * n
    alias = [0] * n
    small: List[int] = []
    large: List[int] = []
    for i in range(n):
        (small if scaled[i] < 1 else large).append(i)

    while small and large:
        s = small.pop()
        l = large.pop()
        prob[s] = scaled[s]
        alias[s] = l
        scaled[l] = (scaled[l] + scaled[s]) - 1
        (small if scaled[l] < 1 else large).append(l)

    # Leftovers are 1 up to float error
    while large:
        prob[large.pop()] = 1.0
    while small:
        prob[small.pop()] = 1.0
    return AliasTable(prob=prob, alias=alias, total=total)


def pick_alias(table: AliasTable, rng: Rng) -> Optional[int]:
    """
    Draw one index. Consumes exactly two values from ``rng`` (column, then coin).
    Returns None when the table has no candidates.
    """
    n = len(table.prob)
    if not n:
        return None
    i = min(n - 1, math.floor(rng() * n))
    y = rng()
    return i if y < table.prob[i] else table.alias[i]


def pick_amount_index(count: int, rng: Rng) -> int:
    """Uniform prize wheel: one value from ``rng``."""
    if count <= 0:
        raise ValueError("No prize amounts to choose from.")
    return min(count - 1, math.floor(rng() * count))


def sample_without_replacement(weights: Sequence[float], count: int, rng: Rng) -> List[int]:
    """
    Weighted picks of up to ``count`` distinct indices into ``weights``.
    Stops early when the pool is exhausted or has no positive weight left.
    """
    pool = list(range(len(weights)))
    picked: List[int] = []
    while len(picked) < count and pool:
        table = build_alias([weights[i] for i in pool])
        j = pick_alias(table, rng)
        if j is None:
            break
        picked.append(pool.pop(j))
    return picked
