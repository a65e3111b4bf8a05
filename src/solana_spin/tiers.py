from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Tuple

from .events import EventKind, new_event

if TYPE_CHECKING:
    from .config import Settings
    from .ledger import LedgerStore

log = logging.getLogger("tiers")


@dataclass(frozen=True)
class TierSet:
    amounts: Tuple[float, ...]
    probs: Tuple[float, ...]

    def to_json(self) -> dict:
        return {"amounts": list(self.amounts), "probs": list(self.probs)}


def parse_amounts(text: str | None) -> List[float]:
    """Comma-separated USD amounts; non-numeric and non-positive entries are dropped."""
    out: List[float] = []
    for part in (text or "").split(","):
        try:
            n = float(part.strip())
        except ValueError:
            continue
        if math.isfinite(n) and n > 0:
            out.append(int(n) if n.is_integer() else n)
    return out


def compute_tiers(metric_usd: float, settings: "Settings") -> TierSet:
    amounts = list(settings.prize_amounts)
    if metric_usd >= settings.dynamic_tier_cap and settings.dynamic_tier_amount not in amounts:
        amounts.append(settings.dynamic_tier_amount)
    n = len(amounts)
    return TierSet(amounts=tuple(amounts), probs=tuple([1 / n] * n) if n else ())


def resolve_tiers(
    metric_usd: float,
    tier_added: bool,
    settings: "Settings",
    ledger: "LedgerStore",
    ts: int,
) -> TierSet:
    """Current tiers; records ``tier_added`` the first time the bonus cap is crossed."""
    tiers = compute_tiers(metric_usd, settings)
    if metric_usd >= settings.dynamic_tier_cap and not tier_added:
        ledger.append(
            new_event(
                EventKind.TIER_ADDED,
                ts,
                cap=settings.dynamic_tier_cap,
                amount=settings.dynamic_tier_amount,
            )
        )
        log.info("Bonus tier $%s unlocked (FDV %s >= %s).",
                 settings.dynamic_tier_amount, metric_usd, settings.dynamic_tier_cap)
    return tiers
