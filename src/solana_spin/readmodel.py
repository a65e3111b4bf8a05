"""Read-only views over the ledger for presentation and third-party checks."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from .config import Settings
from .events import DrawEvent, EventKind, derive_state, last_of_kind
from .tiers import compute_tiers


@dataclass(frozen=True)
class CurrentState:
    active: bool
    last_draw_ts: int
    next_draw_eta: int  # epoch ms, 0 when no draw has happened yet
    start_cap: float
    stop_cap: float
    payout_mode: str
    current_tiers: Dict[str, List[float]]
    current_metric: float
    interval_ms: int

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Proof:
    address: str
    included: bool
    last_seed: Optional[Dict[str, Any]]
    last_winner: Optional[str]
    last_winner_index: Optional[int]
    last_tiers: Optional[Dict[str, Any]]
    last_metric: Optional[float]
    timestamp: Optional[int]

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)


def current_state(events: Iterable[DrawEvent], settings: Settings, metric_usd: float) -> CurrentState:
    state = derive_state(events, settings.dynamic_tier_cap, settings.dynamic_tier_amount)
    last = state.last_recurring_ts
    return CurrentState(
        active=state.recurring_active,
        last_draw_ts=last,
        next_draw_eta=last + settings.recurring_interval_ms if last else 0,
        start_cap=settings.recurring_start_cap,
        stop_cap=settings.recurring_stop_cap,
        payout_mode=settings.payout_as,
        current_tiers=compute_tiers(metric_usd, settings).to_json(),
        current_metric=metric_usd,
        interval_ms=settings.recurring_interval_ms,
    )


def verify_address(address: str, registry: Iterable[str], events: Iterable[DrawEvent]) -> Proof:
    address = (address or "").strip()
    last = last_of_kind(events, EventKind.RECURRING_TWO_WHEEL) or {}
    prize = last.get("prize") or {}
    return Proof(
        address=address,
        included=address in set(registry),
        last_seed=last.get("rng"),
        last_winner=last.get("winner"),
        last_winner_index=last.get("winnerIndex"),
        last_tiers=prize.get("tiers"),
        last_metric=prize.get("fdvUsd"),
        timestamp=last.get("ts"),
    )
