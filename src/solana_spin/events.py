from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

DrawEvent = Dict[str, Any]


class EventKind(str, Enum):
    """Tags of the records appended to the draws ledger."""

    MILESTONE_WIN = "milestone_win"
    MILESTONE_BATCH_PAID = "milestone_batch_paid"
    RECURRING_ACTIVATION = "recurring_activation"
    TIER_ADDED = "tier_added"
    RECURRING_TWO_WHEEL = "recurring_two_wheel"
    DEMO_TWO_WHEEL = "demo_two_wheel"
    PAYOUT_SKIPPED_INSUFFICIENT_FUNDS = "payout_skipped_insufficient_funds"
    PAYOUT_ERROR = "payout_error"
    TEST_SPIN = "test_spin"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_event(kind: EventKind, ts: int, **fields: Any) -> DrawEvent:
    event: DrawEvent = {"ts": int(ts), "kind": EventKind(kind).value}
    event.update(fields)
    return event


@dataclass
class DrawsState:
    """Current flags derived by folding the whole ledger."""

    events: List[DrawEvent] = field(default_factory=list)
    paid_caps: Set[float] = field(default_factory=set)
    recurring_active: bool = False
    last_recurring_ts: int = 0
    last_spin_ts: int = 0  # recurring or demo
    tier_added: bool = False


def derive_state(
    events: Iterable[DrawEvent],
    bonus_cap: Optional[float] = None,
    bonus_amount: Optional[float] = None,
) -> DrawsState:
    """
    Fold an ordered event sequence into DrawsState.

    Later events win for activation and timestamps; paid caps and the bonus
    tier flag are monotonic.
    """
    state = DrawsState(events=list(events))
    for ev in state.events:
        kind = ev.get("kind")
        if kind == EventKind.MILESTONE_BATCH_PAID:
            state.paid_caps.add(ev.get("cap"))
        elif kind == EventKind.RECURRING_ACTIVATION:
            state.recurring_active = bool(ev.get("active"))
        elif kind == EventKind.RECURRING_TWO_WHEEL:
            state.last_recurring_ts = int(ev.get("ts") or 0)
            state.last_spin_ts = state.last_recurring_ts
        elif kind == EventKind.DEMO_TWO_WHEEL:
            state.last_spin_ts = int(ev.get("ts") or 0)
        elif kind == EventKind.TIER_ADDED:
            if ev.get("cap") == bonus_cap and ev.get("amount") == bonus_amount:
                state.tier_added = True
    return state


def last_of_kind(events: Iterable[DrawEvent], *kinds: EventKind) -> Optional[DrawEvent]:
    wanted = {EventKind(k).value for k in kinds}
    last = None
    for ev in events:
        if ev.get("kind") in wanted:
            last = ev
    return last
