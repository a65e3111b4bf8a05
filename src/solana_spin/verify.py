from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from .draw import build_alias, pick_alias, pick_amount_index
from .events import DrawEvent, EventKind
from .ledger import LedgerStore
from .project_constants import RNG_METHOD_SEEDED
from .rng import rng_from_seed

REPLAYABLE = (EventKind.RECURRING_TWO_WHEEL.value, EventKind.TEST_SPIN.value)


def replay_draw(event: DrawEvent) -> Tuple[Optional[int], Optional[int]]:
    """
    Recompute (amount index, winner index) from the recorded seed and entrants.
    Test spins have a caller-fixed amount, so only the winner is drawn.
    """
    rng_info = event.get("rng") or {}
    if rng_info.get("method") != RNG_METHOD_SEEDED:
        raise RuntimeError(
            f"Draw seeded with {rng_info.get('seed')!r} ({rng_info.get('method')}) is not replayable."
        )
    rng = rng_from_seed(str(rng_info["seed"]))

    amount_idx = None
    if event.get("kind") == EventKind.RECURRING_TWO_WHEEL:
        amounts = event["prize"]["tiers"]["amounts"]
        amount_idx = pick_amount_index(len(amounts), rng)

    weights = [float(e["weight"]) for e in event.get("entrants") or []]
    winner_idx = pick_alias(build_alias(weights), rng)
    return amount_idx, winner_idx


def verify_draw_event(event: DrawEvent) -> Dict[str, Any]:
    if event.get("kind") not in REPLAYABLE:
        raise RuntimeError(f"Event kind {event.get('kind')!r} is not a replayable draw.")

    entrants = event.get("entrants")
    if not entrants:
        raise RuntimeError("Draw has no recorded entrants; cannot rebuild the alias table.")

    amount_idx, winner_idx = replay_draw(event)

    if amount_idx is not None:
        amounts = event["prize"]["tiers"]["amounts"]
        amount_expected = event["prize"]["amountUsd"]
        if amounts[amount_idx] != amount_expected:
            raise RuntimeError(
                f"Prize mismatch: event=${amount_expected} recomputed=${amounts[amount_idx]}"
            )

    if winner_idx != event.get("winnerIndex"):
        raise RuntimeError(
            f"Winner index mismatch: event={event.get('winnerIndex')} recomputed={winner_idx}"
        )
    winner = entrants[winner_idx]["address"]
    if winner != event.get("winner"):
        raise RuntimeError(f"Winner mismatch: event={event.get('winner')} recomputed={winner}")

    return {
        "ok": True,
        "kind": event.get("kind"),
        "seed": event["rng"]["seed"],
        "amount_index": amount_idx,
        "amount_usd": event["prize"]["amountUsd"],
        "winner": winner,
        "winner_index": winner_idx,
        "total_entrants": len(entrants),
        "timestamp": event.get("ts"),
    }


def replayable_draws(events: List[DrawEvent]) -> List[DrawEvent]:
    return [e for e in events if e.get("kind") in REPLAYABLE]


def verify_ledger(ledger_path: str, index: int = -1) -> Dict[str, Any]:
    """Verify the ``index``-th replayable draw in a ledger file (default: the latest)."""
    draws = replayable_draws(LedgerStore(ledger_path).all())
    if not draws:
        raise RuntimeError(f"No replayable draws in {ledger_path}.")
    try:
        event = draws[index]
    except IndexError:
        raise RuntimeError(f"Draw index {index} out of range (ledger has {len(draws)} draws).")
    return verify_draw_event(event)
