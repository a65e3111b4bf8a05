from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Iterable, List, Protocol

from .config import Settings
from .registry import is_valid_address

log = logging.getLogger("eligibility")


class BalanceOracle(Protocol):
    def get_token_balance(self, owner: str, mint: str) -> Awaitable[float]: ...


@dataclass
class Eligible:
    addresses: List[str] = field(default_factory=list)
    weights: List[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.addresses)

    def entrants(self) -> List[dict]:
        return [{"address": a, "weight": w} for a, w in zip(self.addresses, self.weights)]


async def _balance_or_zero(balances: BalanceOracle, owner: str, mint: str) -> float:
    try:
        return float(await balances.get_token_balance(owner, mint))
    except Exception as e:  # one wallet's lookup never aborts the others
        log.debug("Balance lookup failed for %s: %s", owner, e)
        return 0.0


async def resolve_eligible(
    registry: Iterable[str],
    balances: BalanceOracle,
    settings: Settings,
) -> Eligible:
    cleaned = [w for w in registry if is_valid_address(w)]
    if not cleaned:
        return Eligible()

    mint = settings.safe_token_mint
    if not mint:
        return Eligible(addresses=cleaned, weights=[1.0] * len(cleaned))

    amounts = await asyncio.gather(*(_balance_or_zero(balances, w, mint) for w in cleaned))

    eligible = Eligible()
    for addr, bal in zip(cleaned, amounts):
        if bal <= 0 or bal < settings.min_eligible_balance:
            continue
        eligible.addresses.append(addr)
        eligible.weights.append(1.0 if settings.weight_mode == "equal" else bal)
    log.debug("Eligible wallets: %d of %d registered.", len(eligible), len(cleaned))
    return eligible
