from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

from .config import Settings
from .draw import build_alias, pick_alias, pick_amount_index
from .eligibility import BalanceOracle, Eligible, resolve_eligible
from .events import DrawsState, EventKind, new_event, now_ms
from .ledger import LedgerReadError, LedgerStore
from .payout import PayoutGateway, PayoutResult, pay_winner
from .project_constants import INTERVAL_TOLERANCE_MS
from .registry import RegistryStore
from .rng import EntropySource, SeededRng, demo_rng, derive_seed_rng
from .tiers import resolve_tiers

log = logging.getLogger("recurring")

MODE = "two_wheel"


class Outcome(str, Enum):
    LEDGER_UNREADABLE = "ledger_unreadable"
    DEACTIVATED = "deactivated"
    LOCKED = "locked"
    DEMO = "demo"
    THROTTLED = "throttled"
    NO_ELIGIBLE = "no_eligible"
    NO_WINNER = "no_winner"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    PAYOUT_ERROR = "payout_error"
    PAID = "paid"


def _payout_outcome(result: PayoutResult) -> Optional[Outcome]:
    if result.skipped:
        return Outcome.INSUFFICIENT_FUNDS
    if not result.ok:
        return Outcome.PAYOUT_ERROR
    return None


class RecurringEngine:
    """
    Two-wheel recurring draw: the prize amount is spun first, then the wallet.

    States are INACTIVE and ACTIVE, taken from the last ``recurring_activation``
    event. While inactive, unpaid demo spins may run to preview the wheel.
    """

    def __init__(
        self,
        settings: Settings,
        ledger: LedgerStore,
        registry: RegistryStore,
        balances: BalanceOracle,
        entropy: EntropySource,
        gateway: PayoutGateway,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.settings = settings
        self.ledger = ledger
        self.registry = registry
        self.balances = balances
        self.entropy = entropy
        self.gateway = gateway
        self.clock = clock

    def state(self) -> DrawsState:
        s = self.settings
        return self.ledger.state(s.dynamic_tier_cap, s.dynamic_tier_amount, strict=True)

    def _activation(self, active: bool, cap: float, **extra) -> None:
        self.ledger.append(
            new_event(EventKind.RECURRING_ACTIVATION, self.clock(), active=active, cap=cap, mode=MODE, **extra)
        )

    async def _eligible(self) -> Eligible:
        # Registry is re-read every cycle
        return await resolve_eligible(self.registry.load(), self.balances, self.settings)

    async def run(self, metric_usd: float) -> Outcome:
        s = self.settings
        try:
            state = self.state()
        except LedgerReadError as e:
            log.error("Recurring draw skipped: %s", e)
            return Outcome.LEDGER_UNREADABLE
        fdv = float(metric_usd or 0)

        if state.recurring_active and s.recurring_stop_cap > 0 and 0 < fdv < s.recurring_stop_cap:
            self._activation(False, s.recurring_stop_cap, reason="below_stop")
            log.info("Two-wheel recurring disabled (fdv %s < %s).", f"{fdv:,.0f}", f"{s.recurring_stop_cap:,.0f}")
            return Outcome.DEACTIVATED

        if not state.recurring_active:
            if s.recurring_start_cap == 0 or fdv >= s.recurring_start_cap:
                self._activation(True, s.recurring_start_cap)
                log.info("Two-wheel recurring draws activated (fdv %s >= %s).",
                         f"{fdv:,.0f}", f"{s.recurring_start_cap:,.0f}")
            else:
                log.info("Recurring locked until fdv >= %s (current %s).",
                         f"{s.recurring_start_cap:,.0f}", f"{fdv:,.0f}")
                if s.demo_below_start:
                    return await self._demo(state, fdv)
                return Outcome.LOCKED

        now = self.clock()
        last = state.last_recurring_ts
        interval = s.recurring_interval_ms
        if last and now - last < interval - INTERVAL_TOLERANCE_MS:
            left = max(0, (interval - (now - last)) / 1000)
            log.info("Draw throttled. Next window in ~%.1fs (interval %ss).", left, interval / 1000)
            return Outcome.THROTTLED

        eligible = await self._eligible()
        if not eligible:
            log.warning("No eligible wallets.")
            return Outcome.NO_ELIGIBLE

        tiers = resolve_tiers(fdv, state.tier_added, s, self.ledger, self.clock())
        rng = await derive_seed_rng(self.entropy, interval, self.clock())

        # Amount first: fixed before any wallet is considered
        amount_idx = pick_amount_index(len(tiers.amounts), rng)
        amount_usd = tiers.amounts[amount_idx]
        log.info("Prize selected: $%s", amount_usd)

        winner_idx = pick_alias(build_alias(eligible.weights), rng)
        if winner_idx is None:
            log.warning("Could not select winner.")
            return Outcome.NO_WINNER
        winner = eligible.addresses[winner_idx]
        log.info("Winner selected: %s", winner)

        result = await pay_winner(self.gateway, self.ledger, winner, amount_usd, self.clock)
        failed = _payout_outcome(result)
        if failed is not None:
            return failed

        self.ledger.append(
            new_event(
                EventKind.RECURRING_TWO_WHEEL,
                self.clock(),
                prize={"amountUsd": amount_usd, "tiers": tiers.to_json(), "fdvUsd": fdv},
                amountIndex=amount_idx,
                winner=winner,
                winnerIndex=winner_idx,
                weightMode=s.weight_mode,
                rng=rng.record(),
                entrants=eligible.entrants(),
                sig=result.sig,
                payoutKind=result.payout_kind,
                **result.meta,
            )
        )
        log.info("Two-wheel -> $%s to %s | %s", amount_usd, winner, result.sig)
        return Outcome.PAID

    async def _demo(self, state: DrawsState, fdv: float) -> Outcome:
        """Unpaid preview spin below the start cap; never changes activation."""
        s = self.settings
        now = self.clock()
        last = state.last_spin_ts
        if last and now - last < s.demo_interval_ms - INTERVAL_TOLERANCE_MS:
            return Outcome.THROTTLED

        eligible = await self._eligible()
        winner, winner_idx = None, None
        rng = demo_rng(now)
        if eligible:
            winner_idx = pick_alias(build_alias(eligible.weights), rng)
            winner = eligible.addresses[winner_idx] if winner_idx is not None else None

        tiers = resolve_tiers(fdv, state.tier_added, s, self.ledger, self.clock())
        self.ledger.append(
            new_event(
                EventKind.DEMO_TWO_WHEEL,
                self.clock(),
                prize={"amountUsd": s.test_spin_usd, "tiers": tiers.to_json(), "fdvUsd": fdv, "demo": True},
                winner=winner,
                winnerIndex=winner_idx,
                weightMode=s.weight_mode,
                rng=rng.record(),
                note="demo_no_payout",
            )
        )
        log.info("Demo spin (no payout) -> %s", winner or "no eligible wallets")
        return Outcome.DEMO

    async def test_spin(self, amount_usd: Optional[float] = None) -> Outcome:
        """
        Manually triggered single draw. Bypasses activation and the interval
        guard; the recorded ``test_spin`` does not move the recurring clock.
        """
        s = self.settings
        amount = amount_usd if amount_usd and amount_usd > 0 else s.test_spin_usd
        try:
            self.ledger.all(strict=True)
        except LedgerReadError as e:
            log.error("Test spin refused: %s", e)
            return Outcome.LEDGER_UNREADABLE

        eligible = await self._eligible()
        if not eligible:
            log.error("No eligible wallets (min balance filter may have excluded all).")
            return Outcome.NO_ELIGIBLE
        log.info("Test prize selected: $%s", amount)

        rng: SeededRng = await derive_seed_rng(self.entropy, s.recurring_interval_ms, self.clock())
        winner_idx = pick_alias(build_alias(eligible.weights), rng)
        if winner_idx is None:
            return Outcome.NO_WINNER
        winner = eligible.addresses[winner_idx]
        log.info("Test winner selected: %s", winner)

        result = await pay_winner(self.gateway, self.ledger, winner, amount, self.clock, draw="test_spin")
        failed = _payout_outcome(result)
        if failed is not None:
            return failed

        self.ledger.append(
            new_event(
                EventKind.TEST_SPIN,
                self.clock(),
                prize={"amountUsd": amount},
                winner=winner,
                winnerIndex=winner_idx,
                weightMode=s.weight_mode,
                rng=rng.record(),
                entrants=eligible.entrants(),
                sig=result.sig,
                payoutKind=result.payout_kind,
                **result.meta,
            )
        )
        log.info("Test spin -> $%s to %s | %s", amount, winner, result.sig)
        return Outcome.PAID
