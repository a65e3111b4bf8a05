from __future__ import annotations

import logging
from typing import Callable, List

from .config import Settings
from .draw import sample_without_replacement
from .eligibility import BalanceOracle, resolve_eligible
from .events import EventKind, new_event, now_ms
from .ledger import LedgerReadError, LedgerStore
from .payout import PayoutGateway, pay_winner
from .registry import RegistryStore
from .rng import EntropySource, derive_seed_rng

log = logging.getLogger("milestones")


class MilestoneEngine:
    """
    One-time batch payouts when the observed FDV first reaches each cap.

    A cap is sealed by exactly one ``milestone_batch_paid`` event, written
    after its winners are processed whether or not every payout went through.
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

    async def run(self, metric_usd: float) -> List[float]:
        """Settle every reached, unpaid cap. Returns the caps sealed this call."""
        try:
            state = self.ledger.state(strict=True)
        except LedgerReadError as e:
            log.error("Milestones skipped: %s", e)
            return []
        settled: List[float] = []
        log.info("[FDV] %s", f"{metric_usd:,.0f}")

        for m in sorted(self.settings.milestones, key=lambda m: m.cap):
            if m.cap in state.paid_caps:
                continue
            if metric_usd < m.cap:
                continue

            eligible = await resolve_eligible(self.registry.load(), self.balances, self.settings)
            if not eligible:
                log.warning("No eligible wallets at %s; cap left open.", f"{m.cap:,.0f}")
                continue

            rng = await derive_seed_rng(self.entropy, self.settings.recurring_interval_ms, self.clock())
            for award in m.once:
                picked = sample_without_replacement(eligible.weights, award.count, rng)
                if len(picked) < award.count:
                    log.info("Cap %s: only %d of %d winners available.", m.cap, len(picked), award.count)
                for idx in picked:
                    winner = eligible.addresses[idx]
                    result = await pay_winner(
                        self.gateway, self.ledger, winner, award.amount, self.clock, cap=m.cap,
                    )
                    if not result.ok:
                        continue
                    self.ledger.append(
                        new_event(
                            EventKind.MILESTONE_WIN,
                            self.clock(),
                            cap=m.cap,
                            winner=winner,
                            amountUsd=award.amount,
                            payoutKind=result.payout_kind,
                            sig=result.sig,
                            rng=rng.record(),
                            **result.meta,
                        )
                    )
                    log.info("$%s -> %s got $%s %s | %s",
                             f"{m.cap:,.0f}", winner, award.amount, result.payout_kind, result.sig)

            self.ledger.append(new_event(EventKind.MILESTONE_BATCH_PAID, self.clock(), cap=m.cap))
            settled.append(m.cap)

            if m.starts_recurring and self.settings.recurring_start_cap <= m.cap:
                self.ledger.append(
                    new_event(
                        EventKind.RECURRING_ACTIVATION,
                        self.clock(),
                        active=True,
                        cap=m.cap,
                        mode="two_wheel",
                    )
                )
                log.info("Two-wheel recurring draws activated (cap %s).", f"{m.cap:,.0f}")
        return settled
