import asyncio

from solana_spin.events import EventKind, new_event
from solana_spin.ledger import LedgerStore
from solana_spin.recurring import Outcome, RecurringEngine
from solana_spin.registry import RegistryStore
from solana_spin.verify import verify_draw_event
from tests._support.fakes import (
    TOKEN_MINT,
    Clock,
    FakeBalances,
    FakeEntropy,
    FakeGateway,
    kinds,
    make_settings,
    wallets,
)

HOUR = 3_600_000


def make_engine(tmp_path, registry_wallets=(), gateway=None, balances=None, clock=None, active=False, **overrides):
    settings = make_settings(tmp_path, **overrides)
    ledger = LedgerStore(settings.draws_path)
    registry = RegistryStore(settings.registry_path)
    for w in registry_wallets:
        registry.add(w)
    if active:
        ledger.append(new_event(EventKind.RECURRING_ACTIVATION, 1, active=True, cap=0, mode="two_wheel"))
    engine = RecurringEngine(
        settings,
        ledger,
        registry,
        balances or FakeBalances(),
        FakeEntropy(),
        gateway or FakeGateway(),
        clock=clock or Clock(),
    )
    return engine, ledger


def activations(events):
    return [e["active"] for e in events if e["kind"] == "recurring_activation"]


def test_activation_hysteresis(tmp_path):
    engine, ledger = make_engine(tmp_path, recurring_start_cap=100_000, recurring_stop_cap=50_000)
    seen = []
    for metric in [40_000, 120_000, 60_000, 40_000]:
        before = len(activations(ledger.all()))
        asyncio.run(engine.run(metric))
        seen.append(activations(ledger.all())[before:])
    assert seen == [[], [True], [], [False]]
    last = [e for e in ledger.all() if e["kind"] == "recurring_activation"][-1]
    assert last["reason"] == "below_stop"


def test_dip_below_stop_is_announced_once(tmp_path):
    engine, ledger = make_engine(tmp_path, recurring_start_cap=100_000, recurring_stop_cap=50_000)
    for metric in [120_000, 40_000, 30_000, 20_000]:
        asyncio.run(engine.run(metric))
    assert activations(ledger.all()) == [True, False]


def test_zero_metric_does_not_deactivate(tmp_path):
    engine, ledger = make_engine(tmp_path, active=True, recurring_stop_cap=50_000)
    asyncio.run(engine.run(0))
    assert activations(ledger.all()) == [True]


def test_start_cap_zero_is_always_on(tmp_path):
    engine, ledger = make_engine(tmp_path, recurring_start_cap=0)
    assert asyncio.run(engine.run(0)) == Outcome.NO_ELIGIBLE
    assert activations(ledger.all()) == [True]


def test_successful_draw_is_recorded_and_replayable(tmp_path):
    w = wallets(5)
    balances = FakeBalances({a: 10 * (i + 1) for i, a in enumerate(w)})
    engine, ledger = make_engine(
        tmp_path, registry_wallets=w, balances=balances, active=True, token_mint=TOKEN_MINT,
    )
    assert asyncio.run(engine.run(1_500_000)) == Outcome.PAID

    event = ledger.all()[-1]
    assert event["kind"] == "recurring_two_wheel"
    assert event["prize"]["amountUsd"] in (500, 200, 100, 50, 10)
    assert event["prize"]["fdvUsd"] == 1_500_000
    assert event["prize"]["tiers"]["amounts"] == [500, 200, 100, 50, 10]
    assert event["winner"] == w[event["winnerIndex"]]
    assert event["weightMode"] == "balance"
    assert event["rng"]["seed"] != "fallback"
    assert [e["weight"] for e in event["entrants"]] == [10, 20, 30, 40, 50]
    assert event["sig"] == "sig1"
    assert event["payoutKind"] == "USDC"

    result = verify_draw_event(event)
    assert result["winner"] == event["winner"]


def test_amount_does_not_depend_on_eligible_set(tmp_path):
    amounts = []
    for i, registry_wallets in enumerate([wallets(1), wallets(7), list(reversed(wallets(30)))]):
        d = tmp_path / str(i)
        d.mkdir()
        engine, ledger = make_engine(d, registry_wallets=registry_wallets, active=True, clock=Clock())
        assert asyncio.run(engine.run(2_000_000)) == Outcome.PAID
        amounts.append(ledger.all()[-1]["prize"]["amountUsd"])
    assert len(set(amounts)) == 1


def test_insufficient_funds_skips_without_touching_activation(tmp_path):
    gateway = FakeGateway(have=0)
    engine, ledger = make_engine(tmp_path, registry_wallets=wallets(3), gateway=gateway, active=True)
    assert asyncio.run(engine.run(2_000_000)) == Outcome.INSUFFICIENT_FUNDS

    events = ledger.all()
    assert kinds(events).count("payout_skipped_insufficient_funds") == 1
    assert "recurring_two_wheel" not in kinds(events)
    assert activations(events) == [True]
    skip = events[-1]
    assert skip["reason"] == "USDC"
    assert skip["need"] == skip["amountUsd"]
    assert skip["have"] == 0
    assert gateway.paid == []


def test_payout_error_is_recorded(tmp_path):
    gateway = FakeGateway(error="custom program error: 0x1")
    engine, ledger = make_engine(tmp_path, registry_wallets=wallets(2), gateway=gateway, active=True)
    assert asyncio.run(engine.run(2_000_000)) == Outcome.PAYOUT_ERROR
    event = ledger.all()[-1]
    assert event["kind"] == "payout_error"
    assert event["error"] == "custom program error: 0x1"
    assert event["logs"] == ["Program log: insufficient lamports"]
    assert "recurring_two_wheel" not in kinds(ledger.all())


def test_interval_guard_with_tolerance(tmp_path):
    clock = Clock()
    engine, ledger = make_engine(tmp_path, registry_wallets=wallets(2), active=True, clock=clock)
    assert asyncio.run(engine.run(2_000_000)) == Outcome.PAID

    clock.advance(HOUR // 2)
    assert asyncio.run(engine.run(2_000_000)) == Outcome.THROTTLED

    # 10s early is inside the 15s jitter allowance
    clock.advance(HOUR // 2 - 10_000)
    assert asyncio.run(engine.run(2_000_000)) == Outcome.PAID
    assert kinds(ledger.all()).count("recurring_two_wheel") == 2


def test_no_eligible_wallets_only_logs(tmp_path):
    engine, ledger = make_engine(tmp_path, active=True)
    assert asyncio.run(engine.run(2_000_000)) == Outcome.NO_ELIGIBLE
    assert kinds(ledger.all()) == ["recurring_activation"]


def test_bonus_tier_unlocks_once(tmp_path):
    clock = Clock()
    engine, ledger = make_engine(tmp_path, registry_wallets=wallets(2), active=True, clock=clock)
    asyncio.run(engine.run(6_000_000))
    clock.advance(HOUR)
    asyncio.run(engine.run(6_000_000))
    events = ledger.all()
    assert kinds(events).count("tier_added") == 1
    draws = [e for e in events if e["kind"] == "recurring_two_wheel"]
    assert all(d["prize"]["tiers"]["amounts"][-1] == 1000 for d in draws)


def test_demo_spin_below_start_cap(tmp_path):
    gateway = FakeGateway()
    engine, ledger = make_engine(
        tmp_path, registry_wallets=wallets(3), gateway=gateway, demo_below_start=True, test_spin_usd=10,
    )
    assert asyncio.run(engine.run(1_000)) == Outcome.DEMO
    events = ledger.all()
    assert kinds(events) == ["demo_two_wheel"]
    demo = events[0]
    assert demo["rng"]["seed"] == "demo"
    assert demo["prize"]["demo"] is True
    assert demo["prize"]["amountUsd"] == 10
    assert demo["winner"] in wallets(3)
    assert gateway.paid == [] and gateway.preflights == []
    assert not ledger.state().recurring_active

    assert asyncio.run(engine.run(1_000)) == Outcome.THROTTLED


def test_demo_with_no_wallets_records_empty_winner(tmp_path):
    engine, ledger = make_engine(tmp_path, demo_below_start=True)
    assert asyncio.run(engine.run(1_000)) == Outcome.DEMO
    assert ledger.all()[0]["winner"] is None


def test_locked_without_demo(tmp_path):
    engine, ledger = make_engine(tmp_path, registry_wallets=wallets(3))
    assert asyncio.run(engine.run(1_000)) == Outcome.LOCKED
    assert ledger.all() == []


def test_manual_spin_does_not_reset_interval(tmp_path):
    clock = Clock()
    gateway = FakeGateway()
    engine, ledger = make_engine(tmp_path, registry_wallets=wallets(3), gateway=gateway, clock=clock)
    assert asyncio.run(engine.test_spin(25)) == Outcome.PAID

    event = ledger.all()[-1]
    assert event["kind"] == "test_spin"
    assert event["prize"] == {"amountUsd": 25}
    assert gateway.paid == [(event["winner"], 25)]
    assert verify_draw_event(event)["winner"] == event["winner"]
    assert ledger.state().last_recurring_ts == 0
    assert not ledger.state().recurring_active


def test_manual_spin_default_amount(tmp_path):
    gateway = FakeGateway()
    engine, ledger = make_engine(tmp_path, registry_wallets=wallets(1), gateway=gateway, test_spin_usd=7)
    asyncio.run(engine.test_spin())
    assert gateway.paid == [(wallets(1)[0], 7)]


def corrupt(ledger):
    with open(ledger.path, "w", encoding="utf-8") as f:
        f.write("{not json")


def test_corrupt_ledger_skips_the_draw(tmp_path):
    gateway = FakeGateway()
    engine, ledger = make_engine(tmp_path, registry_wallets=wallets(3), gateway=gateway, recurring_start_cap=0)
    corrupt(ledger)
    assert asyncio.run(engine.run(2_000_000)) == Outcome.LEDGER_UNREADABLE
    assert gateway.preflights == []
    with open(ledger.path, encoding="utf-8") as f:
        assert f.read() == "{not json"


def test_manual_spin_refuses_corrupt_ledger(tmp_path):
    gateway = FakeGateway()
    engine, ledger = make_engine(tmp_path, registry_wallets=wallets(3), gateway=gateway)
    corrupt(ledger)
    assert asyncio.run(engine.test_spin(25)) == Outcome.LEDGER_UNREADABLE
    assert gateway.paid == []
