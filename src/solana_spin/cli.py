from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import dataclass

from .config import Settings
from .ledger import LedgerStore
from .milestones import MilestoneEngine
from .payout import PayoutGateway, load_treasury
from .prices import PriceOracle
from .readmodel import current_state, verify_address
from .recurring import Outcome, RecurringEngine
from .registry import RegistryStore
from .rpc import RpcClient
from .scheduler import Scheduler
from .verify import verify_ledger


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)


@dataclass
class Runtime:
    settings: Settings
    rpc: RpcClient
    prices: PriceOracle
    ledger: LedgerStore
    registry: RegistryStore
    milestones: MilestoneEngine
    recurring: RecurringEngine

    async def close(self) -> None:
        await self.prices.close()
        await self.rpc.close()


def build_runtime(settings: Settings) -> Runtime:
    # Fails fast on a missing/invalid treasury key
    treasury = load_treasury(settings.treasury_keypair)
    rpc = RpcClient(settings.rpc_url, timeout_s=settings.rpc_timeout_s)
    prices = PriceOracle(settings, rpc)
    ledger = LedgerStore(settings.draws_path)
    registry = RegistryStore(settings.registry_path)
    gateway = PayoutGateway(settings, rpc, prices, treasury)
    return Runtime(
        settings=settings,
        rpc=rpc,
        prices=prices,
        ledger=ledger,
        registry=registry,
        milestones=MilestoneEngine(settings, ledger, registry, rpc, rpc, gateway),
        recurring=RecurringEngine(settings, ledger, registry, rpc, rpc, gateway),
    )


def _settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env(rpc_url_override=args.rpc_url)


async def _run(args: argparse.Namespace) -> int:
    rt = build_runtime(_settings(args))
    log = logging.getLogger("run")
    log.info("Treasury payouts in %s; ledger at %s.", rt.settings.payout_as, rt.settings.draws_path)
    scheduler = Scheduler(rt.settings, rt.ledger, rt.prices, rt.milestones, rt.recurring)
    try:
        await scheduler.run_forever()
    finally:
        await rt.close()
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 0


async def _test_spin(args: argparse.Namespace) -> int:
    rt = build_runtime(_settings(args))
    try:
        if not rt.registry.load():
            print("No wallets in registry. Add at least one valid Solana address first.")
            return 1
        outcome = await rt.recurring.test_spin(args.usd)
    finally:
        await rt.close()
    print(f"Test spin outcome: {outcome.value}")
    return 0 if outcome is Outcome.PAID else 1


def cmd_test_spin(args: argparse.Namespace) -> int:
    return asyncio.run(_test_spin(args))


async def _state(args: argparse.Namespace) -> int:
    settings = _settings(args)
    rpc = RpcClient(settings.rpc_url, timeout_s=settings.rpc_timeout_s)
    prices = PriceOracle(settings, rpc)
    volume, volume_source = None, None
    try:
        metric = await prices.get_observed_metric()
        if settings.safe_token_mint:
            volume, volume_source = await prices.volume_24h(settings.safe_token_mint)
    finally:
        await prices.close()
        await rpc.close()
    view = current_state(LedgerStore(settings.draws_path).all(), settings, metric.value_usd)
    out = view.to_json()
    out["token_ticker"] = settings.token_ticker
    out["metric_source"] = metric.source
    out["price_usd"] = metric.price_usd
    out["volume_24h_usd"] = volume
    out["volume_source"] = volume_source
    print(json.dumps(out, indent=2))
    return 0


def cmd_state(args: argparse.Namespace) -> int:
    return asyncio.run(_state(args))


def cmd_verify(args: argparse.Namespace) -> int:
    settings = _settings(args)
    proof = verify_address(
        args.addr,
        RegistryStore(settings.registry_path).load(),
        LedgerStore(settings.draws_path).all(),
    )
    print(json.dumps({"ok": True, "proof": proof.to_json()}, indent=2))
    return 0


def cmd_audit(args: argparse.Namespace) -> int:
    path = args.ledger or _settings(args).draws_path
    result = verify_ledger(path, index=args.index)
    print("DRAW VERIFIED")
    print(f"Kind          : {result['kind']}")
    print(f"Seed SHA-256  : {result['seed']}")
    print(f"Prize         : ${result['amount_usd']} (index {result['amount_index']})")
    print(f"Winner        : {result['winner']} (index {result['winner_index']})")
    print(f"Entrants      : {result['total_entrants']}")
    return 0


def cmd_register(args: argparse.Namespace) -> int:
    registry = RegistryStore(_settings(args).registry_path)
    if args.action == "list":
        for w in registry.load():
            print(w)
        return 0
    if not args.wallet:
        raise SystemExit("wallet required")
    if args.action == "add":
        added = registry.add(args.wallet)
        print(f"added: {args.wallet}" if added else f"already registered: {args.wallet}")
    else:
        removed = registry.remove(args.wallet)
        print(f"removed: {args.wallet}" if removed else f"not registered: {args.wallet}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="solana-spin",
        description="Verifiable two-wheel prize draws for Solana token holders.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")

    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("run", help="Run the milestone + recurring draw loop.")
    r.set_defaults(func=cmd_run)

    t = sub.add_parser("test-spin", help="Run one manual draw and pay it out.")
    t.add_argument("--usd", type=float, default=None, help="Prize amount (else TEST_SPIN_USD).")
    t.set_defaults(func=cmd_test_spin)

    s = sub.add_parser("state", help="Print the current draw state as JSON.")
    s.set_defaults(func=cmd_state)

    v = sub.add_parser("verify", help="Registry inclusion and last draw inputs for an address.")
    v.add_argument("--addr", required=True, help="Wallet address.")
    v.set_defaults(func=cmd_verify)

    a = sub.add_parser("audit", help="Replay a recorded draw from its seed and entrants.")
    a.add_argument("--ledger", default=None, help="Path to draws.json (else DRAWS_PATH).")
    a.add_argument("--index", type=int, default=-1, help="Replayable draw index (default: latest).")
    a.set_defaults(func=cmd_audit)

    g = sub.add_parser("register", help="Manage the participant registry.")
    g.add_argument("action", choices=("add", "remove", "list"))
    g.add_argument("wallet", nargs="?", default=None)
    g.set_defaults(func=cmd_register)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    raise SystemExit(args.func(args))
