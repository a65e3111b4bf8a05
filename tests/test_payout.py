import asyncio
import json

import base58
import pytest
from solders.keypair import Keypair
from solders.transaction import Transaction

from solana_spin.config import ConfigError
from solana_spin.ledger import LedgerStore
from solana_spin.payout import PayoutGateway, load_treasury, pay_winner
from solana_spin.rpc import RpcError
from tests._support.fakes import Clock, FakeGateway, kinds, make_settings, wallet

ZERO_HASH = "11111111111111111111111111111111"


class FakeRpc:
    def __init__(self, lamports=10**9, usdc=0.0, send_error=None, ata_exists=True):
        self.lamports = lamports
        self.usdc = usdc
        self.send_error = send_error
        self.ata_exists = ata_exists
        self.sent = []

    async def get_balance(self, address):
        return self.lamports

    async def get_token_balance(self, owner, mint):
        return self.usdc

    async def account_exists(self, address):
        return self.ata_exists

    async def get_latest_entropy(self):
        return ZERO_HASH, 1

    async def send_transaction(self, raw):
        if self.send_error:
            raise self.send_error
        self.sent.append(raw)
        return "5sig"


class FakePrices:
    def __init__(self, price=100.0, fail=False):
        self.price = price
        self.fail = fail

    async def sol_price(self):
        if self.fail:
            raise RuntimeError("no price")
        return self.price, "test"


def gateway(rpc, prices=None, **overrides):
    settings = make_settings(**overrides)
    return PayoutGateway(settings, rpc, prices or FakePrices(), Keypair())


def test_sol_preflight_includes_fee_buffer():
    gw = gateway(FakeRpc(lamports=100_005_000), payout_as="SOL")
    pre = asyncio.run(gw.preflight(10))
    assert pre.ok
    assert pre.kind == "SOL"
    assert pre.need == 100_005_000
    assert pre.amount_sol == 0.1
    assert pre.sol_price_usd == 100.0

    short = asyncio.run(gateway(FakeRpc(lamports=100_004_999), payout_as="SOL").preflight(10))
    assert not short.ok


def test_usdc_preflight():
    assert asyncio.run(gateway(FakeRpc(usdc=50)).preflight(50)).ok
    pre = asyncio.run(gateway(FakeRpc(usdc=49.99)).preflight(50))
    assert not pre.ok
    assert (pre.need, pre.have) == (50, 49.99)


def test_usdc_preflight_needs_lamports_for_fees():
    pre = asyncio.run(gateway(FakeRpc(lamports=4_999, usdc=500)).preflight(50))
    assert not pre.ok
    assert (pre.fee_need, pre.fee_have) == (5_000, 4_999)
    assert asyncio.run(gateway(FakeRpc(lamports=5_000, usdc=500)).preflight(50, wallet(0))).ok


def test_usdc_preflight_reserves_rent_for_new_token_account():
    rpc = FakeRpc(lamports=1_000_000, usdc=500, ata_exists=False)
    pre = asyncio.run(gateway(rpc).preflight(50, wallet(0)))
    assert not pre.ok
    assert pre.fee_need == 5_000 + 2_039_280
    rpc.lamports = 5_000 + 2_039_280
    assert asyncio.run(gateway(rpc).preflight(50, wallet(0))).ok


def test_fee_shortfall_is_recorded(tmp_path):
    ledger = LedgerStore(str(tmp_path / "draws.json"))
    gw = gateway(FakeRpc(lamports=0, usdc=500))
    result = asyncio.run(pay_winner(gw, ledger, wallet(2), 50, Clock()))
    assert result.skipped
    assert gw.rpc.sent == []
    event = ledger.all()[0]
    assert event["kind"] == "payout_skipped_insufficient_funds"
    assert event["reason"] == "USDC"
    assert (event["feeNeedLamports"], event["feeHaveLamports"]) == (5_000, 0)


def test_preflight_never_raises():
    pre = asyncio.run(gateway(FakeRpc(), FakePrices(fail=True), payout_as="SOL").preflight(10))
    assert not pre.ok
    assert "no price" in pre.error
    assert not asyncio.run(gateway(FakeRpc(usdc=100)).preflight(-1)).ok


def test_sol_transfer_is_signed_and_sent():
    rpc = FakeRpc(lamports=10**10)
    gw = gateway(rpc, payout_as="SOL")
    pre = asyncio.run(gw.preflight(15))
    result = asyncio.run(gw.execute(wallet(3), 15, pre))
    assert result.ok
    assert result.sig == "5sig"
    assert result.meta == {"amountSol": 0.15, "solPriceUsd": 100.0}

    tx = Transaction.from_bytes(rpc.sent[0])
    assert tx.message.account_keys[0] == gw.treasury.pubkey()
    assert str(tx.message.account_keys[1]) == wallet(3)
    tx.verify()


def test_rail_failure_is_captured():
    err = RpcError("RPC error (sendTransaction): simulation failed", logs=["log line"])
    gw = gateway(FakeRpc(send_error=err), payout_as="SOL")
    result = asyncio.run(gw.execute(wallet(0), 10))
    assert not result.ok
    assert "simulation failed" in result.error
    assert result.logs == ["log line"]


def test_bad_recipient_is_captured():
    result = asyncio.run(gateway(FakeRpc(), payout_as="SOL").execute("not-an-address", 10))
    assert not result.ok
    assert result.error


def test_pay_winner_records_skip_and_error(tmp_path):
    ledger = LedgerStore(str(tmp_path / "draws.json"))
    clock = Clock()

    skipped = asyncio.run(pay_winner(FakeGateway(have=1), ledger, wallet(0), 10, clock, cap=100_000))
    assert skipped.skipped and not skipped.ok
    failed = asyncio.run(pay_winner(FakeGateway(error="boom"), ledger, wallet(0), 10, clock))
    assert not failed.ok and not failed.skipped
    paid = asyncio.run(pay_winner(FakeGateway(), ledger, wallet(0), 10, clock))
    assert paid.ok

    events = ledger.all()
    assert kinds(events) == ["payout_skipped_insufficient_funds", "payout_error"]
    assert events[0]["cap"] == 100_000
    assert events[1]["error"] == "boom"


def test_load_treasury_from_json_file(tmp_path):
    kp = Keypair()
    path = tmp_path / "treasury.json"
    path.write_text(json.dumps(list(bytes(kp))), encoding="utf-8")
    assert load_treasury(str(path)).pubkey() == kp.pubkey()


def test_load_treasury_from_base58_secret():
    kp = Keypair()
    secret = base58.b58encode(bytes(kp)).decode("ascii")
    assert load_treasury(secret).pubkey() == kp.pubkey()


@pytest.mark.parametrize("content", ["not json", "[1, 2, 3]"])
def test_load_treasury_rejects_bad_files(tmp_path, content):
    path = tmp_path / "treasury.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_treasury(str(path))


def test_load_treasury_requires_value():
    with pytest.raises(ConfigError):
        load_treasury(None)
