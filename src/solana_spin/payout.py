from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import base58
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)
from spl.token.models import TransferCheckedParams

from .config import ConfigError, Settings
from .events import EventKind, new_event
from .ledger import LedgerStore
from .prices import PriceOracle
from .project_constants import ATA_RENT_LAMPORTS, FEE_BUFFER_LAMPORTS, LAMPORTS_PER_SOL
from .rpc import RpcClient

log = logging.getLogger("payout")


def load_treasury(path_or_secret: Optional[str]) -> Keypair:
    """
    Treasury signer from TREASURY_KEYPAIR: a path to a JSON array of 64 numbers
    (solana-keygen format) or a base58-encoded secret key.
    """
    if not path_or_secret:
        raise ConfigError(
            "TREASURY_KEYPAIR is not set. Add TREASURY_KEYPAIR=state/treasury.json (or an absolute path) to .env."
        )
    if os.path.exists(path_or_secret):
        try:
            with open(path_or_secret, "r", encoding="utf-8") as f:
                arr = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"TREASURY_KEYPAIR at {path_or_secret!r} is not valid JSON: {e}")
        if not isinstance(arr, list) or len(arr) < 64:
            raise ConfigError(
                f"TREASURY_KEYPAIR at {path_or_secret!r} must be a JSON array of 64 numbers (secret key)."
            )
        try:
            secret = bytes(arr[:64])
        except (TypeError, ValueError):
            raise ConfigError(f"TREASURY_KEYPAIR at {path_or_secret!r} must contain byte values 0-255.")
    else:
        try:
            secret = base58.b58decode(path_or_secret)
        except ValueError:
            raise ConfigError("TREASURY_KEYPAIR is neither a readable file nor a base58 secret key.")
    try:
        return Keypair.from_bytes(secret)
    except ValueError as e:
        raise ConfigError(f"TREASURY_KEYPAIR is not a valid ed25519 keypair: {e}")


@dataclass(frozen=True)
class Preflight:
    ok: bool
    kind: str
    need: Optional[float] = None
    have: Optional[float] = None
    amount_sol: Optional[float] = None
    sol_price_usd: Optional[float] = None
    fee_need: Optional[int] = None  # lamports, USDC rail only
    fee_have: Optional[int] = None
    error: Optional[str] = None


@dataclass
class PayoutResult:
    ok: bool
    payout_kind: str
    sig: Optional[str] = None
    skipped: bool = False  # preflight refused; nothing was sent
    error: Optional[str] = None
    logs: Optional[List[str]] = None
    meta: Dict[str, Any] = field(default_factory=dict)


class PayoutGateway:
    """Converts USD prizes into SOL or USDC transfers from the treasury."""

    def __init__(
        self,
        settings: Settings,
        rpc: RpcClient,
        prices: PriceOracle,
        treasury: Keypair,
    ) -> None:
        self.settings = settings
        self.rpc = rpc
        self.prices = prices
        self.treasury = treasury

    @property
    def kind(self) -> str:
        return self.settings.payout_as

    async def _usdc_fee_lamports(self, recipient: Optional[str]) -> int:
        need = FEE_BUFFER_LAMPORTS
        if recipient is not None:
            dest = get_associated_token_address(
                Pubkey.from_string(recipient), Pubkey.from_string(self.settings.usdc_mint)
            )
            if not await self.rpc.account_exists(str(dest)):
                need += ATA_RENT_LAMPORTS
        return need

    async def preflight(self, amount_usd: float, recipient: Optional[str] = None) -> Preflight:
        """
        Check the treasury can cover ``amount_usd``. For USDC the treasury also
        needs lamports for the fee, plus rent when ``recipient`` has no token
        account yet.
        """
        try:
            if not (math.isfinite(amount_usd) and amount_usd > 0):
                raise ValueError(f"Invalid USD amount {amount_usd!r}")
            if self.kind == "SOL":
                sol_usd, _ = await self.prices.sol_price()
                amount_sol = amount_usd / sol_usd
                need = math.ceil(amount_sol * LAMPORTS_PER_SOL) + FEE_BUFFER_LAMPORTS
                have = await self.rpc.get_balance(str(self.treasury.pubkey()))
                return Preflight(
                    ok=have >= need, kind="SOL", need=need, have=have,
                    amount_sol=amount_sol, sol_price_usd=sol_usd,
                )
            treasury = str(self.treasury.pubkey())
            have = await self.rpc.get_token_balance(treasury, self.settings.usdc_mint)
            fee_need = await self._usdc_fee_lamports(recipient)
            fee_have = await self.rpc.get_balance(treasury)
            return Preflight(
                ok=have >= amount_usd and fee_have >= fee_need, kind="USDC", need=amount_usd, have=have,
                fee_need=fee_need, fee_have=fee_have,
            )
        except Exception as e:  # preflight must never throw
            log.warning("Payout preflight failed for $%s: %s", amount_usd, e)
            return Preflight(ok=False, kind=self.kind, error=str(e))

    async def execute(
        self,
        recipient: str,
        amount_usd: float,
        preflight: Optional[Preflight] = None,
    ) -> PayoutResult:
        try:
            if self.kind == "SOL":
                return await self._pay_sol(recipient, amount_usd, preflight)
            return await self._pay_usdc(recipient, amount_usd)
        except Exception as e:  # rail failures are recorded, never raised
            logs = getattr(e, "logs", None)
            log.error("Payout error: %s", e)
            if logs:
                log.error("Logs: %s", logs)
            return PayoutResult(ok=False, payout_kind=self.kind, error=str(e), logs=logs)

    async def _signed(self, instructions: list) -> Transaction:
        blockhash, _ = await self.rpc.get_latest_entropy()
        return Transaction.new_signed_with_payer(
            instructions,
            self.treasury.pubkey(),
            [self.treasury],
            Hash.from_string(blockhash),
        )

    async def _pay_sol(
        self, recipient: str, amount_usd: float, preflight: Optional[Preflight]
    ) -> PayoutResult:
        if preflight is not None and preflight.amount_sol is not None:
            amount_sol, sol_usd = preflight.amount_sol, preflight.sol_price_usd
        else:
            sol_usd, _ = await self.prices.sol_price()
            amount_sol = amount_usd / sol_usd
        lamports = round(amount_sol * LAMPORTS_PER_SOL)
        if lamports <= 0:
            raise ValueError("Computed lamports is not positive")

        ix = transfer(
            TransferParams(
                from_pubkey=self.treasury.pubkey(),
                to_pubkey=Pubkey.from_string(recipient),
                lamports=lamports,
            )
        )
        tx = await self._signed([ix])
        sig = await self.rpc.send_transaction(bytes(tx))
        return PayoutResult(
            ok=True, payout_kind="SOL", sig=sig,
            meta={"amountSol": amount_sol, "solPriceUsd": sol_usd},
        )

    async def _pay_usdc(self, recipient: str, amount_usd: float) -> PayoutResult:
        mint = Pubkey.from_string(self.settings.usdc_mint)
        owner = Pubkey.from_string(recipient)
        payer = self.treasury.pubkey()
        decimals = await self.rpc.get_token_decimals(self.settings.usdc_mint)
        units = round(amount_usd * 10**decimals)

        source = get_associated_token_address(payer, mint)
        dest = get_associated_token_address(owner, mint)
        instructions = []
        if not await self.rpc.account_exists(str(dest)):
            instructions.append(create_associated_token_account(payer=payer, owner=owner, mint=mint))
        instructions.append(
            transfer_checked(
                TransferCheckedParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=source,
                    mint=mint,
                    dest=dest,
                    owner=payer,
                    amount=units,
                    decimals=decimals,
                )
            )
        )
        tx = await self._signed(instructions)
        sig = await self.rpc.send_transaction(bytes(tx))
        return PayoutResult(ok=True, payout_kind="USDC", sig=sig)


async def pay_winner(
    gateway: PayoutGateway,
    ledger: LedgerStore,
    winner: str,
    amount_usd: float,
    clock: Callable[[], int],
    **context: Any,
) -> PayoutResult:
    """
    Preflight then pay. Skips and failures are appended to the ledger before
    returning; a successful transfer is left for the caller to record.
    """
    pre = await gateway.preflight(amount_usd, winner)
    if not pre.ok:
        log.warning("Insufficient %s: have %s, need %s (prize $%s).", pre.kind, pre.have, pre.need, amount_usd)
        fields: Dict[str, Any] = dict(context)
        if pre.error:
            fields["error"] = pre.error
        if pre.fee_need is not None:
            fields["feeNeedLamports"] = pre.fee_need
            fields["feeHaveLamports"] = pre.fee_have
        ledger.append(
            new_event(
                EventKind.PAYOUT_SKIPPED_INSUFFICIENT_FUNDS,
                clock(),
                reason=pre.kind,
                amountUsd=amount_usd,
                need=pre.need,
                have=pre.have,
                winner=winner,
                **fields,
            )
        )
        return PayoutResult(ok=False, payout_kind=pre.kind, skipped=True, error=pre.error)

    result = await gateway.execute(winner, amount_usd, pre)
    if not result.ok:
        ledger.append(
            new_event(
                EventKind.PAYOUT_ERROR,
                clock(),
                amountUsd=amount_usd,
                winner=winner,
                error=result.error,
                logs=result.logs,
                **context,
            )
        )
    return result
