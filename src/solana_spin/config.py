from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

from .project_constants import MILESTONES, USDC_MINT_MAINNET, Milestone
from .registry import is_valid_address
from .tiers import parse_amounts

PAYOUT_MODES = ("USDC", "SOL")
WEIGHT_MODES = ("balance", "equal")


class ConfigError(RuntimeError):
    """Fatal misconfiguration; no draw activity may proceed."""


def _num(name: str, default: str) -> float:
    raw = os.getenv(name, default).strip() or default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number (got {raw!r}).")


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    treasury_keypair: Optional[str] = None
    token_mint: Optional[str] = None
    token_ticker: str = "YOUR"
    usdc_mint: str = USDC_MINT_MAINNET
    registry_path: str = "./state/registry.json"
    draws_path: str = "./state/draws.json"

    min_eligible_balance: float = 1.0
    recurring_start_cap: float = 1_000_000
    recurring_stop_cap: float = 0
    recurring_interval_ms: int = 60 * 60 * 1000
    demo_interval_ms: int = 5 * 60 * 1000
    demo_below_start: bool = True
    weight_mode: str = "balance"

    prize_amounts: Tuple[float, ...] = (500, 200, 100, 50, 10)
    dynamic_tier_amount: float = 1000
    dynamic_tier_cap: float = 5_000_000
    milestones: Tuple[Milestone, ...] = field(default=MILESTONES)

    payout_as: str = "USDC"
    sol_price_usd: float = 150
    test_spin_usd: float = 10
    fdv_fallback_usd: float = 0
    birdeye_api_key: Optional[str] = None

    rpc_timeout_s: float = 8.0
    price_timeout_s: float = 3.5

    def __post_init__(self) -> None:
        if not (self.rpc_url.startswith("http://") or self.rpc_url.startswith("https://")):
            raise ConfigError(
                f"RPC_URL is not a valid http(s) URL: {self.rpc_url!r}. "
                "e.g. RPC_URL=https://api.devnet.solana.com"
            )
        if self.payout_as not in PAYOUT_MODES:
            raise ConfigError(f"PAYOUT_AS must be one of {PAYOUT_MODES} (got {self.payout_as!r}).")
        if self.weight_mode not in WEIGHT_MODES:
            raise ConfigError(
                f"WALLET_WEIGHT_MODE must be one of {WEIGHT_MODES} (got {self.weight_mode!r})."
            )

    @property
    def safe_token_mint(self) -> Optional[str]:
        """Token mint used for gating, or None when unset/invalid (equal-weight mode)."""
        if self.token_mint and is_valid_address(self.token_mint):
            return self.token_mint
        return None

    @staticmethod
    def from_env(rpc_url_override: str | None = None) -> "Settings":
        load_dotenv()

        # If user provides --rpc-url, trust it.
        rpc_url = (rpc_url_override or os.getenv("RPC_URL", "")).strip()
        if not rpc_url:
            helius_key = os.getenv("HELIUS_API_KEY", "").strip()
            if not helius_key:
                raise ConfigError(
                    "Missing RPC_URL (or HELIUS_API_KEY). Put it in .env or export it."
                )
            rpc_url = f"https://mainnet.helius-rpc.com/?api-key={helius_key}"

        amounts = parse_amounts(os.getenv("PRIZE_AMOUNTS", "500,200,100,50,10"))
        if not amounts:
            raise ConfigError("PRIZE_AMOUNTS must contain at least one positive amount.")

        return Settings(
            rpc_url=rpc_url,
            treasury_keypair=os.getenv("TREASURY_KEYPAIR", "").strip() or None,
            token_mint=os.getenv("TOKEN_MINT", "").strip() or None,
            token_ticker=os.getenv("TOKEN_TICKER", "YOUR"),
            usdc_mint=os.getenv("USDC_MINT", "").strip() or USDC_MINT_MAINNET,
            registry_path=os.getenv("REGISTRY_PATH", "./state/registry.json"),
            draws_path=os.getenv("DRAWS_PATH", "./state/draws.json"),
            min_eligible_balance=_num("MIN_ELIGIBLE_BALANCE", "1"),
            recurring_start_cap=_num("RECURRING_START_CAP", "1000000"),
            recurring_stop_cap=_num("RECURRING_STOP_CAP", "0"),
            recurring_interval_ms=int(_num("RECURRING_INTERVAL_MS", str(60 * 60 * 1000))),
            demo_interval_ms=int(_num("DEMO_INTERVAL_MS", str(5 * 60 * 1000))),
            demo_below_start=os.getenv("DEMO_BELOW_START", "1").strip() != "0",
            weight_mode=os.getenv("WALLET_WEIGHT_MODE", "balance").strip().lower(),
            prize_amounts=tuple(amounts),
            dynamic_tier_amount=_num("DYNAMIC_TIER_AMOUNT", "1000"),
            dynamic_tier_cap=_num("DYNAMIC_TIER_CAP", "5000000"),
            payout_as=os.getenv("PAYOUT_AS", "USDC").strip().upper(),
            sol_price_usd=_num("SOL_PRICE_USD", "150"),
            test_spin_usd=_num("TEST_SPIN_USD", "10"),
            fdv_fallback_usd=_num("FDV_FALLBACK_USD", "0"),
            birdeye_api_key=os.getenv("BIRDEYE_API_KEY", "").strip() or None,
            rpc_timeout_s=_num("RPC_TIMEOUT_S", "8"),
            price_timeout_s=_num("PRICE_TIMEOUT_S", "3.5"),
        )
