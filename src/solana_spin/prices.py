"""
Price and FDV lookups over public market-data APIs.

Each lookup walks a prioritized provider chain and returns the first finite,
positive value. Nothing here raises: failures fall through to the next
provider and finally to a configured constant.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from .config import Settings
from .project_constants import HTTP_USER_AGENT, WSOL_MINT
from .rpc import RpcClient, RpcError

log = logging.getLogger("prices")

JUPITER_PRICE = "https://price.jup.ag/v6/price"
BIRDEYE_BASE = "https://public-api.birdeye.so"
COINGECKO_SIMPLE = "https://api.coingecko.com/api/v3/simple/price"
DEXSCREENER_TOKENS = "https://api.dexscreener.com/latest/dex/tokens"

Extractor = Callable[[Any], Tuple[Optional[float], str]]


@dataclass(frozen=True)
class Metric:
    value_usd: float
    source: str
    price_usd: Optional[float] = None
    supply: Optional[float] = None


def _positive(v: Any) -> Optional[float]:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) and f > 0 else None


def _dig(obj: Any, *path: Any) -> Any:
    for key in path:
        if isinstance(obj, dict):
            obj = obj.get(key)
        elif isinstance(obj, list) and isinstance(key, int) and -len(obj) <= key < len(obj):
            obj = obj[key]
        else:
            return None
    return obj


class PriceOracle:
    def __init__(
        self,
        settings: Settings,
        rpc: RpcClient,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.rpc = rpc
        self.client = httpx.AsyncClient(
            timeout=settings.price_timeout_s,
            headers={"accept": "application/json", "user-agent": HTTP_USER_AGENT},
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    def _birdeye_headers(self) -> Dict[str, str]:
        headers = {"x-chain": "solana"}
        if self.settings.birdeye_api_key:
            headers["X-API-KEY"] = self.settings.birdeye_api_key
        return headers

    async def _get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        resp = await self.client.get(url, headers=headers)
        resp.raise_for_status()
        return resp.json()

    async def _first_positive(
        self,
        chain: List[Tuple[str, Optional[Dict[str, str]], Extractor]],
    ) -> Tuple[Optional[float], Optional[str]]:
        for url, headers, extract in chain:
            try:
                value, source = extract(await self._get_json(url, headers))
            except (httpx.HTTPError, ValueError) as e:
                log.debug("Price provider %s failed: %s", url, e)
                continue
            value = _positive(value)
            if value is not None:
                return value, source
        return None, None

    async def sol_price(self) -> Tuple[float, str]:
        """Live SOL/USD; falls back to SOL_PRICE_USD."""
        chain = [
            (
                f"{JUPITER_PRICE}?ids=SOL",
                None,
                lambda j: (_dig(j, "data", "SOL", "price"), "jupiter"),
            ),
            (
                f"{BIRDEYE_BASE}/defi/price?address={WSOL_MINT}&ui_amount_mode=raw",
                self._birdeye_headers(),
                lambda j: (_dig(j, "data", "value"), "birdeye"),
            ),
            (
                f"{COINGECKO_SIMPLE}?ids=solana&vs_currencies=usd",
                None,
                lambda j: (_dig(j, "solana", "usd"), "coingecko"),
            ),
        ]
        price, source = await self._first_positive(chain)
        if price is None:
            return self.settings.sol_price_usd, "fallback_env"
        return price, source or "unknown"

    async def token_price(self, mint: str) -> Tuple[Optional[float], Optional[str]]:
        m = quote(mint, safe="")
        chain: List[Tuple[str, Optional[Dict[str, str]], Extractor]] = [
            (
                f"{JUPITER_PRICE}?ids={m}",
                None,
                lambda j: (_dig(j, "data", mint, "price"), "jupiter"),
            ),
        ]
        if self.settings.birdeye_api_key:
            chain.append(
                (
                    f"{BIRDEYE_BASE}/defi/price?address={m}&ui_amount_mode=raw",
                    self._birdeye_headers(),
                    lambda j: (_dig(j, "data", "value"), "birdeye"),
                )
            )
        chain.append(
            (
                f"{DEXSCREENER_TOKENS}/{m}",
                None,
                lambda j: (
                    _dig(j, "pairs", 0, "priceUsd"),
                    f"dexscreener:{_dig(j, 'pairs', 0, 'dexId') or 'pair'}",
                ),
            )
        )
        return await self._first_positive(chain)

    async def volume_24h(self, mint: str) -> Tuple[Optional[float], Optional[str]]:
        m = quote(mint, safe="")
        chain: List[Tuple[str, Optional[Dict[str, str]], Extractor]] = [
            (
                f"{DEXSCREENER_TOKENS}/{m}",
                None,
                lambda j: (
                    _dig(j, "pairs", 0, "volume", "h24") or _dig(j, "pairs", 0, "volume24h"),
                    f"dexscreener:{_dig(j, 'pairs', 0, 'dexId') or 'pair'}",
                ),
            ),
        ]
        if self.settings.birdeye_api_key:
            chain.append(
                (
                    f"{BIRDEYE_BASE}/defi/token_overview?address={m}",
                    self._birdeye_headers(),
                    lambda j: (_dig(j, "data", "v24hUSD") or _dig(j, "data", "v24"), "birdeye"),
                )
            )
        return await self._first_positive(chain)

    async def get_observed_metric(self) -> Metric:
        """Token FDV (price x supply), or FDV_FALLBACK_USD when it cannot be observed."""
        fallback = Metric(value_usd=self.settings.fdv_fallback_usd, source="fallback")
        mint = self.settings.safe_token_mint
        if not mint:
            return fallback

        price, source = await self.token_price(mint)
        try:
            supply, _ = await self.rpc.get_token_supply(mint)
        except (httpx.HTTPError, RpcError, KeyError, TypeError, ValueError) as e:
            log.debug("getTokenSupply(%s) failed: %s", mint, e)
            supply = None

        fdv = _positive(price * supply) if price is not None and supply is not None else None
        if fdv is None:
            log.info("FDV unavailable (price=%s, supply=%s); using fallback %s.",
                     price, supply, self.settings.fdv_fallback_usd)
            return Metric(
                value_usd=self.settings.fdv_fallback_usd,
                source="fallback",
                price_usd=price,
                supply=supply,
            )
        return Metric(value_usd=fdv, source=source or "unknown", price_usd=price, supply=supply)
