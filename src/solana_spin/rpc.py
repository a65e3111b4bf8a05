from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

log = logging.getLogger("rpc")


class RpcError(RuntimeError):
    """JSON-RPC error object returned by the node."""

    def __init__(self, message: str, logs: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.logs = logs


class RpcClient:
    """Minimal async Solana JSON-RPC client. Every call is bounded by ``timeout_s``."""

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def close(self) -> None:
        await self.client.aclose()

    async def _post(self, method: str, params: List[Any]) -> Dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        resp = await self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            err = data["error"] or {}
            logs = None
            if isinstance(err, dict):
                detail = err.get("data")
                logs = detail.get("logs") if isinstance(detail, dict) else None
                message = err.get("message") or str(err)
            else:
                message = str(err)
            raise RpcError(f"RPC error ({method}): {message}", logs=logs)
        return data

    async def get_latest_entropy(self) -> Tuple[str, int]:
        """Latest finalized blockhash and its last valid block height."""
        data = await self._post("getLatestBlockhash", [{"commitment": "finalized"}])
        value = (data.get("result") or {}).get("value") or {}
        blockhash = value.get("blockhash")
        if not blockhash:
            raise RpcError("getLatestBlockhash returned no blockhash.")
        return blockhash, int(value.get("lastValidBlockHeight") or 0)

    async def get_balance(self, address: str) -> int:
        """Lamports held by ``address``; 0 on any failure."""
        try:
            data = await self._post("getBalance", [address, {"commitment": "processed"}])
            return int(data["result"]["value"])
        except (httpx.HTTPError, RpcError, KeyError, TypeError, ValueError) as e:
            log.debug("getBalance(%s) failed: %s", address, e)
            return 0

    async def get_token_balance(self, owner: str, mint: str) -> float:
        """UI-unit balance of ``mint`` summed over the owner's token accounts; 0 on any failure."""
        try:
            data = await self._post(
                "getTokenAccountsByOwner",
                [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": "confirmed"}],
            )
            total = 0.0
            for item in data["result"]["value"]:
                amount = item["account"]["data"]["parsed"]["info"]["tokenAmount"]
                total += float(amount.get("uiAmountString") or amount.get("uiAmount") or 0)
            return total
        except (httpx.HTTPError, RpcError, KeyError, TypeError, ValueError) as e:
            log.debug("getTokenAccountsByOwner(%s, %s) failed: %s", owner, mint, e)
            return 0.0

    async def get_token_supply(self, mint: str) -> Tuple[Optional[float], int]:
        """(ui supply, decimals) of a mint."""
        data = await self._post("getTokenSupply", [mint])
        value = data["result"]["value"]
        ui = value.get("uiAmountString") or value.get("uiAmount")
        return (float(ui) if ui is not None else None), int(value["decimals"])

    async def get_token_decimals(self, mint: str) -> int:
        _, decimals = await self.get_token_supply(mint)
        return decimals

    async def account_exists(self, address: str) -> bool:
        data = await self._post("getAccountInfo", [address, {"encoding": "base64"}])
        return (data.get("result") or {}).get("value") is not None

    async def send_transaction(self, raw_tx: bytes) -> str:
        """Submit a signed transaction with preflight; returns its signature."""
        encoded = base64.b64encode(raw_tx).decode("ascii")
        data = await self._post(
            "sendTransaction",
            [encoded, {"encoding": "base64", "skipPreflight": False, "preflightCommitment": "confirmed"}],
        )
        return str(data["result"])
