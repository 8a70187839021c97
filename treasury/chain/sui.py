"""Sui JSON-RPC balance reader."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from treasury.errors import DataSourceError

logger = logging.getLogger(__name__)


class BalanceReader(Protocol):
    async def usdc_balance(self, owner: str) -> int:
        ...


class SuiRpcClient:
    """Reads coin balances with `suix_getBalance`."""

    def __init__(
        self,
        rpc_url: str,
        coin_type: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ) -> None:
        self.rpc_url = rpc_url
        self.coin_type = coin_type
        self._client = client
        self._timeout = timeout
        self._request_id = 0

    async def _rpc(self, method: str, params: list) -> dict:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            if self._client is not None:
                response = await self._client.post(self.rpc_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DataSourceError(f"Sui RPC {method} failed: {e}") from e
        if "error" in body:
            raise DataSourceError(f"Sui RPC {method} error: {body['error']}")
        return body.get("result") or {}

    async def usdc_balance(self, owner: str) -> int:
        result = await self._rpc("suix_getBalance", [owner, self.coin_type])
        return int(result.get("totalBalance") or 0)
