"""DeepBook order-book spread yield.

Market makers capture part of the spread on each round trip:

    apy = (spread_pct / 100) * capture_rate * daily_turns * 365 * 100

capped at 50%. Order books come from the public DeepBook indexer
(``GET /orderbook/<pool>?level=2&depth=<n>``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

CAPTURE_RATE = 0.4
DAILY_TURNS = 2
MAX_SPREAD_APY = 50.0

SYNTHETIC_POOL_YIELDS: dict[str, float] = {
    "SUI_USDC": 8.5,
    "SUI_DBUSDC": 8.5,
    "DEEP_USDC": 6.2,
    "DEEP_DBUSDC": 6.2,
}


@dataclass(frozen=True)
class PoolYield:
    pool_key: str
    apy: float
    spread_pct: float
    tvl: float
    mocked: bool = False

    @property
    def base_asset(self) -> str:
        return self.pool_key.split("_", 1)[0]

    @property
    def quote_asset(self) -> str:
        return self.pool_key.split("_", 1)[-1]


@dataclass(frozen=True)
class Level2Summary:
    best_bid: float
    best_ask: float
    bid_liquidity: float
    ask_liquidity: float


def calculate_spread_yield(spread_pct: float, daily_turns: int = DAILY_TURNS) -> float:
    daily_return = (spread_pct / 100) * CAPTURE_RATE * daily_turns
    return min(daily_return * 365 * 100, MAX_SPREAD_APY)


def parse_level2(data: dict[str, Any]) -> Level2Summary:
    """Best bid/ask and total resting size from `{"bids": [[p, q]...], "asks": [...]}`."""

    def _levels(side: Any) -> list[tuple[float, float]]:
        levels = []
        for entry in side or []:
            try:
                price, quantity = float(entry[0]), float(entry[1])
            except (TypeError, ValueError, IndexError):
                continue
            if price > 0 and quantity > 0:
                levels.append((price, quantity))
        return levels

    bids = _levels(data.get("bids"))
    asks = _levels(data.get("asks"))
    return Level2Summary(
        best_bid=max((p for p, _ in bids), default=0.0),
        best_ask=min((p for p, _ in asks), default=0.0),
        bid_liquidity=sum(q for _, q in bids),
        ask_liquidity=sum(q for _, q in asks),
    )


class DeepBookYieldSource:
    def __init__(
        self,
        *,
        indexer_url: str,
        pool_keys: Sequence[str],
        client: Optional[httpx.AsyncClient] = None,
        depth: int = 20,
    ) -> None:
        self.indexer_url = indexer_url.rstrip("/")
        self.pool_keys = tuple(pool_keys)
        self._client = client
        self.depth = depth

    async def _get_level2(self, pool_key: str) -> dict[str, Any]:
        url = f"{self.indexer_url}/orderbook/{pool_key}"
        params = {"level": 2, "depth": self.depth}
        if self._client is not None:
            response = await self._client.get(url, params=params)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def fetch_pool_yields(self) -> list[PoolYield]:
        """Live pool yields; synthetic yields when no book could be read."""
        pools = []
        for pool_key in self.pool_keys:
            try:
                summary = parse_level2(await self._get_level2(pool_key))
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"[Sui] Could not fetch {pool_key} order book: {e}")
                continue

            if summary.best_bid <= 0 or summary.best_ask <= 0:
                logger.info(f"[Sui] {pool_key}: no valid bid/ask found")
                continue

            spread = (summary.best_ask - summary.best_bid) / summary.best_bid * 100
            apy = calculate_spread_yield(spread)
            tvl = (summary.bid_liquidity + summary.ask_liquidity) * summary.best_bid
            logger.info(
                f"[Sui] {pool_key}: spread={spread:.4f}%, implied APY={apy:.2f}%, "
                f"best bid={summary.best_bid:.4f}, best ask={summary.best_ask:.4f}"
            )
            pools.append(PoolYield(pool_key=pool_key, apy=apy, spread_pct=spread, tvl=tvl))

        if pools:
            return pools

        logger.info("[Sui] No order book data, using synthetic yields")
        return self.synthetic_yields()

    def synthetic_yields(self) -> list[PoolYield]:
        return [
            PoolYield(pool_key=key, apy=SYNTHETIC_POOL_YIELDS.get(key, 6.0), spread_pct=0.0, tvl=0.0, mocked=True)
            for key in self.pool_keys
        ]
