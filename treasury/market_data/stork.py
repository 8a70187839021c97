"""Stork oracle price feed used to derive the home-chain yield.

Implied yield model: ``|1 - price| * 100 + 5``. Without an API key the source
returns a synthetic 6.5% at confidence 0.5.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from treasury.config import HomeRebalanceConfig

logger = logging.getLogger(__name__)

LIVE_CONFIDENCE = 0.95
SYNTHETIC_CONFIDENCE = 0.5
BASE_YIELD_PCT = 5.0


@dataclass(frozen=True)
class YieldQuote:
    value_pct: float
    confidence: float
    source: str
    fetched_at: float

    @property
    def mocked(self) -> bool:
        return self.source.startswith("synthetic:")


def _parse_price(raw: Any) -> float:
    """Stork quotes are either plain decimals or 18-decimal fixed point strings."""
    value = float(raw)
    if value > 1e6:
        return value / 1e18
    return value


class StorkYieldSource:
    """Cached Stork quote (TTL `cache_ttl_seconds`)."""

    def __init__(
        self,
        config: HomeRebalanceConfig,
        *,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._client = client
        self._clock = clock
        self._cached: Optional[YieldQuote] = None

    def _synthetic(self, now: float) -> YieldQuote:
        return YieldQuote(
            value_pct=self.config.synthetic_yield_pct,
            confidence=SYNTHETIC_CONFIDENCE,
            source="synthetic:stork",
            fetched_at=now,
        )

    async def _get(self) -> dict[str, Any]:
        headers = {"Authorization": f"Basic {self.config.stork_api_key}"}
        params = {"assets": self.config.stork_asset}
        if self._client is not None:
            response = await self._client.get(self.config.stork_api_url, headers=headers, params=params)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(self.config.stork_api_url, headers=headers, params=params)
        response.raise_for_status()
        return response.json()

    async def fetch_yield(self) -> YieldQuote:
        now = self._clock()
        if self._cached is not None and now - self._cached.fetched_at < self.config.cache_ttl_seconds:
            return self._cached

        if not self.config.stork_api_key:
            self._cached = self._synthetic(now)
            return self._cached

        try:
            payload = await self._get()
            entry = (payload.get("data") or {}).get(self.config.stork_asset) or {}
            price = _parse_price(entry.get("price", 1.0))
        except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"[Stork] API error, using fallback: {e}")
            if self._cached is not None:
                return YieldQuote(
                    value_pct=self._cached.value_pct,
                    confidence=min(self._cached.confidence, SYNTHETIC_CONFIDENCE),
                    source=self._cached.source if self._cached.mocked else "synthetic:stork-cache",
                    fetched_at=self._cached.fetched_at,
                )
            return self._synthetic(now)

        implied = abs(1.0 - price) * 100 + BASE_YIELD_PCT
        self._cached = YieldQuote(value_pct=implied, confidence=LIVE_CONFIDENCE, source="stork", fetched_at=now)
        logger.info(f"[Stork] Fetched yield: {implied:.2f}%")
        return self._cached
