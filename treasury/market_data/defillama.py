"""DefiLlama pools API client for per-chain USDC lending yields.

Uses the free public endpoint (no API key). Blocking `requests` client; call
from async code through a thread.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

import requests

from treasury.config import DefiLlamaConfig

logger = logging.getLogger(__name__)

SYNTHETIC_YIELDS: dict[str, float] = {
    "ethereum": 4.2,
    "base": 6.5,
    "avalanche": 5.8,
}


@dataclass(frozen=True)
class ChainYield:
    chain: str
    protocol: str
    apy: float
    tvl: float
    mocked: bool = False


def synthetic_chain_yields(chains: Iterable[str]) -> list[ChainYield]:
    return [
        ChainYield(chain=chain, protocol="synthetic", apy=SYNTHETIC_YIELDS.get(chain, 4.0), tvl=0.0, mocked=True)
        for chain in chains
    ]


def _pool_apy(pool: dict[str, Any]) -> float | None:
    try:
        apy = float(pool.get("apy") or 0.0) or float(pool.get("apyBase") or 0.0) + float(pool.get("apyReward") or 0.0)
    except (TypeError, ValueError):
        return None
    if apy != apy:  # NaN
        return None
    return apy


def _normalize_chain(chain: Any) -> str:
    return "".join(str(chain or "").lower().split())


class DefiLlamaClient:
    """Client for the DefiLlama yields API."""

    def __init__(self, config: DefiLlamaConfig, *, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "User-Agent": "treasuryforge/1.0",
        })

    def _project_allowed(self, project: str) -> bool:
        if not project:
            return True
        return any(project == allowed or project.startswith(f"{allowed}-") for allowed in self.config.allowed_projects)

    def get_pools(self) -> list[dict[str, Any]]:
        """Fetch the raw pool list.

        Raises:
            RuntimeError: If the API request fails or returns no pools
        """
        try:
            response = self._session.get(self.config.url, timeout=self.config.timeout_ms / 1000)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise RuntimeError(f"DefiLlama API request failed: {e}") from e
        except ValueError as e:
            raise RuntimeError(f"DefiLlama returned invalid JSON: {e}") from e

        pools = data if isinstance(data, list) else (data.get("data") if isinstance(data, dict) else None)
        if not isinstance(pools, list) or not pools:
            raise RuntimeError("No pools returned")
        return pools

    def best_chain_yields(self, chains: Iterable[str]) -> list[ChainYield]:
        """Best USDC pool per chain after TVL, APY and project filters.

        Raises:
            RuntimeError: If the request fails or no pool matches
        """
        targets = list(chains)
        wanted = set(targets)
        best: dict[str, ChainYield] = {}

        for pool in self.get_pools():
            chain = _normalize_chain(pool.get("chain"))
            if chain not in wanted:
                continue
            if "USDC" not in str(pool.get("symbol", "")).upper():
                continue
            try:
                tvl = float(pool.get("tvlUsd") or pool.get("tvl") or 0.0)
            except (TypeError, ValueError):
                continue
            if tvl < self.config.min_tvl_usd:
                continue
            apy = _pool_apy(pool)
            if apy is None or apy <= 0 or apy > self.config.max_apy_pct:
                continue
            project = str(pool.get("project") or pool.get("protocol") or "").lower()
            if not self._project_allowed(project):
                continue

            current = best.get(chain)
            if current is None or apy > current.apy:
                best[chain] = ChainYield(chain=chain, protocol=project or "unknown", apy=apy, tvl=tvl)

        if not best:
            raise RuntimeError("No matching USDC pools found")

        for chain_yield in best.values():
            logger.info(
                f"[DefiLlama] {chain_yield.chain}: {chain_yield.protocol} "
                f"{chain_yield.apy:.2f}% (tvl ${chain_yield.tvl:,.0f})"
            )
        return [best[c] for c in targets if c in best]
