"""Aave v3 style lending market client (supply side only)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from treasury.chain.abi import AAVE_V3_DATA_PROVIDER_ABI, AAVE_V3_POOL_ABI, ERC20_ABI
from treasury.chain.evm import EvmTransactor
from treasury.errors import ProtocolCallError

logger = logging.getLogger(__name__)

RAY = 10**27

# Aave v3 on Base Sepolia
DEFAULT_AAVE_POOL = "0x07eA79F68B2B3df564D0A34F8e19D9B1e339814b"
DEFAULT_AAVE_DATA_PROVIDER = "0xBc9f5b7E248451CdD7cA54e717a2BFe1F32b566b"


@dataclass(frozen=True)
class LendingMarket:
    chain: str
    protocol: str
    pool_address: str
    data_provider_address: str
    asset_address: str
    a_token_address: Optional[str] = None


def ray_to_apy_pct(liquidity_rate: int, *, minimum: float = 0.0, maximum: float = 100.0) -> float:
    """Convert an Aave liquidity rate (ray, per year) to a clamped percentage."""
    value = liquidity_rate / RAY * 100
    return max(minimum, min(maximum, value))


class LendingClient(Protocol):
    market: LendingMarket

    async def supply_apy(self) -> Optional[float]:
        ...

    async def supply(self, amount: int) -> str:
        ...

    async def withdraw(self, amount: int) -> str:
        ...


class AaveV3LendingClient:
    def __init__(
        self,
        transactor: EvmTransactor,
        market: LendingMarket,
        *,
        apy_min_pct: float = 0.0,
        apy_max_pct: float = 100.0,
    ) -> None:
        self._tx = transactor
        self.market = market
        self._apy_min = apy_min_pct
        self._apy_max = apy_max_pct
        self._pool = transactor.contract(market.pool_address, AAVE_V3_POOL_ABI)
        self._data_provider = transactor.contract(market.data_provider_address, AAVE_V3_DATA_PROVIDER_ABI)

    async def supply_apy(self) -> Optional[float]:
        """Current supply APY in percent, or None when the reserve cannot be read."""
        try:
            reserve = await self._tx.call(
                self._data_provider.functions.getReserveData(self.market.asset_address),
                label="getReserveData",
            )
        except ProtocolCallError as e:
            logger.warning(f"Aave reserve data unavailable on {self.market.chain}: {e}")
            return None
        return ray_to_apy_pct(int(reserve[5]), minimum=self._apy_min, maximum=self._apy_max)

    async def supply(self, amount: int) -> str:
        asset = self._tx.contract(self.market.asset_address, ERC20_ABI)
        await self._tx.ensure_allowance(asset, self.market.pool_address, amount, label=f"{self.market.protocol} supply")
        return await self._tx.transact(
            self._pool.functions.supply(asset.address, amount, self._tx.address, 0),
            label=f"{self.market.protocol} supply",
        )

    async def withdraw(self, amount: int) -> str:
        asset = self._tx.contract(self.market.asset_address, ERC20_ABI)
        return await self._tx.transact(
            self._pool.functions.withdraw(asset.address, amount, self._tx.address),
            label=f"{self.market.protocol} withdraw",
        )
