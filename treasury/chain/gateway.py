"""Circle Gateway (unified balance) client.

Depositing USDC into the gateway wallet on any chain credits the signer's
unified balance; minting on a chain debits it. A deposit may also name a
destination domain and recipient, in which case the attested mint happens on
the destination without a separate call.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Protocol

from treasury.chain.abi import ERC20_ABI, GATEWAY_MINTER_ABI, GATEWAY_WALLET_ABI
from treasury.chain.evm import EvmTransactor, to_bytes32
from treasury.config import ChainConfig
from treasury.errors import ConfigurationError, InsufficientFundsError
from treasury.types import format_usdc

logger = logging.getLogger(__name__)


class GatewayClient(Protocol):
    async def usdc_balance(self, chain: str) -> int:
        ...

    async def unified_balance(self, chain: str) -> int:
        ...

    async def deposit(self, chain: str, amount: int, *, destination: Optional[str] = None) -> str:
        ...

    async def mint(self, chain: str, amount: int) -> str:
        ...


class Web3GatewayClient:
    """One signer per chain; chain names match `CHAIN_DOMAINS`."""

    def __init__(self, transactors: Mapping[str, EvmTransactor], chains: Mapping[str, ChainConfig]) -> None:
        self._transactors = dict(transactors)
        self._chains = dict(chains)

    def _on(self, chain: str) -> tuple[EvmTransactor, ChainConfig]:
        if chain not in self._transactors or chain not in self._chains:
            raise ConfigurationError(f"Gateway chain {chain} is not configured")
        return self._transactors[chain], self._chains[chain]

    async def usdc_balance(self, chain: str) -> int:
        tx, cfg = self._on(chain)
        usdc = tx.contract(cfg.usdc_address, ERC20_ABI)
        return int(await tx.call(usdc.functions.balanceOf(tx.address), label=f"{chain} USDC balanceOf"))

    async def unified_balance(self, chain: str) -> int:
        tx, cfg = self._on(chain)
        minter = tx.contract(cfg.gateway_minter, GATEWAY_MINTER_ABI)
        return int(await tx.call(minter.functions.unifiedBalance(tx.address), label=f"{chain} unifiedBalance"))

    async def deposit(self, chain: str, amount: int, *, destination: Optional[str] = None) -> str:
        tx, cfg = self._on(chain)
        balance = await self.usdc_balance(chain)
        if balance < amount:
            raise InsufficientFundsError(required=amount, available=balance, where=f"{chain} USDC wallet")

        usdc = tx.contract(cfg.usdc_address, ERC20_ABI)
        await tx.ensure_allowance(usdc, cfg.gateway_wallet, amount, label=f"{chain} gateway")

        wallet = tx.contract(cfg.gateway_wallet, GATEWAY_WALLET_ABI)
        if destination is None:
            fn = wallet.get_function_by_signature("deposit(uint256)")(amount)
        else:
            _, dest_cfg = self._on(destination)
            fn = wallet.get_function_by_signature("deposit(uint256,bytes32,bytes32)")(
                amount,
                to_bytes32(dest_cfg.domain),
                to_bytes32(tx.address),
            )
        tx_hash = await tx.transact(fn, label=f"{chain} gateway deposit")
        logger.info(f"Deposited {format_usdc(amount)} USDC to gateway on {chain}")
        return tx_hash

    async def mint(self, chain: str, amount: int) -> str:
        tx, cfg = self._on(chain)
        unified = await self.unified_balance(chain)
        if unified < amount:
            raise InsufficientFundsError(required=amount, available=unified, where="unified balance")
        minter = tx.contract(cfg.gateway_minter, GATEWAY_MINTER_ABI)
        tx_hash = await tx.transact(minter.functions.mint(amount), label=f"{chain} gateway mint")
        logger.info(f"Minted {format_usdc(amount)} USDC on {chain}")
        return tx_hash
