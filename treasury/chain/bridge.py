"""Bridge and external pool clients.

Bridges are asynchronous: `initiate` returns once the source-side burn is
confirmed; arrival is observed later by polling the destination balance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from treasury.chain.abi import CCTP_TOKEN_MESSENGER_ABI, ERC20_ABI
from treasury.chain.evm import EvmTransactor, to_bytes32
from treasury.errors import InsufficientFundsError, ProtocolCallError
from treasury.keystore.keys import SecondaryKeypair
from treasury.types import format_usdc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BridgeTransfer:
    amount: int
    tx_ref: Optional[str]
    mocked: bool = False


@dataclass(frozen=True)
class PoolReceipt:
    """Result of a pool deposit or withdrawal."""

    amount: int
    pool_shares: int
    tx_ref: Optional[str]
    mocked: bool = False


class BridgeClient(Protocol):
    protocol: str
    source_chain: str

    async def source_balance(self) -> int:
        ...

    async def initiate(self, amount: int, recipient: str) -> BridgeTransfer:
        ...


class PoolDepositClient(Protocol):
    """Deposits into (and redeems from) an external liquidity pool on behalf of a custodial key."""

    async def deposit(self, keypair: SecondaryKeypair, pool_key: str, amount: int) -> PoolReceipt:
        ...

    async def withdraw(self, keypair: SecondaryKeypair, pool_key: str, pool_shares: int) -> PoolReceipt:
        ...


class UnsupportedPoolClient:
    """Live stand-in for a pool venue with no Python client.

    Every call raises `ProtocolCallError`, so a pending bridge stays pending and
    no position is recorded for a deposit that did not happen.
    """

    def __init__(self, venue: str = "DeepBook") -> None:
        self.venue = venue

    def _unsupported(self, operation: str) -> ProtocolCallError:
        return ProtocolCallError(operation, RuntimeError(f"{self.venue} deposits are not supported in live mode"))

    async def deposit(self, keypair: SecondaryKeypair, pool_key: str, amount: int) -> PoolReceipt:
        raise self._unsupported("pool deposit")

    async def withdraw(self, keypair: SecondaryKeypair, pool_key: str, pool_shares: int) -> PoolReceipt:
        raise self._unsupported("pool withdraw")


class CctpBridgeClient:
    """USDC burn on the source chain through the CCTP TokenMessenger.

    The destination mint is relayed off-chain; the agent only observes the
    recipient's balance.
    """

    def __init__(
        self,
        transactor: EvmTransactor,
        *,
        source_chain: str,
        usdc_address: str,
        token_messenger: str,
        destination_domain: int,
        protocol: str = "Wormhole CCTP",
    ) -> None:
        self._tx = transactor
        self.source_chain = source_chain
        self.protocol = protocol
        self._usdc = transactor.contract(usdc_address, ERC20_ABI)
        self._messenger_address = token_messenger
        self._messenger = transactor.contract(token_messenger, CCTP_TOKEN_MESSENGER_ABI)
        self._destination_domain = destination_domain

    async def source_balance(self) -> int:
        return int(await self._tx.call(self._usdc.functions.balanceOf(self._tx.address), label="bridge source balance"))

    async def initiate(self, amount: int, recipient: str) -> BridgeTransfer:
        balance = await self.source_balance()
        if balance < amount:
            raise InsufficientFundsError(required=amount, available=balance, where=f"{self.source_chain} USDC wallet")
        await self._tx.ensure_allowance(self._usdc, self._messenger_address, amount, label="CCTP burn")
        tx_hash = await self._tx.transact(
            self._messenger.functions.depositForBurn(
                amount,
                self._destination_domain,
                to_bytes32(recipient),
                self._usdc.address,
            ),
            label="depositForBurn",
        )
        logger.info(f"Burned {format_usdc(amount)} USDC on {self.source_chain} for {recipient}: {tx_hash}")
        return BridgeTransfer(amount=amount, tx_ref=tx_hash, mocked=False)
