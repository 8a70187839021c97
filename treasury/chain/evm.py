"""Shared web3 signing helper.

web3's HTTP provider is blocking; every call is pushed to a worker thread.
Transactions from one signer are serialized so nonces never race.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from eth_account import Account
from web3 import Web3

from treasury.errors import ProtocolCallError

logger = logging.getLogger(__name__)

MAX_UINT256 = 2**256 - 1


def to_bytes32(value: int | str) -> bytes:
    """Left-pad an int or hex string (address, Sui address) to 32 bytes."""
    if isinstance(value, int):
        return value.to_bytes(32, "big")
    raw = bytes.fromhex(value[2:] if value.startswith("0x") else value)
    if len(raw) > 32:
        raise ValueError(f"Value does not fit in bytes32: {value}")
    return raw.rjust(32, b"\x00")


class EvmTransactor:
    """One signer on one chain."""

    def __init__(
        self,
        *,
        rpc_url: str,
        private_key: str,
        receipt_timeout: float = 120.0,
        web3: Optional[Web3] = None,
    ) -> None:
        self.w3 = web3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
        self._account = Account.from_key(private_key)
        self.receipt_timeout = receipt_timeout
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"EvmTransactor(address={self.address})"

    @property
    def address(self) -> str:
        return self._account.address

    def contract(self, address: str, abi: list[dict[str, Any]]) -> Any:
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def call(self, fn: Any, *, label: str) -> Any:
        try:
            return await asyncio.to_thread(fn.call)
        except Exception as e:
            raise ProtocolCallError(label, e) from e

    async def block_number(self) -> int:
        return int(await asyncio.to_thread(lambda: self.w3.eth.block_number))

    async def transact(self, fn: Any, *, label: str) -> str:
        """Sign, send and wait for a contract call. Returns the tx hash (0x hex)."""
        async with self._lock:
            try:
                tx_hash = await asyncio.to_thread(self._send, fn)
            except Exception as e:
                raise ProtocolCallError(label, e) from e
        logger.debug(f"{label} confirmed: {tx_hash}")
        return tx_hash

    def _send(self, fn: Any) -> str:
        nonce = self.w3.eth.get_transaction_count(self.address, "pending")
        tx = fn.build_transaction(
            {
                "from": self.address,
                "nonce": nonce,
                "chainId": self.w3.eth.chain_id,
            }
        )
        signed = self._account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt["status"] != 1:
            raise RuntimeError(f"transaction {Web3.to_hex(tx_hash)} reverted")
        return Web3.to_hex(tx_hash)

    async def ensure_allowance(self, token: Any, spender: str, amount: int, *, label: str) -> Optional[str]:
        """Approve `spender` for max when the current allowance is below `amount`."""
        allowance = await self.call(
            token.functions.allowance(self.address, Web3.to_checksum_address(spender)),
            label=f"{label} allowance",
        )
        if int(allowance) >= amount:
            return None
        logger.info(f"Approving {spender} for {label}")
        return await self.transact(
            token.functions.approve(Web3.to_checksum_address(spender), MAX_UINT256),
            label=f"{label} approve",
        )
