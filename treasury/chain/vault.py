"""Vault contract client (home chain).

The vault is an external collaborator: the agent only reads depositor state
and calls the agent-gated borrow/repay/withdraw primitives.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from web3 import Web3

from treasury.chain.abi import TREASURY_VAULT_ABI
from treasury.chain.evm import EvmTransactor, to_bytes32
from treasury.types import BorrowInfo, DepositInfo, DepositorPolicy, VaultStats, WithdrawRequest

logger = logging.getLogger(__name__)

ZERO_BYTES32 = "0x" + "00" * 32


class VaultClient(Protocol):
    """Vault capability contract consumed by the plugins."""

    async def get_stats(self) -> VaultStats:
        ...

    async def list_depositors(self, *, lookback_blocks: int, chunk_size: int) -> Sequence[str]:
        ...

    async def get_deposit(self, depositor: str) -> DepositInfo:
        ...

    async def get_policy(self, depositor: str) -> DepositorPolicy:
        ...

    async def get_borrow(self, depositor: str) -> BorrowInfo:
        ...

    async def get_withdraw_request(self, depositor: str) -> WithdrawRequest:
        ...

    async def get_secondary_address(self, depositor: str) -> Optional[str]:
        ...

    async def set_secondary_address(self, depositor: str, address: str) -> str:
        ...

    async def borrow(self, depositor: str, amount: int, token: str) -> str:
        ...

    async def repay(self, depositor: str, amount: int) -> str:
        ...

    async def process_withdraw(self, depositor: str) -> str:
        ...


def block_ranges(start: int, end: int, chunk_size: int) -> list[tuple[int, int]]:
    """Split [start, end] into inclusive ranges of at most `chunk_size` blocks."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    ranges = []
    cursor = start
    while cursor <= end:
        upper = min(cursor + chunk_size - 1, end)
        ranges.append((cursor, upper))
        cursor = upper + 1
    return ranges


class Web3VaultClient:
    """web3.py implementation of `VaultClient`."""

    def __init__(self, transactor: EvmTransactor, vault_address: str) -> None:
        self._tx = transactor
        self._vault = transactor.contract(vault_address, TREASURY_VAULT_ABI)

    @staticmethod
    def _addr(depositor: str) -> str:
        return Web3.to_checksum_address(depositor)

    async def get_stats(self) -> VaultStats:
        tvl, borrowed, users = await self._tx.call(self._vault.functions.getVaultStats(), label="getVaultStats")
        return VaultStats(tvl=int(tvl), total_borrowed=int(borrowed), num_users=int(users))

    async def list_depositors(self, *, lookback_blocks: int, chunk_size: int) -> Sequence[str]:
        """Depositors seen in `Deposited` events over the lookback window, first-seen order."""
        latest = await self._tx.block_number()
        start = max(0, latest - lookback_blocks)
        seen: dict[str, None] = {}
        for lower, upper in block_ranges(start, latest, chunk_size):
            events = await self._tx.call(
                _EventQuery(self._vault.events.Deposited, lower, upper),
                label=f"Deposited logs {lower}-{upper}",
            )
            for event in events:
                seen.setdefault(str(event["args"]["user"]).lower(), None)
        return list(seen)

    async def get_deposit(self, depositor: str) -> DepositInfo:
        amount, timestamp, active = await self._tx.call(
            self._vault.functions.userDeposits(self._addr(depositor)), label="userDeposits"
        )
        return DepositInfo(amount=int(amount), timestamp=int(timestamp), active=bool(active))

    async def get_policy(self, depositor: str) -> DepositorPolicy:
        threshold, max_borrow, enabled, strategy = await self._tx.call(
            self._vault.functions.getPolicy(self._addr(depositor)), label="getPolicy"
        )
        return DepositorPolicy(
            yield_threshold_bps=int(threshold),
            max_borrow_amount=int(max_borrow),
            enabled=bool(enabled),
            strategy=str(strategy),
        )

    async def get_borrow(self, depositor: str) -> BorrowInfo:
        amount, borrow_time, token = await self._tx.call(
            self._vault.functions.getBorrowedRWA(self._addr(depositor)), label="getBorrowedRWA"
        )
        return BorrowInfo(amount=int(amount), borrow_time=int(borrow_time), rwa_token=str(token))

    async def get_withdraw_request(self, depositor: str) -> WithdrawRequest:
        amount, requested_at, pending = await self._tx.call(
            self._vault.functions.getWithdrawRequest(self._addr(depositor)), label="getWithdrawRequest"
        )
        return WithdrawRequest(amount=int(amount), requested_at=int(requested_at), pending=bool(pending))

    async def get_secondary_address(self, depositor: str) -> Optional[str]:
        raw = await self._tx.call(self._vault.functions.getSuiAddress(self._addr(depositor)), label="getSuiAddress")
        value = Web3.to_hex(raw)
        if value == ZERO_BYTES32:
            return None
        return value.lower()

    async def set_secondary_address(self, depositor: str, address: str) -> str:
        return await self._tx.transact(
            self._vault.functions.setSuiAddressForUser(self._addr(depositor), to_bytes32(address)),
            label="setSuiAddressForUser",
        )

    async def borrow(self, depositor: str, amount: int, token: str) -> str:
        return await self._tx.transact(
            self._vault.functions.borrowRWA(self._addr(depositor), amount, Web3.to_checksum_address(token)),
            label="borrowRWA",
        )

    async def repay(self, depositor: str, amount: int) -> str:
        return await self._tx.transact(
            self._vault.functions.repayRWAFor(self._addr(depositor), amount),
            label="repayRWAFor",
        )

    async def process_withdraw(self, depositor: str) -> str:
        return await self._tx.transact(
            self._vault.functions.processWithdraw(self._addr(depositor)),
            label="processWithdraw",
        )


class _EventQuery:
    """Adapts an event log query to the `.call()` shape `EvmTransactor.call` expects."""

    def __init__(self, event, from_block: int, to_block: int) -> None:
        self._event = event
        self._from = from_block
        self._to = to_block

    def call(self):
        return self._event.get_logs(from_block=self._from, to_block=self._to)
