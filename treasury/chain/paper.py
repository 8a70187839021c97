"""Paper (simulated) chain clients.

Every client keeps its state in memory and never signs anything. They back
dry-run mode and double as fakes in tests. Balances live in a shared
`PaperLedger` so a borrow on the vault funds a later gateway deposit, a
bridge burn funds the destination address, and so on.

Failures can be injected per operation with `fail("<operation>")`.
"""

from __future__ import annotations

import itertools
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional, Sequence

from treasury.chain.bridge import BridgeTransfer, PoolReceipt
from treasury.chain.lending import LendingMarket
from treasury.errors import InsufficientFundsError, ProtocolCallError
from treasury.keystore.keys import SecondaryKeypair
from treasury.types import BorrowInfo, DepositInfo, DepositorPolicy, VaultStats, WithdrawRequest

_tx_counter = itertools.count(1)


def paper_tx_ref(prefix: str) -> str:
    return f"paper-{prefix}-{next(_tx_counter)}"


class PaperLedger:
    """USDC balances keyed by account (chain name for agent wallets, address otherwise)."""

    def __init__(self, balances: Optional[dict[str, int]] = None) -> None:
        self._balances: defaultdict[str, int] = defaultdict(int, balances or {})

    def balance(self, account: str) -> int:
        return self._balances[account.lower()]

    def credit(self, account: str, amount: int) -> None:
        self._balances[account.lower()] += amount

    def debit(self, account: str, amount: int) -> None:
        available = self.balance(account)
        if available < amount:
            raise InsufficientFundsError(required=amount, available=available, where=account)
        self._balances[account.lower()] -= amount

    def snapshot(self) -> dict[str, int]:
        return {k: v for k, v in self._balances.items() if v}


class _FailureInjection:
    def __init__(self) -> None:
        self._failures: dict[str, list[str]] = defaultdict(list)
        self.calls: list[tuple] = []

    def fail(self, operation: str, message: str = "simulated failure", *, times: int = 1) -> None:
        """Make the next `times` calls of `operation` raise `ProtocolCallError`."""
        self._failures[operation].extend([message] * times)

    def _call(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        pending = self._failures.get(operation)
        if pending:
            raise ProtocolCallError(operation, RuntimeError(pending.pop(0)))

    def called(self, operation: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == operation]


@dataclass
class PaperDepositor:
    deposit: DepositInfo
    policy: DepositorPolicy
    borrowed: int = 0
    borrow_time: int = 0
    withdraw_request: WithdrawRequest = field(default_factory=lambda: WithdrawRequest(0, 0, False))
    secondary_address: Optional[str] = None


class PaperVault(_FailureInjection):
    """In-memory vault; borrowed USDC lands in the agent's home wallet on the ledger."""

    def __init__(self, *, ledger: Optional[PaperLedger] = None, home_chain: str = "arc") -> None:
        super().__init__()
        self.ledger = ledger or PaperLedger()
        self.home_chain = home_chain
        self.depositors: dict[str, PaperDepositor] = {}

    def add_depositor(
        self,
        depositor: str,
        amount: int,
        *,
        max_borrow: int,
        strategy: str = "RWA_Loan",
        enabled: bool = True,
        active: bool = True,
        threshold_bps: int = 500,
    ) -> PaperDepositor:
        record = PaperDepositor(
            deposit=DepositInfo(amount=amount, timestamp=0, active=active),
            policy=DepositorPolicy(
                yield_threshold_bps=threshold_bps,
                max_borrow_amount=max_borrow,
                enabled=enabled,
                strategy=strategy,
            ),
        )
        self.depositors[depositor.lower()] = record
        return record

    def request_withdraw(self, depositor: str, amount: int, requested_at: int = 0) -> None:
        self._get(depositor).withdraw_request = WithdrawRequest(amount=amount, requested_at=requested_at, pending=True)

    def outstanding(self, depositor: str) -> int:
        return self._get(depositor).borrowed

    def _get(self, depositor: str) -> PaperDepositor:
        record = self.depositors.get(depositor.lower())
        if record is None:
            record = PaperDepositor(
                deposit=DepositInfo(amount=0, timestamp=0, active=False),
                policy=DepositorPolicy(yield_threshold_bps=0, max_borrow_amount=0, enabled=False, strategy=""),
            )
        return record

    async def get_stats(self) -> VaultStats:
        self._call("get_stats")
        tvl = sum(d.deposit.amount for d in self.depositors.values() if d.deposit.active)
        borrowed = sum(d.borrowed for d in self.depositors.values())
        return VaultStats(tvl=tvl, total_borrowed=borrowed, num_users=len(self.depositors))

    async def list_depositors(self, *, lookback_blocks: int, chunk_size: int) -> Sequence[str]:
        self._call("list_depositors", lookback_blocks, chunk_size)
        return list(self.depositors)

    async def get_deposit(self, depositor: str) -> DepositInfo:
        self._call("get_deposit", depositor)
        return self._get(depositor).deposit

    async def get_policy(self, depositor: str) -> DepositorPolicy:
        self._call("get_policy", depositor)
        return self._get(depositor).policy

    async def get_borrow(self, depositor: str) -> BorrowInfo:
        self._call("get_borrow", depositor)
        record = self._get(depositor)
        return BorrowInfo(amount=record.borrowed, borrow_time=record.borrow_time, rwa_token="")

    async def get_withdraw_request(self, depositor: str) -> WithdrawRequest:
        self._call("get_withdraw_request", depositor)
        return self._get(depositor).withdraw_request

    async def get_secondary_address(self, depositor: str) -> Optional[str]:
        self._call("get_secondary_address", depositor)
        return self._get(depositor).secondary_address

    async def set_secondary_address(self, depositor: str, address: str) -> str:
        self._call("set_secondary_address", depositor, address)
        self.depositors[depositor.lower()].secondary_address = address.lower()
        return paper_tx_ref("vault")

    async def borrow(self, depositor: str, amount: int, token: str) -> str:
        self._call("borrow", depositor, amount, token)
        record = self.depositors[depositor.lower()]
        record.borrowed += amount
        self.ledger.credit(self.home_chain, amount)
        return paper_tx_ref("vault")

    async def repay(self, depositor: str, amount: int) -> str:
        self._call("repay", depositor, amount)
        record = self.depositors[depositor.lower()]
        if amount > record.borrowed:
            raise ProtocolCallError("repay", RuntimeError("repay exceeds outstanding borrow"))
        record.borrowed -= amount
        # Simulated yield never reached the ledger; only debit what is there.
        self.ledger.debit(self.home_chain, min(amount, self.ledger.balance(self.home_chain)))
        return paper_tx_ref("vault")

    async def process_withdraw(self, depositor: str) -> str:
        self._call("process_withdraw", depositor)
        record = self.depositors[depositor.lower()]
        request = record.withdraw_request
        record.deposit = DepositInfo(
            amount=max(0, record.deposit.amount - request.amount),
            timestamp=record.deposit.timestamp,
            active=record.deposit.amount - request.amount > 0,
        )
        record.withdraw_request = WithdrawRequest(0, 0, False)
        return paper_tx_ref("vault")


class PaperGateway(_FailureInjection):
    """Unified balance simulation: one balance shared by every chain."""

    def __init__(self, *, ledger: Optional[PaperLedger] = None, unified: int = 0) -> None:
        super().__init__()
        self.ledger = ledger or PaperLedger()
        self.unified = unified

    async def usdc_balance(self, chain: str) -> int:
        self._call("usdc_balance", chain)
        return self.ledger.balance(chain)

    async def unified_balance(self, chain: str) -> int:
        self._call("unified_balance", chain)
        return self.unified

    async def deposit(self, chain: str, amount: int, *, destination: Optional[str] = None) -> str:
        self._call("deposit", chain, amount, destination)
        self.ledger.debit(chain, amount)
        if destination is None:
            self.unified += amount
        else:
            self.ledger.credit(destination, amount)
        return paper_tx_ref("gateway")

    async def mint(self, chain: str, amount: int) -> str:
        self._call("mint", chain, amount)
        if self.unified < amount:
            raise InsufficientFundsError(required=amount, available=self.unified, where="unified balance")
        self.unified -= amount
        self.ledger.credit(chain, amount)
        return paper_tx_ref("gateway")


class PaperLending(_FailureInjection):
    def __init__(
        self,
        *,
        ledger: Optional[PaperLedger] = None,
        chain: str = "base",
        apy: Optional[float] = 7.5,
    ) -> None:
        super().__init__()
        self.ledger = ledger or PaperLedger()
        self.market = LendingMarket(
            chain=chain,
            protocol="aave-v3",
            pool_address="paper-pool",
            data_provider_address="paper-data-provider",
            asset_address="paper-usdc",
            a_token_address="paper-ausdc",
        )
        self.apy = apy
        self.supplied = 0

    async def supply_apy(self) -> Optional[float]:
        self._call("supply_apy")
        return self.apy

    async def supply(self, amount: int) -> str:
        self._call("supply", amount)
        self.ledger.debit(self.market.chain, amount)
        self.supplied += amount
        return paper_tx_ref("lending")

    async def withdraw(self, amount: int) -> str:
        self._call("withdraw", amount)
        taken = min(amount, self.supplied)
        self.supplied -= taken
        self.ledger.credit(self.market.chain, taken)
        return paper_tx_ref("lending")


class PaperSuiBalances(_FailureInjection):
    """Sui-side USDC balances per address (reads the shared ledger)."""

    def __init__(self, *, ledger: Optional[PaperLedger] = None) -> None:
        super().__init__()
        self.ledger = ledger or PaperLedger()

    def set_balance(self, owner: str, amount: int) -> None:
        current = self.ledger.balance(owner)
        if amount >= current:
            self.ledger.credit(owner, amount - current)
        else:
            self.ledger.debit(owner, current - amount)

    async def usdc_balance(self, owner: str) -> int:
        self._call("usdc_balance", owner)
        return self.ledger.balance(owner)


class PaperBridge(_FailureInjection):
    """Burns on the source wallet and credits `arrival_fraction` of it to the recipient."""

    def __init__(
        self,
        *,
        ledger: Optional[PaperLedger] = None,
        source_chain: str = "base",
        protocol: str = "Wormhole CCTP",
        arrival_fraction: float = 1.0,
    ) -> None:
        super().__init__()
        self.ledger = ledger or PaperLedger()
        self.source_chain = source_chain
        self.protocol = protocol
        self.arrival_fraction = arrival_fraction

    async def source_balance(self) -> int:
        self._call("source_balance")
        return self.ledger.balance(self.source_chain)

    async def initiate(self, amount: int, recipient: str) -> BridgeTransfer:
        self._call("initiate", amount, recipient)
        self.ledger.debit(self.source_chain, amount)
        self.ledger.credit(recipient, int(amount * self.arrival_fraction))
        return BridgeTransfer(amount=amount, tx_ref=paper_tx_ref("bridge"), mocked=True)


class PaperPool(_FailureInjection):
    """External pool simulation: one share per minor unit deposited.

    A withdrawal returns the redeemed USDC to the agent's home wallet.
    """

    def __init__(
        self,
        *,
        ledger: Optional[PaperLedger] = None,
        home_chain: str = "arc",
    ) -> None:
        super().__init__()
        self.ledger = ledger or PaperLedger()
        self.home_chain = home_chain
        self.shares: defaultdict[str, int] = defaultdict(int)

    async def deposit(self, keypair: SecondaryKeypair, pool_key: str, amount: int) -> PoolReceipt:
        self._call("deposit", keypair.address, pool_key, amount)
        self.ledger.debit(keypair.address, amount)
        self.shares[keypair.address] += amount
        return PoolReceipt(amount=amount, pool_shares=amount, tx_ref=paper_tx_ref("pool"), mocked=True)

    async def withdraw(self, keypair: SecondaryKeypair, pool_key: str, pool_shares: int) -> PoolReceipt:
        self._call("withdraw", keypair.address, pool_key, pool_shares)
        redeemed = min(pool_shares, self.shares[keypair.address])
        self.shares[keypair.address] -= redeemed
        self.ledger.credit(self.home_chain, redeemed)
        return PoolReceipt(amount=redeemed, pool_shares=redeemed, tx_ref=paper_tx_ref("pool"), mocked=True)
