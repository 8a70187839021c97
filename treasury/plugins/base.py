"""Strategy plugin contract.

Every venue adapter implements `StrategyPlugin`:

- ``monitor(ctx)`` observes yields; never mutates shared state and degrades to
  synthetic values instead of raising.
- ``evaluate(ranking, ctx)`` decides whether to act this cycle; it must also
  return True when positions are ready to unwind, whatever the yields say.
- ``execute(ctx)`` performs the multi-step transitions as a sequence of
  `StepResult`-returning steps. Durable records are only written after the
  external call they describe succeeded, so re-running after a partial
  failure never borrows or bridges twice.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Optional, Protocol, Sequence

from treasury.agent.ranker import Ranking
from treasury.chain.bridge import BridgeClient, PoolDepositClient
from treasury.chain.gateway import GatewayClient
from treasury.chain.lending import LendingClient
from treasury.chain.sui import BalanceReader
from treasury.chain.vault import VaultClient
from treasury.config import AgentConfig
from treasury.errors import (
    ConfigurationError,
    DataSourceError,
    InsufficientFundsError,
    PositionConflictError,
    ProtocolCallError,
)
from treasury.keystore.store import CustodialKeyStore
from treasury.positions.tracker import PositionTracker
from treasury.telemetry.logger import AgentLogger
from treasury.types import DepositInfo, DepositorPolicy, RebalanceAction, YieldOpportunity

StepStatus = Literal["ok", "failed", "skipped"]


@dataclass(frozen=True)
class StepResult:
    """Outcome of one execute step.

    `failed` means the external call was attempted and did not succeed;
    `skipped` means nothing was attempted (precondition not met).
    """

    step: str
    status: StepStatus
    value: Any = None
    reason: str = ""

    @classmethod
    def success(cls, step: str, value: Any = None) -> StepResult:
        return cls(step=step, status="ok", value=value)

    @classmethod
    def failure(cls, step: str, reason: str) -> StepResult:
        return cls(step=step, status="failed", reason=reason)

    @classmethod
    def skip(cls, step: str, reason: str) -> StepResult:
        return cls(step=step, status="skipped", reason=reason)

    @property
    def ok(self) -> bool:
        return self.status == "ok"


async def attempt(step: str, call: Awaitable[Any]) -> StepResult:
    """Await an external call and convert expected failures to a `StepResult`."""
    try:
        value = await call
    except InsufficientFundsError as e:
        return StepResult.skip(step, str(e))
    except (ProtocolCallError, DataSourceError, PositionConflictError, ConfigurationError) as e:
        return StepResult.failure(step, str(e))
    return StepResult.success(step, value)


@dataclass
class PluginContext:
    """Collaborators shared by every plugin for the lifetime of the scheduler."""

    config: AgentConfig
    vault: VaultClient
    tracker: PositionTracker
    logger: AgentLogger
    keys: Optional[CustodialKeyStore] = None
    gateway: Optional[GatewayClient] = None
    lending: Optional[LendingClient] = None
    bridge: Optional[BridgeClient] = None
    pool: Optional[PoolDepositClient] = None
    sui: Optional[BalanceReader] = None
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    def require(self, name: str) -> Any:
        client = getattr(self, name)
        if client is None:
            raise ConfigurationError(f"Plugin context has no {name} client")
        return client


class StrategyPlugin(Protocol):
    name: str

    async def monitor(self, ctx: PluginContext) -> Sequence[YieldOpportunity]:
        ...

    async def evaluate(self, ranking: Ranking, ctx: PluginContext) -> bool:
        ...

    async def execute(self, ctx: PluginContext) -> Sequence[RebalanceAction]:
        ...


@dataclass(frozen=True)
class Eligibility:
    deposit: DepositInfo
    policy: DepositorPolicy
    outstanding: int
    reason: str = ""

    @property
    def eligible(self) -> bool:
        return not self.reason


async def check_depositor(
    vault: VaultClient,
    depositor: str,
    *,
    strategies: Optional[Sequence[str]] = None,
) -> Eligibility:
    """Read deposit, policy and borrow state and say why (if) the depositor is skipped."""
    deposit = await vault.get_deposit(depositor)
    policy = await vault.get_policy(depositor)
    reason = ""
    outstanding = 0
    if not deposit.active:
        reason = "deposit not active"
    elif not policy.enabled:
        reason = "policy not enabled"
    elif strategies is not None and policy.strategy not in strategies:
        reason = f"strategy {policy.strategy or 'none'} not handled"
    else:
        outstanding = (await vault.get_borrow(depositor)).amount
        if outstanding > 0:
            reason = "already has active borrow"
    return Eligibility(deposit=deposit, policy=policy, outstanding=outstanding, reason=reason)


def borrow_amount(deposit_amount: int, max_borrow: int, divisor: int) -> int:
    """Borrow up to the policy cap, never more than deposit // divisor."""
    return max(0, min(max_borrow, deposit_amount // divisor))


def short(address: str) -> str:
    return f"{address[:10]}..."


class VenuePlugin:
    """Shared logging helpers; `tag` prefixes every line (``[Tag] message``)."""

    name: str = ""
    tag: str = ""

    def _log(self, ctx: PluginContext, level: int, message: str, **metadata: Any) -> None:
        ctx.logger.log(level, f"[{self.tag}] {message}", metadata)

    def info(self, ctx: PluginContext, message: str, **metadata: Any) -> None:
        self._log(ctx, logging.INFO, message, **metadata)

    def warning(self, ctx: PluginContext, message: str, **metadata: Any) -> None:
        self._log(ctx, logging.WARNING, message, **metadata)

    def error(self, ctx: PluginContext, message: str, **metadata: Any) -> None:
        self._log(ctx, logging.ERROR, message, **metadata)

    def report(self, ctx: PluginContext, result: StepResult, depositor: Optional[str] = None) -> None:
        """Log a step that did not succeed; failures are balance-relevant."""
        if result.ok:
            return
        if result.status == "failed":
            self.error(ctx, f"{result.step} failed: {result.reason}", depositor=depositor, relevant=True)
        else:
            self.info(ctx, f"{result.step} skipped: {result.reason}", depositor=depositor)
