"""External liquidity pool yield (DeepBook on Sui).

Lifecycle per depositor (family "pool"):

    borrow -> bridge (pending bridge) -> arrival observed -> pool deposit
    (active position, venue = pool key) -> withdraw requested + hold time
    -> funds returned (closed position) -> repay -> processWithdraw -> deleted

Each depositor gets a custodial Sui key; its address is registered on the
vault and is the bridge recipient. Arrival is polled through Sui JSON-RPC and
counts once at least `arrival_ratio` of the expected amount is visible; a
poll that runs out of attempts leaves the pending bridge for a later cycle.
A bridge that fails after the borrow is recorded as a blocked transfer to
"sui" and retried without borrowing again.
"""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import Optional, Sequence

from treasury.agent.ranker import Ranking
from treasury.config import HOME_CHAIN, PoolYieldConfig
from treasury.errors import ConfigurationError
from treasury.keystore.keys import SecondaryKeypair
from treasury.market_data.deepbook import DeepBookYieldSource, PoolYield
from treasury.plugins.base import (
    PluginContext,
    StepResult,
    VenuePlugin,
    attempt,
    borrow_amount,
    check_depositor,
    short,
)
from treasury.types import GatewayPosition, PendingBridge, Position, RebalanceAction, YieldOpportunity, format_usdc

logger = logging.getLogger(__name__)

FAMILY = "pool"
VENUE = "sui"
PROTOCOL = "DeepBook"
STRATEGY_TAG = "DeFi_Yield"
LIVE_CONFIDENCE = 0.7
SYNTHETIC_CONFIDENCE = 0.35
YEAR_SECONDS = 365 * 24 * 3600
# Floor for simulated profit: 0.15% of principal.
MIN_PROFIT_DIVISOR = 666


def synthetic_profit(principal: int, apy_pct: float, held: timedelta) -> int:
    """Accrued yield for a simulated return, never below principal / 666."""
    years = max(held.total_seconds(), 0.0) / YEAR_SECONDS
    accrued = int(principal * (apy_pct / 100) * years)
    return max(principal // MIN_PROFIT_DIVISOR, accrued)


class PoolYieldPlugin(VenuePlugin):
    name = "pool-yield"
    tag = "Sui"

    def __init__(self, config: PoolYieldConfig, *, yield_source: Optional[DeepBookYieldSource] = None) -> None:
        self.config = config
        self.yield_source = yield_source or DeepBookYieldSource(
            indexer_url=config.resolved_indexer_url(),
            pool_keys=config.pool_keys,
        )
        self._best: Optional[PoolYield] = None
        self._enter = False
        self._logged_network = False

    @property
    def min_hold(self) -> timedelta:
        return timedelta(seconds=self.config.min_hold_seconds)

    # ========== monitor ==========

    async def monitor(self, ctx: PluginContext) -> Sequence[YieldOpportunity]:
        pools = await self.yield_source.fetch_pool_yields()
        if not pools:
            self._best = None
            return []
        best = pools[0]
        for pool in pools[1:]:
            if pool.apy > best.apy:
                best = pool
        self._best = best

        tracked = ctx.tracker.positions(FAMILY)
        if tracked:
            self.info(ctx, f"Tracking {len(tracked)} active position(s)")

        return [
            YieldOpportunity(
                venue=VENUE,
                yield_pct=best.apy,
                confidence=SYNTHETIC_CONFIDENCE if best.mocked else LIVE_CONFIDENCE,
                source="synthetic:deepbook" if best.mocked else f"deepbook-{best.pool_key}",
                strategy_tag=STRATEGY_TAG,
            )
        ]

    # ========== evaluate ==========

    async def evaluate(self, ranking: Ranking, ctx: PluginContext) -> bool:
        pool = ranking.for_venue(VENUE)
        home = ranking.for_venue(HOME_CHAIN)
        home_yield = home.yield_pct if home is not None else self.config.home_default_pct

        self._enter = (
            pool is not None
            and pool.yield_pct >= self.config.yield_threshold_pct
            and pool.yield_pct > home_yield + self.config.home_margin_pct
        )
        if self._enter:
            self.info(
                ctx,
                f"DeepBook yield {pool.yield_pct:.2f}% exceeds threshold "
                f"(min {self.config.yield_threshold_pct:.2f}%, Arc {home_yield:.2f}%) -> BRIDGE",
            )

        returns_ready = await self._returns_ready(ctx)
        bridges_ready = self._bridges_ready(ctx)
        blocked = bool(self._blocked(ctx))
        return self._enter or returns_ready or bridges_ready or blocked

    async def _returns_ready(self, ctx: PluginContext) -> bool:
        ready = False
        for position in ctx.tracker.positions(FAMILY):
            if position.status == "closed":
                ready = True
                continue
            request = await attempt("withdraw request", ctx.vault.get_withdraw_request(position.depositor))
            if not request.ok:
                self.report(ctx, request, position.depositor)
                continue
            if not request.value.pending:
                continue
            gate = ctx.tracker.hold_gate(position.opened_at, self.min_hold)
            if gate.ready:
                ready = True
            else:
                self.info(
                    ctx,
                    f"Withdraw pending for {short(position.depositor)} wait {gate.describe()} more",
                    depositor=position.depositor,
                )
        return ready

    def _bridges_ready(self, ctx: PluginContext) -> bool:
        ready = False
        for bridge in ctx.tracker.pending_bridges():
            gate = ctx.tracker.hold_gate(bridge.started_at, self.min_hold)
            if gate.ready:
                ready = True
            else:
                self.info(
                    ctx,
                    f"Pending bridge for {short(bridge.depositor)} wait {gate.describe()} more",
                    depositor=bridge.depositor,
                )
        return ready

    def _blocked(self, ctx: PluginContext) -> list[GatewayPosition]:
        return [s for s in ctx.tracker.staged_transfers(status="blocked") if s.destination_venue == VENUE]

    # ========== execute ==========

    async def execute(self, ctx: PluginContext) -> Sequence[RebalanceAction]:
        if not self._logged_network:
            self.info(ctx, f"Network set to {self.config.network} ({self.config.bridge_protocol})")
            self._logged_network = True

        actions: list[RebalanceAction] = []
        actions.extend(await self._drain_pending(ctx))

        for position in ctx.tracker.positions(FAMILY):
            actions.extend(await self._unwind(ctx, position))

        for staged in self._blocked(ctx):
            actions.extend(await self._resume(ctx, staged))

        if self._enter and self._best is not None:
            actions.extend(await self._open_new(ctx, self._best))
        return actions

    # ---------- custodial keys ----------

    def _keypair(self, ctx: PluginContext, depositor: str, *, create: bool = False) -> StepResult:
        keys = ctx.keys
        if keys is None:
            return StepResult.failure("custodial key", "no custodial key store configured")
        try:
            keypair = keys.ensure_key(depositor) if create else keys.get_key(depositor)
        except ConfigurationError as e:
            return StepResult.failure("custodial key", str(e))
        if keypair is None:
            return StepResult.failure("custodial key", f"missing Sui key for {depositor}")
        return StepResult.success("custodial key", keypair)

    async def _register_address(self, ctx: PluginContext, depositor: str, address: str) -> StepResult:
        onchain = await attempt("secondary address lookup", ctx.vault.get_secondary_address(depositor))
        if not onchain.ok:
            return onchain
        if onchain.value is not None and onchain.value.lower() == address.lower():
            return StepResult.success("register address")
        registered = await attempt("register address", ctx.vault.set_secondary_address(depositor, address))
        if registered.ok:
            self.info(ctx, f"Registered Sui address on-chain for {short(depositor)}", depositor=depositor)
        return registered

    # ---------- pending bridges ----------

    async def _await_arrival(self, ctx: PluginContext, bridge: PendingBridge) -> StepResult:
        sui = ctx.require("sui")
        required = math.ceil(bridge.amount * self.config.arrival_ratio)
        observed = 0
        attempts = max(1, self.config.arrival_poll_attempts)
        for i in range(attempts):
            read = await attempt("destination balance", sui.usdc_balance(bridge.destination_address))
            if read.ok:
                observed = read.value
                if observed >= required:
                    return StepResult.success("arrival", observed)
            else:
                self.report(ctx, read, bridge.depositor)
            if i < attempts - 1:
                await ctx.sleep(self.config.arrival_poll_interval_seconds)
        return StepResult.skip(
            "arrival",
            f"observed {format_usdc(observed)} of {format_usdc(bridge.amount)} USDC; bridge still pending",
        )

    async def _drain_pending(self, ctx: PluginContext) -> list[RebalanceAction]:
        actions = []
        for bridge in ctx.tracker.pending_bridges():
            depositor = bridge.depositor
            arrived = await self._await_arrival(ctx, bridge)
            if not arrived.ok:
                self.info(ctx, f"Awaiting USDC on Sui for {short(depositor)}: {arrived.reason}", depositor=depositor)
                continue

            amount = min(bridge.amount, arrived.value)
            if self.config.deposit_cap is not None:
                amount = min(amount, self.config.deposit_cap)
            if amount <= 0:
                continue

            key = self._keypair(ctx, depositor)
            if not key.ok:
                self.report(ctx, key, depositor)
                continue

            deposited = await attempt(
                "pool deposit",
                ctx.require("pool").deposit(key.value, bridge.target_pool_key, amount),
            )
            if not deposited.ok:
                self.report(ctx, deposited, depositor)
                continue

            receipt = deposited.value
            position = ctx.tracker.complete_bridge(
                bridge,
                family=FAMILY,
                venue=bridge.target_pool_key,
                deposited_amount=amount,
                pool_shares=receipt.pool_shares,
            )
            if position is None:
                continue
            actions.append(
                RebalanceAction(
                    kind="deposit",
                    venue=VENUE,
                    amount=amount,
                    details={
                        "depositor": depositor,
                        "protocol": PROTOCOL,
                        "pool": bridge.target_pool_key,
                        "apy": bridge.expected_apy,
                        "mocked": receipt.mocked,
                    },
                    tx_ref=receipt.tx_ref,
                )
            )
        return actions

    # ---------- returns ----------

    async def _unwind(self, ctx: PluginContext, position: Position) -> list[RebalanceAction]:
        tracker = ctx.tracker
        depositor = position.depositor
        actions: list[RebalanceAction] = []

        if position.status == "active":
            request = await attempt("withdraw request", ctx.vault.get_withdraw_request(depositor))
            if not request.ok:
                self.report(ctx, request, depositor)
                return actions
            if not request.value.pending:
                return actions

            gate = tracker.hold_gate(position.opened_at, self.min_hold)
            if not gate.ready:
                self.info(ctx, f"Withdraw pending for {short(depositor)} wait {gate.describe()} more", depositor=depositor)
                return actions

            self.info(ctx, f"Returning position for {short(depositor)}", depositor=depositor)
            returned = await self._return_funds(ctx, position)
            if not returned.ok:
                self.report(ctx, returned, depositor)
                return actions
            action = returned.value
            actions.append(action)
            position = tracker.mark_returned(position, returned_amount=action.amount)

        repaid = await self._repay(ctx, position)
        if not repaid.ok:
            self.report(ctx, repaid, depositor)
            return actions
        if repaid.value is not None:
            actions.append(repaid.value)
            # Only the unrepaid remainder may be repaid on a later retry.
            position = tracker.mark_returned(
                position, returned_amount=position.principal_amount - repaid.value.amount
            )

        processed = await self._process_withdraw(ctx, depositor)
        if not processed.ok:
            self.report(ctx, processed, depositor)
            return actions
        if processed.value is not None:
            actions.append(processed.value)

        tracker.close_position(depositor, FAMILY)
        return actions

    async def _return_funds(self, ctx: PluginContext, position: Position) -> StepResult:
        principal = position.principal_amount
        if self.config.return_mode == "redeem":
            key = self._keypair(ctx, position.depositor)
            if not key.ok:
                return key
            redeemed = await attempt(
                "pool withdraw",
                ctx.require("pool").withdraw(key.value, position.venue, position.pool_share_amount),
            )
            if not redeemed.ok:
                return redeemed
            receipt = redeemed.value
            returned, profit, mocked, tx_ref = receipt.amount, max(0, receipt.amount - principal), receipt.mocked, receipt.tx_ref
        else:
            apy = self._best.apy if self._best is not None else 8.0
            profit = synthetic_profit(principal, apy, ctx.tracker.now() - position.opened_at)
            returned, mocked, tx_ref = principal + profit, True, None

        self.info(
            ctx,
            f"Returned {format_usdc(returned)} USDC (profit: {format_usdc(profit)} USDC)"
            + (" [SIMULATED]" if mocked else ""),
            depositor=position.depositor,
        )
        return StepResult.success(
            "return",
            RebalanceAction(
                kind="withdraw",
                venue=VENUE,
                amount=returned,
                details={
                    "depositor": position.depositor,
                    "protocol": PROTOCOL,
                    "pool": position.venue,
                    "profit": profit,
                    "mocked": mocked,
                },
                tx_ref=tx_ref,
            ),
        )

    async def _repay(self, ctx: PluginContext, position: Position) -> StepResult:
        depositor = position.depositor
        if position.principal_amount <= 0:
            return StepResult.success("repay")
        borrow = await attempt("borrow lookup", ctx.vault.get_borrow(depositor))
        if not borrow.ok:
            return borrow
        outstanding = borrow.value.amount
        if outstanding == 0:
            self.info(ctx, f"No borrowed RWA for {short(depositor)}, skipping repay", depositor=depositor)
            return StepResult.success("repay")

        amount = min(position.principal_amount, outstanding)
        self.info(ctx, f"Repaying vault for {short(depositor)} ({format_usdc(amount)} USDC)", depositor=depositor)
        repaid = await attempt("repay", ctx.vault.repay(depositor, amount))
        if not repaid.ok:
            return repaid
        return StepResult.success(
            "repay",
            RebalanceAction(
                kind="repay",
                venue=HOME_CHAIN,
                amount=amount,
                details={"depositor": depositor, "from_chain": VENUE, "protocol": PROTOCOL},
                tx_ref=repaid.value,
            ),
        )

    async def _process_withdraw(self, ctx: PluginContext, depositor: str) -> StepResult:
        request = await attempt("withdraw request", ctx.vault.get_withdraw_request(depositor))
        if not request.ok:
            return request
        if not request.value.pending:
            return StepResult.success("process withdraw")

        processed = await attempt("process withdraw", ctx.vault.process_withdraw(depositor))
        if not processed.ok:
            return processed
        return StepResult.success(
            "process withdraw",
            RebalanceAction(
                kind="withdraw",
                venue=HOME_CHAIN,
                amount=request.value.amount,
                details={"depositor": depositor, "requested_at": request.value.requested_at},
                tx_ref=processed.value,
            ),
        )

    # ---------- new positions ----------

    async def _bridge(
        self,
        ctx: PluginContext,
        depositor: str,
        amount: int,
        keypair: SecondaryKeypair,
        pool_key: str,
        apy: Optional[float],
    ) -> StepResult:
        bridge = ctx.require("bridge")
        sent = await attempt("bridge", bridge.initiate(amount, keypair.address))
        if not sent.ok:
            return sent
        transfer = sent.value
        ctx.tracker.start_bridge(
            depositor=depositor,
            family=FAMILY,
            destination_address=keypair.address,
            amount=transfer.amount,
            target_pool_key=pool_key,
            tx_ref=transfer.tx_ref,
            expected_apy=apy,
        )
        self.info(
            ctx,
            f"{bridge.protocol} bridge queued for {short(depositor)}; "
            f"will deposit to {PROTOCOL} when USDC arrives on Sui",
            depositor=depositor,
            relevant=True,
        )
        return StepResult.success(
            "bridge",
            RebalanceAction(
                kind="bridge",
                venue=bridge.source_chain,
                amount=transfer.amount,
                details={
                    "depositor": depositor,
                    "direction": "outbound",
                    "from": bridge.source_chain,
                    "to": VENUE,
                    "protocol": bridge.protocol,
                    "mocked": transfer.mocked,
                },
                tx_ref=transfer.tx_ref,
            ),
        )

    def _block(self, ctx: PluginContext, depositor: str, amount: int, result: StepResult) -> None:
        self.report(ctx, result, depositor)
        ctx.tracker.block_transfer(
            depositor=depositor,
            destination_venue=VENUE,
            amount=amount,
            error=result.reason or result.status,
            protocol=self.config.bridge_protocol,
        )
        self.warning(
            ctx,
            f"Bridge to Sui blocked for {short(depositor)}; will retry without borrowing again",
            depositor=depositor,
            relevant=True,
        )

    async def _resume(self, ctx: PluginContext, staged: GatewayPosition) -> list[RebalanceAction]:
        depositor = staged.depositor
        if ctx.tracker.has_exposure(depositor, FAMILY):
            return []
        key = self._keypair(ctx, depositor)
        if not key.ok:
            self.report(ctx, key, depositor)
            return []

        pool_key = self._best.pool_key if self._best is not None else self.config.pool_keys[0]
        apy = self._best.apy if self._best is not None else None
        self.info(
            ctx,
            f"Resuming blocked bridge of {format_usdc(staged.amount)} USDC for {short(depositor)}",
            depositor=depositor,
        )
        bridged = await self._bridge(ctx, depositor, staged.amount, key.value, pool_key, apy)
        if not bridged.ok:
            self._block(ctx, depositor, staged.amount, bridged)
            return []
        ctx.tracker.clear_transfer(depositor, VENUE)
        return [bridged.value]

    async def _open_new(self, ctx: PluginContext, best: PoolYield) -> list[RebalanceAction]:
        listed = await attempt(
            "list depositors",
            ctx.vault.list_depositors(
                lookback_blocks=ctx.config.home.lookback_blocks,
                chunk_size=ctx.config.home.log_chunk_size,
            ),
        )
        if not listed.ok:
            self.report(ctx, listed)
            return []

        depositors = list(listed.value)
        self.info(ctx, f"Checking {len(depositors)} depositor(s) for Sui DeFi opportunities")
        actions = []
        for depositor in depositors:
            actions.extend(await self._enter_depositor(ctx, depositor, best))
        return actions

    async def _enter_depositor(self, ctx: PluginContext, depositor: str, best: PoolYield) -> list[RebalanceAction]:
        tracker = ctx.tracker
        if tracker.has_exposure(depositor, FAMILY):
            self.info(ctx, f"{short(depositor)} already has Sui position", depositor=depositor)
            return []
        if tracker.staged_transfer(depositor, VENUE) is not None:
            return []

        checked = await attempt(
            "depositor check",
            check_depositor(ctx.vault, depositor, strategies=self.config.strategies),
        )
        if not checked.ok:
            self.report(ctx, checked, depositor)
            return []
        eligibility = checked.value
        if not eligibility.eligible:
            logger.debug(f"[Sui] Skipping {depositor}: {eligibility.reason}")
            return []

        requested = borrow_amount(
            eligibility.deposit.amount,
            eligibility.policy.max_borrow_amount,
            self.config.borrow_divisor,
        )
        amount = requested
        cap = self.config.bridge_max_amount
        if cap is not None and amount > cap:
            self.info(
                ctx,
                f"Capping {self.config.bridge_source_chain} -> Sui bridge to {format_usdc(cap)} USDC "
                f"(requested {format_usdc(requested)} USDC)",
            )
            amount = cap
        if amount == 0:
            return []

        key = self._keypair(ctx, depositor, create=True)
        if not key.ok:
            self.report(ctx, key, depositor)
            return []
        registered = await self._register_address(ctx, depositor, key.value.address)
        if not registered.ok:
            self.report(ctx, registered, depositor)
            return []

        bridge = ctx.require("bridge")
        balance = await attempt("bridge source balance", bridge.source_balance())
        if not balance.ok:
            self.report(ctx, balance, depositor)
            return []
        if balance.value < amount:
            self.info(
                ctx,
                f"{bridge.source_chain} USDC balance too low for bridge: "
                f"{format_usdc(balance.value)} < {format_usdc(amount)}",
                depositor=depositor,
            )
            return []

        self.info(ctx, f"Processing {short(depositor)} for Sui {PROTOCOL} yield", depositor=depositor)
        borrowed = await attempt("borrow", ctx.vault.borrow(depositor, amount, ctx.config.home.usdc_address))
        if not borrowed.ok:
            self.report(ctx, borrowed, depositor)
            return []
        actions = [
            RebalanceAction(
                kind="borrow",
                venue=HOME_CHAIN,
                amount=amount,
                details={"depositor": depositor, "strategy": eligibility.policy.strategy, "destination": VENUE},
                tx_ref=borrowed.value,
            )
        ]

        bridged = await self._bridge(ctx, depositor, amount, key.value, best.pool_key, best.apy)
        if not bridged.ok:
            self._block(ctx, depositor, amount, bridged)
            return actions
        actions.append(bridged.value)
        return actions
