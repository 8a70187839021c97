"""Home-chain rebalance: borrow against idle vault deposits when the home yield is high enough.

Stateless with respect to the position store; the vault's borrow record is
the only state, so an existing borrow is what prevents a second one.
"""

from __future__ import annotations

from typing import Optional, Sequence

from treasury.agent.ranker import Ranking
from treasury.config import HOME_CHAIN, HomeRebalanceConfig
from treasury.market_data.stork import StorkYieldSource
from treasury.plugins.base import PluginContext, StepResult, VenuePlugin, attempt, borrow_amount, check_depositor
from treasury.types import RebalanceAction, YieldOpportunity, format_usdc


class HomeRebalancePlugin(VenuePlugin):
    name = "home-rebalance"
    tag = "Arc"

    def __init__(self, config: HomeRebalanceConfig, *, yield_source: Optional[StorkYieldSource] = None) -> None:
        self.config = config
        self.yield_source = yield_source or StorkYieldSource(config)

    async def monitor(self, ctx: PluginContext) -> Sequence[YieldOpportunity]:
        quote = await self.yield_source.fetch_yield()
        if quote.mocked:
            self.info(ctx, f"Using synthetic home yield ({quote.value_pct:.2f}%)")
        return [
            YieldOpportunity(
                venue=HOME_CHAIN,
                yield_pct=quote.value_pct,
                confidence=quote.confidence,
                source=quote.source,
            )
        ]

    async def evaluate(self, ranking: Ranking, ctx: PluginContext) -> bool:
        stats = await attempt("vault stats", ctx.vault.get_stats())
        if stats.ok:
            self.info(
                ctx,
                f"Vault TVL: {format_usdc(stats.value.tvl)} USDC, "
                f"Borrows: {format_usdc(stats.value.total_borrowed)} USDC",
            )
        else:
            self.report(ctx, stats)

        home = ranking.for_venue(HOME_CHAIN)
        if home is None:
            return False

        threshold = self.config.yield_threshold_pct
        should_act = home.yield_pct >= threshold
        self.info(
            ctx,
            f"Yield {home.yield_pct:.2f}% vs threshold {threshold:.2f}% -> {'REBALANCE' if should_act else 'HOLD'}",
        )
        return should_act

    async def execute(self, ctx: PluginContext) -> Sequence[RebalanceAction]:
        home = ctx.config.home
        listed = await attempt(
            "list depositors",
            ctx.vault.list_depositors(lookback_blocks=home.lookback_blocks, chunk_size=home.log_chunk_size),
        )
        if not listed.ok:
            self.report(ctx, listed)
            return []

        depositors = list(listed.value)
        self.info(ctx, f"Found {len(depositors)} depositor(s)")

        actions = []
        for depositor in depositors:
            result = await self._borrow_for(ctx, depositor)
            if result.ok:
                actions.append(result.value)
            else:
                self.report(ctx, result, depositor)
        return actions

    async def _borrow_for(self, ctx: PluginContext, depositor: str) -> StepResult:
        checked = await attempt("depositor check", check_depositor(ctx.vault, depositor))
        if not checked.ok:
            return checked
        eligibility = checked.value
        if not eligibility.eligible:
            return StepResult.skip("borrow", eligibility.reason)

        amount = borrow_amount(
            eligibility.deposit.amount,
            eligibility.policy.max_borrow_amount,
            self.config.borrow_divisor,
        )
        if amount == 0:
            return StepResult.skip("borrow", "borrow amount is 0")

        token = ctx.config.home.usdc_address
        self.info(ctx, f"Borrowing {format_usdc(amount)} USDC for {depositor}", depositor=depositor)
        borrowed = await attempt("borrow", ctx.vault.borrow(depositor, amount, token))
        if not borrowed.ok:
            return borrowed

        return StepResult.success(
            "borrow",
            RebalanceAction(
                kind="borrow",
                venue=HOME_CHAIN,
                amount=amount,
                details={"depositor": depositor, "rwa_token": token, "strategy": eligibility.policy.strategy},
                tx_ref=borrowed.value,
            ),
        )
