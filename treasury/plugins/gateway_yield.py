"""Cross-chain yield through the Circle Gateway unified balance.

Outbound: borrow on the home chain, move the USDC to the best-yielding target
chain (mint from the unified balance when it already covers the amount,
otherwise a gateway deposit that names the destination domain), then
optionally supply it to the destination lending market.

Return (after the hold time): withdraw any lending supply, deposit into the
gateway on the destination chain, mint back home with the fee clamp, repay,
delete the position.

Durable records:
- Position (family "gateway", venue = destination chain): funds deployed.
  Status "closed" means the funds are home and only the repay is missing.
- Staged transfer to "arc": the return deposit succeeded, mint still due.
- Blocked staged transfer to a target chain: the borrow succeeded but the
  outbound transfer did not; resumed next cycle without borrowing again.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional, Sequence

from treasury.agent.ranker import Ranking
from treasury.config import HOME_CHAIN, GatewayYieldConfig
from treasury.market_data.defillama import ChainYield, DefiLlamaClient, synthetic_chain_yields
from treasury.plugins.base import (
    PluginContext,
    StepResult,
    VenuePlugin,
    attempt,
    borrow_amount,
    check_depositor,
    short,
)
from treasury.types import (
    GatewayPosition,
    LendingPosition,
    Position,
    RebalanceAction,
    YieldOpportunity,
    format_usdc,
)

logger = logging.getLogger(__name__)

FAMILY = "gateway"
STRATEGY_TAG = "DeFi_Yield"
LIVE_CONFIDENCE = 0.8
SYNTHETIC_CONFIDENCE = 0.4
HOME_BASELINE_PROTOCOL = "USYC"


class GatewayYieldPlugin(VenuePlugin):
    name = "gateway-yield"
    tag = "Gateway"

    def __init__(self, config: GatewayYieldConfig, *, defillama: Optional[DefiLlamaClient] = None) -> None:
        self.config = config
        self.defillama = defillama or DefiLlamaClient(config.defillama)
        self._last_yields: list[ChainYield] = []

    @property
    def min_hold(self) -> timedelta:
        return timedelta(seconds=self.config.min_hold_seconds)

    # ========== monitor ==========

    async def _chain_yields(self) -> tuple[list[ChainYield], bool]:
        try:
            live = await asyncio.to_thread(self.defillama.best_chain_yields, self.config.target_chains)
        except RuntimeError as e:
            logger.warning(f"[Gateway] DefiLlama yields unavailable, using synthetic yields: {e}")
            synthetic = synthetic_chain_yields(self.config.target_chains)
            synthetic.append(
                ChainYield(chain=HOME_CHAIN, protocol="synthetic", apy=self.config.home_baseline_pct, tvl=0.0, mocked=True)
            )
            return synthetic, True
        live.append(
            ChainYield(chain=HOME_CHAIN, protocol=HOME_BASELINE_PROTOCOL, apy=self.config.home_baseline_pct, tvl=10_000_000)
        )
        return live, False

    async def monitor(self, ctx: PluginContext) -> Sequence[YieldOpportunity]:
        yields, mocked = await self._chain_yields()
        self._last_yields = yields

        ready = [p for p in ctx.tracker.positions(FAMILY, status="active") if self._hold_ready(ctx, p)]
        if ready:
            self.info(ctx, f"{len(ready)} cross-chain position(s) ready to return")

        return [
            YieldOpportunity(
                venue=cy.chain,
                yield_pct=cy.apy,
                confidence=SYNTHETIC_CONFIDENCE if mocked else LIVE_CONFIDENCE,
                source="synthetic:defillama" if mocked else cy.protocol,
                strategy_tag=STRATEGY_TAG,
            )
            for cy in yields
        ]

    # ========== evaluate ==========

    def _hold_ready(self, ctx: PluginContext, position: Position) -> bool:
        return ctx.tracker.hold_gate(position.opened_at, self.min_hold).ready

    def _comparable(self, opp: YieldOpportunity) -> bool:
        return opp.strategy_tag in (None, STRATEGY_TAG)

    def _has_unfinished_work(self, ctx: PluginContext) -> bool:
        tracker = ctx.tracker
        if any(p.status == "closed" for p in tracker.positions(FAMILY)):
            return True
        if any(self._hold_ready(ctx, p) for p in tracker.positions(FAMILY, status="active")):
            return True
        return any(self._owns_transfer(t) for t in tracker.staged_transfers())

    def _owns_transfer(self, staged: GatewayPosition) -> bool:
        return staged.protocol == "gateway" and (
            staged.destination_venue == HOME_CHAIN or staged.destination_venue in self.config.target_chains
        )

    async def evaluate(self, ranking: Ranking, ctx: PluginContext) -> bool:
        targets = set(self.config.target_chains)
        home = next(
            (o for o in ranking.opportunities if o.venue == HOME_CHAIN and self._comparable(o)),
            None,
        )
        home_yield = home.yield_pct if home is not None else self.config.home_baseline_pct
        others = [o for o in ranking.opportunities if o.venue in targets and self._comparable(o)]
        best_other = others[0] if others else None

        should_bridge = False
        if best_other is not None:
            diff = best_other.yield_pct - home_yield
            should_bridge = diff >= self.config.yield_diff_threshold_pct
            if should_bridge:
                self.info(
                    ctx,
                    f"Found better yield on {best_other.venue}: {best_other.yield_pct:.2f}% "
                    f"vs Arc {home_yield:.2f}% (diff: +{diff:.2f}%)",
                )

        return should_bridge or self._has_unfinished_work(ctx)

    # ========== execute ==========

    async def execute(self, ctx: PluginContext) -> Sequence[RebalanceAction]:
        actions: list[RebalanceAction] = []

        # Phase 1: return mature positions
        for position in ctx.tracker.positions(FAMILY):
            actions.extend(await self._unwind(ctx, position))

        # Phase 2: new positions (and resumption of blocked outbound transfers)
        target = self._target()
        depositors = set()
        for staged in ctx.tracker.staged_transfers(status="blocked"):
            if staged.destination_venue in self.config.target_chains and self._owns_transfer(staged):
                depositors.add(staged.depositor)

        if target is None:
            for depositor in sorted(depositors):
                actions.extend(await self._enter(ctx, depositor, None))
            return actions

        listed = await attempt(
            "list depositors",
            ctx.vault.list_depositors(
                lookback_blocks=ctx.config.home.lookback_blocks,
                chunk_size=ctx.config.home.log_chunk_size,
            ),
        )
        if not listed.ok:
            self.report(ctx, listed)
            candidates = sorted(depositors)
        else:
            candidates = list(listed.value) + sorted(d for d in depositors if d not in listed.value)

        self.info(ctx, f"Checking {len(candidates)} depositor(s) for cross-chain opportunities")
        for depositor in candidates:
            actions.extend(await self._enter(ctx, depositor, target))
        return actions

    def _target(self) -> Optional[ChainYield]:
        home_yield = next((c.apy for c in self._last_yields if c.chain == HOME_CHAIN), self.config.home_baseline_pct)
        candidates = [c for c in self._last_yields if c.chain != HOME_CHAIN and c.chain in self.config.target_chains]
        if not candidates:
            return None
        best = max(candidates, key=lambda c: c.apy)
        if best.apy - home_yield < self.config.yield_diff_threshold_pct:
            logger.info(
                f"[Gateway] No cross-chain opportunity (best: {best.chain} {best.apy:.2f}% vs Arc {home_yield:.2f}%)"
            )
            return None
        return best

    # ---------- return ----------

    async def _unwind(self, ctx: PluginContext, position: Position) -> list[RebalanceAction]:
        tracker = ctx.tracker
        depositor = position.depositor
        actions: list[RebalanceAction] = []

        if position.status == "active":
            gate = tracker.hold_gate(position.opened_at, self.min_hold)
            if not gate.ready:
                self.info(
                    ctx,
                    f"Position for {short(depositor)} on {position.venue} needs {gate.describe()} more",
                    depositor=depositor,
                )
                return actions

            staged = tracker.staged_transfer(depositor, HOME_CHAIN)
            if staged is None:
                self.info(ctx, f"Returning position from {position.venue} to Arc for {short(depositor)}", depositor=depositor)
                withdrawn = await self._withdraw_lending(ctx, position)
                if not withdrawn.ok:
                    self.report(ctx, withdrawn, depositor)
                    return actions
                if withdrawn.value is not None:
                    actions.append(withdrawn.value)

                deposited = await attempt(
                    "return deposit",
                    ctx.require("gateway").deposit(position.venue, position.principal_amount),
                )
                if not deposited.ok:
                    self.report(ctx, deposited, depositor)
                    return actions
                staged = tracker.stage_transfer(
                    depositor=depositor,
                    destination_venue=HOME_CHAIN,
                    amount=position.principal_amount,
                    tx_ref=deposited.value,
                )
                actions.append(
                    RebalanceAction(
                        kind="bridge",
                        venue=position.venue,
                        amount=position.principal_amount,
                        details={"depositor": depositor, "direction": "return", "from": position.venue, "to": HOME_CHAIN},
                        tx_ref=deposited.value,
                    )
                )

            minted = await self._mint_home(ctx, staged)
            if not minted.ok:
                self.report(ctx, minted, depositor)
                if minted.status == "failed":
                    tracker.block_transfer(
                        depositor=depositor,
                        destination_venue=HOME_CHAIN,
                        amount=staged.amount,
                        error=minted.reason,
                    )
                return actions

            tracker.clear_transfer(depositor, HOME_CHAIN)
            position = tracker.mark_returned(position, returned_amount=minted.value)

        repaid = await self._repay(ctx, position)
        if not repaid.ok:
            self.report(ctx, repaid, depositor)
            return actions
        if repaid.value is not None:
            actions.append(repaid.value)
        tracker.close_position(depositor, FAMILY)
        return actions

    async def _withdraw_lending(self, ctx: PluginContext, position: Position) -> StepResult:
        if ctx.lending is None:
            return StepResult.success("lending withdraw")
        protocol = ctx.lending.market.protocol
        supplied = ctx.tracker.lending_position(position.depositor, position.venue, protocol)
        if supplied is None:
            return StepResult.success("lending withdraw")

        withdrawn = await attempt("lending withdraw", ctx.lending.withdraw(supplied.amount))
        if not withdrawn.ok:
            return withdrawn
        ctx.tracker.remove_lending(position.depositor, position.venue, protocol)
        return StepResult.success(
            "lending withdraw",
            RebalanceAction(
                kind="withdraw",
                venue=position.venue,
                amount=supplied.amount,
                details={"depositor": position.depositor, "protocol": protocol},
                tx_ref=withdrawn.value,
            ),
        )

    async def _mint_home(self, ctx: PluginContext, staged: GatewayPosition) -> StepResult:
        """Mint the staged amount on the home chain, keeping the gateway fee back."""
        gateway = ctx.require("gateway")
        unified = await attempt("unified balance", gateway.unified_balance(HOME_CHAIN))
        if not unified.ok:
            return unified

        fee = self.config.gateway_fee
        amount = min(staged.amount, unified.value - fee)
        if amount <= 0:
            return StepResult.skip(
                "mint",
                f"unified balance {format_usdc(unified.value)} USDC does not cover fee "
                f"{format_usdc(fee)} USDC; retrying next cycle",
            )
        if amount < staged.amount:
            self.info(
                ctx,
                f"Clamping return mint to {format_usdc(amount)} USDC (fee {format_usdc(fee)} USDC)",
                depositor=staged.depositor,
            )

        minted = await attempt("mint", gateway.mint(HOME_CHAIN, amount))
        if not minted.ok:
            return minted
        self.info(ctx, f"Minted {format_usdc(amount)} USDC on Arc", depositor=staged.depositor, relevant=True)
        return StepResult.success("mint", amount)

    async def _repay(self, ctx: PluginContext, position: Position) -> StepResult:
        depositor = position.depositor
        borrow = await attempt("borrow lookup", ctx.vault.get_borrow(depositor))
        if not borrow.ok:
            return borrow
        outstanding = borrow.value.amount
        if outstanding == 0:
            self.info(ctx, f"No borrowed RWA for {short(depositor)}, skipping repay", depositor=depositor)
            return StepResult.success("repay")

        amount = min(position.principal_amount, outstanding)
        repaid = await attempt("repay", ctx.vault.repay(depositor, amount))
        if not repaid.ok:
            return repaid
        return StepResult.success(
            "repay",
            RebalanceAction(
                kind="repay",
                venue=HOME_CHAIN,
                amount=amount,
                details={"depositor": depositor, "from_chain": position.venue},
                tx_ref=repaid.value,
            ),
        )

    # ---------- outbound ----------

    def _blocked_outbound(self, ctx: PluginContext, depositor: str) -> Optional[GatewayPosition]:
        for staged in ctx.tracker.staged_transfers(status="blocked"):
            if staged.depositor == depositor.lower() and staged.destination_venue in self.config.target_chains:
                return staged
        return None

    async def _enter(self, ctx: PluginContext, depositor: str, target: Optional[ChainYield]) -> list[RebalanceAction]:
        tracker = ctx.tracker
        actions: list[RebalanceAction] = []

        if tracker.get_position(depositor, FAMILY) is not None:
            self.info(ctx, f"{short(depositor)} already has cross-chain position", depositor=depositor)
            return actions

        blocked = self._blocked_outbound(ctx, depositor)
        if blocked is not None:
            amount = blocked.amount
            destination = blocked.destination_venue
            protocol = target.protocol if target is not None and target.chain == destination else None
            self.info(
                ctx,
                f"Resuming blocked transfer of {format_usdc(amount)} USDC to {destination} for {short(depositor)}",
                depositor=depositor,
            )
        else:
            if target is None:
                return actions
            checked = await attempt(
                "depositor check",
                check_depositor(ctx.vault, depositor, strategies=self.config.strategies),
            )
            if not checked.ok:
                self.report(ctx, checked, depositor)
                return actions
            eligibility = checked.value
            if not eligibility.eligible:
                logger.debug(f"[Gateway] Skipping {depositor}: {eligibility.reason}")
                return actions

            amount = borrow_amount(
                eligibility.deposit.amount,
                eligibility.policy.max_borrow_amount,
                self.config.borrow_divisor,
            )
            if amount == 0:
                return actions

            destination = target.chain
            protocol = target.protocol
            self.info(ctx, f"Processing {short(depositor)} for cross-chain to {destination}", depositor=depositor)
            borrowed = await attempt("borrow", ctx.vault.borrow(depositor, amount, ctx.config.home.usdc_address))
            if not borrowed.ok:
                self.report(ctx, borrowed, depositor)
                return actions
            actions.append(
                RebalanceAction(
                    kind="borrow",
                    venue=HOME_CHAIN,
                    amount=amount,
                    details={"depositor": depositor, "strategy": eligibility.policy.strategy, "destination": destination},
                    tx_ref=borrowed.value,
                )
            )

        moved = await self._move_out(ctx, depositor, amount, destination, protocol)
        if not moved.ok:
            self.report(ctx, moved, depositor)
            tracker.block_transfer(
                depositor=depositor,
                destination_venue=destination,
                amount=amount,
                error=moved.reason or moved.status,
            )
            self.warning(
                ctx,
                f"Transfer to {destination} blocked for {short(depositor)}; will retry without borrowing again",
                depositor=depositor,
                relevant=True,
            )
            return actions

        actions.append(moved.value)
        if blocked is not None:
            tracker.clear_transfer(depositor, destination)
        tracker.open_position(
            depositor=depositor,
            family=FAMILY,
            venue=destination,
            amount=amount,
            bridge_tx_ref=moved.value.tx_ref,
        )
        self.info(
            ctx,
            f"Bridged {format_usdc(amount)} USDC to {destination}"
            + (f" for {protocol}" if protocol else ""),
            depositor=depositor,
        )

        if self.config.lending_supply_enabled and destination == self.config.lending_chain and ctx.lending is not None:
            supplied = await self._supply(ctx, depositor, destination, amount)
            if supplied.ok:
                actions.append(supplied.value)
            else:
                self.report(ctx, supplied, depositor)
        return actions

    async def _move_out(
        self,
        ctx: PluginContext,
        depositor: str,
        amount: int,
        destination: str,
        protocol: Optional[str],
    ) -> StepResult:
        gateway = ctx.require("gateway")
        details = {"depositor": depositor, "from": HOME_CHAIN, "to": destination}
        if protocol:
            details["protocol"] = protocol

        unified = await attempt("unified balance", gateway.unified_balance(destination))
        if unified.ok and unified.value >= amount:
            self.info(ctx, f"Unified balance on {destination} sufficient: {format_usdc(unified.value)} USDC")
            minted = await attempt("unified mint", gateway.mint(destination, amount))
            if not minted.ok:
                return minted
            details.update({"direction": "unified-mint", "from": "unified"})
            return StepResult.success(
                "unified mint",
                RebalanceAction(kind="bridge", venue=destination, amount=amount, details=details, tx_ref=minted.value),
            )

        deposited = await attempt("gateway deposit", gateway.deposit(HOME_CHAIN, amount, destination=destination))
        if not deposited.ok:
            return deposited
        details["direction"] = "outbound"
        return StepResult.success(
            "gateway deposit",
            RebalanceAction(kind="bridge", venue=HOME_CHAIN, amount=amount, details=details, tx_ref=deposited.value),
        )

    async def _supply(self, ctx: PluginContext, depositor: str, chain: str, amount: int) -> StepResult:
        lending = ctx.lending
        quoted = await attempt("lending apy", lending.supply_apy())
        apy = quoted.value if quoted.ok and quoted.value is not None else self.config.lending_apy_fallback_pct
        apy = max(self.config.lending_apy_min_pct, min(self.config.lending_apy_max_pct, apy))
        self.info(ctx, f"{lending.market.protocol} supply APY on {chain}: {apy:.2f}%")

        supplied = await attempt("lending supply", lending.supply(amount))
        if not supplied.ok:
            return supplied

        ctx.tracker.record_lending(
            LendingPosition(
                depositor=depositor.lower(),
                chain=chain,
                protocol=lending.market.protocol,
                asset=lending.market.asset_address,
                amount=amount,
                a_token=lending.market.a_token_address,
                apy=apy,
                deposited_at=ctx.tracker.now(),
                tx_ref=supplied.value,
            )
        )
        return StepResult.success(
            "lending supply",
            RebalanceAction(
                kind="deposit",
                venue=chain,
                amount=amount,
                details={"depositor": depositor, "protocol": lending.market.protocol, "apy": apy},
                tx_ref=supplied.value,
            ),
        )
