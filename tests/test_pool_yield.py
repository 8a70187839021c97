"""Tests for the external pool (DeepBook on Sui) yield plugin."""

from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from treasury.agent.ranker import rank_opportunities
from treasury.chain.bridge import UnsupportedPoolClient
from treasury.config import HomeRebalanceConfig, PoolYieldConfig
from treasury.keystore.store import CustodialKeyStore
from treasury.market_data.deepbook import PoolYield
from treasury.plugins.base import PluginContext
from treasury.plugins.home_rebalance import HomeRebalancePlugin
from treasury.plugins.pool_yield import PoolYieldPlugin, synthetic_profit
from treasury.types import CustodialKeyRecord, YieldOpportunity

from tests.conftest import DEPOSITOR, OTHER_DEPOSITOR, usdc

HOME = YieldOpportunity(venue="arc", yield_pct=6.0, confidence=0.95, source="stork")


def _plugin(source: Mock, **overrides) -> PoolYieldPlugin:
    return PoolYieldPlugin(PoolYieldConfig(**overrides), yield_source=source)


def _source(*pools: PoolYield) -> Mock:
    source = Mock()
    source.fetch_pool_yields = AsyncMock(return_value=list(pools))
    return source


def _low_source() -> Mock:
    return _source(PoolYield(pool_key="SUI_DBUSDC", apy=6.0, spread_pct=0.01, tvl=1_000.0))


def _fund(ctx: PluginContext, amount: int = usdc(1000), max_borrow: int = usdc(100)) -> None:
    ctx.vault.add_depositor(DEPOSITOR, amount, max_borrow=max_borrow, strategy="DeFi_Yield")


async def _cycle(plugin: PoolYieldPlugin, ctx: PluginContext) -> list:
    ranking = rank_opportunities([*await plugin.monitor(ctx), HOME])
    if not await plugin.evaluate(ranking, ctx):
        return []
    return list(await plugin.execute(ctx))


def test_synthetic_profit_floor() -> None:
    """Simulated profit is never below principal / 666."""
    assert synthetic_profit(usdc(100), 9.0, timedelta(hours=13)) == usdc(100) // 666
    assert synthetic_profit(usdc(100), 9.0, timedelta(days=365)) == usdc(9)
    assert synthetic_profit(usdc(100), 9.0, timedelta(seconds=-5)) == usdc(100) // 666


class TestMonitor:
    @pytest.mark.asyncio
    async def test_best_pool(self, ctx: PluginContext, deepbook_source: Mock) -> None:
        opportunities = await _plugin(deepbook_source).monitor(ctx)
        assert len(opportunities) == 1
        opp = opportunities[0]
        assert opp.venue == "sui"
        assert opp.yield_pct == 9.0
        assert opp.source == "deepbook-SUI_DBUSDC"
        assert opp.confidence == 0.7

    @pytest.mark.asyncio
    async def test_synthetic_pool(self, ctx: PluginContext) -> None:
        source = _source(PoolYield(pool_key="SUI_DBUSDC", apy=8.5, spread_pct=0.0, tvl=0.0, mocked=True))
        opp = (await _plugin(source).monitor(ctx))[0]
        assert opp.mocked
        assert opp.confidence == 0.35

    @pytest.mark.asyncio
    async def test_no_pools(self, ctx: PluginContext) -> None:
        assert await _plugin(_source()).monitor(ctx) == []


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_needs_threshold_and_home_margin(self, ctx: PluginContext, deepbook_source: Mock) -> None:
        """9% clears 7% and Arc 6% + 2%, but not Arc 7.5% + 2%."""
        plugin = _plugin(deepbook_source)
        pool = await plugin.monitor(ctx)
        assert await plugin.evaluate(rank_opportunities([*pool, HOME]), ctx) is True

        richer_home = YieldOpportunity(venue="arc", yield_pct=7.5, confidence=0.95, source="stork")
        assert await plugin.evaluate(rank_opportunities([*pool, richer_home]), ctx) is False

    @pytest.mark.asyncio
    async def test_withdraw_pending_within_hold(self, ctx: PluginContext, clock, recorder) -> None:
        """A position opened 2 minutes ago with a 10 minute hold is not unwound yet."""
        _fund(ctx)
        plugin = _plugin(_low_source(), min_hold_seconds=600)
        ctx.tracker.open_position(depositor=DEPOSITOR, family="pool", venue="SUI_DBUSDC", amount=usdc(1))
        clock.advance(minutes=2)
        ctx.vault.request_withdraw(DEPOSITOR, usdc(1000))

        ranking = rank_opportunities([*await plugin.monitor(ctx), HOME])
        assert await plugin.evaluate(ranking, ctx) is False
        assert any("wait 8m more" in e.title for e in recorder.get_logs())

    @pytest.mark.asyncio
    async def test_closed_position_needs_action(self, ctx: PluginContext) -> None:
        plugin = _plugin(_low_source())
        position = ctx.tracker.open_position(depositor=DEPOSITOR, family="pool", venue="SUI_DBUSDC", amount=usdc(1))
        ctx.tracker.mark_returned(position, returned_amount=usdc(1))
        ranking = rank_opportunities([*await plugin.monitor(ctx), HOME])
        assert await plugin.evaluate(ranking, ctx) is True


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_borrow_bridge_deposit_return(self, ctx: PluginContext, deepbook_source: Mock, clock, recorder) -> None:
        """Full round trip: borrow, bridge, pool deposit, simulated return, repay, withdraw."""
        _fund(ctx)
        plugin = _plugin(deepbook_source)

        first = await _cycle(plugin, ctx)
        assert [a.kind for a in first] == ["borrow", "bridge"]
        assert first[0].amount == usdc(100)
        keypair = ctx.keys.get_key(DEPOSITOR)
        assert first[1].details["to"] == "sui"
        assert first[1].details["protocol"] == "Wormhole CCTP"
        assert ctx.vault.depositors[DEPOSITOR].secondary_address == keypair.address
        bridge = ctx.tracker.pending_bridge(DEPOSITOR)
        assert bridge.destination_address == keypair.address
        assert bridge.target_pool_key == "SUI_DBUSDC"

        clock.advance(minutes=5)
        second = await _cycle(plugin, ctx)
        assert [a.kind for a in second] == ["deposit"]
        assert second[0].details["pool"] == "SUI_DBUSDC"
        assert any("wait 11.9h more" in e.title for e in recorder.get_logs())
        position = ctx.tracker.active_position(DEPOSITOR, "pool")
        assert position.venue == "SUI_DBUSDC"
        assert position.principal_amount == usdc(100)
        assert ctx.tracker.pending_bridge(DEPOSITOR) is None
        assert len(ctx.vault.called("borrow")) == 1

        ctx.vault.request_withdraw(DEPOSITOR, usdc(1000), requested_at=1_735_689_600)
        clock.advance(hours=13)
        third = await _cycle(plugin, ctx)

        assert [(a.kind, a.venue) for a in third] == [("withdraw", "sui"), ("repay", "arc"), ("withdraw", "arc")]
        assert third[0].amount == usdc(100) + usdc(100) // 666
        assert third[0].details["mocked"] is True
        assert third[1].amount == usdc(100)
        assert third[2].amount == usdc(1000)
        assert ctx.vault.outstanding(DEPOSITOR) == 0
        assert ctx.tracker.get_position(DEPOSITOR, "pool") is None

    @pytest.mark.asyncio
    async def test_partial_arrival_keeps_bridge_pending(self, ctx: PluginContext, deepbook_source: Mock, recorder) -> None:
        """With 3% of the amount visible on Sui nothing is deposited and the bridge stays pending."""
        plugin = _plugin(deepbook_source)
        await plugin.monitor(ctx)
        keypair = ctx.keys.ensure_key(DEPOSITOR)
        ctx.tracker.start_bridge(
            depositor=DEPOSITOR,
            family="pool",
            destination_address=keypair.address,
            amount=usdc(1),
            target_pool_key="SUI_DBUSDC",
            tx_ref="0xburn",
        )
        ctx.sui.set_balance(keypair.address, usdc(0.03))

        actions = await plugin.execute(ctx)

        assert actions == []
        assert ctx.pool.called("deposit") == []
        assert ctx.tracker.pending_bridge(DEPOSITOR) is not None
        assert len(ctx.sui.called("usdc_balance")) == 3
        assert ctx.sleep.await_count == 2
        assert any("bridge still pending" in e.detail for e in recorder.get_logs())

    @pytest.mark.asyncio
    async def test_deposit_cap(self, ctx: PluginContext, deepbook_source: Mock) -> None:
        _fund(ctx)
        plugin = _plugin(deepbook_source, deposit_cap=usdc(0.5))
        await _cycle(plugin, ctx)
        second = await _cycle(plugin, ctx)
        assert second[0].amount == usdc(0.5)
        assert ctx.tracker.active_position(DEPOSITOR, "pool").principal_amount == usdc(0.5)

    @pytest.mark.asyncio
    async def test_bridge_amount_cap(self, ctx: PluginContext, deepbook_source: Mock, recorder) -> None:
        """The borrow is capped before it happens when a bridge maximum is set."""
        _fund(ctx)
        actions = await _cycle(_plugin(deepbook_source, bridge_max_amount=usdc(0.1)), ctx)
        assert [a.amount for a in actions] == [usdc(0.1), usdc(0.1)]
        assert any("Capping base -> Sui bridge to 0.1 USDC" in e.title for e in recorder.get_logs())

    @pytest.mark.asyncio
    async def test_low_source_balance_skips_borrow(self, ctx: PluginContext, deepbook_source: Mock, ledger) -> None:
        _fund(ctx)
        ledger.debit("base", usdc(1000))
        assert await _cycle(_plugin(deepbook_source), ctx) == []
        assert ctx.vault.called("borrow") == []

    @pytest.mark.asyncio
    async def test_redeem_mode_withdraws_from_pool(self, ctx: PluginContext, deepbook_source: Mock, clock) -> None:
        """In redeem mode the pool shares are withdrawn instead of simulating yield."""
        _fund(ctx, amount=usdc(10), max_borrow=usdc(1))
        plugin = _plugin(deepbook_source, return_mode="redeem")
        keypair = ctx.keys.ensure_key(DEPOSITOR)
        ctx.pool.ledger.credit(keypair.address, usdc(1))
        receipt = await ctx.pool.deposit(keypair, "SUI_DBUSDC", usdc(1))
        ctx.tracker.open_position(
            depositor=DEPOSITOR, family="pool", venue="SUI_DBUSDC", amount=usdc(1), pool_shares=receipt.pool_shares
        )
        await ctx.vault.borrow(DEPOSITOR, usdc(1), "")
        ctx.vault.request_withdraw(DEPOSITOR, usdc(10))
        clock.advance(hours=13)

        actions = await _cycle(plugin, ctx)

        assert [a.kind for a in actions] == ["withdraw", "repay", "withdraw"]
        assert actions[0].amount == usdc(1)
        assert actions[0].details["profit"] == 0
        assert len(ctx.pool.called("withdraw")) == 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_locked_keystore_blocks_only_pool_entry(
        self, ctx: PluginContext, store, deepbook_source: Mock, stork_source: Mock, recorder
    ) -> None:
        """Without a master key the pool plugin cannot enter, the home plugin still works."""
        _fund(ctx)
        ctx.keys = CustodialKeyStore.from_master_key(store, None)

        assert await _cycle(_plugin(deepbook_source), ctx) == []
        assert ctx.vault.called("borrow") == []
        assert any("custodial key failed" in e.title for e in recorder.get_logs())

        home = HomeRebalancePlugin(HomeRebalanceConfig(), yield_source=stork_source)
        assert (await home.monitor(ctx))[0].yield_pct == 6.0
        actions = await home.execute(ctx)
        assert [a.kind for a in actions] == ["borrow"]

    @pytest.mark.asyncio
    async def test_failed_bridge_resumes_without_new_borrow(self, ctx: PluginContext, deepbook_source: Mock) -> None:
        """A bridge failure after the borrow is retried next cycle from the blocked record."""
        _fund(ctx)
        plugin = _plugin(deepbook_source)
        ctx.bridge.fail("initiate", "relayer down")

        first = await _cycle(plugin, ctx)
        assert [a.kind for a in first] == ["borrow"]
        blocked = ctx.tracker.staged_transfer(DEPOSITOR, "sui")
        assert blocked.status == "blocked"
        assert blocked.protocol == "Wormhole CCTP"
        assert "relayer down" in blocked.last_error

        second = await _cycle(plugin, ctx)
        assert [a.kind for a in second] == ["bridge"]
        assert len(ctx.vault.called("borrow")) == 1
        assert ctx.tracker.staged_transfer(DEPOSITOR, "sui") is None
        assert ctx.tracker.pending_bridge(DEPOSITOR) is not None

    @pytest.mark.asyncio
    async def test_failed_deposit_retried(self, ctx: PluginContext, deepbook_source: Mock) -> None:
        _fund(ctx)
        plugin = _plugin(deepbook_source)
        await _cycle(plugin, ctx)
        ctx.pool.fail("deposit", "object locked")

        assert await _cycle(plugin, ctx) == []
        assert ctx.tracker.pending_bridge(DEPOSITOR) is not None

        third = await _cycle(plugin, ctx)
        assert [a.kind for a in third] == ["deposit"]


class TestRepay:
    @pytest.mark.asyncio
    async def test_repay_capped_at_outstanding(self, ctx: PluginContext) -> None:
        """A returned amount above the borrow only repays what is owed."""
        _fund(ctx)
        await ctx.vault.borrow(DEPOSITOR, usdc(50), "")
        position = ctx.tracker.open_position(depositor=DEPOSITOR, family="pool", venue="SUI_DBUSDC", amount=usdc(100))
        ctx.tracker.mark_returned(position, returned_amount=usdc(100.15))

        actions = await _cycle(_plugin(_low_source()), ctx)

        assert [(a.kind, a.amount) for a in actions] == [("repay", usdc(50))]
        assert ctx.tracker.get_position(DEPOSITOR, "pool") is None

    @pytest.mark.asyncio
    async def test_nothing_outstanding_still_processes_withdraw(self, ctx: PluginContext) -> None:
        _fund(ctx)
        position = ctx.tracker.open_position(depositor=DEPOSITOR, family="pool", venue="SUI_DBUSDC", amount=usdc(100))
        ctx.tracker.mark_returned(position, returned_amount=usdc(100))
        ctx.vault.request_withdraw(DEPOSITOR, usdc(1000))

        actions = await _cycle(_plugin(_low_source()), ctx)

        assert [(a.kind, a.venue) for a in actions] == [("withdraw", "arc")]
        assert ctx.vault.called("repay") == []

    @pytest.mark.asyncio
    async def test_failed_repay_keeps_closed_position(self, ctx: PluginContext) -> None:
        _fund(ctx)
        await ctx.vault.borrow(DEPOSITOR, usdc(100), "")
        position = ctx.tracker.open_position(depositor=DEPOSITOR, family="pool", venue="SUI_DBUSDC", amount=usdc(100))
        ctx.tracker.mark_returned(position, returned_amount=usdc(100))
        ctx.vault.fail("repay", "paused")

        assert await _cycle(_plugin(_low_source()), ctx) == []
        assert ctx.tracker.get_position(DEPOSITOR, "pool").status == "closed"

    @pytest.mark.asyncio
    async def test_repay_not_repeated_after_withdraw_failure(self, ctx: PluginContext) -> None:
        """A failed withdraw after a successful repay never repays the same funds twice."""
        _fund(ctx)
        await ctx.vault.borrow(DEPOSITOR, usdc(100), "")
        position = ctx.tracker.open_position(depositor=DEPOSITOR, family="pool", venue="SUI_DBUSDC", amount=usdc(100))
        ctx.tracker.mark_returned(position, returned_amount=usdc(50))
        ctx.vault.request_withdraw(DEPOSITOR, usdc(1000))
        ctx.vault.fail("process_withdraw", "paused")
        plugin = _plugin(_low_source())

        first = await _cycle(plugin, ctx)
        assert [(a.kind, a.amount) for a in first] == [("repay", usdc(50))]
        remaining = ctx.tracker.get_position(DEPOSITOR, "pool")
        assert remaining.status == "closed"
        assert remaining.principal_amount == 0

        second = await _cycle(plugin, ctx)
        assert [(a.kind, a.venue) for a in second] == [("withdraw", "arc")]
        assert sum(call[2] for call in ctx.vault.called("repay")) == usdc(50)
        assert ctx.vault.outstanding(DEPOSITOR) == usdc(50)
        assert ctx.tracker.get_position(DEPOSITOR, "pool") is None


class TestLiveSafety:
    @pytest.mark.asyncio
    async def test_unsupported_pool_keeps_bridge_pending(self, ctx: PluginContext, deepbook_source: Mock, recorder) -> None:
        """Arrived funds are not recorded as a position when the pool cannot take the deposit."""
        plugin = _plugin(deepbook_source)
        await plugin.monitor(ctx)
        ctx.pool = UnsupportedPoolClient()
        keypair = ctx.keys.ensure_key(DEPOSITOR)
        ctx.tracker.start_bridge(
            depositor=DEPOSITOR,
            family="pool",
            destination_address=keypair.address,
            amount=usdc(1),
            target_pool_key="SUI_DBUSDC",
            tx_ref="0xburn",
        )
        ctx.sui.set_balance(keypair.address, usdc(1))

        assert await plugin.execute(ctx) == []
        assert ctx.tracker.pending_bridge(DEPOSITOR) is not None
        assert ctx.tracker.get_position(DEPOSITOR, "pool") is None
        assert any("not supported in live mode" in f"{e.title} {e.detail}" for e in recorder.get_logs())

    @pytest.mark.asyncio
    async def test_corrupt_key_record_skips_only_that_depositor(
        self, ctx: PluginContext, store, clock, deepbook_source: Mock, recorder
    ) -> None:
        """An unreadable custodial key is reported; other depositors still enter the pool."""
        _fund(ctx)
        ctx.vault.add_depositor(OTHER_DEPOSITOR, usdc(1000), max_borrow=usdc(100), strategy="DeFi_Yield")
        store.insert_key_record(
            record=CustodialKeyRecord(
                depositor=DEPOSITOR,
                secondary_address="0x" + "ab" * 32,
                encrypted_secret="v1:not base64!:@@@",
                created_at=clock(),
                updated_at=clock(),
            )
        )

        actions = await _cycle(_plugin(deepbook_source), ctx)

        assert [(a.kind, a.depositor) for a in actions] == [("borrow", OTHER_DEPOSITOR), ("bridge", OTHER_DEPOSITOR)]
        assert [call[1] for call in ctx.vault.called("borrow")] == [OTHER_DEPOSITOR]
        assert any(e.user == DEPOSITOR and "custodial key failed" in e.title for e in recorder.get_logs())
