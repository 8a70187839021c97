"""Rebalance scheduler - the agent's main loop.

Each cycle:
1. Calls `monitor` on every plugin and merges the observed opportunities
2. Ranks them (global best, best per strategy bucket)
3. Calls `evaluate` and, when it returns True, `execute` on every plugin in turn
4. Renders every executed action into the log and refreshes telemetry state

The first cycle runs immediately on start; the next one is armed as a
single-shot timer after the previous cycle finishes, so cycles never overlap.
Plugins run sequentially because they share signing identities. An exception
in one plugin is logged and does not affect the others.

Default behavior is dry-run (paper clients).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from treasury.agent.ranker import OpportunityRanker, Ranking
from treasury.plugins.base import PluginContext, StrategyPlugin
from treasury.telemetry.explorer import ExplorerLinks
from treasury.telemetry.formatting import format_action
from treasury.telemetry.recorder import ActionRecorder
from treasury.types import RebalanceAction, YieldOpportunity

logger = logging.getLogger(__name__)


class RebalanceScheduler:
    def __init__(
        self,
        *,
        plugins: Sequence[StrategyPlugin],
        context: PluginContext,
        poll_interval: float,
        max_iterations: Optional[int] = None,
        ranker: Optional[OpportunityRanker] = None,
        recorder: Optional[ActionRecorder] = None,
        links: Optional[ExplorerLinks] = None,
    ) -> None:
        self.plugins = list(plugins)
        self.context = context
        self.poll_interval = poll_interval
        self.max_iterations = max_iterations
        self.ranker = ranker or OpportunityRanker()
        self.recorder = recorder
        self.links = links or ExplorerLinks.from_env()

        self._running = False
        self._iteration = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._current: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def iteration(self) -> int:
        return self._iteration

    # ========== one cycle ==========

    def _plugin_failed(self, plugin: StrategyPlugin, phase: str, exc: Exception) -> None:
        logger.exception(f"Plugin {plugin.name} raised during {phase}")
        self.context.logger.error(f"[Agent] Plugin {plugin.name} {phase} failed: {exc}")

    async def _monitor(self) -> list[YieldOpportunity]:
        opportunities: list[YieldOpportunity] = []
        for plugin in self.plugins:
            try:
                opportunities.extend(await plugin.monitor(self.context))
            except Exception as e:
                self._plugin_failed(plugin, "monitor", e)
        return opportunities

    def _record(self, action: RebalanceAction) -> None:
        self.context.logger.info(
            format_action(action, links=self.links),
            depositor=action.depositor,
            relevant=True,
            action=action,
        )

    async def _run_plugin(self, plugin: StrategyPlugin, ranking: Ranking) -> list[RebalanceAction]:
        try:
            if not await plugin.evaluate(ranking, self.context):
                return []
        except Exception as e:
            self._plugin_failed(plugin, "evaluate", e)
            return []

        try:
            actions = list(await plugin.execute(self.context))
        except Exception as e:
            self._plugin_failed(plugin, "execute", e)
            return []

        if not actions:
            self.context.logger.info(f"[Agent] {plugin.name}: No actionable positions found")
        for action in actions:
            self._record(action)
        return actions

    async def run_cycle(self) -> list[RebalanceAction]:
        """Run one monitor -> rank -> evaluate/execute pass over all plugins."""
        self._iteration += 1
        log = self.context.logger
        log.info(f"[Agent] === Cycle {self._iteration} ===")

        opportunities = await self._monitor()
        ranking = self.ranker.rank(opportunities)
        if ranking.empty:
            # Positions may still be ready to unwind, so plugins are evaluated anyway.
            log.info("[Agent] No opportunities found")
        else:
            best = ranking.best
            log.info(f"[Agent] Best opportunity: {best.venue} at {best.yield_pct:.2f}% ({best.source})")

        if self.recorder is not None:
            self.recorder.set_signals(ranking.opportunities)

        actions: list[RebalanceAction] = []
        for plugin in self.plugins:
            actions.extend(await self._run_plugin(plugin, ranking))

        if self.recorder is not None:
            self.recorder.set_positions(self.context.tracker.positions())
        return actions

    # ========== timer loop ==========

    async def _tick(self) -> None:
        try:
            await self.run_cycle()
        except Exception as e:
            logger.exception(f"Cycle {self._iteration} failed: {e}")

        if self.max_iterations and self._iteration >= self.max_iterations:
            logger.info(f"Reached max iterations ({self.max_iterations})")
            self.stop()
            return
        if self._running:
            self._arm()

    def _arm(self) -> None:
        loop = asyncio.get_running_loop()
        logger.debug(f"Next cycle in {self.poll_interval}s")
        self._timer = loop.call_later(self.poll_interval, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if not self._running:
            return
        self._current = asyncio.ensure_future(self._tick())

    async def start(self) -> None:
        """Run the first cycle now and arm the timer for the next one."""
        if self._running:
            return
        self._running = True
        self._stopped.clear()
        names = ", ".join(plugin.name for plugin in self.plugins) or "none"
        self.context.logger.info(f"[Agent] Starting with plugins: {names}")
        self.context.logger.info(
            f"[Agent] Mode: {'DRY RUN (paper clients)' if self.context.config.dry_run else 'LIVE'}"
        )
        await self._tick()

    def stop(self) -> None:
        """Stop re-arming; an in-flight cycle is allowed to finish."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._running:
            self._running = False
            logger.info("Scheduler stopped")
        self._stopped.set()

    async def run(self) -> None:
        """Start, then wait until `stop()` (or the iteration limit) ends the loop."""
        try:
            await self.start()
            await self._stopped.wait()
            current = self._current
            if current is not None and not current.done() and current is not asyncio.current_task():
                await current
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled")
            self.stop()
            raise


# ========== CLI Entry Point ==========


async def main() -> None:
    """Run the agent from the command line (no telemetry server)."""
    import argparse
    from dataclasses import replace

    from treasury.agent.runtime import build_runtime
    from treasury.config import AgentConfig

    parser = argparse.ArgumentParser(description="Run the treasury rebalancing agent")
    parser.add_argument("--plugins", nargs="+", help="Plugins to enable (default: AGENT_PLUGINS)")
    parser.add_argument("--interval", type=float, help="Seconds between cycles (default: AGENT_POLL_INTERVAL)")
    parser.add_argument("--live", action="store_true", help="Use live clients (default: paper)")
    parser.add_argument("--iterations", type=int, help="Max cycles (default: infinite)")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = AgentConfig.from_env()
    overrides = {}
    if args.plugins:
        overrides["plugins"] = tuple(args.plugins)
    if args.interval is not None:
        overrides["poll_interval_seconds"] = args.interval
    if args.live:
        overrides["dry_run"] = False
    if args.iterations is not None:
        overrides["max_iterations"] = args.iterations
    config = replace(config, **overrides)

    runtime = build_runtime(config)
    scheduler = RebalanceScheduler(
        plugins=runtime.plugins,
        context=runtime.context,
        poll_interval=config.poll_interval_seconds,
        max_iterations=config.max_iterations,
        recorder=runtime.recorder,
    )
    await scheduler.run()


if __name__ == "__main__":
    asyncio.run(main())
