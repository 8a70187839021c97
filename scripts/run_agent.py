#!/usr/bin/env python3
"""Run the rebalancing agent and its telemetry API in one process.

The scheduler and the uvicorn server share the event loop; the API reads the
same `ActionRecorder` the agent's logger writes to.

Usage:
    python scripts/run_agent.py [--live] [--no-api] [--port PORT] [--iterations N]

Environment:
    AGENT_PLUGINS        - Comma-separated plugin list (default: home-rebalance)
    AGENT_POLL_INTERVAL  - Milliseconds between cycles (default: 300000)
    AGENT_DRY_RUN        - Paper clients when true (default: true)
    AGENT_API_PORT       - Telemetry port (default: 3001)

Examples:
    python scripts/run_agent.py --iterations 1 --no-api
    AGENT_PLUGINS=home-rebalance,pool-yield python scripts/run_agent.py
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path

# Ensure imports work when invoked as a script
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

import uvicorn  # noqa: E402

from api.main import app, set_recorder  # noqa: E402
from treasury.agent.runtime import build_runtime  # noqa: E402
from treasury.agent.scheduler import RebalanceScheduler  # noqa: E402
from treasury.config import AgentConfig  # noqa: E402

logger = logging.getLogger("run_agent")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the treasury rebalancing agent")
    parser.add_argument("--live", action="store_true", help="Use live clients (default: paper)")
    parser.add_argument("--no-api", action="store_true", help="Do not start the telemetry API")
    parser.add_argument("--host", help="API host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, help="API port (default: AGENT_API_PORT or 3001)")
    parser.add_argument("--iterations", type=int, help="Max cycles (default: infinite)")
    return parser.parse_args()


async def _serve(config: AgentConfig, scheduler: RebalanceScheduler) -> None:
    server = None
    server_task = None
    if config.api_enabled:
        server = uvicorn.Server(uvicorn.Config(app, host=config.api_host, port=config.api_port, log_level="info"))
        # Signals are handled here so the scheduler can finish its cycle first.
        server.install_signal_handlers = lambda: None
        server_task = asyncio.create_task(server.serve())
        logger.info(f"Telemetry API on http://{config.api_host}:{config.api_port}")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except NotImplementedError:
            pass

    try:
        await scheduler.run()
    finally:
        if server is not None and server_task is not None:
            server.should_exit = True
            await server_task


def main() -> int:
    args = _parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = AgentConfig.from_env()
    overrides = {}
    if args.live:
        overrides["dry_run"] = False
    if args.no_api:
        overrides["api_enabled"] = False
    if args.host:
        overrides["api_host"] = args.host
    if args.port:
        overrides["api_port"] = args.port
    if args.iterations is not None:
        overrides["max_iterations"] = args.iterations
    config = replace(config, **overrides)

    runtime = build_runtime(config)
    set_recorder(runtime.recorder)
    scheduler = RebalanceScheduler(
        plugins=runtime.plugins,
        context=runtime.context,
        poll_interval=config.poll_interval_seconds,
        max_iterations=config.max_iterations,
        recorder=runtime.recorder,
    )

    if not runtime.plugins:
        logger.error("No valid plugins configured (check AGENT_PLUGINS)")
        return 1

    asyncio.run(_serve(config, scheduler))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
