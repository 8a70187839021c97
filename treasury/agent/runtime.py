"""Wiring: stores, tracker, key store and chain clients for one agent process.

Dry-run mode (the default) builds paper clients over a shared in-memory
ledger seeded with a demo depositor; live mode builds web3/httpx clients and
signs with the configured private key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from treasury.agent.registry import StrategyName, build_plugins, resolve_name
from treasury.chain.bridge import CctpBridgeClient, UnsupportedPoolClient
from treasury.chain.evm import EvmTransactor
from treasury.chain.gateway import Web3GatewayClient
from treasury.chain.lending import (
    DEFAULT_AAVE_DATA_PROVIDER,
    DEFAULT_AAVE_POOL,
    AaveV3LendingClient,
    LendingMarket,
)
from treasury.chain.paper import (
    PaperBridge,
    PaperGateway,
    PaperLedger,
    PaperLending,
    PaperPool,
    PaperSuiBalances,
    PaperVault,
)
from treasury.chain.sui import SuiRpcClient
from treasury.chain.vault import Web3VaultClient
from treasury.config import HOME_CHAIN, AgentConfig
from treasury.keystore.store import CustodialKeyStore
from treasury.persistence.interfaces import AgentStore
from treasury.plugins.base import PluginContext, StrategyPlugin
from treasury.positions.tracker import PositionTracker
from treasury.storage.sqlite.config import SqliteConfig
from treasury.storage.sqlite.stores import SqliteStores
from treasury.telemetry.logger import AgentLogger
from treasury.telemetry.recorder import ActionRecorder
from treasury.types import USDC_UNIT

logger = logging.getLogger(__name__)

DEMO_DEPOSITOR = "0x00000000000000000000000000000000000000de"
DEMO_WALLET_BALANCE = 1_000 * USDC_UNIT


@dataclass
class AgentRuntime:
    config: AgentConfig
    store: AgentStore
    context: PluginContext
    plugins: list[StrategyPlugin]
    recorder: ActionRecorder


def open_store(config: AgentConfig) -> AgentStore:
    path = Path(config.database_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    store = SqliteStores(config=SqliteConfig(database_url=f"sqlite:///{path}"))
    store.init_schema()
    return store


def paper_context(
    config: AgentConfig,
    *,
    store: AgentStore,
    agent_logger: AgentLogger,
    ledger: Optional[PaperLedger] = None,
) -> PluginContext:
    """Paper clients sharing one ledger; balances are keyed by chain name or address."""
    ledger = ledger or PaperLedger(
        {
            HOME_CHAIN: DEMO_WALLET_BALANCE,
            config.pool.bridge_source_chain: DEMO_WALLET_BALANCE,
        }
    )
    vault = PaperVault(ledger=ledger, home_chain=HOME_CHAIN)
    vault.add_depositor(DEMO_DEPOSITOR, 1_000 * USDC_UNIT, max_borrow=100 * USDC_UNIT, strategy="DeFi_Yield")
    tracker = PositionTracker(store)
    return PluginContext(
        config=config,
        vault=vault,
        tracker=tracker,
        logger=agent_logger,
        keys=CustodialKeyStore.from_master_key(store, config.keystore_master_key),
        gateway=PaperGateway(ledger=ledger),
        lending=PaperLending(ledger=ledger, chain=config.gateway.lending_chain),
        bridge=PaperBridge(
            ledger=ledger,
            source_chain=config.pool.bridge_source_chain,
            protocol=config.pool.bridge_protocol,
        ),
        pool=PaperPool(ledger=ledger, home_chain=HOME_CHAIN),
        sui=PaperSuiBalances(ledger=ledger),
    )


def live_context(config: AgentConfig, *, store: AgentStore, agent_logger: AgentLogger) -> PluginContext:
    """web3/httpx clients; every chain shares the agent's signing key."""
    config.warn_if_incomplete()
    key = config.home.private_key

    transactors = {name: EvmTransactor(rpc_url=chain.rpc_url, private_key=key) for name, chain in config.chains.items()}
    home_tx = transactors.get(HOME_CHAIN) or EvmTransactor(rpc_url=config.home.rpc_url, private_key=key)

    lending_chain = config.chain(config.gateway.lending_chain)
    lending = AaveV3LendingClient(
        transactors[lending_chain.name],
        LendingMarket(
            chain=lending_chain.name,
            protocol="aave-v3",
            pool_address=DEFAULT_AAVE_POOL,
            data_provider_address=DEFAULT_AAVE_DATA_PROVIDER,
            asset_address=lending_chain.usdc_address,
        ),
        apy_min_pct=config.gateway.lending_apy_min_pct,
        apy_max_pct=config.gateway.lending_apy_max_pct,
    )

    pool_cfg = config.pool
    source = config.chain(pool_cfg.bridge_source_chain)
    bridge = CctpBridgeClient(
        transactors[source.name],
        source_chain=source.name,
        usdc_address=source.usdc_address,
        token_messenger=pool_cfg.resolved_token_messenger(),
        destination_domain=pool_cfg.destination_domain,
        protocol=pool_cfg.bridge_protocol,
    )
    return PluginContext(
        config=config,
        vault=Web3VaultClient(home_tx, config.home.vault_address),
        tracker=PositionTracker(store),
        logger=agent_logger,
        keys=CustodialKeyStore.from_master_key(store, config.keystore_master_key),
        gateway=Web3GatewayClient(transactors, config.chains),
        lending=lending,
        bridge=bridge,
        pool=UnsupportedPoolClient(),
        sui=SuiRpcClient(pool_cfg.resolved_sui_rpc_url(), pool_cfg.resolved_usdc_coin_type()),
    )


LIVE_UNSUPPORTED = frozenset({StrategyName.POOL_YIELD})


def live_plugins(plugins: list[StrategyPlugin]) -> list[StrategyPlugin]:
    """Drop plugins whose venue has no live client (pool deposits exist only as a paper simulation)."""
    kept = []
    for plugin in plugins:
        if resolve_name(plugin.name) in LIVE_UNSUPPORTED:
            logger.error(f"Plugin {plugin.name} has no live pool client; disabled in live mode")
            continue
        kept.append(plugin)
    return kept


def build_runtime(
    config: AgentConfig,
    *,
    store: Optional[AgentStore] = None,
    recorder: Optional[ActionRecorder] = None,
) -> AgentRuntime:
    recorder = recorder or ActionRecorder(max_entries=config.log_buffer)
    agent_logger = AgentLogger()
    agent_logger.add_listener(recorder)

    store = store or open_store(config)
    if config.dry_run:
        context = paper_context(config, store=store, agent_logger=agent_logger)
    else:
        context = live_context(config, store=store, agent_logger=agent_logger)

    plugins = build_plugins(config.plugins, config)
    if not config.dry_run:
        plugins = live_plugins(plugins)
    return AgentRuntime(config=config, store=store, context=context, plugins=plugins, recorder=recorder)
