"""Shared test fixtures for pytest.

Provides in-memory and SQLite stores, a controllable clock, paper chain
clients over one ledger, and a recorder-backed logger.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from treasury.chain.paper import (
    PaperBridge,
    PaperGateway,
    PaperLedger,
    PaperLending,
    PaperPool,
    PaperSuiBalances,
    PaperVault,
)
from treasury.config import AgentConfig
from treasury.keystore.store import CustodialKeyStore
from treasury.market_data.deepbook import PoolYield
from treasury.market_data.stork import YieldQuote
from treasury.plugins.base import PluginContext
from treasury.positions.tracker import PositionTracker
from treasury.storage.memory import InMemoryStores
from treasury.storage.sqlite.config import SqliteConfig
from treasury.storage.sqlite.stores import SqliteStores
from treasury.telemetry.logger import AgentLogger
from treasury.telemetry.recorder import ActionRecorder
from treasury.types import USDC_UNIT

DEPOSITOR = "0x00000000000000000000000000000000000000aa"
OTHER_DEPOSITOR = "0x00000000000000000000000000000000000000bb"
MASTER_KEY = "0x" + "11" * 32


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


def usdc(amount: float) -> int:
    return int(round(amount * USDC_UNIT))


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryStores:
    return InMemoryStores()


@pytest.fixture
def sqlite_store(tmp_path) -> SqliteStores:
    stores = SqliteStores(config=SqliteConfig(database_url=f"sqlite:///{tmp_path / 'agent.sqlite'}"))
    stores.init_schema()
    return stores


@pytest.fixture
def tracker(store: InMemoryStores, clock: FixedClock) -> PositionTracker:
    return PositionTracker(store, clock=clock)


@pytest.fixture
def keystore(store: InMemoryStores, clock: FixedClock) -> CustodialKeyStore:
    return CustodialKeyStore.from_master_key(store, MASTER_KEY, clock=clock)


@pytest.fixture
def recorder() -> ActionRecorder:
    return ActionRecorder(max_entries=200)


@pytest.fixture
def agent_logger(recorder: ActionRecorder) -> AgentLogger:
    return AgentLogger(listeners=[recorder])


@pytest.fixture
def ledger() -> PaperLedger:
    return PaperLedger({"base": usdc(1_000)})


@pytest.fixture
def vault(ledger: PaperLedger) -> PaperVault:
    return PaperVault(ledger=ledger)


@pytest.fixture
def config() -> AgentConfig:
    return AgentConfig()


@pytest.fixture
def ctx(
    config: AgentConfig,
    vault: PaperVault,
    tracker: PositionTracker,
    agent_logger: AgentLogger,
    keystore: CustodialKeyStore,
    ledger: PaperLedger,
) -> PluginContext:
    return PluginContext(
        config=config,
        vault=vault,
        tracker=tracker,
        logger=agent_logger,
        keys=keystore,
        gateway=PaperGateway(ledger=ledger),
        lending=PaperLending(ledger=ledger),
        bridge=PaperBridge(ledger=ledger),
        pool=PaperPool(ledger=ledger),
        sui=PaperSuiBalances(ledger=ledger),
        sleep=AsyncMock(),
    )


@pytest.fixture
def stork_source() -> Mock:
    """Home yield source returning a live 6.0% quote."""
    source = Mock()
    source.fetch_yield = AsyncMock(return_value=YieldQuote(value_pct=6.0, confidence=0.95, source="stork", fetched_at=0.0))
    return source


@pytest.fixture
def deepbook_source() -> Mock:
    """Pool yield source with one attractive and one weak pool."""
    source = Mock()
    source.fetch_pool_yields = AsyncMock(
        return_value=[
            PoolYield(pool_key="SUI_DBUSDC", apy=9.0, spread_pct=0.03, tvl=50_000.0),
            PoolYield(pool_key="DEEP_DBUSDC", apy=6.0, spread_pct=0.02, tvl=10_000.0),
        ]
    )
    return source
