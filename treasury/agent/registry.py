"""Strategy plugin registry.

Known strategies are the members of `StrategyName`; each maps to exactly one
factory. The configured list selects (and orders) the active subset; unknown
names are skipped with a warning.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Iterable, Optional

from treasury.config import AgentConfig
from treasury.plugins.base import StrategyPlugin
from treasury.plugins.gateway_yield import GatewayYieldPlugin
from treasury.plugins.home_rebalance import HomeRebalancePlugin
from treasury.plugins.pool_yield import PoolYieldPlugin

logger = logging.getLogger(__name__)


class StrategyName(str, Enum):
    """Supported strategy plugins."""

    HOME_REBALANCE = "home-rebalance"
    GATEWAY_YIELD = "gateway-yield"
    POOL_YIELD = "pool-yield"


ALIASES: dict[str, StrategyName] = {
    "arc-rebalance": StrategyName.HOME_REBALANCE,
    "gateway": StrategyName.GATEWAY_YIELD,
    "sui-yield": StrategyName.POOL_YIELD,
}

PluginFactory = Callable[[AgentConfig], StrategyPlugin]

_FACTORIES: dict[StrategyName, PluginFactory] = {
    StrategyName.HOME_REBALANCE: lambda config: HomeRebalancePlugin(config.home_rebalance),
    StrategyName.GATEWAY_YIELD: lambda config: GatewayYieldPlugin(config.gateway),
    StrategyName.POOL_YIELD: lambda config: PoolYieldPlugin(config.pool),
}

_missing = set(StrategyName) - set(_FACTORIES)
if _missing:
    raise RuntimeError(f"Strategies without a factory: {sorted(m.value for m in _missing)}")


def resolve_name(name: str) -> Optional[StrategyName]:
    key = name.strip().lower()
    if key in ALIASES:
        return ALIASES[key]
    try:
        return StrategyName(key)
    except ValueError:
        return None


def build_plugin(name: StrategyName, config: AgentConfig) -> StrategyPlugin:
    return _FACTORIES[name](config)


def build_plugins(names: Iterable[str], config: AgentConfig) -> list[StrategyPlugin]:
    """Instantiate the configured plugins in order.

    Unknown names are logged and skipped; a name listed twice (directly or via
    an alias) is loaded once.
    """
    plugins: list[StrategyPlugin] = []
    seen: set[StrategyName] = set()
    for raw in names:
        resolved = resolve_name(raw)
        if resolved is None:
            logger.warning(f"Unknown plugin '{raw}', skipping")
            continue
        if resolved in seen:
            logger.warning(f"Plugin '{raw}' listed more than once, skipping duplicate")
            continue
        seen.add(resolved)
        plugins.append(build_plugin(resolved, config))
        logger.info(f"Loaded plugin: {resolved.value}")
    return plugins
