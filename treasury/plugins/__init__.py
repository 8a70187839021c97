"""Venue adapters driven by the scheduler.

- home_rebalance: borrow against idle deposits when the home yield is high
- gateway_yield: move borrowed USDC to the best EVM chain through the gateway
- pool_yield: bridge borrowed USDC into an external liquidity pool on Sui
"""

from .base import PluginContext, StepResult, StrategyPlugin, VenuePlugin, attempt
from .gateway_yield import GatewayYieldPlugin
from .home_rebalance import HomeRebalancePlugin
from .pool_yield import PoolYieldPlugin

__all__ = [
    # Contract
    "PluginContext",
    "StepResult",
    "StrategyPlugin",
    "VenuePlugin",
    "attempt",
    # Plugins
    "GatewayYieldPlugin",
    "HomeRebalancePlugin",
    "PoolYieldPlugin",
]
