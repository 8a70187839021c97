"""Yield and price data sources.

Every source degrades to a cached or synthetic value (reduced confidence,
source prefixed with ``synthetic:``) instead of raising into the cycle.
"""

from .deepbook import DeepBookYieldSource, PoolYield, calculate_spread_yield, parse_level2
from .defillama import ChainYield, DefiLlamaClient, synthetic_chain_yields
from .stork import StorkYieldSource, YieldQuote

__all__ = [
    # Stork
    "StorkYieldSource",
    "YieldQuote",
    # DefiLlama
    "ChainYield",
    "DefiLlamaClient",
    "synthetic_chain_yields",
    # DeepBook
    "DeepBookYieldSource",
    "PoolYield",
    "calculate_spread_yield",
    "parse_level2",
]
