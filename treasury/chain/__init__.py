"""External collaborators: vault, gateway, lending, bridge, pool and Sui clients.

Each client is a Protocol with a live implementation (web3 or httpx) and a
paper implementation used for dry runs and tests.
"""

from .bridge import BridgeClient, BridgeTransfer, CctpBridgeClient, PoolDepositClient, PoolReceipt
from .evm import EvmTransactor
from .gateway import GatewayClient, Web3GatewayClient
from .lending import AaveV3LendingClient, LendingClient, LendingMarket, ray_to_apy_pct
from .paper import (
    PaperBridge,
    PaperGateway,
    PaperLedger,
    PaperLending,
    PaperPool,
    PaperSuiBalances,
    PaperVault,
)
from .sui import BalanceReader, SuiRpcClient
from .vault import VaultClient, Web3VaultClient, block_ranges

__all__ = [
    # Protocols
    "BalanceReader",
    "BridgeClient",
    "GatewayClient",
    "LendingClient",
    "PoolDepositClient",
    "VaultClient",
    # Results
    "BridgeTransfer",
    "LendingMarket",
    "PoolReceipt",
    # Live clients
    "AaveV3LendingClient",
    "CctpBridgeClient",
    "EvmTransactor",
    "SuiRpcClient",
    "Web3GatewayClient",
    "Web3VaultClient",
    # Paper clients
    "PaperBridge",
    "PaperGateway",
    "PaperLedger",
    "PaperLending",
    "PaperPool",
    "PaperSuiBalances",
    "PaperVault",
    # Helpers
    "block_ranges",
    "ray_to_apy_pct",
]
