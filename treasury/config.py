"""Agent configuration.

Every value has a default and can be overridden from the environment via
`AgentConfig.from_env()`. Amounts are integer minor units (USDC: 6 decimals),
yields are percent, durations are seconds.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from treasury.errors import ConfigurationError
from treasury.types import USDC_UNIT

logger = logging.getLogger(__name__)

HOME_CHAIN = "arc"

# Circle CCTP domain ids.
CHAIN_DOMAINS: dict[str, int] = {
    "arc": 10,
    "ethereum": 0,
    "base": 6,
    "avalanche": 1,
}

DEFAULT_RPC_URLS: dict[str, str] = {
    "arc": "https://rpc.testnet.arc.network",
    "ethereum": "https://ethereum-sepolia-rpc.publicnode.com",
    "base": "https://sepolia.base.org",
    "avalanche": "https://api.avax-test.network/ext/bc/C/rpc",
}

DEFAULT_USDC_ADDRESSES: dict[str, str] = {
    "arc": "0x3600000000000000000000000000000000000000",
    "ethereum": "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
    "base": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    "avalanche": "0x5425890298aed601595a70AB815c96711a31Bc65",
}

DEFAULT_GATEWAY_WALLET = "0x0077777d7EBA4688BDeF3E311b846F25870A19B9"
DEFAULT_GATEWAY_MINTER = "0x0022222ABE238Cc2C7Bb1f21003F0a260052475B"

DEFAULT_ALLOWED_PROJECTS = ("aave", "compound", "morpho", "spark", "aerodrome", "uniswap", "curve", "yearn")


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


def _env_usdc(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    """Read a human USDC amount (e.g. "0.1") as minor units."""
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(round(float(raw) * USDC_UNIT))
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a USDC amount, got {raw!r}") from exc


@dataclass(frozen=True)
class ChainConfig:
    """An EVM chain the agent signs on."""

    name: str
    rpc_url: str
    usdc_address: str
    gateway_wallet: str = DEFAULT_GATEWAY_WALLET
    gateway_minter: str = DEFAULT_GATEWAY_MINTER

    @property
    def domain(self) -> int:
        return CHAIN_DOMAINS.get(self.name, 0)

    @classmethod
    def from_env(cls, name: str, env: Mapping[str, str]) -> ChainConfig:
        prefix = name.upper()
        return cls(
            name=name,
            rpc_url=env.get(f"{prefix}_RPC_URL") or DEFAULT_RPC_URLS.get(name, ""),
            usdc_address=env.get(f"{prefix}_USDC_ADDRESS") or DEFAULT_USDC_ADDRESSES.get(name, ""),
            gateway_wallet=env.get("GATEWAY_WALLET_ADDRESS") or DEFAULT_GATEWAY_WALLET,
            gateway_minter=env.get("GATEWAY_MINTER_ADDRESS") or DEFAULT_GATEWAY_MINTER,
        )


@dataclass(frozen=True)
class HomeChainConfig:
    """Home settlement chain and the vault deployed on it."""

    rpc_url: str = DEFAULT_RPC_URLS[HOME_CHAIN]
    vault_address: str = ""
    usdc_address: str = DEFAULT_USDC_ADDRESSES[HOME_CHAIN]
    private_key: str = field(default="", repr=False)

    # Deposit event scan
    lookback_blocks: int = 5000
    log_chunk_size: int = 1000


@dataclass(frozen=True)
class HomeRebalanceConfig:
    yield_threshold_pct: float = 5.0
    borrow_divisor: int = 2
    stork_api_key: str = field(default="", repr=False)
    stork_api_url: str = "https://rest.jp.stork-oracle.network/v1/prices/latest"
    stork_asset: str = "USYCUSD"
    cache_ttl_seconds: float = 60.0
    synthetic_yield_pct: float = 6.5


@dataclass(frozen=True)
class DefiLlamaConfig:
    url: str = "https://yields.llama.fi/pools"
    min_tvl_usd: float = 5_000_000
    timeout_ms: int = 10_000
    max_apy_pct: float = 30.0
    allowed_projects: tuple[str, ...] = DEFAULT_ALLOWED_PROJECTS


@dataclass(frozen=True)
class GatewayYieldConfig:
    target_chains: tuple[str, ...] = ("ethereum", "base", "avalanche")
    yield_diff_threshold_pct: float = 1.0
    min_hold_seconds: float = 120.0
    borrow_divisor: int = 4
    strategies: tuple[str, ...] = ("DeFi_Yield", "Stablecoin_Carry")
    home_baseline_pct: float = 5.0
    # Destination-side protocol fee kept back when minting from the unified balance.
    gateway_fee: int = 0
    lending_supply_enabled: bool = False
    lending_chain: str = "base"
    lending_apy_fallback_pct: float = 7.5
    lending_apy_min_pct: float = 0.0
    lending_apy_max_pct: float = 100.0
    defillama: DefiLlamaConfig = field(default_factory=DefiLlamaConfig)


@dataclass(frozen=True)
class PoolYieldConfig:
    network: str = "Testnet"
    sui_rpc_url: str = ""
    deepbook_indexer_url: str = ""
    usdc_coin_type: str = ""
    yield_threshold_pct: float = 7.0
    home_margin_pct: float = 2.0
    home_default_pct: float = 5.0
    min_hold_seconds: float = 12 * 3600.0
    borrow_divisor: int = 5
    strategies: tuple[str, ...] = ("DeFi_Yield",)
    bridge_protocol: str = "Wormhole CCTP"
    bridge_source_chain: str = "base"
    bridge_max_amount: Optional[int] = None
    # CCTP TokenMessenger on the bridge source chain; Sui is CCTP domain 8
    token_messenger_address: str = ""
    destination_domain: int = 8
    deposit_cap: Optional[int] = None
    arrival_ratio: float = 0.9
    arrival_poll_attempts: int = 3
    arrival_poll_interval_seconds: float = 5.0
    # "synthetic" (accrued yield is simulated) or "redeem" (withdraw from the pool)
    return_mode: str = "synthetic"

    @property
    def mainnet(self) -> bool:
        return self.network.lower() == "mainnet"

    @property
    def pool_keys(self) -> tuple[str, ...]:
        if self.mainnet:
            return ("SUI_USDC", "DEEP_USDC")
        return ("SUI_DBUSDC", "DEEP_DBUSDC")

    def resolved_sui_rpc_url(self) -> str:
        if self.sui_rpc_url:
            return self.sui_rpc_url
        if self.mainnet:
            return "https://fullnode.mainnet.sui.io:443"
        return "https://fullnode.testnet.sui.io:443"

    def resolved_indexer_url(self) -> str:
        if self.deepbook_indexer_url:
            return self.deepbook_indexer_url
        if self.mainnet:
            return "https://deepbook-indexer.mainnet.mystenlabs.com"
        return "https://deepbook-indexer.testnet.mystenlabs.com"

    def resolved_token_messenger(self) -> str:
        if self.token_messenger_address:
            return self.token_messenger_address
        if self.mainnet:
            return "0x1682Ae6375C4E4A97e4B583BC394c861A46D8962"
        return "0x9f3B8679c73C2Fef8b59B4f3444d4e156fb70AA5"

    def resolved_usdc_coin_type(self) -> str:
        if self.usdc_coin_type:
            return self.usdc_coin_type
        if self.mainnet:
            return "0xdba34672e30cb065b1f93e3ab55318768fd6fef66c15942c9f7cb846e2f900e7::usdc::USDC"
        return "0xa1ec7fc00a6f40db9693ad1415d0c193ad3906494428cf252621037bd7117e29::usdc::USDC"


@dataclass(frozen=True)
class AgentConfig:
    """Top-level configuration for the rebalancing agent."""

    # Enabled strategy plugins, in execution order
    plugins: tuple[str, ...] = ("home-rebalance",)

    # Delay between the end of one cycle and the start of the next
    poll_interval_seconds: float = 300.0

    # Paper clients only (no signing) when True
    dry_run: bool = True

    # Stop after N cycles (None = run forever)
    max_iterations: Optional[int] = None

    home: HomeChainConfig = field(default_factory=HomeChainConfig)
    home_rebalance: HomeRebalanceConfig = field(default_factory=HomeRebalanceConfig)
    gateway: GatewayYieldConfig = field(default_factory=GatewayYieldConfig)
    pool: PoolYieldConfig = field(default_factory=PoolYieldConfig)
    chains: Mapping[str, ChainConfig] = field(default_factory=dict)

    database_path: str = "data/treasuryforge.sqlite"
    keystore_master_key: Optional[str] = field(default=None, repr=False)

    api_enabled: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    log_buffer: int = 200

    def chain(self, name: str) -> ChainConfig:
        if name in self.chains:
            return self.chains[name]
        if name == HOME_CHAIN:
            return ChainConfig(name=HOME_CHAIN, rpc_url=self.home.rpc_url, usdc_address=self.home.usdc_address)
        raise ConfigurationError(f"No chain configuration for {name}")

    def warn_if_incomplete(self) -> list[str]:
        """Log (not raise) missing live-mode settings; returns the warnings."""
        warnings = []
        if not self.home.vault_address:
            warnings.append("ARC_VAULT_ADDRESS not set - vault interactions will fail")
        if not self.home.private_key:
            warnings.append("PRIVATE_KEY not set - cannot sign transactions")
        for message in warnings:
            logger.warning(message)
        return warnings

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> AgentConfig:
        env = os.environ if environ is None else environ

        home = HomeChainConfig(
            rpc_url=env.get("ARC_RPC_URL") or DEFAULT_RPC_URLS[HOME_CHAIN],
            vault_address=env.get("ARC_VAULT_ADDRESS", ""),
            usdc_address=env.get("ARC_USDC_ADDRESS") or DEFAULT_USDC_ADDRESSES[HOME_CHAIN],
            private_key=env.get("PRIVATE_KEY") or env.get("DEPLOYER_PRIVATE_KEY", ""),
            lookback_blocks=_env_int(env, "DEPOSIT_LOOKBACK_BLOCKS", 5000),
            log_chunk_size=_env_int(env, "DEPOSIT_LOG_CHUNK_SIZE", 1000),
        )

        home_rebalance = HomeRebalanceConfig(
            yield_threshold_pct=_env_float(env, "HOME_YIELD_THRESHOLD", 5.0),
            stork_api_key=env.get("STORK_API_KEY", ""),
            stork_api_url=env.get("STORK_API_URL") or HomeRebalanceConfig.stork_api_url,
            stork_asset=env.get("STORK_ASSET") or HomeRebalanceConfig.stork_asset,
        )

        allowed = env.get("DEFILLAMA_ALLOWED_PROJECTS")
        defillama = DefiLlamaConfig(
            url=env.get("DEFILLAMA_YIELDS_URL") or DefiLlamaConfig.url,
            min_tvl_usd=_env_float(env, "DEFILLAMA_MIN_TVL", 5_000_000),
            timeout_ms=_env_int(env, "DEFILLAMA_TIMEOUT_MS", 10_000),
            max_apy_pct=_env_float(env, "DEFILLAMA_MAX_APY", 30.0),
            allowed_projects=(
                tuple(p.strip().lower() for p in allowed.split(",") if p.strip())
                if allowed
                else DEFAULT_ALLOWED_PROJECTS
            ),
        )

        gateway = GatewayYieldConfig(
            yield_diff_threshold_pct=_env_float(env, "GATEWAY_YIELD_DIFF_THRESHOLD", 1.0),
            min_hold_seconds=_env_float(env, "GATEWAY_MIN_HOLD_SECONDS", 120.0),
            gateway_fee=_env_usdc(env, "GATEWAY_FEE", 0) or 0,
            lending_supply_enabled=_env_bool(env, "LENDING_SUPPLY_ENABLED", False),
            lending_chain=env.get("LENDING_CHAIN") or "base",
            lending_apy_fallback_pct=_env_float(env, "LENDING_APY_FALLBACK", 7.5),
            lending_apy_min_pct=_env_float(env, "LENDING_APY_MIN", 0.0),
            lending_apy_max_pct=_env_float(env, "LENDING_APY_MAX", 100.0),
            defillama=defillama,
        )

        network = env.get("WORMHOLE_NETWORK") or "Testnet"
        source_chain = (env.get("WORMHOLE_SOURCE_CHAIN") or "base").lower()
        default_cap = None
        if network.lower() == "mainnet" and source_chain == "base":
            default_cap = 100_000  # 0.1 USDC
        pool = PoolYieldConfig(
            network=network,
            sui_rpc_url=env.get("SUI_RPC_URL", ""),
            deepbook_indexer_url=env.get("DEEPBOOK_INDEXER_URL", ""),
            usdc_coin_type=env.get("SUI_USDC_COIN_TYPE", ""),
            yield_threshold_pct=_env_float(env, "SUI_YIELD_THRESHOLD", 7.0),
            min_hold_seconds=_env_float(env, "SUI_MIN_HOLD_SECONDS", 12 * 3600.0),
            bridge_source_chain=source_chain,
            bridge_max_amount=_env_usdc(env, "BRIDGE_MAX_AMOUNT", default_cap),
            token_messenger_address=env.get("CCTP_TOKEN_MESSENGER_ADDRESS", ""),
            deposit_cap=_env_usdc(env, "DEEPBOOK_DEPOSIT_CAP", None),
            arrival_ratio=_env_float(env, "BRIDGE_ARRIVAL_RATIO", 0.9),
            arrival_poll_attempts=_env_int(env, "BRIDGE_ARRIVAL_POLL_ATTEMPTS", 3),
            arrival_poll_interval_seconds=_env_float(env, "BRIDGE_ARRIVAL_POLL_INTERVAL", 5.0),
            return_mode=(env.get("SUI_RETURN_MODE") or "synthetic").lower(),
        )
        if pool.return_mode not in ("synthetic", "redeem"):
            raise ConfigurationError(f"SUI_RETURN_MODE must be 'synthetic' or 'redeem', got {pool.return_mode!r}")

        chains = {name: ChainConfig.from_env(name, env) for name in CHAIN_DOMAINS if name != HOME_CHAIN}
        chains[HOME_CHAIN] = ChainConfig(
            name=HOME_CHAIN,
            rpc_url=home.rpc_url,
            usdc_address=home.usdc_address,
            gateway_wallet=env.get("GATEWAY_WALLET_ADDRESS") or DEFAULT_GATEWAY_WALLET,
            gateway_minter=env.get("GATEWAY_MINTER_ADDRESS") or DEFAULT_GATEWAY_MINTER,
        )

        return cls(
            plugins=load_plugin_names(env),
            poll_interval_seconds=_env_int(env, "AGENT_POLL_INTERVAL", 300_000) / 1000.0,
            dry_run=_env_bool(env, "AGENT_DRY_RUN", True),
            home=home,
            home_rebalance=home_rebalance,
            gateway=gateway,
            pool=pool,
            chains=chains,
            database_path=env.get("TREASURYFORGE_DB_PATH") or "data/treasuryforge.sqlite",
            keystore_master_key=env.get("SUI_KEYSTORE_MASTER_KEY") or None,
            api_enabled=_env_bool(env, "AGENT_API_ENABLED", True),
            api_port=_env_int(env, "AGENT_API_PORT", 3001),
            log_buffer=_env_int(env, "AGENT_LOG_BUFFER", 200),
        )


def load_plugin_names(env: Mapping[str, str]) -> tuple[str, ...]:
    """Plugin names from AGENT_PLUGINS (comma-separated) or AGENT_PLUGINS_FILE (JSON).

    The JSON file has the shape ``{"plugins": ["home-rebalance", ...]}``.
    """
    inline = env.get("AGENT_PLUGINS")
    if inline:
        return tuple(name.strip() for name in inline.split(",") if name.strip())

    path = env.get("AGENT_PLUGINS_FILE")
    if path:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"Cannot read plugin list from {path}: {exc}") from exc
        names = data.get("plugins") if isinstance(data, dict) else None
        if not isinstance(names, list):
            raise ConfigurationError(f"{path} must contain a 'plugins' list")
        return tuple(str(name) for name in names)

    return AgentConfig.plugins
