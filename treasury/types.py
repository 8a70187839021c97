from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Mapping, Optional

# USDC and the vault share token both use 6 decimals.
USDC_DECIMALS = 6
USDC_UNIT = 10**USDC_DECIMALS

ActionKind = Literal["borrow", "bridge", "deposit", "order", "withdraw", "repay"]
PositionStatus = Literal["active", "closed"]
AuxiliaryStatus = Literal["active", "blocked"]

DEFAULT_BUCKET = "any"


def format_usdc(amount: int) -> str:
    """Render minor units as a human USDC amount (e.g. 1500000 -> '1.5')."""
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(int(amount)), USDC_UNIT)
    if frac == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{str(frac).rjust(USDC_DECIMALS, '0').rstrip('0')}"


@dataclass(frozen=True)
class YieldOpportunity:
    venue: str
    yield_pct: float
    confidence: float  # 0.0-1.0
    source: str
    strategy_tag: Optional[str] = None

    @property
    def bucket(self) -> str:
        return self.strategy_tag or DEFAULT_BUCKET

    @property
    def mocked(self) -> bool:
        return self.source.startswith("synthetic:")


@dataclass(frozen=True)
class RebalanceAction:
    kind: ActionKind
    venue: str
    amount: int  # minor units
    details: Mapping[str, Any] = field(default_factory=dict)
    tx_ref: Optional[str] = None

    @property
    def depositor(self) -> Optional[str]:
        value = self.details.get("depositor")
        return str(value) if value else None


@dataclass(frozen=True)
class Position:
    """Funds parked at a venue for one depositor (one row per venue family)."""

    depositor: str
    family: str
    venue: str
    principal_amount: int
    pool_share_amount: int
    opened_at: datetime
    bridge_tx_ref: Optional[str] = None
    status: PositionStatus = "active"


@dataclass(frozen=True)
class PendingBridge:
    """Funds in transit; completion is observed by polling the destination balance."""

    depositor: str
    destination_address: str
    amount: int
    started_at: datetime
    target_pool_key: str
    tx_ref: Optional[str] = None
    expected_apy: Optional[float] = None


@dataclass(frozen=True)
class CustodialKeyRecord:
    depositor: str
    secondary_address: str
    encrypted_secret: str
    created_at: datetime
    updated_at: datetime

    def __repr__(self) -> str:
        return f"CustodialKeyRecord(depositor={self.depositor!r}, secondary_address={self.secondary_address!r})"


@dataclass(frozen=True)
class GatewayPosition:
    """Funds staged in the unified cross-chain balance (or awaiting a bridge retry)."""

    depositor: str
    destination_venue: str
    amount: int
    status: AuxiliaryStatus
    deposited_at: datetime
    tx_ref: Optional[str] = None
    last_attempt: Optional[datetime] = None
    last_error: Optional[str] = None
    protocol: str = "gateway"


@dataclass(frozen=True)
class LendingPosition:
    depositor: str
    chain: str
    protocol: str
    asset: str
    amount: int
    a_token: Optional[str]
    apy: Optional[float]
    deposited_at: datetime
    tx_ref: Optional[str] = None
    status: AuxiliaryStatus = "active"


# ========== Vault read models ==========


@dataclass(frozen=True)
class VaultStats:
    tvl: int
    total_borrowed: int
    num_users: int = 0


@dataclass(frozen=True)
class DepositInfo:
    amount: int
    timestamp: int
    active: bool


@dataclass(frozen=True)
class DepositorPolicy:
    yield_threshold_bps: int
    max_borrow_amount: int
    enabled: bool
    strategy: str


@dataclass(frozen=True)
class BorrowInfo:
    amount: int
    borrow_time: int
    rwa_token: str


@dataclass(frozen=True)
class WithdrawRequest:
    amount: int
    requested_at: int
    pending: bool
