"""Position & pending-bridge state machine.

Per depositor and venue family the lifecycle is:

    NONE -> BRIDGING (pending bridge) -> DEPOSITED (active position)
         -> [hold-time gate] -> WITHDRAW_REQUESTED -> RETURNING (closed) -> NONE

Rules enforced here:
- at most one active position per (depositor, family)
- a pending bridge is only written after the source-side transfer succeeded
- a pending bridge is removed exactly once, together with the position write
  that follows the downstream deposit
- a position is deleted only after return and repay
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from treasury.errors import PositionConflictError
from treasury.persistence.interfaces import AgentStore
from treasury.types import GatewayPosition, LendingPosition, PendingBridge, Position

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class HoldGate:
    ready: bool
    remaining: timedelta

    @property
    def remaining_minutes(self) -> float:
        return self.remaining.total_seconds() / 60

    def describe(self) -> str:
        seconds = int(self.remaining.total_seconds())
        if seconds >= 3600:
            return f"{seconds / 3600:.1f}h"
        if seconds >= 60:
            return f"{seconds / 60:.0f}m"
        return f"{seconds}s"


def hold_gate(*, started_at: datetime, now: datetime, min_hold: timedelta) -> HoldGate:
    """Return whether `min_hold` has elapsed since `started_at`."""
    elapsed = now - started_at
    remaining = min_hold - elapsed
    if remaining <= timedelta(0):
        return HoldGate(ready=True, remaining=timedelta(0))
    return HoldGate(ready=False, remaining=remaining)


class PositionTracker:
    """Durable per-depositor venue state, backed by an injected store."""

    def __init__(self, store: AgentStore, *, clock: Optional[Clock] = None) -> None:
        self.store = store
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return self._clock()

    # ========== Queries ==========

    def get_position(self, depositor: str, family: str) -> Optional[Position]:
        return self.store.get_position(depositor=depositor, family=family)

    def active_position(self, depositor: str, family: str) -> Optional[Position]:
        position = self.get_position(depositor, family)
        if position is None or position.status != "active":
            return None
        return position

    def positions(self, family: Optional[str] = None, *, status: Optional[str] = None) -> Sequence[Position]:
        return self.store.list_positions(family=family, status=status)

    def pending_bridge(self, depositor: str) -> Optional[PendingBridge]:
        return self.store.get_pending_bridge(depositor=depositor)

    def pending_bridges(self) -> Sequence[PendingBridge]:
        return self.store.list_pending_bridges()

    def has_exposure(self, depositor: str, family: str) -> bool:
        """True when the depositor already has funds parked or in flight for the family."""
        if self.get_position(depositor, family) is not None:
            return True
        return self.pending_bridge(depositor) is not None

    def hold_gate(self, started_at: datetime, min_hold: timedelta) -> HoldGate:
        return hold_gate(started_at=started_at, now=self.now(), min_hold=min_hold)

    # ========== Transitions ==========

    def open_position(
        self,
        *,
        depositor: str,
        family: str,
        venue: str,
        amount: int,
        pool_shares: int = 0,
        bridge_tx_ref: Optional[str] = None,
    ) -> Position:
        """Record a position after a successful deposit into the venue."""
        existing = self.get_position(depositor, family)
        if existing is not None:
            raise PositionConflictError(
                f"{depositor} already holds a {existing.status} {family} position on {existing.venue}"
            )
        position = Position(
            depositor=depositor.lower(),
            family=family,
            venue=venue,
            principal_amount=amount,
            pool_share_amount=pool_shares,
            opened_at=self.now(),
            bridge_tx_ref=bridge_tx_ref,
            status="active",
        )
        self.store.upsert_position(position=position)
        return position

    def start_bridge(
        self,
        *,
        depositor: str,
        family: str,
        destination_address: str,
        amount: int,
        target_pool_key: str,
        tx_ref: Optional[str],
        expected_apy: Optional[float] = None,
    ) -> PendingBridge:
        """Record funds in flight after the source-side transfer succeeded."""
        if self.has_exposure(depositor, family):
            raise PositionConflictError(f"{depositor} already has {family} funds parked or in flight")
        bridge = PendingBridge(
            depositor=depositor.lower(),
            destination_address=destination_address,
            amount=amount,
            started_at=self.now(),
            target_pool_key=target_pool_key,
            tx_ref=tx_ref,
            expected_apy=expected_apy,
        )
        self.store.add_pending_bridge(bridge=bridge)
        return bridge

    def complete_bridge(
        self,
        bridge: PendingBridge,
        *,
        family: str,
        venue: str,
        deposited_amount: int,
        pool_shares: int = 0,
    ) -> Optional[Position]:
        """Drain a pending bridge into an active position (single transaction).

        Returns None when the pending bridge was already drained.
        """
        position = Position(
            depositor=bridge.depositor.lower(),
            family=family,
            venue=venue,
            principal_amount=deposited_amount,
            pool_share_amount=pool_shares,
            opened_at=self.now(),
            bridge_tx_ref=bridge.tx_ref,
            status="active",
        )
        if not self.store.complete_pending_bridge(depositor=bridge.depositor, position=position):
            logger.warning(f"Pending bridge for {bridge.depositor} was already drained")
            return None
        return position

    def mark_returned(self, position: Position, *, returned_amount: int) -> Position:
        """Funds are back home; the position stays (closed) until repay succeeds."""
        closed = replace(position, principal_amount=returned_amount, status="closed")
        self.store.upsert_position(position=closed)
        return closed

    def close_position(self, depositor: str, family: str) -> bool:
        """Delete the position after return and repay."""
        return self.store.delete_position(depositor=depositor, family=family)

    # ========== Staged transfers (unified balance) ==========

    def staged_transfer(self, depositor: str, destination_venue: str) -> Optional[GatewayPosition]:
        return self.store.get_gateway_position(depositor=depositor, destination_venue=destination_venue)

    def staged_transfers(self, *, status: Optional[str] = None) -> Sequence[GatewayPosition]:
        return self.store.list_gateway_positions(status=status)

    def stage_transfer(
        self,
        *,
        depositor: str,
        destination_venue: str,
        amount: int,
        tx_ref: Optional[str] = None,
        protocol: str = "gateway",
    ) -> GatewayPosition:
        staged = GatewayPosition(
            depositor=depositor.lower(),
            destination_venue=destination_venue,
            amount=amount,
            status="active",
            deposited_at=self.now(),
            tx_ref=tx_ref,
            last_attempt=self.now(),
            protocol=protocol,
        )
        self.store.upsert_gateway_position(position=staged)
        return staged

    def block_transfer(
        self,
        *,
        depositor: str,
        destination_venue: str,
        amount: int,
        error: str,
        protocol: str = "gateway",
    ) -> GatewayPosition:
        """Record that a transfer step failed after funds were committed."""
        existing = self.staged_transfer(depositor, destination_venue)
        blocked = GatewayPosition(
            depositor=depositor.lower(),
            destination_venue=destination_venue,
            amount=amount,
            status="blocked",
            deposited_at=existing.deposited_at if existing else self.now(),
            tx_ref=existing.tx_ref if existing else None,
            last_attempt=self.now(),
            last_error=error[:500],
            protocol=existing.protocol if existing else protocol,
        )
        self.store.upsert_gateway_position(position=blocked)
        return blocked

    def clear_transfer(self, depositor: str, destination_venue: str) -> bool:
        return self.store.delete_gateway_position(depositor=depositor, destination_venue=destination_venue)

    # ========== Lending supply ==========

    def lending_position(self, depositor: str, chain: str, protocol: str) -> Optional[LendingPosition]:
        return self.store.get_lending_position(depositor=depositor, chain=chain, protocol=protocol)

    def record_lending(self, position: LendingPosition) -> None:
        self.store.upsert_lending_position(position=position)

    def remove_lending(self, depositor: str, chain: str, protocol: str) -> bool:
        return self.store.delete_lending_position(depositor=depositor, chain=chain, protocol=protocol)
