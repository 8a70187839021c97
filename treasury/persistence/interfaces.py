from __future__ import annotations

from typing import Optional, Protocol, Sequence

from treasury.types import (
    CustodialKeyRecord,
    GatewayPosition,
    LendingPosition,
    PendingBridge,
    Position,
)


class PositionStore(Protocol):
    def get_position(self, *, depositor: str, family: str) -> Optional[Position]:
        """Fetch the position a depositor holds in a venue family."""

    def list_positions(
        self,
        *,
        family: Optional[str] = None,
        status: Optional[str] = None,
        depositor: Optional[str] = None,
    ) -> Sequence[Position]:
        """List positions, optionally filtered."""

    def upsert_position(self, *, position: Position) -> None:
        """Insert or replace the position row for (depositor, family)."""

    def delete_position(self, *, depositor: str, family: str) -> bool:
        """Delete a position row. Returns True when a row was removed."""


class PendingBridgeStore(Protocol):
    def get_pending_bridge(self, *, depositor: str) -> Optional[PendingBridge]:
        """Fetch the in-flight bridge for a depositor."""

    def list_pending_bridges(self) -> Sequence[PendingBridge]:
        """List all in-flight bridges, oldest first."""

    def add_pending_bridge(self, *, bridge: PendingBridge) -> None:
        """Record a bridge that was initiated successfully."""

    def complete_pending_bridge(self, *, depositor: str, position: Position) -> bool:
        """Atomically remove the pending bridge and write the resulting position.

        Returns False (and writes nothing) when no pending bridge existed.
        """


class KeyRecordStore(Protocol):
    def get_key_record(self, *, depositor: str) -> Optional[CustodialKeyRecord]:
        """Fetch the encrypted key record for a depositor."""

    def insert_key_record(self, *, record: CustodialKeyRecord) -> bool:
        """Insert a key record unless one exists. Returns True when inserted."""


class GatewayPositionStore(Protocol):
    def get_gateway_position(self, *, depositor: str, destination_venue: str) -> Optional[GatewayPosition]:
        """Fetch a staged unified-balance record."""

    def list_gateway_positions(self, *, status: Optional[str] = None) -> Sequence[GatewayPosition]:
        """List staged unified-balance records."""

    def upsert_gateway_position(self, *, position: GatewayPosition) -> None:
        """Insert or replace a staged unified-balance record."""

    def delete_gateway_position(self, *, depositor: str, destination_venue: str) -> bool:
        """Delete a staged record. Returns True when a row was removed."""


class LendingPositionStore(Protocol):
    def get_lending_position(self, *, depositor: str, chain: str, protocol: str) -> Optional[LendingPosition]:
        """Fetch a lending-market supply position."""

    def list_lending_positions(self, *, depositor: Optional[str] = None) -> Sequence[LendingPosition]:
        """List lending-market supply positions."""

    def upsert_lending_position(self, *, position: LendingPosition) -> None:
        """Insert or replace the row for (depositor, chain, protocol)."""

    def delete_lending_position(self, *, depositor: str, chain: str, protocol: str) -> bool:
        """Delete a lending row. Returns True when a row was removed."""


class AgentStore(
    PositionStore,
    PendingBridgeStore,
    KeyRecordStore,
    GatewayPositionStore,
    LendingPositionStore,
    Protocol,
):
    """Everything the agent persists across cycles."""
