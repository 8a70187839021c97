"""In-process implementation of the agent persistence protocols.

Used by tests and by short dry runs that do not need state to survive a
restart. Keys are normalized exactly like the SQLite store (lower-cased
depositor addresses) so both implementations are interchangeable.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Optional, Sequence

from treasury.persistence.interfaces import AgentStore
from treasury.types import (
    CustodialKeyRecord,
    GatewayPosition,
    LendingPosition,
    PendingBridge,
    Position,
)


class InMemoryStores(AgentStore):
    def __init__(self) -> None:
        self._positions: dict[tuple[str, str], Position] = {}
        self._pending: dict[str, PendingBridge] = {}
        self._keys: dict[str, CustodialKeyRecord] = {}
        self._gateway: dict[tuple[str, str], GatewayPosition] = {}
        self._lending: dict[tuple[str, str, str], LendingPosition] = {}

    def init_schema(self) -> int:
        return 0

    # ========== Positions ==========

    def get_position(self, *, depositor: str, family: str) -> Optional[Position]:
        return self._positions.get((depositor.lower(), family))

    def list_positions(
        self,
        *,
        family: Optional[str] = None,
        status: Optional[str] = None,
        depositor: Optional[str] = None,
    ) -> Sequence[Position]:
        result = [
            p
            for p in self._positions.values()
            if (family is None or p.family == family)
            and (status is None or p.status == status)
            and (depositor is None or p.depositor == depositor.lower())
        ]
        return sorted(result, key=lambda p: p.opened_at)

    def upsert_position(self, *, position: Position) -> None:
        normalized = replace(position, depositor=position.depositor.lower())
        self._positions[(normalized.depositor, normalized.family)] = normalized

    def delete_position(self, *, depositor: str, family: str) -> bool:
        return self._positions.pop((depositor.lower(), family), None) is not None

    # ========== Pending bridges ==========

    def get_pending_bridge(self, *, depositor: str) -> Optional[PendingBridge]:
        return self._pending.get(depositor.lower())

    def list_pending_bridges(self) -> Sequence[PendingBridge]:
        return sorted(self._pending.values(), key=lambda b: b.started_at)

    def add_pending_bridge(self, *, bridge: PendingBridge) -> None:
        normalized = replace(bridge, depositor=bridge.depositor.lower())
        self._pending[normalized.depositor] = normalized

    def complete_pending_bridge(self, *, depositor: str, position: Position) -> bool:
        if self._pending.pop(depositor.lower(), None) is None:
            return False
        self.upsert_position(position=position)
        return True

    # ========== Custodial keys ==========

    def get_key_record(self, *, depositor: str) -> Optional[CustodialKeyRecord]:
        return self._keys.get(depositor.lower())

    def insert_key_record(self, *, record: CustodialKeyRecord) -> bool:
        key = record.depositor.lower()
        if key in self._keys:
            return False
        self._keys[key] = replace(record, depositor=key)
        return True

    # ========== Gateway (unified balance) positions ==========

    def get_gateway_position(self, *, depositor: str, destination_venue: str) -> Optional[GatewayPosition]:
        return self._gateway.get((depositor.lower(), destination_venue))

    def list_gateway_positions(self, *, status: Optional[str] = None) -> Sequence[GatewayPosition]:
        result = [g for g in self._gateway.values() if status is None or g.status == status]
        return sorted(result, key=lambda g: g.deposited_at)

    def upsert_gateway_position(self, *, position: GatewayPosition) -> None:
        normalized = replace(position, depositor=position.depositor.lower())
        self._gateway[(normalized.depositor, normalized.destination_venue)] = normalized

    def delete_gateway_position(self, *, depositor: str, destination_venue: str) -> bool:
        return self._gateway.pop((depositor.lower(), destination_venue), None) is not None

    # ========== Lending positions ==========

    def get_lending_position(self, *, depositor: str, chain: str, protocol: str) -> Optional[LendingPosition]:
        return self._lending.get((depositor.lower(), chain, protocol))

    def list_lending_positions(self, *, depositor: Optional[str] = None) -> Sequence[LendingPosition]:
        result = [
            p for p in self._lending.values() if depositor is None or p.depositor == depositor.lower()
        ]
        return sorted(result, key=lambda p: p.deposited_at)

    def upsert_lending_position(self, *, position: LendingPosition) -> None:
        normalized = replace(position, depositor=position.depositor.lower())
        self._lending[(normalized.depositor, normalized.chain, normalized.protocol)] = normalized

    def delete_lending_position(self, *, depositor: str, chain: str, protocol: str) -> bool:
        return self._lending.pop((depositor.lower(), chain, protocol), None) is not None
