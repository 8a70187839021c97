"""Persistence boundary (interfaces only)."""

from .interfaces import (
    AgentStore,
    GatewayPositionStore,
    KeyRecordStore,
    LendingPositionStore,
    PendingBridgeStore,
    PositionStore,
)

__all__ = [
    "AgentStore",
    "GatewayPositionStore",
    "KeyRecordStore",
    "LendingPositionStore",
    "PendingBridgeStore",
    "PositionStore",
]
