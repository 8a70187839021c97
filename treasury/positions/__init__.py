"""Cross-venue position and pending-bridge tracking."""

from .tracker import Clock, HoldGate, PositionTracker, hold_gate, utc_now

__all__ = ["Clock", "HoldGate", "PositionTracker", "hold_gate", "utc_now"]
