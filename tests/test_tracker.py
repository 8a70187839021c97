"""Tests for the position and pending-bridge state machine."""

from datetime import timedelta

import pytest

from treasury.errors import PositionConflictError
from treasury.positions.tracker import HoldGate, PositionTracker, hold_gate

from tests.conftest import DEPOSITOR, OTHER_DEPOSITOR, usdc


def _bridge(tracker: PositionTracker, depositor: str = DEPOSITOR, amount: int = usdc(1)):
    return tracker.start_bridge(
        depositor=depositor,
        family="pool",
        destination_address="0xsui",
        amount=amount,
        target_pool_key="SUI_DBUSDC",
        tx_ref="0xburn",
        expected_apy=8.5,
    )


class TestHoldGate:
    def test_not_ready_reports_remaining(self, clock) -> None:
        """A bridge started 2 minutes ago with a 10 minute hold has about 8 minutes left."""
        started = clock()
        clock.advance(minutes=2)
        gate = hold_gate(started_at=started, now=clock(), min_hold=timedelta(minutes=10))
        assert gate.ready is False
        assert gate.remaining_minutes == pytest.approx(8.0)
        assert gate.describe() == "8m"

    def test_ready_after_hold(self, clock) -> None:
        """Once the hold elapsed the gate is open with zero remaining."""
        started = clock()
        clock.advance(hours=13)
        gate = hold_gate(started_at=started, now=clock(), min_hold=timedelta(hours=12))
        assert gate == HoldGate(ready=True, remaining=timedelta(0))

    def test_describe_units(self) -> None:
        """Remaining time renders in hours, minutes or seconds."""
        assert HoldGate(False, timedelta(hours=4)).describe() == "4.0h"
        assert HoldGate(False, timedelta(seconds=45)).describe() == "45s"


class TestPositions:
    def test_open_position_lowercases_depositor(self, tracker: PositionTracker) -> None:
        """Positions are keyed by the lower-cased depositor."""
        position = tracker.open_position(depositor=DEPOSITOR.upper().replace("0X", "0x"), family="gateway", venue="base", amount=usdc(25))
        assert position.depositor == DEPOSITOR
        assert tracker.active_position(DEPOSITOR, "gateway") == position

    def test_at_most_one_position_per_family(self, tracker: PositionTracker) -> None:
        """A second position in the same family is rejected."""
        tracker.open_position(depositor=DEPOSITOR, family="gateway", venue="base", amount=usdc(25))
        with pytest.raises(PositionConflictError):
            tracker.open_position(depositor=DEPOSITOR, family="gateway", venue="ethereum", amount=usdc(10))

    def test_families_are_independent(self, tracker: PositionTracker) -> None:
        """A depositor may hold one position per family."""
        tracker.open_position(depositor=DEPOSITOR, family="gateway", venue="base", amount=usdc(25))
        tracker.open_position(depositor=DEPOSITOR, family="pool", venue="SUI_DBUSDC", amount=usdc(10))
        assert len(tracker.positions()) == 2
        assert len(tracker.positions("gateway")) == 1

    def test_mark_returned_then_close(self, tracker: PositionTracker) -> None:
        """A returned position is closed until repay, then deleted."""
        position = tracker.open_position(depositor=DEPOSITOR, family="gateway", venue="base", amount=usdc(25))
        closed = tracker.mark_returned(position, returned_amount=usdc(24))
        assert closed.status == "closed"
        assert closed.principal_amount == usdc(24)
        assert tracker.active_position(DEPOSITOR, "gateway") is None
        assert tracker.positions(status="closed") == [closed]

        assert tracker.close_position(DEPOSITOR, "gateway") is True
        assert tracker.get_position(DEPOSITOR, "gateway") is None
        assert tracker.close_position(DEPOSITOR, "gateway") is False


class TestPendingBridges:
    def test_start_bridge_records_in_flight_funds(self, tracker: PositionTracker, clock) -> None:
        """Starting a bridge stores destination, amount and start time."""
        bridge = _bridge(tracker)
        assert tracker.pending_bridge(DEPOSITOR) == bridge
        assert bridge.started_at == clock()
        assert tracker.has_exposure(DEPOSITOR, "pool")

    def test_no_second_bridge_while_in_flight(self, tracker: PositionTracker) -> None:
        """Funds already in flight block another bridge for the depositor."""
        _bridge(tracker)
        with pytest.raises(PositionConflictError):
            _bridge(tracker)

    def test_complete_bridge_drains_exactly_once(self, tracker: PositionTracker) -> None:
        """Completion writes the position and removes the pending record once."""
        bridge = _bridge(tracker)
        position = tracker.complete_bridge(
            bridge, family="pool", venue="SUI_DBUSDC", deposited_amount=usdc(0.95), pool_shares=950_000
        )
        assert position is not None
        assert position.principal_amount == usdc(0.95)
        assert position.bridge_tx_ref == "0xburn"
        assert tracker.pending_bridge(DEPOSITOR) is None

        again = tracker.complete_bridge(bridge, family="pool", venue="SUI_DBUSDC", deposited_amount=usdc(0.95))
        assert again is None
        assert len(tracker.positions("pool")) == 1

    def test_pending_bridges_lists_all(self, tracker: PositionTracker) -> None:
        _bridge(tracker, DEPOSITOR)
        _bridge(tracker, OTHER_DEPOSITOR)
        assert {b.depositor for b in tracker.pending_bridges()} == {DEPOSITOR, OTHER_DEPOSITOR}


class TestStagedTransfers:
    def test_stage_then_clear(self, tracker: PositionTracker) -> None:
        """A staged transfer is active until cleared."""
        staged = tracker.stage_transfer(depositor=DEPOSITOR, destination_venue="arc", amount=usdc(25), tx_ref="0xdep")
        assert staged.status == "active"
        assert tracker.staged_transfer(DEPOSITOR, "arc") == staged
        assert tracker.clear_transfer(DEPOSITOR, "arc") is True
        assert tracker.staged_transfer(DEPOSITOR, "arc") is None

    def test_block_keeps_original_fields(self, tracker: PositionTracker, clock) -> None:
        """Blocking an existing record keeps its deposit time, tx and protocol."""
        staged = tracker.stage_transfer(depositor=DEPOSITOR, destination_venue="arc", amount=usdc(25), tx_ref="0xdep")
        clock.advance(minutes=5)
        blocked = tracker.block_transfer(depositor=DEPOSITOR, destination_venue="arc", amount=usdc(25), error="mint: boom")
        assert blocked.status == "blocked"
        assert blocked.deposited_at == staged.deposited_at
        assert blocked.tx_ref == "0xdep"
        assert blocked.last_attempt == clock()
        assert blocked.last_error == "mint: boom"
        assert tracker.staged_transfers(status="blocked") == [blocked]

    def test_block_new_record_with_protocol(self, tracker: PositionTracker) -> None:
        """A failure with no prior record creates a blocked record tagged with the protocol."""
        blocked = tracker.block_transfer(
            depositor=DEPOSITOR, destination_venue="sui", amount=usdc(1), error="x" * 900, protocol="Wormhole CCTP"
        )
        assert blocked.protocol == "Wormhole CCTP"
        assert len(blocked.last_error) == 500
