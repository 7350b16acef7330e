"""
test_rollover.py - Unit tests for rollover planning

Tests:
- Coordinator and minting_end guards
- Restart re-anchors windows and resets the price
- Extend pushes minting_end to MAX_TIME
- Close marks the session closed; repeated Close is a no-op
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from clearing import (
    Session, RolloverOption, MAX_TIME,
    compute_rollover, apply_rollover,
    NotCoordinator, MintingNotOver,
)


T0 = datetime(2025, 1, 1)
HOUR = timedelta(hours=1)
AFTER = T0 + 10 * HOUR


def _session(option):
    return Session(
        session_id=1,
        unit_ref="PASS",
        coordinator="coordinator",
        allocation_start=T0,
        allocation_end=T0 + 2 * HOUR,
        minting_start=T0 + 3 * HOUR,
        minting_end=T0 + 7 * HOUR,
        min_price=Decimal("1"),
        deposit_asset="USDC",
        max_supply=100,
        rollover_option=option,
        result_price=Decimal("4"),
        next_unit_index=30,
    )


class TestGuards:

    @pytest.mark.parametrize("option", list(RolloverOption))
    def test_only_coordinator(self, option):
        with pytest.raises(NotCoordinator) as exc_info:
            compute_rollover(_session(option), "mallory", AFTER)
        assert exc_info.value.details['caller'] == "mallory"

    @pytest.mark.parametrize("option", list(RolloverOption))
    def test_not_before_minting_end(self, option):
        session = _session(option)
        with pytest.raises(MintingNotOver):
            compute_rollover(session, "coordinator", T0 + 6 * HOUR)

    def test_at_minting_end_allowed(self):
        session = _session(RolloverOption.CLOSE)
        plan = compute_rollover(session, "coordinator", T0 + 7 * HOUR)
        assert plan.close


class TestRestart:

    def test_windows_re_anchored_with_same_durations(self):
        session = _session(RolloverOption.RESTART)
        apply_rollover(session, compute_rollover(session, "coordinator", AFTER))
        assert session.allocation_start == AFTER
        assert session.allocation_end == AFTER + 2 * HOUR
        assert session.minting_start == AFTER + 3 * HOUR
        assert session.minting_end == AFTER + 7 * HOUR
        assert session.rollover_offset == AFTER

    def test_price_reset_supply_kept(self):
        session = _session(RolloverOption.RESTART)
        apply_rollover(session, compute_rollover(session, "coordinator", AFTER))
        assert session.result_price is None
        assert session.epoch == 1
        assert session.next_unit_index == 30

    def test_second_restart_waits_for_new_minting_end(self):
        session = _session(RolloverOption.RESTART)
        apply_rollover(session, compute_rollover(session, "coordinator", AFTER))
        with pytest.raises(MintingNotOver):
            compute_rollover(session, "coordinator", AFTER)


class TestExtend:

    def test_minting_end_is_max_time(self):
        session = _session(RolloverOption.EXTEND_AT_CLEARING_PRICE)
        apply_rollover(session, compute_rollover(session, "coordinator", AFTER))
        assert session.minting_end == MAX_TIME
        assert session.minting_start == T0 + 3 * HOUR
        assert session.result_price == Decimal("4")
        assert session.extended

    def test_extend_cannot_repeat(self):
        session = _session(RolloverOption.EXTEND_AT_CLEARING_PRICE)
        apply_rollover(session, compute_rollover(session, "coordinator", AFTER))
        with pytest.raises(MintingNotOver):
            compute_rollover(session, "coordinator", AFTER + HOUR)


class TestClose:

    def test_close_marks_session(self):
        session = _session(RolloverOption.CLOSE)
        apply_rollover(session, compute_rollover(session, "coordinator", AFTER))
        assert session.closed
        assert session.minting_end == T0 + 7 * HOUR
        assert session.rollover_offset == AFTER

    def test_repeated_close_is_noop(self):
        session = _session(RolloverOption.CLOSE)
        apply_rollover(session, compute_rollover(session, "coordinator", AFTER))
        plan = compute_rollover(session, "coordinator", AFTER + HOUR)
        assert plan.noop
        apply_rollover(session, plan)
        assert session.rollover_offset == AFTER
