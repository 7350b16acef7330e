"""
test_penalty.py - Unit tests for the forgo penalty model

Tests:
- Lateness fraction across the allocation window
- Linear penalty capped at max_fraction, floored to base units
- Waiver when the locked balance cannot buy one unit
- Vectorised penalty schedule
"""

import pytest
import numpy as np
from datetime import datetime, timedelta
from decimal import Decimal

from clearing import (
    Session, RolloverOption,
    lateness_fraction, calculate_penalty, penalty_schedule,
)


T0 = datetime(2025, 1, 1)
DAY = timedelta(days=1)


@pytest.fixture
def session():
    return Session(
        session_id=1,
        unit_ref="PASS",
        coordinator="coordinator",
        allocation_start=T0,
        allocation_end=T0 + DAY,
        minting_start=T0 + 2 * DAY,
        minting_end=T0 + 3 * DAY,
        min_price=Decimal("1"),
        deposit_asset="USDC",
        max_supply=100,
        rollover_option=RolloverOption.CLOSE,
    )


class TestLateness:

    @pytest.mark.parametrize("offset,expected", [
        (timedelta(0), "0"),
        (DAY / 4, "0.25"),
        (DAY / 2, "0.5"),
        (DAY, "1"),
    ])
    def test_linear_in_window(self, session, offset, expected):
        assert lateness_fraction(session, T0 + offset) == Decimal(expected)

    def test_clamped(self, session):
        assert lateness_fraction(session, T0 - DAY) == Decimal("0")
        assert lateness_fraction(session, T0 + 5 * DAY) == Decimal("1")

    def test_empty_window(self, session):
        session.allocation_end = T0
        assert lateness_fraction(session, T0) == Decimal("0")


class TestCalculatePenalty:

    def test_earliest_deposit_pays_nothing(self):
        assert calculate_penalty(
            Decimal("1000"), Decimal("0"), Decimal("0.1"), Decimal("1000"), Decimal("1"), 10
        ) == Decimal("0")

    def test_latest_deposit_pays_cap(self):
        assert calculate_penalty(
            Decimal("1000"), Decimal("1"), Decimal("0.1"), Decimal("1000"), Decimal("1"), 10
        ) == Decimal("100")

    def test_linear_between(self):
        assert calculate_penalty(
            Decimal("1000"), Decimal("0.5"), Decimal("0.1"), Decimal("1000"), Decimal("1"), 10
        ) == Decimal("50")

    def test_floored_to_base_units(self):
        assert calculate_penalty(
            Decimal("99"), Decimal("1"), Decimal("0.1"), Decimal("99"), Decimal("1"), 10
        ) == Decimal("9")

    def test_waived_below_unit_price(self):
        assert calculate_penalty(
            Decimal("5"), Decimal("1"), Decimal("0.1"), Decimal("5"), Decimal("6"), 10
        ) == Decimal("0")

    def test_never_exceeds_amount(self):
        assert calculate_penalty(
            Decimal("10"), Decimal("1"), Decimal("1"), Decimal("10"), Decimal("1"), 10
        ) == Decimal("10")

    def test_disabled(self):
        assert calculate_penalty(
            Decimal("1000"), Decimal("1"), Decimal("0"), Decimal("1000"), Decimal("1"), 10
        ) == Decimal("0")

    def test_waived_when_supply_sold_out(self):
        assert calculate_penalty(
            Decimal("1000"), Decimal("1"), Decimal("0.1"), Decimal("1000"), Decimal("1"), 0
        ) == Decimal("0")


class TestPenaltySchedule:

    def test_schedule_matches_lateness(self, session):
        times = [T0 - DAY, T0, T0 + DAY / 2, T0 + DAY, T0 + 2 * DAY]
        schedule = penalty_schedule(session, times, Decimal("0.1"))
        assert schedule.dtype == np.float64
        np.testing.assert_allclose(schedule, [0.0, 0.0, 0.05, 0.1, 0.1])

    def test_schedule_empty_window(self, session):
        session.allocation_end = T0
        schedule = penalty_schedule(session, [T0, T0 + DAY], Decimal("0.1"))
        np.testing.assert_array_equal(schedule, [0.0, 0.0])
