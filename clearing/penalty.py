"""
penalty.py - Loss Penalty Model for Forgone Deposits

A participant who forgoes during the minting window reclaims their deposit
minus a penalty that the session retains. The penalty:
- is zero for deposits made at allocation_start,
- grows linearly the later a deposit was made within the allocation window,
- is capped at max_fraction of the forgone amount,
- is waived entirely when the locked balance cannot buy a single unit.

Key Formulas:
    lateness(t) = clamp((t - allocation_start) / (allocation_end - allocation_start), 0, 1)
    blended     = sum(amount_i * lateness(t_i)) / sum(amount_i)      (per participant)
    penalty     = floor(amount * max_fraction * blended)
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_FLOOR
from typing import Sequence

import numpy as np

from .session import Session


_MICROSECOND = timedelta(microseconds=1)


def lateness_fraction(session: Session, deposit_time: datetime) -> Decimal:
    """
    Position of `deposit_time` within the allocation window, in [0, 1].

    PURE FUNCTION. An empty window (start == end) yields 0.
    """
    span = (session.allocation_end - session.allocation_start) // _MICROSECOND
    if span <= 0:
        return Decimal("0")
    elapsed = (deposit_time - session.allocation_start) // _MICROSECOND
    fraction = Decimal(elapsed) / Decimal(span)
    return min(max(fraction, Decimal("0")), Decimal("1"))


def calculate_penalty(
    amount: Decimal,
    lateness: Decimal,
    max_fraction: Decimal,
    locked_balance: Decimal,
    unit_price: Decimal,
    remaining_supply: int,
) -> Decimal:
    """
    Penalty retained when `amount` is forgone.

    PURE FUNCTION - All inputs explicit.

    Args:
        amount: Amount being forgone
        lateness: Participant's blended lateness fraction
        max_fraction: Configured cap (share of amount retained at lateness 1)
        locked_balance: Participant's locked balance before the forgo
        unit_price: Effective price of one unit
        remaining_supply: Units still unsold in the session

    Returns:
        Whole base units retained. 0 when waived: the locked balance cannot
        buy one unit, or no unit is left to buy.
    """
    if locked_balance < unit_price or remaining_supply <= 0:
        return Decimal("0")
    rate = min(max_fraction * lateness, max_fraction)
    return (amount * rate).to_integral_value(rounding=ROUND_FLOOR)


def penalty_schedule(
    session: Session,
    deposit_times: Sequence[datetime],
    max_fraction: Decimal,
) -> np.ndarray:
    """
    Penalty fraction a deposit would carry at each candidate time.

    Vectorised preview of the linear curve for coordinators and participants;
    accepts any sequence of datetimes.

    Returns:
        float64 array of fractions in [0, max_fraction].
    """
    times = np.asarray(deposit_times, dtype="datetime64[us]")
    start = np.datetime64(session.allocation_start, "us")
    end = np.datetime64(session.allocation_end, "us")
    span = (end - start).astype(np.int64)
    if span <= 0:
        return np.zeros(times.shape, dtype=np.float64)
    elapsed = (times - start).astype(np.int64)
    fractions = np.clip(elapsed / span, 0.0, 1.0)
    return fractions * float(max_fraction)
