"""
rollover.py - Rollover Controller

Decides what happens to a session once its minting window has closed.
compute_rollover() is pure: it checks the guards and returns a RolloverPlan;
apply_rollover() writes the plan onto the session record.

Policies:
    RESTART                   Re-anchor all four bounds at `now`, keeping the
                              allocation, cooldown and minting durations.
                              Clears the clearing price; unsold supply carries
                              over (next_unit_index is kept).
    EXTEND_AT_CLEARING_PRICE  minting_end := MAX_TIME. Minting continues
                              forever at the already fixed price/floor.
    CLOSE                     No window change. Marks the session closed,
                              which unlocks unconditional withdrawal.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime

from .core import MAX_TIME, MintingNotOver, NotCoordinator
from .session import Session, RolloverOption


@dataclass(frozen=True, slots=True)
class RolloverPlan:
    option: RolloverOption
    allocation_start: datetime
    allocation_end: datetime
    minting_start: datetime
    minting_end: datetime
    applied_at: datetime
    reset_price: bool = False
    close: bool = False
    noop: bool = False


def compute_rollover(session: Session, caller: str, now: datetime) -> RolloverPlan:
    """
    Check rollover guards and compute the resulting windows.

    Raises:
        NotCoordinator: If caller is not the session's coordinator
        MintingNotOver: If now is before minting_end
    """
    if caller != session.coordinator:
        raise NotCoordinator(
            f"Only {session.coordinator} may roll over session {session.session_id}",
            session_id=session.session_id,
            caller=caller,
            coordinator=session.coordinator,
        )

    option = session.rollover_option
    if option == RolloverOption.CLOSE and session.closed:
        return _unchanged(session, now, noop=True)

    if now < session.minting_end:
        raise MintingNotOver(
            f"Session {session.session_id} mints until {session.minting_end}",
            session_id=session.session_id,
            now=now,
            minting_end=session.minting_end,
        )

    if option == RolloverOption.RESTART:
        allocation = session.allocation_end - session.allocation_start
        cooldown = session.minting_start - session.allocation_end
        minting = session.minting_end - session.minting_start
        allocation_end = now + allocation
        minting_start = allocation_end + cooldown
        return RolloverPlan(
            option=option,
            allocation_start=now,
            allocation_end=allocation_end,
            minting_start=minting_start,
            minting_end=minting_start + minting,
            applied_at=now,
            reset_price=True,
        )

    if option == RolloverOption.EXTEND_AT_CLEARING_PRICE:
        return RolloverPlan(
            option=option,
            allocation_start=session.allocation_start,
            allocation_end=session.allocation_end,
            minting_start=session.minting_start,
            minting_end=MAX_TIME,
            applied_at=now,
        )

    return _unchanged(session, now, close=True)


def apply_rollover(session: Session, plan: RolloverPlan) -> None:
    """Write a RolloverPlan onto the live session record."""
    if plan.noop:
        return
    session.allocation_start = plan.allocation_start
    session.allocation_end = plan.allocation_end
    session.minting_start = plan.minting_start
    session.minting_end = plan.minting_end
    session.rollover_offset = plan.applied_at
    if plan.reset_price:
        session.result_price = None
        session.epoch += 1
    if plan.close:
        session.closed = True


def _unchanged(
    session: Session, now: datetime, noop: bool = False, close: bool = False,
) -> RolloverPlan:
    return RolloverPlan(
        option=session.rollover_option,
        allocation_start=session.allocation_start,
        allocation_end=session.allocation_end,
        minting_start=session.minting_start,
        minting_end=session.minting_end,
        applied_at=now,
        noop=noop,
        close=close,
    )
