"""
session.py - Session Records, Lifecycle Phases and the Session Registry

A Session is one allocation-and-mint cycle with its own windows, supply and
pricing. This module provides:
1. RolloverOption / SessionPhase enums
2. Session - the mutable per-session record
3. session_phase() - pure phase evaluation from the clock and the bounds
4. SessionRegistry - arena of sessions indexed by session id

Phase is never stored. It is recomputed from `now` against the four window
bounds (all inclusive), plus the `closed` marker a Close rollover leaves:

    now < allocation_start                      -> PENDING
    allocation_start <= now <= allocation_end   -> ALLOCATION
    allocation_end < now < minting_start        -> COOLDOWN
    minting_start <= now <= minting_end         -> MINTING (EXTENDED_MINTING
                                                   when minting_end is MAX_TIME)
    now > minting_end                           -> COMPLETED
    closed                                      -> CLOSED
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Iterator

from .core import (
    MAX_TIME,
    InvalidSession, BadSessionBounds,
    to_amount,
)


class RolloverOption(Enum):
    """Policy the coordinator applies once the minting window has closed."""
    RESTART = "restart"
    EXTEND_AT_CLEARING_PRICE = "extend_at_clearing_price"
    CLOSE = "close"


class SessionPhase(Enum):
    PENDING = "pending"
    ALLOCATION = "allocation"
    COOLDOWN = "cooldown"
    MINTING = "minting"
    EXTENDED_MINTING = "extended_minting"
    COMPLETED = "completed"
    CLOSED = "closed"


MINTING_PHASES = frozenset({SessionPhase.MINTING, SessionPhase.EXTENDED_MINTING})


@dataclass(slots=True)
class Session:
    """
    Mutable record for one session.

    Terms (fixed at creation):
        session_id, unit_ref, coordinator, min_price, deposit_asset,
        max_supply, rollover_option, item_offset

    Windows (re-anchored by a Restart rollover, minting_end extended by an
    ExtendAtClearingPrice rollover):
        allocation_start, allocation_end, minting_start, minting_end

    Derived state:
        total_deposits: Sum of every participant balance in this session
        result_price: Clearing price for the current epoch (None until discovered)
        next_unit_index: Items already minted, 0 <= next_unit_index <= max_supply
        rollover_offset: Time the last rollover was applied
        epoch: Clearing round, incremented on restart
        closed: Set by a Close rollover
        penalties_retained: Forgo penalties kept in custody
    """
    session_id: int
    unit_ref: str
    coordinator: str
    allocation_start: datetime
    allocation_end: datetime
    minting_start: datetime
    minting_end: datetime
    min_price: Decimal
    deposit_asset: str
    max_supply: int
    rollover_option: RolloverOption
    item_offset: int = 0
    total_deposits: Decimal = Decimal("0")
    result_price: Optional[Decimal] = None
    next_unit_index: int = 0
    rollover_offset: Optional[datetime] = None
    epoch: int = 0
    closed: bool = False
    penalties_retained: Decimal = Decimal("0")

    @property
    def exists(self) -> bool:
        return bool(self.unit_ref)

    @property
    def remaining_supply(self) -> int:
        return self.max_supply - self.next_unit_index

    @property
    def extended(self) -> bool:
        return self.minting_end == MAX_TIME

    def copy(self) -> Session:
        return replace(self)


def session_phase(session: Session, now: datetime) -> SessionPhase:
    """
    Evaluate the lifecycle phase of a session at `now`.

    PURE FUNCTION - depends only on the session's bounds and the clock.
    """
    if session.closed:
        return SessionPhase.CLOSED
    if now < session.allocation_start:
        return SessionPhase.PENDING
    if now <= session.allocation_end:
        return SessionPhase.ALLOCATION
    if now < session.minting_start:
        return SessionPhase.COOLDOWN
    if now <= session.minting_end:
        if session.extended:
            return SessionPhase.EXTENDED_MINTING
        return SessionPhase.MINTING
    return SessionPhase.COMPLETED


def is_terminal(session: Session, now: datetime) -> bool:
    """True once the minting window has passed or the session was closed."""
    return session.closed or now > session.minting_end


def validate_bounds(
    allocation_start: datetime,
    allocation_end: datetime,
    minting_start: datetime,
    minting_end: datetime,
) -> None:
    """
    Enforce allocation_start <= allocation_end <= minting_start <= minting_end.

    Raises:
        BadSessionBounds: With all four bounds attached
    """
    if not (allocation_start <= allocation_end <= minting_start <= minting_end):
        raise BadSessionBounds(
            "Session windows must satisfy allocation_start <= allocation_end "
            "<= minting_start <= minting_end",
            allocation_start=allocation_start,
            allocation_end=allocation_end,
            minting_start=minting_start,
            minting_end=minting_end,
        )


class SessionRegistry:
    """
    Arena of Session records indexed by session id.

    Ids are assigned monotonically from 1; id 0 is never valid. Sessions are
    never deleted.
    """

    def __init__(self):
        self._sessions: List[Session] = []

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(self._sessions)

    def create(
        self,
        unit_ref: str,
        coordinator: str,
        allocation_start: datetime,
        allocation_end: datetime,
        minting_start: datetime,
        minting_end: datetime,
        min_price,
        deposit_asset: str,
        max_supply: int,
        rollover_option: RolloverOption,
        item_offset: int = 0,
    ) -> Session:
        """
        Validate terms and append a new session.

        Raises:
            BadSessionBounds: If the window ordering is violated
            ValueError: If a reference is empty, max_supply or min_price is not positive
        """
        if not unit_ref or not unit_ref.strip():
            raise ValueError("unit_ref cannot be empty")
        if not coordinator or not coordinator.strip():
            raise ValueError("coordinator cannot be empty")
        if not deposit_asset or not deposit_asset.strip():
            raise ValueError("deposit_asset cannot be empty")
        if isinstance(max_supply, bool) or not isinstance(max_supply, int) or max_supply <= 0:
            raise ValueError(f"max_supply must be a positive integer, got {max_supply!r}")
        if not isinstance(rollover_option, RolloverOption):
            rollover_option = RolloverOption(rollover_option)
        validate_bounds(allocation_start, allocation_end, minting_start, minting_end)

        session = Session(
            session_id=len(self._sessions) + 1,
            unit_ref=unit_ref,
            coordinator=coordinator,
            allocation_start=allocation_start,
            allocation_end=allocation_end,
            minting_start=minting_start,
            minting_end=minting_end,
            min_price=to_amount(min_price, "min_price"),
            deposit_asset=deposit_asset,
            max_supply=max_supply,
            rollover_option=rollover_option,
            item_offset=item_offset,
        )
        self._sessions.append(session)
        return session

    def get(self, session_id: int) -> Session:
        """
        Return the live record for a session.

        Raises:
            InvalidSession: If the id was never assigned
        """
        if isinstance(session_id, bool) or not isinstance(session_id, int):
            raise InvalidSession(f"Session id must be an integer, got {session_id!r}",
                                 session_id=session_id)
        if session_id < 1 or session_id > len(self._sessions):
            raise InvalidSession(f"Session {session_id} does not exist", session_id=session_id)
        session = self._sessions[session_id - 1]
        if not session.exists:
            raise InvalidSession(f"Session {session_id} does not exist", session_id=session_id)
        return session

    def committed_supply(self, unit_ref: str) -> int:
        """Items of `unit_ref` reserved by existing sessions and not yet minted."""
        return sum(s.remaining_supply for s in self._sessions if s.unit_ref == unit_ref)

    def next_item_offset(self, unit_ref: str) -> int:
        """First item index not reserved by any session on `unit_ref`."""
        return sum(s.max_supply for s in self._sessions if s.unit_ref == unit_ref)

    def snapshot(self) -> List[Session]:
        return [s.copy() for s in self._sessions]

    def restore(self, snapshot: List[Session]) -> None:
        # Update in place so references held by callers stay valid
        for live, saved in zip(self._sessions, snapshot):
            for name in Session.__slots__:
                setattr(live, name, getattr(saved, name))
        del self._sessions[len(snapshot):]
