"""
deposits.py - Participant Deposit Ledger

Keyed store of ParticipantDeposit entries, one per (participant, session_id).
The engine is the only writer; every decrease is preceded by an exactness
check (InsufficientBalance), never a clamp.

The lateness accumulator is the amount-weighted mean lateness fraction of the
currently locked balance. Deposits blend into it; withdrawals, mints and
forgoes release balance pro rata and leave it unchanged.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, Tuple

from .core import InsufficientBalance


DepositKey = Tuple[str, int]


@dataclass(slots=True)
class ParticipantDeposit:
    participant: str
    session_id: int
    balance: Decimal = Decimal("0")
    lateness: Decimal = Decimal("0")


class DepositLedger:
    """Balances locked per (participant, session)."""

    def __init__(self):
        self._entries: Dict[DepositKey, ParticipantDeposit] = {}

    def get(self, participant: str, session_id: int) -> ParticipantDeposit:
        """Return a copy of the entry (zero balance if the participant never deposited)."""
        entry = self._entries.get((participant, session_id))
        if entry is None:
            return ParticipantDeposit(participant, session_id)
        return replace(entry)

    def balance(self, participant: str, session_id: int) -> Decimal:
        entry = self._entries.get((participant, session_id))
        return entry.balance if entry else Decimal("0")

    def credit(
        self,
        participant: str,
        session_id: int,
        amount: Decimal,
        lateness: Decimal,
    ) -> ParticipantDeposit:
        """
        Lock `amount` more and blend its lateness into the accumulator.

        new_lateness = (old_lateness * old_balance + lateness * amount) / new_balance
        """
        entry = self._entries.setdefault(
            (participant, session_id), ParticipantDeposit(participant, session_id)
        )
        new_balance = entry.balance + amount
        entry.lateness = (entry.lateness * entry.balance + lateness * amount) / new_balance
        entry.balance = new_balance
        return replace(entry)

    def debit(self, participant: str, session_id: int, amount: Decimal) -> ParticipantDeposit:
        """
        Release `amount` from the locked balance.

        Raises:
            InsufficientBalance: If amount exceeds the locked balance
        """
        balance = self.balance(participant, session_id)
        if amount > balance:
            raise InsufficientBalance(
                f"{participant} has {balance} locked in session {session_id}, requested {amount}",
                participant=participant,
                session_id=session_id,
                balance=balance,
                requested=amount,
            )
        entry = self._entries[(participant, session_id)]
        entry.balance = balance - amount
        if entry.balance == 0:
            entry.lateness = Decimal("0")
        return replace(entry)

    def session_total(self, session_id: int) -> Decimal:
        return sum(
            (e.balance for (_, sid), e in self._entries.items() if sid == session_id),
            Decimal("0"),
        )

    def snapshot(self) -> Dict[DepositKey, ParticipantDeposit]:
        return {key: replace(entry) for key, entry in self._entries.items()}

    def restore(self, snapshot: Dict[DepositKey, ParticipantDeposit]) -> None:
        self._entries = {key: replace(entry) for key, entry in snapshot.items()}
