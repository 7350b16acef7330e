"""
rewards.py - Coordinator Reward Ledger

Accrued settlement proceeds per (coordinator, deposit asset). Credited only
by successful mints; take() reads and zeroes an entry in one step so the
payout transfer happens after the entry is already cleared.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, Tuple


RewardKey = Tuple[str, str]


class RewardLedger:

    def __init__(self):
        self._accrued: Dict[RewardKey, Decimal] = {}

    def balance(self, coordinator: str, asset: str) -> Decimal:
        return self._accrued.get((coordinator, asset), Decimal("0"))

    def credit(self, coordinator: str, asset: str, amount: Decimal) -> Decimal:
        if amount < 0:
            raise ValueError(f"reward credit must be non-negative, got {amount}")
        total = self.balance(coordinator, asset) + amount
        self._accrued[(coordinator, asset)] = total
        return total

    def take(self, coordinator: str, asset: str) -> Decimal:
        """Zero the entry and return what it held."""
        return self._accrued.pop((coordinator, asset), Decimal("0"))

    def asset_total(self, asset: str) -> Decimal:
        """Unpaid rewards across all coordinators for one asset."""
        return sum(
            (amount for (_, a), amount in self._accrued.items() if a == asset),
            Decimal("0"),
        )

    def snapshot(self) -> Dict[RewardKey, Decimal]:
        return dict(self._accrued)

    def restore(self, snapshot: Dict[RewardKey, Decimal]) -> None:
        self._accrued = dict(snapshot)
