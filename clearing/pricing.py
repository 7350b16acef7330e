"""
pricing.py - Clearing Price Engine

Pure functions for once-per-epoch price discovery and unit pricing.

Key Formulas:
    result_price    = total_deposits // remaining_supply     (floor; remainder forfeited)
    effective_price = max(result_price, min_price)
    units           = min(amount // effective_price, remaining_supply)
    cost            = units * effective_price

remaining_supply is max_supply - next_unit_index, so the first epoch prices
against the full supply and a restarted epoch prices only the unsold units.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Optional

from .session import Session


@dataclass(frozen=True, slots=True)
class MintQuote:
    """
    Result of pricing a mint request.

    Attributes:
        price: Effective price per unit
        units: Units the amount buys (bounded by remaining supply)
        cost: units * price, deducted from the participant's balance
        change: amount - cost, left credited to the participant
    """
    price: Decimal
    units: int
    cost: Decimal
    change: Decimal


def calculate_clearing_price(total_deposits: Decimal, remaining_supply: int) -> Decimal:
    """
    Floor of aggregate demand over the supply being cleared.

    PURE FUNCTION. Returns 0 when there is no supply left to clear.
    """
    if remaining_supply <= 0:
        return Decimal("0")
    return (total_deposits / Decimal(remaining_supply)).to_integral_value(rounding=ROUND_FLOOR)


def calculate_effective_price(result_price: Optional[Decimal], min_price: Decimal) -> Decimal:
    """Apply the coordinator's floor to the clearing price."""
    if result_price is None:
        return min_price
    return max(result_price, min_price)


def calculate_mint(amount: Decimal, price: Decimal, remaining_supply: int) -> MintQuote:
    """
    Split a mint amount into whole units and change.

    PURE FUNCTION - the caller enforces BelowUnitPrice and SupplyExhausted.
    """
    affordable = int(amount // price)
    units = min(affordable, max(remaining_supply, 0))
    cost = price * units
    return MintQuote(price=price, units=units, cost=cost, change=amount - cost)


def discover_price(session: Session) -> Decimal:
    """
    Fix the session's clearing price for the current epoch if not yet set.

    Mutates only session.result_price, and only the first time per epoch.

    Returns:
        The effective price (clearing price floored at min_price).
    """
    if session.result_price is None:
        session.result_price = calculate_clearing_price(
            session.total_deposits, session.remaining_supply
        )
    return calculate_effective_price(session.result_price, session.min_price)


def preview_price(session: Session) -> Decimal:
    """Effective price the next settlement would use, without fixing it."""
    if session.result_price is not None:
        return calculate_effective_price(session.result_price, session.min_price)
    return calculate_effective_price(
        calculate_clearing_price(session.total_deposits, session.remaining_supply),
        session.min_price,
    )
