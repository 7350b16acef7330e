"""
conftest.py - Shared pytest fixtures for clearing engine tests

Provides common fixtures used across unit, functional and conformance tests:
- A custody ledger with a deposit asset (USDC) and a supply unit (PASS)
- An engine bound to that ledger
- Factories to fund participants and open sessions
- Standard window bounds (allocation day 1, cooldown day 2, minting day 3)
"""

import pytest
from decimal import Decimal

from clearing import (
    Ledger, ClearingEngine, RolloverOption,
    deposit_asset, supply_unit,
)
from tests.helpers import (
    T0, ALLOCATION_START, ALLOCATION_END, MINTING_START, MINTING_END, COORDINATOR,
)


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Custody ledger at allocation_start with USDC and PASS registered."""
    ledger = Ledger("custody", T0, verbose=False)
    ledger.register_unit(deposit_asset("USDC", "USD Coin"))
    ledger.register_unit(supply_unit("PASS", "Season Pass"))
    return ledger


@pytest.fixture
def engine(ledger):
    """Quiet engine whose custody and clock are the ledger fixture."""
    return ClearingEngine.from_ledger(ledger, verbose=False)


@pytest.fixture
def fund(engine):
    """Issue USDC to a participant wallet."""
    def _fund(wallet, amount):
        engine.transfers.issue("USDC", wallet, Decimal(amount))
    return _fund


@pytest.fixture
def open_session(engine):
    """
    Issue `max_supply` PASS items into custody and create a session over them.

    Keyword arguments override the standard windows and terms.
    """
    def _open(
        max_supply=100,
        min_price=1,
        rollover_option=RolloverOption.CLOSE,
        allocation_start=ALLOCATION_START,
        allocation_end=ALLOCATION_END,
        minting_start=MINTING_START,
        minting_end=MINTING_END,
        coordinator=COORDINATOR,
        unit_ref="PASS",
    ):
        engine.transfers.issue_items(unit_ref, max_supply)
        return engine.create_session(
            unit_ref, coordinator,
            allocation_start, allocation_end, minting_start, minting_end,
            min_price=min_price,
            deposit_asset="USDC",
            max_supply=max_supply,
            rollover_option=rollover_option,
        )
    return _open


@pytest.fixture
def to_minting(ledger):
    """Advance the clock into the standard minting window."""
    def _advance(at=MINTING_START):
        ledger.advance_time(at)
    return _advance
