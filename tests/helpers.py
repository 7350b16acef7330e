"""
helpers.py - Standard session windows and a fixture-free engine builder

allocation: day 1 (inclusive), cooldown: day 2, minting: day 3 (inclusive).

build_engine() is for hypothesis tests, which cannot share function-scoped
fixtures across generated examples.
"""

from datetime import datetime, timedelta
from decimal import Decimal

from clearing import (
    Ledger, ClearingEngine, RolloverOption, deposit_asset, supply_unit,
)


T0 = datetime(2025, 1, 1)
ALLOCATION_START = T0
ALLOCATION_END = T0 + timedelta(days=1)
MINTING_START = T0 + timedelta(days=2)
MINTING_END = T0 + timedelta(days=3)

COORDINATOR = "coordinator"
PARTICIPANTS = ("alice", "bob", "carol")


def build_engine(max_supply, min_price=1, funding=10_000,
                 rollover_option=RolloverOption.CLOSE):
    """
    Fresh ledger, engine and session with every participant funded.

    Returns:
        (engine, ledger, session_id)
    """
    ledger = Ledger("custody", T0, verbose=False)
    ledger.register_unit(deposit_asset("USDC", "USD Coin"))
    ledger.register_unit(supply_unit("PASS", "Season Pass"))
    engine = ClearingEngine.from_ledger(ledger, verbose=False)
    engine.transfers.issue_items("PASS", max_supply)
    for participant in PARTICIPANTS:
        engine.transfers.issue("USDC", participant, Decimal(funding))
    session_id = engine.create_session(
        "PASS", COORDINATOR,
        ALLOCATION_START, ALLOCATION_END, MINTING_START, MINTING_END,
        min_price=min_price,
        deposit_asset="USDC",
        max_supply=max_supply,
        rollover_option=rollover_option,
    )
    return engine, ledger, session_id
