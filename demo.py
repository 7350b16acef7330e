#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: One Clearing Session Step by Step

Walks a single session from provisioning to reward payout. Each step builds
on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-2: Setup       - Custody ledger, supply items, a session
  3-4: Allocation  - Deposits, lateness, withdrawals
  5-6: Minting     - Price discovery, mint, forgo with penalty
  7-8: Wrap-up     - Rollover, rewards, conservation proof

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from clearing import (
    Ledger, ClearingEngine, RolloverOption,
    deposit_asset, supply_unit,
    BelowUnitPrice,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    allocation: timedelta = timedelta(days=1)
    cooldown: timedelta = timedelta(days=1)
    minting: timedelta = timedelta(days=1)

    max_supply: int = 10_000
    min_price: int = 1

    alice_deposit: int = 10_000
    bob_deposit: int = 10_000
    carol_deposit: int = 4_000


CONFIG = DemoConfig()
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


# ============================================================================
# STEPS
# ============================================================================

def step_01_custody():
    step_header(1, "Custody Ledger",
        "Every balance the engine moves lives in one double-entry ledger.")

    ledger = Ledger("custody", initial_time=CONFIG.start_time, verbose=False)
    ledger.register_unit(deposit_asset("USDC", "USD Coin"))
    ledger.register_unit(supply_unit("PASS", "Season Pass"))
    engine = ClearingEngine.from_ledger(ledger, verbose=True)

    issued = engine.transfers.issue_items("PASS", CONFIG.max_supply)
    for wallet, amount in (("alice", CONFIG.alice_deposit),
                           ("bob", CONFIG.bob_deposit),
                           ("carol", CONFIG.carol_deposit)):
        engine.transfers.issue("USDC", wallet, Decimal(amount))

    print(f"Custody wallet:  {engine.custody}")
    print(f"PASS items:      #{issued.start}..#{issued.stop - 1} held in custody")
    print(f"Wallets:         {sorted(ledger.list_wallets())}")
    return ledger, engine


def step_02_create_session(ledger: Ledger, engine: ClearingEngine) -> int:
    step_header(2, "Create a Session",
        "A session reserves custody supply and fixes its four window bounds.")

    allocation_start = ledger.current_time
    allocation_end = allocation_start + CONFIG.allocation
    minting_start = allocation_end + CONFIG.cooldown
    minting_end = minting_start + CONFIG.minting

    sid = engine.create_session(
        "PASS", "coordinator",
        allocation_start, allocation_end, minting_start, minting_end,
        min_price=CONFIG.min_price,
        deposit_asset="USDC",
        max_supply=CONFIG.max_supply,
        rollover_option=RolloverOption.CLOSE,
    )
    print(f"\nSession #{sid} is {engine.phase(sid).value}")
    return sid


def step_03_deposits(ledger: Ledger, engine: ClearingEngine, sid: int):
    step_header(3, "Deposits",
        "Deposits lock funds in custody; later deposits carry more lateness.")

    engine.deposit(sid, "alice", CONFIG.alice_deposit)
    ledger.advance_time(ledger.current_time + CONFIG.allocation / 2)
    engine.deposit(sid, "bob", CONFIG.bob_deposit)
    ledger.advance_time(ledger.current_time + CONFIG.allocation / 2)
    engine.deposit(sid, "carol", CONFIG.carol_deposit)

    section_header("Locked Balances")
    for who in ("alice", "bob", "carol"):
        entry = engine.deposit_of(sid, who)
        print(f"{who:>6}: {entry.balance:>8}  lateness {entry.lateness:.2f}")


def step_04_withdraw(engine: ClearingEngine, sid: int):
    step_header(4, "Withdraw",
        "During allocation a participant may unlock funds without penalty.")

    engine.withdraw(sid, "carol", CONFIG.carol_deposit // 2)
    print(f"\nSession total: {engine.get_session(sid).total_deposits}")
    print(f"Price preview: {engine.effective_price(sid)} USDC per PASS")


def step_05_mint(ledger: Ledger, engine: ClearingEngine, sid: int):
    step_header(5, "Price Discovery and Mint",
        "The first settlement fixes the price; mints buy whole units only.")

    ledger.advance_time(engine.get_session(sid).minting_start)
    receipt = engine.mint(sid, "alice", CONFIG.alice_deposit)
    print(f"\nalice received items #{receipt.items.start}..#{receipt.items.stop - 1}")
    print(f"Fixed clearing price: {engine.get_session(sid).result_price}")

    section_header("Below Unit Price")
    try:
        engine.mint(sid, "bob", 1)
    except BelowUnitPrice as exc:
        print(f"Rejected as expected: {exc.details}")


def step_06_forgo(engine: ClearingEngine, sid: int):
    step_header(6, "Forgo",
        "Reclaiming during minting costs a penalty that grows with lateness.")

    balance = engine.balance_of(sid, "carol")
    print(f"Quoted penalty for carol: {engine.quote_forgo(sid, 'carol', balance)}")
    receipt = engine.forgo(sid, "carol", balance)
    print(f"carol refunded {receipt.refunded}, session retains {receipt.penalty}")


def step_07_rollover_and_rewards(ledger: Ledger, engine: ClearingEngine, sid: int):
    step_header(7, "Rollover and Rewards",
        "After minting a Close rollover unlocks exit; the coordinator collects proceeds.")

    ledger.advance_time(engine.get_session(sid).minting_end + timedelta(minutes=1))
    engine.rollover(sid, "coordinator")
    engine.withdraw(sid, "bob", engine.balance_of(sid, "bob"))
    paid = engine.withdraw_rewards("coordinator", "coordinator", "USDC")
    print(f"\nCoordinator paid {paid} USDC")


def step_08_conservation(engine: ClearingEngine):
    step_header(8, "Conservation Proof",
        "Custody holds exactly the locked deposits, penalties and unpaid rewards.")

    result = engine.verify_conservation()
    print(f"valid: {result['valid']}")
    for discrepancy in result['discrepancies']:
        print(f"  {discrepancy}")
    print(f"Custody USDC: {engine.transfers.balance_of('USDC', engine.custody)}")


def main():
    print("=" * 70)
    print("       CLEARING ENGINE TUTORIAL")
    print("=" * 70)

    ledger, engine = step_01_custody()
    wait_for_enter()
    sid = step_02_create_session(ledger, engine)
    wait_for_enter()
    step_03_deposits(ledger, engine, sid)
    wait_for_enter()
    step_04_withdraw(engine, sid)
    wait_for_enter()
    step_05_mint(ledger, engine, sid)
    wait_for_enter()
    step_06_forgo(engine, sid)
    wait_for_enter()
    step_07_rollover_and_rewards(ledger, engine, sid)
    wait_for_enter()
    step_08_conservation(engine)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)


if __name__ == "__main__":
    main()
