"""
engine.py - Clearing Engine

ClearingEngine is the single entry point callers use. It combines the
session registry, the deposit ledger, the reward ledger and an asset
transfer capability into the allocation-and-clearing lifecycle:

    create_session -> deposit/withdraw (allocation) -> mint/forgo (minting)
                   -> rollover (after minting_end) -> withdraw_rewards

Execution rules for every mutating operation:
1. Checks: session exists, phase guard, amount and balance guards
2. Effects: deposit ledger, session record and reward ledger are updated
3. Interactions: the transfer capability is called last

Any transfer may re-enter the engine (recipient-acceptance hooks), so all
bookkeeping is final before it runs. Each operation runs in an atomic scope:
if anything raises, the registry, both ledgers and custody are restored to
their state at the start of that operation and the exception propagates.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Any, Sequence, Iterator

import numpy as np

from .core import (
    AssetTransfers, ClockSource, ClearingConfig,
    OutsideAllocationWindow, OutsideMintingWindow, InsufficientBalance,
    BelowUnitPrice, SupplyExhausted, NotCoordinator, InsufficientCustody,
    to_amount,
)
from .deposits import DepositLedger, ParticipantDeposit
from .ledger import Ledger
from .penalty import lateness_fraction, calculate_penalty, penalty_schedule
from .pricing import MintQuote, calculate_mint, discover_price, preview_price
from .rewards import RewardLedger
from .rollover import compute_rollover, apply_rollover
from .session import (
    Session, SessionPhase, SessionRegistry, RolloverOption, MINTING_PHASES,
    session_phase, is_terminal,
)
from .transfers import LedgerTransfers


@dataclass(frozen=True, slots=True)
class MintReceipt:
    """
    Outcome of a successful mint.

    Attributes:
        session_id: Session settled against
        participant: Recipient of the items
        units: Number of items transferred
        price: Effective price per unit
        cost: Amount deducted from the locked balance and credited as reward
        first_item: Item index of the first transferred unit
        change: Part of the requested amount left locked
    """
    session_id: int
    participant: str
    units: int
    price: Decimal
    cost: Decimal
    first_item: int
    change: Decimal

    @property
    def last_item(self) -> int:
        return self.first_item + self.units - 1

    @property
    def items(self) -> range:
        return range(self.first_item, self.first_item + self.units)


@dataclass(frozen=True, slots=True)
class ForgoReceipt:
    """Outcome of a successful forgo: `amount` released, `penalty` retained."""
    session_id: int
    participant: str
    amount: Decimal
    penalty: Decimal
    refunded: Decimal
    waived: bool


class ClearingEngine:
    """
    Allocation-and-clearing engine over a custody transfer capability.

    Example:
        ledger = Ledger("custody", initial_time=datetime(2025, 1, 1), verbose=False)
        engine = ClearingEngine.from_ledger(ledger)
        ledger.register_unit(deposit_asset("USDC", "USD Coin"))
        ledger.register_unit(supply_unit("PASS", "Season Pass"))
        engine.transfers.issue_items("PASS", 10_000)

        sid = engine.create_session(
            "PASS", "coordinator",
            datetime(2025, 1, 1), datetime(2025, 1, 2),
            datetime(2025, 1, 3), datetime(2025, 1, 4),
            min_price=1, deposit_asset="USDC", max_supply=10_000,
            rollover_option=RolloverOption.CLOSE,
        )
        engine.deposit(sid, "alice", 10_000)
        ledger.advance_time(datetime(2025, 1, 3))
        receipt = engine.mint(sid, "alice", 10_000)
    """

    def __init__(
        self,
        transfers: AssetTransfers,
        clock: Optional[ClockSource] = None,
        config: Optional[ClearingConfig] = None,
        verbose: bool = True,
    ):
        """
        Create an engine.

        Args:
            transfers: Asset transfer capability holding custody
            clock: Time source (defaults to the transfer capability's ledger)
            config: Engine settings (default ClearingConfig())
            verbose: Print one line per operation (default: True)
        """
        if clock is None:
            clock = getattr(transfers, 'ledger', None)
            if clock is None:
                raise ValueError("clock is required when transfers has no ledger")
        self.transfers = transfers
        self.clock = clock
        self.config = config or ClearingConfig()
        self.verbose = verbose
        self.registry = SessionRegistry()
        self.deposits = DepositLedger()
        self.rewards = RewardLedger()

    @classmethod
    def from_ledger(
        cls,
        ledger: Ledger,
        config: Optional[ClearingConfig] = None,
        verbose: Optional[bool] = None,
    ) -> ClearingEngine:
        """Build an engine whose custody and clock are the given ledger."""
        config = config or ClearingConfig()
        transfers = LedgerTransfers(ledger, config.custody_wallet)
        return cls(
            transfers,
            clock=ledger,
            config=config,
            verbose=ledger.verbose if verbose is None else verbose,
        )

    @property
    def now(self) -> datetime:
        return self.clock.current_time

    @property
    def custody(self) -> str:
        return self.transfers.custody

    # ========================================================================
    # ATOMICITY
    # ========================================================================

    @contextmanager
    def _atomic(self, action: str) -> Iterator[None]:
        saved = (
            self.registry.snapshot(),
            self.deposits.snapshot(),
            self.rewards.snapshot(),
            self.transfers.snapshot(),
        )
        try:
            yield
        except Exception as exc:
            registry, deposits, rewards, custody = saved
            self.registry.restore(registry)
            self.deposits.restore(deposits)
            self.rewards.restore(rewards)
            self.transfers.restore(custody)
            if self.verbose:
                print(f"✗ REJECTED {action}: {type(exc).__name__}: {exc}")
            raise

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"✓ {message}")

    # ========================================================================
    # PROVISIONING
    # ========================================================================

    def create_session(
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
    ) -> int:
        """
        Provision a session backed by supply already held in custody.

        Raises:
            BadSessionBounds: If the window ordering is violated
            InsufficientCustody: If custody lacks max_supply uncommitted items
            UnitNotRegistered: If unit_ref or deposit_asset is unknown
            ValueError: On empty references or non-positive supply/price

        Returns:
            The new session id.
        """
        with self._atomic("CREATE_SESSION"):
            session = self.registry.create(
                unit_ref=unit_ref,
                coordinator=coordinator,
                allocation_start=allocation_start,
                allocation_end=allocation_end,
                minting_start=minting_start,
                minting_end=minting_end,
                min_price=min_price,
                deposit_asset=deposit_asset,
                max_supply=max_supply,
                rollover_option=rollover_option,
                item_offset=self.registry.next_item_offset(unit_ref),
            )
            self.transfers.balance_of(deposit_asset, self.custody)
            held = self.transfers.balance_of(unit_ref, self.custody)
            committed = self.registry.committed_supply(unit_ref)
            if held < committed:
                raise InsufficientCustody(
                    f"Custody holds {held} {unit_ref}; {committed} needed "
                    f"including {max_supply} for the new session",
                    unit_ref=unit_ref,
                    held=held,
                    committed=committed - max_supply,
                    required=max_supply,
                )
        self._log(
            f"CREATE_SESSION #{session.session_id} {max_supply} {unit_ref} for "
            f"{deposit_asset} (floor {session.min_price}, {session.rollover_option.value})"
        )
        return session.session_id

    # ========================================================================
    # DEPOSIT LEDGER
    # ========================================================================

    def deposit(self, session_id: int, participant: str, amount) -> ParticipantDeposit:
        """
        Lock `amount` of the deposit asset in a session.

        Raises:
            InvalidSession, OutsideAllocationWindow, InsufficientFunds
        """
        with self._atomic("DEPOSIT"):
            session = self.registry.get(session_id)
            amount = to_amount(amount)
            now = self.now
            phase = session_phase(session, now)
            if phase != SessionPhase.ALLOCATION:
                raise self._outside_allocation(session, now, phase)

            entry = self.deposits.credit(
                participant, session_id, amount, lateness_fraction(session, now)
            )
            session.total_deposits += amount

            self.transfers.transfer_in(session.deposit_asset, participant, amount)
        self._log(
            f"DEPOSIT #{session_id} {participant} +{amount} {session.deposit_asset} "
            f"(total {session.total_deposits})"
        )
        return entry

    def withdraw(self, session_id: int, participant: str, amount) -> ParticipantDeposit:
        """
        Release locked deposit back to the participant, without penalty.

        Allowed during allocation, and at any time after a CLOSE session's
        minting window has ended.

        Raises:
            InvalidSession, OutsideAllocationWindow, InsufficientBalance
        """
        with self._atomic("WITHDRAW"):
            session = self.registry.get(session_id)
            amount = to_amount(amount)
            now = self.now
            phase = session_phase(session, now)
            exit_open = (
                session.rollover_option == RolloverOption.CLOSE
                and is_terminal(session, now)
            )
            if phase != SessionPhase.ALLOCATION and not exit_open:
                raise self._outside_allocation(session, now, phase)

            entry = self.deposits.debit(participant, session_id, amount)
            session.total_deposits -= amount

            self.transfers.transfer_out(session.deposit_asset, participant, amount)
        self._log(
            f"WITHDRAW #{session_id} {participant} -{amount} {session.deposit_asset} "
            f"(total {session.total_deposits})"
        )
        return entry

    # ========================================================================
    # SETTLEMENT
    # ========================================================================

    def mint(self, session_id: int, participant: str, amount) -> MintReceipt:
        """
        Convert locked deposit into units at the session's effective price.

        The first settlement call of an epoch fixes the clearing price.
        Whole units only; any remainder stays locked.

        Raises:
            InvalidSession, OutsideMintingWindow, InsufficientBalance,
            BelowUnitPrice, SupplyExhausted, TransferRejected
        """
        with self._atomic("MINT"):
            session = self.registry.get(session_id)
            amount = to_amount(amount)
            self._require_minting(session)

            price = discover_price(session)
            balance = self.deposits.balance(participant, session_id)
            if amount > balance:
                raise self._insufficient(session, participant, balance, amount)
            if amount < price:
                raise BelowUnitPrice(
                    f"{amount} cannot buy one unit at {price}",
                    session_id=session_id,
                    amount=amount,
                    price=price,
                )
            if session.remaining_supply <= 0:
                raise SupplyExhausted(
                    f"Session {session_id} has no units left",
                    session_id=session_id,
                    max_supply=session.max_supply,
                    next_unit_index=session.next_unit_index,
                )
            quote = calculate_mint(amount, price, session.remaining_supply)

            self.deposits.debit(participant, session_id, quote.cost)
            session.total_deposits -= quote.cost
            first = session.item_offset + session.next_unit_index
            session.next_unit_index += quote.units
            self.rewards.credit(session.coordinator, session.deposit_asset, quote.cost)

            for item in range(first, first + quote.units):
                self.transfers.transfer_unit(session.unit_ref, self.custody, participant, item)

        receipt = MintReceipt(
            session_id=session_id,
            participant=participant,
            units=quote.units,
            price=price,
            cost=quote.cost,
            first_item=first,
            change=quote.change,
        )
        self._log(
            f"MINT #{session_id} {participant} {quote.units} {session.unit_ref} "
            f"@ {price} = {quote.cost} {session.deposit_asset}"
        )
        return receipt

    def forgo(self, session_id: int, participant: str, amount) -> ForgoReceipt:
        """
        Reclaim locked deposit during minting, net of the lateness penalty.

        Fixes the clearing price first if no settlement has done so yet.

        Raises:
            InvalidSession, OutsideMintingWindow, InsufficientBalance
        """
        with self._atomic("FORGO"):
            session = self.registry.get(session_id)
            amount = to_amount(amount)
            self._require_minting(session)

            price = discover_price(session)
            entry = self.deposits.get(participant, session_id)
            if amount > entry.balance:
                raise self._insufficient(session, participant, entry.balance, amount)
            waived = entry.balance < price or session.remaining_supply <= 0
            penalty = calculate_penalty(
                amount, entry.lateness, self.config.max_penalty_fraction,
                entry.balance, price, session.remaining_supply,
            )
            refund = amount - penalty

            self.deposits.debit(participant, session_id, amount)
            session.total_deposits -= amount
            session.penalties_retained += penalty

            if refund > 0:
                self.transfers.transfer_out(session.deposit_asset, participant, refund)

        self._log(
            f"FORGO #{session_id} {participant} {amount} {session.deposit_asset} "
            f"(refund {refund}, penalty {penalty}{', waived' if waived else ''})"
        )
        return ForgoReceipt(
            session_id=session_id,
            participant=participant,
            amount=amount,
            penalty=penalty,
            refunded=refund,
            waived=waived,
        )

    # ========================================================================
    # ROLLOVER AND REWARDS
    # ========================================================================

    def rollover(self, session_id: int, caller: str) -> SessionPhase:
        """
        Apply the session's rollover policy after the minting window.

        Raises:
            InvalidSession, NotCoordinator, MintingNotOver

        Returns:
            The session's phase after the rollover.
        """
        with self._atomic("ROLLOVER"):
            session = self.registry.get(session_id)
            now = self.now
            plan = compute_rollover(session, caller, now)
            apply_rollover(session, plan)
        self._log(
            f"ROLLOVER #{session_id} {plan.option.value}"
            f"{' (already closed)' if plan.noop else ''} at {now}"
        )
        return session_phase(session, now)

    def withdraw_rewards(self, caller: str, coordinator: str, asset: str) -> Decimal:
        """
        Pay out a coordinator's accrued proceeds in one asset.

        Raises:
            NotCoordinator: If caller is not the coordinator

        Returns:
            The amount paid (0 when nothing had accrued).
        """
        with self._atomic("WITHDRAW_REWARDS"):
            if caller != coordinator:
                raise NotCoordinator(
                    f"{caller} cannot withdraw rewards of {coordinator}",
                    caller=caller,
                    coordinator=coordinator,
                    asset=asset,
                )
            amount = self.rewards.take(coordinator, asset)
            if amount > 0:
                self.transfers.transfer_out(asset, coordinator, amount)
        self._log(f"WITHDRAW_REWARDS {coordinator} {amount} {asset}")
        return amount

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    def get_session(self, session_id: int) -> Session:
        """Copy of the session record."""
        return self.registry.get(session_id).copy()

    def list_sessions(self) -> List[int]:
        return [s.session_id for s in self.registry]

    def phase(self, session_id: int) -> SessionPhase:
        return session_phase(self.registry.get(session_id), self.now)

    def deposit_of(self, session_id: int, participant: str) -> ParticipantDeposit:
        self.registry.get(session_id)
        return self.deposits.get(participant, session_id)

    def balance_of(self, session_id: int, participant: str) -> Decimal:
        self.registry.get(session_id)
        return self.deposits.balance(participant, session_id)

    def reward_of(self, coordinator: str, asset: str) -> Decimal:
        return self.rewards.balance(coordinator, asset)

    def effective_price(self, session_id: int) -> Decimal:
        """Price the next settlement would use (fixed once discovered)."""
        return preview_price(self.registry.get(session_id))

    def remaining_supply(self, session_id: int) -> int:
        return self.registry.get(session_id).remaining_supply

    def quote_mint(self, session_id: int, amount) -> MintQuote:
        """Units and cost a mint of `amount` would settle at, without mutating."""
        session = self.registry.get(session_id)
        return calculate_mint(to_amount(amount), preview_price(session), session.remaining_supply)

    def quote_forgo(self, session_id: int, participant: str, amount) -> Decimal:
        """Penalty a forgo of `amount` would incur, without mutating."""
        session = self.registry.get(session_id)
        amount = to_amount(amount)
        entry = self.deposits.get(participant, session_id)
        if amount > entry.balance:
            raise self._insufficient(session, participant, entry.balance, amount)
        return calculate_penalty(
            amount, entry.lateness, self.config.max_penalty_fraction,
            entry.balance, preview_price(session), session.remaining_supply,
        )

    def penalty_schedule(self, session_id: int, deposit_times: Sequence[datetime]) -> np.ndarray:
        """Penalty fraction a deposit made at each given time would carry."""
        return penalty_schedule(
            self.registry.get(session_id), deposit_times, self.config.max_penalty_fraction
        )

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Check engine bookkeeping against itself and against custody.

        Invariants:
            - total_deposits == sum of participant balances, per session
            - 0 <= next_unit_index <= max_supply, per session
            - custody balance of each deposit asset ==
              sum(total_deposits + penalties_retained) + unpaid rewards
            - custody holds every unsold, committed item

        Returns:
            Dict with 'valid' and 'discrepancies'.
        """
        discrepancies: List[Dict[str, Any]] = []
        expected_custody: Dict[str, Decimal] = {}

        for session in self.registry:
            ledger_total = self.deposits.session_total(session.session_id)
            if ledger_total != session.total_deposits:
                discrepancies.append({
                    'session_id': session.session_id,
                    'check': 'total_deposits',
                    'expected': ledger_total,
                    'actual': session.total_deposits,
                })
            if not 0 <= session.next_unit_index <= session.max_supply:
                discrepancies.append({
                    'session_id': session.session_id,
                    'check': 'next_unit_index',
                    'expected': session.max_supply,
                    'actual': session.next_unit_index,
                })
            expected_custody[session.deposit_asset] = (
                expected_custody.get(session.deposit_asset, Decimal("0"))
                + session.total_deposits
                + session.penalties_retained
            )

        for asset, locked in sorted(expected_custody.items()):
            expected = locked + self.rewards.asset_total(asset)
            actual = self.transfers.balance_of(asset, self.custody)
            if actual != expected:
                discrepancies.append({
                    'asset': asset,
                    'check': 'custody',
                    'expected': expected,
                    'actual': actual,
                })

        for unit_ref in sorted({s.unit_ref for s in self.registry}):
            committed = self.registry.committed_supply(unit_ref)
            held = self.transfers.balance_of(unit_ref, self.custody)
            if held < committed:
                discrepancies.append({
                    'unit': unit_ref,
                    'check': 'supply',
                    'expected': committed,
                    'actual': held,
                })

        return {
            'valid': len(discrepancies) == 0,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # GUARDS
    # ========================================================================

    def _require_minting(self, session: Session) -> None:
        now = self.now
        phase = session_phase(session, now)
        if phase not in MINTING_PHASES:
            raise OutsideMintingWindow(
                f"Session {session.session_id} is {phase.value}; minting runs "
                f"{session.minting_start} to {session.minting_end}",
                session_id=session.session_id,
                now=now,
                phase=phase,
                minting_start=session.minting_start,
                minting_end=session.minting_end,
            )

    @staticmethod
    def _outside_allocation(session: Session, now: datetime, phase: SessionPhase) -> OutsideAllocationWindow:
        return OutsideAllocationWindow(
            f"Session {session.session_id} is {phase.value}; allocation runs "
            f"{session.allocation_start} to {session.allocation_end}",
            session_id=session.session_id,
            now=now,
            phase=phase,
            allocation_start=session.allocation_start,
            allocation_end=session.allocation_end,
        )

    @staticmethod
    def _insufficient(
        session: Session, participant: str, balance: Decimal, requested: Decimal,
    ) -> InsufficientBalance:
        return InsufficientBalance(
            f"{participant} has {balance} locked in session {session.session_id}, "
            f"requested {requested}",
            session_id=session.session_id,
            participant=participant,
            balance=balance,
            requested=requested,
        )
