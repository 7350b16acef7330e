"""
ledger.py - Custody Ledger

Holds every balance the clearing engine moves: participant deposit-asset
holdings, the custody wallet, and counts of supply items per wallet.

Every change goes through execute(): the moves of one PendingTransaction are
validated together, applied together, and appended to the audit log. The
ledger's logical time is the engine's clock.

snapshot()/restore() are cheap. The log is append-only, so a snapshot only
records its length, and restore() truncates back to it.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Set, Optional, Tuple, FrozenSet
from decimal import Decimal

from .core import (
    Transaction, Unit, PendingTransaction, Rejection,
    ExecuteResult, RejectReason,
    SYSTEM_WALLET,
    LedgerError, UnitNotRegistered, WalletNotRegistered,
)


ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """Point-in-time copy of mutable ledger state (time excluded)."""
    ledger_name: str
    balances: Tuple[Tuple[str, Tuple[Tuple[str, Decimal], ...]], ...]
    wallets: FrozenSet[str]
    unit_symbols: FrozenSet[str]
    log_length: int


class Ledger:
    """
    Double-entry custody ledger with validation and an audit trail.

    Implements the LedgerView and ClockSource protocols.

    SYSTEM_WALLET is registered on construction and is the only wallet
    allowed below a unit's min_balance; issuing from it is how value enters.

    Not thread-safe.

    Example:
        ledger = Ledger("custody")
        ledger.register_unit(deposit_asset("USDC", "USD Coin"))
        ledger.register_wallet("alice")
        ledger.execute(build_transaction(ledger, [
            Move(Decimal("100"), "USDC", SYSTEM_WALLET, "alice", "fund:alice")
        ]))
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Args:
            name: Ledger identifier, part of every exec_id
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print applied and rejected transactions
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {SYSTEM_WALLET: {}}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = {SYSTEM_WALLET}
        self.transaction_log: List[Transaction] = []
        self.last_rejection: Optional[Rejection] = None
        self.verbose = verbose
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)

    # ------------------------------------------------------------------
    # Read-only access
    # ------------------------------------------------------------------

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Balance of one unit in one wallet.

        Raises:
            WalletNotRegistered, UnitNotRegistered
        """
        self._require_wallet(wallet_id)
        self._require_unit(unit_symbol)
        return self.balances[wallet_id].get(unit_symbol, ZERO)

    def list_wallets(self) -> Set[str]:
        return set(self.registered_wallets)

    def has_unit(self, symbol: str) -> bool:
        return symbol in self.units

    def get_unit(self, symbol: str) -> Unit:
        self._require_unit(symbol)
        return self.units[symbol]

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Sum of a unit over every wallet, SYSTEM_WALLET included.

        Zero for any unit only ever moved by execute(). Wallets are summed in
        sorted order so the result does not depend on set iteration.
        """
        self._require_unit(unit_symbol)
        total = ZERO
        for wallet in sorted(self.registered_wallets):
            total += self.balances[wallet].get(unit_symbol, ZERO)
        return total

    def _require_wallet(self, wallet_id: str) -> None:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")

    def _require_unit(self, symbol: str) -> None:
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")

    # ------------------------------------------------------------------
    # Time and registration
    # ------------------------------------------------------------------

    def advance_time(self, new_time: datetime) -> None:
        """
        Move the logical clock forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    def register_wallet(self, wallet_id: str) -> str:
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = {}
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Validate and apply a pending transaction, all moves or none.

        On REJECTED, last_rejection says why; it is cleared on every other
        outcome.
        """
        self.last_rejection = None
        if pending.is_empty():
            return ExecuteResult.APPLIED

        rejection = self._validate(pending)
        if rejection is not None:
            self.last_rejection = rejection
            if self.verbose:
                print(f"✗ REJECTED: {rejection.message}")
            return ExecuteResult.REJECTED

        sequence = len(self.transaction_log)
        micros = int(self._current_time.timestamp() * 1_000_000)
        tx = Transaction(
            moves=pending.moves,
            origin=pending.origin,
            timestamp=pending.timestamp,
            exec_id=f"exec:{self.name}:{sequence:012d}:{micros}",
            execution_time=self._current_time,
            sequence_number=sequence,
        )

        for move in tx.moves:
            unit = self.units[move.unit_symbol]
            source = self.balances[move.source]
            dest = self.balances[move.dest]
            source[move.unit_symbol] = unit.round(source.get(move.unit_symbol, ZERO) - move.quantity)
            dest[move.unit_symbol] = unit.round(dest.get(move.unit_symbol, ZERO) + move.quantity)

        self.transaction_log.append(tx)

        if self.verbose:
            print(f"✓ APPLIED: {tx!r}")
        return ExecuteResult.APPLIED

    def _validate(self, pending: PendingTransaction) -> Optional[Rejection]:
        if pending.timestamp > self._current_time:
            return Rejection(
                RejectReason.FUTURE_TIMESTAMP,
                f"timestamp {pending.timestamp} is after ledger time {self._current_time}",
            )

        deltas: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return Rejection(
                    RejectReason.UNIT_NOT_REGISTERED,
                    f"unit not registered: {move.unit_symbol}",
                )
            for wallet in (move.source, move.dest):
                if wallet not in self.registered_wallets:
                    return Rejection(
                        RejectReason.WALLET_NOT_REGISTERED,
                        f"wallet not registered: {wallet}",
                    )
            deltas[move.source, move.unit_symbol] = (
                deltas.get((move.source, move.unit_symbol), ZERO) - move.quantity
            )
            deltas[move.dest, move.unit_symbol] = (
                deltas.get((move.dest, move.unit_symbol), ZERO) + move.quantity
            )

        for (wallet, symbol), delta in deltas.items():
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units[symbol]
            proposed = unit.round(self.balances[wallet].get(symbol, ZERO) + delta)
            if proposed < unit.min_balance:
                return Rejection(
                    RejectReason.BELOW_MIN_BALANCE,
                    f"{wallet} {symbol}: {proposed} below min {unit.min_balance}",
                )
            if proposed > unit.max_balance:
                return Rejection(
                    RejectReason.ABOVE_MAX_BALANCE,
                    f"{wallet} {symbol}: {proposed} above max {unit.max_balance}",
                )
        return None

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            ledger_name=self.name,
            balances=tuple(
                (wallet, tuple(held.items())) for wallet, held in self.balances.items()
            ),
            wallets=frozenset(self.registered_wallets),
            unit_symbols=frozenset(self.units),
            log_length=len(self.transaction_log),
        )

    def restore(self, snapshot: LedgerSnapshot) -> None:
        """
        Roll balances, registrations and the audit log back to a snapshot.

        Logical time is not rolled back.
        """
        if snapshot.ledger_name != self.name:
            raise LedgerError(
                f"Cannot restore ledger {self.name} from snapshot of {snapshot.ledger_name}"
            )
        self.balances = {wallet: dict(held) for wallet, held in snapshot.balances}
        self.registered_wallets = set(snapshot.wallets)
        for symbol in set(self.units) - snapshot.unit_symbols:
            del self.units[symbol]
        del self.transaction_log[snapshot.log_length:]
        self.last_rejection = None
