"""
Core types and pure functions for the allocation-and-clearing engine.

This module provides the foundational data structures and protocols:
1. Protocols: ClockSource, LedgerView, UnitReceiver, AssetTransfers
2. Immutable custody records: Move, PendingTransaction, Transaction, Rejection
3. Exceptions: LedgerError, SessionError and the session error taxonomy
4. Configuration: ClearingConfig
5. Units and amounts: Unit, deposit_asset(), supply_unit(), to_amount()

Nothing in this module mutates custody state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
from typing import Dict, Optional, Any, Protocol, Sequence, Tuple, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Deposits, prices, penalties and rewards are Decimal values in integral base
# units. Lateness fractions are the only non-integral quantities and need the
# extra precision when blended over many deposits.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_CLEARING_DECIMAL_CONTEXT = getcontext()
_CLEARING_DECIMAL_CONTEXT.prec = 50
_CLEARING_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance. Exempt from balance limits, so its balance
# is the negative of everything ever issued.
SYSTEM_WALLET = "system"

# Wallet that holds locked deposits, retained penalties, unpaid rewards and
# the unsold supply of every session.
CUSTODY_WALLET = "clearing_house"

# Unit type constants (strings, not enum).
UNIT_TYPE_DEPOSIT_ASSET = "DEPOSIT_ASSET"
UNIT_TYPE_SUPPLY = "SUPPLY"

# minting_end of a session extended at its clearing price.
MAX_TIME = datetime.max

DEFAULT_MAX_PENALTY_FRACTION = Decimal("0.1")


# ============================================================================
# PROTOCOLS
# ============================================================================

class ClockSource(Protocol):
    """Monotonically non-decreasing time signal used to evaluate windows."""

    @property
    def current_time(self) -> datetime:
        ...


@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to custody state.

    Functions accepting a LedgerView declare their read-only intent; the
    Ledger implements it alongside its mutating methods.
    """

    @property
    def current_time(self) -> datetime:
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        ...

    def is_registered(self, wallet_id: str) -> bool:
        ...

    def get_unit(self, symbol: str) -> Unit:
        ...


class UnitReceiver(Protocol):
    """
    Recipient-acceptance hook for indivisible units.

    Called after an item has been credited to the recipient. Returning False
    (or raising) rejects the transfer and reverts the calling operation.
    The hook may call back into the engine.
    """

    def __call__(self, operator: str, source: str, unit_ref: str, index: int) -> bool:
        ...


class AssetTransfers(Protocol):
    """
    Asset transfer capability consumed by the clearing engine.

    transfer_in/transfer_out move fungible deposit-asset balances between a
    wallet and custody. transfer_unit moves one indivisible item and asks the
    recipient to accept it. snapshot/restore let the engine revert custody
    together with its own ledgers when an operation fails.
    """

    custody: str

    def transfer_in(self, asset: str, source: str, amount: Decimal) -> None:
        ...

    def transfer_out(self, asset: str, dest: str, amount: Decimal) -> None:
        ...

    def transfer_unit(self, unit_ref: str, source: str, dest: str, index: int) -> None:
        ...

    def balance_of(self, asset: str, wallet: str) -> Decimal:
        ...

    def snapshot(self) -> Any:
        ...

    def restore(self, snapshot: Any) -> None:
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of Ledger.execute().

    APPLIED: Validated and applied.
    REJECTED: Failed validation; see Ledger.last_rejection.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class RejectReason(Enum):
    FUTURE_TIMESTAMP = "future_timestamp"
    UNIT_NOT_REGISTERED = "unit_not_registered"
    WALLET_NOT_REGISTERED = "wallet_not_registered"
    BELOW_MIN_BALANCE = "below_min_balance"
    ABOVE_MAX_BALANCE = "above_max_balance"


class OriginType(Enum):
    """Classification of where a custody transaction originated."""
    USER_ACTION = "user_action"           # Participant-initiated (deposit)
    CONTRACT = "contract"                 # Custody payouts (mint, forgo, withdraw, rewards)
    SYSTEM = "system"                     # Issuance, initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all custody and session errors."""
    pass


class InsufficientFunds(LedgerError):
    """Source wallet cannot cover a transfer."""
    pass


class BalanceConstraintViolation(LedgerError):
    """Transfer would push a wallet above a unit's max_balance."""
    pass


class UnitNotRegistered(LedgerError):
    pass


class WalletNotRegistered(LedgerError):
    pass


class TransferRejected(LedgerError):
    """Recipient refused an indivisible unit."""
    pass


class SessionError(LedgerError):
    """
    Base exception for session guard violations.

    The offending values are attached as keyword details, e.g.
    ``err.details['balance']`` for InsufficientBalance.
    """

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.details: Dict[str, Any] = details


class InvalidSession(SessionError):
    """Unknown or non-existent session id."""


class BadSessionBounds(SessionError):
    """Window ordering violated at creation."""


class OutsideAllocationWindow(SessionError):
    """Deposit or withdraw attempted outside the allocation window."""


class OutsideMintingWindow(SessionError):
    """Mint or forgo attempted outside the minting window."""


class InsufficientBalance(SessionError):
    """Requested amount exceeds the participant's locked balance."""


class BelowUnitPrice(SessionError):
    """Mint amount cannot buy a single unit at the effective price."""


class SupplyExhausted(SessionError):
    """No unsold units remain in the session."""


class MintingNotOver(SessionError):
    """Rollover attempted before the minting window ended."""


class NotCoordinator(SessionError):
    """Rollover or reward withdrawal by an identity other than the coordinator."""


class InsufficientCustody(SessionError):
    """Custody does not hold enough uncommitted supply to back a new session."""


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class ClearingConfig:
    """
    Engine-wide settings.

    Attributes:
        max_penalty_fraction: Share of a forgone amount retained for the
            latest possible deposit (0 disables the penalty, 1 retains all).
        custody_wallet: Wallet holding locked deposits and unsold supply.
    """
    max_penalty_fraction: Decimal = DEFAULT_MAX_PENALTY_FRACTION
    custody_wallet: str = CUSTODY_WALLET

    def __post_init__(self):
        if not isinstance(self.max_penalty_fraction, Decimal):
            object.__setattr__(
                self, 'max_penalty_fraction', Decimal(str(self.max_penalty_fraction))
            )
        if not (Decimal("0") <= self.max_penalty_fraction <= Decimal("1")):
            raise ValueError(
                f"max_penalty_fraction must be within [0, 1], got {self.max_penalty_fraction}"
            )
        if not self.custody_wallet or not self.custody_wallet.strip():
            raise ValueError("custody_wallet cannot be empty")


# ============================================================================
# CUSTODY RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Who asked for a custody transaction, for the audit trail.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Wallet or component that initiated it
        unit_symbol: Unit being moved
        event_type: Operation name (e.g. "TRANSFER_IN", "TRANSFER_UNIT#7")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        label = f"{self.origin_type.value}:{self.source_id}"
        if self.event_type:
            label += f"/{self.event_type}"
        return f"Origin({label})"


@dataclass(frozen=True, slots=True)
class Move:
    """
    One positive quantity of a unit moving from one wallet to another.

    Attributes:
        quantity: Amount moved (finite, > 0)
        unit_symbol: Unit being moved
        source: Debited wallet
        dest: Credited wallet
        contract_id: Identifier of the operation generating this move
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        for name in ('unit_symbol', 'source', 'dest', 'contract_id'):
            value = getattr(self, name)
            if not value or not value.strip():
                raise ValueError(f"Move {name} cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if not self.quantity.is_finite() or self.quantity <= 0:
            raise ValueError(f"Move quantity must be finite and positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """Custody moves requested but not yet applied."""
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime

    def is_empty(self) -> bool:
        return not self.moves

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: Sequence[Move],
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Stamp moves with the view's current time.

    Example:
        tx = build_transaction(ledger, [
            Move(Decimal("100"), "USDC", "alice", CUSTODY_WALLET, "deposit:1")
        ])
        ledger.execute(tx)
    """
    if origin is None:
        origin = TransactionOrigin(OriginType.CONTRACT, "contract")
    return PendingTransaction(moves=tuple(moves), origin=origin, timestamp=view.current_time)


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    Applied custody transaction, as kept in the audit log.

    Attributes:
        moves: Moves applied together
        origin: Who asked for them
        timestamp: When the pending transaction was built
        exec_id: Unique execution id (ledger, sequence, time)
        execution_time: Ledger time at application
        sequence_number: Position in the ledger's log
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    exec_id: str
    execution_time: datetime
    sequence_number: int

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")

    def __repr__(self) -> str:
        moves = ", ".join(
            f"{m.quantity} {m.unit_symbol}: {m.source} → {m.dest}" for m in self.moves
        )
        return f"Transaction(#{self.sequence_number}, {self.origin}, [{moves}])"


@dataclass(frozen=True, slots=True)
class Rejection:
    """Why the ledger refused a pending transaction."""
    reason: RejectReason
    message: str


# ============================================================================
# UNITS AND AMOUNTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of an asset type held in custody.

    Attributes:
        symbol: Short identifier for the unit (e.g., "USDC", "PASS").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (DEPOSIT_ASSET, SUPPLY).
        min_balance: Minimum allowed balance in any wallet but SYSTEM_WALLET.
        max_balance: Maximum allowed balance in any wallet but SYSTEM_WALLET.
        decimal_places: Number of decimal places kept (None = no rounding).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None

    def round(self, value: Decimal) -> Decimal:
        """Truncate a value to this unit's decimal places."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return value.quantize(Decimal(10) ** -self.decimal_places, rounding=ROUND_DOWN)


def to_amount(value: Any, name: str = "amount") -> Decimal:
    """
    Convert a caller-supplied quantity to a positive integral Decimal.

    Raises:
        ValueError: If the value is not finite, not positive, or not integral.
    """
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    if amount.is_nan() or amount.is_infinite():
        raise ValueError(f"{name} must be finite, got {amount}")
    if amount <= 0:
        raise ValueError(f"{name} must be positive, got {amount}")
    if amount != amount.to_integral_value():
        raise ValueError(f"{name} must be a whole number of base units, got {amount}")
    return amount


def deposit_asset(symbol: str, name: str) -> Unit:
    """
    Create a fungible deposit-asset unit counted in integral base units.

    Args:
        symbol: Asset code (e.g., "USDC").
        name: Full name of the asset.

    Returns:
        A Unit with no overdraft and zero decimal places.
    """
    if not symbol or not symbol.strip():
        raise ValueError("symbol cannot be empty")
    return Unit(symbol=symbol, name=name, unit_type=UNIT_TYPE_DEPOSIT_ASSET, decimal_places=0)


def supply_unit(symbol: str, name: str) -> Unit:
    """
    Create an indivisible supply unit (one item per whole quantity).

    Item identity is tracked by index in LedgerTransfers; the ledger counts
    how many items each wallet holds.
    """
    if not symbol or not symbol.strip():
        raise ValueError("symbol cannot be empty")
    return Unit(symbol=symbol, name=name, unit_type=UNIT_TYPE_SUPPLY, decimal_places=0)
