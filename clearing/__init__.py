"""
clearing - Allocation-and-Clearing Engine

Time-boxed sessions that collect deposits, discover one clearing price per
epoch and let participants convert their deposit into indivisible units (or
reclaim it, net of a lateness penalty). Custody is a double-entry Ledger.

Usage:
    from clearing import (
        Ledger, ClearingEngine, RolloverOption, deposit_asset, supply_unit,
    )

    ledger = Ledger("custody", initial_time=datetime(2025, 1, 1), verbose=False)
    engine = ClearingEngine.from_ledger(ledger)
    ledger.register_unit(deposit_asset("USDC", "USD Coin"))
    ledger.register_unit(supply_unit("PASS", "Season Pass"))
    engine.transfers.issue_items("PASS", 100)
    engine.transfers.issue("USDC", "alice", Decimal("1000"))

    sid = engine.create_session(
        "PASS", "coordinator",
        datetime(2025, 1, 1), datetime(2025, 1, 2),
        datetime(2025, 1, 3), datetime(2025, 1, 4),
        min_price=1, deposit_asset="USDC", max_supply=100,
        rollover_option=RolloverOption.RESTART,
    )
    engine.deposit(sid, "alice", 500)
"""

# Core types
from .core import (
    LedgerView,
    ClockSource,
    AssetTransfers,
    UnitReceiver,
    Move,
    Transaction,
    PendingTransaction,
    Rejection,
    RejectReason,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    ExecuteResult,
    ClearingConfig,
    to_amount,
    deposit_asset,
    supply_unit,
    SYSTEM_WALLET,
    CUSTODY_WALLET,
    UNIT_TYPE_DEPOSIT_ASSET,
    UNIT_TYPE_SUPPLY,
    MAX_TIME,
    DEFAULT_MAX_PENALTY_FRACTION,
    # Exceptions
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    TransferRejected,
    SessionError,
    InvalidSession,
    BadSessionBounds,
    OutsideAllocationWindow,
    OutsideMintingWindow,
    InsufficientBalance,
    BelowUnitPrice,
    SupplyExhausted,
    MintingNotOver,
    NotCoordinator,
    InsufficientCustody,
)

# Ledger and custody
from .ledger import Ledger, LedgerSnapshot
from .transfers import LedgerTransfers

# Sessions
from .session import (
    Session,
    SessionPhase,
    SessionRegistry,
    RolloverOption,
    MINTING_PHASES,
    session_phase,
    is_terminal,
    validate_bounds,
)
from .deposits import ParticipantDeposit, DepositLedger
from .rewards import RewardLedger

# Pure calculations
from .pricing import (
    MintQuote,
    calculate_clearing_price,
    calculate_effective_price,
    calculate_mint,
    discover_price,
    preview_price,
)
from .penalty import lateness_fraction, calculate_penalty, penalty_schedule
from .rollover import RolloverPlan, compute_rollover, apply_rollover

# Engine
from .engine import ClearingEngine, MintReceipt, ForgoReceipt


__all__ = [
    # Core
    'LedgerView', 'ClockSource', 'AssetTransfers', 'UnitReceiver',
    'Move', 'Transaction', 'PendingTransaction', 'Rejection', 'RejectReason',
    'TransactionOrigin', 'OriginType',
    'build_transaction', 'Unit', 'ExecuteResult', 'ClearingConfig', 'to_amount',
    'deposit_asset', 'supply_unit',
    'SYSTEM_WALLET', 'CUSTODY_WALLET', 'UNIT_TYPE_DEPOSIT_ASSET', 'UNIT_TYPE_SUPPLY',
    'MAX_TIME', 'DEFAULT_MAX_PENALTY_FRACTION',
    # Exceptions
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'UnitNotRegistered', 'WalletNotRegistered', 'TransferRejected',
    'SessionError', 'InvalidSession', 'BadSessionBounds',
    'OutsideAllocationWindow', 'OutsideMintingWindow', 'InsufficientBalance',
    'BelowUnitPrice', 'SupplyExhausted', 'MintingNotOver', 'NotCoordinator',
    'InsufficientCustody',
    # Ledger and custody
    'Ledger', 'LedgerSnapshot', 'LedgerTransfers',
    # Sessions
    'Session', 'SessionPhase', 'SessionRegistry', 'RolloverOption', 'MINTING_PHASES',
    'session_phase', 'is_terminal', 'validate_bounds',
    'ParticipantDeposit', 'DepositLedger', 'RewardLedger',
    # Pricing
    'MintQuote', 'calculate_clearing_price', 'calculate_effective_price',
    'calculate_mint', 'discover_price', 'preview_price',
    # Penalty
    'lateness_fraction', 'calculate_penalty', 'penalty_schedule',
    # Rollover
    'RolloverPlan', 'compute_rollover', 'apply_rollover',
    # Engine
    'ClearingEngine', 'MintReceipt', 'ForgoReceipt',
]

__version__ = '1.0.0'
