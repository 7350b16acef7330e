"""
transfers.py - Asset Transfer Capability over a Custody Ledger

LedgerTransfers implements the AssetTransfers protocol the clearing engine
consumes:
1. transfer_in() - participant -> custody, fungible deposit asset
2. transfer_out() - custody -> participant/coordinator, fungible deposit asset
3. transfer_unit() - one indivisible item, with recipient acceptance
4. snapshot()/restore() - revert custody together with the engine's ledgers

Every transfer is a single-move transaction on the Ledger, so custody keeps
the double-entry audit trail. Item identity (which wallet owns item #n of a
supply unit) is tracked here; the Ledger counts items per wallet.

Recipient acceptance:
    A wallet may register a UnitReceiver hook. transfer_unit() credits the
    item first and then calls the hook; the hook may call back into the
    engine. A False return or an exception rejects the transfer.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, Optional, Tuple, Any

from .core import (
    Move, OriginType, TransactionOrigin, ExecuteResult, RejectReason, UnitReceiver,
    CUSTODY_WALLET, SYSTEM_WALLET, UNIT_TYPE_SUPPLY,
    InsufficientFunds, BalanceConstraintViolation, TransferRejected, LedgerError,
    UnitNotRegistered, WalletNotRegistered,
    build_transaction,
)
from .ledger import Ledger


ONE = Decimal("1")

_REJECTION_ERRORS = {
    RejectReason.UNIT_NOT_REGISTERED: UnitNotRegistered,
    RejectReason.WALLET_NOT_REGISTERED: WalletNotRegistered,
    RejectReason.BELOW_MIN_BALANCE: InsufficientFunds,
    RejectReason.ABOVE_MAX_BALANCE: BalanceConstraintViolation,
}


class LedgerTransfers:
    """
    Ledger-backed asset transfer capability.

    Example:
        ledger = Ledger("custody", verbose=False)
        bank = LedgerTransfers(ledger)
        ledger.register_unit(deposit_asset("USDC", "USD Coin"))
        ledger.register_wallet("alice")
        bank.issue("USDC", "alice", Decimal("1000"))
        bank.transfer_in("USDC", "alice", Decimal("250"))
    """

    def __init__(self, ledger: Ledger, custody: str = CUSTODY_WALLET):
        self.ledger = ledger
        self.custody = custody
        if not ledger.is_registered(custody):
            ledger.register_wallet(custody)
        # (unit_ref, index) -> owner wallet
        self.owners: Dict[Tuple[str, int], str] = {}
        self.receivers: Dict[str, UnitReceiver] = {}

    # ========================================================================
    # SETUP
    # ========================================================================

    def register_receiver(self, wallet: str, hook: UnitReceiver) -> None:
        """Install a recipient-acceptance hook for a wallet."""
        self.receivers[wallet] = hook

    def issue(self, asset: str, dest: str, amount: Decimal) -> None:
        """Issue a fungible asset from SYSTEM_WALLET to a wallet."""
        self._execute(
            asset, SYSTEM_WALLET, dest, Decimal(amount),
            TransactionOrigin(OriginType.SYSTEM, "issuance", asset, "ISSUE"),
        )

    def issue_items(self, unit_ref: str, count: int) -> range:
        """
        Issue `count` new items of a supply unit into custody.

        Items are numbered consecutively after any previously issued items.

        Returns:
            The range of newly issued item indices.
        """
        if count <= 0:
            raise ValueError(f"count must be positive, got {count}")
        unit = self.ledger.get_unit(unit_ref)
        if unit.unit_type != UNIT_TYPE_SUPPLY:
            raise ValueError(f"{unit_ref} is not a supply unit")
        first = self.items_issued(unit_ref)
        self._execute(
            unit_ref, SYSTEM_WALLET, self.custody, Decimal(count),
            TransactionOrigin(OriginType.SYSTEM, "issuance", unit_ref, "ISSUE_ITEMS"),
        )
        issued = range(first, first + count)
        for index in issued:
            self.owners[(unit_ref, index)] = self.custody
        return issued

    # ========================================================================
    # AssetTransfers PROTOCOL
    # ========================================================================

    def transfer_in(self, asset: str, source: str, amount: Decimal) -> None:
        """Move a fungible asset from a wallet into custody."""
        self._execute(
            asset, source, self.custody, amount,
            TransactionOrigin(OriginType.USER_ACTION, source, asset, "TRANSFER_IN"),
        )

    def transfer_out(self, asset: str, dest: str, amount: Decimal) -> None:
        """Move a fungible asset from custody to a wallet."""
        self._execute(
            asset, self.custody, dest, amount,
            TransactionOrigin(OriginType.CONTRACT, self.custody, asset, "TRANSFER_OUT"),
        )

    def transfer_unit(self, unit_ref: str, source: str, dest: str, index: int) -> None:
        """
        Move one indivisible item and ask the recipient to accept it.

        Raises:
            InsufficientFunds: If source does not own the item
            TransferRejected: If the recipient hook refuses the item
        """
        owner = self.owners.get((unit_ref, index))
        if owner != source:
            raise InsufficientFunds(
                f"{source} does not own {unit_ref}#{index} (owner: {owner})"
            )
        self._execute(
            unit_ref, source, dest, ONE,
            TransactionOrigin(OriginType.CONTRACT, source, unit_ref, f"TRANSFER_UNIT#{index}"),
        )
        self.owners[(unit_ref, index)] = dest

        hook = self.receivers.get(dest)
        if hook is not None and not hook(self.custody, source, unit_ref, index):
            raise TransferRejected(f"{dest} rejected {unit_ref}#{index}")

    def balance_of(self, asset: str, wallet: str) -> Decimal:
        """Balance of an asset in a wallet (0 for unknown wallets)."""
        if not self.ledger.is_registered(wallet):
            if not self.ledger.has_unit(asset):
                raise UnitNotRegistered(f"Unit {asset} not registered")
            return Decimal("0")
        return self.ledger.get_balance(wallet, asset)

    def owner_of(self, unit_ref: str, index: int) -> Optional[str]:
        """Current owner of an item, or None if it was never issued."""
        return self.owners.get((unit_ref, index))

    def items_issued(self, unit_ref: str) -> int:
        """Number of items of a supply unit issued so far."""
        return sum(1 for (ref, _) in self.owners if ref == unit_ref)

    def snapshot(self) -> Any:
        return self.ledger.snapshot(), dict(self.owners)

    def restore(self, snapshot: Any) -> None:
        ledger_snapshot, owners = snapshot
        self.ledger.restore(ledger_snapshot)
        self.owners = dict(owners)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _execute(
        self,
        unit_symbol: str,
        source: str,
        dest: str,
        amount: Decimal,
        origin: TransactionOrigin,
    ) -> None:
        if not self.ledger.is_registered(dest) and dest != self.custody:
            self.ledger.register_wallet(dest)
        move = Move(
            quantity=amount,
            unit_symbol=unit_symbol,
            source=source,
            dest=dest,
            contract_id=f"{origin.event_type.lower()}:{len(self.ledger.transaction_log)}",
        )
        pending = build_transaction(self.ledger, [move], origin=origin)
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            rejection = self.ledger.last_rejection
            raise _REJECTION_ERRORS.get(rejection.reason, LedgerError)(rejection.message)
