"""
manager.py - Will Manager

Stateful facade over the ledger that plays the role of the will contract.

Each state-changing operation:
1. Normalizes the caller identity
2. Calls a pure compute_* function (raises WillError on any rule violation)
3. Executes the resulting PendingTransaction atomically on the ledger
4. Appends the domain events of the operation to the EventLog as one block

Operations are serialized by a re-entrant lock. A failed operation leaves
ledger state and the event log unchanged.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple, Type

from .core import (
    PendingTransaction, ExecuteResult, Move, TransactionOrigin, OriginType,
    LedgerError, WillError, InsufficientBalance, TransferFailure,
    SYSTEM_WALLET, RESERVE_WALLET, VALUE_UNIT, VAULT_LOCKED, VAULT_FLEXIBLE, UNIT_TYPE_WILL,
    build_transaction, custody_wallet, normalize_identity, value_unit,
)
from .ledger import Ledger
from .events import (
    EventLog,
    WILL_CREATED, CHECK_IN, WILL_EXECUTED,
    BENEFICIARY_ADDED, BENEFICIARY_UPDATED, BENEFICIARY_REMOVED,
    DEPOSIT_LOCKED, DEPOSIT_FLEXIBLE, WITHDRAW_FLEXIBLE,
    DISPUTE_STARTED, DOCUMENT_ADDED, DOCUMENT_REMOVED,
)
from .units.will import (
    WillTerms, WillState,
    load_will, now_seconds, calculate_phase, calculate_dispute_end,
    compute_create_will, compute_check_in, compute_start_dispute, compute_execute_will,
    will_status,
)
from .units.shares import (
    compute_add_beneficiary, compute_update_beneficiary, compute_remove_beneficiary,
)
from .units.vault import compute_deposit, compute_withdraw_flexible, validate_amount
from .units.documents import compute_add_document, compute_remove_document

logger = logging.getLogger(__name__)


class WillManager:
    """
    Will lifecycle state machine on top of a Ledger.

    Callers are passed explicitly to every operation; their identity is the
    address-shaped string that signs the call. Value enters the system through
    fund(), which issues it from the system wallet.

    Example:
        manager = WillManager()
        manager.fund(alice, 100)
        manager.create_will(alice, check_in_period=30 * 86400, dispute_period=7 * 86400)
        manager.add_beneficiary(alice, bob, 100, is_guardian=True)
        manager.deposit_locked(alice, 100)
    """

    def __init__(
        self,
        ledger: Optional[Ledger] = None,
        event_log: Optional[EventLog] = None,
        name: str = "testament",
        initial_time: Optional[datetime] = None,
        verbose: bool = False,
    ):
        self.ledger = ledger or Ledger(name, initial_time=initial_time, verbose=verbose)
        self.events = event_log or EventLog()
        if not self.ledger.has_unit(VALUE_UNIT):
            self.ledger.register_unit(value_unit())
        if not self.ledger.is_registered(RESERVE_WALLET):
            self.ledger.register_wallet(RESERVE_WALLET)
        self._nonces: Dict[str, int] = defaultdict(int)
        self._lock = threading.RLock()

    # ========================================================================
    # TIME
    # ========================================================================

    @property
    def now(self) -> int:
        """Current ledger time in unix seconds."""
        return now_seconds(self.ledger)

    def advance_time(self, new_time: datetime) -> None:
        with self._lock:
            self.ledger.advance_time(new_time)

    def advance(self, seconds: int) -> None:
        """Move the clock forward by a number of seconds."""
        with self._lock:
            self.ledger.advance_time(self.ledger.current_time + timedelta(seconds=seconds))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _ensure_wallet(self, identity: str) -> None:
        if not self.ledger.is_registered(identity):
            self.ledger.register_wallet(identity)

    def _submit(
        self,
        pending: PendingTransaction,
        caller: str,
        on_reject: Type[WillError] = TransferFailure,
    ) -> None:
        """Stamp the caller's nonce on the transaction and execute it."""
        self._nonces[caller] += 1
        origin = replace(pending.origin, source_id=f"{caller}#{self._nonces[caller]}")
        result = self.ledger.execute(pending.with_origin(origin))
        if result == ExecuteResult.REJECTED:
            raise on_reject(self.ledger.last_rejection or "transaction rejected")
        if result == ExecuteResult.ALREADY_APPLIED:
            raise LedgerError(f"Duplicate intent {pending.intent_id}")

    def _emit(self, *events: Tuple[str, Dict[str, Any]]) -> None:
        self.events.append_block(self.now, list(events))

    def _vault_balance(self, testator: str, vault_type: str) -> int:
        return self.ledger.get_balance(custody_wallet(testator, vault_type), VALUE_UNIT)

    # ========================================================================
    # VALUE FUNDING
    # ========================================================================

    def fund(self, identity: str, amount: int) -> int:
        """
        Issue amount of value to identity's wallet from the system wallet.

        Returns:
            The new wallet balance.
        """
        with self._lock:
            identity = normalize_identity(identity)
            validate_amount(amount)
            self._ensure_wallet(identity)
            origin = TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, event_type="fund")
            pending = build_transaction(
                self.ledger, [Move(amount, VALUE_UNIT, SYSTEM_WALLET, identity, "fund")], origin=origin,
            )
            self._submit(pending, SYSTEM_WALLET)
            return self.ledger.get_balance(identity, VALUE_UNIT)

    def balance_of(self, identity: str) -> int:
        identity = normalize_identity(identity)
        if not self.ledger.is_registered(identity):
            return 0
        return self.ledger.get_balance(identity, VALUE_UNIT)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def create_will(self, caller: str, check_in_period: int, dispute_period: int) -> None:
        with self._lock:
            testator = normalize_identity(caller)
            pending = compute_create_will(self.ledger, testator, check_in_period, dispute_period)
            self._submit(pending, testator)
            logger.info("Will created for %s", testator)
            self._emit((WILL_CREATED, {
                'testator': testator,
                'check_in_period': check_in_period,
                'dispute_period': dispute_period,
            }))

    def check_in(self, caller: str) -> None:
        with self._lock:
            testator = normalize_identity(caller)
            self._submit(compute_check_in(self.ledger, testator), testator)
            self._emit((CHECK_IN, {'testator': testator, 'timestamp': self.now}))

    def start_dispute(self, caller: str, testator: str) -> int:
        """
        Record a missed check-in deadline.

        Returns:
            The end of the dispute window (unix seconds).
        """
        with self._lock:
            caller = normalize_identity(caller)
            testator = normalize_identity(testator)
            self._submit(compute_start_dispute(self.ledger, testator, caller), caller)
            terms, state = load_will(self.ledger, testator)
            dispute_end = calculate_dispute_end(terms, state)
            logger.info("Dispute started on will of %s by %s", testator, caller)
            self._emit((DISPUTE_STARTED, {'testator': testator, 'dispute_deadline': dispute_end}))
            return dispute_end

    def execute_will(self, caller: str, testator: str) -> Dict[str, int]:
        """
        Distribute the will's vaults to its beneficiaries.

        Returns:
            {beneficiary wallet: amount received}

        Raises:
            TransferFailure: If any transfer is rejected; nothing is paid out.
        """
        with self._lock:
            caller = normalize_identity(caller)
            testator = normalize_identity(testator)
            pending = compute_execute_will(self.ledger, testator, caller)
            self._submit(pending, caller, on_reject=TransferFailure)
            payouts = {
                m.dest: m.quantity for m in pending.moves if m.source == RESERVE_WALLET
            }
            total = sum(payouts.values())
            logger.info("Will of %s executed by %s: %d distributed to %d beneficiaries",
                        testator, caller, total, len(payouts))
            self._emit((WILL_EXECUTED, {'testator': testator, 'total_distributed': total}))
            return payouts

    # ========================================================================
    # SHARES
    # ========================================================================

    def add_beneficiary(self, caller: str, wallet: str, share: int, is_guardian: bool = False) -> None:
        with self._lock:
            testator = normalize_identity(caller)
            pending = compute_add_beneficiary(self.ledger, testator, wallet, share, is_guardian)
            self._submit(pending, testator)
            self._emit((BENEFICIARY_ADDED, {
                'testator': testator,
                'beneficiary': normalize_identity(wallet),
                'share': share,
                'is_guardian': bool(is_guardian),
            }))

    def update_beneficiary(self, caller: str, wallet: str, new_share: int, is_guardian: bool = False) -> None:
        with self._lock:
            testator = normalize_identity(caller)
            pending = compute_update_beneficiary(self.ledger, testator, wallet, new_share, is_guardian)
            self._submit(pending, testator)
            self._emit((BENEFICIARY_UPDATED, {
                'testator': testator,
                'beneficiary': normalize_identity(wallet),
                'new_share': new_share,
                'is_guardian': bool(is_guardian),
            }))

    def remove_beneficiary(self, caller: str, wallet: str) -> None:
        with self._lock:
            testator = normalize_identity(caller)
            self._submit(compute_remove_beneficiary(self.ledger, testator, wallet), testator)
            self._emit((BENEFICIARY_REMOVED, {
                'testator': testator,
                'beneficiary': normalize_identity(wallet),
            }))

    def total_shares(self, testator: str) -> int:
        _, state = self.get_will(testator)
        return state.total_shares

    # ========================================================================
    # VAULTS
    # ========================================================================

    def _deposit(self, caller: str, vault_type: str, amount: int, kind: str) -> int:
        with self._lock:
            testator = normalize_identity(caller)
            pending = compute_deposit(self.ledger, testator, vault_type, amount)
            self._submit(pending, testator, on_reject=InsufficientBalance)
            balance = self._vault_balance(testator, vault_type)
            self._emit((kind, {'testator': testator, 'amount': amount, 'balance': balance}))
            return balance

    def deposit_locked(self, caller: str, amount: int) -> int:
        """Returns the new locked balance."""
        return self._deposit(caller, VAULT_LOCKED, amount, DEPOSIT_LOCKED)

    def deposit_flexible(self, caller: str, amount: int) -> int:
        """Returns the new flexible balance."""
        return self._deposit(caller, VAULT_FLEXIBLE, amount, DEPOSIT_FLEXIBLE)

    def withdraw_flexible(self, caller: str, amount: int) -> int:
        """Returns the new flexible balance."""
        with self._lock:
            testator = normalize_identity(caller)
            pending = compute_withdraw_flexible(self.ledger, testator, amount)
            self._submit(pending, testator, on_reject=InsufficientBalance)
            balance = self._vault_balance(testator, VAULT_FLEXIBLE)
            self._emit((WITHDRAW_FLEXIBLE, {'testator': testator, 'amount': amount, 'balance': balance}))
            return balance

    def vault_balances(self, testator: str) -> Dict[str, int]:
        testator = normalize_identity(testator)
        load_will(self.ledger, testator)
        return {
            VAULT_LOCKED: self._vault_balance(testator, VAULT_LOCKED),
            VAULT_FLEXIBLE: self._vault_balance(testator, VAULT_FLEXIBLE),
        }

    # ========================================================================
    # DOCUMENTS
    # ========================================================================

    def add_document(self, caller: str, content_hash: str, file_name: str, category: str = "") -> None:
        with self._lock:
            testator = normalize_identity(caller)
            pending = compute_add_document(self.ledger, testator, content_hash, file_name, category)
            self._submit(pending, testator)
            self._emit((DOCUMENT_ADDED, {
                'testator': testator,
                'content_hash': content_hash,
                'file_name': file_name,
                'category': category or "",
            }))

    def remove_document(self, caller: str, content_hash: str) -> None:
        with self._lock:
            testator = normalize_identity(caller)
            self._submit(compute_remove_document(self.ledger, testator, content_hash), testator)
            self._emit((DOCUMENT_REMOVED, {'testator': testator, 'content_hash': content_hash}))

    # ========================================================================
    # READS
    # ========================================================================

    def get_will(self, testator: str) -> Tuple[WillTerms, WillState]:
        return load_will(self.ledger, normalize_identity(testator))

    def phase(self, testator: str) -> str:
        terms, state = self.get_will(testator)
        return calculate_phase(terms, state, self.now)

    def will_status(self, testator: str) -> Dict[str, Any]:
        return will_status(self.ledger, normalize_identity(testator))

    def list_wills(self) -> List[str]:
        return self.ledger.list_units_of_type(UNIT_TYPE_WILL)
