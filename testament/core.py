"""
Core types and pure functions for the will custody ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the will error taxonomy
4. Identities: address validation and custody wallet naming
5. Transfer rules: Pure validation functions for moves
6. Unit factories: Functions to create the value unit

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import calendar
import copy
import hashlib
import re
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Wallet held by the will contract itself. Integer-division dust left over
# after a distribution stays here and is never paid out.
RESERVE_WALLET = "reserve"

# Unit type constants (strings, not enum per design decision).
UNIT_TYPE_VALUE = "VALUE"
UNIT_TYPE_WILL = "WILL"

# Symbol of the native value unit, denominated in its smallest indivisible unit.
VALUE_UNIT = "WEI"

# Vault types
VAULT_LOCKED = "locked"
VAULT_FLEXIBLE = "flexible"
VAULT_TYPES = (VAULT_LOCKED, VAULT_FLEXIBLE)

# Share accounting
MIN_SHARE = 1
MAX_SHARE = 100
TOTAL_SHARES = 100

# Contract id prefix reserved for will execution moves. Only moves carrying
# this prefix may leave a locked custody wallet.
EXECUTION_CONTRACT_PREFIX = "execute:"

ZERO_IDENTITY = "0x" + "0" * 40

_IDENTITY_RE = re.compile(r"0x[a-fA-F0-9]{40}")

# CIDv0 (base58 "Qm...") and CIDv1 (base32 "bafy...") content hashes
_CONTENT_HASH_RE = re.compile(r"Qm[1-9A-HJ-NP-Za-km-z]{44}|bafy[a-z2-7]{50,}")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, int]

# Internal state for a unit (will terms, beneficiaries, documents, ...).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    This protocol defines the interface that will functions and transfer
    rules use to query ledger state without the ability to modify it.
    Functions accepting a LedgerView parameter declare their read-only intent.

    The Ledger class implements this protocol but also provides mutation
    methods. For testing, FakeView provides a truly immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        """
        Return the balance of a specific unit in a wallet.

        Returns 0 if the wallet holds nothing of that unit.
        """
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def has_unit(self, unit_symbol: str) -> bool:
        """Return True if a unit with this symbol is registered."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was successfully validated and applied to the ledger.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation due to insufficient funds, balance
              constraints, or transfer rule violations.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Testator or beneficiary call
    CONTRACT = "contract"                 # Will contract logic (execution)
    SYSTEM = "system"                     # Issuance, initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class WillError(LedgerError):
    """Base class for will lifecycle rule violations. Never retried."""
    pass


class InvalidInput(WillError):
    """Malformed arguments: bad identity, share out of range, non-positive period."""
    pass


class InvalidAmount(InvalidInput):
    """Deposit or withdrawal amount that is not a positive integer."""
    pass


class NotFound(WillError):
    """Missing will, beneficiary or document."""
    pass


class AlreadyExists(WillError):
    """The caller already has a will (or the document/dispute is already recorded)."""
    pass


class WillExecuted(WillError):
    """The will has been executed; it accepts no further mutation."""
    pass


class DuplicateBeneficiary(WillError):
    """The wallet is already listed as a beneficiary of this will."""
    pass


class GuardianConflict(WillError):
    """Another beneficiary already holds the guardian flag."""
    pass


class ShareOverflow(WillError):
    """The change would push the will's total shares above 100."""
    pass


class SharesIncomplete(WillError):
    """Execution requires the shares to add up to exactly 100."""
    pass


class NoFunds(WillError):
    """Execution requires a non-zero vault total."""
    pass


class InsufficientBalance(WillError):
    """A withdrawal or deposit exceeds the available balance."""
    pass


class PhaseNotElapsed(WillError):
    """The check-in deadline has not passed yet."""
    pass


class Unauthorized(WillError):
    """The caller may not perform this operation in the current phase."""
    pass


class TransferFailure(WillError):
    """A value transfer failed during execution; the whole execution was aborted."""
    pass


class ProjectionApplyFailure(LedgerError):
    """A single event could not be applied to the replica. Logged and skipped."""
    pass


class StorageFailure(LedgerError):
    """The replica store failed to persist an event. Fatal to the projection process."""
    pass


# ============================================================================
# IDENTITIES
# ============================================================================

def is_valid_identity(value: Any) -> bool:
    """Return True if value has the fixed address shape (0x + 40 hex digits)."""
    return isinstance(value, str) and _IDENTITY_RE.fullmatch(value) is not None


def normalize_identity(value: Any) -> str:
    """
    Validate an identity and return its lower-cased canonical form.

    Raises:
        InvalidInput: If value is not address-shaped.
    """
    if not is_valid_identity(value):
        raise InvalidInput(f"Invalid identity: {value!r}")
    return value.lower()


def is_valid_content_hash(value: Any) -> bool:
    """Return True if value looks like a CIDv0 or CIDv1 content hash."""
    return isinstance(value, str) and _CONTENT_HASH_RE.fullmatch(value) is not None


def custody_wallet(testator: str, vault_type: str) -> str:
    """Wallet ID holding one of a will's two vaults."""
    if vault_type not in VAULT_TYPES:
        raise ValueError(f"Unknown vault type: {vault_type}")
    return f"{testator}:{vault_type}"


def is_locked_custody_wallet(wallet_id: str) -> bool:
    return wallet_id.endswith(f":{VAULT_LOCKED}")


def to_timestamp(moment: datetime) -> int:
    """
    Convert a datetime to integer unix seconds.

    Naive datetimes are interpreted as UTC.
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return calendar.timegm(moment.utctimetuple())


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the caller, including its nonce
        unit_symbol: Symbol of the will that triggered this (if applicable)
        event_type: Operation name (e.g., "createWill", "executeWill")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change with complete before/after snapshots.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: Complete state before the change (dict or None)
        new_state: Complete state after the change (dict)
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old_value, new_value)} for the fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer, a positive integer in the smallest unit.
        unit_symbol: The symbol of the unit being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: int
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Deterministic regardless of dict insertion order or nesting depth.
    The output is suitable for content-addressable hashing.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    # Fallback for other types - use repr but with a warning marker
    return f"R:{repr(value)}"


def content_digest(value: Any) -> str:
    """SHA-256 hex digest of the canonical form of value."""
    return hashlib.sha256(_canonicalize(value).encode()).hexdigest()


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on the semantic content of the transaction, not on
    timestamps or ledger-specific data. Used for idempotency checking.
    The caller nonce lives in origin.source_id, so two otherwise identical
    deposits by the same caller still get distinct intents.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (m.quantity, m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        content_parts.append(f"move:{m.quantity}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction description before execution - represents INTENT.

    Created by will functions and submitted to the ledger for execution.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Tuple of Unit objects to register before executing moves
        wallets_to_create: Wallet IDs to register before executing moves
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    wallets_to_create: Tuple[str, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this pending transaction changes nothing."""
        return (
            not self.moves and not self.state_changes
            and not self.units_to_create and not self.wallets_to_create
        )

    def with_origin(self, origin: TransactionOrigin) -> 'PendingTransaction':
        """Return a copy stamped with a different origin (intent_id recomputed)."""
        return PendingTransaction(
            moves=self.moves,
            state_changes=self.state_changes,
            origin=origin,
            timestamp=self.timestamp,
            units_to_create=self.units_to_create,
            wallets_to_create=self.wallets_to_create,
        )

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
    wallets_to_create: Optional[Tuple[str, ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state deltas.

    This is the standard way to create transactions.

    Example:
        def compute_deposit(view, testator, amount):
            moves = [Move(amount, VALUE_UNIT, testator, custody_wallet(testator, "locked"), "deposit")]
            return build_transaction(view, moves)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    # Deep copy state changes to prevent mutation
    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
        wallets_to_create=wallets_to_create or (),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger (for ordering)
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    wallets_to_create: Tuple[str, ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if (not self.moves and not self.state_changes
                and not self.units_to_create and not self.wallets_to_create):
            raise ValueError("Transaction must change something")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        lines = [
            f"Transaction {self.exec_id} intent={self.intent_id} {self.origin}",
        ]
        for i, move in enumerate(self.moves):
            lines.append(f"  [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}")
        for sc in self.state_changes:
            for field_name, (old_val, new_val) in sc.changed_fields().items():
                lines.append(f"  {sc.unit}.{field_name}: {old_val!r} → {new_val!r}")
        return "\n".join(lines)


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[LedgerView, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a mutable state dict to a frozen, key-sorted tuple of pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a mutable dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit in the ledger: either the value unit or a will.

    Attributes:
        symbol: Short identifier for the unit (VALUE_UNIT, or the testator address for wills).
        name: Human-readable name for the unit.
        unit_type: UNIT_TYPE_VALUE or UNIT_TYPE_WILL.
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet (None = unbounded).
        transfer_rule: Optional function to validate moves involving this unit.
        _frozen_state: Internal frozen state representation (tuple of key-value pairs).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: int = 0
    max_balance: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a new mutable dictionary."""
        return _thaw_state(self._frozen_state)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def custody_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Enforce the custody guarantees of the value unit.

    1. Nothing leaves a locked custody wallet unless it is part of a will
       execution (contract_id carries EXECUTION_CONTRACT_PREFIX).
    2. Wallets listed in the unit's 'rejecting_wallets' state refuse incoming
       value, the way a recipient contract without a payable fallback does.

    Raises:
        TransferRuleViolation: If either guarantee would be broken.
    """
    if (is_locked_custody_wallet(move.source)
            and not move.contract_id.startswith(EXECUTION_CONTRACT_PREFIX)):
        raise TransferRuleViolation(
            f"{move.unit_symbol}: locked vault {move.source} only releases value on execution"
        )
    state = view.get_unit_state(move.unit_symbol)
    if move.dest in state.get('rejecting_wallets', ()):
        raise TransferRuleViolation(
            f"{move.unit_symbol}: {move.dest} rejected the transfer"
        )


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def value_unit(symbol: str = VALUE_UNIT, name: str = "Native value") -> Unit:
    """
    Create the native value unit.

    Balances are non-negative integers; the custody transfer rule protects
    locked vaults and models recipients that reject transfers.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_VALUE,
        min_balance=0,
        transfer_rule=custody_transfer_rule,
        _frozen_state=_freeze_state({'rejecting_wallets': []}),
    )
