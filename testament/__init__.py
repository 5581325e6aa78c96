"""
testament - Will custody ledger and event-sourced replica

A testator configures beneficiaries and funds two custody vaults; a
dead-man's switch driven by check-ins decides who may distribute them and
when. Every state change is emitted as a domain event, and a projection
engine rebuilds a queryable replica from those events.

Usage:
    from testament import WillManager, ProjectionEngine, ReplicaStore

    manager = WillManager()
    engine = ProjectionEngine(manager.events, ReplicaStore("replica.db"))
    engine.start()

    manager.fund(alice, 100)
    manager.create_will(alice, check_in_period=30 * 86400, dispute_period=7 * 86400)
    manager.add_beneficiary(alice, bob, 100, is_guardian=True)
    manager.deposit_locked(alice, 100)
"""

__version__ = "1.0.0"

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    LedgerError,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    WillError,
    InvalidInput,
    InvalidAmount,
    NotFound,
    AlreadyExists,
    WillExecuted,
    DuplicateBeneficiary,
    GuardianConflict,
    ShareOverflow,
    SharesIncomplete,
    NoFunds,
    InsufficientBalance,
    PhaseNotElapsed,
    Unauthorized,
    TransferFailure,
    ProjectionApplyFailure,
    StorageFailure,
    custody_transfer_rule,
    value_unit,
    custody_wallet,
    normalize_identity,
    is_valid_identity,
    is_valid_content_hash,
    SYSTEM_WALLET,
    RESERVE_WALLET,
    VALUE_UNIT,
    VAULT_LOCKED,
    VAULT_FLEXIBLE,
    UNIT_TYPE_VALUE,
    UNIT_TYPE_WILL,
    ZERO_IDENTITY,
)

# Ledger
from .ledger import Ledger

# Will state machine
from .manager import WillManager
from .units import (
    WillTerms,
    WillState,
    Beneficiary,
    DocumentRef,
    load_will,
    calculate_phase,
    calculate_payouts,
    will_status,
    PHASE_LOCKED,
    PHASE_DISPUTE,
    PHASE_OPEN,
    PHASE_EXECUTED,
)

# Events
from .events import EventRecord, EventLog, EventSource, encode_log, decode_log, EVENT_KINDS

# Projection
from .projection import (
    Replica,
    WillRecord,
    ReplicaStore,
    ProjectionEngine,
    apply_event,
    DEFAULT_HANDLERS,
)

__all__ = [
    # Core types
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult',
    # Exceptions
    'LedgerError', 'TransferRuleViolation', 'UnitNotRegistered', 'WalletNotRegistered',
    'WillError', 'InvalidInput', 'InvalidAmount', 'NotFound', 'AlreadyExists',
    'WillExecuted', 'DuplicateBeneficiary', 'GuardianConflict', 'ShareOverflow',
    'SharesIncomplete', 'NoFunds', 'InsufficientBalance', 'PhaseNotElapsed',
    'Unauthorized', 'TransferFailure', 'ProjectionApplyFailure', 'StorageFailure',
    # Value and identities
    'custody_transfer_rule', 'value_unit', 'custody_wallet', 'normalize_identity',
    'is_valid_identity', 'is_valid_content_hash',
    'SYSTEM_WALLET', 'RESERVE_WALLET', 'VALUE_UNIT', 'VAULT_LOCKED', 'VAULT_FLEXIBLE',
    'UNIT_TYPE_VALUE', 'UNIT_TYPE_WILL', 'ZERO_IDENTITY',
    # Ledger and state machine
    'Ledger', 'WillManager',
    'WillTerms', 'WillState', 'Beneficiary', 'DocumentRef',
    'load_will', 'calculate_phase', 'calculate_payouts', 'will_status',
    'PHASE_LOCKED', 'PHASE_DISPUTE', 'PHASE_OPEN', 'PHASE_EXECUTED',
    # Events
    'EventRecord', 'EventLog', 'EventSource', 'encode_log', 'decode_log', 'EVENT_KINDS',
    # Projection
    'Replica', 'WillRecord', 'ReplicaStore', 'ProjectionEngine', 'apply_event', 'DEFAULT_HANDLERS',
]
