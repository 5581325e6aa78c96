"""
will.py - Will Units and the Will Lifecycle State Machine

This module provides will unit creation and lifecycle processing using the
same pure function architecture as every other unit module.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - WillTerms: Immutable terms (testator, periods, creation time)
   - WillState: Immutable state snapshot (check-ins, beneficiaries, documents)
   - Beneficiary, DocumentRef: entries owned by a will

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly as parameters
   - Example: calculate_phase(terms, state, now) -> "DISPUTE"

3. ADAPTER FUNCTIONS (load_will, to_state_dict):
   - Extract state from LedgerView once and convert to typed dataclasses
   - The ONLY place that touches LedgerView for will reads

4. CONVENIENCE FUNCTIONS (compute_*):
   - Take (view, testator, ...) and return a PendingTransaction
   - Raise a WillError subclass when a rule is violated; nothing is mutated

Lifecycle:
    NonExistent --create--> Active --execute--> Executed (terminal)

Key Formulas:
    deadline    = last_check_in + check_in_period
    dispute_end = deadline + dispute_period
    payout(b)   = floor(total_funds * share(b) / 100)

Phase table (t = current time):
    LOCKED   t <= deadline                nobody may execute
    DISPUTE  deadline < t <= dispute_end  guardian only
    OPEN     t > dispute_end              any listed beneficiary
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, Any, List, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_WILL, VALUE_UNIT, VAULT_LOCKED, VAULT_FLEXIBLE, VAULT_TYPES,
    RESERVE_WALLET, TOTAL_SHARES, EXECUTION_CONTRACT_PREFIX,
    NotFound, AlreadyExists, WillExecuted, InvalidInput, PhaseNotElapsed,
    Unauthorized, NoFunds, SharesIncomplete,
    build_transaction, custody_wallet, to_timestamp, _freeze_state,
)


# Phase constants
PHASE_LOCKED = "LOCKED"
PHASE_DISPUTE = "DISPUTE"
PHASE_OPEN = "OPEN"
PHASE_EXECUTED = "EXECUTED"

# Defaults used by the CLI demo and the reference front end (30 days / 7 days)
DEFAULT_CHECK_IN_PERIOD = 30 * 24 * 3600
DEFAULT_DISPUTE_PERIOD = 7 * 24 * 3600


# ============================================================================
# FROZEN DATACLASSES - Explicit Inputs for Pure Functions
# ============================================================================

@dataclass(frozen=True, slots=True)
class Beneficiary:
    """One beneficiary entry: wallet identity, share in percent, guardian flag."""
    wallet: str
    share: int
    is_guardian: bool = False


@dataclass(frozen=True, slots=True)
class DocumentRef:
    """Reference to a content-addressed document attached to a will."""
    content_hash: str
    file_name: str
    category: str
    uploaded_at: int


@dataclass(frozen=True, slots=True)
class WillTerms:
    """
    Immutable terms of a will, fixed when the testator creates it.

    Periods are in seconds, created_at is unix seconds.
    """
    testator: str
    check_in_period: int
    dispute_period: int
    created_at: int


@dataclass(frozen=True, slots=True)
class WillState:
    """
    Immutable snapshot of the mutable part of a will.

    beneficiaries is keyed by wallet identity and keeps insertion order, so
    membership checks are O(1) and payouts follow the order of addition.
    """
    last_check_in: int
    executed: bool = False
    beneficiaries: Dict[str, Beneficiary] = field(default_factory=dict)
    documents: Dict[str, DocumentRef] = field(default_factory=dict)
    dispute_started_at: Optional[int] = None

    @property
    def total_shares(self) -> int:
        return sum(b.share for b in self.beneficiaries.values())

    @property
    def guardian(self) -> Optional[str]:
        """Wallet of the beneficiary flagged as guardian, if any."""
        for b in self.beneficiaries.values():
            if b.is_guardian:
                return b.wallet
        return None

    def is_beneficiary(self, wallet: str) -> bool:
        return wallet in self.beneficiaries


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def load_will(view: LedgerView, testator: str) -> Tuple[WillTerms, WillState]:
    """
    Load a will from ledger state as typed frozen dataclasses.

    Raises:
        NotFound: If the testator has no will.

    Example:
        terms, state = load_will(view, testator)
        phase = calculate_phase(terms, state, now)
    """
    if not view.has_unit(testator):
        raise NotFound(f"No will for {testator}")
    raw = view.get_unit_state(testator)

    terms = WillTerms(
        testator=raw['testator'],
        check_in_period=raw['check_in_period'],
        dispute_period=raw['dispute_period'],
        created_at=raw['created_at'],
    )
    state = WillState(
        last_check_in=raw['last_check_in'],
        executed=raw.get('executed', False),
        beneficiaries={
            wallet: Beneficiary(wallet, entry['share'], entry['is_guardian'])
            for wallet, entry in raw.get('beneficiaries', {}).items()
        },
        documents={
            h: DocumentRef(h, doc['file_name'], doc['category'], doc['uploaded_at'])
            for h, doc in raw.get('documents', {}).items()
        },
        dispute_started_at=raw.get('dispute_started_at'),
    )
    return terms, state


def to_state_dict(terms: WillTerms, state: WillState) -> Dict[str, Any]:
    """
    Convert typed dataclasses back to a state dict for ledger storage.

    This is the inverse of load_will().
    """
    return {
        'testator': terms.testator,
        'check_in_period': terms.check_in_period,
        'dispute_period': terms.dispute_period,
        'created_at': terms.created_at,
        'last_check_in': state.last_check_in,
        'executed': state.executed,
        'dispute_started_at': state.dispute_started_at,
        'beneficiaries': {
            b.wallet: {'share': b.share, 'is_guardian': b.is_guardian}
            for b in state.beneficiaries.values()
        },
        'documents': {
            d.content_hash: {
                'file_name': d.file_name,
                'category': d.category,
                'uploaded_at': d.uploaded_at,
            }
            for d in state.documents.values()
        },
    }


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_deadline(terms: WillTerms, state: WillState) -> int:
    return state.last_check_in + terms.check_in_period


def calculate_dispute_end(terms: WillTerms, state: WillState) -> int:
    return calculate_deadline(terms, state) + terms.dispute_period


def calculate_phase(terms: WillTerms, state: WillState, now: int) -> str:
    """Return PHASE_LOCKED, PHASE_DISPUTE, PHASE_OPEN or PHASE_EXECUTED."""
    if state.executed:
        return PHASE_EXECUTED
    if now <= calculate_deadline(terms, state):
        return PHASE_LOCKED
    if now <= calculate_dispute_end(terms, state):
        return PHASE_DISPUTE
    return PHASE_OPEN


def authorize_execution(terms: WillTerms, state: WillState, caller: str, now: int) -> None:
    """
    Apply the phase table to a would-be executor.

    Raises:
        PhaseNotElapsed: Before the check-in deadline, for every caller.
        Unauthorized: In the dispute window for anyone but the guardian,
            afterwards for anyone who is not a listed beneficiary.
    """
    phase = calculate_phase(terms, state, now)
    if phase == PHASE_LOCKED:
        raise PhaseNotElapsed(
            f"Check-in deadline {calculate_deadline(terms, state)} not passed at {now}"
        )
    if phase == PHASE_DISPUTE:
        if caller != state.guardian:
            raise Unauthorized(f"{caller} is not the guardian; only the guardian may execute during dispute")
        return
    if not state.is_beneficiary(caller):
        raise Unauthorized(f"{caller} is not a beneficiary of {terms.testator}")


def calculate_payouts(total: int, beneficiaries: List[Beneficiary]) -> List[Tuple[str, int]]:
    """
    Split total between beneficiaries: floor(total * share / 100) each.

    The integer-division remainder is not assigned to anybody.
    """
    return [(b.wallet, total * b.share // TOTAL_SHARES) for b in beneficiaries]


def calculate_dust(total: int, beneficiaries: List[Beneficiary]) -> int:
    return total - sum(amount for _, amount in calculate_payouts(total, beneficiaries))


# ============================================================================
# SHARED HELPERS FOR compute_* FUNCTIONS
# ============================================================================

def now_seconds(view: LedgerView) -> int:
    """Ledger time as unix seconds."""
    return to_timestamp(view.current_time)


def require_active(terms: WillTerms, state: WillState) -> None:
    """Raises WillExecuted once the will has been executed."""
    if state.executed:
        raise WillExecuted(f"Will of {terms.testator} already executed")


def vault_balances(view: LedgerView, testator: str) -> Dict[str, int]:
    """Current {vault_type: balance} of a will's two custody wallets."""
    return {
        vault_type: view.get_balance(custody_wallet(testator, vault_type), VALUE_UNIT)
        for vault_type in VAULT_TYPES
    }


def will_transaction(
    view: LedgerView,
    terms: WillTerms,
    old_state: WillState,
    new_state: WillState,
    caller: str,
    event_type: str,
    moves: Optional[List[Move]] = None,
    wallets_to_create: Tuple[str, ...] = (),
    origin_type: OriginType = OriginType.USER_ACTION,
) -> PendingTransaction:
    """Build a PendingTransaction that moves a will from old_state to new_state."""
    change = UnitStateChange(
        unit=terms.testator,
        old_state=to_state_dict(terms, old_state),
        new_state=to_state_dict(terms, new_state),
    )
    origin = TransactionOrigin(
        origin_type=origin_type,
        source_id=caller,
        unit_symbol=terms.testator,
        event_type=event_type,
    )
    return build_transaction(
        view, moves or [], [change], origin, wallets_to_create=wallets_to_create,
    )


def _require_period(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInput(f"{name} must be a positive integer number of seconds, got {value!r}")
    return value


# ============================================================================
# UNIT FACTORY
# ============================================================================

def create_will_unit(testator: str, check_in_period: int, dispute_period: int, now: int) -> Unit:
    """
    Create a will unit for a testator.

    The will unit never moves between wallets; all of its content lives in
    its state. Its symbol is the testator identity.
    """
    terms = WillTerms(
        testator=testator,
        check_in_period=_require_period(check_in_period, "check_in_period"),
        dispute_period=_require_period(dispute_period, "dispute_period"),
        created_at=now,
    )
    state = WillState(last_check_in=now)
    return Unit(
        symbol=testator,
        name=f"Will of {testator}",
        unit_type=UNIT_TYPE_WILL,
        min_balance=0,
        max_balance=0,
        transfer_rule=None,
        _frozen_state=_freeze_state(to_state_dict(terms, state)),
    )


# ============================================================================
# LIFECYCLE OPERATIONS
# ============================================================================

def compute_create_will(
    view: LedgerView,
    testator: str,
    check_in_period: int,
    dispute_period: int,
) -> PendingTransaction:
    """
    Create a will for testator and open its two custody wallets.

    The testator's own wallet is opened by the same transaction when the
    ledger does not know it yet.

    Raises:
        AlreadyExists: If the testator already has a will.
        InvalidInput: If either period is not a positive integer.
    """
    if view.has_unit(testator):
        raise AlreadyExists(f"{testator} already has a will")
    unit = create_will_unit(testator, check_in_period, dispute_period, now_seconds(view))
    existing = view.list_wallets()
    wallets = tuple(
        w for w in (testator, *(custody_wallet(testator, v) for v in VAULT_TYPES))
        if w not in existing
    )
    origin = TransactionOrigin(
        origin_type=OriginType.USER_ACTION,
        source_id=testator,
        unit_symbol=testator,
        event_type="createWill",
    )
    return build_transaction(view, [], None, origin, units_to_create=(unit,), wallets_to_create=wallets)


def compute_check_in(view: LedgerView, testator: str) -> PendingTransaction:
    """
    Reset the dead-man's switch: last_check_in = now.

    A recorded dispute is cleared, since its deadline no longer applies.

    Raises:
        NotFound: If the testator has no will.
        WillExecuted: If the will has been executed.
    """
    terms, state = load_will(view, testator)
    require_active(terms, state)
    new_state = replace(state, last_check_in=now_seconds(view), dispute_started_at=None)
    return will_transaction(view, terms, state, new_state, testator, "checkIn")


def compute_start_dispute(view: LedgerView, testator: str, caller: str) -> PendingTransaction:
    """
    Record that a beneficiary observed the missed check-in deadline.

    Recording a dispute does not change who may execute; the phase table
    is purely time based.

    Raises:
        NotFound, WillExecuted: Will missing or executed.
        PhaseNotElapsed: If the check-in deadline has not passed.
        Unauthorized: If caller is not a listed beneficiary.
        AlreadyExists: If a dispute is already recorded for this deadline.
    """
    terms, state = load_will(view, testator)
    require_active(terms, state)
    now = now_seconds(view)
    if calculate_phase(terms, state, now) == PHASE_LOCKED:
        raise PhaseNotElapsed(
            f"Check-in deadline {calculate_deadline(terms, state)} not passed at {now}"
        )
    if not state.is_beneficiary(caller):
        raise Unauthorized(f"{caller} is not a beneficiary of {testator}")
    if state.dispute_started_at is not None:
        raise AlreadyExists(f"Dispute already started for {testator}")
    new_state = replace(state, dispute_started_at=now)
    return will_transaction(view, terms, state, new_state, caller, "startDispute")


def compute_execute_will(view: LedgerView, testator: str, caller: str) -> PendingTransaction:
    """
    Distribute both vaults to the beneficiaries and mark the will executed.

    The moves empty both custody wallets into the reserve wallet and pay
    each beneficiary floor(total * share / 100) out of it, in a single
    transaction. Dust stays in the reserve wallet. Beneficiary wallets
    unknown to the ledger are created by the same transaction.

    Raises:
        NotFound, WillExecuted: Will missing or executed.
        PhaseNotElapsed, Unauthorized: See authorize_execution().
        NoFunds: If locked + flexible == 0.
        SharesIncomplete: If the shares do not add up to exactly 100.
    """
    terms, state = load_will(view, testator)
    require_active(terms, state)
    authorize_execution(terms, state, caller, now_seconds(view))

    balances = vault_balances(view, testator)
    total = balances[VAULT_LOCKED] + balances[VAULT_FLEXIBLE]
    if total == 0:
        raise NoFunds(f"Will of {testator} holds no funds")
    if state.total_shares != TOTAL_SHARES:
        raise SharesIncomplete(
            f"Shares of {testator} add up to {state.total_shares}, need {TOTAL_SHARES}"
        )

    contract_id = f"{EXECUTION_CONTRACT_PREFIX}{testator}"
    moves: List[Move] = []
    for vault_type in VAULT_TYPES:
        if balances[vault_type] > 0:
            moves.append(Move(
                balances[vault_type], VALUE_UNIT,
                custody_wallet(testator, vault_type), RESERVE_WALLET, contract_id,
            ))
    for wallet, amount in calculate_payouts(total, list(state.beneficiaries.values())):
        if amount > 0:
            moves.append(Move(amount, VALUE_UNIT, RESERVE_WALLET, wallet, contract_id))

    existing = view.list_wallets()
    new_wallets = tuple(w for w in state.beneficiaries if w not in existing)
    new_state = replace(state, executed=True)
    return will_transaction(
        view, terms, state, new_state, caller, "executeWill",
        moves=moves, wallets_to_create=new_wallets, origin_type=OriginType.CONTRACT,
    )


def will_status(view: LedgerView, testator: str) -> Dict[str, Any]:
    """
    Summarize a will: phase, deadlines, shares, guardian and vault balances.

    Raises:
        NotFound: If the testator has no will.
    """
    terms, state = load_will(view, testator)
    balances = vault_balances(view, testator)
    return {
        'testator': terms.testator,
        'phase': calculate_phase(terms, state, now_seconds(view)),
        'last_check_in': state.last_check_in,
        'deadline': calculate_deadline(terms, state),
        'dispute_end': calculate_dispute_end(terms, state),
        'dispute_started_at': state.dispute_started_at,
        'total_shares': state.total_shares,
        'guardian': state.guardian,
        'beneficiaries': [
            {'wallet': b.wallet, 'share': b.share, 'is_guardian': b.is_guardian}
            for b in state.beneficiaries.values()
        ],
        'locked_balance': balances[VAULT_LOCKED],
        'flexible_balance': balances[VAULT_FLEXIBLE],
        'executed': state.executed,
    }
