"""
shares.py - Beneficiary share accounting for a will

Functions:
    - validate_share: range check for a single share (1..100)
    - calculate_add / calculate_update / calculate_remove: pure WillState transitions
    - compute_add_beneficiary / compute_update_beneficiary / compute_remove_beneficiary:
      load the caller's will and return a PendingTransaction
    - total_shares: sum of shares of a will

Invariants held by every transition:
    sum(shares) <= 100
    at most one beneficiary carries the guardian flag
    the testator and the zero identity are never beneficiaries
"""

from __future__ import annotations
from dataclasses import replace
from typing import Any

from ..core import (
    LedgerView, PendingTransaction,
    MIN_SHARE, MAX_SHARE, TOTAL_SHARES, ZERO_IDENTITY,
    InvalidInput, NotFound, DuplicateBeneficiary, GuardianConflict, ShareOverflow,
    normalize_identity,
)
from .will import (
    Beneficiary, WillTerms, WillState,
    load_will, require_active, will_transaction,
)


def validate_share(share: Any) -> int:
    """Raises InvalidInput unless share is an integer in [1, 100]."""
    if isinstance(share, bool) or not isinstance(share, int):
        raise InvalidInput(f"Share must be an integer, got {share!r}")
    if not MIN_SHARE <= share <= MAX_SHARE:
        raise InvalidInput(f"Share must be between {MIN_SHARE} and {MAX_SHARE}, got {share}")
    return share


def _other_guardian(state: WillState, wallet: str):
    guardian = state.guardian
    return guardian if guardian is not None and guardian != wallet else None


def calculate_add(terms: WillTerms, state: WillState, wallet: str, share: int, is_guardian: bool) -> WillState:
    """
    Return the state with a new beneficiary appended.

    Raises:
        InvalidInput: wallet is malformed, the zero identity or the testator; share out of range.
        DuplicateBeneficiary: wallet already listed.
        GuardianConflict: is_guardian while another beneficiary is guardian.
        ShareOverflow: total + share > 100.
    """
    wallet = normalize_identity(wallet)
    if wallet == ZERO_IDENTITY:
        raise InvalidInput("The zero identity cannot be a beneficiary")
    if wallet == terms.testator:
        raise InvalidInput("The testator cannot be their own beneficiary")
    validate_share(share)
    if state.is_beneficiary(wallet):
        raise DuplicateBeneficiary(f"{wallet} is already a beneficiary of {terms.testator}")
    if is_guardian and state.guardian is not None:
        raise GuardianConflict(f"{state.guardian} is already the guardian of {terms.testator}")
    if state.total_shares + share > TOTAL_SHARES:
        raise ShareOverflow(
            f"Adding {share} to {state.total_shares} exceeds {TOTAL_SHARES}"
        )
    beneficiaries = dict(state.beneficiaries)
    beneficiaries[wallet] = Beneficiary(wallet, share, bool(is_guardian))
    return replace(state, beneficiaries=beneficiaries)


def calculate_update(terms: WillTerms, state: WillState, wallet: str, new_share: int, is_guardian: bool) -> WillState:
    """
    Return the state with a beneficiary's share and guardian flag replaced.

    Demoting the current guardian (is_guardian=False) clears the designation.

    Raises:
        NotFound: wallet is not listed.
        InvalidInput: new_share out of range.
        ShareOverflow: total - old + new > 100.
        GuardianConflict: promoting while another beneficiary is guardian.
    """
    wallet = normalize_identity(wallet)
    current = state.beneficiaries.get(wallet)
    if current is None:
        raise NotFound(f"{wallet} is not a beneficiary of {terms.testator}")
    validate_share(new_share)
    if state.total_shares - current.share + new_share > TOTAL_SHARES:
        raise ShareOverflow(
            f"Updating {wallet} to {new_share} exceeds {TOTAL_SHARES}"
        )
    if is_guardian and _other_guardian(state, wallet) is not None:
        raise GuardianConflict(f"{state.guardian} is already the guardian of {terms.testator}")
    beneficiaries = dict(state.beneficiaries)
    beneficiaries[wallet] = Beneficiary(wallet, new_share, bool(is_guardian))
    return replace(state, beneficiaries=beneficiaries)


def calculate_remove(terms: WillTerms, state: WillState, wallet: str) -> WillState:
    """Return the state without wallet. Raises NotFound if it is not listed."""
    wallet = normalize_identity(wallet)
    if wallet not in state.beneficiaries:
        raise NotFound(f"{wallet} is not a beneficiary of {terms.testator}")
    beneficiaries = {w: b for w, b in state.beneficiaries.items() if w != wallet}
    return replace(state, beneficiaries=beneficiaries)


def total_shares(view: LedgerView, testator: str) -> int:
    _, state = load_will(view, testator)
    return state.total_shares


def compute_add_beneficiary(
    view: LedgerView, testator: str, wallet: str, share: int, is_guardian: bool = False,
) -> PendingTransaction:
    terms, state = load_will(view, testator)
    require_active(terms, state)
    new_state = calculate_add(terms, state, wallet, share, is_guardian)
    return will_transaction(view, terms, state, new_state, testator, "addBeneficiary")


def compute_update_beneficiary(
    view: LedgerView, testator: str, wallet: str, new_share: int, is_guardian: bool = False,
) -> PendingTransaction:
    terms, state = load_will(view, testator)
    require_active(terms, state)
    new_state = calculate_update(terms, state, wallet, new_share, is_guardian)
    return will_transaction(view, terms, state, new_state, testator, "updateBeneficiary")


def compute_remove_beneficiary(view: LedgerView, testator: str, wallet: str) -> PendingTransaction:
    terms, state = load_will(view, testator)
    require_active(terms, state)
    new_state = calculate_remove(terms, state, wallet)
    return will_transaction(view, terms, state, new_state, testator, "removeBeneficiary")
