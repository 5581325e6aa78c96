"""
vault.py - Locked and flexible custody vaults of a will

Each will owns two custody wallets on the value ledger:
    {testator}:locked    deposits only; released solely by will execution
    {testator}:flexible  deposits and testator withdrawals until execution

Functions:
    - validate_amount: positive integer check
    - compute_deposit: testator wallet -> custody wallet
    - compute_withdraw_flexible: flexible custody wallet -> testator wallet

There is no locked withdrawal. The value unit's transfer rule also rejects
any non-execution move out of a locked custody wallet.
"""

from __future__ import annotations
from typing import Any

from ..core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType,
    VALUE_UNIT, VAULT_FLEXIBLE, VAULT_TYPES,
    InvalidAmount, InsufficientBalance,
    build_transaction, custody_wallet,
)
from .will import load_will, require_active


def validate_amount(amount: Any) -> int:
    """Raises InvalidAmount unless amount is a positive integer."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"Amount must be a positive integer, got {amount!r}")
    return amount


def _wallet_balance(view: LedgerView, wallet: str) -> int:
    if wallet not in view.list_wallets():
        return 0
    return view.get_balance(wallet, VALUE_UNIT)


def _origin(testator: str, event_type: str) -> TransactionOrigin:
    return TransactionOrigin(
        origin_type=OriginType.USER_ACTION,
        source_id=testator,
        unit_symbol=testator,
        event_type=event_type,
    )


def compute_deposit(view: LedgerView, testator: str, vault_type: str, amount: int) -> PendingTransaction:
    """
    Move amount from the testator's wallet into one of their vaults.

    Raises:
        ValueError: Unknown vault_type.
        InvalidAmount: amount is not a positive integer.
        NotFound, WillExecuted: Will missing or executed.
        InsufficientBalance: The testator's wallet cannot fund the deposit.
    """
    if vault_type not in VAULT_TYPES:
        raise ValueError(f"Unknown vault type: {vault_type}")
    validate_amount(amount)
    terms, state = load_will(view, testator)
    require_active(terms, state)
    available = _wallet_balance(view, testator)
    if amount > available:
        raise InsufficientBalance(f"{testator} holds {available}, cannot deposit {amount}")
    event_type = "depositLocked" if vault_type != VAULT_FLEXIBLE else "depositFlexible"
    move = Move(amount, VALUE_UNIT, testator, custody_wallet(testator, vault_type), event_type)
    return build_transaction(view, [move], origin=_origin(testator, event_type))


def compute_withdraw_flexible(view: LedgerView, testator: str, amount: int) -> PendingTransaction:
    """
    Release amount from the flexible vault back to the testator.

    Raises:
        InvalidAmount: amount is not a positive integer.
        NotFound, WillExecuted: Will missing or executed.
        InsufficientBalance: amount exceeds the flexible balance.
    """
    validate_amount(amount)
    terms, state = load_will(view, testator)
    require_active(terms, state)
    wallet = custody_wallet(testator, VAULT_FLEXIBLE)
    balance = view.get_balance(wallet, VALUE_UNIT)
    if amount > balance:
        raise InsufficientBalance(f"Flexible vault of {testator} holds {balance}, cannot withdraw {amount}")
    move = Move(amount, VALUE_UNIT, wallet, testator, "withdrawFlexible")
    return build_transaction(view, [move], origin=_origin(testator, "withdrawFlexible"))
