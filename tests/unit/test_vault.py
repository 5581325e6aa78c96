"""
Unit tests for vault custody: deposits, flexible withdrawals and the locked
vault guarantee.
"""

import pytest

from testament import (
    InvalidAmount, InsufficientBalance, NotFound, WillExecuted,
    Move, ExecuteResult, build_transaction, custody_wallet,
    VALUE_UNIT, VAULT_LOCKED, VAULT_FLEXIBLE,
)
from testament.units import validate_amount, compute_deposit
from testament.events import DEPOSIT_LOCKED, DEPOSIT_FLEXIBLE, WITHDRAW_FLEXIBLE

from tests.will_helpers import (
    TESTATOR, BENEFICIARY, CHECK_IN_PERIOD, DISPUTE_PERIOD, past_dispute,
)


@pytest.fixture
def will_manager(manager):
    manager.fund(TESTATOR, 100)
    manager.create_will(TESTATOR, CHECK_IN_PERIOD, DISPUTE_PERIOD)
    return manager


class TestValidateAmount:

    def test_positive(self):
        assert validate_amount(1) == 1

    @pytest.mark.parametrize("amount", [0, -1, 1.0, "5", True, None])
    def test_rejected(self, amount):
        with pytest.raises(InvalidAmount):
            validate_amount(amount)


class TestDeposits:

    def test_deposit_locked(self, will_manager):
        assert will_manager.deposit_locked(TESTATOR, 30) == 30
        assert will_manager.deposit_locked(TESTATOR, 5) == 35
        assert will_manager.vault_balances(TESTATOR) == {VAULT_LOCKED: 35, VAULT_FLEXIBLE: 0}
        assert will_manager.balance_of(TESTATOR) == 65

    def test_deposit_flexible(self, will_manager):
        assert will_manager.deposit_flexible(TESTATOR, 40) == 40
        assert will_manager.vault_balances(TESTATOR) == {VAULT_LOCKED: 0, VAULT_FLEXIBLE: 40}

    def test_deposit_events_carry_balance(self, will_manager):
        will_manager.deposit_locked(TESTATOR, 30)
        will_manager.deposit_flexible(TESTATOR, 7)
        will_manager.deposit_flexible(TESTATOR, 3)
        records = will_manager.events.records()[-3:]
        assert [r.kind for r in records] == [DEPOSIT_LOCKED, DEPOSIT_FLEXIBLE, DEPOSIT_FLEXIBLE]
        assert records[-1].params_dict == {'testator': TESTATOR, 'amount': 3, 'balance': 10}

    def test_identical_deposits_both_apply(self, will_manager):
        will_manager.deposit_locked(TESTATOR, 10)
        will_manager.deposit_locked(TESTATOR, 10)
        assert will_manager.vault_balances(TESTATOR)[VAULT_LOCKED] == 20

    @pytest.mark.parametrize("amount", [0, -3])
    def test_invalid_amount(self, will_manager, amount):
        with pytest.raises(InvalidAmount):
            will_manager.deposit_locked(TESTATOR, amount)

    def test_unfunded_deposit(self, will_manager):
        with pytest.raises(InsufficientBalance):
            will_manager.deposit_locked(TESTATOR, 101)
        assert will_manager.vault_balances(TESTATOR)[VAULT_LOCKED] == 0

    def test_deposit_without_will(self, manager):
        manager.fund(TESTATOR, 10)
        with pytest.raises(NotFound):
            manager.deposit_flexible(TESTATOR, 5)

    def test_unknown_vault_type(self, will_manager):
        with pytest.raises(ValueError):
            compute_deposit(will_manager.ledger, TESTATOR, "savings", 5)


class TestWithdrawFlexible:

    def test_withdraw(self, will_manager):
        will_manager.deposit_flexible(TESTATOR, 40)
        assert will_manager.withdraw_flexible(TESTATOR, 15) == 25
        assert will_manager.balance_of(TESTATOR) == 75
        record = will_manager.events.records()[-1]
        assert record.kind == WITHDRAW_FLEXIBLE
        assert record.params_dict['balance'] == 25

    def test_withdraw_everything(self, will_manager):
        will_manager.deposit_flexible(TESTATOR, 40)
        assert will_manager.withdraw_flexible(TESTATOR, 40) == 0

    def test_overdraw(self, will_manager):
        will_manager.deposit_flexible(TESTATOR, 40)
        head = will_manager.events.head()
        with pytest.raises(InsufficientBalance):
            will_manager.withdraw_flexible(TESTATOR, 41)
        assert will_manager.vault_balances(TESTATOR)[VAULT_FLEXIBLE] == 40
        assert will_manager.events.head() == head

    def test_locked_funds_are_not_withdrawable(self, will_manager):
        will_manager.deposit_locked(TESTATOR, 40)
        with pytest.raises(InsufficientBalance):
            will_manager.withdraw_flexible(TESTATOR, 1)

    def test_no_vault_changes_after_execution(self, will_manager):
        will_manager.add_beneficiary(TESTATOR, BENEFICIARY, 100)
        will_manager.deposit_flexible(TESTATOR, 10)
        past_dispute(will_manager)
        will_manager.execute_will(BENEFICIARY, TESTATOR)
        with pytest.raises(WillExecuted):
            will_manager.withdraw_flexible(TESTATOR, 1)
        with pytest.raises(WillExecuted):
            will_manager.deposit_locked(TESTATOR, 1)


class TestLockedCustody:

    def test_direct_move_out_of_locked_vault_rejected(self, will_manager):
        will_manager.deposit_locked(TESTATOR, 40)
        ledger = will_manager.ledger
        tx = build_transaction(ledger, [
            Move(40, VALUE_UNIT, custody_wallet(TESTATOR, VAULT_LOCKED), TESTATOR, "withdrawLocked"),
        ])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert ledger.get_balance(custody_wallet(TESTATOR, VAULT_LOCKED), VALUE_UNIT) == 40
