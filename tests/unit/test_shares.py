"""
Unit tests for beneficiary share accounting.

Tests cover:
- Share range validation
- Add / update / remove transitions and their error precedence
- Guardian uniqueness
- Manager operations and their events
"""

import pytest

from testament import (
    InvalidInput, NotFound, DuplicateBeneficiary, GuardianConflict, ShareOverflow,
    WillExecuted, ZERO_IDENTITY,
)
from testament.units import (
    WillTerms, WillState, Beneficiary,
    validate_share, calculate_add, calculate_update, calculate_remove,
)
from testament.events import BENEFICIARY_ADDED, BENEFICIARY_UPDATED, BENEFICIARY_REMOVED

from tests.will_helpers import (
    TESTATOR, BENEFICIARY, GUARDIAN, STRANGER, CHECK_IN_PERIOD, DISPUTE_PERIOD,
    addr, past_dispute,
)


TERMS = WillTerms(TESTATOR, CHECK_IN_PERIOD, DISPUTE_PERIOD, 0)


def state_with(*entries):
    return WillState(
        last_check_in=0,
        beneficiaries={b.wallet: b for b in entries},
    )


class TestValidateShare:

    @pytest.mark.parametrize("share", [1, 50, 100])
    def test_valid(self, share):
        assert validate_share(share) == share

    @pytest.mark.parametrize("share", [0, -5, 101, 1.5, "10", True, None])
    def test_invalid(self, share):
        with pytest.raises(InvalidInput):
            validate_share(share)


class TestCalculateAdd:

    def test_appends_in_order(self):
        state = calculate_add(TERMS, state_with(), BENEFICIARY, 60, False)
        state = calculate_add(TERMS, state, GUARDIAN, 40, True)
        assert list(state.beneficiaries) == [BENEFICIARY, GUARDIAN]
        assert state.total_shares == 100
        assert state.guardian == GUARDIAN

    def test_identity_is_normalized(self):
        state = calculate_add(TERMS, state_with(), BENEFICIARY.upper().replace("0X", "0x"), 10, False)
        assert BENEFICIARY in state.beneficiaries

    def test_zero_identity_rejected(self):
        with pytest.raises(InvalidInput):
            calculate_add(TERMS, state_with(), ZERO_IDENTITY, 10, False)

    def test_testator_rejected(self):
        with pytest.raises(InvalidInput):
            calculate_add(TERMS, state_with(), TESTATOR, 10, False)

    def test_malformed_identity_rejected(self):
        with pytest.raises(InvalidInput):
            calculate_add(TERMS, state_with(), "bob", 10, False)

    def test_duplicate(self):
        state = state_with(Beneficiary(BENEFICIARY, 10))
        with pytest.raises(DuplicateBeneficiary):
            calculate_add(TERMS, state, BENEFICIARY, 10, False)

    def test_second_guardian(self):
        state = state_with(Beneficiary(GUARDIAN, 10, True))
        with pytest.raises(GuardianConflict):
            calculate_add(TERMS, state, BENEFICIARY, 10, True)

    def test_overflow(self):
        state = state_with(Beneficiary(BENEFICIARY, 90))
        with pytest.raises(ShareOverflow):
            calculate_add(TERMS, state, GUARDIAN, 11, False)

    def test_fills_exactly_to_hundred(self):
        state = state_with(Beneficiary(BENEFICIARY, 90))
        assert calculate_add(TERMS, state, GUARDIAN, 10, False).total_shares == 100

    def test_range_checked_before_duplicate(self):
        state = state_with(Beneficiary(BENEFICIARY, 10))
        with pytest.raises(InvalidInput):
            calculate_add(TERMS, state, BENEFICIARY, 0, False)

    def test_duplicate_checked_before_guardian_and_overflow(self):
        state = state_with(Beneficiary(BENEFICIARY, 95, True))
        with pytest.raises(DuplicateBeneficiary):
            calculate_add(TERMS, state, BENEFICIARY, 10, True)

    def test_guardian_checked_before_overflow(self):
        state = state_with(Beneficiary(GUARDIAN, 95, True))
        with pytest.raises(GuardianConflict):
            calculate_add(TERMS, state, BENEFICIARY, 10, True)

    def test_input_state_untouched(self):
        state = state_with()
        calculate_add(TERMS, state, BENEFICIARY, 10, False)
        assert state.beneficiaries == {}


class TestCalculateUpdate:

    def test_changes_share_in_place(self):
        state = state_with(Beneficiary(BENEFICIARY, 60), Beneficiary(GUARDIAN, 40, True))
        new_state = calculate_update(TERMS, state, BENEFICIARY, 30, False)
        assert new_state.beneficiaries[BENEFICIARY].share == 30
        assert list(new_state.beneficiaries) == [BENEFICIARY, GUARDIAN]

    def test_missing(self):
        with pytest.raises(NotFound):
            calculate_update(TERMS, state_with(), BENEFICIARY, 10, False)

    def test_overflow_counts_replaced_share(self):
        state = state_with(Beneficiary(BENEFICIARY, 60), Beneficiary(GUARDIAN, 40))
        assert calculate_update(TERMS, state, BENEFICIARY, 60, False).total_shares == 100
        with pytest.raises(ShareOverflow):
            calculate_update(TERMS, state, BENEFICIARY, 61, False)

    def test_guardian_may_keep_flag(self):
        state = state_with(Beneficiary(GUARDIAN, 40, True))
        assert calculate_update(TERMS, state, GUARDIAN, 50, True).guardian == GUARDIAN

    def test_promotion_conflicts_with_other_guardian(self):
        state = state_with(Beneficiary(BENEFICIARY, 60), Beneficiary(GUARDIAN, 40, True))
        with pytest.raises(GuardianConflict):
            calculate_update(TERMS, state, BENEFICIARY, 60, True)

    def test_demotion_clears_guardian(self):
        state = state_with(Beneficiary(GUARDIAN, 40, True))
        assert calculate_update(TERMS, state, GUARDIAN, 40, False).guardian is None

    def test_overflow_checked_before_guardian(self):
        state = state_with(Beneficiary(BENEFICIARY, 60), Beneficiary(GUARDIAN, 40, True))
        with pytest.raises(ShareOverflow):
            calculate_update(TERMS, state, BENEFICIARY, 70, True)


class TestCalculateRemove:

    def test_remove(self):
        state = state_with(Beneficiary(BENEFICIARY, 60), Beneficiary(GUARDIAN, 40, True))
        new_state = calculate_remove(TERMS, state, GUARDIAN)
        assert list(new_state.beneficiaries) == [BENEFICIARY]
        assert new_state.guardian is None
        assert new_state.total_shares == 60

    def test_missing(self):
        with pytest.raises(NotFound):
            calculate_remove(TERMS, state_with(), BENEFICIARY)


class TestManagerShares:

    def test_add_emits_event(self, manager):
        manager.create_will(TESTATOR, CHECK_IN_PERIOD, DISPUTE_PERIOD)
        manager.add_beneficiary(TESTATOR, BENEFICIARY, 60, is_guardian=True)
        record = manager.events.records()[-1]
        assert record.kind == BENEFICIARY_ADDED
        assert record.params_dict == {
            'testator': TESTATOR, 'beneficiary': BENEFICIARY, 'share': 60, 'is_guardian': True,
        }
        assert manager.total_shares(TESTATOR) == 60

    def test_update_and_remove_emit_events(self, funded_manager):
        funded_manager.update_beneficiary(TESTATOR, BENEFICIARY, 50)
        funded_manager.remove_beneficiary(TESTATOR, GUARDIAN)
        kinds = [r.kind for r in funded_manager.events.records()[-2:]]
        assert kinds == [BENEFICIARY_UPDATED, BENEFICIARY_REMOVED]
        assert funded_manager.total_shares(TESTATOR) == 50

    def test_failed_add_changes_nothing(self, funded_manager):
        before = funded_manager.ledger.get_unit_state(TESTATOR)
        head = funded_manager.events.head()
        with pytest.raises(ShareOverflow):
            funded_manager.add_beneficiary(TESTATOR, STRANGER, 1)
        assert funded_manager.ledger.get_unit_state(TESTATOR) == before
        assert funded_manager.events.head() == head

    def test_without_will(self, manager):
        with pytest.raises(NotFound):
            manager.add_beneficiary(TESTATOR, BENEFICIARY, 10)

    def test_testator_with_trailing_newline_rejected(self, manager):
        manager.create_will(TESTATOR, CHECK_IN_PERIOD, DISPUTE_PERIOD)
        with pytest.raises(InvalidInput):
            manager.add_beneficiary(TESTATOR, TESTATOR + "\n", 50)
        assert manager.total_shares(TESTATOR) == 0

    def test_listed_wallet_cannot_be_added_again_with_suffix(self, funded_manager):
        funded_manager.remove_beneficiary(TESTATOR, GUARDIAN)
        with pytest.raises(InvalidInput):
            funded_manager.add_beneficiary(TESTATOR, BENEFICIARY + "\n", 40)
        _, state = funded_manager.get_will(TESTATOR)
        assert list(state.beneficiaries) == [BENEFICIARY]

    def test_many_small_shares(self, manager):
        manager.create_will(TESTATOR, CHECK_IN_PERIOD, DISPUTE_PERIOD)
        for i in range(1, 11):
            manager.add_beneficiary(TESTATOR, addr(i), 10)
        assert manager.total_shares(TESTATOR) == 100
        with pytest.raises(ShareOverflow):
            manager.add_beneficiary(TESTATOR, addr(11), 1)

    def test_no_edits_after_execution(self, funded_manager):
        past_dispute(funded_manager)
        funded_manager.execute_will(BENEFICIARY, TESTATOR)
        with pytest.raises(WillExecuted):
            funded_manager.update_beneficiary(TESTATOR, BENEFICIARY, 10)
        with pytest.raises(WillExecuted):
            funded_manager.remove_beneficiary(TESTATOR, GUARDIAN)
