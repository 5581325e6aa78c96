"""
Temporal Conformance Tests

INVARIANT: Execution rights are a pure function of elapsed time and role.

    Let D = last_check_in + check_in_period, E = D + dispute_period.

    ∀ t, caller c:
        t ≤ D       ⟹ execute(c) raises PhaseNotElapsed
        D < t ≤ E   ⟹ execute(c) succeeds ⟺ c = guardian
        t > E       ⟹ execute(c) succeeds ⟺ c ∈ beneficiaries

    ∀ check-in at time t₀: D' = t₀ + check_in_period
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from testament import PhaseNotElapsed, Unauthorized, PHASE_LOCKED, PHASE_DISPUTE, PHASE_OPEN

from tests.will_helpers import (
    TESTATOR, BENEFICIARY, GUARDIAN, STRANGER, CHECK_IN_PERIOD, DISPUTE_PERIOD, DAY,
    make_manager, setup_funded_will,
)


CALLERS = [BENEFICIARY, GUARDIAN, STRANGER, TESTATOR]
HORIZON = CHECK_IN_PERIOD + DISPUTE_PERIOD + 2 * DAY


def expected_outcome(elapsed, caller):
    if elapsed <= CHECK_IN_PERIOD:
        return PhaseNotElapsed
    if elapsed <= CHECK_IN_PERIOD + DISPUTE_PERIOD:
        return None if caller == GUARDIAN else Unauthorized
    return None if caller in (BENEFICIARY, GUARDIAN) else Unauthorized


class TestTemporalProperties:
    """Property-based phase gating tests."""

    @given(st.integers(0, HORIZON), st.sampled_from(CALLERS))
    @settings(max_examples=50, deadline=None)
    def test_execution_follows_phase_table(self, elapsed, caller):
        """
        PROPERTY: Whether execution is allowed depends only on the elapsed
        time since the last check-in and the caller's role.
        """
        manager = setup_funded_will(make_manager())
        if elapsed:
            manager.advance(elapsed)
        expected = expected_outcome(elapsed, caller)
        if expected is None:
            assert sum(manager.execute_will(caller, TESTATOR).values()) == 15
        else:
            with pytest.raises(expected):
                manager.execute_will(caller, TESTATOR)
            assert not manager.will_status(TESTATOR)['executed']

    @given(st.integers(1, CHECK_IN_PERIOD), st.integers(0, HORIZON))
    @settings(max_examples=50, deadline=None)
    def test_check_in_moves_the_deadline(self, check_in_at, elapsed):
        """
        PROPERTY: After a check-in at t₀ the phase is computed from t₀.
        """
        manager = setup_funded_will(make_manager())
        manager.advance(check_in_at)
        manager.check_in(TESTATOR)
        if elapsed:
            manager.advance(elapsed)
        if elapsed <= CHECK_IN_PERIOD:
            expected = PHASE_LOCKED
        elif elapsed <= CHECK_IN_PERIOD + DISPUTE_PERIOD:
            expected = PHASE_DISPUTE
        else:
            expected = PHASE_OPEN
        assert manager.phase(TESTATOR) == expected

    @given(st.integers(0, HORIZON), st.sampled_from(CALLERS))
    @settings(max_examples=50, deadline=None)
    def test_dispute_does_not_grant_rights(self, elapsed, caller):
        """
        PROPERTY: Starting a dispute leaves the outcome of execution unchanged.
        """
        manager = setup_funded_will(make_manager())
        manager.advance(CHECK_IN_PERIOD + 1)
        manager.start_dispute(BENEFICIARY, TESTATOR)
        if elapsed:
            manager.advance(elapsed)
        expected = expected_outcome(CHECK_IN_PERIOD + 1 + elapsed, caller)
        if expected is None:
            manager.execute_will(caller, TESTATOR)
            assert manager.will_status(TESTATOR)['executed']
        else:
            with pytest.raises(expected):
                manager.execute_will(caller, TESTATOR)


class TestTemporalExamples:

    @pytest.mark.parametrize("elapsed,phase", [
        (CHECK_IN_PERIOD, PHASE_LOCKED),
        (CHECK_IN_PERIOD + 1, PHASE_DISPUTE),
        (CHECK_IN_PERIOD + DISPUTE_PERIOD, PHASE_DISPUTE),
        (CHECK_IN_PERIOD + DISPUTE_PERIOD + 1, PHASE_OPEN),
    ])
    def test_boundaries(self, elapsed, phase):
        manager = setup_funded_will(make_manager())
        manager.advance(elapsed)
        assert manager.phase(TESTATOR) == phase
