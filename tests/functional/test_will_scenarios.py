"""
test_will_scenarios.py - End-to-end will scenarios

Tests complete will lifecycles through the manager, the live projection
and the read API:
- Silent testator, beneficiary executes after the dispute window
- Guardian executes during the dispute window
- Check-in resets the switch and clears a dispute
- Flexible withdrawals before execution
- Document management
"""

import pytest

from testament import (
    PhaseNotElapsed, Unauthorized, WillExecuted, SharesIncomplete,
    PHASE_LOCKED, PHASE_DISPUTE, PHASE_OPEN, PHASE_EXECUTED,
)

from tests.will_helpers import (
    TESTATOR, BENEFICIARY, GUARDIAN, STRANGER, CID_A, CID_V1, DAY,
    CHECK_IN_PERIOD, DISPUTE_PERIOD, setup_funded_will, past_deadline, past_dispute,
    circulating_value, replica_dict,
)


class TestSilentTestator:
    """Testator never checks in again; a beneficiary distributes."""

    def test_beneficiary_executes_after_dispute(self, manager, engine, client):
        setup_funded_will(manager)
        assert manager.balance_of(TESTATOR) == 0
        assert manager.phase(TESTATOR) == PHASE_LOCKED

        past_dispute(manager)
        assert manager.phase(TESTATOR) == PHASE_OPEN
        payouts = manager.execute_will(BENEFICIARY, TESTATOR)

        assert payouts == {BENEFICIARY: 9, GUARDIAN: 6}
        assert manager.balance_of(BENEFICIARY) == 9
        assert manager.balance_of(GUARDIAN) == 6
        assert manager.phase(TESTATOR) == PHASE_EXECUTED
        assert circulating_value(manager) == 15

        record = engine.replica.get(TESTATOR)
        assert record.executed
        assert record.total_distributed == 15
        assert record.vaults() == {'locked': 0, 'flexible': 0}

        details = client.get(f"/will/{TESTATOR}").json()["data"]
        assert details["executed"] is True
        assert details["vaults"] == {"locked": "0", "flexible": "0"}
        assert client.get("/stats").json()["data"]["executedWills"] == 1

    def test_executed_will_is_closed(self, funded_manager):
        past_dispute(funded_manager)
        funded_manager.execute_will(GUARDIAN, TESTATOR)
        with pytest.raises(WillExecuted):
            funded_manager.execute_will(BENEFICIARY, TESTATOR)
        with pytest.raises(WillExecuted):
            funded_manager.check_in(TESTATOR)
        with pytest.raises(WillExecuted):
            funded_manager.deposit_locked(TESTATOR, 1)


class TestGuardianDuringDispute:

    def test_guardian_executes_in_dispute_window(self, manager, engine):
        setup_funded_will(manager)
        past_deadline(manager)
        assert manager.phase(TESTATOR) == PHASE_DISPUTE

        dispute_end = manager.start_dispute(BENEFICIARY, TESTATOR)
        assert engine.replica.get(TESTATOR).dispute_deadline == dispute_end

        with pytest.raises(Unauthorized):
            manager.execute_will(BENEFICIARY, TESTATOR)
        assert manager.execute_will(GUARDIAN, TESTATOR) == {BENEFICIARY: 9, GUARDIAN: 6}
        assert engine.replica.get(TESTATOR).executed

    def test_nobody_executes_before_deadline(self, funded_manager):
        funded_manager.advance(CHECK_IN_PERIOD)
        for caller in (BENEFICIARY, GUARDIAN, STRANGER):
            with pytest.raises(PhaseNotElapsed):
                funded_manager.execute_will(caller, TESTATOR)


class TestCheckIn:

    def test_check_in_resets_switch_and_dispute(self, manager, engine, client):
        setup_funded_will(manager)
        past_deadline(manager)
        manager.start_dispute(GUARDIAN, TESTATOR)

        manager.check_in(TESTATOR)
        assert manager.phase(TESTATOR) == PHASE_LOCKED
        assert engine.replica.get(TESTATOR).dispute_deadline is None
        assert client.get(f"/will/{TESTATOR}").json()["data"]["lastCheckIn"] == manager.now

        manager.advance(CHECK_IN_PERIOD)
        with pytest.raises(PhaseNotElapsed):
            manager.execute_will(GUARDIAN, TESTATOR)
        manager.advance(DISPUTE_PERIOD + 1)
        assert manager.execute_will(BENEFICIARY, TESTATOR) == {BENEFICIARY: 9, GUARDIAN: 6}


class TestVaultsAndShares:

    def test_withdraw_flexible_then_execute(self, manager, engine):
        setup_funded_will(manager, locked=100, flexible=50)
        assert manager.withdraw_flexible(TESTATOR, 20) == 30
        assert manager.balance_of(TESTATOR) == 20
        assert engine.replica.get(TESTATOR).flexible_balance == 30

        past_dispute(manager)
        assert manager.execute_will(GUARDIAN, TESTATOR) == {BENEFICIARY: 78, GUARDIAN: 52}

    def test_incomplete_shares_block_execution(self, manager):
        setup_funded_will(manager, beneficiary_share=50, guardian_share=40)
        past_dispute(manager)
        with pytest.raises(SharesIncomplete):
            manager.execute_will(BENEFICIARY, TESTATOR)
        manager.update_beneficiary(TESTATOR, BENEFICIARY, 60)
        assert sum(manager.execute_will(BENEFICIARY, TESTATOR).values()) == 15

    def test_reshuffled_beneficiaries_reach_api(self, manager, engine, client):
        setup_funded_will(manager)
        manager.remove_beneficiary(TESTATOR, GUARDIAN)
        manager.add_beneficiary(TESTATOR, STRANGER, 40, is_guardian=True)

        body = client.get(f"/wills/beneficiary/{STRANGER}").json()
        assert body["data"][0]["isGuardian"] is True
        assert client.get(f"/wills/beneficiary/{GUARDIAN}").json()["count"] == 0


class TestDocuments:

    def test_documents_flow_to_api(self, manager, engine, client):
        setup_funded_will(manager)
        manager.add_document(TESTATOR, CID_A, "will.pdf", "legal")
        manager.advance(DAY)
        manager.add_document(TESTATOR, CID_V1, "photo.jpg")
        manager.remove_document(TESTATOR, CID_A)

        data = client.get(f"/documents/{TESTATOR}").json()["data"]
        assert data["count"] == 1
        assert data["documents"][0]["ipfsHash"] == CID_V1
        assert client.get(f"/documents/{TESTATOR}/{CID_A}").status_code == 404


class TestRestart:

    def test_replica_survives_engine_restart(self, manager, engine, store):
        setup_funded_will(manager)
        engine.stop()
        manager.check_in(TESTATOR)
        before = replica_dict(store)

        engine.start()
        assert replica_dict(store) != before
        assert replica_dict(store) == engine.replica.to_dict()
        assert engine.replica.get(TESTATOR).last_check_in == manager.now
