"""
Unit tests for the projection engine: backfill, live delivery, buffering,
deduplication, skip policies, storage failure and restart.
"""

import pytest

from testament import ProjectionEngine, ReplicaStore, StorageFailure

from tests.fake_source import FakeSource, raw_log, will_created, beneficiary_added, deposit_locked
from tests.will_helpers import TESTATOR, BENEFICIARY, GUARDIAN, STRANGER


def history():
    return [
        will_created(1),
        beneficiary_added(2, BENEFICIARY, 60),
        beneficiary_added(2, GUARDIAN, 40, guardian=True, index=1),
        deposit_locked(3, 10, 10),
    ]


class TestBackfill:

    def test_backfill_builds_replica(self, store):
        engine = ProjectionEngine(FakeSource(history()), store)
        engine.start()
        record = engine.replica.get(TESTATOR)
        assert [b.beneficiary for b in record.beneficiaries] == [BENEFICIARY, GUARDIAN]
        assert record.locked_balance == 10
        assert engine.last_key == (3, 0)
        assert engine.applied == 4
        assert store.checkpoint() == (3, 0)
        assert store.load().to_dict() == engine.replica.to_dict()

    def test_window_bounds_first_block(self, store):
        source = FakeSource([deposit_locked(b, 1, b) for b in range(1, 21)])
        engine = ProjectionEngine(source, store, backfill_window=5)
        assert engine.backfill_start(source.head()) == 15
        engine.start()
        assert source.fetches == [(15, 20)]

    def test_unbounded_window(self, store):
        engine = ProjectionEngine(FakeSource(), store, backfill_window=None)
        assert engine.backfill_start(10_000_000) == 0

    def test_resume_from_checkpoint_block(self, store):
        source = FakeSource(history())
        ProjectionEngine(source, store).start()
        source.add(deposit_locked(4, 5, 15))
        engine = ProjectionEngine(source, store)
        engine.start()
        assert source.fetches[-1] == (3, 4)
        assert engine.applied == 1
        assert engine.replica.get(TESTATOR).locked_balance == 15


class TestLive:

    def test_live_logs_are_applied(self, store):
        source = FakeSource(history())
        engine = ProjectionEngine(source, store)
        engine.start()
        source.push(deposit_locked(4, 5, 15))
        assert engine.replica.get(TESTATOR).locked_balance == 15
        assert store.checkpoint() == (4, 0)

    def test_logs_arriving_during_backfill_are_buffered(self, store):
        source = FakeSource(history())
        engine = ProjectionEngine(source, store)
        source.on_fetch = lambda: source.push(deposit_locked(4, 5, 15))
        engine.start()
        # the pushed log is past the fetched range, so it came from the buffer
        assert source.fetches == [(0, 3)]
        assert engine.replica.get(TESTATOR).locked_balance == 15
        assert engine.last_key == (4, 0)

    def test_overlap_between_backfill_and_live_is_deduplicated(self, store):
        source = FakeSource(history())
        engine = ProjectionEngine(source, store)
        engine.start()
        applied = engine.applied
        for raw in history():
            source.push(raw)
        assert engine.applied == applied
        assert not engine.process(history()[-1])

    def test_stop_unsubscribes(self, store):
        source = FakeSource(history())
        engine = ProjectionEngine(source, store)
        engine.start()
        engine.stop()
        assert source.subscribers == []
        source.push(deposit_locked(4, 5, 15))
        assert engine.replica.get(TESTATOR).locked_balance == 10


class TestSkipPolicies:

    def test_malformed_logs_are_skipped(self, store):
        source = FakeSource([
            will_created(1),
            {"garbage": True},
            raw_log("DepositLocked", 2, testator=TESTATOR, amount="ten", balance="10"),
            deposit_locked(3, 4, 4),
        ])
        engine = ProjectionEngine(source, store)
        engine.start()
        assert engine.skipped == 2
        assert engine.replica.get(TESTATOR).locked_balance == 4

    def test_apply_failures_are_skipped_and_checkpointed(self, store):
        source = FakeSource([
            deposit_locked(1, 4, 4, testator=STRANGER),
            will_created(2),
            raw_log("BeneficiaryRemoved", 3, testator=TESTATOR, beneficiary=BENEFICIARY),
        ])
        engine = ProjectionEngine(source, store)
        engine.start()
        assert engine.skipped == 2
        assert engine.applied == 1
        assert engine.replica.get(STRANGER) is None
        assert store.checkpoint() == (3, 0)


class FlakyStore(ReplicaStore):
    """Store whose will writes start failing after a number of successes."""

    def __init__(self, path, fail_after):
        super().__init__(path)
        self.fail_after = fail_after
        self.writes = 0

    def save_will(self, record, key):
        if self.writes >= self.fail_after:
            raise StorageFailure("disk full")
        self.writes += 1
        super().save_will(record, key)


class TestStorageFailure:

    def test_backfill_failure_propagates(self, tmp_path):
        source = FakeSource(history())
        engine = ProjectionEngine(source, FlakyStore(tmp_path / "replica.db", fail_after=2))
        with pytest.raises(StorageFailure):
            engine.start()
        assert engine.halted
        assert engine.last_key == (2, 0)
        assert source.subscribers == []

    def test_live_failure_halts_without_reaching_source(self, tmp_path):
        source = FakeSource(history())
        engine = ProjectionEngine(source, FlakyStore(tmp_path / "replica.db", fail_after=4))
        engine.start()
        source.push(deposit_locked(4, 5, 15))
        assert engine.halted
        assert source.subscribers == []
        assert engine.replica.get(TESTATOR).locked_balance == 10
        assert engine.store.checkpoint() == (3, 0)
        with pytest.raises(StorageFailure):
            engine.process(deposit_locked(5, 1, 16))

    def test_restart_resumes_from_checkpoint(self, tmp_path):
        path = tmp_path / "replica.db"
        source = FakeSource(history())
        engine = ProjectionEngine(source, FlakyStore(path, fail_after=4))
        engine.start()
        source.push(deposit_locked(4, 5, 15))
        assert engine.halted

        restarted = ProjectionEngine(source, ReplicaStore(path))
        restarted.start()
        assert not restarted.halted
        assert restarted.applied == 1
        assert restarted.replica.get(TESTATOR).locked_balance == 15


class TestRebuild:

    def test_rebuild_reproduces_replica(self, store):
        source = FakeSource(history())
        engine = ProjectionEngine(source, store, backfill_window=1)
        engine.rebuild()
        assert source.fetches == [(0, 3)]
        assert engine.backfill_window == 1
        first = engine.fingerprint()
        engine.rebuild()
        assert engine.fingerprint() == first
        assert engine.replica.get(TESTATOR).total_shares == 100
