"""
Unit tests for the should-execute gate.
"""

import pytest

from ilmd.engine.guard import ConcurrencyGuard, GateReason
from ilmd.exceptions import ScheduleNotFoundError
from ilmd.storage.models import ActionType, BatchStatus, QueueStatus
from tests.utils.engine_fixtures import add_items, add_schedule


class TestConcurrencyGuard:
    """Test gate decisions and their precedence."""

    @pytest.fixture
    def guard(self, store, clock):
        return ConcurrencyGuard(store, clock)

    @pytest.fixture
    def schedule_id(self, store):
        return add_schedule(store)

    def test_ready_when_window_open_and_work_pending(self, store, guard, schedule_id):
        policy_id = store.add_policy('compress_old', ActionType.COMPRESS)
        add_items(store, policy_id, 3)

        decision = guard.check('NIGHTLY')

        assert decision.allowed
        assert decision.reason == GateReason.READY
        assert guard.should_execute_now('NIGHTLY')

    def test_running_batch_blocks_execution(self, store, guard, clock, schedule_id):
        policy_id = store.add_policy('compress_old', ActionType.COMPRESS)
        add_items(store, policy_id, 3)
        store.create_state('BATCH_20240101_020000_001', schedule_id, clock.now(), 3)

        decision = guard.check('NIGHTLY')

        assert not decision.allowed
        assert decision.reason == GateReason.ALREADY_RUNNING

    def test_running_takes_precedence_over_no_work(self, store, guard, clock, schedule_id):
        store.create_state('BATCH_20240101_020000_001', schedule_id, clock.now(), 0)
        assert guard.check('NIGHTLY').reason == GateReason.ALREADY_RUNNING

    def test_no_work(self, store, guard, schedule_id):
        policy_id = store.add_policy('compress_old', ActionType.COMPRESS)
        item_id = add_items(store, policy_id, 1)[0]
        store.set_item_status(item_id, QueueStatus.COMPLETED)
        store.add_queue_item(policy_id, 'SALES', 'ORDERS', 'NOT_ELIGIBLE', eligible=False)

        decision = guard.check('NIGHTLY')

        assert not decision.allowed
        assert decision.reason == GateReason.NO_WORK

    def test_no_work_takes_precedence_over_window(self, store, guard, clock, schedule_id):
        clock.advance(hours=10)
        assert guard.check('NIGHTLY').reason == GateReason.NO_WORK

    def test_outside_window(self, store, guard, clock, schedule_id):
        policy_id = store.add_policy('compress_old', ActionType.COMPRESS)
        add_items(store, policy_id, 1)
        clock.advance(hours=2)

        decision = guard.check('NIGHTLY')

        assert not decision.allowed
        assert decision.reason == GateReason.OUTSIDE_WINDOW

    def test_finished_batches_do_not_block(self, store, guard, clock, schedule_id):
        policy_id = store.add_policy('compress_old', ActionType.COMPRESS)
        add_items(store, policy_id, 1)
        store.create_state('BATCH_20240101_010000_001', schedule_id, clock.now(), 1)
        store.finish_state('BATCH_20240101_010000_001', BatchStatus.COMPLETED, clock.now())

        assert guard.should_execute_now('NIGHTLY')

    def test_unknown_schedule(self, guard):
        with pytest.raises(ScheduleNotFoundError):
            guard.check('MISSING')

    def test_disabled_schedule(self, store, guard):
        add_schedule(store, name='OFF', enabled=False)
        with pytest.raises(ScheduleNotFoundError):
            guard.check('OFF')
