"""
Unit tests for the SQLite execution store.
"""

import sqlite3
from datetime import timedelta

import pytest

from ilmd.exceptions import BatchAlreadyRunningError, ScheduleNotFoundError
from ilmd.storage.models import ActionType, BatchStatus, QueueStatus
from ilmd.storage.repository import BATCH_SIZE_KEY, DEFAULT_BATCH_SIZE, ExecutionStore
from tests.utils.engine_fixtures import MONDAY, add_items, add_schedule


class TestSchedules:
    """Test schedule persistence."""

    def test_ensure_schema_is_repeatable(self, store):
        store.ensure_schema()
        with sqlite3.connect(store.db_path) as conn:
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert {'execution_schedules', 'ilm_policies', 'evaluation_queue',
                'execution_state', 'execution_log', 'ilm_config'} <= tables

    def test_upsert_and_get_schedule(self, store):
        schedule_id = add_schedule(store, batch_cooldown_minutes=3, checkpoint_frequency=7,
                                   enable_checkpointing=True, friday_hours='20:00-23:00')

        schedule = store.get_schedule('NIGHTLY')

        assert schedule.schedule_id == schedule_id
        assert schedule.monday_hours == '02:00-04:00'
        assert schedule.friday_hours == '20:00-23:00'
        assert schedule.sunday_hours is None
        assert schedule.batch_cooldown_minutes == 3
        assert schedule.checkpoint_frequency == 7
        assert schedule.enable_checkpointing is True

    def test_upsert_updates_in_place(self, store):
        first_id = add_schedule(store)
        second_id = add_schedule(store, monday_hours='01:00-02:00')

        assert first_id == second_id
        assert store.get_schedule('NIGHTLY').monday_hours == '01:00-02:00'

    def test_missing_schedule(self, store):
        with pytest.raises(ScheduleNotFoundError) as exc_info:
            store.get_schedule('MISSING')
        assert exc_info.value.schedule_name == 'MISSING'

    def test_checkpoint_frequency_must_be_positive(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            add_schedule(store, checkpoint_frequency=0)


class TestBatchSizeLimit:
    """Test the global batch size setting."""

    def test_default_when_unset(self, store):
        assert store.get_batch_size_limit() == DEFAULT_BATCH_SIZE

    def test_configured_value(self, store):
        store.set_config_value(BATCH_SIZE_KEY, 25)
        assert store.get_batch_size_limit() == 25

    @pytest.mark.parametrize('raw', ['abc', '0', '-4'])
    def test_unusable_values_fall_back(self, store, raw):
        store.set_config_value(BATCH_SIZE_KEY, raw)
        assert store.get_batch_size_limit() == DEFAULT_BATCH_SIZE


class TestQueue:
    """Test queue selection and tagging."""

    def test_selection_order_and_filters(self, store):
        low = store.add_policy('low', ActionType.COMPRESS, priority=300)
        high = store.add_policy('high', ActionType.DROP, priority=100)
        disabled = store.add_policy('off', ActionType.TRUNCATE, priority=50, enabled=False)

        low_ids = add_items(store, low, 2, prefix='L')
        high_ids = add_items(store, high, 2, prefix='H')
        add_items(store, disabled, 2, prefix='D')
        store.add_queue_item(high, 'SALES', 'ORDERS', 'INELIGIBLE', eligible=False)
        store.set_item_status(high_ids[1], QueueStatus.COMPLETED)

        selected = store.select_batch_items(10)

        assert [item.queue_id for item, _ in selected] == [high_ids[0]] + low_ids
        assert [priority for _, priority in selected] == [100, 300, 300]
        assert store.count_eligible_pending() == 3
        assert store.count_eligible_pending(enabled_policies_only=False) == 5

    def test_selection_limit_and_policy_filter(self, store):
        first = store.add_policy('first', ActionType.COMPRESS)
        second = store.add_policy('second', ActionType.COMPRESS)
        add_items(store, first, 5, prefix='A')
        second_ids = add_items(store, second, 5, prefix='B')

        assert len(store.select_batch_items(3)) == 3
        assert [item.queue_id for item, _ in store.select_batch_items(10, policy_id=second)] == second_ids

    def test_tag_only_claims_pending_items(self, store):
        policy_id = store.add_policy('p', ActionType.COMPRESS)
        pending, done = add_items(store, policy_id, 2)
        store.set_item_status(done, QueueStatus.COMPLETED)

        assert store.tag_item(pending, 'BATCH_A', 1)
        assert not store.tag_item(done, 'BATCH_A', 2)

        item = store.get_queue_item(pending)
        assert item.execution_batch_id == 'BATCH_A'
        assert item.batch_sequence == 1
        assert [i.queue_id for i in store.list_batch_items('BATCH_A')] == [pending]

    def test_release_batch_items(self, store):
        policy_id = store.add_policy('p', ActionType.COMPRESS)
        processed, unprocessed = add_items(store, policy_id, 2)
        store.tag_item(processed, 'BATCH_A', 1)
        store.tag_item(unprocessed, 'BATCH_A', 2)
        store.set_item_status(processed, QueueStatus.COMPLETED, execution_id=9)

        assert store.release_batch_items('BATCH_A') == 1

        assert store.get_queue_item(unprocessed).execution_batch_id is None
        kept = store.get_queue_item(processed)
        assert kept.execution_batch_id == 'BATCH_A'
        assert kept.execution_id == 9

    def test_queue_summary(self, store):
        policy_id = store.add_policy('p', ActionType.COMPRESS)
        ids = add_items(store, policy_id, 3)
        store.set_item_status(ids[0], QueueStatus.FAILED)

        assert store.queue_summary() == {'PENDING': 2, 'FAILED': 1}


class TestExecutionState:
    """Test batch state records."""

    @pytest.fixture
    def schedule_id(self, store):
        return add_schedule(store)

    def test_state_lifecycle(self, store, schedule_id):
        start = MONDAY.replace(hour=2)
        store.create_state('BATCH_1', schedule_id, start, 10)
        assert store.count_running(schedule_id) == 1

        store.checkpoint_state('BATCH_1', start + timedelta(seconds=30), 42, 4)
        state = store.get_state('BATCH_1')
        assert state.status == BatchStatus.RUNNING
        assert state.last_queue_id == 42
        assert state.operations_completed == 4
        assert state.operations_remaining == 6
        assert state.elapsed_seconds == 30

        store.finish_state('BATCH_1', BatchStatus.COMPLETED, start + timedelta(minutes=2), 10)
        state = store.get_state('BATCH_1')
        assert state.status == BatchStatus.COMPLETED
        assert state.end_time == start + timedelta(minutes=2)
        assert state.elapsed_seconds == 120
        assert state.operations_completed == 10
        assert store.count_running(schedule_id) == 0

    def test_finish_keeps_progress_when_count_omitted(self, store, schedule_id):
        start = MONDAY.replace(hour=2)
        store.create_state('BATCH_1', schedule_id, start, 10)
        store.checkpoint_state('BATCH_1', start, 5, 3)
        store.finish_state('BATCH_1', BatchStatus.FAILED, start)

        assert store.get_state('BATCH_1').operations_completed == 3

    def test_find_stale_running(self, store, schedule_id):
        start = MONDAY.replace(hour=1)
        store.create_state('DONE', schedule_id, start, 1)
        store.finish_state('DONE', BatchStatus.COMPLETED, start)
        store.create_state('OLD', schedule_id, start, 1)

        stale = store.find_stale_running(schedule_id, start + timedelta(hours=1))

        assert [state.execution_batch_id for state in stale] == ['OLD']

    def test_recent_checkpoint_is_not_stale(self, store, schedule_id):
        start = MONDAY.replace(hour=1)
        store.create_state('ACTIVE', schedule_id, start, 1)
        store.checkpoint_state('ACTIVE', start + timedelta(hours=2), None, 0)

        assert store.find_stale_running(schedule_id, start + timedelta(hours=1)) == []

    def test_list_states_filters(self, store, schedule_id):
        start = MONDAY.replace(hour=1)
        store.create_state('A', schedule_id, start, 1)
        store.finish_state('A', BatchStatus.COMPLETED, start)
        store.create_state('B', schedule_id, start, 1)

        assert [s.execution_batch_id for s in store.list_states(schedule_id)] == ['B', 'A']
        assert [s.execution_batch_id for s in store.list_states(schedule_id, BatchStatus.RUNNING)] == ['B']

    def test_second_running_batch_is_refused(self, store, schedule_id):
        start = MONDAY.replace(hour=2)
        store.create_state('BATCH_1', schedule_id, start, 1)

        with pytest.raises(BatchAlreadyRunningError) as exc_info:
            store.create_state('BATCH_2', schedule_id, start, 1)

        assert exc_info.value.batch_id == 'BATCH_2'
        assert store.get_state('BATCH_2') is None
        assert store.count_running(schedule_id) == 1

    def test_running_batches_of_other_schedules_coexist(self, store, schedule_id):
        other_id = add_schedule(store, name='WEEKEND')
        start = MONDAY.replace(hour=2)
        store.create_state('BATCH_1', schedule_id, start, 1)
        store.create_state('BATCH_2', other_id, start, 1)

        assert store.count_running(schedule_id) == 1
        assert store.count_running(other_id) == 1

    def test_new_batch_allowed_after_finish(self, store, schedule_id):
        start = MONDAY.replace(hour=2)
        store.create_state('BATCH_1', schedule_id, start, 1)
        store.finish_state('BATCH_1', BatchStatus.INTERRUPTED, start)
        store.create_state('BATCH_2', schedule_id, start, 1)

        assert store.get_state('BATCH_2').status == BatchStatus.RUNNING

    def test_duplicate_batch_id_is_an_integrity_error(self, store, schedule_id):
        start = MONDAY.replace(hour=2)
        store.create_state('BATCH_1', schedule_id, start, 1)
        store.finish_state('BATCH_1', BatchStatus.COMPLETED, start)

        with pytest.raises(sqlite3.IntegrityError):
            store.create_state('BATCH_1', schedule_id, start, 1)

    def test_next_batch_sequence(self, store, schedule_id):
        start = MONDAY.replace(hour=2)
        assert store.next_batch_sequence('BATCH_20240101_020000_') == 1

        for batch_id in ('BATCH_20240101_020000_001', 'BATCH_20240101_020000_004',
                         'BATCH_20240101_020001_009'):
            store.create_state(batch_id, schedule_id, start, 1)
            store.finish_state(batch_id, BatchStatus.COMPLETED, start)

        assert store.next_batch_sequence('BATCH_20240101_020000_') == 5
        assert store.next_batch_sequence('BATCH_20240101_020001_') == 10
        assert store.next_batch_sequence('BATCH_20240101_020002_') == 1

    def test_store_creates_parent_directory(self, tmp_path):
        store = ExecutionStore(str(tmp_path / 'nested' / 'dir' / 'ilm.db'))
        store.ensure_schema()
        assert store.db_path.exists()
