"""
Unit tests for the trigger daemon.
"""

import asyncio
from datetime import timedelta

import pytest

from ilmd.engine.orchestrator import ExecutionOrchestrator, ExitReason
from ilmd.exceptions import ScheduleNotFoundError
from ilmd.scheduler import ExecutionScheduler, SchedulerStatus
from ilmd.storage.models import ActionType, BatchStatus
from tests.utils.engine_fixtures import RecordingExecutor, add_items, add_schedule


@pytest.fixture
def orchestrator(store, log_writer, clock):
    return ExecutionOrchestrator(store, RecordingExecutor(), log_writer=log_writer, clock=clock)


@pytest.fixture
def scheduler(store, orchestrator):
    add_schedule(store)
    return ExecutionScheduler(orchestrator, schedule_name='NIGHTLY', check_interval_minutes=0.001)


class TestRunOnce:
    """Test a single wake-up."""

    @pytest.mark.asyncio
    async def test_runs_when_gate_allows(self, store, scheduler):
        policy_id = store.add_policy('p', ActionType.COMPRESS)
        add_items(store, policy_id, 3)

        summary = await scheduler.run_once()

        assert summary.exit_reason == ExitReason.NO_WORK
        status = scheduler.get_status()
        assert status.total_checks == 1
        assert status.total_runs == 1
        assert status.last_gate_reason == 'ready'
        assert status.last_exit_reason == 'no_work'

    @pytest.mark.asyncio
    async def test_skips_when_no_work(self, scheduler):
        assert await scheduler.run_once() is None

        status = scheduler.get_status()
        assert status.total_runs == 0
        assert status.last_gate_reason == 'no_work'

    @pytest.mark.asyncio
    async def test_skips_outside_window(self, store, scheduler, clock):
        policy_id = store.add_policy('p', ActionType.COMPRESS)
        add_items(store, policy_id, 1)
        clock.advance(hours=6)

        assert await scheduler.run_once() is None
        assert scheduler.get_status().last_gate_reason == 'outside_window'

    @pytest.mark.asyncio
    async def test_auto_recover_clears_stale_batch(self, store, orchestrator, clock):
        schedule_id = add_schedule(store)
        policy_id = store.add_policy('p', ActionType.COMPRESS)
        add_items(store, policy_id, 2)
        store.create_state('BATCH_STALE', schedule_id, clock.now() - timedelta(hours=3), 2)
        scheduler = ExecutionScheduler(orchestrator, schedule_name='NIGHTLY',
                                       auto_recover=True, stale_batch_minutes=60)

        summary = await scheduler.run_once()

        assert store.get_state('BATCH_STALE').status == BatchStatus.INTERRUPTED
        assert summary.exit_reason == ExitReason.NO_WORK
        assert scheduler.get_status().recovered_batches == 1

    @pytest.mark.asyncio
    async def test_running_batch_blocks_without_recovery(self, store, scheduler, clock):
        schedule_id = store.get_schedule('NIGHTLY').schedule_id
        policy_id = store.add_policy('p', ActionType.COMPRESS)
        add_items(store, policy_id, 2)
        store.create_state('BATCH_STALE', schedule_id, clock.now() - timedelta(hours=3), 2)

        assert await scheduler.run_once() is None
        assert scheduler.get_status().last_gate_reason == 'already_running'

    @pytest.mark.asyncio
    async def test_unknown_schedule_is_recorded(self, orchestrator):
        scheduler = ExecutionScheduler(orchestrator, schedule_name='MISSING')

        with pytest.raises(ScheduleNotFoundError):
            await scheduler.run_once()

        status = scheduler.get_status()
        assert status.failed_runs == 1
        assert 'MISSING' in status.last_error


class TestSchedulerLifecycle:
    """Test starting and stopping the loop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler):
        await scheduler.start()
        assert scheduler.running

        await asyncio.sleep(0.01)
        await scheduler.stop()

        status = scheduler.get_status()
        assert isinstance(status, SchedulerStatus)
        assert not status.running
        assert status.total_checks >= 1
        assert status.uptime_seconds >= 0

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self, scheduler):
        await scheduler.start()
        task = scheduler._task
        await scheduler.start()

        assert scheduler._task is task
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_loop_survives_failing_checks(self, orchestrator):
        scheduler = ExecutionScheduler(orchestrator, schedule_name='MISSING', check_interval_minutes=0.0001)

        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert scheduler.get_status().failed_runs >= 2

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, scheduler):
        await scheduler.stop()
        assert not scheduler.running
