"""
Continuous execution loop.

Repeatedly runs batches for a schedule while its window stays open and the
queue has eligible work, resting for the schedule's cooldown between batches.
"""

import sqlite3
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Callable, List, Optional

import structlog

from ilmd.engine.batch import BatchResult, BatchRunner
from ilmd.engine.checkpoint import Checkpointer
from ilmd.engine.clock import Clock, SystemClock
from ilmd.engine.dispatcher import ActionDispatcher
from ilmd.engine.window import in_window
from ilmd.exceptions import BatchAlreadyRunningError
from ilmd.executors.base import ActionExecutor
from ilmd.storage.execution_log import ExecutionLogWriter
from ilmd.storage.models import ActionResult, BatchStatus, ScheduleConfig
from ilmd.storage.repository import ExecutionStore

MAX_BATCH_ID_ATTEMPTS = 3


class ExitReason(Enum):
    """Why a call to execute() returned."""
    ALREADY_RUNNING = "already_running"
    WINDOW_NOT_OPEN = "window_not_open"
    WINDOW_CLOSED = "window_closed"
    NO_WORK = "no_work"
    WINDOW_CLOSED_DURING_COOLDOWN = "window_closed_during_cooldown"


@dataclass
class RunSummary:
    """Outcome of one orchestrator invocation."""
    schedule_name: str
    exit_reason: Optional[ExitReason] = None
    batch_ids: List[str] = field(default_factory=list)
    failed_batches: List[str] = field(default_factory=list)
    dispatched: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def batch_count(self) -> int:
        return len(self.batch_ids)


class ExecutionOrchestrator:
    """
    Drains the lifecycle work queue for a schedule.

    The orchestrator runs synchronously until the window closes or the queue
    drains. It never spawns workers; exclusion between invocations comes from
    the RUNNING execution state row written for each batch.
    """

    def __init__(
        self,
        store: ExecutionStore,
        executor: ActionExecutor,
        log_writer: Optional[ExecutionLogWriter] = None,
        clock: Optional[Clock] = None,
        metrics=None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.log_writer = log_writer or ExecutionLogWriter(str(store.db_path))
        self.checkpointer = Checkpointer(store, self.clock, metrics)
        self.dispatcher = ActionDispatcher(store, executor, self.log_writer, self.clock, metrics)
        self.batch_runner = BatchRunner(store, self.dispatcher, self.checkpointer)
        self.logger = structlog.get_logger(__name__)

    def _window_open(self, schedule: ScheduleConfig) -> bool:
        return in_window(schedule, self.clock.now())

    def _next_batch_id(self, batch_number: int) -> str:
        """Batch id for the current second; the suffix never reuses one already stored."""
        prefix = f"BATCH_{self.clock.now():%Y%m%d_%H%M%S}_"
        sequence = max(batch_number, self.store.next_batch_sequence(prefix))
        return f"{prefix}{sequence:03d}"

    def _create_batch(self, batch_number: int, schedule: ScheduleConfig, operations_total: int) -> str:
        """
        Claim the schedule with a new RUNNING batch row.

        Raises:
            BatchAlreadyRunningError: If another invocation holds the schedule
        """
        for attempt in range(1, MAX_BATCH_ID_ATTEMPTS + 1):
            batch_id = self._next_batch_id(batch_number)
            try:
                self.store.create_state(batch_id, schedule.schedule_id, self.clock.now(), operations_total)
                return batch_id
            except sqlite3.IntegrityError:
                # id taken by a concurrent invocation within the same second
                if attempt == MAX_BATCH_ID_ATTEMPTS:
                    raise
                self.logger.warning("batch_id_taken", batch_id=batch_id, attempt=attempt)

    def _finish(self, summary: RunSummary, reason: ExitReason, message: str) -> RunSummary:
        summary.exit_reason = reason
        self.logger.info(message, schedule=summary.schedule_name, exit_reason=reason.value,
                         batches=summary.batch_count, dispatched=summary.dispatched)
        if self.metrics:
            self.metrics.record_exit(summary.schedule_name, reason.value)
        return summary

    def execute(
        self,
        schedule_name: str = 'DEFAULT_SCHEDULE',
        resume_batch_id: Optional[str] = None,
        force_run: bool = False
    ) -> RunSummary:
        """
        Run batches until the window closes or no work remains.

        Args:
            schedule_name: Enabled schedule to run under
            resume_batch_id: Batch left unfinished by an earlier run
            force_run: Skip every window check (manual runs)

        Returns:
            RunSummary with the exit reason and batch counters

        Raises:
            ScheduleNotFoundError: If the schedule is unknown or disabled
            Exception: Any error escaping the loop, after it has been logged
        """
        summary = RunSummary(schedule_name=schedule_name)
        self.logger.info("execution_starting", schedule=schedule_name, force_run=force_run)

        schedule = self.store.get_schedule(schedule_name)
        max_operations = self.store.get_batch_size_limit()

        try:
            if self.store.count_running(schedule.schedule_id) > 0 and not self._is_resumable(resume_batch_id):
                return self._finish(summary, ExitReason.ALREADY_RUNNING,
                                    "Another batch is running for this schedule - exiting")

            if resume_batch_id:
                self._resume(resume_batch_id, schedule)

            if not force_run and not self._window_open(schedule):
                return self._finish(summary, ExitReason.WINDOW_NOT_OPEN, "Outside execution window - exiting")

            should_continue: Optional[Callable[[], bool]] = None
            if not force_run:
                should_continue = lambda: self._window_open(schedule)

            self.logger.info("continuous_execution", schedule=schedule_name,
                             cooldown_minutes=schedule.batch_cooldown_minutes, batch_size=max_operations)

            batch_number = 0
            while True:
                if not force_run and not self._window_open(schedule):
                    return self._finish(summary, ExitReason.WINDOW_CLOSED, "Window closed - ending execution")

                pending = self.store.count_eligible_pending()
                if self.metrics:
                    self.metrics.set_pending(schedule_name, pending)
                if pending == 0:
                    return self._finish(summary, ExitReason.NO_WORK, "No more work in queue - ending execution")

                batch_number += 1
                try:
                    batch_id = self._create_batch(batch_number, schedule, min(pending, max_operations))
                except BatchAlreadyRunningError:
                    return self._finish(summary, ExitReason.ALREADY_RUNNING,
                                        "Another batch started for this schedule - exiting")
                summary.batch_ids.append(batch_id)
                self.logger.info("batch_created", batch_id=batch_id, pending=pending)

                result = self._run_batch(batch_id, schedule, max_operations, should_continue, summary)
                if result is not None and result.stopped_early:
                    return self._finish(summary, ExitReason.WINDOW_CLOSED, "Window closed - ending execution")

                if schedule.batch_cooldown_minutes > 0:
                    self.logger.info("cooldown", minutes=schedule.batch_cooldown_minutes)
                    self.clock.sleep(schedule.batch_cooldown_minutes * 60)
                    if not force_run and not self._window_open(schedule):
                        return self._finish(summary, ExitReason.WINDOW_CLOSED_DURING_COOLDOWN,
                                            "Window closed during cooldown - ending execution")
                    # no RUNNING row of ours exists while resting
                    if self.store.count_running(schedule.schedule_id) > 0:
                        return self._finish(summary, ExitReason.ALREADY_RUNNING,
                                            "Another batch started during cooldown - exiting")

        except Exception as e:
            self.logger.error("execution_fatal", schedule=schedule_name, error=str(e))
            raise

    def _run_batch(self, batch_id: str, schedule: ScheduleConfig, max_operations: int,
                   should_continue: Optional[Callable[[], bool]], summary: RunSummary) -> Optional[BatchResult]:
        """Run one batch and close its state row. Returns None when the batch failed."""
        try:
            result = self.batch_runner.run(batch_id, schedule, max_operations, should_continue)
        except Exception as e:
            self.store.finish_state(batch_id, BatchStatus.FAILED, self.clock.now())
            summary.failed_batches.append(batch_id)
            if self.metrics:
                self.metrics.record_batch(schedule.schedule_name, BatchStatus.FAILED.value)
            self.logger.error("batch_failed", batch_id=batch_id, error=str(e))
            return None

        self.store.finish_state(batch_id, BatchStatus.COMPLETED, self.clock.now(), result.completed)
        summary.dispatched += result.dispatched
        summary.completed += result.completed
        summary.failed += result.failed
        if self.metrics:
            self.metrics.record_batch(schedule.schedule_name, BatchStatus.COMPLETED.value)
        return result

    def _is_resumable(self, resume_batch_id: Optional[str]) -> bool:
        if not resume_batch_id:
            return False
        state = self.store.get_state(resume_batch_id)
        if state is None or state.status != BatchStatus.RUNNING:
            return False
        running = self.store.list_states(state.schedule_id, BatchStatus.RUNNING)
        return [s.execution_batch_id for s in running] == [resume_batch_id]

    def _resume(self, resume_batch_id: str, schedule: ScheduleConfig):
        """
        Close out an unfinished batch before continuing.

        Completed items are no longer PENDING, so continuing normally only
        picks up the batch's unprocessed items.
        """
        checkpoint = self.checkpointer.load(resume_batch_id)
        if checkpoint is None:
            self.logger.warning("resume_batch_not_found", batch_id=resume_batch_id)
            return

        state = self.store.get_state(resume_batch_id)
        if state.schedule_id != schedule.schedule_id:
            self.logger.warning("resume_batch_other_schedule", batch_id=resume_batch_id)
            return

        self.logger.info("resuming_batch", batch_id=resume_batch_id, status=state.status.value,
                         last_queue_id=checkpoint.last_queue_id,
                         completed=checkpoint.operations_completed)
        if state.status == BatchStatus.RUNNING:
            self.store.finish_state(resume_batch_id, BatchStatus.INTERRUPTED, self.clock.now())

    def recover_stale_batches(self, schedule_name: str, stale_after_minutes: float,
                              release_items: bool = True) -> List[str]:
        """
        Mark RUNNING batches with no recent activity as INTERRUPTED.

        Args:
            schedule_name: Schedule whose batches are inspected
            stale_after_minutes: Minutes since last checkpoint (or start) after
                which a RUNNING batch is considered dead
            release_items: Clear the batch tag from the batch's unprocessed items

        Returns:
            Batch ids that were interrupted
        """
        schedule = self.store.get_schedule(schedule_name)
        now = self.clock.now()
        cutoff = now - timedelta(minutes=stale_after_minutes)

        recovered = []
        for state in self.store.find_stale_running(schedule.schedule_id, cutoff):
            self.store.finish_state(state.execution_batch_id, BatchStatus.INTERRUPTED, now)
            released = self.store.release_batch_items(state.execution_batch_id) if release_items else 0
            recovered.append(state.execution_batch_id)
            self.logger.warning("stale_batch_interrupted", batch_id=state.execution_batch_id,
                                last_activity=(state.last_checkpoint or state.start_time).isoformat(),
                                released_items=released)
            if self.metrics:
                self.metrics.record_batch(schedule_name, BatchStatus.INTERRUPTED.value)
        return recovered

    def execute_policy(self, policy_id: int, max_operations: Optional[int] = None) -> int:
        """
        Dispatch every eligible PENDING item of one policy, outside any window.

        Returns:
            Number of items dispatched without raising
        """
        items = self.store.select_batch_items(max_operations or 999999, policy_id=policy_id)
        self.logger.info("executing_policy", policy_id=policy_id, items=len(items))

        completed = 0
        for item, _ in items:
            try:
                self.dispatcher.dispatch(item.queue_id)
                completed += 1
            except Exception as e:
                self.logger.error("dispatch_failed", policy_id=policy_id, queue_id=item.queue_id, error=str(e))

        self.logger.info("policy_execution_completed", policy_id=policy_id, completed=completed)
        return completed

    def execute_single_action(self, queue_id: int) -> ActionResult:
        """Dispatch one queue item immediately."""
        return self.dispatcher.dispatch(queue_id)
