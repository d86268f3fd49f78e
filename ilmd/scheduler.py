"""
Trigger daemon for the execution engine.

Wakes up every check interval, optionally interrupts stale batches, asks the
concurrency guard whether a run is warranted and, when it is, runs the
orchestrator in a worker thread so the event loop stays responsive.
"""

import asyncio
import signal
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

from ilmd.engine.guard import ConcurrencyGuard, GateDecision
from ilmd.engine.orchestrator import ExecutionOrchestrator, RunSummary


@dataclass
class SchedulerStatus:
    """Status information for the daemon."""
    running: bool
    schedule_name: str
    last_check: Optional[datetime]
    last_run: Optional[datetime]
    last_gate_reason: Optional[str]
    last_exit_reason: Optional[str]
    total_checks: int
    total_runs: int
    failed_runs: int
    recovered_batches: int
    last_error: Optional[str]
    uptime_seconds: float


class ExecutionScheduler:
    """
    Periodic trigger for lifecycle execution.

    Features:
    - Gate check before every run
    - Optional recovery of batches left RUNNING by a crashed process
    - Graceful shutdown on SIGINT/SIGTERM
    """

    def __init__(
        self,
        orchestrator: ExecutionOrchestrator,
        schedule_name: str = 'DEFAULT_SCHEDULE',
        check_interval_minutes: float = 60,
        auto_recover: bool = False,
        stale_batch_minutes: float = 120
    ):
        self.orchestrator = orchestrator
        self.schedule_name = schedule_name
        self.check_interval_minutes = check_interval_minutes
        self.auto_recover = auto_recover
        self.stale_batch_minutes = stale_batch_minutes
        self.guard = ConcurrencyGuard(orchestrator.store, orchestrator.clock)
        self.logger = structlog.get_logger(__name__)

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._start_time: Optional[datetime] = None
        self._last_check: Optional[datetime] = None
        self._last_run: Optional[datetime] = None
        self._last_gate_reason: Optional[str] = None
        self._last_exit_reason: Optional[str] = None
        self._total_checks = 0
        self._total_runs = 0
        self._failed_runs = 0
        self._recovered_batches = 0
        self._last_error: Optional[str] = None

    def install_signal_handlers(self):
        """Stop the daemon gracefully on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._handle_signal, signum)

    def _handle_signal(self, signum: int):
        self.logger.info("signal_received", signal=signum)
        asyncio.create_task(self.stop())

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the trigger loop."""
        if self._running:
            self.logger.warning("scheduler_already_running")
            return

        self._running = True
        self._start_time = datetime.now()
        self._task = asyncio.create_task(self._scheduler_loop())
        self.logger.info("scheduler_started", schedule=self.schedule_name,
                         check_interval_minutes=self.check_interval_minutes,
                         auto_recover=self.auto_recover)

    async def stop(self):
        """Stop the trigger loop, waiting for the current check to be cancelled."""
        if not self._running:
            return

        self.logger.info("scheduler_stopping")
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self.logger.info("scheduler_stopped")

    async def wait_closed(self):
        """Wait until the trigger loop exits."""
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _scheduler_loop(self):
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("scheduler_check_failed", error=str(e))

            await asyncio.sleep(self.check_interval_minutes * 60)

    async def run_once(self) -> Optional[RunSummary]:
        """
        Perform one wake-up: recover, gate, and run if allowed.

        Returns:
            The run summary, or None when the gate refused
        """
        self._total_checks += 1
        self._last_check = datetime.now()

        try:
            if self.auto_recover:
                recovered = self.orchestrator.recover_stale_batches(self.schedule_name, self.stale_batch_minutes)
                self._recovered_batches += len(recovered)

            decision: GateDecision = self.guard.check(self.schedule_name)
            self._last_gate_reason = decision.reason.value
            if not decision.allowed:
                return None

            loop = asyncio.get_running_loop()
            self._last_run = datetime.now()
            self._total_runs += 1
            summary = await loop.run_in_executor(None, self.orchestrator.execute, self.schedule_name)
        except Exception as e:
            self._failed_runs += 1
            self._last_error = str(e)
            raise

        self._last_exit_reason = summary.exit_reason.value if summary.exit_reason else None
        self._last_error = None
        self.logger.info("scheduled_run_finished", schedule=self.schedule_name,
                         exit_reason=self._last_exit_reason, batches=summary.batch_count)
        return summary

    def get_status(self) -> SchedulerStatus:
        uptime = (datetime.now() - self._start_time).total_seconds() if self._start_time else 0.0
        return SchedulerStatus(
            running=self._running,
            schedule_name=self.schedule_name,
            last_check=self._last_check,
            last_run=self._last_run,
            last_gate_reason=self._last_gate_reason,
            last_exit_reason=self._last_exit_reason,
            total_checks=self._total_checks,
            total_runs=self._total_runs,
            failed_runs=self._failed_runs,
            recovered_batches=self._recovered_batches,
            last_error=self._last_error,
            uptime_seconds=uptime
        )
