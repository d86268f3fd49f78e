"""
Should-execute gate for a schedule.

Exclusion across invocations relies on the persisted RUNNING batch marker, so
a second process or scheduler tick sees the first one without shared memory.
"""

from dataclasses import dataclass
from enum import Enum

import structlog

from ilmd.engine.clock import Clock, SystemClock
from ilmd.engine.window import in_window
from ilmd.storage.repository import ExecutionStore


class GateReason(Enum):
    """Why the gate allowed or refused execution."""
    ALREADY_RUNNING = "already_running"
    NO_WORK = "no_work"
    OUTSIDE_WINDOW = "outside_window"
    READY = "ready"


@dataclass
class GateDecision:
    """Outcome of a should-execute check."""
    allowed: bool
    reason: GateReason
    schedule_name: str


class ConcurrencyGuard:
    """Decides whether a schedule should start executing now."""

    def __init__(self, store: ExecutionStore, clock: Clock = None):
        self.store = store
        self.clock = clock or SystemClock()
        self.logger = structlog.get_logger(__name__)

    def check(self, schedule_name: str) -> GateDecision:
        """
        Evaluate the gate conditions in priority order.

        1. A RUNNING batch exists for the schedule
        2. No eligible PENDING queue items exist
        3. The current time is outside today's window

        Raises:
            ScheduleNotFoundError: If the schedule is unknown or disabled
        """
        schedule = self.store.get_schedule(schedule_name)

        if self.store.count_running(schedule.schedule_id) > 0:
            decision = GateDecision(False, GateReason.ALREADY_RUNNING, schedule_name)
        elif self.store.count_eligible_pending(enabled_policies_only=False) == 0:
            decision = GateDecision(False, GateReason.NO_WORK, schedule_name)
        elif not in_window(schedule, self.clock.now()):
            decision = GateDecision(False, GateReason.OUTSIDE_WINDOW, schedule_name)
        else:
            decision = GateDecision(True, GateReason.READY, schedule_name)

        self.logger.debug("gate_evaluated", schedule=schedule_name,
                          allowed=decision.allowed, reason=decision.reason.value)
        return decision

    def should_execute_now(self, schedule_name: str) -> bool:
        return self.check(schedule_name).allowed
