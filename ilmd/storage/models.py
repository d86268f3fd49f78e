"""
Data models for the lifecycle execution engine.

This module contains the data classes and enums shared by the storage layer,
the engine and the action executors.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class ActionType(Enum):
    """Storage action a policy applies to an eligible partition."""
    COMPRESS = "COMPRESS"
    MOVE = "MOVE"
    READ_ONLY = "READ_ONLY"
    DROP = "DROP"
    TRUNCATE = "TRUNCATE"


class ActionStatus(Enum):
    """Outcome reported for one dispatched action."""
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"

    @property
    def completes_item(self) -> bool:
        """Whether this outcome moves the queue item to COMPLETED."""
        return self is not ActionStatus.ERROR


class QueueStatus(Enum):
    """Execution status of a queue item."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class BatchStatus(Enum):
    """Status of one batch attempt."""
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    INTERRUPTED = "INTERRUPTED"


WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


@dataclass(frozen=True)
class ScheduleConfig:
    """Per-day execution windows and batch tuning for a named schedule."""
    schedule_id: int
    schedule_name: str
    enabled: bool = True
    monday_hours: Optional[str] = None
    tuesday_hours: Optional[str] = None
    wednesday_hours: Optional[str] = None
    thursday_hours: Optional[str] = None
    friday_hours: Optional[str] = None
    saturday_hours: Optional[str] = None
    sunday_hours: Optional[str] = None
    batch_cooldown_minutes: float = 5
    enable_checkpointing: bool = True
    checkpoint_frequency: int = 5
    schedule_type: str = "ILM"
    description: Optional[str] = None

    def hours_for_weekday(self, weekday: int) -> Optional[str]:
        """Return the window string for a weekday (0 = Monday)."""
        return getattr(self, f"{WEEKDAYS[weekday]}_hours")


@dataclass
class Policy:
    """Lifecycle policy owning queue items. Read-only to the engine."""
    policy_id: int
    policy_name: str
    action_type: ActionType
    priority: int = 100
    enabled: bool = True
    table_owner: Optional[str] = None
    table_name: Optional[str] = None
    compression_type: Optional[str] = None
    target_tablespace: Optional[str] = None


@dataclass
class QueueItem:
    """One unit of pending work produced by the policy evaluator."""
    queue_id: int
    policy_id: int
    table_owner: str
    table_name: str
    partition_name: str
    eligible: bool
    execution_status: QueueStatus
    execution_batch_id: Optional[str] = None
    batch_sequence: Optional[int] = None
    execution_id: Optional[int] = None


@dataclass
class ExecutionState:
    """Persisted record of one batch attempt."""
    execution_batch_id: str
    schedule_id: int
    status: BatchStatus
    start_time: datetime
    operations_total: int
    operations_completed: int = 0
    last_checkpoint: Optional[datetime] = None
    end_time: Optional[datetime] = None
    elapsed_seconds: Optional[float] = None
    last_queue_id: Optional[int] = None

    @property
    def operations_remaining(self) -> int:
        return max(self.operations_total - self.operations_completed, 0)


@dataclass
class ActionResult:
    """Result contract returned by every action executor operation."""
    operation: str
    status: ActionStatus
    error_message: Optional[str] = None
    size_before_mb: Optional[float] = None
    size_after_mb: Optional[float] = None


@dataclass
class ExecutionLogEntry:
    """Audit record of one dispatched action."""
    policy_id: Optional[int]
    policy_name: Optional[str]
    table_owner: Optional[str]
    table_name: Optional[str]
    partition_name: Optional[str]
    action_type: Optional[str]
    operation: Optional[str]
    execution_start: datetime
    execution_end: datetime
    status: ActionStatus
    size_before_mb: Optional[float] = None
    size_after_mb: Optional[float] = None
    error_message: Optional[str] = None
    execution_batch_id: Optional[str] = None
    execution_id: Optional[int] = None

    @property
    def duration_seconds(self) -> float:
        return (self.execution_end - self.execution_start).total_seconds()

    @property
    def space_saved_mb(self) -> Optional[float]:
        if self.size_before_mb is None or self.size_after_mb is None:
            return None
        return self.size_before_mb - self.size_after_mb

    @property
    def compression_ratio(self) -> Optional[float]:
        if self.size_before_mb is None or self.size_after_mb is None:
            return None
        if self.size_before_mb <= 0 or self.size_after_mb == 0:
            return None
        return round(self.size_before_mb / self.size_after_mb, 2)
