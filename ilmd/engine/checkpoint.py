"""Batch progress checkpoints for crash recovery."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

from ilmd.engine.clock import Clock, SystemClock
from ilmd.storage.repository import ExecutionStore


@dataclass
class Checkpoint:
    """Progress recorded for a batch."""
    batch_id: str
    last_queue_id: Optional[int]
    operations_completed: int
    recorded_at: Optional[datetime]


class Checkpointer:
    """Writes and reads batch checkpoints in the execution state table."""

    def __init__(self, store: ExecutionStore, clock: Clock = None, metrics=None):
        self.store = store
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.logger = structlog.get_logger(__name__)

    def checkpoint(self, batch_id: str, last_item_id: Optional[int], completed_count: int):
        """Record progress. Safe to repeat with the same or a larger count."""
        self.store.checkpoint_state(batch_id, self.clock.now(), last_item_id, completed_count)
        if self.metrics:
            self.metrics.record_checkpoint()
        self.logger.debug("checkpoint", batch_id=batch_id,
                          last_queue_id=last_item_id, completed=completed_count)

    def load(self, batch_id: str) -> Optional[Checkpoint]:
        state = self.store.get_state(batch_id)
        if state is None:
            return None
        return Checkpoint(
            batch_id=batch_id,
            last_queue_id=state.last_queue_id,
            operations_completed=state.operations_completed,
            recorded_at=state.last_checkpoint
        )
