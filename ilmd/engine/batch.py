"""
Single batch execution with checkpointing.

A batch claims a bounded slice of the queue in priority order, dispatches
each item and periodically records progress so a crashed batch can be
accounted for afterwards.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import structlog

from ilmd.engine.checkpoint import Checkpointer
from ilmd.engine.dispatcher import ActionDispatcher
from ilmd.storage.models import ScheduleConfig
from ilmd.storage.repository import ExecutionStore


@dataclass
class BatchResult:
    """Counters for one batch run."""
    batch_id: str
    selected: int = 0
    dispatched: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    checkpoints: int = 0
    last_queue_id: Optional[int] = None
    stopped_early: bool = False
    dispatch_order: List[Tuple[int, int]] = field(default_factory=list)


class BatchRunner:
    """Runs one batch of queue items."""

    def __init__(self, store: ExecutionStore, dispatcher: ActionDispatcher, checkpointer: Checkpointer):
        self.store = store
        self.dispatcher = dispatcher
        self.checkpointer = checkpointer
        self.logger = structlog.get_logger(__name__)

    def run(
        self,
        batch_id: str,
        schedule: ScheduleConfig,
        max_operations: int,
        should_continue: Optional[Callable[[], bool]] = None
    ) -> BatchResult:
        """
        Execute up to `max_operations` queue items under `batch_id`.

        Args:
            batch_id: Identifier of the batch's execution state row
            schedule: Schedule supplying checkpoint settings
            max_operations: Maximum number of items to select
            should_continue: Checked before each item; returning False ends the
                batch at that item boundary

        Returns:
            BatchResult with dispatch counters
        """
        result = BatchResult(batch_id=batch_id)
        items = self.store.select_batch_items(max_operations)
        result.selected = len(items)

        self.logger.info("batch_started", batch_id=batch_id, max_ops=max_operations, selected=len(items))

        checkpointing = schedule.enable_checkpointing
        frequency = max(schedule.checkpoint_frequency, 1)
        since_checkpoint = 0

        for item, priority in items:
            if should_continue is not None and not should_continue():
                result.stopped_early = True
                self.logger.info("batch_stopped_at_item_boundary", batch_id=batch_id,
                                 dispatched=result.dispatched, remaining=result.selected - result.dispatched)
                break

            sequence = result.dispatched + 1
            if not self.store.tag_item(item.queue_id, batch_id, sequence):
                result.skipped += 1
                self.logger.warning("queue_item_already_claimed", batch_id=batch_id, queue_id=item.queue_id)
                continue

            result.dispatched += 1
            result.dispatch_order.append((priority, item.queue_id))
            try:
                self.dispatcher.dispatch(item.queue_id, batch_id)
                result.completed += 1
            except Exception as e:
                result.failed += 1
                self.logger.error("dispatch_failed", batch_id=batch_id, queue_id=item.queue_id, error=str(e))

            result.last_queue_id = item.queue_id
            since_checkpoint += 1
            if checkpointing and since_checkpoint >= frequency:
                self._checkpoint(result)
                since_checkpoint = 0

        if checkpointing:
            if since_checkpoint > 0:
                self._checkpoint(result)
            self._checkpoint(result)

        self.logger.info("batch_finished", batch_id=batch_id, dispatched=result.dispatched,
                         completed=result.completed, failed=result.failed,
                         stopped_early=result.stopped_early)
        return result

    def _checkpoint(self, result: BatchResult):
        self.checkpointer.checkpoint(result.batch_id, result.last_queue_id, result.completed)
        result.checkpoints += 1
