"""
Action dispatch for single queue items.

Routes a queue item to the executor operation matching its policy's action
type, writes one execution log entry per attempt and moves the item to its
terminal status.
"""

from typing import Callable, Dict, Optional

import structlog

from ilmd.engine.clock import Clock, SystemClock
from ilmd.exceptions import ConfigurationError, PolicyNotFoundError, QueueItemNotFoundError
from ilmd.executors.base import ActionExecutor
from ilmd.storage.execution_log import ExecutionLogWriter
from ilmd.storage.models import (
    ActionResult, ActionStatus, ActionType, ExecutionLogEntry, Policy, QueueItem, QueueStatus
)
from ilmd.storage.repository import ExecutionStore

MAX_ERROR_LENGTH = 4000

Handler = Callable[[QueueItem, Policy], ActionResult]


class ActionDispatcher:
    """Dispatches queue items to the action executor."""

    def __init__(
        self,
        store: ExecutionStore,
        executor: ActionExecutor,
        log_writer: ExecutionLogWriter,
        clock: Clock = None,
        metrics=None
    ):
        self.store = store
        self.executor = executor
        self.log_writer = log_writer
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.logger = structlog.get_logger(__name__)

        self._handlers: Dict[ActionType, Handler] = {
            ActionType.COMPRESS: self._compress,
            ActionType.MOVE: self._move,
            ActionType.READ_ONLY: self._read_only,
            ActionType.DROP: self._drop,
            ActionType.TRUNCATE: self._truncate,
        }
        missing = [action.value for action in ActionType if action not in self._handlers]
        if missing:
            raise ConfigurationError(f"No dispatch handler for action types: {', '.join(missing)}")

    def _compress(self, item: QueueItem, policy: Policy) -> ActionResult:
        return self.executor.compress_partition(
            item.table_owner, item.table_name, item.partition_name,
            compression_type=policy.compression_type
        )

    def _move(self, item: QueueItem, policy: Policy) -> ActionResult:
        return self.executor.move_partition(
            item.table_owner, item.table_name, item.partition_name,
            target_tablespace=policy.target_tablespace,
            compression_type=policy.compression_type
        )

    def _read_only(self, item: QueueItem, policy: Policy) -> ActionResult:
        return self.executor.make_partition_readonly(item.table_owner, item.table_name, item.partition_name)

    def _drop(self, item: QueueItem, policy: Policy) -> ActionResult:
        return self.executor.drop_partition(item.table_owner, item.table_name, item.partition_name)

    def _truncate(self, item: QueueItem, policy: Policy) -> ActionResult:
        return self.executor.truncate_partition(item.table_owner, item.table_name, item.partition_name)

    def dispatch(self, queue_id: int, batch_id: Optional[str] = None) -> ActionResult:
        """
        Execute the action for one queue item.

        Args:
            queue_id: Queue item to execute
            batch_id: Batch the item was claimed into, if any

        Returns:
            The executor's result

        Raises:
            QueueItemNotFoundError: If the queue item does not exist
            Exception: Anything raised while routing or executing, after it
                has been logged and the item marked FAILED
            Exception: A failed log write or status update after a
                successful action, once the item has been marked FAILED
        """
        item = self.store.get_queue_item(queue_id)
        if item is None:
            raise QueueItemNotFoundError(queue_id)

        policy = self.store.get_policy(item.policy_id)
        start_time = self.clock.now()

        try:
            if policy is None:
                raise PolicyNotFoundError(item.policy_id)
            result = self._handlers[policy.action_type](item, policy)
            if not isinstance(result, ActionResult):
                raise TypeError(f"Executor returned {type(result).__name__}, expected ActionResult")
        except Exception as e:
            end_time = self.clock.now()
            entry = self._build_entry(item, policy, start_time, end_time, batch_id,
                                      operation=None, status=ActionStatus.ERROR,
                                      error_message=str(e)[:MAX_ERROR_LENGTH] or type(e).__name__)
            execution_id = self.log_writer.write(entry)
            self.store.set_item_status(queue_id, QueueStatus.FAILED, execution_id)
            self._record_metrics(entry)
            self.logger.error("action_failed", queue_id=queue_id, batch_id=batch_id,
                              action_type=entry.action_type, error=entry.error_message)
            raise

        end_time = self.clock.now()
        entry = self._build_entry(item, policy, start_time, end_time, batch_id,
                                  operation=result.operation, status=result.status,
                                  error_message=result.error_message,
                                  size_before_mb=result.size_before_mb,
                                  size_after_mb=result.size_after_mb)
        queue_status = QueueStatus.COMPLETED if result.status.completes_item else QueueStatus.FAILED
        try:
            execution_id = self.log_writer.write(entry)
            self.store.set_item_status(queue_id, queue_status, execution_id)
        except Exception as e:
            # the action already ran; a PENDING item would be dispatched again
            self.logger.error("action_bookkeeping_failed", queue_id=queue_id, batch_id=batch_id,
                              operation=result.operation, error=str(e))
            self._mark_failed(queue_id)
            raise
        self._record_metrics(entry)

        self.logger.info("action_completed", queue_id=queue_id, batch_id=batch_id,
                         action_type=policy.action_type.value,
                         target=f"{item.table_name}.{item.partition_name}",
                         status=result.status.value)
        return result

    def _mark_failed(self, queue_id: int):
        try:
            self.store.set_item_status(queue_id, QueueStatus.FAILED)
        except Exception as e:
            self.logger.error("item_status_update_failed", queue_id=queue_id, error=str(e))

    def _build_entry(self, item: QueueItem, policy: Optional[Policy], start_time, end_time,
                     batch_id: Optional[str], operation: Optional[str], status: ActionStatus,
                     error_message: Optional[str] = None, size_before_mb: Optional[float] = None,
                     size_after_mb: Optional[float] = None) -> ExecutionLogEntry:
        return ExecutionLogEntry(
            policy_id=item.policy_id,
            policy_name=policy.policy_name if policy else None,
            table_owner=item.table_owner,
            table_name=item.table_name,
            partition_name=item.partition_name,
            action_type=policy.action_type.value if policy else None,
            operation=operation,
            execution_start=start_time,
            execution_end=end_time,
            status=status,
            size_before_mb=size_before_mb,
            size_after_mb=size_after_mb,
            error_message=error_message,
            execution_batch_id=batch_id
        )

    def _record_metrics(self, entry: ExecutionLogEntry):
        if self.metrics:
            self.metrics.record_action(entry.action_type or 'UNKNOWN', entry.status.value,
                                       entry.duration_seconds)
