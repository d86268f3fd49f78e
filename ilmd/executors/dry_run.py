"""
Dry-run action executor.

Renders the operation each action would run and reports SKIPPED without
touching storage. Used when no real executor is configured.
"""

import logging
from typing import Optional

from ilmd.executors.base import ActionExecutor
from ilmd.storage.models import ActionResult, ActionStatus

logger = logging.getLogger(__name__)


class DryRunExecutor(ActionExecutor):
    """Executor that describes operations instead of running them."""

    def __init__(self, default_compression: str = 'QUERY HIGH'):
        self.default_compression = default_compression

    def _skip(self, operation: str) -> ActionResult:
        logger.info(f"DRY RUN: {operation}")
        return ActionResult(operation=operation, status=ActionStatus.SKIPPED)

    def compress_partition(self, table_owner: str, table_name: str, partition_name: str,
                           compression_type: Optional[str] = None) -> ActionResult:
        compression = compression_type or self.default_compression
        return self._skip(
            f"ALTER TABLE {table_owner}.{table_name} MOVE PARTITION {partition_name} "
            f"COMPRESS FOR {compression}"
        )

    def move_partition(self, table_owner: str, table_name: str, partition_name: str,
                       target_tablespace: Optional[str],
                       compression_type: Optional[str] = None) -> ActionResult:
        if not target_tablespace:
            return ActionResult(
                operation=f"MOVE {table_owner}.{table_name}.{partition_name}",
                status=ActionStatus.ERROR,
                error_message="Policy has no target tablespace"
            )
        operation = (f"ALTER TABLE {table_owner}.{table_name} MOVE PARTITION {partition_name} "
                     f"TABLESPACE {target_tablespace}")
        if compression_type:
            operation += f" COMPRESS FOR {compression_type}"
        return self._skip(operation)

    def make_partition_readonly(self, table_owner: str, table_name: str,
                                partition_name: str) -> ActionResult:
        return self._skip(f"ALTER TABLE {table_owner}.{table_name} MODIFY PARTITION {partition_name} READ ONLY")

    def drop_partition(self, table_owner: str, table_name: str, partition_name: str) -> ActionResult:
        return self._skip(f"ALTER TABLE {table_owner}.{table_name} DROP PARTITION {partition_name}")

    def truncate_partition(self, table_owner: str, table_name: str, partition_name: str) -> ActionResult:
        return self._skip(f"ALTER TABLE {table_owner}.{table_name} TRUNCATE PARTITION {partition_name}")
