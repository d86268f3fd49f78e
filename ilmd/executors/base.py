"""
Action executor interface.

An action executor performs the storage mutation for one partition and
reports what it ran. The engine treats each call as opaque and only relies on
the ActionResult contract.
"""

import importlib
from abc import ABC, abstractmethod
from typing import Optional

from ilmd.exceptions import ExecutorLoadError, MergeNotImplementedError
from ilmd.storage.models import ActionResult


class ActionExecutor(ABC):
    """Abstract interface for partition lifecycle operations."""

    @abstractmethod
    def compress_partition(
        self,
        table_owner: str,
        table_name: str,
        partition_name: str,
        compression_type: Optional[str] = None
    ) -> ActionResult:
        """Compress a partition in place."""
        pass

    @abstractmethod
    def move_partition(
        self,
        table_owner: str,
        table_name: str,
        partition_name: str,
        target_tablespace: Optional[str],
        compression_type: Optional[str] = None
    ) -> ActionResult:
        """Relocate a partition, optionally recompressing it."""
        pass

    @abstractmethod
    def make_partition_readonly(
        self,
        table_owner: str,
        table_name: str,
        partition_name: str
    ) -> ActionResult:
        """Mark a partition read-only."""
        pass

    @abstractmethod
    def drop_partition(
        self,
        table_owner: str,
        table_name: str,
        partition_name: str
    ) -> ActionResult:
        """Drop a partition and its data."""
        pass

    @abstractmethod
    def truncate_partition(
        self,
        table_owner: str,
        table_name: str,
        partition_name: str
    ) -> ActionResult:
        """Remove all rows from a partition, keeping the partition."""
        pass

    def merge_partitions(
        self,
        table_owner: str,
        table_name: str,
        partition_name: str
    ) -> ActionResult:
        """Merge a small partition into its larger neighbour. Not implemented."""
        raise MergeNotImplementedError(table_name, partition_name)


def load_executor(path: str, **kwargs) -> ActionExecutor:
    """
    Instantiate an executor from a 'package.module:ClassName' path.

    Raises:
        ExecutorLoadError: If the path cannot be imported or is not an ActionExecutor
    """
    module_name, _, class_name = path.partition(':')
    if not module_name or not class_name:
        raise ExecutorLoadError(f"Executor path {path!r} must look like 'package.module:ClassName'")

    try:
        module = importlib.import_module(module_name)
        executor_class = getattr(module, class_name)
    except (ImportError, AttributeError) as e:
        raise ExecutorLoadError(f"Cannot load executor {path!r}: {e}") from e

    if not (isinstance(executor_class, type) and issubclass(executor_class, ActionExecutor)):
        raise ExecutorLoadError(f"{path!r} is not an ActionExecutor subclass")

    return executor_class(**kwargs)
