"""Action executors performing partition lifecycle operations."""

from .base import ActionExecutor, load_executor
from .dry_run import DryRunExecutor

__all__ = ['ActionExecutor', 'DryRunExecutor', 'load_executor']
