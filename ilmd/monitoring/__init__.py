"""
Monitoring module for the execution engine.

Provides Prometheus metrics for dispatched actions, batches, checkpoints and
orchestrator exits.
"""

from .execution_metrics import ExecutionMetrics

__all__ = ['ExecutionMetrics']
