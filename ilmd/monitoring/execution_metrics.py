"""
Prometheus metrics for the lifecycle execution engine.

Tracks dispatched actions, batch outcomes, checkpoints, run exit reasons and
queue depth on a private registry so several engines can coexist in one
process (and in tests).
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class ExecutionMetrics:
    """Metrics collector for engine activity."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._setup_prometheus_metrics()

    def _setup_prometheus_metrics(self) -> None:
        self.actions_total = Counter(
            'ilm_actions_total',
            'Dispatched lifecycle actions',
            ['action_type', 'status'],
            registry=self.registry
        )
        self.action_duration = Histogram(
            'ilm_action_duration_seconds',
            'Duration of dispatched lifecycle actions',
            ['action_type'],
            buckets=[0.1, 1.0, 10.0, 60.0, 300.0, 900.0, 3600.0],
            registry=self.registry
        )
        self.batches_total = Counter(
            'ilm_batches_total',
            'Batches finished by final status',
            ['schedule', 'status'],
            registry=self.registry
        )
        self.checkpoints_total = Counter(
            'ilm_checkpoints_total',
            'Checkpoint writes',
            registry=self.registry
        )
        self.run_exits_total = Counter(
            'ilm_run_exits_total',
            'Orchestrator runs by exit reason',
            ['schedule', 'reason'],
            registry=self.registry
        )
        self.pending_items = Gauge(
            'ilm_pending_queue_items',
            'Eligible PENDING queue items seen at the last loop iteration',
            ['schedule'],
            registry=self.registry
        )

    def record_action(self, action_type: str, status: str, duration_seconds: float):
        self.actions_total.labels(action_type=action_type, status=status).inc()
        self.action_duration.labels(action_type=action_type).observe(max(duration_seconds, 0.0))

    def record_batch(self, schedule: str, status: str):
        self.batches_total.labels(schedule=schedule, status=status).inc()

    def record_checkpoint(self):
        self.checkpoints_total.inc()

    def record_exit(self, schedule: str, reason: str):
        self.run_exits_total.labels(schedule=schedule, reason=reason).inc()

    def set_pending(self, schedule: str, count: int):
        self.pending_items.labels(schedule=schedule).set(count)

    def get_sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read a sample value from the registry."""
        return self.registry.get_sample_value(name, labels or {})

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def snapshot(self) -> Dict[str, Any]:
        """Flat dict of current sample values, for status output."""
        values: Dict[str, Any] = {}
        for metric in self.registry.collect():
            for sample in metric.samples:
                if sample.name.endswith('_created'):
                    continue
                label_text = ','.join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
                key = f"{sample.name}{{{label_text}}}" if label_text else sample.name
                values[key] = sample.value
        return values
