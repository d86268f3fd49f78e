"""
Unit tests for engine metrics.
"""

from prometheus_client import CollectorRegistry

from ilmd.monitoring import ExecutionMetrics


class TestExecutionMetrics:
    """Test metric recording on a private registry."""

    def test_private_registries_are_independent(self):
        first = ExecutionMetrics()
        second = ExecutionMetrics()

        first.record_checkpoint()

        assert first.get_sample('ilm_checkpoints_total') == 1
        assert second.get_sample('ilm_checkpoints_total') == 0

    def test_custom_registry(self):
        registry = CollectorRegistry()
        metrics = ExecutionMetrics(registry=registry)
        assert metrics.registry is registry

    def test_record_action(self):
        metrics = ExecutionMetrics()
        metrics.record_action('COMPRESS', 'SUCCESS', 2.5)
        metrics.record_action('COMPRESS', 'SUCCESS', 0.5)
        metrics.record_action('DROP', 'ERROR', -1)

        assert metrics.get_sample('ilm_actions_total', {'action_type': 'COMPRESS', 'status': 'SUCCESS'}) == 2
        assert metrics.get_sample('ilm_action_duration_seconds_sum', {'action_type': 'COMPRESS'}) == 3.0
        assert metrics.get_sample('ilm_action_duration_seconds_sum', {'action_type': 'DROP'}) == 0.0

    def test_batches_exits_and_pending(self):
        metrics = ExecutionMetrics()
        metrics.record_batch('NIGHTLY', 'COMPLETED')
        metrics.record_exit('NIGHTLY', 'no_work')
        metrics.set_pending('NIGHTLY', 12)

        assert metrics.get_sample('ilm_batches_total', {'schedule': 'NIGHTLY', 'status': 'COMPLETED'}) == 1
        assert metrics.get_sample('ilm_run_exits_total', {'schedule': 'NIGHTLY', 'reason': 'no_work'}) == 1
        assert metrics.get_sample('ilm_pending_queue_items', {'schedule': 'NIGHTLY'}) == 12

    def test_export_and_snapshot(self):
        metrics = ExecutionMetrics()
        metrics.record_exit('NIGHTLY', 'window_closed')

        assert b'ilm_run_exits_total' in metrics.export()
        snapshot = metrics.snapshot()
        assert snapshot['ilm_run_exits_total{reason=window_closed,schedule=NIGHTLY}'] == 1
        assert not any(key.endswith('_created') for key in snapshot)
