"""
Unit tests for the execution log writer.
"""

import json
from datetime import timedelta

import pytest

from ilmd.storage.execution_log import ExecutionLogWriter, entry_to_dict, format_duration
from ilmd.storage.models import ActionStatus, ExecutionLogEntry
from tests.utils.engine_fixtures import MONDAY


def make_entry(status=ActionStatus.SUCCESS, batch_id='BATCH_1', before=None, after=None, seconds=5, **kwargs):
    start = MONDAY.replace(hour=2)
    return ExecutionLogEntry(
        policy_id=1,
        policy_name='compress_old',
        table_owner='SALES',
        table_name='ORDERS',
        partition_name='P2023_01',
        action_type='COMPRESS',
        operation='ALTER TABLE SALES.ORDERS MOVE PARTITION P2023_01 COMPRESS FOR QUERY HIGH',
        execution_start=start,
        execution_end=start + timedelta(seconds=seconds),
        status=status,
        size_before_mb=before,
        size_after_mb=after,
        execution_batch_id=batch_id,
        **kwargs
    )


class TestExecutionLogEntry:
    """Test derived entry fields."""

    def test_derived_sizes(self):
        entry = make_entry(before=120.0, after=40.0)
        assert entry.duration_seconds == 5
        assert entry.space_saved_mb == 80.0
        assert entry.compression_ratio == 3.0

    @pytest.mark.parametrize('before, after', [(None, 10.0), (10.0, None), (0.0, 0.0), (10.0, 0.0), (-1.0, 2.0)])
    def test_ratio_undefined(self, before, after):
        assert make_entry(before=before, after=after).compression_ratio is None

    def test_ratio_is_rounded(self):
        assert make_entry(before=10.0, after=3.0).compression_ratio == 3.33


class TestExecutionLogWriter:
    """Test persistence and reporting."""

    def test_write_returns_execution_id(self, log_writer):
        first = log_writer.write(make_entry())
        second = log_writer.write(make_entry())

        assert second == first + 1
        rows = log_writer.list_entries()
        assert [row['execution_id'] for row in rows] == [first, second]
        assert rows[0]['execution_start'] == MONDAY.replace(hour=2).isoformat()

    def test_list_entries_by_batch(self, log_writer):
        log_writer.write(make_entry(batch_id='A'))
        log_writer.write(make_entry(batch_id='B'))
        log_writer.write(make_entry(batch_id='A'))

        assert len(log_writer.list_entries('A')) == 2
        assert len(log_writer.list_entries(limit=1)) == 1

    def test_summarize(self, log_writer):
        log_writer.write(make_entry(before=100.0, after=50.0, seconds=30))
        log_writer.write(make_entry(status=ActionStatus.ERROR, error_message='boom', seconds=90))
        log_writer.write(make_entry(batch_id='OTHER', status=ActionStatus.SKIPPED))

        summary = log_writer.summarize('BATCH_1')

        assert summary['total_actions'] == 2
        assert summary['by_status'] == {'SUCCESS': 1, 'ERROR': 1}
        assert summary['space_saved_mb'] == 50.0
        assert summary['total_duration_seconds'] == 120
        assert summary['total_duration_formatted'] == '2.0m'

    def test_jsonl_mirror(self, db_path, store, tmp_path):
        writer = ExecutionLogWriter(db_path, logs_dir=str(tmp_path / 'audit'))
        execution_id = writer.write(make_entry(before=100.0, after=25.0))

        log_file = tmp_path / 'audit' / 'execution_log_2024-01-01.jsonl'
        lines = log_file.read_text().splitlines()
        assert len(lines) == 1
        record = json.loads(lines[0])
        assert record['execution_id'] == execution_id
        assert record['compression_ratio'] == 4.0
        assert record['status'] == 'SUCCESS'

    def test_entry_to_dict(self):
        data = entry_to_dict(make_entry(status=ActionStatus.WARNING))
        assert data['status'] == 'WARNING'
        assert data['duration_seconds'] == 5
        assert data['space_saved_mb'] is None


@pytest.mark.parametrize('seconds, expected', [(5, '5.00s'), (90, '1.5m'), (5400, '1.5h')])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected
