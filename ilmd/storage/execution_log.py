"""
Execution log writer for dispatched lifecycle actions.

Each entry is written on a dedicated connection and committed on its own, so
the record of a failed action survives whatever happens to the surrounding
unit of work. Entries can also be mirrored to daily JSONL files.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ilmd.storage.models import ActionStatus, ExecutionLogEntry

logger = logging.getLogger(__name__)


class ExecutionLogWriter:
    """Append-only writer for ExecutionLogEntry records."""

    def __init__(self, db_path: str, logs_dir: Optional[str] = None, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.logs_dir = Path(logs_dir) if logs_dir else None
        if self.logs_dir:
            self.logs_dir.mkdir(parents=True, exist_ok=True)

    def write(self, entry: ExecutionLogEntry) -> int:
        """Persist one entry and return its execution id."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        try:
            cursor = conn.execute(
                """
                INSERT INTO execution_log (
                    policy_id, policy_name, table_owner, table_name, partition_name,
                    action_type, action_sql, execution_start, execution_end, duration_seconds,
                    size_before_mb, size_after_mb, space_saved_mb, compression_ratio,
                    status, error_message, execution_batch_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.policy_id, entry.policy_name, entry.table_owner, entry.table_name,
                    entry.partition_name, entry.action_type, entry.operation,
                    entry.execution_start.isoformat(), entry.execution_end.isoformat(),
                    entry.duration_seconds, entry.size_before_mb, entry.size_after_mb,
                    entry.space_saved_mb, entry.compression_ratio, entry.status.value,
                    entry.error_message, entry.execution_batch_id
                )
            )
            conn.commit()
            entry.execution_id = cursor.lastrowid
        finally:
            conn.close()

        self._log_entry(entry)
        if self.logs_dir:
            self._store_jsonl(entry)
        return entry.execution_id

    def _log_entry(self, entry: ExecutionLogEntry):
        target = f"{entry.table_name}.{entry.partition_name}"
        duration = format_duration(entry.duration_seconds)
        if entry.status == ActionStatus.ERROR:
            logger.error(f"{entry.action_type} failed on {target} after {duration}: {entry.error_message}")
        elif entry.status == ActionStatus.WARNING:
            logger.warning(f"{entry.action_type} completed with warning on {target}: {entry.error_message}")
        else:
            logger.info(f"{entry.action_type} {entry.status.value.lower()} on {target} in {duration}")

    def _store_jsonl(self, entry: ExecutionLogEntry):
        """Mirror an entry to the daily JSONL audit file."""
        try:
            log_file = self.logs_dir / f"execution_log_{entry.execution_start.strftime('%Y-%m-%d')}.jsonl"
            with open(log_file, 'a') as f:
                f.write(json.dumps(entry_to_dict(entry)) + '\n')
        except OSError as e:
            # row is already committed
            logger.error(f"Failed to mirror execution log entry {entry.execution_id}: {e}")

    def list_entries(self, batch_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM execution_log"
        params: List[Any] = []
        if batch_id is not None:
            sql += " WHERE execution_batch_id = ?"
            params.append(batch_id)
        sql += " ORDER BY execution_id LIMIT ?"
        params.append(limit)

        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def summarize(self, batch_id: Optional[str] = None) -> Dict[str, Any]:
        """Outcome counts and space totals, optionally for a single batch."""
        entries = self.list_entries(batch_id, limit=1_000_000)
        by_status: Dict[str, int] = {}
        for row in entries:
            by_status[row['status']] = by_status.get(row['status'], 0) + 1

        total_duration = sum(row['duration_seconds'] or 0 for row in entries)
        return {
            'generated_at': datetime.now().isoformat(),
            'batch_id': batch_id,
            'total_actions': len(entries),
            'by_status': by_status,
            'space_saved_mb': round(sum(row['space_saved_mb'] or 0 for row in entries), 2),
            'total_duration_seconds': total_duration,
            'total_duration_formatted': format_duration(total_duration)
        }


def entry_to_dict(entry: ExecutionLogEntry) -> Dict[str, Any]:
    return {
        'execution_id': entry.execution_id,
        'execution_batch_id': entry.execution_batch_id,
        'policy_id': entry.policy_id,
        'policy_name': entry.policy_name,
        'table_owner': entry.table_owner,
        'table_name': entry.table_name,
        'partition_name': entry.partition_name,
        'action_type': entry.action_type,
        'operation': entry.operation,
        'execution_start': entry.execution_start.isoformat(),
        'execution_end': entry.execution_end.isoformat(),
        'duration_seconds': entry.duration_seconds,
        'size_before_mb': entry.size_before_mb,
        'size_after_mb': entry.size_after_mb,
        'space_saved_mb': entry.space_saved_mb,
        'compression_ratio': entry.compression_ratio,
        'status': entry.status.value,
        'error_message': entry.error_message
    }


def format_duration(duration_seconds: float) -> str:
    """Format duration in a human-readable format."""
    if duration_seconds < 60:
        return f"{duration_seconds:.2f}s"
    elif duration_seconds < 3600:
        return f"{duration_seconds / 60:.1f}m"
    return f"{duration_seconds / 3600:.1f}h"
