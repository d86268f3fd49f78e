"""
SQLite persistence for schedules, the work queue and batch execution state.

Every public method opens its own short-lived connection and commits before
returning, so each mutation is visible to the next reader (including other
processes polling the RUNNING marker).
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ilmd.exceptions import BatchAlreadyRunningError, ScheduleNotFoundError
from ilmd.storage.models import (
    ActionType, BatchStatus, ExecutionState, Policy, QueueItem, QueueStatus,
    ScheduleConfig, WEEKDAYS
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
BATCH_SIZE_KEY = 'MAX_CONCURRENT_OPERATIONS'

SCHEMA = """
CREATE TABLE IF NOT EXISTS execution_schedules (
    schedule_id INTEGER PRIMARY KEY AUTOINCREMENT,
    schedule_name TEXT NOT NULL UNIQUE,
    schedule_type TEXT NOT NULL DEFAULT 'ILM',
    description TEXT,
    enabled INTEGER NOT NULL DEFAULT 1,
    monday_hours TEXT,
    tuesday_hours TEXT,
    wednesday_hours TEXT,
    thursday_hours TEXT,
    friday_hours TEXT,
    saturday_hours TEXT,
    sunday_hours TEXT,
    batch_cooldown_minutes REAL NOT NULL DEFAULT 5 CHECK (batch_cooldown_minutes >= 0),
    enable_checkpointing INTEGER NOT NULL DEFAULT 1,
    checkpoint_frequency INTEGER NOT NULL DEFAULT 5 CHECK (checkpoint_frequency > 0)
);

CREATE TABLE IF NOT EXISTS ilm_policies (
    policy_id INTEGER PRIMARY KEY AUTOINCREMENT,
    policy_name TEXT NOT NULL UNIQUE,
    table_owner TEXT,
    table_name TEXT,
    action_type TEXT NOT NULL CHECK (action_type IN ('COMPRESS', 'MOVE', 'READ_ONLY', 'DROP', 'TRUNCATE')),
    compression_type TEXT,
    target_tablespace TEXT,
    priority INTEGER NOT NULL DEFAULT 100,
    enabled INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS evaluation_queue (
    queue_id INTEGER PRIMARY KEY AUTOINCREMENT,
    policy_id INTEGER NOT NULL REFERENCES ilm_policies(policy_id),
    table_owner TEXT,
    table_name TEXT,
    partition_name TEXT,
    eligible INTEGER NOT NULL DEFAULT 1,
    execution_status TEXT NOT NULL DEFAULT 'PENDING',
    execution_batch_id TEXT,
    batch_sequence INTEGER,
    execution_id INTEGER
);

CREATE INDEX IF NOT EXISTS idx_queue_status ON evaluation_queue(execution_status, eligible);
CREATE INDEX IF NOT EXISTS idx_queue_batch ON evaluation_queue(execution_batch_id, batch_sequence);

CREATE TABLE IF NOT EXISTS execution_state (
    state_id INTEGER PRIMARY KEY AUTOINCREMENT,
    execution_batch_id TEXT NOT NULL UNIQUE,
    schedule_id INTEGER NOT NULL REFERENCES execution_schedules(schedule_id),
    start_time TEXT NOT NULL,
    last_checkpoint TEXT,
    end_time TEXT,
    status TEXT NOT NULL DEFAULT 'RUNNING'
        CHECK (status IN ('RUNNING', 'COMPLETED', 'FAILED', 'INTERRUPTED')),
    last_queue_id INTEGER,
    operations_completed INTEGER NOT NULL DEFAULT 0,
    operations_total INTEGER,
    elapsed_seconds REAL
);

CREATE INDEX IF NOT EXISTS idx_state_schedule ON execution_state(schedule_id, status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_state_one_running ON execution_state(schedule_id) WHERE status = 'RUNNING';

CREATE TABLE IF NOT EXISTS execution_log (
    execution_id INTEGER PRIMARY KEY AUTOINCREMENT,
    policy_id INTEGER,
    policy_name TEXT,
    table_owner TEXT,
    table_name TEXT,
    partition_name TEXT,
    action_type TEXT,
    action_sql TEXT,
    execution_start TEXT,
    execution_end TEXT,
    duration_seconds REAL,
    size_before_mb REAL,
    size_after_mb REAL,
    space_saved_mb REAL,
    compression_ratio REAL,
    status TEXT,
    error_message TEXT,
    execution_batch_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_log_batch ON execution_log(execution_batch_id);

CREATE TABLE IF NOT EXISTS ilm_config (
    config_key TEXT PRIMARY KEY,
    config_value TEXT,
    description TEXT
);
"""


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class ExecutionStore:
    """Data access for the engine's durable state."""

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self):
        """Create the engine tables if they do not exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)
        logger.info(f"Execution store schema ready at {self.db_path}")

    # ------------------------------------------------------------------
    # Schedules and global settings
    # ------------------------------------------------------------------

    def upsert_schedule(self, schedule_name: str, **fields: Any) -> int:
        """Insert or update a schedule row and return its id."""
        columns = {
            'schedule_type': fields.get('schedule_type', 'ILM'),
            'description': fields.get('description'),
            'enabled': int(fields.get('enabled', True)),
            'batch_cooldown_minutes': fields.get('batch_cooldown_minutes', 5),
            'enable_checkpointing': int(fields.get('enable_checkpointing', True)),
            'checkpoint_frequency': fields.get('checkpoint_frequency', 5),
        }
        for day in WEEKDAYS:
            columns[f"{day}_hours"] = fields.get(f"{day}_hours")

        names = ', '.join(columns)
        placeholders = ', '.join('?' for _ in columns)
        updates = ', '.join(f"{name} = excluded.{name}" for name in columns)

        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO execution_schedules (schedule_name, {names}) VALUES (?, {placeholders}) "
                f"ON CONFLICT(schedule_name) DO UPDATE SET {updates}",
                (schedule_name, *columns.values())
            )
            row = conn.execute(
                "SELECT schedule_id FROM execution_schedules WHERE schedule_name = ?",
                (schedule_name,)
            ).fetchone()
        return row['schedule_id']

    def get_schedule(self, schedule_name: str) -> ScheduleConfig:
        """Resolve an enabled schedule by name."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM execution_schedules WHERE schedule_name = ? AND enabled = 1",
                (schedule_name,)
            ).fetchone()

        if row is None:
            raise ScheduleNotFoundError(schedule_name)

        return ScheduleConfig(
            schedule_id=row['schedule_id'],
            schedule_name=row['schedule_name'],
            enabled=bool(row['enabled']),
            batch_cooldown_minutes=row['batch_cooldown_minutes'],
            enable_checkpointing=bool(row['enable_checkpointing']),
            checkpoint_frequency=row['checkpoint_frequency'],
            schedule_type=row['schedule_type'],
            description=row['description'],
            **{f"{day}_hours": row[f"{day}_hours"] for day in WEEKDAYS}
        )

    def set_config_value(self, key: str, value: Any, description: Optional[str] = None):
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO ilm_config (config_key, config_value, description) VALUES (?, ?, ?) "
                "ON CONFLICT(config_key) DO UPDATE SET config_value = excluded.config_value",
                (key, str(value), description)
            )

    def get_config_value(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT config_value FROM ilm_config WHERE config_key = ?", (key,)
            ).fetchone()
        return row['config_value'] if row else None

    def get_batch_size_limit(self) -> int:
        """Batch size limit from global settings, 10 when unset."""
        raw = self.get_config_value(BATCH_SIZE_KEY)
        if raw is None:
            logger.info(f"{BATCH_SIZE_KEY} not found, using default: {DEFAULT_BATCH_SIZE}")
            return DEFAULT_BATCH_SIZE
        try:
            value = int(float(raw))
        except ValueError:
            logger.warning(f"Invalid {BATCH_SIZE_KEY} value {raw!r}, using default: {DEFAULT_BATCH_SIZE}")
            return DEFAULT_BATCH_SIZE
        return value if value > 0 else DEFAULT_BATCH_SIZE

    # ------------------------------------------------------------------
    # Policies and queue
    # ------------------------------------------------------------------

    def add_policy(self, policy_name: str, action_type: ActionType, priority: int = 100,
                   enabled: bool = True, table_owner: Optional[str] = None,
                   table_name: Optional[str] = None, compression_type: Optional[str] = None,
                   target_tablespace: Optional[str] = None) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO ilm_policies (policy_name, table_owner, table_name, action_type, "
                "compression_type, target_tablespace, priority, enabled) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (policy_name, table_owner, table_name, action_type.value,
                 compression_type, target_tablespace, priority, int(enabled))
            )
            return cursor.lastrowid

    def get_policy(self, policy_id: int) -> Optional[Policy]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM ilm_policies WHERE policy_id = ?", (policy_id,)).fetchone()
        if row is None:
            return None
        return Policy(
            policy_id=row['policy_id'],
            policy_name=row['policy_name'],
            action_type=ActionType(row['action_type']),
            priority=row['priority'],
            enabled=bool(row['enabled']),
            table_owner=row['table_owner'],
            table_name=row['table_name'],
            compression_type=row['compression_type'],
            target_tablespace=row['target_tablespace']
        )

    def add_queue_item(self, policy_id: int, table_owner: str, table_name: str,
                       partition_name: str, eligible: bool = True) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO evaluation_queue (policy_id, table_owner, table_name, partition_name, eligible) "
                "VALUES (?, ?, ?, ?, ?)",
                (policy_id, table_owner, table_name, partition_name, int(eligible))
            )
            return cursor.lastrowid

    @staticmethod
    def _queue_item_from_row(row: sqlite3.Row) -> QueueItem:
        return QueueItem(
            queue_id=row['queue_id'],
            policy_id=row['policy_id'],
            table_owner=row['table_owner'],
            table_name=row['table_name'],
            partition_name=row['partition_name'],
            eligible=bool(row['eligible']),
            execution_status=QueueStatus(row['execution_status']),
            execution_batch_id=row['execution_batch_id'],
            batch_sequence=row['batch_sequence'],
            execution_id=row['execution_id']
        )

    def get_queue_item(self, queue_id: int) -> Optional[QueueItem]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM evaluation_queue WHERE queue_id = ?", (queue_id,)).fetchone()
        return self._queue_item_from_row(row) if row else None

    def count_eligible_pending(self, enabled_policies_only: bool = True) -> int:
        """Count PENDING + eligible queue items."""
        if enabled_policies_only:
            sql = ("SELECT COUNT(*) FROM evaluation_queue q "
                   "JOIN ilm_policies p ON p.policy_id = q.policy_id "
                   "WHERE q.execution_status = 'PENDING' AND q.eligible = 1 AND p.enabled = 1")
        else:
            sql = "SELECT COUNT(*) FROM evaluation_queue WHERE execution_status = 'PENDING' AND eligible = 1"
        with self._connect() as conn:
            return conn.execute(sql).fetchone()[0]

    def select_batch_items(self, limit: int, policy_id: Optional[int] = None) -> List[Tuple[QueueItem, int]]:
        """
        Select PENDING + eligible items of enabled policies in dispatch order.

        Returns (item, policy priority) pairs ordered by priority, then queue id.
        """
        sql = ("SELECT q.*, p.priority AS policy_priority FROM evaluation_queue q "
               "JOIN ilm_policies p ON p.policy_id = q.policy_id "
               "WHERE q.execution_status = 'PENDING' AND q.eligible = 1 AND p.enabled = 1")
        params: List[Any] = []
        if policy_id is not None:
            sql += " AND q.policy_id = ?"
            params.append(policy_id)
        sql += " ORDER BY p.priority, q.queue_id LIMIT ?"
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [(self._queue_item_from_row(row), row['policy_priority']) for row in rows]

    def tag_item(self, queue_id: int, batch_id: str, sequence: int) -> bool:
        """Claim a still-PENDING item for a batch. False if it was no longer PENDING."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE evaluation_queue SET execution_batch_id = ?, batch_sequence = ? "
                "WHERE queue_id = ? AND execution_status = 'PENDING'",
                (batch_id, sequence, queue_id)
            )
            return cursor.rowcount == 1

    def set_item_status(self, queue_id: int, status: QueueStatus, execution_id: Optional[int] = None):
        with self._connect() as conn:
            conn.execute(
                "UPDATE evaluation_queue SET execution_status = ?, "
                "execution_id = COALESCE(?, execution_id) WHERE queue_id = ?",
                (status.value, execution_id, queue_id)
            )

    def list_batch_items(self, batch_id: str) -> List[QueueItem]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM evaluation_queue WHERE execution_batch_id = ? ORDER BY batch_sequence",
                (batch_id,)
            ).fetchall()
        return [self._queue_item_from_row(row) for row in rows]

    def release_batch_items(self, batch_id: str) -> int:
        """Clear the batch tag from items of a batch that were never processed."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE evaluation_queue SET execution_batch_id = NULL, batch_sequence = NULL "
                "WHERE execution_batch_id = ? AND execution_status = 'PENDING'",
                (batch_id,)
            )
            return cursor.rowcount

    def queue_summary(self) -> Dict[str, int]:
        """Queue item counts keyed by execution status."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT execution_status, COUNT(*) AS n FROM evaluation_queue GROUP BY execution_status"
            ).fetchall()
        return {row['execution_status']: row['n'] for row in rows}

    # ------------------------------------------------------------------
    # Execution state
    # ------------------------------------------------------------------

    @staticmethod
    def _state_from_row(row: sqlite3.Row) -> ExecutionState:
        return ExecutionState(
            execution_batch_id=row['execution_batch_id'],
            schedule_id=row['schedule_id'],
            status=BatchStatus(row['status']),
            start_time=_parse_ts(row['start_time']),
            operations_total=row['operations_total'] or 0,
            operations_completed=row['operations_completed'] or 0,
            last_checkpoint=_parse_ts(row['last_checkpoint']),
            end_time=_parse_ts(row['end_time']),
            elapsed_seconds=row['elapsed_seconds'],
            last_queue_id=row['last_queue_id']
        )

    def count_running(self, schedule_id: int) -> int:
        with self._connect() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM execution_state WHERE schedule_id = ? AND status = 'RUNNING'",
                (schedule_id,)
            ).fetchone()[0]

    def create_state(self, batch_id: str, schedule_id: int, start_time: datetime, operations_total: int):
        """
        Insert the RUNNING marker for a new batch.

        The partial unique index on RUNNING rows makes this the atomic claim
        on the schedule: of two concurrent inserts only one commits.

        Raises:
            BatchAlreadyRunningError: If the schedule already has a RUNNING batch
        """
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO execution_state (execution_batch_id, schedule_id, start_time, status, operations_total) "
                    "VALUES (?, ?, ?, 'RUNNING', ?)",
                    (batch_id, schedule_id, _ts(start_time), operations_total)
                )
        except sqlite3.IntegrityError as e:
            if self.count_running(schedule_id) > 0:
                raise BatchAlreadyRunningError(schedule_id, batch_id) from e
            raise

    def next_batch_sequence(self, prefix: str) -> int:
        """Next free numeric suffix among batch ids starting with ``prefix``."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT execution_batch_id FROM execution_state WHERE substr(execution_batch_id, 1, ?) = ?",
                (len(prefix), prefix)
            ).fetchall()
        suffixes = [int(row[0][len(prefix):]) for row in rows if row[0][len(prefix):].isdigit()]
        return max(suffixes, default=0) + 1

    def get_state(self, batch_id: str) -> Optional[ExecutionState]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM execution_state WHERE execution_batch_id = ?", (batch_id,)
            ).fetchone()
        return self._state_from_row(row) if row else None

    def list_states(self, schedule_id: Optional[int] = None, status: Optional[BatchStatus] = None,
                    limit: int = 20) -> List[ExecutionState]:
        sql = "SELECT * FROM execution_state WHERE 1 = 1"
        params: List[Any] = []
        if schedule_id is not None:
            sql += " AND schedule_id = ?"
            params.append(schedule_id)
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY state_id DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._state_from_row(row) for row in rows]

    def _elapsed(self, conn: sqlite3.Connection, batch_id: str, now: datetime) -> Optional[float]:
        row = conn.execute(
            "SELECT start_time FROM execution_state WHERE execution_batch_id = ?", (batch_id,)
        ).fetchone()
        if row is None:
            return None
        return (now - _parse_ts(row['start_time'])).total_seconds()

    def checkpoint_state(self, batch_id: str, now: datetime, last_queue_id: Optional[int],
                         operations_completed: int):
        with self._connect() as conn:
            conn.execute(
                "UPDATE execution_state SET last_checkpoint = ?, last_queue_id = ?, "
                "operations_completed = ?, elapsed_seconds = ? WHERE execution_batch_id = ?",
                (_ts(now), last_queue_id, operations_completed,
                 self._elapsed(conn, batch_id, now), batch_id)
            )

    def finish_state(self, batch_id: str, status: BatchStatus, end_time: datetime,
                     operations_completed: Optional[int] = None):
        """Close a batch record with its final status, end time and elapsed seconds."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE execution_state SET status = ?, end_time = ?, elapsed_seconds = ?, "
                "operations_completed = COALESCE(?, operations_completed) WHERE execution_batch_id = ?",
                (status.value, _ts(end_time), self._elapsed(conn, batch_id, end_time),
                 operations_completed, batch_id)
            )

    def find_stale_running(self, schedule_id: int, cutoff: datetime) -> List[ExecutionState]:
        """RUNNING batches of a schedule with no activity since the cutoff."""
        return [
            state for state in self.list_states(schedule_id, BatchStatus.RUNNING, limit=1000)
            if (state.last_checkpoint or state.start_time) < cutoff
        ]
