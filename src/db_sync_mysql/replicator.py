"""
Primary-key aware row replication

Rows are streamed from the source with an unbuffered cursor and written to the
destination in batches of INSERT ... ON DUPLICATE KEY UPDATE, so running a
table twice converges to the same destination rows.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

import pymysql
import pymysql.cursors

from .coordinator import DONE, ERROR, INFO, PROGRESS, EventLog
from .errors import NoPrimaryKeyError, StatementError, SyncError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_FETCH_SIZE = 500

PRIMARY_KEY_SQL = """
    SELECT COLUMN_NAME
    FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE
    WHERE TABLE_SCHEMA = DATABASE()
      AND TABLE_NAME = %s
      AND CONSTRAINT_NAME = 'PRIMARY'
    ORDER BY ORDINAL_POSITION
"""


class ReplicationState(Enum):
    INSPECT = 'inspect'
    STREAM = 'stream'
    APPLY = 'apply'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class ReplicationResult:
    table: str
    state: ReplicationState
    rows: int = 0
    error: Optional[SyncError] = None

    @property
    def ok(self) -> bool:
        return self.state is ReplicationState.DONE


def primary_key(conn, table: str) -> Optional[str]:
    """First primary key column of table, None when it has no primary key"""
    with conn.cursor() as cursor:
        cursor.execute(PRIMARY_KEY_SQL, (table,))
        rows = cursor.fetchall()
    return rows[0][0] if rows else None


def build_upsert_sql(table: str, columns: Sequence[str], pk: str) -> str:
    col_names = ", ".join(f"`{col}`" for col in columns)
    placeholders = ", ".join(["%s"] * len(columns))
    updates = [f"`{col}`=VALUES(`{col}`)" for col in columns if col != pk]
    if not updates:
        # Key-only table: nothing to update, keep the statement valid
        updates = [f"`{pk}`=VALUES(`{pk}`)"]
    return (f"INSERT INTO `{table}` ({col_names}) VALUES ({placeholders}) "
            f"ON DUPLICATE KEY UPDATE {', '.join(updates)}")


class DataReplicator:
    """Copy every row of a table from source to destination"""

    def __init__(self, source, destination, events: EventLog,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 fetch_size: int = DEFAULT_FETCH_SIZE):
        if batch_size < 1 or fetch_size < 1:
            raise ValueError("Batch size and fetch size must be at least 1")
        self.source = source
        self.destination = destination
        self.events = events
        self.batch_size = batch_size
        self.fetch_size = fetch_size
        self.state = ReplicationState.INSPECT
        self.rows_applied = 0

    def replicate(self, table: str, operation: str = 'data') -> ReplicationResult:
        self.state = ReplicationState.INSPECT
        self.rows_applied = 0
        self.events.emit(operation, f"Starting batch data synchronization for table: {table}")
        try:
            pk = primary_key(self.source, table)
            if pk is None:
                raise NoPrimaryKeyError(table)
            self.events.emit(operation, f"Primary key detected: {pk}")
            total = self._copy_rows(table, pk, operation)
        except SyncError as err:
            return self._fail(table, err, operation)
        except pymysql.err.MySQLError as err:
            return self._fail(table, StatementError(f"SELECT * FROM `{table}`", err), operation)

        self.state = ReplicationState.DONE
        self.events.emit(operation, f"Data synchronization completed for {total} rows "
                                    f"in table: {table}", DONE, rows=total)
        return ReplicationResult(table, self.state, total)

    def _fail(self, table: str, err: SyncError, operation: str) -> ReplicationResult:
        # Batches already written stay written
        self.state = ReplicationState.FAILED
        rows = self.rows_applied
        self.events.emit(operation, f"Data sync failed for {table}: {err}", ERROR, rows=rows)
        return ReplicationResult(table, self.state, rows, err)

    def _copy_rows(self, table: str, pk: str, operation: str) -> int:
        self.state = ReplicationState.STREAM
        total = 0
        with self.source.cursor(pymysql.cursors.SSCursor) as src_cursor:
            src_cursor.execute(f"SELECT * FROM `{table}`")
            columns = [column[0] for column in src_cursor.description]
            sql = build_upsert_sql(table, columns, pk)
            logger.debug(f"Upsert statement for {table}: {sql}")

            self.state = ReplicationState.APPLY
            with self.destination.cursor() as dest_cursor:
                batch: List[tuple] = []
                while True:
                    rows = src_cursor.fetchmany(self.fetch_size)
                    if not rows:
                        break
                    for row in rows:
                        batch.append(tuple(row))
                        total += 1
                        if len(batch) >= self.batch_size:
                            self._execute_batch(dest_cursor, sql, batch)
                            batch = []
                            self.events.emit(operation, f"Synced {total} rows so far...",
                                             PROGRESS, rows=total)
                if batch:
                    self._execute_batch(dest_cursor, sql, batch)
        return total

    def _execute_batch(self, cursor, sql: str, batch: List[tuple]):
        try:
            cursor.executemany(sql, batch)
        except pymysql.err.MySQLError as err:
            raise StatementError(sql, err) from err
        self.rows_applied += len(batch)
