"""
Table listing and creation of tables missing on the destination
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import pymysql

from .coordinator import ERROR, INFO, EventLog
from .errors import NotReadyError, StatementError

logger = logging.getLogger(__name__)


@dataclass
class TableResult:
    table: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def list_tables(conn) -> List[str]:
    try:
        with conn.cursor() as cursor:
            cursor.execute("SHOW TABLES")
            return [row[0] for row in cursor.fetchall()]
    except pymysql.err.MySQLError as err:
        raise StatementError("SHOW TABLES", err) from err


def find_new_tables(source, destination) -> List[str]:
    """Tables present in source but not in destination, in source order"""
    if source is None or destination is None:
        raise NotReadyError()
    existing = set(list_tables(destination))
    return [table for table in list_tables(source) if table not in existing]


def show_create_table(conn, table: str) -> str:
    sql = f"SHOW CREATE TABLE `{table}`"
    try:
        with conn.cursor() as cursor:
            cursor.execute(sql)
            row = cursor.fetchone()
    except pymysql.err.MySQLError as err:
        raise StatementError(sql, err) from err
    if not row:
        raise StatementError(sql, LookupError(f"No DDL returned for table {table}"))
    return row[1]


def create_missing_table(source, destination, table: str) -> TableResult:
    """Replay the source's CREATE TABLE statement on the destination"""
    try:
        ddl = show_create_table(source, table)
        logger.debug(f"Creating {table}: {ddl}")
        with destination.cursor() as cursor:
            try:
                cursor.execute(ddl)
            except pymysql.err.MySQLError as err:
                raise StatementError(ddl, err) from err
    except StatementError as err:
        return TableResult(table, str(err))
    return TableResult(table)


def create_missing_tables(source, destination, events: EventLog,
                          operation: str = 'new-tables') -> List[TableResult]:
    new_tables = find_new_tables(source, destination)
    if not new_tables:
        events.emit(operation, "No new tables found.")
        return []

    events.emit(operation, f"Found {len(new_tables)} new table(s): {', '.join(new_tables)}")
    results = []
    for table in new_tables:
        result = create_missing_table(source, destination, table)
        if result.ok:
            events.emit(operation, f"Created table: {table}", INFO)
        else:
            events.emit(operation, f"Failed to create table {table}: {result.error}", ERROR)
        results.append(result)

    events.emit(operation, "New tables synchronization complete.")
    return results
