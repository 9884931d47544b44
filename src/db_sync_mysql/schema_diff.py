"""
Column-level schema comparison between a source and a destination table

The comparison reads column metadata from INFORMATION_SCHEMA on both sides,
computes an ordered list of ALTER TABLE statements and applies them one at a
time. A failing statement is reported and the remaining ones are still tried.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import pymysql

from .coordinator import ERROR, INFO, EventLog
from .errors import StatementError, TableNotFoundError

logger = logging.getLogger(__name__)

COLUMNS_SQL = """
    SELECT COLUMN_NAME,
           DATA_TYPE,
           COALESCE(CHARACTER_MAXIMUM_LENGTH, NUMERIC_PRECISION, DATETIME_PRECISION, 0),
           IS_NULLABLE,
           COLUMN_DEFAULT
    FROM INFORMATION_SCHEMA.COLUMNS
    WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s
    ORDER BY ORDINAL_POSITION
"""

# Types that never take a length clause
_UNSIZED_TYPES = {'TEXT', 'BLOB'}
_SIZE_QUALIFIER = re.compile(r"\(\d+\)")


@dataclass(frozen=True)
class ColumnDescriptor:
    """Column shape; equality ignores the name"""
    name: str = field(compare=False)
    type_name: str
    size: int = 0
    nullable: bool = True
    default_value: Optional[str] = None

    def render_type(self) -> str:
        if self.size and self.type_name.upper() not in _UNSIZED_TYPES:
            return f"{self.type_name}({self.size})"
        return self.type_name

    def to_sql(self, strip_size: bool = False) -> str:
        """Column definition clause for ALTER TABLE

        With strip_size, any (n) qualifier is removed from the type. The
        declared size is still part of equality, so a size-only change is
        detected even though it is not rendered.
        """
        column_type = self.render_type()
        if strip_size:
            column_type = _SIZE_QUALIFIER.sub('', column_type)
        parts = [f"`{self.name}`", column_type]
        if not self.nullable:
            parts.append("NOT NULL")
        if self.default_value is not None:
            parts.append(f"DEFAULT '{self.default_value}'")
        return ' '.join(parts)


TableColumnSet = Dict[str, ColumnDescriptor]


@dataclass(frozen=True)
class AddColumn:
    descriptor: ColumnDescriptor

    def to_sql(self, table: str) -> str:
        return f"ALTER TABLE `{table}` ADD COLUMN {self.descriptor.to_sql(strip_size=True)};"


@dataclass(frozen=True)
class ModifyColumn:
    descriptor: ColumnDescriptor

    def to_sql(self, table: str) -> str:
        return f"ALTER TABLE `{table}` MODIFY COLUMN {self.descriptor.to_sql(strip_size=True)};"


@dataclass(frozen=True)
class DropColumn:
    name: str

    def to_sql(self, table: str) -> str:
        return f"ALTER TABLE `{table}` DROP COLUMN `{self.name}`;"


AlterOperation = Union[AddColumn, ModifyColumn, DropColumn]
AlterPlan = List[AlterOperation]


@dataclass
class StatementResult:
    sql: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def read_columns(conn, table: str) -> TableColumnSet:
    """Fetch the current column set of a table, in column order"""
    columns: TableColumnSet = {}
    try:
        with conn.cursor() as cursor:
            cursor.execute(COLUMNS_SQL, (table,))
            rows = cursor.fetchall()
    except pymysql.err.MySQLError as err:
        raise StatementError(COLUMNS_SQL, err) from err
    for name, data_type, size, is_nullable, default in rows:
        columns[name] = ColumnDescriptor(
            name=name,
            type_name=data_type.upper(),
            size=int(size or 0),
            nullable=is_nullable == 'YES',
            default_value=None if default is None else str(default)
        )
    logger.debug(f"Columns for {table}: {list(columns)}")
    return columns


def diff(source_cols: TableColumnSet, dest_cols: TableColumnSet) -> AlterPlan:
    """Changes that make dest_cols match source_cols

    Adds and modifies come first in source column order, drops follow in
    destination column order.
    """
    plan: AlterPlan = []
    for name, descriptor in source_cols.items():
        if name not in dest_cols:
            plan.append(AddColumn(descriptor))
        elif descriptor != dest_cols[name]:
            plan.append(ModifyColumn(descriptor))

    for name in dest_cols:
        if name not in source_cols:
            plan.append(DropColumn(name))
    return plan


def apply_plan(plan: AlterPlan, table: str, dest_conn, events: EventLog,
               operation: str = 'structure') -> List[StatementResult]:
    results = []
    for change in plan:
        sql = change.to_sql(table)
        events.emit(operation, f"Applying: {sql}")
        try:
            with dest_conn.cursor() as cursor:
                cursor.execute(sql)
        except pymysql.err.MySQLError as err:
            events.emit(operation, f"Statement failed: {sql} ({err})", ERROR)
            results.append(StatementResult(sql, str(err)))
            continue
        results.append(StatementResult(sql))
    return results


def sync_structure(source, destination, table: str, events: EventLog,
                   operation: str = 'structure') -> List[StatementResult]:
    """Diff one table and apply the resulting plan to the destination

    A table unknown to the source raises TableNotFoundError instead of
    producing a plan that drops every destination column.
    """
    source_cols = read_columns(source, table)
    if not source_cols:
        raise TableNotFoundError(table, 'source')
    plan = diff(source_cols, read_columns(destination, table))
    if not plan:
        events.emit(operation, "Structures are already synchronized.")
        return []

    results = apply_plan(plan, table, destination, events, operation)
    failed = sum(1 for result in results if not result.ok)
    if failed:
        events.emit(operation, f"Structure synchronization finished with {failed} failed "
                               f"statement(s) out of {len(results)}.", ERROR)
    else:
        events.emit(operation, "Structure synchronization completed.", INFO)
    return results
