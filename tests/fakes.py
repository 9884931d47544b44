"""
In-memory stand-ins for PyMySQL connections used by the tests
"""

import re

import pymysql

_INSERT = re.compile(r"INSERT INTO `([^`]+)` \((.*?)\) VALUES")
_BACKTICK = re.compile(r"`([^`]+)`")


class FakeCursor:
    def __init__(self, conn, cursorclass=None):
        self.conn = conn
        self.cursorclass = cursorclass
        self.description = None
        self._rows = []
        conn.cursors.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def close(self):
        self._rows = []

    def execute(self, sql, args=None):
        self.conn.executed.append(sql)
        self.conn.check_failure(sql)
        description, rows = self.conn.respond(sql, args)
        self.description = description
        self._rows = list(rows)
        return len(self._rows)

    def executemany(self, sql, rows):
        rows = list(rows)
        self.conn.check_failure(sql)
        self.conn.batches.append((sql, rows))
        self.conn.upsert(sql, rows)
        return len(rows)

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchmany(self, size):
        self.conn.fetch_sizes.append(size)
        rows, self._rows = self._rows[:size], self._rows[size:]
        return rows


class FakeConnection:
    """Just enough of a MySQL server for the engine's queries

    columns: table -> list of (name, data_type, size, is_nullable, default)
    rows: table -> list of row tuples in column order
    """

    def __init__(self, columns=None, primary_keys=None, rows=None, ddl=None, fail_on=()):
        self.columns = dict(columns or {})
        self.primary_keys = dict(primary_keys or {})
        self.rows = {table: list(data) for table, data in (rows or {}).items()}
        self.ddl = dict(ddl or {})
        self.fail_on = list(fail_on)
        self.executed = []
        self.batches = []
        self.fetch_sizes = []
        self.cursors = []
        self.open = True
        self.close_calls = 0

    def cursor(self, cursorclass=None):
        if not self.open:
            raise pymysql.err.InterfaceError(0, "Connection closed")
        return FakeCursor(self, cursorclass)

    def ping(self, reconnect=False):
        if not self.open:
            raise pymysql.err.InterfaceError(0, "Connection closed")

    def close(self):
        self.close_calls += 1
        self.open = False

    def check_failure(self, sql):
        for fragment in self.fail_on:
            if fragment in sql:
                raise pymysql.err.OperationalError(1054, f"Simulated failure on {fragment}")

    def column_names(self, table):
        return [column[0] for column in self.columns.get(table, [])]

    def respond(self, sql, args):
        if sql == "SHOW TABLES":
            return None, [(table,) for table in self.columns]
        if sql.startswith("SHOW CREATE TABLE"):
            table = _BACKTICK.search(sql).group(1)
            if table not in self.ddl:
                raise pymysql.err.ProgrammingError(1146, f"Table '{table}' doesn't exist")
            return None, [(table, self.ddl[table])]
        if "INFORMATION_SCHEMA.COLUMNS" in sql:
            return None, self.columns.get(args[0], [])
        if "KEY_COLUMN_USAGE" in sql:
            return None, [(name,) for name in self.primary_keys.get(args[0], [])]
        if sql.startswith("SELECT * FROM"):
            table = _BACKTICK.search(sql).group(1)
            description = [(name,) for name in self.column_names(table)]
            return description, self.rows.get(table, [])
        if sql.startswith("CREATE TABLE"):
            table = _BACKTICK.search(sql).group(1)
            self.columns[table] = []
            return None, []
        return None, []

    def upsert(self, sql, rows):
        match = _INSERT.match(sql)
        table = match.group(1)
        names = _BACKTICK.findall(match.group(2))
        pk_index = names.index(self.primary_keys[table][0])
        stored = self.rows.setdefault(table, [])
        by_key = {row[pk_index]: i for i, row in enumerate(stored)}
        for row in rows:
            if row[pk_index] in by_key:
                stored[by_key[row[pk_index]]] = row
            else:
                by_key[row[pk_index]] = len(stored)
                stored.append(row)
