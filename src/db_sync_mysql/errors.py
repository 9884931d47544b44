"""
Error types raised by the synchronization engine
"""

from typing import Optional


class SyncError(Exception):
    """Base class for every engine error"""


class TunnelError(SyncError):
    """SSH tunnel could not be established (auth, network, timeout)"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class DatabaseConnectionError(SyncError):
    """A database is unreachable or its connection is already closed"""


class NoPrimaryKeyError(SyncError):
    """Table has no primary key and cannot be replicated"""

    def __init__(self, table: str):
        super().__init__(f"Table {table} has no primary key - cannot safely sync.")
        self.table = table


class StatementError(SyncError):
    """A single DDL or DML statement failed"""

    def __init__(self, sql: str, cause: BaseException):
        super().__init__(str(cause))
        self.sql = sql
        self.cause = cause


class NotReadyError(SyncError):
    """Operation attempted while connections are not fully established"""

    def __init__(self, message: str = "Connections are not open. Please reconnect first."):
        super().__init__(message)


class BusyError(SyncError):
    """Another operation is already in progress"""

    def __init__(self, operation: str, running: Optional[str] = None):
        message = f"Still working on '{running}'..." if running else "Still working..."
        super().__init__(message)
        self.operation = operation
        self.running = running


class TableNotFoundError(SyncError):
    """Table does not exist on the side it was looked up on"""

    def __init__(self, table: str, side: str = 'source'):
        super().__init__(f"Table {table} not found in {side} database")
        self.table = table
        self.side = side
