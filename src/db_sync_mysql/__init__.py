"""
MySQL Database Sync Tool - Mirror a MySQL database reachable through an SSH bastion

This package keeps a destination MySQL database in step with a source database
that is only reachable through an SSH bastion. It forwards a local port with the
system OpenSSH client and talks to both databases with PyMySQL.

Main features:
- SSH tunneling with password (sshpass) or key-based authentication
- Creation of tables missing on the destination from SHOW CREATE TABLE
- Column-level structure diff applied as ALTER TABLE statements
- Batched, primary-key aware upsert of table rows
- Favorites file to replicate a fixed list of tables
- Single-operation admission gate and an event stream for front ends

Usage:
    db-sync-mysql --config config.json --new-tables
    db-sync-mysql --config config.json --structure users --data users
"""

__version__ = "1.0.0"
__author__ = "Harish Karumuthil"
__email__ = "harish2704@gmail.com"
__license__ = "MIT"

from .connections import ConnectionRegistry, ConnectionState, Leg
from .coordinator import EventLog, RunCoordinator, SyncEvent
from .db_sync import DatabaseSyncTool
from .errors import (BusyError, DatabaseConnectionError, NoPrimaryKeyError,
                     NotReadyError, StatementError, SyncError, TableNotFoundError,
                     TunnelError)
from .replicator import DataReplicator, ReplicationResult, ReplicationState
from .schema_diff import AddColumn, ColumnDescriptor, DropColumn, ModifyColumn, diff
from .tunnel import SSHTunnelManager

__all__ = [
    "DatabaseSyncTool",
    "SSHTunnelManager",
    "ConnectionRegistry",
    "ConnectionState",
    "Leg",
    "RunCoordinator",
    "EventLog",
    "SyncEvent",
    "DataReplicator",
    "ReplicationResult",
    "ReplicationState",
    "ColumnDescriptor",
    "AddColumn",
    "ModifyColumn",
    "DropColumn",
    "diff",
    "SyncError",
    "TunnelError",
    "DatabaseConnectionError",
    "NoPrimaryKeyError",
    "StatementError",
    "NotReadyError",
    "BusyError",
    "TableNotFoundError",
]
