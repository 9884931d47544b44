#!/usr/bin/env python3
"""
MySQL Database Sync Tool
Mirror structure and rows of a MySQL database reachable through an SSH bastion
into a directly reachable database
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pymysql

from .connections import CloseReport, ConnectionRegistry, Leg
from .coordinator import ERROR, EventLog, RunCoordinator
from .discovery import TableResult, create_missing_tables, list_tables
from .errors import DatabaseConnectionError, NotReadyError, SyncError
from .favorites import load_favorites
from .replicator import DEFAULT_BATCH_SIZE, DEFAULT_FETCH_SIZE, DataReplicator, ReplicationResult
from .schema_diff import StatementResult, sync_structure

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class DatabaseSyncTool:
    """Main sync engine: connection lifecycle plus the three sync operations"""

    def __init__(self, source_config: Dict[str, Any], target_config: Dict[str, Any],
                 ssh_config: Optional[Dict[str, Any]] = None,
                 registry: Optional[ConnectionRegistry] = None,
                 events: Optional[EventLog] = None,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 fetch_size: int = DEFAULT_FETCH_SIZE):
        self.source_config = source_config
        self.target_config = target_config
        self.ssh_config = ssh_config or {}
        self.registry = registry or ConnectionRegistry()
        self.events = events or EventLog()
        self.coordinator = RunCoordinator(self.events)
        self.batch_size = batch_size
        self.fetch_size = fetch_size
        self.tables: List[str] = []

    @property
    def is_ready(self) -> bool:
        return self.registry.is_ready

    def _require_ready(self, operation: str):
        """Refuse to run unless every required leg is established and live"""
        if not self.registry.is_ready:
            err = NotReadyError()
            self.events.emit(operation, str(err), ERROR)
            raise err
        legs = [Leg.SOURCE, Leg.DESTINATION]
        if self.registry.use_tunnel:
            legs.append(Leg.TUNNEL)
        dead = [leg.value for leg in legs if not self.registry.is_live(leg)]
        if dead:
            err = DatabaseConnectionError(
                f"Connection lost ({', '.join(dead)}). Please reconnect first.")
            self.events.emit(operation, str(err), ERROR)
            raise err

    def _check_config(self):
        for section, config in (('source', self.source_config), ('target', self.target_config)):
            missing = [key for key in ('host', 'user', 'database') if not config.get(key)]
            if missing:
                raise DatabaseConnectionError(
                    f"Missing {section} setting(s): {', '.join(missing)}")

    # --- open / close ---

    def open_connections(self) -> List[str]:
        """Open tunnel, source and destination; return the source tables"""
        return self.coordinator.run('open', self._open_connections)

    def _open_connections(self) -> List[str]:
        if self.registry.is_ready:
            self.events.emit('open', "Connections are already open.")
            return self.tables
        try:
            self._check_config()
            if self.ssh_config.get('host'):
                self.registry.open_tunnel(self.ssh_config, self.source_config['host'],
                                          self.source_config.get('port', 3306))
                self.events.emit('open', "SSH connection successful.")
            else:
                self.registry.skip_tunnel()

            source = self.registry.open_source(self.source_config)
            self.events.emit('open', "Remote DB connected via SSH tunnel."
                             if self.registry.use_tunnel else "Remote DB connected.")

            self.registry.open_destination(self.target_config)
            self.events.emit('open', "Local DB connection successful.")

            self.tables = list_tables(source)
            self.events.emit('open', f"Loaded {len(self.tables)} tables from remote DB.")
        except Exception as err:
            # Whatever failed, nothing opened so far may outlive the attempt
            self.events.emit('open', f"Connection failed: {err}", ERROR)
            self.registry.close_all()
            self.tables = []
            raise

        self.events.emit('open', "Both SSH and DB connections are OK. Ready to sync.")
        return self.tables

    def close_connections(self) -> CloseReport:
        return self.coordinator.run('close', self._close_connections)

    def _close_connections(self) -> CloseReport:
        report = self.registry.close_all()
        for leg in report.closed:
            self.events.emit('close', f"{leg.value.capitalize()} connection closed.")
        for leg, message in report.errors.items():
            self.events.emit('close', f"Error closing {leg.value}: {message}", ERROR)
        self.tables = []
        self.events.emit('close', "Disconnected")
        return report

    # --- sync operations ---

    def sync_new_tables(self) -> List[TableResult]:
        """Create tables that exist in the source but not in the destination"""
        return self.coordinator.run('new-tables', self._sync_new_tables)

    def _sync_new_tables(self) -> List[TableResult]:
        self._require_ready('new-tables')
        self.events.emit('new-tables', "Checking for new tables in source...")
        try:
            return create_missing_tables(self.registry.source, self.registry.destination,
                                         self.events)
        except SyncError as err:
            self.events.emit('new-tables', f"Error syncing new tables: {err}", ERROR)
            raise

    def sync_structure(self, table: str) -> List[StatementResult]:
        return self.coordinator.run('structure', self._sync_structure, table)

    def _sync_structure(self, table: str) -> List[StatementResult]:
        self._require_ready('structure')
        self.events.emit('structure', f"Starting table structure sync for: {table}")
        try:
            return sync_structure(self.registry.source, self.registry.destination,
                                  table, self.events)
        except SyncError as err:
            self.events.emit('structure', f"Struct sync failed: {err}", ERROR)
            raise

    def sync_data(self, table: str) -> ReplicationResult:
        return self.coordinator.run('data', self._sync_data, table)

    def _sync_data(self, table: str, operation: str = 'data') -> ReplicationResult:
        self._require_ready(operation)
        replicator = DataReplicator(self.registry.source, self.registry.destination,
                                    self.events, self.batch_size, self.fetch_size)
        return replicator.replicate(table, operation)

    def sync_favorites(self, favorites: Union[str, Path, Sequence[str]]) -> List[ReplicationResult]:
        """Replicate every table of a favorites file (or list) under one admission"""
        return self.coordinator.run('favorites', self._sync_favorites, favorites)

    def _sync_favorites(self, favorites) -> List[ReplicationResult]:
        self._require_ready('favorites')
        if isinstance(favorites, (str, Path)):
            try:
                tables = load_favorites(favorites)
            except OSError as err:
                self.events.emit('favorites',
                                 f"No favorites found or error reading file: {err}", ERROR)
                return []
        else:
            tables = list(favorites)

        if not tables:
            self.events.emit('favorites', "No favorite tables to sync.")
            return []

        self.events.emit('favorites', f"Syncing {len(tables)} favorite table(s): {', '.join(tables)}")
        results = []
        for table in tables:
            self.events.emit('favorites', f"Syncing table: {table}")
            results.append(self._sync_data(table, 'favorites'))
        self.events.emit('favorites', "Favorites sync completed.")
        return results


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from JSON file"""
    try:
        with open(config_path, 'r') as f:
            return json.load(f)
    except FileNotFoundError:
        logger.error(f"Config file not found: {config_path}")
        sys.exit(1)
    except json.JSONDecodeError as err:
        logger.error(f"Invalid JSON in config file: {err}")
        sys.exit(1)


def create_sample_config():
    """Print sample configuration"""
    sample = {
        "ssh": {
            "host": "bastion.example.com",
            "port": 22,
            "username": "ssh_user",
            "password": "ssh_password",
            "local_port": 3307
        },
        "source": {
            "host": "10.0.0.12",
            "port": 3306,
            "user": "username",
            "password": "password",
            "database": "source_db"
        },
        "target": {
            "host": "127.0.0.1",
            "port": 3306,
            "user": "username",
            "password": "password",
            "database": "target_db"
        }
    }

    print(json.dumps(sample, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='MySQL Database Sync Tool - Mirror structure and data of a database behind an SSH bastion',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List source tables
  db-sync-mysql --config config.json --list-tables

  # Create tables that are missing on the target
  db-sync-mysql --config config.json --new-tables

  # Align columns of some tables, then copy their rows
  db-sync-mysql --config config.json --structure users orders --data users orders

  # Copy every table listed in a favorites file
  db-sync-mysql --config config.json --favorites favorites.txt

  # Show sample config
  db-sync-mysql --sample-config
        """
    )

    parser.add_argument('--config', type=str, help='Path to JSON config file')
    parser.add_argument('--ssh-host', type=str, help='SSH bastion host')
    parser.add_argument('--ssh-port', type=int, default=22, help='SSH port (default: 22)')
    parser.add_argument('--ssh-user', type=str, default=None, help='SSH username (optional, uses SSH config if not specified)')
    parser.add_argument('--ssh-password', type=str, help='SSH password (requires sshpass)')
    parser.add_argument('--ssh-key', type=str, help='SSH private key path')
    parser.add_argument('--local-port', type=int, help='Local port for the forward (default: any free port)')

    parser.add_argument('--source-host', type=str, help='Source database host, as seen from the bastion')
    parser.add_argument('--source-port', type=int, default=3306, help='Source database port (default: 3306)')
    parser.add_argument('--source-user', type=str, help='Source database user')
    parser.add_argument('--source-password', type=str, default='', help='Source database password')
    parser.add_argument('--source-database', type=str, help='Source database name')

    parser.add_argument('--target-host', type=str, help='Target database host')
    parser.add_argument('--target-port', type=int, default=3306, help='Target database port (default: 3306)')
    parser.add_argument('--target-user', type=str, help='Target database user')
    parser.add_argument('--target-password', type=str, default='', help='Target database password')
    parser.add_argument('--target-database', type=str, help='Target database name')

    parser.add_argument('--list-tables', action='store_true', help='List tables of the source database')
    parser.add_argument('--new-tables', action='store_true', help='Create tables missing on the target')
    parser.add_argument('--structure', nargs='+', metavar='TABLE', help='Align target columns with the source')
    parser.add_argument('--data', nargs='+', metavar='TABLE', help='Upsert all rows of the tables into the target')
    parser.add_argument('--favorites', type=str, metavar='FILE', help='Upsert all tables listed in FILE')
    parser.add_argument('--batch-size', type=int, default=DEFAULT_BATCH_SIZE,
                        help=f'Rows per insert batch (default: {DEFAULT_BATCH_SIZE})')
    parser.add_argument('--sample-config', action='store_true', help='Print sample configuration')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose logging')
    return parser


def configs_from_args(args, parser) -> Optional[tuple]:
    """Return (source, target, ssh) config dicts, None when incomplete"""
    if args.config:
        config = load_config_file(args.config)
        return config.get('source', {}), config.get('target', {}), config.get('ssh', {})

    if not all([args.source_host, args.source_user, args.source_database,
                args.target_host, args.target_user, args.target_database]):
        parser.print_help()
        logger.error("Either --config file or all individual database arguments are required")
        return None

    source_config = {
        'host': args.source_host,
        'port': args.source_port,
        'user': args.source_user,
        'password': args.source_password,
        'database': args.source_database
    }
    target_config = {
        'host': args.target_host,
        'port': args.target_port,
        'user': args.target_user,
        'password': args.target_password,
        'database': args.target_database
    }
    ssh_config = {
        'host': args.ssh_host,
        'port': args.ssh_port,
        'username': args.ssh_user,
        'password': args.ssh_password,
        'private_key_path': args.ssh_key,
        'local_port': args.local_port
    } if args.ssh_host else {}
    # Clean up None values to keep config clean
    ssh_config = {k: v for k, v in ssh_config.items() if v is not None}
    return source_config, target_config, ssh_config


def run_actions(tool: DatabaseSyncTool, args) -> bool:
    """Run the requested actions in a fixed order, return overall success"""
    success = True

    if args.list_tables:
        for table in tool.tables:
            print(table)

    if args.new_tables:
        results = tool.sync_new_tables()
        success = success and all(result.ok for result in results)

    for table in args.structure or []:
        try:
            results = tool.sync_structure(table)
        except (SyncError, pymysql.err.MySQLError):
            success = False
            continue
        success = success and all(result.ok for result in results)

    for table in args.data or []:
        success = tool.sync_data(table).ok and success

    if args.favorites:
        results = tool.sync_favorites(args.favorites)
        success = success and all(result.ok for result in results)

    return success


def main():
    parser = build_parser()
    args = parser.parse_args()

    # Set logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Show sample config and exit
    if args.sample_config:
        create_sample_config()
        return 0

    configs = configs_from_args(args, parser)
    if configs is None:
        return 1
    source_config, target_config, ssh_config = configs

    tool = DatabaseSyncTool(
        source_config=source_config,
        target_config=target_config,
        ssh_config=ssh_config,
        batch_size=args.batch_size
    )

    try:
        tool.open_connections()
    except (SyncError, pymysql.err.MySQLError):
        return 1

    try:
        success = run_actions(tool, args)
        return 0 if success else 1
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        return 1
    except (SyncError, pymysql.err.MySQLError) as err:
        logger.error(f"Unexpected error: {err}", exc_info=True)
        return 1
    finally:
        tool.close_connections()


if __name__ == '__main__':
    sys.exit(main())
