"""
Ownership of the tunnel and the two database connections
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import pymysql

from .errors import DatabaseConnectionError
from .tunnel import SSHTunnelManager

logger = logging.getLogger(__name__)


class Leg(Enum):
    TUNNEL = 'tunnel'
    SOURCE = 'source'
    DESTINATION = 'destination'


class ConnectionState(Enum):
    UNESTABLISHED = 'unestablished'
    ESTABLISHED = 'established'
    CLOSED = 'closed'


@dataclass
class CloseReport:
    closed: List[Leg] = field(default_factory=list)
    errors: Dict[Leg, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def connect_mysql(config: Dict[str, Any], host: Optional[str] = None,
                  port: Optional[int] = None):
    """Open a PyMySQL connection from a source/target config dict"""
    return pymysql.connect(
        host=host or config['host'],
        port=int(port or config.get('port', 3306)),
        user=config['user'],
        password=config.get('password', ''),
        database=config['database'],
        charset='utf8mb4',
        autocommit=True
    )


class ConnectionRegistry:
    """Open, hold and close the tunnel, source and destination legs"""

    def __init__(self, connect: Callable[..., Any] = connect_mysql,
                 tunnel_factory: Callable[..., SSHTunnelManager] = SSHTunnelManager):
        self._connect = connect
        self._tunnel_factory = tunnel_factory
        self.tunnel: Optional[SSHTunnelManager] = None
        self.source = None
        self.destination = None
        self.use_tunnel = True
        self.states: Dict[Leg, ConnectionState] = {}
        self._reset()

    def _reset(self):
        self.tunnel = None
        self.source = None
        self.destination = None
        self.states = {leg: ConnectionState.UNESTABLISHED for leg in Leg}

    def state(self, leg: Leg) -> ConnectionState:
        return self.states[leg]

    def open_tunnel(self, ssh_config: Dict[str, Any], remote_host: str,
                    remote_port: int) -> SSHTunnelManager:
        """Start the SSH forward; the source leg then goes through it"""
        tunnel = self._tunnel_factory(
            ssh_host=ssh_config['host'],
            db_host=remote_host,
            db_port=remote_port,
            ssh_port=ssh_config.get('port', 22),
            ssh_user=ssh_config.get('username'),
            ssh_password=ssh_config.get('password'),
            ssh_key=ssh_config.get('private_key_path'),
            local_port=ssh_config.get('local_port'),
            connect_timeout=ssh_config.get('connect_timeout', 5)
        )
        tunnel.start()
        self.tunnel = tunnel
        self.use_tunnel = True
        self.states[Leg.TUNNEL] = ConnectionState.ESTABLISHED
        return tunnel

    def skip_tunnel(self):
        """Reach the source directly, no SSH leg required"""
        self.use_tunnel = False

    def open_source(self, config: Dict[str, Any]):
        if self.use_tunnel:
            if self.states[Leg.TUNNEL] is not ConnectionState.ESTABLISHED:
                raise DatabaseConnectionError("SSH tunnel is not established")
            host, port = '127.0.0.1', self.tunnel.local_port
        else:
            host, port = config['host'], config.get('port', 3306)
        self.source = self._open(Leg.SOURCE, config, host, port)
        return self.source

    def open_destination(self, config: Dict[str, Any]):
        self.destination = self._open(Leg.DESTINATION, config,
                                      config['host'], config.get('port', 3306))
        return self.destination

    def _open(self, leg: Leg, config: Dict[str, Any], host: str, port: int):
        logger.info(f"Connecting to {leg.value} database '{config.get('database')}' at {host}:{port}")
        try:
            conn = self._connect(config, host=host, port=port)
        except (pymysql.err.MySQLError, OSError) as err:
            raise DatabaseConnectionError(f"Could not connect to {leg.value} database: {err}") from err
        self.states[leg] = ConnectionState.ESTABLISHED
        return conn

    def connection(self, leg: Leg):
        if leg is Leg.SOURCE:
            return self.source
        if leg is Leg.DESTINATION:
            return self.destination
        raise ValueError(f"{leg} has no database connection")

    def is_live(self, leg: Leg) -> bool:
        if self.states[leg] is not ConnectionState.ESTABLISHED:
            return False
        if leg is Leg.TUNNEL:
            return self.tunnel is not None and self.tunnel.is_alive()
        conn = self.connection(leg)
        if conn is None or not conn.open:
            return False
        try:
            conn.ping(reconnect=False)
        except (pymysql.err.MySQLError, OSError) as err:
            logger.debug(f"{leg.value} ping failed: {err}")
            return False
        return True

    @property
    def is_ready(self) -> bool:
        legs = [Leg.SOURCE, Leg.DESTINATION]
        if self.use_tunnel:
            legs.append(Leg.TUNNEL)
        return all(self.states[leg] is ConnectionState.ESTABLISHED for leg in legs)

    def close_all(self) -> CloseReport:
        """Close destination, then source, then the tunnel"""
        report = CloseReport()
        steps = [
            (Leg.DESTINATION, self.destination, lambda c: c.close()),
            (Leg.SOURCE, self.source, lambda c: c.close()),
            (Leg.TUNNEL, self.tunnel, lambda t: t.stop()),
        ]
        for leg, resource, close in steps:
            if resource is None:
                continue
            try:
                if leg is Leg.TUNNEL or resource.open:
                    close(resource)
                self.states[leg] = ConnectionState.CLOSED
                report.closed.append(leg)
                logger.info(f"{leg.value} closed")
            except Exception as err:
                report.errors[leg] = str(err)
                logger.error(f"Error closing {leg.value}: {err}")

        self._reset()
        return report
