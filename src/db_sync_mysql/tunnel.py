"""
SSH local port forwarding to a bastion host, driven through the OpenSSH client
"""

import logging
import os
import socket
import subprocess
import time
from pathlib import Path
from typing import List, Optional

from .errors import TunnelError

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5


class SSHTunnelManager:
    """Manage SSH tunnel lifecycle

    Host key verification is turned off (StrictHostKeyChecking=no) so a first
    run against an unknown bastion works without a prepared known_hosts file.
    The identity of the bastion is therefore not authenticated.
    """

    def __init__(self, ssh_host: str, db_host: str, db_port: int,
                 ssh_port: int = 22, ssh_user: Optional[str] = None,
                 ssh_password: Optional[str] = None,
                 ssh_key: Optional[str] = None,
                 local_port: Optional[int] = None,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT):
        self.ssh_host = ssh_host
        self.ssh_port = ssh_port or 22
        self.ssh_user = ssh_user  # Can be empty to use SSH config
        self.db_host = db_host
        self.db_port = db_port
        self.ssh_password = ssh_password
        self.ssh_key = ssh_key and Path(ssh_key).expanduser()
        self.local_port = local_port
        self.connect_timeout = connect_timeout
        self.process = None

    @staticmethod
    def find_free_port() -> int:
        """Find a free local port"""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(('', 0))
        _, port = sock.getsockname()
        sock.close()
        return port

    @staticmethod
    def port_is_free(port: int) -> bool:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind(('127.0.0.1', port))
        except OSError:
            return False
        finally:
            sock.close()
        return True

    def build_command(self) -> List[str]:
        remote_spec = f"{self.ssh_user}@{self.ssh_host}" if self.ssh_user else self.ssh_host
        ssh_cmd = [
            'ssh',
            '-N',
            '-L', f'{self.local_port}:{self.db_host}:{self.db_port}',
            '-p', str(self.ssh_port),
            '-o', 'StrictHostKeyChecking=no',
            '-o', 'UserKnownHostsFile=/dev/null',
            '-o', f'ConnectTimeout={int(self.connect_timeout)}',
            '-o', 'ExitOnForwardFailure=yes',
        ]

        if self.ssh_key:
            if not self.ssh_key.exists():
                logger.warning(f"SSH key not found: {self.ssh_key}")
            else:
                ssh_cmd.extend(['-i', str(self.ssh_key)])

        ssh_cmd.append('-C')
        ssh_cmd.append(remote_spec)

        if self.ssh_password:
            # sshpass reads the password from $SSHPASS
            ssh_cmd = ['sshpass', '-e'] + ssh_cmd
        return ssh_cmd

    def start(self) -> int:
        """Start SSH tunnel and return local port"""
        if self.is_alive():
            return self.local_port
        if not self.local_port:
            self.local_port = self.find_free_port()
        elif not self.port_is_free(self.local_port):
            # Another listener would answer the readiness probe in place of ssh
            raise TunnelError(f"Local port {self.local_port} is already in use")

        remote_spec = f"{self.ssh_user}@{self.ssh_host}" if self.ssh_user else self.ssh_host
        logger.info(f"Starting SSH tunnel: {remote_spec}:{self.ssh_port}")
        logger.info(f"Forwarding localhost:{self.local_port} -> {self.db_host}:{self.db_port}")

        env = None
        if self.ssh_password:
            env = dict(os.environ, SSHPASS=self.ssh_password)

        try:
            self.process = subprocess.Popen(
                self.build_command(),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                env=env
            )
        except FileNotFoundError as err:
            tool = 'sshpass' if self.ssh_password else 'ssh'
            raise TunnelError(f"{tool} command not found. Please install the OpenSSH client"
                              f"{' and sshpass' if self.ssh_password else ''}.", err) from err
        except OSError as err:
            raise TunnelError(f"Failed to start SSH tunnel: {err}", err) from err

        self._wait_until_ready()
        logger.info(f"SSH tunnel established on localhost:{self.local_port}")
        return self.local_port

    def _wait_until_ready(self):
        deadline = time.monotonic() + self.connect_timeout
        while True:
            if self.process.poll() is not None:
                _, stderr = self.process.communicate()
                message = stderr.decode('utf-8', errors='ignore').strip() if stderr else ''
                self.process = None
                raise TunnelError(f"SSH tunnel failed: {message or 'ssh exited'}")
            try:
                with socket.create_connection(('127.0.0.1', self.local_port), timeout=0.5):
                    return
            except OSError as err:
                if time.monotonic() >= deadline:
                    self.stop()
                    raise TunnelError(
                        f"SSH tunnel timed out after {self.connect_timeout}s", err) from err
            time.sleep(0.1)

    def is_alive(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def stop(self):
        """Stop SSH tunnel"""
        if not self.process:
            return
        process, self.process = self.process, None
        try:
            process.terminate()
            process.wait(timeout=5)
            logger.info("SSH tunnel closed")
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            logger.warning("SSH tunnel forcefully terminated")
