"""
Remote command execution over SSH using paramiko.
"""
import io
import logging
import shlex
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import paramiko
from paramiko.ssh_exception import (
    AuthenticationException,
    NoValidConnectionsError,
    SSHException,
)

from ..config import Config
from ..errors import CommandTimeout, RemoteConnectionError
from .secrets import Credential

logger = logging.getLogger("clusterboot.ssh")


@dataclass(frozen=True)
class Connection:
    """Where and as whom a remote command runs."""
    host: str          # logical host name (e.g. 'mac1')
    address: str       # IP or DNS name to connect to
    principal: str     # SSH username
    credential: Credential
    port: int = 22

    @property
    def connection_id(self) -> str:
        return f"{self.principal}@{self.address}:{self.port}"


@dataclass(frozen=True)
class CommandResult:
    """Captured output of one remote command."""
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class RemoteExecutor(ABC):
    """Runs shell text on a host and returns its captured output.

    Implementations raise ``RemoteConnectionError`` when the host cannot be
    reached and ``CommandTimeout`` when ``timeout`` elapses. A non-zero exit
    code is returned, not raised; callers decide what it means.
    """

    @abstractmethod
    def execute(self, connection: Connection, script: str, timeout: float) -> CommandResult:
        raise NotImplementedError

    def close(self) -> None:
        """Release any pooled resources."""


def load_private_key(credential: Credential) -> paramiko.PKey:
    """Parse private key material, trying the common key types in turn."""
    material = credential.value.get_secret_value()
    last_error: Optional[Exception] = None
    for key_cls in (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey):
        try:
            return key_cls.from_private_key(io.StringIO(material))
        except SSHException as e:
            last_error = e
    raise RemoteConnectionError(credential.host, f"unsupported private key format: {last_error}")


class ConnectionPool:
    """Thread-safe pool of connected paramiko clients keyed by principal@address."""

    def __init__(self, connect_timeout: Optional[int] = None):
        self.connect_timeout = connect_timeout or Config.SSH_CONNECT_TIMEOUT
        self.connections: Dict[str, paramiko.SSHClient] = {}
        self.lock = threading.RLock()

    def get_client(self, connection: Connection) -> paramiko.SSHClient:
        """Get a live client for the connection, connecting if needed.

        Args:
            connection: Target host, principal and credential

        Returns:
            paramiko.SSHClient: A connected client

        Raises:
            RemoteConnectionError: If the host cannot be reached or refuses the key
        """
        connection_id = connection.connection_id

        with self.lock:
            client = self._live_client(connection_id)
            if client is not None:
                return client

        # Connect outside the lock so hosts connect concurrently
        logger.debug(f"Creating new SSH connection to {connection_id}")
        new_client = self._connect(connection)

        with self.lock:
            client = self._live_client(connection_id)
            if client is not None:
                new_client.close()
                return client
            self.connections[connection_id] = new_client
            return new_client

    def _live_client(self, connection_id: str) -> Optional[paramiko.SSHClient]:
        client = self.connections.get(connection_id)
        if client is None:
            return None
        transport = client.get_transport()
        if transport is not None and transport.is_active():
            return client
        logger.debug(f"Connection {connection_id} is no longer active, reconnecting")
        self._close_client(connection_id)
        return None

    def _connect(self, connection: Connection) -> paramiko.SSHClient:
        pkey = load_private_key(connection.credential)
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=connection.address,
                port=connection.port,
                username=connection.principal,
                pkey=pkey,
                look_for_keys=False,
                allow_agent=False,
                timeout=self.connect_timeout,
            )
        except (AuthenticationException, NoValidConnectionsError, SSHException, OSError) as e:
            client.close()
            raise RemoteConnectionError(connection.host, f"{type(e).__name__}: {e}") from e
        return client

    def discard(self, connection: Connection) -> None:
        with self.lock:
            self._close_client(connection.connection_id)

    def _close_client(self, connection_id: str) -> None:
        client = self.connections.pop(connection_id, None)
        if client is not None:
            client.close()

    def close_all(self) -> None:
        """Close all connections in the pool."""
        with self.lock:
            for connection_id in list(self.connections):
                self._close_client(connection_id)


class SSHExecutor(RemoteExecutor):
    """RemoteExecutor that runs scripts through ``bash -c`` over paramiko."""

    def __init__(self, pool: Optional[ConnectionPool] = None, poll_interval: Optional[float] = None):
        self.pool = pool or ConnectionPool()
        self.poll_interval = poll_interval if poll_interval is not None else Config.SSH_POLL_INTERVAL

    def execute(self, connection: Connection, script: str, timeout: float) -> CommandResult:
        """Execute a script and buffer stdout and stderr separately.

        Args:
            connection: Target host
            script: Shell text, run by bash on the remote side
            timeout: Seconds before the channel is closed and CommandTimeout raised

        Returns:
            CommandResult: Captured stdout, stderr and exit code
        """
        client = self.pool.get_client(connection)
        command = f"bash -c {shlex.quote(script)}"

        try:
            stdin, stdout, stderr = client.exec_command(command)
        except (SSHException, OSError) as e:
            self.pool.discard(connection)
            raise RemoteConnectionError(connection.host, f"{type(e).__name__}: {e}") from e

        stdin.close()
        channel = stdout.channel
        out_chunks = []
        err_chunks = []
        deadline = time.monotonic() + timeout

        while True:
            while channel.recv_ready():
                out_chunks.append(channel.recv(4096))
            while channel.recv_stderr_ready():
                err_chunks.append(channel.recv_stderr(4096))
            if channel.exit_status_ready() and not (channel.recv_ready() or channel.recv_stderr_ready()):
                break
            if time.monotonic() >= deadline:
                channel.close()
                raise CommandTimeout(connection.host, timeout)
            time.sleep(self.poll_interval)

        exit_code = channel.recv_exit_status()
        return CommandResult(
            stdout=b"".join(out_chunks).decode("utf-8", "replace"),
            stderr=b"".join(err_chunks).decode("utf-8", "replace"),
            exit_code=exit_code,
        )

    def close(self) -> None:
        self.pool.close_all()
