"""Connection backends for chef-run targets.

This module defines the strategy pattern for talking to a target,
providing one backend per protocol behind a common interface. Backends
are the only place where remote I/O happens: connecting, running a
command and copying a file.
"""

import asyncio
import logging
import shutil
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import asyncssh

from .exceptions import AuthenticationError, ErrorTypes, RemoteCommandError
from .exceptions import ConnectionError as TargetConnectionError
from .types import CommandResult

if TYPE_CHECKING:
    from .target_host import TargetHost

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOLS = ("ssh", "local")
DEFAULT_PORTS = {"ssh": 22, "local": 0}


class TargetBackend(ABC):
    """Abstract base class for target connection strategies.

    Defines the interface for executing commands on and copying files to
    a single target, enabling pluggable protocols with a common API.
    """

    protocol = ""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether ``connect`` has succeeded and ``close`` was not called."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection.

        Raises:
            ConnectionError: If the target cannot be reached
            AuthenticationError: If the target rejects the credentials
        """

    @abstractmethod
    async def run(self, command: str, input: str | None = None) -> CommandResult:
        """Run a shell command on the target and return its result."""

    @abstractmethod
    async def put(self, local_path: Path, remote_path: str) -> None:
        """Copy a local file to ``remote_path`` on the target."""

    @abstractmethod
    async def close(self) -> None:
        """Release the connection. Safe to call when not connected."""


@dataclass
class SSHConfig:
    """SSH connection parameters for one target.

    Attributes:
        hostname: Address to connect to
        port: SSH port
        username: Remote user (asyncssh default when None)
        password: Password authentication, if any
        client_keys: Private key paths offered for authentication
        known_hosts: Known hosts source; None disables host key checking,
            the empty tuple keeps the asyncssh default
        connect_timeout: Seconds allowed for the connection handshake
    """

    hostname: str
    port: int = 22
    username: str | None = None
    password: str | None = None
    client_keys: list[str] | None = None
    known_hosts: Any = ()
    connect_timeout: float = 30.0

    def to_asyncssh_options(self) -> dict[str, Any]:
        """Convert to keyword arguments for ``asyncssh.connect``."""
        options: dict[str, Any] = {"host": self.hostname, "port": self.port}
        if self.username:
            options["username"] = self.username
        if self.password:
            options["password"] = self.password
        if self.client_keys:
            options["client_keys"] = self.client_keys
        if self.known_hosts != ():
            options["known_hosts"] = self.known_hosts
        return options


class SSHBackend(TargetBackend):
    """Backend that reaches a target over SSH using asyncssh.

    Example:
        >>> backend = SSHBackend(SSHConfig(hostname="web01", username="deploy"))
        >>> await backend.connect()
        >>> result = await backend.run("uname -s")
        >>> result.stdout
        'Linux\\n'
    """

    protocol = "ssh"

    def __init__(self, config: SSHConfig) -> None:
        self.config = config
        self._conn: Any = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.is_closed()

    def _connection_error(self, message: str, error_type: str) -> TargetConnectionError:
        return TargetConnectionError(
            message,
            host=self.config.hostname,
            host_address=self.config.hostname,
            port=self.config.port,
            user=self.config.username or "",
            error_type=error_type,
        )

    async def connect(self) -> None:
        if self.is_connected:
            return
        options = self.config.to_asyncssh_options()
        logger.debug("Connecting to %s:%s", self.config.hostname, self.config.port)
        try:
            self._conn = await asyncio.wait_for(
                asyncssh.connect(**options), timeout=self.config.connect_timeout
            )
        except asyncssh.PermissionDenied as e:
            raise AuthenticationError(
                f"Authentication failed for {self.config.username or 'default user'}: {e.reason}",
                host=self.config.hostname,
                host_address=self.config.hostname,
                port=self.config.port,
                user=self.config.username or "",
                key_file=(self.config.client_keys or [""])[0],
            ) from e
        except asyncio.TimeoutError as e:
            raise self._connection_error(
                f"Connection timed out after {self.config.connect_timeout:.0f}s",
                ErrorTypes.CONNECTION_TIMEOUT,
            ) from e
        except ConnectionRefusedError as e:
            raise self._connection_error(
                f"Connection refused on port {self.config.port}", ErrorTypes.CONNECTION_REFUSED
            ) from e
        except socket.gaierror as e:
            raise self._connection_error(
                f"Cannot resolve host: {e}", ErrorTypes.HOST_UNREACHABLE
            ) from e
        except (OSError, asyncssh.Error) as e:
            raise self._connection_error(str(e), ErrorTypes.HOST_UNREACHABLE) from e
        logger.debug("Connected to %s", self.config.hostname)

    async def run(self, command: str, input: str | None = None) -> CommandResult:
        if not self.is_connected:
            await self.connect()
        try:
            result = await self._conn.run(command, input=input, check=False)
        except (OSError, asyncssh.Error) as e:
            raise self._connection_error(
                f"Connection lost while running '{command}': {e}", ErrorTypes.CONNECTION_LOST
            ).with_context(action="run") from e
        returncode = result.returncode if result.returncode is not None else -1
        return CommandResult(
            command=command,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            returncode=returncode,
        )

    async def put(self, local_path: Path, remote_path: str) -> None:
        if not self.is_connected:
            await self.connect()
        try:
            async with self._conn.start_sftp_client() as sftp:
                await sftp.put(str(local_path), remote_path)
        except (asyncssh.SFTPError, OSError) as e:
            raise RemoteCommandError(
                f"Upload of {local_path.name} to {remote_path} failed: {e}",
                host=self.config.hostname,
                command=f"sftp put {local_path} {remote_path}",
            ) from e
        except asyncssh.Error as e:
            raise self._connection_error(
                f"Connection lost while uploading {local_path.name}: {e}", ErrorTypes.CONNECTION_LOST
            ).with_context(action="upload") from e

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        conn.close()
        await conn.wait_closed()


class LocalBackend(TargetBackend):
    """Backend that treats the workstation itself as the target.

    Commands run through the local shell, bypassing SSH entirely.
    """

    protocol = "local"

    def __init__(self) -> None:
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def run(self, command: str, input: str | None = None) -> CommandResult:
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.PIPE if input is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RemoteCommandError(f"Cannot start '{command}': {e}", command=command) from e
        stdout, stderr = await proc.communicate(input.encode() if input is not None else None)
        return CommandResult(
            command=command,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            returncode=proc.returncode if proc.returncode is not None else -1,
        )

    async def put(self, local_path: Path, remote_path: str) -> None:
        try:
            await asyncio.to_thread(shutil.copyfile, local_path, remote_path)
        except OSError as e:
            raise RemoteCommandError(
                f"Copy of {local_path} to {remote_path} failed: {e}",
                command=f"cp {local_path} {remote_path}",
            ) from e

    async def close(self) -> None:
        self._connected = False


def create_backend(target: "TargetHost") -> TargetBackend:
    """Create the backend matching a target's protocol.

    Args:
        target: Resolved target carrying address and credentials

    Returns:
        A new, unconnected backend

    Raises:
        ValueError: If the protocol has no backend
    """
    if target.protocol == "local":
        return LocalBackend()
    if target.protocol == "ssh":
        return SSHBackend(
            SSHConfig(
                hostname=target.hostname,
                port=target.port or DEFAULT_PORTS["ssh"],
                username=target.user,
                password=target.password,
                client_keys=list(target.identity_files) or None,
                known_hosts=() if target.host_key_checking else None,
                connect_timeout=target.connect_timeout,
            )
        )
    raise ValueError(f"No backend for protocol '{target.protocol}'")
