"""
Fleetwright Connection Base Class

Abstract base class for all connection types.

Modules only ever see the typed operations below. Each public operation is
bounded by the connection's operation timeout; a timeout surfaces as a
transient ``ConnectionError`` so the task runner may retry it.
"""

import asyncio
import logging
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Optional, TypeVar

from fleetwright.engine.errors import ConnectionError
from fleetwright.engine.inventory import Host

if TYPE_CHECKING:
    from fleetwright.config import RunConfig

logger = logging.getLogger(__name__)

T = TypeVar('T')

LOCAL_NAMES = ('localhost', '127.0.0.1', '::1')


@dataclass
class CommandResult:
    """Result of running a command on a host."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class PathAttributes:
    """Ownership and permissions of a path. ``kind`` is file, directory, link or other."""

    mode: str
    owner: str
    group: str
    kind: str

    @property
    def is_file(self) -> bool:
        return self.kind == 'file'

    @property
    def is_directory(self) -> bool:
        return self.kind == 'directory'


def shell_quote(value: str) -> str:
    return shlex.quote(str(value))


def sudo_wrap(command: str, as_user: Optional[str]) -> str:
    """Wrap a shell command so it runs as ``as_user`` through sudo."""
    if not as_user:
        return command
    return f"sudo -n -H -u {shell_quote(as_user)} -- /bin/sh -c {shell_quote(command)}"


class Connection(ABC):
    """
    Abstract base class for connections.

    Subclasses implement the underscored primitives; callers use the public
    bounded operations.
    """

    def __init__(self, host: Host, timeout: Optional[float] = None):
        self.host = host
        self.timeout = timeout

    @property
    def connection_type(self) -> str:
        """Return the connection type name."""
        return self.__class__.__name__.replace('Connection', '').lower()

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""

    async def _bounded(self, operation: str, awaitable: Awaitable[T]) -> T:
        if self.timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.debug("%s on %s timed out after %ss", operation, self.host.name, self.timeout)
            raise ConnectionError(
                host=self.host.name,
                message=f"{operation} timed out after {self.timeout}s",
                connection_type=self.connection_type,
                transient=True,
            )

    # -- public operations ------------------------------------------------

    async def run(self, command: str, as_user: Optional[str] = None) -> CommandResult:
        """
        Run a shell command on the host.

        Args:
            command: Command line, interpreted by /bin/sh
            as_user: Run as this user through sudo

        Returns:
            CommandResult with exit_code, stdout, stderr
        """
        logger.debug("[%s] run: %s", self.host.name, command)
        return await self._bounded('run', self._run(command, as_user))

    async def put_file(
        self,
        data: bytes,
        remote_path: str,
        mode: Optional[str] = None,
        owner: Optional[str] = None,
        group: Optional[str] = None,
    ) -> None:
        """
        Write ``data`` to ``remote_path``, creating parent directories.

        Args:
            data: File content
            remote_path: Destination path on the host
            mode: Optional octal mode string (e.g., '0644')
            owner: Optional owning user
            group: Optional owning group
        """
        logger.debug("[%s] put_file: %s (%d bytes)", self.host.name, remote_path, len(data))
        await self._bounded('put_file', self._put_file(data, remote_path, mode, owner, group))

    async def fetch_file(self, remote_path: str) -> bytes:
        """Read the content of ``remote_path``."""
        return await self._bounded('fetch_file', self._fetch_file(remote_path))

    async def path_exists(self, path: str) -> bool:
        return await self.path_attributes(path) is not None

    async def path_attributes(self, path: str) -> Optional[PathAttributes]:
        """Return attributes of ``path``, or None if it does not exist."""
        return await self._bounded('path_attributes', self._path_attributes(path))

    async def file_checksum(self, path: str) -> Optional[str]:
        """Return the sha256 hex digest of a regular file, or None."""
        return await self._bounded('file_checksum', self._file_checksum(path))

    # -- primitives -------------------------------------------------------

    @abstractmethod
    async def _run(self, command: str, as_user: Optional[str]) -> CommandResult:
        pass

    @abstractmethod
    async def _put_file(
        self,
        data: bytes,
        remote_path: str,
        mode: Optional[str],
        owner: Optional[str],
        group: Optional[str],
    ) -> None:
        pass

    @abstractmethod
    async def _fetch_file(self, remote_path: str) -> bytes:
        pass

    @abstractmethod
    async def _path_attributes(self, path: str) -> Optional[PathAttributes]:
        pass

    @abstractmethod
    async def _file_checksum(self, path: str) -> Optional[str]:
        pass


def connection_type_for(host: Host, default: str = 'ssh') -> str:
    """Pick the connection type for a host."""
    if host.connection:
        return host.connection
    if host.name in LOCAL_NAMES or host.ssh_hostname in LOCAL_NAMES:
        return 'local'
    return default


def create_connection(host: Host, config: 'RunConfig') -> Connection:
    """
    Create (but do not connect) the connection for a host.

    Raises:
        ConnectionError: If the host names an unknown connection type
    """
    conn_type = connection_type_for(host, config.default_connection)

    if conn_type == 'local':
        from fleetwright.connections.local import LocalConnection
        return LocalConnection(host, timeout=config.operation_timeout)

    if conn_type == 'ssh':
        from fleetwright.connections.ssh_asyncssh import SSHConnection
        return SSHConnection(
            host,
            timeout=config.operation_timeout,
            connect_timeout=config.connect_timeout,
        )

    raise ConnectionError(
        host=host.name,
        message=f"Unknown connection type: {conn_type}",
        connection_type=conn_type,
    )
