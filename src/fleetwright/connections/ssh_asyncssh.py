"""
Fleetwright SSH Connection (asyncssh)

One asyncssh session per host, reused for the whole run. Commands and SFTP
transfers are multiplexed over it.
"""

import logging
import os
import posixpath
from typing import Optional

import asyncssh

from fleetwright.connections.base import (
    CommandResult,
    Connection,
    PathAttributes,
    shell_quote,
    sudo_wrap,
)
from fleetwright.engine.errors import ConnectionError, TransferError
from fleetwright.engine.inventory import Host

logger = logging.getLogger(__name__)

# Errors meaning the established session went away mid-operation
_SESSION_LOST = (
    asyncssh.ConnectionLost,
    asyncssh.DisconnectError,
    asyncssh.ChannelOpenError,
    BrokenPipeError,
    ConnectionResetError,
)

_STAT_KINDS = {
    'regular file': 'file',
    'regular empty file': 'file',
    'directory': 'directory',
    'symbolic link': 'link',
}


class SSHConnection(Connection):
    """
    SSH connection using asyncssh.

    Supports:
    - Key-based authentication (ssh_private_key_file)
    - Password authentication (ssh_password)
    - SSH agent
    - Custom ports
    """

    def __init__(self, host: Host, timeout: Optional[float] = None, connect_timeout: float = 30):
        super().__init__(host, timeout)
        self.connect_timeout = connect_timeout
        self._conn: Optional[asyncssh.SSHClientConnection] = None
        self._sftp: Optional[asyncssh.SFTPClient] = None

    async def connect(self) -> None:
        """
        Establish the SSH session.

        Raises:
            ConnectionError: Non-transient; the host is failed for the play
        """
        if self._conn is not None:
            return

        connect_kwargs = {
            'host': self.host.ssh_hostname,
            'port': self.host.ssh_port,
            'username': self.host.ssh_user or os.getenv('USER', 'root'),
            'connect_timeout': self.connect_timeout,
        }

        private_key = self.host.get_variable('ssh_private_key_file')
        if private_key:
            connect_kwargs['client_keys'] = [private_key]

        password = self.host.get_variable('ssh_password')
        if password:
            connect_kwargs['password'] = password

        host_key_checking = self.host.get_variable('ssh_host_key_checking', True)
        if not host_key_checking or str(host_key_checking).lower() in ('false', 'no'):
            connect_kwargs['known_hosts'] = None

        logger.debug("Connecting to %s:%s", connect_kwargs['host'], connect_kwargs['port'])
        try:
            self._conn = await asyncssh.connect(**connect_kwargs)
        except (OSError, asyncssh.Error) as e:
            raise ConnectionError(
                host=self.host.name,
                message=str(e) or e.__class__.__name__,
                connection_type='ssh',
            )

    async def close(self) -> None:
        """Close SSH connection."""
        if self._sftp:
            self._sftp.exit()
            self._sftp = None

        if self._conn:
            self._conn.close()
            await self._conn.wait_closed()
            self._conn = None

    def _lost(self, error: BaseException) -> ConnectionError:
        self._sftp = None
        return ConnectionError(
            host=self.host.name,
            message=f"session lost: {error}",
            connection_type='ssh',
            transient=True,
        )

    def _require_session(self) -> asyncssh.SSHClientConnection:
        if self._conn is None:
            raise ConnectionError(
                host=self.host.name, message="not connected", connection_type='ssh'
            )
        return self._conn

    async def _get_sftp(self) -> asyncssh.SFTPClient:
        """Get or create SFTP client."""
        if self._sftp is None:
            self._sftp = await self._require_session().start_sftp_client()
        return self._sftp

    async def _run(self, command: str, as_user: Optional[str]) -> CommandResult:
        conn = self._require_session()
        if as_user:
            full_command = sudo_wrap(command, as_user)
        else:
            full_command = f"/bin/sh -c {shell_quote(command)}"

        try:
            result = await conn.run(full_command, check=False)
        except _SESSION_LOST as e:
            raise self._lost(e)

        return CommandResult(
            exit_code=result.exit_status or 0,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    async def _put_file(
        self,
        data: bytes,
        remote_path: str,
        mode: Optional[str],
        owner: Optional[str],
        group: Optional[str],
    ) -> None:
        try:
            sftp = await self._get_sftp()
            parent = posixpath.dirname(remote_path)
            if parent:
                await sftp.makedirs(parent, exist_ok=True)
            async with sftp.open(remote_path, 'wb') as f:
                await f.write(data)
            if mode:
                await sftp.chmod(remote_path, int(str(mode), 8))
        except _SESSION_LOST as e:
            raise self._lost(e)
        except (asyncssh.SFTPError, OSError, ValueError) as e:
            raise TransferError(self.host.name, remote_path, str(e), connection_type='ssh')

        if owner or group:
            spec = owner or ''
            if group:
                spec += f":{group}"
            result = await self._run(f"chown {shell_quote(spec)} {shell_quote(remote_path)}", None)
            if not result.success:
                raise TransferError(
                    self.host.name, remote_path,
                    f"chown failed: {result.stderr.strip()}", connection_type='ssh',
                )

    async def _fetch_file(self, remote_path: str) -> bytes:
        try:
            sftp = await self._get_sftp()
            async with sftp.open(remote_path, 'rb') as f:
                return await f.read()
        except _SESSION_LOST as e:
            raise self._lost(e)
        except (asyncssh.SFTPError, OSError) as e:
            raise TransferError(self.host.name, remote_path, str(e), connection_type='ssh')

    async def _path_attributes(self, path: str) -> Optional[PathAttributes]:
        result = await self._run(f"stat -c '%a %U %G %F' -- {shell_quote(path)}", None)
        if not result.success:
            return None
        parts = result.stdout.strip().split(' ', 3)
        if len(parts) != 4:
            return None
        mode, owner, group, kind = parts
        return PathAttributes(
            mode=mode.zfill(4),
            owner=owner,
            group=group,
            kind=_STAT_KINDS.get(kind, 'other'),
        )

    async def _file_checksum(self, path: str) -> Optional[str]:
        quoted = shell_quote(path)
        result = await self._run(f"test -f {quoted} && sha256sum -- {quoted}", None)
        if not result.success or not result.stdout.strip():
            return None
        return result.stdout.split()[0]
