"""
Fleetwright Local Connection

Execute commands on the local machine (no remote connection).
"""

import asyncio
import grp
import hashlib
import os
import pwd
import shutil
import stat
import tempfile
from pathlib import Path
from typing import Optional

from fleetwright.connections.base import CommandResult, Connection, PathAttributes, sudo_wrap
from fleetwright.engine.errors import ConnectionError, TransferError
from fleetwright.engine.inventory import Host


def _user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


def _kind(mode: int) -> str:
    if stat.S_ISLNK(mode):
        return 'link'
    if stat.S_ISDIR(mode):
        return 'directory'
    if stat.S_ISREG(mode):
        return 'file'
    return 'other'


class LocalConnection(Connection):
    """
    Local connection - execute commands on the control node.

    Used for localhost execution without any network operations.
    """

    def __init__(self, host: Host, timeout: Optional[float] = None):
        super().__init__(host, timeout)
        self._connected = False

    async def connect(self) -> None:
        """Local connection is always available."""
        self._connected = True

    async def close(self) -> None:
        """Nothing to close for local connection."""
        self._connected = False

    async def _run(self, command: str, as_user: Optional[str]) -> CommandResult:
        try:
            process = await asyncio.create_subprocess_shell(
                sudo_wrap(command, as_user),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ConnectionError(
                host=self.host.name,
                message=f"cannot start shell: {e}",
                connection_type=self.connection_type,
            )

        try:
            stdout_bytes, stderr_bytes = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            raise

        return CommandResult(
            exit_code=process.returncode or 0,
            stdout=stdout_bytes.decode('utf-8', errors='replace'),
            stderr=stderr_bytes.decode('utf-8', errors='replace'),
        )

    async def _put_file(
        self,
        data: bytes,
        remote_path: str,
        mode: Optional[str],
        owner: Optional[str],
        group: Optional[str],
    ) -> None:
        dest = Path(remote_path)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if mode:
                file_mode = int(str(mode), 8)
            elif dest.is_file():
                file_mode = stat.S_IMODE(dest.stat().st_mode)
            else:
                file_mode = 0o644
            # Atomic replace via a sibling temp file
            fd, tmp_name = tempfile.mkstemp(dir=str(dest.parent), prefix=f".{dest.name}.")
            try:
                with os.fdopen(fd, 'wb') as f:
                    f.write(data)
                os.chmod(tmp_name, file_mode)
                os.replace(tmp_name, dest)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
            if owner or group:
                shutil.chown(dest, user=owner, group=group)
        except (OSError, LookupError, ValueError) as e:
            raise TransferError(
                self.host.name, remote_path, str(e), connection_type=self.connection_type
            )

    async def _fetch_file(self, remote_path: str) -> bytes:
        try:
            return Path(remote_path).read_bytes()
        except OSError as e:
            raise TransferError(
                self.host.name, remote_path, str(e), connection_type=self.connection_type
            )

    async def _path_attributes(self, path: str) -> Optional[PathAttributes]:
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            return None
        except NotADirectoryError:
            return None
        return PathAttributes(
            mode=format(stat.S_IMODE(st.st_mode), '04o'),
            owner=_user_name(st.st_uid),
            group=_group_name(st.st_gid),
            kind=_kind(st.st_mode),
        )

    async def _file_checksum(self, path: str) -> Optional[str]:
        if not os.path.isfile(path):
            return None
        digest = hashlib.sha256()
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(65536), b''):
                digest.update(chunk)
        return digest.hexdigest()
