"""
Fleetwright Check-Mode Connection

Wraps a real connection for dry runs: inspection operations reach the
host, mutating operations are recorded and never performed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fleetwright.connections.base import CommandResult, Connection, PathAttributes

logger = logging.getLogger(__name__)


@dataclass
class PlannedAction:
    """An operation that would have been performed outside check mode."""

    operation: str
    target: str
    details: Dict[str, Any] = field(default_factory=dict)


class CheckModeConnection(Connection):
    """
    Check-mode decorator around another connection.

    ``run``, ``put_file`` and ``fetch_file`` are no-ops appended to
    ``planned``. ``path_exists``, ``path_attributes`` and ``file_checksum``
    pass through to the wrapped connection.
    """

    def __init__(self, inner: Connection):
        super().__init__(inner.host, inner.timeout)
        self.inner = inner
        self.planned: List[PlannedAction] = []

    @property
    def connection_type(self) -> str:
        return self.inner.connection_type

    async def connect(self) -> None:
        await self.inner.connect()

    async def close(self) -> None:
        await self.inner.close()

    def _plan(self, operation: str, target: str, **details) -> None:
        logger.info("[%s] check mode: would %s %s", self.host.name, operation, target)
        self.planned.append(PlannedAction(operation, target, details))

    async def _run(self, command: str, as_user: Optional[str]) -> CommandResult:
        self._plan('run', command, as_user=as_user)
        return CommandResult(exit_code=0)

    async def _put_file(
        self,
        data: bytes,
        remote_path: str,
        mode: Optional[str],
        owner: Optional[str],
        group: Optional[str],
    ) -> None:
        self._plan('put_file', remote_path, size=len(data), mode=mode, owner=owner, group=group)

    async def _fetch_file(self, remote_path: str) -> bytes:
        self._plan('fetch_file', remote_path)
        return b''

    async def path_exists(self, path: str) -> bool:
        return await self.inner.path_exists(path)

    async def path_attributes(self, path: str) -> Optional[PathAttributes]:
        return await self.inner.path_attributes(path)

    async def file_checksum(self, path: str) -> Optional[str]:
        return await self.inner.file_checksum(path)

    async def _path_attributes(self, path: str) -> Optional[PathAttributes]:
        return await self.inner.path_attributes(path)

    async def _file_checksum(self, path: str) -> Optional[str]:
        return await self.inner.file_checksum(path)
