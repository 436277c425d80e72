"""
Shared fixtures for unit tests.

``MockConnection`` is an in-memory host: files live in a dict, commands
are recorded and answered from a script.
"""

import hashlib
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from fleetwright.config import RunConfig
from fleetwright.connections.base import CommandResult, Connection, PathAttributes
from fleetwright.engine.errors import ConnectionError
from fleetwright.engine.inventory import Host


class MockConnection(Connection):
    """Mock connection for testing."""

    def __init__(self, host: Host, fail_connect: bool = False):
        super().__init__(host)
        self.fail_connect = fail_connect
        self.connected = False
        self.closed = False
        self.files: Dict[str, dict] = {}
        self.dirs: set = set()
        self.commands_run: List[Tuple[str, Optional[str]]] = []
        self.files_put: List[str] = []
        # Exact command -> result
        self.results: Dict[str, CommandResult] = {}
        # Number of upcoming operations that fail with a transient error
        self.transient_failures = 0
        self.on_run: Optional[Callable[[str], None]] = None

    def add_file(self, path: str, data: bytes = b"", mode: str = "0644",
                 owner: str = "root", group: str = "root") -> None:
        self.files[path] = {"data": data, "mode": mode, "owner": owner, "group": group}

    async def connect(self) -> None:
        if self.fail_connect:
            raise ConnectionError(host=self.host.name, message="authentication failed", connection_type="mock")
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    def _maybe_fail(self, operation: str) -> None:
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise ConnectionError(
                host=self.host.name, message=f"{operation}: session lost",
                connection_type="mock", transient=True,
            )

    async def _run(self, command: str, as_user: Optional[str]) -> CommandResult:
        self._maybe_fail("run")
        self.commands_run.append((command, as_user))
        if self.on_run is not None:
            self.on_run(command)
        return self.results.get(command, CommandResult(exit_code=0, stdout="ok", stderr=""))

    async def _put_file(self, data, remote_path, mode, owner, group) -> None:
        self._maybe_fail("put_file")
        self.files_put.append(remote_path)
        previous = self.files.get(remote_path, {})
        self.files[remote_path] = {
            "data": data,
            "mode": mode or previous.get("mode", "0644"),
            "owner": owner or previous.get("owner", "root"),
            "group": group or previous.get("group", "root"),
        }

    async def _fetch_file(self, remote_path: str) -> bytes:
        return self.files[remote_path]["data"]

    async def _path_attributes(self, path: str) -> Optional[PathAttributes]:
        self._maybe_fail("path_attributes")
        if path in self.files:
            f = self.files[path]
            return PathAttributes(mode=f["mode"], owner=f["owner"], group=f["group"], kind="file")
        if path in self.dirs:
            return PathAttributes(mode="0755", owner="root", group="root", kind="directory")
        return None

    async def _file_checksum(self, path: str) -> Optional[str]:
        if path not in self.files:
            return None
        return hashlib.sha256(self.files[path]["data"]).hexdigest()


@pytest.fixture
def mock_connections() -> Dict[str, MockConnection]:
    """Connections handed out by ``connection_factory``, keyed by host name."""
    return {}


@pytest.fixture
def connection_factory(mock_connections):
    def factory(host: Host, config: RunConfig) -> MockConnection:
        conn = mock_connections.get(host.name)
        if conn is None:
            conn = mock_connections[host.name] = MockConnection(host)
        return conn
    return factory


@pytest.fixture
def fast_config() -> RunConfig:
    """Config with no retry delay."""
    return RunConfig(retry_delay=0, default_connection="mock")


@pytest.fixture
def mock_host(mock_connections):
    """Create and register the MockConnection for a host name."""
    def make(name: str, **kwargs) -> MockConnection:
        conn = mock_connections[name] = MockConnection(Host(name), **kwargs)
        return conn
    return make
