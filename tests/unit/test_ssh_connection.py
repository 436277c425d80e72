"""
Tests for the asyncssh connection, with the SSH session mocked out.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import asyncssh
import pytest

from fleetwright.connections.ssh_asyncssh import SSHConnection
from fleetwright.engine.errors import ConnectionError
from fleetwright.engine.inventory import Host


def completed(stdout="", exit_status=0, stderr=""):
    return SimpleNamespace(stdout=stdout, stderr=stderr, exit_status=exit_status)


@pytest.fixture
def session():
    conn = MagicMock()
    conn.run = AsyncMock(return_value=completed("ok\n"))
    return conn


@pytest.fixture
def ssh(session):
    connection = SSHConnection(Host("web1", {"ssh_user": "deploy"}))
    connection._conn = session
    return connection


class TestConnect:
    """Test session establishment."""

    @pytest.mark.asyncio
    async def test_connect_arguments(self, monkeypatch):
        connect = AsyncMock(return_value=MagicMock())
        monkeypatch.setattr(asyncssh, "connect", connect)
        host = Host("web1", {
            "ssh_hostname": "10.0.0.5",
            "ssh_port": 2222,
            "ssh_user": "deploy",
            "ssh_private_key_file": "/keys/id",
            "ssh_host_key_checking": False,
        })

        await SSHConnection(host, connect_timeout=5).connect()

        kwargs = connect.call_args.kwargs
        assert kwargs["host"] == "10.0.0.5"
        assert kwargs["port"] == 2222
        assert kwargs["username"] == "deploy"
        assert kwargs["client_keys"] == ["/keys/id"]
        assert kwargs["known_hosts"] is None
        assert kwargs["connect_timeout"] == 5

    @pytest.mark.asyncio
    async def test_connect_failure_not_transient(self, monkeypatch):
        monkeypatch.setattr(asyncssh, "connect", AsyncMock(side_effect=OSError("refused")))
        with pytest.raises(ConnectionError) as exc_info:
            await SSHConnection(Host("web1")).connect()
        assert not exc_info.value.transient
        assert "refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_run_without_session(self):
        with pytest.raises(ConnectionError, match="not connected"):
            await SSHConnection(Host("web1")).run("true")


class TestRun:
    """Test command execution."""

    @pytest.mark.asyncio
    async def test_run_through_sh(self, ssh, session):
        result = await ssh.run("echo $HOME")
        session.run.assert_awaited_once_with("/bin/sh -c 'echo $HOME'", check=False)
        assert result.stdout == "ok\n"
        assert result.success

    @pytest.mark.asyncio
    async def test_run_as_user(self, ssh, session):
        await ssh.run("id", as_user="app")
        session.run.assert_awaited_once_with("sudo -n -H -u app -- /bin/sh -c id", check=False)

    @pytest.mark.asyncio
    async def test_exit_status(self, ssh, session):
        session.run.return_value = completed(exit_status=3, stderr="bad")
        result = await ssh.run("false")
        assert result.exit_code == 3
        assert result.stderr == "bad"

    @pytest.mark.asyncio
    async def test_lost_session_is_transient(self, ssh, session):
        session.run.side_effect = asyncssh.ConnectionLost("reset by peer")
        with pytest.raises(ConnectionError) as exc_info:
            await ssh.run("true")
        assert exc_info.value.transient


class TestInspection:
    """Test stat and checksum parsing."""

    @pytest.mark.asyncio
    async def test_path_attributes(self, ssh, session):
        session.run.return_value = completed("644 root adm regular file\n")
        attributes = await ssh.path_attributes("/etc/app.conf")
        assert attributes.mode == "0644"
        assert attributes.owner == "root"
        assert attributes.group == "adm"
        assert attributes.is_file

    @pytest.mark.asyncio
    async def test_directory(self, ssh, session):
        session.run.return_value = completed("755 root root directory\n")
        assert (await ssh.path_attributes("/srv")).is_directory

    @pytest.mark.asyncio
    async def test_missing_path(self, ssh, session):
        session.run.return_value = completed(exit_status=1)
        assert await ssh.path_attributes("/nope") is None
        assert not await ssh.path_exists("/nope")

    @pytest.mark.asyncio
    async def test_checksum(self, ssh, session):
        session.run.return_value = completed("abc123  /etc/app.conf\n")
        assert await ssh.file_checksum("/etc/app.conf") == "abc123"

        session.run.return_value = completed(exit_status=1)
        assert await ssh.file_checksum("/srv") is None
