"""
Tests for the per-host task state machine.
"""

import hashlib

import pytest

from conftest import MockConnection
from fleetwright.config import RunConfig
from fleetwright.connections.base import CommandResult
from fleetwright.engine.handle import HostRunState
from fleetwright.engine.inventory import Inventory
from fleetwright.engine.playbook import Task
from fleetwright.engine.results import TaskStatus
from fleetwright.engine.task_fsm import (
    TaskIteration,
    TaskRunner,
    TaskState,
    aggregate_status,
)
from fleetwright.engine.templating import TemplateEngine


class Harness:
    """One host, one mock connection and a runner."""

    def __init__(self, transient_retries=2, check_mode=False):
        self.inventory = Inventory()
        self.host = self.inventory.add_host("h1", {"port": 8080, "app_dir": "/srv/app"})
        self.state = HostRunState(self.host, self.inventory, RunConfig(retry_delay=0))
        self.conn = MockConnection(self.host)
        self.requested = []
        self.runner = TaskRunner(
            self.state,
            self.connection_for,
            TemplateEngine(),
            transient_retries=transient_retries,
            retry_delay=0,
            check_mode=check_mode,
        )

    async def connection_for(self, name):
        self.requested.append(name)
        return self.conn

    async def run(self, data):
        return await self.runner.run(Task.from_dict(data))


@pytest.fixture
def harness():
    return Harness()


class TestTaskIteration:
    """Test state transitions."""

    def test_legal_path(self):
        iteration = TaskIteration()
        for state in (TaskState.CONDITION_CHECKED, TaskState.DISPATCHED, TaskState.APPLYING, TaskState.COMPLETED):
            iteration.advance(state)
        assert iteration.history_names == ["pending", "condition_checked", "dispatched", "applying", "completed"]

    def test_illegal_transition(self):
        iteration = TaskIteration()
        with pytest.raises(RuntimeError):
            iteration.advance(TaskState.APPLYING)

    def test_failed_from_any_live_state(self):
        iteration = TaskIteration()
        iteration.advance(TaskState.FAILED)
        assert iteration.state == TaskState.FAILED

    def test_terminal_is_final(self):
        iteration = TaskIteration()
        iteration.advance(TaskState.FAILED)
        with pytest.raises(RuntimeError):
            iteration.advance(TaskState.CONDITION_CHECKED)

    @pytest.mark.parametrize("statuses,expected", [
        ([TaskStatus.OK, TaskStatus.CHANGED], TaskStatus.CHANGED),
        ([TaskStatus.CHANGED, TaskStatus.FAILED], TaskStatus.FAILED),
        ([TaskStatus.SKIPPED, TaskStatus.SKIPPED], TaskStatus.SKIPPED),
        ([TaskStatus.SKIPPED, TaskStatus.OK], TaskStatus.OK),
        ([], TaskStatus.SKIPPED),
    ])
    def test_aggregate(self, statuses, expected):
        assert aggregate_status(statuses) == expected


class TestConditions:
    """Test the pre-logic."""

    @pytest.mark.asyncio
    async def test_false_condition_skips(self, harness):
        response = await harness.run({
            "name": "never", "command": "touch /x", "with": {"condition": "(eq port 9999)"},
        })
        assert response.status == TaskStatus.SKIPPED
        assert response.history == ["pending", "condition_checked", "skipped"]
        assert harness.conn.commands_run == []

    @pytest.mark.asyncio
    async def test_true_condition_runs(self, harness):
        response = await harness.run({
            "name": "always", "command": "touch /x", "with": {"condition": "port == 8080"},
        })
        assert response.status == TaskStatus.CHANGED
        assert harness.conn.commands_run == [("touch /x", None)]

    @pytest.mark.asyncio
    async def test_skip_if_exists(self, harness):
        harness.conn.add_file("/srv/app/installed")
        response = await harness.run({
            "name": "install", "shell": "make install",
            "with": {"skip_if_exists": "{{ app_dir }}/installed"},
        })
        assert response.status == TaskStatus.SKIPPED
        assert "/srv/app/installed" in response.message
        assert harness.conn.commands_run == []

    @pytest.mark.asyncio
    async def test_skip_if_exists_missing_path(self, harness):
        response = await harness.run({
            "name": "install", "shell": "make install",
            "with": {"skip_if_exists": "/srv/app/installed"},
        })
        assert response.status == TaskStatus.CHANGED

    @pytest.mark.asyncio
    async def test_undefined_in_condition_fails(self, harness):
        response = await harness.run({
            "name": "bad", "command": "true", "with": {"condition": "(eq nope 1)"},
        })
        assert response.status == TaskStatus.FAILED
        assert "nope" in response.message
        assert harness.conn.commands_run == []

    @pytest.mark.asyncio
    async def test_earlier_response_visible(self, harness):
        await harness.run({"name": "first", "command": "true"})
        response = await harness.run({
            "name": "second", "echo": "x", "with": {"condition": "first.changed and responses['first'].rc == 0"},
        })
        assert response.status == TaskStatus.OK


class TestValidation:
    """Parameter errors never reach the connection."""

    @pytest.mark.asyncio
    async def test_missing_param(self, harness):
        response = await harness.run({"name": "copy", "copy": {"content": "x"}})
        assert response.status == TaskStatus.FAILED
        assert response.data["error"] == "ValidationError"
        assert harness.conn.commands_run == []
        assert harness.conn.files_put == []

    @pytest.mark.asyncio
    async def test_undefined_param(self, harness):
        response = await harness.run({"name": "say", "echo": "{{ missing_var }}"})
        assert response.status == TaskStatus.FAILED
        assert "missing_var" in response.message


class TestRetries:
    """Test transient and explicit retries."""

    @pytest.mark.asyncio
    async def test_transient_retry_succeeds(self, harness):
        harness.conn.transient_failures = 2
        response = await harness.run({"name": "cmd", "command": "true"})
        assert response.status == TaskStatus.CHANGED
        assert response.attempts == 3
        assert response.history.count("dispatched") == 3
        assert response.history[-1] == "completed"

    @pytest.mark.asyncio
    async def test_transient_retries_exhausted(self, harness):
        harness.conn.transient_failures = 5
        response = await harness.run({"name": "cmd", "command": "true"})
        assert response.status == TaskStatus.FAILED
        assert response.attempts == 3
        assert response.data["error"] == "ConnectionError"
        assert response.history[-1] == "failed"

    @pytest.mark.asyncio
    async def test_no_transient_retries(self):
        harness = Harness(transient_retries=0)
        harness.conn.transient_failures = 1
        response = await harness.run({"name": "cmd", "command": "true"})
        assert response.status == TaskStatus.FAILED
        assert response.attempts == 1

    @pytest.mark.asyncio
    async def test_execution_failure_not_retried_by_default(self, harness):
        harness.conn.results["false"] = CommandResult(exit_code=1, stderr="nope")
        response = await harness.run({"name": "cmd", "command": "false"})
        assert response.status == TaskStatus.FAILED
        assert response.rc == 1
        assert response.attempts == 1
        assert len(harness.conn.commands_run) == 1

    @pytest.mark.asyncio
    async def test_explicit_retry(self, harness):
        harness.conn.results["flaky"] = CommandResult(exit_code=1)
        calls = []

        def on_run(command):
            calls.append(command)
            if len(calls) == 2:
                del harness.conn.results["flaky"]

        harness.conn.on_run = on_run
        response = await harness.run({
            "name": "cmd", "command": "flaky", "and": {"retry": 3, "delay": 0},
        })
        assert response.status == TaskStatus.CHANGED
        assert response.attempts == 2

    @pytest.mark.asyncio
    async def test_explicit_retry_exhausted(self, harness):
        harness.conn.results["false"] = CommandResult(exit_code=1)
        response = await harness.run({
            "name": "cmd", "command": "false", "and": {"retry": 2},
        })
        assert response.status == TaskStatus.FAILED
        assert response.attempts == 3
        assert len(harness.conn.commands_run) == 3


class TestLoops:
    """Test ``with.items``."""

    @pytest.mark.asyncio
    async def test_items(self, harness):
        response = await harness.run({
            "name": "loop", "command": "touch {{ item }}", "with": {"items": ["/a", "/b"]},
        })
        assert response.status == TaskStatus.CHANGED
        assert [r.data["item"] for r in response.items] == ["/a", "/b"]
        assert [c for c, _ in harness.conn.commands_run] == ["touch /a", "touch /b"]
        assert response.as_vars()["results"][1]["changed"]

    @pytest.mark.asyncio
    async def test_items_from_expression(self, harness):
        harness.host.vars["users"] = ["ann", "bob"]
        response = await harness.run({"name": "loop", "echo": "{{ item }}", "with": {"items": "users"}})
        assert [r.message for r in response.items] == ["ann", "bob"]

    @pytest.mark.asyncio
    async def test_failed_item_fails_task(self, harness):
        response = await harness.run({
            "name": "loop", "fail": "boom",
            "with": {"items": ["a", "b"], "condition": "item == 'b'"},
        })
        assert response.status == TaskStatus.FAILED
        assert [r.status for r in response.items] == [TaskStatus.SKIPPED, TaskStatus.FAILED]
        assert response.message.startswith("1 of 2")

    @pytest.mark.asyncio
    async def test_items_not_a_list(self, harness):
        response = await harness.run({"name": "loop", "echo": "x", "with": {"items": "port"}})
        assert response.status == TaskStatus.FAILED


class TestPostLogic:
    """Test ``and`` handling and host state updates."""

    @pytest.mark.asyncio
    async def test_ignore_errors(self, harness):
        response = await harness.run({"name": "f", "fail": "boom", "and": {"ignore_errors": True}})
        assert response.status == TaskStatus.OK
        assert response.data["ignored_failure"]

    @pytest.mark.asyncio
    async def test_notify_only_on_change(self, harness):
        await harness.run({"name": "quiet", "echo": "x", "with": {"subscribe": "restart"}})
        assert harness.state.pending_handlers == []
        await harness.run({"name": "loud", "command": "true", "with": {"subscribe": "restart"}})
        await harness.run({"name": "again", "command": "true", "and": {"notify": ["restart", "reload"]}})
        assert harness.state.pending_handlers == ["restart", "reload"]

    @pytest.mark.asyncio
    async def test_set_variables(self, harness):
        response = await harness.run({"name": "set", "set": {"port": 9090, "role": "web"}})
        assert response.status == TaskStatus.OK
        variables = harness.state.effective_vars()
        assert variables["port"] == 9090
        assert variables["role"] == "web"

    @pytest.mark.asyncio
    async def test_facts_merged(self, harness):
        harness.conn.results["uname -s"] = CommandResult(exit_code=0, stdout="Linux\n")
        harness.conn.results["id -un"] = CommandResult(exit_code=1)
        await harness.run({"name": "facts", "facts": {}})
        assert harness.host.facts["system"] == "Linux"
        assert "user_id" not in harness.host.facts
        assert harness.state.effective_vars()["system"] == "Linux"

    @pytest.mark.asyncio
    async def test_delegate_to(self, harness):
        await harness.run({
            "name": "register", "command": "true",
            "with": {"delegate_to": "{{ lb }}", "vars": {"lb": "lb1"}},
        })
        assert harness.requested == ["lb1"]

    @pytest.mark.asyncio
    async def test_records_response(self, harness):
        await harness.run({"name": "say", "echo": "hi"})
        assert harness.state.response_for("say").message == "hi"


class TestIdempotence:
    """Modules with a query change nothing when already converged."""

    @pytest.mark.asyncio
    async def test_copy_twice(self, harness):
        task = {"name": "conf", "copy": {"dest": "/etc/app.conf", "content": "port={{ port }}"}}
        first = await harness.run(task)
        second = await harness.run(task)

        assert first.status == TaskStatus.CHANGED
        assert "applying" in first.history
        assert second.status == TaskStatus.OK
        assert "no_change_needed" in second.history
        assert "applying" not in second.history
        assert harness.conn.files_put == ["/etc/app.conf"]
        assert harness.conn.files["/etc/app.conf"]["data"] == b"port=8080"

    @pytest.mark.asyncio
    async def test_copy_content_change(self, harness):
        harness.conn.add_file("/etc/app.conf", b"port=1")
        response = await harness.run({"name": "conf", "copy": {"dest": "/etc/app.conf", "content": "port=2"}})
        assert response.status == TaskStatus.CHANGED
        assert response.data["checksum"] == hashlib.sha256(b"port=2").hexdigest()

    @pytest.mark.asyncio
    async def test_copy_onto_directory_fails(self, harness):
        harness.conn.dirs.add("/etc")
        response = await harness.run({"name": "conf", "copy": {"dest": "/etc", "content": "x"}})
        assert response.status == TaskStatus.FAILED
        assert harness.conn.files_put == []

    @pytest.mark.asyncio
    async def test_file_directory(self, harness):
        task = {"name": "dir", "file": {"path": "/srv/data", "state": "directory"}}
        first = await harness.run(task)
        assert first.status == TaskStatus.CHANGED
        assert harness.conn.commands_run == [("mkdir -p -- /srv/data", None)]

        harness.conn.dirs.add("/srv/data")
        second = await harness.run(task)
        assert second.status == TaskStatus.OK
        assert len(harness.conn.commands_run) == 1

    @pytest.mark.asyncio
    async def test_file_absent(self, harness):
        response = await harness.run({"name": "gone", "file": {"path": "/tmp/x", "state": "absent"}})
        assert response.status == TaskStatus.OK
        assert harness.conn.commands_run == []
