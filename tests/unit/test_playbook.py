"""
Tests for the play and task model.
"""

import pytest

from fleetwright.engine.errors import PlaybookError
from fleetwright.engine.playbook import Play, Task, TaskAnd, TaskWith


class TestTaskFromDict:
    """Test building tasks from parsed mappings."""

    def test_explicit_module(self):
        task = Task.from_dict({"name": "say", "module": "echo", "params": {"msg": "hi"}})
        assert task.module == "echo"
        assert task.params == {"msg": "hi"}
        assert task.module_impl.name == "echo"

    def test_module_as_key(self):
        task = Task.from_dict({
            "name": "install",
            "copy": {"dest": "/tmp/x", "content": "y"},
            "with": {"condition": "(eq port 8080)", "subscribe": "restart", "tags": ["web"]},
            "and": {"notify": ["reload"], "retry": 2, "delay": 0.5, "ignore_errors": True},
        })
        assert task.module == "copy"
        assert task.with_.condition == "(eq port 8080)"
        assert task.with_.subscribe == ("restart",)
        assert task.tags == ("web",)
        assert task.and_ == TaskAnd(notify=("reload",), ignore_errors=True, retry=2, delay=0.5)
        assert task.handlers == ("restart", "reload")

    def test_string_shorthand(self):
        task = Task.from_dict({"name": "ls", "command": "ls -l /tmp"})
        assert task.params == {"cmd": "ls -l /tmp"}

    def test_name_defaults_to_module(self):
        assert Task.from_dict({"echo": {"msg": "x"}}).name == "echo"

    def test_unknown_module(self):
        """Unknown module kinds are rejected when the task is built."""
        with pytest.raises(PlaybookError, match="Unknown module"):
            Task.from_dict({"name": "x", "frobnicate": {}})

    def test_two_module_keys(self):
        with pytest.raises(PlaybookError):
            Task.from_dict({"name": "x", "echo": {"msg": "a"}, "fail": {}})

    def test_unknown_with_key(self):
        with pytest.raises(PlaybookError, match="when"):
            Task.from_dict({"name": "x", "echo": {"msg": "a"}, "with": {"when": "x"}})

    def test_items_must_be_list_or_expression(self):
        with pytest.raises(PlaybookError):
            TaskWith.from_dict({"items": 5})

    def test_negative_retry(self):
        with pytest.raises(PlaybookError):
            TaskAnd(retry=-1)

    def test_task_is_immutable(self):
        task = Task.from_dict({"name": "x", "echo": {"msg": "a"}})
        with pytest.raises(AttributeError):
            task.name = "y"


class TestPlayFromDict:
    """Test building plays."""

    def test_play(self):
        play = Play.from_dict({
            "name": "web",
            "hosts": "web",
            "vars": {"port": 80},
            "defaults": {"user": "app"},
            "batch_size": 2,
            "any_errors_fatal": True,
            "tasks": [{"name": "change", "echo": {"msg": "x"}, "with": {"subscribe": "restart"}}],
            "handlers": [{"name": "restart", "echo": {"msg": "restarting"}}],
        })
        assert play.hosts == "web"
        assert play.batch_size == 2
        assert play.any_errors_fatal
        assert play.handler_named("restart").module == "echo"
        assert play.handler_named("missing") is None

    @pytest.mark.parametrize("batch_size", ["many", [2]])
    def test_batch_size_not_integer(self, batch_size):
        with pytest.raises(PlaybookError, match="batch_size must be an integer"):
            Play.from_dict({"name": "p", "batch_size": batch_size})

    def test_batch_size_from_string(self):
        assert Play.from_dict({"name": "p", "batch_size": "3"}).batch_size == 3

    def test_unknown_handler_subscription(self):
        with pytest.raises(PlaybookError, match="unknown handler"):
            Play.from_dict({
                "name": "p",
                "tasks": [{"name": "t", "echo": {"msg": "x"}, "with": {"subscribe": "nope"}}],
            })

    def test_duplicate_handler(self):
        with pytest.raises(PlaybookError, match="duplicate"):
            Play.from_dict({
                "name": "p",
                "handlers": [{"name": "h", "echo": {"msg": "x"}}, {"name": "h", "echo": {"msg": "y"}}],
            })

    def test_bad_batch_size(self):
        with pytest.raises(PlaybookError):
            Play(name="p", batch_size=0)

    def test_unknown_play_key(self):
        with pytest.raises(PlaybookError):
            Play.from_dict({"name": "p", "roles": []})
