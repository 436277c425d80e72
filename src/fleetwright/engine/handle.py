"""
Fleetwright Host Run State and Task Handle

``HostRunState`` is everything the engine remembers about one host during
a run. It is owned by exactly one worker at a time, so it needs no locking.

``TaskHandle`` is the narrow view a module gets while it runs: effective
variables, template helpers, the connection and prior responses.
"""

import keyword
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence

from fleetwright.engine.blend import blend
from fleetwright.engine.errors import ExecutionError
from fleetwright.engine.inventory import Host, Inventory
from fleetwright.engine.results import TaskRequest, TaskResponse
from fleetwright.engine.templating import TemplateEngine

if TYPE_CHECKING:
    from fleetwright.config import RunConfig
    from fleetwright.connections.base import CommandResult, Connection
    from fleetwright.engine.playbook import Play, Task

_DEFAULT_USER = object()


class HostRunState:
    """Per-host state for the whole run."""

    def __init__(self, host: Host, inventory: Inventory, config: 'RunConfig'):
        self.host = host
        self.inventory = inventory
        self.config = config
        self.play: Optional['Play'] = None
        # Ordered log of every response this run
        self.responses: List[TaskResponse] = []
        self._latest: Dict[str, TaskResponse] = {}
        # Reset at the start of each play
        self.failed = False
        self.pending_handlers: List[str] = []

    @property
    def name(self) -> str:
        return self.host.name

    @property
    def play_vars(self) -> Mapping[str, Any]:
        return self.play.vars if self.play is not None else {}

    def begin_play(self, play: 'Play') -> None:
        self.play = play
        self.failed = False
        self.pending_handlers = []

    def effective_vars(self, injected: Sequence[Optional[Mapping[str, Any]]] = ()) -> Dict[str, Any]:
        """
        Compute the variables a task sees, lowest precedence first.

        Recomputed on every call, so facts and ``set`` variables recorded by
        earlier tasks are always visible.

        Args:
            injected: Per-task layers (``with.vars``, then the loop binding)

        Returns:
            A fresh dictionary including the read-only names
        """
        play = self.play
        layers: List[Optional[Mapping[str, Any]]] = [
            self.config.defaults,
            play.defaults if play is not None else None,
        ]
        layers.extend(self.inventory.group_layers(self.host.name))
        layers.extend([
            self.host.vars,
            self.host.facts,
            self.play_vars,
            self.config.extra_vars,
            self.host.runtime_vars,
        ])
        layers.extend(injected)

        result = blend(layers)
        responses = {name: r.as_vars() for name, r in self._latest.items()}
        for name, view in responses.items():
            if name.isidentifier() and not keyword.iskeyword(name) and name not in result:
                result[name] = view
        result['responses'] = responses
        result['inventory_hostname'] = self.host.name
        result['group_names'] = self.inventory.group_names(self.host.name)
        return result

    def record(self, response: TaskResponse) -> None:
        self.responses.append(response)
        self._latest[response.task_name] = response

    def response_for(self, task_name: str) -> Optional[TaskResponse]:
        return self._latest.get(task_name)

    def notify(self, names: Sequence[str]) -> None:
        """Enqueue handler names, keeping first-subscription order."""
        for name in names:
            if name not in self.pending_handlers:
                self.pending_handlers.append(name)

    def drain_handlers(self) -> List[str]:
        names = self.pending_handlers
        self.pending_handlers = []
        return names


class TaskHandle:
    """What a module sees while it runs for one (host, task, item)."""

    def __init__(
        self,
        state: HostRunState,
        task: 'Task',
        connection: 'Connection',
        templar: TemplateEngine,
        check_mode: bool = False,
        injected: Sequence[Optional[Mapping[str, Any]]] = (),
    ):
        self.state = state
        self.task = task
        self.connection = connection
        self.templar = templar
        self.check_mode = check_mode
        self.injected = list(injected)
        self.request: Optional[TaskRequest] = None

    @property
    def host(self) -> str:
        return self.state.name

    @property
    def vars(self) -> Dict[str, Any]:
        return self.state.effective_vars(self.injected)

    @property
    def params(self) -> Dict[str, Any]:
        return self.request.params if self.request is not None else {}

    def render(self, value: Any) -> Any:
        return self.templar.render_recursive(value, self.vars)

    def evaluate(self, condition: Any) -> bool:
        return self.templar.evaluate_condition(condition, self.vars)

    def response(self, task_name: str) -> Optional[TaskResponse]:
        """Latest response of an earlier task on this host."""
        return self.state.response_for(task_name)

    async def run(self, command: str, as_user: Any = _DEFAULT_USER, check: bool = False) -> 'CommandResult':
        """
        Run a command through the task's connection.

        Args:
            command: Shell command
            as_user: Override the task's ``sudo`` identity (None runs as the
                connection user)
            check: Raise ExecutionError on a non-zero exit code

        Returns:
            CommandResult
        """
        if as_user is _DEFAULT_USER:
            as_user = self.request.sudo if self.request is not None else None
        result = await self.connection.run(command, as_user=as_user)
        if check and not result.success:
            raise ExecutionError(
                self.task.module,
                f"command exited with {result.exit_code}",
                rc=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                host=self.host,
                task=self.task.name,
            )
        return result
