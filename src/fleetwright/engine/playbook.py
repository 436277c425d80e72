"""
Fleetwright Play and Task Model

Immutable plays and tasks, built from already-parsed mappings. A task's
module implementation is resolved from the registry when the task is
built, so an unknown module kind is reported before anything runs.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple, Union

from fleetwright.engine.errors import PlaybookError

if TYPE_CHECKING:
    from fleetwright.modules.base import Module

TASK_KEYS = ('name', 'module', 'params', 'with', 'and')
WITH_KEYS = ('condition', 'skip_if_exists', 'sudo', 'items', 'delegate_to', 'subscribe', 'tags', 'vars')
AND_KEYS = ('notify', 'ignore_errors', 'retry', 'delay')
PLAY_KEYS = (
    'name', 'hosts', 'tasks', 'handlers', 'vars', 'defaults',
    'batch_size', 'any_errors_fatal', 'gather_facts',
)

# Shorthand ``kind: "string"`` maps to this parameter
SHORTHAND_PARAMS = {
    'command': 'cmd',
    'shell': 'cmd',
    'echo': 'msg',
    'fail': 'msg',
}


def _names(value: Any, what: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise PlaybookError(f"'{what}' must be a string or a list of strings")


def _check_keys(data: Mapping[str, Any], allowed: Tuple[str, ...], where: str) -> None:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise PlaybookError(f"Unknown key(s) in {where}: {', '.join(unknown)}")


@dataclass(frozen=True)
class TaskWith:
    """Pre-logic: decides whether, where and how often a task runs."""

    condition: Optional[Union[str, bool]] = None
    skip_if_exists: Optional[str] = None
    sudo: Optional[str] = None
    # A literal list, or an expression yielding one
    items: Optional[Union[str, List[Any]]] = None
    delegate_to: Optional[str] = None
    subscribe: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    vars: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'TaskWith':
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise PlaybookError("'with' must be a mapping")
        _check_keys(data, WITH_KEYS, "'with'")

        items = data.get('items')
        if items is not None and not isinstance(items, (str, list, tuple)):
            raise PlaybookError("'with.items' must be a list or an expression")
        task_vars = data.get('vars') or {}
        if not isinstance(task_vars, Mapping):
            raise PlaybookError("'with.vars' must be a mapping")

        return cls(
            condition=data.get('condition'),
            skip_if_exists=data.get('skip_if_exists'),
            sudo=data.get('sudo'),
            items=list(items) if isinstance(items, tuple) else items,
            delegate_to=data.get('delegate_to'),
            subscribe=_names(data.get('subscribe'), 'with.subscribe'),
            tags=_names(data.get('tags'), 'with.tags'),
            vars=dict(task_vars),
        )


@dataclass(frozen=True)
class TaskAnd:
    """Post-logic: what happens after the module ran."""

    notify: Tuple[str, ...] = ()
    ignore_errors: bool = False
    # Extra attempts after an execution failure
    retry: int = 0
    # Seconds between those attempts
    delay: float = 0

    def __post_init__(self):
        if self.retry < 0:
            raise PlaybookError("'and.retry' cannot be negative")
        if self.delay < 0:
            raise PlaybookError("'and.delay' cannot be negative")

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'TaskAnd':
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise PlaybookError("'and' must be a mapping")
        _check_keys(data, AND_KEYS, "'and'")
        try:
            return cls(
                notify=_names(data.get('notify'), 'and.notify'),
                ignore_errors=bool(data.get('ignore_errors', False)),
                retry=int(data.get('retry', 0)),
                delay=float(data.get('delay', 0)),
            )
        except (TypeError, ValueError) as e:
            raise PlaybookError(f"Invalid 'and' block: {e}")


@dataclass(frozen=True)
class Task:
    """Represents a single task in a play."""

    name: str
    module: str
    params: Dict[str, Any] = field(default_factory=dict)
    with_: TaskWith = field(default_factory=TaskWith)
    and_: TaskAnd = field(default_factory=TaskAnd)
    module_impl: 'Module' = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        from fleetwright.modules.base import get_module

        impl = get_module(self.module)
        if impl is None:
            raise PlaybookError(f"Unknown module '{self.module}' in task '{self.name}'")
        object.__setattr__(self, 'module_impl', impl)

    @property
    def handlers(self) -> Tuple[str, ...]:
        """Handler names enqueued when this task changes something."""
        return self.with_.subscribe + tuple(n for n in self.and_.notify if n not in self.with_.subscribe)

    @property
    def tags(self) -> Tuple[str, ...]:
        return self.with_.tags

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Task':
        """
        Build a task from a parsed mapping.

        The module kind is given either explicitly::

            {'name': 'x', 'module': 'copy', 'params': {...}}

        or as the single key that is not a task keyword::

            {'name': 'x', 'copy': {...}, 'with': {...}}
        """
        if not isinstance(data, Mapping):
            raise PlaybookError("A task must be a mapping")

        name = data.get('name')
        if 'module' in data:
            _check_keys(data, TASK_KEYS, f"task '{name}'")
            module = data['module']
            params = data.get('params') or {}
        else:
            kinds = [k for k in data if k not in TASK_KEYS]
            if len(kinds) != 1:
                raise PlaybookError(
                    f"Task '{name}' must name exactly one module, found: {', '.join(map(str, kinds)) or 'none'}"
                )
            module = kinds[0]
            params = data[module]
            if 'params' in data:
                raise PlaybookError(f"Task '{name}' uses 'params' without 'module'")

        if isinstance(params, str) and module in SHORTHAND_PARAMS:
            params = {SHORTHAND_PARAMS[module]: params}
        elif params is None:
            params = {}
        if not isinstance(params, Mapping):
            raise PlaybookError(f"Parameters of task '{name}' must be a mapping")

        return cls(
            name=str(name) if name is not None else module,
            module=module,
            params=dict(params),
            with_=TaskWith.from_dict(data.get('with')),
            and_=TaskAnd.from_dict(data.get('and')),
        )


@dataclass(frozen=True)
class Play:
    """Represents a play: an ordered task list applied to selected hosts."""

    name: str
    hosts: str = 'all'
    tasks: Tuple[Task, ...] = ()
    handlers: Tuple[Task, ...] = ()
    vars: Dict[str, Any] = field(default_factory=dict)
    # Lowest precedence variables
    defaults: Dict[str, Any] = field(default_factory=dict)
    batch_size: Optional[int] = None
    any_errors_fatal: bool = False
    gather_facts: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'tasks', tuple(self.tasks))
        object.__setattr__(self, 'handlers', tuple(self.handlers))
        if self.batch_size is not None and self.batch_size < 1:
            raise PlaybookError(f"Play '{self.name}': batch_size must be at least 1")

        seen = set()
        for handler in self.handlers:
            if handler.name in seen:
                raise PlaybookError(f"Play '{self.name}': duplicate handler '{handler.name}'")
            seen.add(handler.name)

        for task in self.tasks + self.handlers:
            missing = [n for n in task.handlers if n not in seen]
            if missing:
                raise PlaybookError(
                    f"Task '{task.name}' subscribes to unknown handler(s): {', '.join(missing)}"
                )

    def handler_named(self, name: str) -> Optional[Task]:
        for handler in self.handlers:
            if handler.name == name:
                return handler
        return None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Play':
        """Build a play (and its tasks) from a parsed mapping."""
        if not isinstance(data, Mapping):
            raise PlaybookError("A play must be a mapping")
        name = str(data.get('name', 'unnamed play'))
        _check_keys(data, PLAY_KEYS, f"play '{name}'")

        for key in ('vars', 'defaults'):
            if not isinstance(data.get(key) or {}, Mapping):
                raise PlaybookError(f"Play '{name}': '{key}' must be a mapping")

        batch_size = data.get('batch_size')
        if batch_size is not None:
            try:
                batch_size = int(batch_size)
            except (TypeError, ValueError):
                raise PlaybookError(f"Play '{name}': batch_size must be an integer, got {batch_size!r}")
        return cls(
            name=name,
            hosts=str(data.get('hosts', 'all')),
            tasks=tuple(Task.from_dict(t) for t in data.get('tasks') or ()),
            handlers=tuple(Task.from_dict(t) for t in data.get('handlers') or ()),
            vars=dict(data.get('vars') or {}),
            defaults=dict(data.get('defaults') or {}),
            batch_size=batch_size,
            any_errors_fatal=bool(data.get('any_errors_fatal', False)),
            gather_facts=bool(data.get('gather_facts', False)),
        )
