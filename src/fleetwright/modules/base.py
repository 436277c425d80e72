"""
Fleetwright Module Base

Base class and registry for all modules.

A module is a stateless singleton. The task runner calls ``validate`` on
the rendered parameters, then (for modules that can inspect current state)
``query`` and ``matches``, and finally ``execute`` when a change is needed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Type

from fleetwright.engine.errors import ValidationError
from fleetwright.engine.results import TaskResponse, TaskStatus

if TYPE_CHECKING:
    from fleetwright.engine.handle import TaskHandle


@dataclass
class ModuleResult:
    """Result of module execution."""

    changed: bool = False
    failed: bool = False
    skipped: bool = False
    msg: str = ""
    rc: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    # Merged into the host's gathered facts
    facts: Dict[str, Any] = field(default_factory=dict)
    # Merged into the host's runtime variables
    variables: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> TaskStatus:
        if self.skipped:
            return TaskStatus.SKIPPED
        if self.failed:
            return TaskStatus.FAILED
        if self.changed:
            return TaskStatus.CHANGED
        return TaskStatus.OK

    def to_response(self, host: str, task_name: str, **extra) -> TaskResponse:
        """Convert to TaskResponse."""
        return TaskResponse(
            host=host,
            task_name=task_name,
            status=self.status,
            message=self.msg,
            rc=self.rc,
            stdout=self.stdout,
            stderr=self.stderr,
            data=dict(self.data),
            facts=dict(self.facts),
            variables=dict(self.variables),
            **extra,
        )


def normalize_mode(module: str, value: Any) -> Optional[str]:
    """
    Normalize a file mode to a four digit octal string.

    Integers are taken as the already-parsed value (YAML ``0644`` is 420);
    strings are read as octal digits.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(module, f"invalid mode: {value!r}")
    if isinstance(value, int):
        number = value
    else:
        try:
            number = int(str(value).strip(), 8)
        except ValueError:
            raise ValidationError(module, f"invalid mode: {value!r}")
    if not 0 <= number <= 0o7777:
        raise ValidationError(module, f"mode out of range: {value!r}")
    return format(number, '04o')


class Module(ABC):
    """
    Base class for all modules.

    Subclasses set ``name``, ``required_params`` and ``optional_params``
    (with defaults) and implement ``execute``. Modules able to inspect the
    current state also implement ``query`` and ``matches``.
    """

    # Module name (used for registration)
    name: str = ""

    # Required parameters
    required_params: List[str] = []

    # Optional parameters with defaults
    optional_params: Dict[str, Any] = {}

    # Accept parameters not listed above (e.g. ``set``)
    free_form: bool = False

    def validate(self, raw_params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Check rendered parameters and fill in defaults.

        Never touches a connection.

        Raises:
            ValidationError: On missing, unknown or malformed parameters
        """
        if raw_params is None:
            raw_params = {}
        if not isinstance(raw_params, Mapping):
            raise ValidationError(self.name, "parameters must be a mapping")

        missing = [p for p in self.required_params if raw_params.get(p) is None]
        if missing:
            raise ValidationError(self.name, f"missing required parameter(s): {', '.join(missing)}")

        if not self.free_form:
            known = set(self.required_params) | set(self.optional_params)
            unknown = sorted(set(raw_params) - known)
            if unknown:
                raise ValidationError(self.name, f"unsupported parameter(s): {', '.join(unknown)}")

        params = dict(self.optional_params)
        params.update(raw_params)
        self.check_params(params)
        return params

    def check_params(self, params: Dict[str, Any]) -> None:
        """Module-specific validation hook; may normalize ``params`` in place."""

    async def query(self, handle: 'TaskHandle') -> Any:
        """Return the current state of the resource this task manages."""
        raise NotImplementedError

    def matches(self, current: Any, params: Dict[str, Any]) -> bool:
        """Return True if ``current`` already satisfies ``params``."""
        return False

    @property
    def has_query(self) -> bool:
        return type(self).query is not Module.query

    @abstractmethod
    async def execute(self, handle: 'TaskHandle', params: Dict[str, Any]) -> ModuleResult:
        """
        Apply the change.

        Returns:
            ModuleResult with execution outcome
        """

    def __repr__(self) -> str:
        return f"<Module {self.name}>"


# Module registry
_modules: Dict[str, Module] = {}
_modules_imported = False


def register_module(cls: Type[Module]) -> Type[Module]:
    """Decorator to register a module class; the registry holds one instance."""
    if not cls.name:
        raise ValueError(f"{cls.__name__} has no module name")
    _modules[cls.name] = cls()
    return cls


def get_module(name: str) -> Optional[Module]:
    """Get a module by name."""
    _ensure_modules_imported()
    return _modules.get(name)


def list_modules() -> List[str]:
    """List all registered module names."""
    _ensure_modules_imported()
    return sorted(_modules)


def _ensure_modules_imported() -> None:
    """Ensure all modules have been imported."""
    global _modules_imported
    if not _modules_imported:
        _import_builtin_modules()
        _modules_imported = True


def _import_builtin_modules() -> None:
    """Import all built-in modules to register them."""
    # These imports trigger the @register_module decorators
    from fleetwright.modules import builtin_command
    from fleetwright.modules import builtin_copy
    from fleetwright.modules import builtin_file
    from fleetwright.modules import builtin_stat
    from fleetwright.modules import builtin_echo
    from fleetwright.modules import builtin_assert
    from fleetwright.modules import builtin_fail
    from fleetwright.modules import builtin_set
    from fleetwright.modules import builtin_facts
