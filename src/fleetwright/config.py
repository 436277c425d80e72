"""
Fleetwright Configuration

Run-level settings consumed by the coordinator, orchestrator and task
runner.
"""

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional

ENV_PREFIX = 'FLEETWRIGHT_'


@dataclass
class RunConfig:
    """
    Configuration for a run.

    Attributes:
        forks: Maximum number of hosts worked on concurrently
        check_mode: Report what would change without changing anything
        batch_size: Default hosts per batch when a play sets none (None = all)
        transient_retries: Retries after a transient connection failure
        retry_delay: Seconds to wait between those retries
        operation_timeout: Seconds allowed per connection operation (None = unbounded)
        connect_timeout: Seconds allowed to establish a connection
        default_connection: Connection type for hosts that name none
        tags: Only run tasks carrying one of these tags (empty = all)
        limit: Host selector intersected with every play's hosts
        extra_vars: Variables blended at the play-vars layer, over play vars
        defaults: Lowest precedence variables for every host
        ignore_failures: Exit with success even when hosts failed
        verbosity: Number of -v flags
    """

    forks: int = 5
    check_mode: bool = False
    batch_size: Optional[int] = None
    transient_retries: int = 2
    retry_delay: float = 1.0
    operation_timeout: Optional[float] = None
    connect_timeout: float = 30
    default_connection: str = 'ssh'
    tags: List[str] = field(default_factory=list)
    limit: Optional[str] = None
    extra_vars: Dict[str, Any] = field(default_factory=dict)
    defaults: Dict[str, Any] = field(default_factory=dict)
    ignore_failures: bool = False
    verbosity: int = 0

    def __post_init__(self):
        if self.forks < 1:
            raise ValueError("forks must be at least 1")
        if self.batch_size is not None and self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.transient_retries < 0:
            raise ValueError("transient_retries cannot be negative")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> 'RunConfig':
        """
        Build a config from ``FLEETWRIGHT_*`` environment variables.

        ``FLEETWRIGHT_FORKS=10`` sets ``forks``, ``FLEETWRIGHT_TAGS=web,db``
        sets ``tags``, ``FLEETWRIGHT_CHECK_MODE=yes`` sets ``check_mode``.
        Keyword overrides win over the environment.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if not raw or f.name in ('extra_vars', 'defaults'):
                continue
            values[f.name] = _coerce(f.name, raw)

        values.update(overrides)
        return cls(**values)

    def copy(self, **changes) -> 'RunConfig':
        return replace(self, **changes)


_BOOL_FIELDS = {'check_mode', 'ignore_failures'}
_INT_FIELDS = {'forks', 'batch_size', 'transient_retries', 'verbosity'}
_FLOAT_FIELDS = {'retry_delay', 'operation_timeout', 'connect_timeout'}


def _coerce(name: str, raw: str) -> Any:
    if name in _BOOL_FIELDS:
        return raw.strip().lower() in ('1', 'true', 'yes', 'on')
    if name in _INT_FIELDS:
        return int(raw)
    if name in _FLOAT_FIELDS:
        return float(raw)
    if name == 'tags':
        return [t.strip() for t in raw.split(',') if t.strip()]
    return raw


# Default configuration
_config = RunConfig()


def get_config() -> RunConfig:
    """Get the current run configuration."""
    return _config


def set_config(config: RunConfig) -> None:
    """Set the run configuration."""
    global _config
    _config = config


def configure(**kwargs) -> None:
    """Configure run settings."""
    global _config
    for key, value in kwargs.items():
        if hasattr(_config, key):
            setattr(_config, key, value)
