"""
Fleetwright Result Classes

Data structures for task requests/responses, per-host statistics and
play/run results.
"""

import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from fleetwright.engine.errors import ExitCode


class TaskStatus(Enum):
    """Status of a task execution."""
    OK = "ok"
    CHANGED = "changed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskRequest:
    """Rendered, validated parameters for one (host, task, loop item)."""

    host: str
    task_name: str
    module: str
    params: Dict[str, Any]
    item: Any = None
    sudo: Optional[str] = None


@dataclass
class TaskResponse:
    """Result of running a single task on a single host."""

    host: str
    task_name: str
    status: TaskStatus
    message: str = ""
    rc: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    # Module-specific structured output
    data: Dict[str, Any] = field(default_factory=dict)
    # Merged into the gathered-facts layer
    facts: Dict[str, Any] = field(default_factory=dict)
    # Merged into the runtime ``set`` layer
    variables: Dict[str, Any] = field(default_factory=dict)
    duration: float = 0.0
    attempts: int = 1
    # Per-item responses when the task loops
    items: Optional[List['TaskResponse']] = None
    # State machine transitions, by state name
    history: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == TaskStatus.FAILED

    @property
    def changed(self) -> bool:
        return self.status == TaskStatus.CHANGED

    @property
    def skipped(self) -> bool:
        return self.status == TaskStatus.SKIPPED

    @property
    def ok(self) -> bool:
        """Check if the task succeeded (ok or changed)."""
        return self.status in (TaskStatus.OK, TaskStatus.CHANGED)

    def as_vars(self) -> Dict[str, Any]:
        """View of this response for templating in later tasks."""
        result = {
            'status': self.status.value,
            'changed': self.changed,
            'failed': self.failed,
            'skipped': self.skipped,
            'msg': self.message,
            'rc': self.rc,
            'stdout': self.stdout,
            'stderr': self.stderr,
            'stdout_lines': self.stdout.splitlines() if self.stdout else [],
            'result': dict(self.data),
        }
        if self.items is not None:
            result['results'] = [r.as_vars() for r in self.items]
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result: Dict[str, Any] = {
            "host": self.host,
            "task": self.task_name,
            "status": self.status.value,
            "duration": round(self.duration, 3),
        }
        if self.message:
            result["msg"] = self.message
        if self.rc is not None:
            result["rc"] = self.rc
        if self.stdout:
            result["stdout"] = self.stdout
        if self.stderr:
            result["stderr"] = self.stderr
        if self.data:
            result["data"] = self.data
        if self.attempts > 1:
            result["attempts"] = self.attempts
        if self.items is not None:
            result["items"] = [r.to_dict() for r in self.items]
        return result


@dataclass
class HostStats:
    """Statistics for a single host across all tasks."""

    host: str
    ok: int = 0
    changed: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, status: TaskStatus) -> None:
        """Record a task result status."""
        if status == TaskStatus.OK:
            self.ok += 1
        elif status == TaskStatus.CHANGED:
            self.changed += 1
        elif status == TaskStatus.SKIPPED:
            self.skipped += 1
        elif status == TaskStatus.FAILED:
            self.failed += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "ok": self.ok,
            "changed": self.changed,
            "skipped": self.skipped,
            "failed": self.failed,
        }

    @property
    def has_failures(self) -> bool:
        return self.failed > 0


class RunStats:
    """
    Aggregate per-host counters for a run.

    This is the only state written from more than one host worker, so every
    increment happens under a lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hosts: Dict[str, HostStats] = {}

    def record(self, host: str, status: TaskStatus) -> None:
        """Atomically count one task outcome for ``host``."""
        with self._lock:
            stats = self._hosts.get(host)
            if stats is None:
                stats = self._hosts[host] = HostStats(host)
            stats.record(status)

    def snapshot(self) -> Dict[str, HostStats]:
        """Return a copy of the counters, safe to read while workers run."""
        with self._lock:
            return {
                name: HostStats(name, s.ok, s.changed, s.skipped, s.failed)
                for name, s in self._hosts.items()
            }

    def get(self, host: str) -> HostStats:
        return self.snapshot().get(host, HostStats(host))

    @property
    def failed_hosts(self) -> List[str]:
        return sorted(h for h, s in self.snapshot().items() if s.has_failures)

    def to_dict(self) -> Dict[str, Any]:
        return {h: s.to_dict() for h, s in sorted(self.snapshot().items())}


@dataclass
class PlayResult:
    """Result of executing a single play."""

    play_name: str
    hosts: List[str]
    responses: List[TaskResponse] = field(default_factory=list)
    failed_hosts: List[str] = field(default_factory=list)
    # Set when any_errors_fatal stopped the run or it was cancelled
    aborted: bool = False

    def add_response(self, response: TaskResponse) -> None:
        self.responses.append(response)

    def responses_for(self, host: str) -> List[TaskResponse]:
        return [r for r in self.responses if r.host == host]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_hosts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "play": self.play_name,
            "hosts": self.hosts,
            "tasks": [r.to_dict() for r in self.responses],
            "failed_hosts": self.failed_hosts,
            "aborted": self.aborted,
        }


@dataclass
class RunResult:
    """Result of executing every play of a run."""

    play_results: List[PlayResult] = field(default_factory=list)
    stats: RunStats = field(default_factory=RunStats)
    cancelled: bool = False
    ignore_failures: bool = False

    def add_play_result(self, result: PlayResult) -> None:
        self.play_results.append(result)

    @property
    def failed_hosts(self) -> List[str]:
        return self.stats.failed_hosts

    @property
    def success(self) -> bool:
        """True if no host ended the run with a failed task."""
        return not self.failed_hosts

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return ExitCode.KEYBOARD_INTERRUPT
        if self.success or self.ignore_failures:
            return ExitCode.SUCCESS
        return ExitCode.HOST_FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plays": [p.to_dict() for p in self.play_results],
            "stats": self.stats.to_dict(),
            "cancelled": self.cancelled,
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)
