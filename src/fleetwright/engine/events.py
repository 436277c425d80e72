"""
Fleetwright Reporting Events

One ``TaskEvent`` is delivered to every listener after each task finishes
on a host. Output formatting is left to listeners; the default one logs.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict

from fleetwright.engine.results import TaskResponse, TaskStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskEvent:
    """A finished task on one host."""

    host: str
    task: str
    status: TaskStatus
    message: str
    duration: float
    play: str = ""
    handler: bool = False

    @classmethod
    def from_response(cls, response: TaskResponse, play: str = "", handler: bool = False) -> 'TaskEvent':
        return cls(
            host=response.host,
            task=response.task_name,
            status=response.status,
            message=response.message,
            duration=response.duration,
            play=play,
            handler=handler,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "task": self.task,
            "status": self.status.value,
            "msg": self.message,
            "duration": round(self.duration, 3),
            "play": self.play,
            "handler": self.handler,
        }


Listener = Callable[[TaskEvent], None]

_LEVELS = {
    TaskStatus.OK: logging.INFO,
    TaskStatus.CHANGED: logging.INFO,
    TaskStatus.SKIPPED: logging.DEBUG,
    TaskStatus.FAILED: logging.ERROR,
}


def log_event(event: TaskEvent) -> None:
    """Default listener: log each event at a level matching its status."""
    kind = "handler" if event.handler else "task"
    if event.message:
        logger.log(
            _LEVELS[event.status], "%s: [%s] %s %s (%.2fs): %s",
            event.status.value, event.host, kind, event.task, event.duration, event.message,
        )
    else:
        logger.log(
            _LEVELS[event.status], "%s: [%s] %s %s (%.2fs)",
            event.status.value, event.host, kind, event.task, event.duration,
        )
