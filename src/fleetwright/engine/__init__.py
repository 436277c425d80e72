"""
Fleetwright Engine Module

Core execution engine: data model, variable blending, templating, the task
state machine and the play/run orchestration built on them.

The orchestrator and coordinator are imported from their own modules
(``fleetwright.engine.coordinator``) since they depend on connections
and modules, which in turn depend on this package.
"""

from fleetwright.engine.blend import blend, blend_into
from fleetwright.engine.errors import (
    ConnectionError,
    ExecutionError,
    ExitCode,
    ExpressionError,
    FleetwrightError,
    InventoryError,
    PlaybookError,
    TransferError,
    UndefinedVariable,
    ValidationError,
)
from fleetwright.engine.inventory import Group, Host, Inventory
from fleetwright.engine.playbook import Play, Task, TaskAnd, TaskWith
from fleetwright.engine.results import (
    PlayResult,
    RunResult,
    RunStats,
    TaskRequest,
    TaskResponse,
    TaskStatus,
)
from fleetwright.engine.templating import TemplateEngine

__all__ = [
    'blend',
    'blend_into',
    'ConnectionError',
    'ExecutionError',
    'ExitCode',
    'ExpressionError',
    'FleetwrightError',
    'InventoryError',
    'PlaybookError',
    'TransferError',
    'UndefinedVariable',
    'ValidationError',
    'Group',
    'Host',
    'Inventory',
    'Play',
    'Task',
    'TaskAnd',
    'TaskWith',
    'PlayResult',
    'RunResult',
    'RunStats',
    'TaskRequest',
    'TaskResponse',
    'TaskStatus',
    'TemplateEngine',
]
