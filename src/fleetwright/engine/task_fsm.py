"""
Fleetwright Task State Machine

Runs one task on one host::

    PENDING -> CONDITION_CHECKED -> SKIPPED
                                 -> DISPATCHED -> QUERIED -> NO_CHANGE_NEEDED -> COMPLETED
                                                          -> APPLYING -> COMPLETED | FAILED

Modules without a query go straight from DISPATCHED to APPLYING. Any
non-terminal state may fail. A retry re-enters DISPATCHED.
"""

import asyncio
import enum
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fleetwright.engine.errors import (
    ConnectionError,
    ExecutionError,
    ExpressionError,
    FleetwrightError,
    is_transient,
)
from fleetwright.engine.handle import HostRunState, TaskHandle
from fleetwright.engine.playbook import Task
from fleetwright.engine.results import TaskRequest, TaskResponse, TaskStatus
from fleetwright.engine.templating import TemplateEngine
from fleetwright.modules.base import ModuleResult

logger = logging.getLogger(__name__)


class TaskState(enum.Enum):
    PENDING = 'pending'
    CONDITION_CHECKED = 'condition_checked'
    SKIPPED = 'skipped'
    DISPATCHED = 'dispatched'
    QUERIED = 'queried'
    NO_CHANGE_NEEDED = 'no_change_needed'
    APPLYING = 'applying'
    COMPLETED = 'completed'
    FAILED = 'failed'


TERMINAL_STATES = frozenset({TaskState.SKIPPED, TaskState.COMPLETED, TaskState.FAILED})

TRANSITIONS = {
    TaskState.PENDING: {TaskState.CONDITION_CHECKED},
    TaskState.CONDITION_CHECKED: {TaskState.SKIPPED, TaskState.DISPATCHED},
    TaskState.DISPATCHED: {TaskState.QUERIED, TaskState.APPLYING, TaskState.DISPATCHED},
    TaskState.QUERIED: {TaskState.NO_CHANGE_NEEDED, TaskState.APPLYING, TaskState.DISPATCHED},
    TaskState.NO_CHANGE_NEEDED: {TaskState.COMPLETED},
    TaskState.APPLYING: {TaskState.COMPLETED, TaskState.DISPATCHED},
}


class TaskIteration:
    """Tracks the state of one loop iteration and its transition history."""

    def __init__(self, item: Any = None):
        self.item = item
        self.state = TaskState.PENDING
        self.history: List[TaskState] = [TaskState.PENDING]
        self.attempts = 0

    def advance(self, new_state: TaskState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Task already finished in state {self.state.value}")
        if new_state != TaskState.FAILED and new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    @property
    def history_names(self) -> List[str]:
        return [s.value for s in self.history]


ConnectionResolver = Callable[[str], Awaitable[Any]]


def aggregate_status(statuses: List[TaskStatus]) -> TaskStatus:
    """Any FAILED wins, then any CHANGED; all SKIPPED is SKIPPED; otherwise OK."""
    if any(s == TaskStatus.FAILED for s in statuses):
        return TaskStatus.FAILED
    if any(s == TaskStatus.CHANGED for s in statuses):
        return TaskStatus.CHANGED
    if all(s == TaskStatus.SKIPPED for s in statuses):
        return TaskStatus.SKIPPED
    return TaskStatus.OK


class TaskRunner:
    """
    Drives tasks through the state machine for a single host.

    Args:
        state: The host's run state
        connection_for: Coroutine returning the connection for a host name
        templar: Template engine
        transient_retries: Retries allowed after a transient connection error
        retry_delay: Seconds between those retries
        check_mode: Whether the run is a dry run
    """

    def __init__(
        self,
        state: HostRunState,
        connection_for: ConnectionResolver,
        templar: TemplateEngine,
        transient_retries: int = 2,
        retry_delay: float = 1.0,
        check_mode: bool = False,
    ):
        self.state = state
        self.connection_for = connection_for
        self.templar = templar
        self.transient_retries = transient_retries
        self.retry_delay = retry_delay
        self.check_mode = check_mode

    async def run(self, task: Task) -> TaskResponse:
        """
        Run ``task`` (every loop item) and record the aggregate response.

        Never raises for task-scoped failures; they become FAILED responses.
        """
        start = time.monotonic()
        host = self.state.name

        try:
            base_vars = self.state.effective_vars([task.with_.vars])
            items = self._resolve_items(task, base_vars)
            target = host
            if task.with_.delegate_to:
                target = str(self.templar.render(task.with_.delegate_to, base_vars))
            connection = await self.connection_for(target)
        except FleetwrightError as e:
            response = self._failure(task, e, TaskIteration())
        else:
            if items is None:
                response = await self._run_iteration(task, connection, TaskIteration())
            else:
                iterations = [
                    await self._run_iteration(task, connection, TaskIteration(item), looped=True)
                    for item in items
                ]
                response = TaskResponse(
                    host=host,
                    task_name=task.name,
                    status=aggregate_status([r.status for r in iterations]),
                    message=self._loop_message(iterations),
                    items=iterations,
                    attempts=max((r.attempts for r in iterations), default=1),
                )

        if response.failed and task.and_.ignore_errors:
            logger.info("[%s] %s: ignoring failure: %s", host, task.name, response.message)
            response.status = TaskStatus.OK
            response.data['ignored_failure'] = True

        response.duration = time.monotonic() - start
        if response.changed:
            self.state.notify(task.handlers)
        self.state.record(response)
        return response

    def _resolve_items(self, task: Task, variables: Dict[str, Any]) -> Optional[List[Any]]:
        items = task.with_.items
        if items is None:
            return None
        if isinstance(items, str):
            value = self.templar.evaluate(items, variables)
        else:
            value = self.templar.render_recursive(items, variables)
        if not isinstance(value, (list, tuple)):
            raise ExpressionError(
                f"'with.items' must yield a list, got {type(value).__name__}", template=str(items)
            )
        return list(value)

    @staticmethod
    def _loop_message(iterations: List[TaskResponse]) -> str:
        failed = [r.message for r in iterations if r.failed]
        if failed:
            return f"{len(failed)} of {len(iterations)} item(s) failed: {failed[0]}"
        return f"{len(iterations)} item(s)"

    def _failure(self, task: Task, error: BaseException, iteration: TaskIteration) -> TaskResponse:
        if iteration.state not in TERMINAL_STATES:
            iteration.advance(TaskState.FAILED)
        if isinstance(error, FleetwrightError):
            error.with_context(host=self.state.name, task=task.name)
            message = error.message
        else:
            message = f"{error.__class__.__name__}: {error}"
        return TaskResponse(
            host=self.state.name,
            task_name=task.name,
            status=TaskStatus.FAILED,
            message=message,
            rc=getattr(error, 'rc', None),
            stdout=getattr(error, 'stdout', None) or "",
            stderr=getattr(error, 'stderr', None) or "",
            data={'error': error.__class__.__name__},
            attempts=max(iteration.attempts, 1),
            history=iteration.history_names,
        )

    async def _run_iteration(
        self,
        task: Task,
        connection: Any,
        iteration: TaskIteration,
        looped: bool = False,
    ) -> TaskResponse:
        injected = [task.with_.vars]
        if looped:
            injected.append({'item': iteration.item})
        handle = TaskHandle(
            self.state, task, connection, self.templar,
            check_mode=self.check_mode, injected=injected,
        )
        try:
            variables = handle.vars
            run_it = self.templar.evaluate_condition(task.with_.condition, variables)
            if run_it and task.with_.skip_if_exists:
                path = str(self.templar.render(task.with_.skip_if_exists, variables))
                if await self._retrying(task, lambda: connection.path_exists(path)):
                    iteration.advance(TaskState.CONDITION_CHECKED)
                    return self._skipped(task, iteration, f"skipped, since {path} exists")
            iteration.advance(TaskState.CONDITION_CHECKED)
            if not run_it:
                return self._skipped(task, iteration, "condition is false")

            module = task.module_impl
            params = module.validate(self.templar.render_recursive(task.params, variables))
            sudo = self.templar.render(task.with_.sudo, variables) if task.with_.sudo else None
            handle.request = TaskRequest(
                host=self.state.name,
                task_name=task.name,
                module=task.module,
                params=params,
                item=iteration.item,
                sudo=sudo,
            )

            result = await self._dispatch(task, handle, iteration)
        except FleetwrightError as e:
            logger.debug("[%s] %s failed: %s", self.state.name, task.name, e)
            return self._failure(task, e, iteration)
        except Exception as e:
            logger.debug("[%s] %s raised", self.state.name, task.name, exc_info=True)
            return self._failure(task, e, iteration)

        if result.facts:
            self.state.host.update_facts(result.facts)
        if result.variables:
            self.state.host.update_runtime_vars(result.variables)

        response = result.to_response(
            self.state.name, task.name,
            attempts=max(iteration.attempts, 1), history=iteration.history_names,
        )
        if looped:
            response.data.setdefault('item', iteration.item)
        return response

    def _skipped(self, task: Task, iteration: TaskIteration, message: str) -> TaskResponse:
        iteration.advance(TaskState.SKIPPED)
        return TaskResponse(
            host=self.state.name,
            task_name=task.name,
            status=TaskStatus.SKIPPED,
            message=message,
            history=iteration.history_names,
        )

    async def _retrying(self, task: Task, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run a connection operation, retrying transient failures."""
        remaining = self.transient_retries
        while True:
            try:
                return await operation()
            except ConnectionError as e:
                if not is_transient(e) or remaining <= 0:
                    raise
                remaining -= 1
                logger.warning(
                    "[%s] %s: transient failure, retrying in %ss: %s",
                    self.state.name, task.name, self.retry_delay, e.message,
                )
                await asyncio.sleep(self.retry_delay)

    async def _dispatch(self, task: Task, handle: TaskHandle, iteration: TaskIteration) -> ModuleResult:
        transient_left = self.transient_retries
        explicit_left = task.and_.retry
        while True:
            iteration.attempts += 1
            attempts = iteration.attempts
            iteration.advance(TaskState.DISPATCHED)
            try:
                return await self._apply(task, handle, iteration)
            except ConnectionError as e:
                if not is_transient(e) or transient_left <= 0:
                    raise
                transient_left -= 1
                delay = self.retry_delay
                reason = e.message
            except ExecutionError as e:
                if explicit_left <= 0:
                    raise
                explicit_left -= 1
                delay = task.and_.delay
                reason = e.message

            logger.warning(
                "[%s] %s: attempt %d failed, retrying in %ss: %s",
                self.state.name, task.name, attempts, delay, reason,
            )
            if delay:
                await asyncio.sleep(delay)

    async def _apply(self, task: Task, handle: TaskHandle, iteration: TaskIteration) -> ModuleResult:
        module = task.module_impl
        params = handle.params

        if module.has_query:
            current = await module.query(handle)
            iteration.advance(TaskState.QUERIED)
            if module.matches(current, params):
                iteration.advance(TaskState.NO_CHANGE_NEEDED)
                iteration.advance(TaskState.COMPLETED)
                return ModuleResult(changed=False, msg="already in desired state")

        iteration.advance(TaskState.APPLYING)
        result = await module.execute(handle, params)
        if result.failed:
            raise ExecutionError(
                task.module,
                result.msg or "module reported failure",
                rc=result.rc,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        iteration.advance(TaskState.COMPLETED)
        return result
