"""
Fleetwright Play Orchestrator

Runs one play: resolves and batches its hosts, then for each batch runs
every host's tasks concurrently (bounded by ``forks``) followed by each
host's pending handlers.
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional

from fleetwright.config import RunConfig
from fleetwright.engine.events import TaskEvent
from fleetwright.engine.handle import HostRunState
from fleetwright.engine.inventory import Host, Inventory
from fleetwright.engine.playbook import Play, Task
from fleetwright.engine.results import PlayResult, RunStats, TaskResponse
from fleetwright.engine.task_fsm import ConnectionResolver, TaskRunner
from fleetwright.engine.templating import TemplateEngine

logger = logging.getLogger(__name__)

FACTS_TASK_NAME = 'gather facts'


class PlayOrchestrator:
    """
    Executes a single play across its hosts.

    Per-host task order is strict. Hosts within a batch run concurrently;
    batches run one after another.
    """

    def __init__(
        self,
        play: Play,
        inventory: Inventory,
        states: Dict[str, HostRunState],
        connection_for: ConnectionResolver,
        config: RunConfig,
        stats: RunStats,
        templar: TemplateEngine,
        emit: Callable[[TaskEvent], None],
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.play = play
        self.inventory = inventory
        self.states = states
        self.connection_for = connection_for
        self.config = config
        self.stats = stats
        self.templar = templar
        self.emit = emit
        self.cancel_event = cancel_event or asyncio.Event()
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._result: Optional[PlayResult] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def resolve_hosts(self) -> List[Host]:
        """Hosts selected by the play, intersected with the run limit, sorted by name."""
        hosts = self.inventory.select(self.play.hosts)
        if self.config.limit:
            allowed = {h.name for h in self.inventory.select(self.config.limit)}
            hosts = [h for h in hosts if h.name in allowed]
        return hosts

    def batches(self, hosts: List[Host]) -> List[List[Host]]:
        size = self.play.batch_size or self.config.batch_size or len(hosts)
        if not hosts:
            return []
        return [hosts[i:i + size] for i in range(0, len(hosts), size)]

    def selected_tasks(self) -> List[Task]:
        """Regular tasks of the play after tag filtering."""
        tasks = list(self.play.tasks)
        if self.config.tags:
            wanted = set(self.config.tags)
            tasks = [t for t in tasks if wanted.intersection(t.tags)]
        if self.play.gather_facts:
            tasks.insert(0, Task(name=FACTS_TASK_NAME, module='facts'))
        return tasks

    async def run(self) -> PlayResult:
        """
        Execute the play.

        Returns:
            PlayResult for this play
        """
        hosts = self.resolve_hosts()
        result = self._result = PlayResult(play_name=self.play.name, hosts=[h.name for h in hosts])
        if not hosts:
            logger.warning("Play '%s': no hosts matched '%s'", self.play.name, self.play.hosts)
            return result

        logger.info("Play '%s' on %d host(s)", self.play.name, len(hosts))
        for host in hosts:
            self.states[host.name].begin_play(self.play)

        self._semaphore = asyncio.Semaphore(self.config.forks)
        tasks = self.selected_tasks()

        for batch in self.batches(hosts):
            if self.cancelled:
                result.aborted = True
                break

            batch_states = [self.states[h.name] for h in batch]
            await asyncio.gather(*(self._run_tasks(s, tasks) for s in batch_states))
            await asyncio.gather(*(self._run_handlers(s) for s in batch_states))

            if self.play.any_errors_fatal and any(s.failed for s in batch_states):
                logger.error("Play '%s': stopping after a failure (any_errors_fatal)", self.play.name)
                result.aborted = True
                break

        if self.cancelled:
            result.aborted = True
        result.failed_hosts = sorted(h.name for h in hosts if self.states[h.name].failed)
        return result

    def _runner(self, state: HostRunState) -> TaskRunner:
        return TaskRunner(
            state,
            self.connection_for,
            self.templar,
            transient_retries=self.config.transient_retries,
            retry_delay=self.config.retry_delay,
            check_mode=self.config.check_mode,
        )

    async def _run_tasks(self, state: HostRunState, tasks: Iterable[Task]) -> None:
        async with self._semaphore:
            runner = self._runner(state)
            for task in tasks:
                if self.cancelled or state.failed:
                    break
                response = await runner.run(task)
                self._finish(state, response, handler=False)

    async def _run_handlers(self, state: HostRunState) -> None:
        """Run pending handlers once each, in subscription order."""
        async with self._semaphore:
            runner = self._runner(state)
            ran = set()
            while state.pending_handlers:
                names = state.drain_handlers()
                if state.failed or self.cancelled:
                    break
                for name in names:
                    if name in ran:
                        continue
                    ran.add(name)
                    response = await runner.run(self.play.handler_named(name))
                    self._finish(state, response, handler=True)
                    if state.failed or self.cancelled:
                        break
            state.pending_handlers = []

    def _finish(self, state: HostRunState, response: TaskResponse, handler: bool) -> None:
        self.stats.record(state.name, response.status)
        self._result.add_response(response)
        if response.failed:
            state.failed = True
        self.emit(TaskEvent.from_response(response, play=self.play.name, handler=handler))
