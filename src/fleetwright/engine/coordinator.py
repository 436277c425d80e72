"""
Fleetwright Run Coordinator

Top-level entry point: owns the inventory, per-host run states, the
connection pool, statistics, listeners and cancellation, and runs plays
in order.
"""

import asyncio
import logging
import signal
from typing import Callable, Dict, Iterable, List, Optional

from fleetwright.config import RunConfig, get_config
from fleetwright.connections.base import Connection, create_connection
from fleetwright.connections.check import CheckModeConnection
from fleetwright.engine.errors import ConnectionError, ExitCode, FleetwrightError
from fleetwright.engine.events import Listener, TaskEvent, log_event
from fleetwright.engine.handle import HostRunState
from fleetwright.engine.inventory import Host, Inventory
from fleetwright.engine.orchestrator import PlayOrchestrator
from fleetwright.engine.playbook import Play
from fleetwright.engine.results import RunResult, RunStats
from fleetwright.engine.templating import TemplateEngine

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[Host, RunConfig], Connection]


class ConnectionPool:
    """
    One connection per host name for the whole run.

    Connections are opened lazily on first use. In check mode every
    connection is wrapped in ``CheckModeConnection``.
    """

    def __init__(
        self,
        inventory: Inventory,
        config: RunConfig,
        factory: Optional[ConnectionFactory] = None,
    ):
        self.inventory = inventory
        self.config = config
        self.factory = factory or create_connection
        self._connections: Dict[str, Connection] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __contains__(self, host_name: str) -> bool:
        return host_name in self._connections

    async def get(self, host_name: str) -> Connection:
        """
        Return the open connection for ``host_name``, connecting if needed.

        Hosts not in the inventory (e.g. delegation targets) get an ad-hoc
        Host with no variables.

        Raises:
            ConnectionError: If the connection cannot be established
        """
        lock = self._locks.setdefault(host_name, asyncio.Lock())
        async with lock:
            conn = self._connections.get(host_name)
            if conn is not None:
                return conn

            if self.inventory.has_host(host_name):
                host = self.inventory.get_host(host_name)
            else:
                host = Host(host_name)

            conn = self.factory(host, self.config)
            if self.config.check_mode:
                conn = CheckModeConnection(conn)
            try:
                await asyncio.wait_for(conn.connect(), timeout=self.config.connect_timeout)
            except asyncio.TimeoutError:
                raise ConnectionError(
                    host=host_name,
                    message=f"timed out after {self.config.connect_timeout}s",
                    connection_type=conn.connection_type,
                )
            logger.debug("Connected to %s (%s)", host_name, conn.connection_type)
            self._connections[host_name] = conn
            return conn

    async def close_all(self) -> None:
        for name, conn in list(self._connections.items()):
            try:
                await conn.close()
            except (OSError, FleetwrightError) as e:
                logger.warning("Error closing connection to %s: %s", name, e)
        self._connections.clear()


class RunCoordinator:
    """
    Runs plays against an inventory.

    Example:
        coordinator = RunCoordinator(inventory, [play], RunConfig(forks=10))
        exit_code = coordinator.run()
    """

    def __init__(
        self,
        inventory: Inventory,
        plays: Iterable[Play],
        config: Optional[RunConfig] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        listeners: Optional[Iterable[Listener]] = None,
    ):
        self.inventory = inventory
        self.plays: List[Play] = list(plays)
        self.config = config or get_config()
        self.stats = RunStats()
        self.templar = TemplateEngine()
        self.pool = ConnectionPool(inventory, self.config, connection_factory)
        self.listeners: List[Listener] = list(listeners) if listeners is not None else [log_event]
        self.states: Dict[str, HostRunState] = {
            name: HostRunState(host, inventory, self.config)
            for name, host in inventory.hosts.items()
        }
        self.result: Optional[RunResult] = None
        self._cancel = asyncio.Event()

    def add_listener(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def cancel(self) -> None:
        """Stop dispatching new tasks; operations in flight finish or time out."""
        if not self._cancel.is_set():
            logger.warning("Cancellation requested; finishing in-flight operations")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _emit(self, event: TaskEvent) -> None:
        for listener in self.listeners:
            listener(event)

    def _install_sigint(self, loop: asyncio.AbstractEventLoop) -> bool:
        try:
            loop.add_signal_handler(signal.SIGINT, self.cancel)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not the main thread, or no loop signal support on this platform
            return False
        return True

    async def run_async(self) -> RunResult:
        """Run every play in order and return the aggregate result."""
        result = RunResult(stats=self.stats, ignore_failures=self.config.ignore_failures)
        loop = asyncio.get_running_loop()
        sigint_installed = self._install_sigint(loop)

        try:
            for play in self.plays:
                if self.cancelled:
                    break
                orchestrator = PlayOrchestrator(
                    play,
                    self.inventory,
                    self.states,
                    self.pool.get,
                    self.config,
                    self.stats,
                    self.templar,
                    self._emit,
                    self._cancel,
                )
                play_result = await orchestrator.run()
                result.add_play_result(play_result)
                if play_result.aborted:
                    break
        finally:
            if sigint_installed:
                loop.remove_signal_handler(signal.SIGINT)
            await self.pool.close_all()

        result.cancelled = self.cancelled
        self.result = result
        logger.info("Run finished: %s", self.stats.to_dict())
        return result

    def run(self) -> int:
        """
        Run synchronously.

        Returns:
            Exit code (0=success, 2=host failures, 3=invalid input, 130=interrupted)
        """
        try:
            result = asyncio.run(self.run_async())
            return int(result.exit_code)
        except FleetwrightError as e:
            logger.error("Error: %s", e)
            return int(e.exit_code)
        except KeyboardInterrupt:
            logger.error("Interrupted")
            return int(ExitCode.KEYBOARD_INTERRUPT)
