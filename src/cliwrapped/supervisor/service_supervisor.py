# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Daemon lifecycle supervisor.

Architecture:
    ```
    ServiceSupervisor
        |
        +-- InstanceLock              (daemon.lock, heartbeat task)
        +-- DaemonContext             (one per running daemon)
              +-- DurableEventStore   (system of record)
              +-- AggregationEngine   (rollups; reconcile + retention tasks)
              +-- IngestionService    (bounded queue + writer loop)
              +-- IngestionSocketServer
    ```

Start sequence:
    1. Acquire the instance lock (a live holder elsewhere counts as success).
    2. Load the retention baseline and open the store (recovery + replay).
    3. Rebuild rollups from baseline + store.
    4. Start the writer loop, then bind the socket.
    5. Start periodic tasks: batched sync, reconcile, compaction, heartbeat.

Stop sequence:
    1. RUNNING -> DRAINING; cooperative cancel for long scans.
    2. Drain the ingestion queue for up to ``drain_timeout_seconds``.
    3. Close the socket, join the periodic tasks, checkpoint and close the
       store, release the lock. -> STOPPED

Unrecoverable errors during start (corruption the replay cannot fix, an
unusable storage directory) leave the supervisor in FAILED with the error
visible through ``status``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from cliwrapped.aggregators.aggregation_engine import AggregationEngine
from cliwrapped.config.settings import DaemonConfig, DurabilityPolicy
from cliwrapped.ingestion.ingestion_service import IngestionService
from cliwrapped.ingestion.socket_server import IngestionSocketServer
from cliwrapped.lib.errors import (
    CliWrappedError,
    CorruptionError,
    DrainTimeoutError,
    LockConflictError,
    ScanCancelledError,
    ServiceUnavailableError,
)
from cliwrapped.query.query_api import QueryAPI
from cliwrapped.storage.event_store import DurableEventStore
from cliwrapped.supervisor.instance_lock import InstanceLock
from cliwrapped.supervisor.models import (
    HealthFlag,
    ServiceState,
    ServiceStatus,
    StopResult,
)

logger = logging.getLogger(__name__)


@dataclass
class DaemonContext:
    """Process-wide state of one running daemon, torn down on stop."""

    config: DaemonConfig
    lock: InstanceLock
    store: DurableEventStore
    engine: AggregationEngine
    ingestion: IngestionService
    server: IngestionSocketServer | None = None
    cancel: threading.Event = field(default_factory=threading.Event)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    tasks: list[asyncio.Task[None]] = field(default_factory=list)


class ServiceSupervisor:
    """Owns the daemon state machine.

    Example:
        >>> supervisor = ServiceSupervisor(config)
        >>> await supervisor.start()
        >>> supervisor.status().state
        <ServiceState.RUNNING: 'running'>
        >>> result = await supervisor.stop()
    """

    def __init__(self, config: DaemonConfig, *, handle_signals: bool = True) -> None:
        self._config = config
        self._handle_signals = handle_signals
        self._state = ServiceState.STOPPED
        self._ctx: DaemonContext | None = None
        self._lifecycle_lock = asyncio.Lock()
        self._shutdown_event = asyncio.Event()
        self._stopping = asyncio.Event()
        self._signals_installed = False
        self._holder_pid: int | None = None
        self._last_error: str | None = None
        self._last_stop: StopResult | None = None

    @property
    def config(self) -> DaemonConfig:
        return self._config

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def context(self) -> DaemonContext | None:
        return self._ctx

    # =========================================================================
    # Start
    # =========================================================================

    async def start(self) -> ServiceStatus:
        """Start the daemon; idempotent while RUNNING.

        If another live instance holds the lock, nothing is started and the
        returned status names that instance's pid with LockHeldElsewhere.
        """
        async with self._lifecycle_lock:
            if self._state is ServiceState.RUNNING:
                logger.debug("Supervisor already running")
                return self.status()
            if self._state is ServiceState.DRAINING:
                return self.status()

            lock = InstanceLock(
                self._config.lock_path, self._config.heartbeat_stale_seconds
            )
            try:
                await asyncio.to_thread(lock.acquire)
            except LockConflictError as e:
                self._holder_pid = e.holder_pid
                logger.info(
                    f"Daemon already running elsewhere (pid {e.holder_pid}); "
                    "nothing to start"
                )
                return self.status()
            except OSError as e:
                self._fail(f"Cannot create lock file: {e}")
                return self.status()

            self._holder_pid = None
            self._last_error = None
            self._state = ServiceState.STARTING
            logger.info(
                "Supervisor starting",
                extra={"storage_path": str(self._config.storage_path)},
            )

            store = DurableEventStore(self._config)
            engine = AggregationEngine(self._config, store)
            ingestion = IngestionService(self._config, store, engine)
            ctx = DaemonContext(
                config=self._config,
                lock=lock,
                store=store,
                engine=engine,
                ingestion=ingestion,
            )
            try:
                retired = await asyncio.to_thread(engine.load_baseline)
                await asyncio.to_thread(store.open, retired)
                await asyncio.to_thread(engine.rebuild, ctx.cancel)
                await ingestion.start()
                ctx.server = IngestionSocketServer(self._config, ingestion, self.status)
                await ctx.server.start()
            except (CliWrappedError, OSError) as e:
                await self._teardown(ctx)
                if isinstance(e, CorruptionError):
                    logger.error(f"Storage corruption replay could not repair: {e}")
                self._fail(str(e))
                return self.status()

            self._ctx = ctx
            self._stopping.clear()
            self._shutdown_event.clear()
            self._start_periodic_tasks(ctx)
            self._install_signal_handlers()
            self._state = ServiceState.RUNNING
            logger.info(
                "Supervisor running",
                extra={
                    "pid": os.getpid(),
                    "events_stored": store.count,
                    "socket_path": str(self._config.socket_path),
                },
            )
            return self.status()

    def _fail(self, reason: str) -> None:
        self._state = ServiceState.FAILED
        self._last_error = reason
        logger.error(f"Supervisor failed: {reason}")

    def _start_periodic_tasks(self, ctx: DaemonContext) -> None:
        cfg = self._config
        jobs: list[tuple[str, float, Callable[[], Awaitable[object]]]] = [
            (
                "heartbeat",
                cfg.heartbeat_interval_seconds,
                lambda: asyncio.to_thread(ctx.lock.heartbeat),
            ),
            (
                "reconcile",
                cfg.reconcile_interval_seconds,
                lambda: asyncio.to_thread(ctx.engine.reconcile, ctx.cancel),
            ),
            (
                "compaction",
                cfg.compaction_interval_seconds,
                lambda: asyncio.to_thread(self._compact, ctx),
            ),
        ]
        if cfg.durability is DurabilityPolicy.BATCHED_INTERVAL:
            jobs.append(
                (
                    "sync",
                    cfg.sync_interval_seconds,
                    lambda: asyncio.to_thread(ctx.store.sync_if_due),
                )
            )
        for name, interval, action in jobs:
            ctx.tasks.append(
                asyncio.create_task(
                    self._periodic(name, interval, action), name=f"cliwrapped-{name}"
                )
            )

    @staticmethod
    def _compact(ctx: DaemonContext) -> None:
        ctx.engine.apply_retention(datetime.now(UTC))
        ctx.store.checkpoint()

    async def _periodic(
        self,
        name: str,
        interval: float,
        action: Callable[[], Awaitable[object]],
    ) -> None:
        """Run ``action`` every ``interval`` seconds until the supervisor stops."""
        while not self._stopping.is_set():
            try:
                async with asyncio.timeout(interval):
                    await self._stopping.wait()
                return
            except TimeoutError:
                pass
            try:
                await action()
            except ScanCancelledError:
                logger.debug(f"Periodic {name} cancelled by shutdown")
                return
            except Exception as e:
                self._last_error = f"{name}: {e}"
                logger.exception(f"Periodic {name} failed")

    # =========================================================================
    # Stop
    # =========================================================================

    async def stop(self) -> StopResult:
        """Drain ingestion and stop; always completes.

        A drain that hits ``drain_timeout_seconds`` is reported through
        ``StopResult.lost_events`` rather than raised.
        """
        async with self._lifecycle_lock:
            ctx = self._ctx
            if ctx is None or self._state is not ServiceState.RUNNING:
                return StopResult(state=self._state)

            self._state = ServiceState.DRAINING
            self._remove_signal_handlers()
            logger.info("Supervisor draining")
            self._stopping.set()
            ctx.cancel.set()

            timeout = self._config.drain_timeout_seconds
            flushed, lost = await ctx.ingestion.drain(timeout)
            if lost:
                warning = DrainTimeoutError(lost)
                logger.warning(
                    f"Partial data loss on stop: {warning.message}",
                    extra={"lost_events": lost, "flushed": flushed},
                )

            await self._teardown(ctx)
            self._ctx = None
            self._state = ServiceState.STOPPED
            result = StopResult(
                state=self._state,
                flushed=flushed,
                lost_events=lost,
                drain_timed_out=lost > 0,
            )
            self._last_stop = result
            logger.info(
                "Supervisor stopped",
                extra={"flushed": flushed, "lost_events": lost},
            )
            return result

    async def _teardown(self, ctx: DaemonContext) -> None:
        """Release whatever part of ``ctx`` was brought up."""
        if ctx.server is not None:
            await ctx.server.stop()
        if ctx.tasks:
            await asyncio.gather(*ctx.tasks, return_exceptions=True)
            ctx.tasks.clear()
        if ctx.ingestion.accepting:
            await ctx.ingestion.drain(0)
        if ctx.store.is_open:
            try:
                await asyncio.to_thread(ctx.store.close)
            except CliWrappedError as e:
                self._last_error = str(e)
                logger.error(f"Failed to close event store cleanly: {e}")
        await asyncio.to_thread(ctx.lock.release)

    async def run_until_shutdown(self) -> StopResult:
        """Block until SIGTERM/SIGINT (or ``request_shutdown``), then stop."""
        await self._shutdown_event.wait()
        return await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _signal_handler(self) -> None:
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        if not self._handle_signals or self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._signal_handler)
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.debug(f"Signal handlers unavailable: {e}")
            return
        self._signals_installed = True

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    def query_api(self) -> QueryAPI:
        """Read-only query surface over the running daemon's store and rollups.

        Raises:
            ServiceUnavailableError: The daemon is not running in this process.
        """
        ctx = self._ctx
        if ctx is None:
            raise ServiceUnavailableError(
                f"Daemon is not running in this process (state {self._state.value})"
            )
        return QueryAPI(ctx.store, ctx.engine, self.status)

    # =========================================================================
    # Status
    # =========================================================================

    def status(self) -> ServiceStatus:
        """Current state, process identity, queue depth, uptime and counters."""
        health: list[HealthFlag] = []
        lost = self._last_stop.lost_events if self._last_stop else 0
        if lost:
            health.append(HealthFlag.DATA_LOSS_ON_STOP)

        ctx = self._ctx
        if ctx is None:
            if self._holder_pid is not None and self._state is ServiceState.STOPPED:
                health.append(HealthFlag.LOCK_HELD_ELSEWHERE)
                return ServiceStatus(
                    state=ServiceState.RUNNING,
                    pid=self._holder_pid,
                    health=health,
                    lost_events=lost,
                    last_error=self._last_error,
                )
            return ServiceStatus(
                state=self._state,
                lost_events=lost,
                health=health,
                last_error=self._last_error,
            )

        ingestion = ctx.ingestion
        metrics = ingestion.metrics
        if ingestion.storage_degraded:
            health.append(HealthFlag.STORAGE_DEGRADED)
        if ingestion.dropped:
            health.append(HealthFlag.EVENTS_DROPPED)
        uptime = (datetime.now(UTC) - ctx.started_at).total_seconds()
        return ServiceStatus(
            state=self._state,
            pid=os.getpid(),
            started_at=ctx.started_at,
            uptime_seconds=max(0.0, uptime),
            queue_depth=ingestion.depth(),
            queue_capacity=ingestion.queue.capacity,
            accepted=metrics.accepted,
            persisted=metrics.persisted,
            dropped=ingestion.dropped,
            rejected=metrics.rejected,
            duplicates=metrics.duplicates,
            events_stored=ctx.store.count,
            storage_degraded=ingestion.storage_degraded,
            lost_events=lost,
            health=health,
            last_error=ingestion.last_error or self._last_error,
        )


__all__: list[str] = ["DaemonContext", "ServiceSupervisor"]
