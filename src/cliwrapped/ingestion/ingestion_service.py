# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Event ingestion service.

Architecture:
    ```
    socket / hook client
           |
           v (submit: validate, stamp, dedup)
    BoundedEventQueue
           |
           v (writer loop, one event at a time)
    DurableEventStore.append  (worker thread)
           |
           v (after the append is acknowledged)
    AggregationEngine.apply
    ```

``submit`` returns as soon as the event is queued. The writer loop is the
only caller of ``store.append``. Write failures are retried with
exponential backoff; once ``max_write_retries`` consecutive attempts fail
the service reports storage as degraded and keeps retrying at the capped
backoff while new events wait in the queue.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from cliwrapped.aggregators.aggregation_engine import AggregationEngine
from cliwrapped.config.settings import DaemonConfig
from cliwrapped.events.models import CommandEvent, RawCommandEvent
from cliwrapped.ingestion.bounded_queue import (
    BoundedEventQueue,
    PutStatus,
    QueuedEvent,
)
from cliwrapped.ingestion.protocol_models import Acknowledgement
from cliwrapped.lib.errors import EnumErrorCode, EventValidationError, StorageIOError
from cliwrapped.storage.event_store import DurableEventStore

logger = logging.getLogger(__name__)


def validate_raw_event(raw: RawCommandEvent | Mapping[str, Any]) -> RawCommandEvent:
    """Validate a raw event from the wire.

    Raises:
        EventValidationError: Missing or invalid fields.
    """
    if isinstance(raw, RawCommandEvent):
        return raw
    try:
        return RawCommandEvent.model_validate(raw)
    except ValidationError as e:
        errors = e.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or "event"
        raise EventValidationError(
            f"{field}: {first.get('msg', 'invalid event')}",
            details={"error_count": len(errors)},
        ) from e


class IngestionMetrics:
    """Counters exposed through the supervisor's status.

    Attributes:
        accepted: Events queued.
        persisted: Events durably appended.
        rejected: Events refused (validation or full queue).
        duplicates: Submissions whose key was already stored or queued.
        write_failures: Failed append attempts.
    """

    def __init__(self) -> None:
        self.accepted = 0
        self.persisted = 0
        self.rejected = 0
        self.duplicates = 0
        self.write_failures = 0

    def snapshot(self) -> dict[str, int]:
        return {
            "accepted": self.accepted,
            "persisted": self.persisted,
            "rejected": self.rejected,
            "duplicates": self.duplicates,
            "write_failures": self.write_failures,
        }


class IngestionService:
    """Accepts raw events without blocking the caller and persists them in order.

    Example:
        >>> service = IngestionService(config, store, engine)
        >>> await service.start()
        >>> ack = await service.submit({"command": "ls", ...})
        >>> lost = await service.drain(timeout=5.0)
    """

    def __init__(
        self,
        config: DaemonConfig,
        store: DurableEventStore,
        engine: AggregationEngine,
    ) -> None:
        self._config = config
        self._store = store
        self._engine = engine
        self._queue = BoundedEventQueue(
            capacity=config.queue_capacity,
            policy=config.backpressure,
            block_timeout=config.submit_block_timeout_seconds,
        )
        self._pending_keys: set[tuple[str, int]] = set()
        self._in_flight: QueuedEvent | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._accepting = False
        self.metrics = IngestionMetrics()
        self.storage_degraded = False
        self.last_error: str | None = None

    @property
    def queue(self) -> BoundedEventQueue:
        return self._queue

    @property
    def accepting(self) -> bool:
        return self._accepting

    @property
    def dropped(self) -> int:
        return self._queue.dropped

    def depth(self) -> int:
        """Events accepted but not yet persisted, including the one being written."""
        return self._queue.qsize() + (1 if self._in_flight is not None else 0)

    async def start(self) -> None:
        if self._writer_task is not None:
            return
        self._accepting = True
        self._writer_task = asyncio.create_task(
            self._writer_loop(), name="cliwrapped-writer"
        )
        logger.info("Ingestion started", extra={"capacity": self._queue.capacity})

    # =========================================================================
    # Submit
    # =========================================================================

    async def submit(self, raw: RawCommandEvent | Mapping[str, Any]) -> Acknowledgement:
        """Validate, stamp and queue one event.

        Never raises for a bad event: the result is a rejection
        acknowledgement and ingestion carries on.
        """
        if not self._accepting:
            return Acknowledgement.unavailable("ingestion is not accepting events")

        try:
            validated = validate_raw_event(raw)
        except EventValidationError as e:
            self.metrics.rejected += 1
            logger.debug(f"Rejected event: {e.message}")
            return Acknowledgement.rejected(e.code, e.message, self.depth())

        now = datetime.now(UTC)
        event = CommandEvent.from_raw(validated, ingested_at=now)
        key = event.idempotency_key
        if key in self._pending_keys or self._store.contains(key):
            self.metrics.duplicates += 1
            logger.debug(f"Duplicate event {key}")
            return Acknowledgement.duplicate(self.depth())

        self._pending_keys.add(key)
        result = await self._queue.put(QueuedEvent(event=event, queued_at=now))
        if result.status is PutStatus.FULL:
            self._pending_keys.discard(key)
            self.metrics.rejected += 1
            return Acknowledgement.rejected(
                EnumErrorCode.QUEUE_FULL, "ingestion queue is full", self.depth()
            )
        if result.status is PutStatus.CLOSED:
            self._pending_keys.discard(key)
            return Acknowledgement.unavailable("ingestion is draining")
        if result.evicted is not None:
            self._pending_keys.discard(result.evicted.key)

        self.metrics.accepted += 1
        return Acknowledgement.accepted(self.depth())

    # =========================================================================
    # Writer loop
    # =========================================================================

    async def _writer_loop(self) -> None:
        logger.info("Writer loop started")
        while True:
            item = await self._queue.get()
            if item is None:
                break
            self._in_flight = item
            try:
                await self._persist(item)
            finally:
                self._in_flight = None
        logger.info("Writer loop stopped")

    async def _persist(self, item: QueuedEvent) -> None:
        attempts = 0
        while True:
            try:
                result = await asyncio.to_thread(self._store.append, item.event)
                break
            except StorageIOError as e:
                attempts += 1
                self.metrics.write_failures += 1
                self.last_error = str(e)
                exhausted = attempts >= self._config.max_write_retries
                if exhausted and not self.storage_degraded:
                    self.storage_degraded = True
                    logger.warning(
                        f"Storage degraded after {attempts} failed writes; "
                        "buffering events in memory and retrying",
                        extra={"queue_depth": self.depth()},
                    )
                backoff = min(
                    self._config.backoff_base_seconds * (2 ** (attempts - 1)),
                    self._config.max_backoff_seconds,
                )
                logger.warning(
                    f"Append failed for {item.key}, retry {attempts} in {backoff}s: "
                    f"{e.message}"
                )
                await asyncio.sleep(backoff)

        if self.storage_degraded:
            self.storage_degraded = False
            logger.info("Storage recovered; leaving degraded mode")

        self._pending_keys.discard(item.key)
        if result.duplicate:
            self.metrics.duplicates += 1
            return
        self.metrics.persisted += 1
        try:
            self._engine.apply(item.event, result.position)
        except Exception:
            # Rollups are derived; reconcile repairs them.
            logger.exception(f"Incremental rollup update failed for {item.key}")

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def drain(self, timeout: float) -> tuple[int, int]:
        """Stop accepting, flush the queue, and wait up to ``timeout`` seconds.

        Returns:
            ``(flushed, lost)``: events persisted during the drain, and events
            still unpersisted when the timeout expired.
        """
        self._accepting = False
        await self._queue.close()
        task = self._writer_task
        if task is None:
            return 0, 0

        before = self.metrics.persisted + self.metrics.duplicates
        try:
            async with asyncio.timeout(timeout):
                await asyncio.shield(task)
        except TimeoutError:
            unflushed = self.unflushed_keys()
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            self._writer_task = None
            # An append cancelled mid-thread may still land; sync waits for it.
            try:
                await asyncio.to_thread(self._store.sync)
            except StorageIOError as e:
                logger.warning(f"Final sync failed during drain: {e.message}")
            lost = sum(1 for key in unflushed if not self._store.contains(key))
            flushed = self.metrics.persisted + self.metrics.duplicates - before
            flushed += len(unflushed) - lost
            logger.warning(
                f"Drain timeout after {timeout}s: {lost} events were not persisted",
                extra={"lost_events": lost},
            )
            return flushed, lost

        self._writer_task = None
        return self.metrics.persisted + self.metrics.duplicates - before, 0

    def unflushed_keys(self) -> set[tuple[str, int]]:
        """Keys accepted but not persisted (queued or in flight)."""
        keys = set(self._queue.pending_keys())
        if self._in_flight is not None:
            keys.add(self._in_flight.key)
        return keys


__all__: list[str] = [
    "IngestionMetrics",
    "IngestionService",
    "validate_raw_event",
]
