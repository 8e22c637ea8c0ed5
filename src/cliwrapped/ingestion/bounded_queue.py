# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Bounded in-memory ingestion queue.

Queue Behavior:
    1. Validated events are appended at the tail.
    2. When the queue is full the backpressure policy decides:
       - drop_oldest: the head entry is evicted (and counted) to make room.
       - block: the producer waits up to ``block_timeout`` for space, then
         gets a FULL result.
    3. ``get`` waits for an entry; once the queue is closed and empty it
       returns None so the consumer loop can exit.
    4. ``close`` stops new puts; entries already queued remain for draining.

Concurrency: coroutine-safe using asyncio.Condition (not thread-safe).
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cliwrapped.config.settings import BackpressurePolicy
from cliwrapped.events.models import CommandEvent

logger = logging.getLogger(__name__)


class QueuedEvent(BaseModel):
    """A validated event waiting to be persisted."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    event: CommandEvent = Field(...)
    queued_at: datetime = Field(...)

    @field_validator("queued_at", mode="before")
    @classmethod
    def ensure_utc_aware(cls, v: object) -> object:
        if not isinstance(v, datetime):
            return v
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        if v.utcoffset() == timedelta(0):
            return v
        return v.astimezone(UTC)

    @property
    def key(self) -> tuple[str, int]:
        return self.event.idempotency_key


class PutStatus(StrEnum):
    QUEUED = "queued"
    FULL = "full"
    CLOSED = "closed"


@dataclass(frozen=True)
class PutResult:
    """Outcome of ``put``; ``evicted`` is the entry dropped to make room, if any."""

    status: PutStatus
    evicted: QueuedEvent | None = None


class BoundedEventQueue:
    """FIFO queue with a hard capacity and a configurable full-queue policy."""

    def __init__(
        self,
        capacity: int,
        policy: BackpressurePolicy = BackpressurePolicy.DROP_OLDEST,
        block_timeout: float = 0.05,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._policy = policy
        self._block_timeout = block_timeout
        self._items: deque[QueuedEvent] = deque()
        self._cond = asyncio.Condition()
        self._closed = False
        self.dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return len(self._items)

    async def put(self, item: QueuedEvent) -> PutResult:
        async with self._cond:
            if self._closed:
                return PutResult(PutStatus.CLOSED)

            evicted: QueuedEvent | None = None
            if len(self._items) >= self._capacity:
                if self._policy is BackpressurePolicy.DROP_OLDEST:
                    evicted = self._items.popleft()
                    self.dropped += 1
                    logger.warning(
                        f"Queue full ({self._capacity}), dropped oldest event "
                        f"{evicted.key}",
                        extra={"dropped_total": self.dropped},
                    )
                else:
                    try:
                        async with asyncio.timeout(self._block_timeout):
                            await self._cond.wait_for(
                                lambda: self._closed or len(self._items) < self._capacity
                            )
                    except TimeoutError:
                        logger.debug(f"Queue full, gave up on {item.key} after wait")
                        return PutResult(PutStatus.FULL)
                    if self._closed:
                        return PutResult(PutStatus.CLOSED)

            self._items.append(item)
            self._cond.notify_all()
            return PutResult(PutStatus.QUEUED, evicted)

    async def get(self) -> QueuedEvent | None:
        """Next entry, waiting if empty; None once closed and drained."""
        async with self._cond:
            await self._cond.wait_for(lambda: self._items or self._closed)
            if not self._items:
                return None
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    async def close(self) -> None:
        async with self._cond:
            self._closed = True
            self._cond.notify_all()

    def pending_keys(self) -> list[tuple[str, int]]:
        return [item.key for item in self._items]


__all__: list[str] = [
    "BoundedEventQueue",
    "PutResult",
    "PutStatus",
    "QueuedEvent",
]
