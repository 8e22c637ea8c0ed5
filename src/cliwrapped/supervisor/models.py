# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Service lifecycle models.

State Transitions:
    STOPPED  -> STARTING: start requested and the instance lock acquired
    STARTING -> RUNNING:  store recovered, rollups rebuilt, socket bound
    RUNNING  -> DRAINING: stop requested; ingestion closed to new events
    DRAINING -> STOPPED:  queue flushed (or drain timeout hit), lock released
    any      -> FAILED:   unrecoverable error (e.g. corruption replay cannot fix)
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ServiceState(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    FAILED = "failed"


class HealthFlag(StrEnum):
    """Conditions reported alongside the state."""

    STORAGE_DEGRADED = "StorageDegraded"
    DATA_LOSS_ON_STOP = "DataLossOnStop"
    EVENTS_DROPPED = "EventsDropped"
    LOCK_HELD_ELSEWHERE = "LockHeldElsewhere"


class ServiceStatus(BaseModel):
    """Snapshot returned by ``status``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: ServiceState
    pid: int | None = Field(
        default=None, description="PID of the process owning the lock"
    )
    started_at: datetime | None = None
    uptime_seconds: float = Field(default=0.0, ge=0.0)
    queue_depth: int = Field(default=0, ge=0)
    queue_capacity: int = Field(default=0, ge=0)
    accepted: int = Field(default=0, ge=0)
    persisted: int = Field(default=0, ge=0)
    dropped: int = Field(default=0, ge=0)
    rejected: int = Field(default=0, ge=0)
    duplicates: int = Field(default=0, ge=0)
    events_stored: int = Field(default=0, ge=0)
    storage_degraded: bool = False
    lost_events: int = Field(
        default=0, ge=0, description="Unflushed events at the last stop"
    )
    health: list[HealthFlag] = Field(default_factory=list)
    last_error: str | None = None


class StopResult(BaseModel):
    """Outcome of ``stop``; ``lost_events`` > 0 means the drain timed out."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: ServiceState
    flushed: int = Field(default=0, ge=0)
    lost_events: int = Field(default=0, ge=0)
    drain_timed_out: bool = False


__all__: list[str] = ["HealthFlag", "ServiceState", "ServiceStatus", "StopResult"]
