# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Daemon configuration.

Uses pydantic-settings for automatic environment variable loading.
Environment variables use the CLIWRAPPED_ prefix, e.g.
``CLIWRAPPED_QUEUE_CAPACITY=2048`` or ``CLIWRAPPED_DURABILITY=batched_interval``.

Persisted layout under ``storage_path``::

    SCHEMA          version-tagged schema marker
    wal/            write-ahead log segments
    archive/        compacted, immutable segments (gzip)
    index.json      index checkpoint
    baseline.json   rollups of events removed by retention
    daemon.lock     instance lock (pid + heartbeat)
"""

from __future__ import annotations

import tempfile
from enum import StrEnum
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackpressurePolicy(StrEnum):
    """What ``submit`` does when the ingestion queue is full."""

    DROP_OLDEST = "drop_oldest"
    BLOCK = "block"


class DurabilityPolicy(StrEnum):
    """When appended log records are forced to stable storage."""

    SYNC_EACH_WRITE = "sync_each_write"
    BATCHED_INTERVAL = "batched_interval"


def _default_storage_path() -> Path:
    return Path.home() / ".local" / "share" / "cli-wrapped"


def _default_socket_path() -> Path:
    return Path(tempfile.gettempdir()) / "cliwrapped.sock"


class DaemonConfig(BaseSettings):
    """Configuration for the cli-wrapped daemon."""

    model_config = SettingsConfigDict(
        env_prefix="CLIWRAPPED_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    # Paths
    storage_path: Path = Field(
        default_factory=_default_storage_path,
        description="Directory holding log segments, index files and the lock",
    )
    socket_path: Path = Field(
        default_factory=_default_socket_path,
        description="Unix domain socket the shell hooks connect to",
    )
    socket_permissions: int = Field(default=0o600, ge=0, le=0o777)
    max_payload_bytes: int = Field(default=65_536, ge=1024, le=1_048_576)
    socket_timeout_seconds: float = Field(
        default=5.0,
        ge=0.1,
        le=300.0,
        description="Idle timeout for one client connection",
    )

    # Ingestion queue
    queue_capacity: int = Field(default=1024, ge=1, le=1_000_000)
    backpressure: BackpressurePolicy = Field(default=BackpressurePolicy.DROP_OLDEST)
    submit_block_timeout_seconds: float = Field(
        default=0.05,
        ge=0.0,
        le=5.0,
        description="Longest a submit may wait for queue space under the block policy",
    )

    # Durability
    durability: DurabilityPolicy = Field(default=DurabilityPolicy.SYNC_EACH_WRITE)
    sync_interval_seconds: float = Field(
        default=1.0,
        ge=0.01,
        le=60.0,
        description="fsync period under the batched_interval policy",
    )
    segment_max_bytes: int = Field(default=8_388_608, ge=4096, le=1_073_741_824)

    # Retention / compaction (None disables the threshold)
    retention_max_age_days: int | None = Field(default=None, ge=1, le=36_500)
    retention_max_bytes: int | None = Field(default=None, ge=4096)
    archive_expired: bool = Field(
        default=True,
        description="Archive expired segments instead of deleting them",
    )
    compaction_interval_seconds: float = Field(default=3600.0, ge=1.0, le=604_800.0)

    # Aggregation
    reconcile_interval_seconds: float = Field(default=900.0, ge=1.0, le=604_800.0)
    timezone: str | None = Field(
        default=None,
        description="IANA zone used for hour/day/week/year buckets (None = system local)",
    )
    wrapped_top_n: int = Field(default=10, ge=1, le=1000)

    # Timeouts
    drain_timeout_seconds: float = Field(default=5.0, ge=0.0, le=300.0)
    hook_timeout_seconds: float = Field(default=0.2, ge=0.01, le=10.0)

    # Instance lock heartbeat
    heartbeat_interval_seconds: float = Field(default=10.0, ge=0.1, le=3600.0)
    heartbeat_stale_seconds: float = Field(default=60.0, ge=1.0, le=86_400.0)

    # Storage write retries
    max_write_retries: int = Field(default=3, ge=1, le=10)
    backoff_base_seconds: float = Field(default=0.1, ge=0.0, le=30.0)
    max_backoff_seconds: float = Field(default=5.0, ge=0.01, le=300.0)

    @field_validator("timezone", mode="after")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone {v!r}") from e
        return v

    @field_validator("socket_path", mode="after")
    @classmethod
    def validate_socket_parent(cls, v: Path) -> Path:
        parent = v.parent
        if parent.exists() and not parent.is_dir():
            raise ValueError(f"Parent path exists but is not a directory: {parent}")
        return v

    @model_validator(mode="after")
    def validate_backoff_bounds(self) -> DaemonConfig:
        if self.backoff_base_seconds > self.max_backoff_seconds:
            raise ValueError(
                "backoff_base_seconds must not exceed max_backoff_seconds "
                f"({self.backoff_base_seconds} > {self.max_backoff_seconds})"
            )
        return self

    @property
    def wal_dir(self) -> Path:
        return self.storage_path / "wal"

    @property
    def archive_dir(self) -> Path:
        return self.storage_path / "archive"

    @property
    def schema_path(self) -> Path:
        return self.storage_path / "SCHEMA"

    @property
    def index_path(self) -> Path:
        return self.storage_path / "index.json"

    @property
    def baseline_path(self) -> Path:
        return self.storage_path / "baseline.json"

    @property
    def lock_path(self) -> Path:
        return self.storage_path / "daemon.lock"

    @property
    def tzinfo(self) -> ZoneInfo | None:
        """Bucket zone, or None for the system local zone."""
        return ZoneInfo(self.timezone) if self.timezone else None


__all__: list[str] = ["BackpressurePolicy", "DaemonConfig", "DurabilityPolicy"]
