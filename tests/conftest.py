# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT
"""Shared fixtures for the cli-wrapped test suite.

Provides:
- A DaemonConfig rooted in a per-test storage directory
- Raw / persisted event factories
- An opened DurableEventStore and an AggregationEngine over it
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from cliwrapped.aggregators.aggregation_engine import AggregationEngine
from cliwrapped.config.settings import DaemonConfig
from cliwrapped.events.models import CommandEvent, RawCommandEvent, ShellKind
from cliwrapped.storage.event_store import DurableEventStore

# 2024-03-05 is a Tuesday
BASE_TIME = datetime(2024, 3, 5, 10, 0, 0, tzinfo=UTC)


# -------------------------------------------------------------------------
# Configuration
# -------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep CLIWRAPPED_* variables and .env files from leaking into tests."""
    import os

    for name in list(os.environ):
        if name.startswith("CLIWRAPPED_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def socket_path() -> Iterator[Path]:
    # Use /tmp/ for socket to avoid macOS AF_UNIX path length limit (104 bytes)
    short_id = uuid.uuid4().hex[:8]
    path = Path(f"/tmp/test-cw-{short_id}.sock")  # noqa: S108
    yield path
    path.unlink(missing_ok=True)


@pytest.fixture
def make_config(
    tmp_path: Path, socket_path: Path
) -> Callable[..., DaemonConfig]:
    """Factory for configs sharing this test's storage dir and socket."""

    def _make(**overrides: Any) -> DaemonConfig:
        values: dict[str, Any] = {
            "storage_path": tmp_path / "store",
            "socket_path": socket_path,
            "timezone": "UTC",
            "drain_timeout_seconds": 2.0,
            "reconcile_interval_seconds": 3600.0,
            "compaction_interval_seconds": 3600.0,
            "heartbeat_interval_seconds": 0.5,
            "heartbeat_stale_seconds": 30.0,
            "backoff_base_seconds": 0.01,
            "max_backoff_seconds": 0.05,
        }
        values.update(overrides)
        return DaemonConfig(**values)

    return _make


@pytest.fixture
def config(make_config: Callable[..., DaemonConfig]) -> DaemonConfig:
    return make_config()


# -------------------------------------------------------------------------
# Event factories
# -------------------------------------------------------------------------


def make_raw_event(
    command: str = "ls",
    *,
    start_time: datetime = BASE_TIME,
    duration_ms: int = 10,
    cwd: str = "/home/user",
    exit_code: int = 0,
    shell: ShellKind = ShellKind.ZSH,
    session_id: str = "session-1",
    sequence: int = 0,
) -> RawCommandEvent:
    """Create a RawCommandEvent with sensible defaults."""
    return RawCommandEvent(
        command=command,
        start_time=start_time,
        duration_ms=duration_ms,
        cwd=cwd,
        exit_code=exit_code,
        shell=shell,
        session_id=session_id,
        sequence=sequence,
    )


def make_event(command: str = "ls", **kwargs: Any) -> CommandEvent:
    """Create a persisted-shape CommandEvent (ingested one second after start)."""
    raw = make_raw_event(command, **kwargs)
    return CommandEvent.from_raw(raw, ingested_at=raw.start_time.replace(second=1))


@pytest.fixture
def raw_event_factory() -> Callable[..., RawCommandEvent]:
    return make_raw_event


@pytest.fixture
def event_factory() -> Callable[..., CommandEvent]:
    return make_event


# -------------------------------------------------------------------------
# Store and engine
# -------------------------------------------------------------------------


@pytest.fixture
def store(config: DaemonConfig) -> Iterator[DurableEventStore]:
    event_store = DurableEventStore(config)
    event_store.open()
    yield event_store
    if event_store.is_open:
        event_store.close()


@pytest.fixture
def engine(config: DaemonConfig, store: DurableEventStore) -> AggregationEngine:
    aggregation = AggregationEngine(config, store)
    aggregation.load_baseline()
    aggregation.rebuild()
    return aggregation


def append_all(
    store: DurableEventStore,
    engine: AggregationEngine | None,
    events: list[CommandEvent],
) -> None:
    """Persist events the way the writer loop does: append, then apply."""
    for event in events:
        result = store.append(event)
        if engine is not None and not result.duplicate:
            engine.apply(event, result.position)


@pytest.fixture
def append_events() -> Callable[..., None]:
    return append_all
