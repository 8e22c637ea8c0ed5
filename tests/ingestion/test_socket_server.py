# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT
"""Tests for the ingestion socket server and the hook client.

The hook client is synchronous; calls against a live server run in a
worker thread so the event loop can serve them.
"""

from __future__ import annotations

import asyncio
import json
import socket
import stat
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from cliwrapped.aggregators.aggregation_engine import AggregationEngine
from cliwrapped.config.settings import DaemonConfig
from cliwrapped.events.models import RawCommandEvent
from cliwrapped.ingestion.hook_client import (
    HandoffOutcome,
    HookClient,
    submit_from_hook,
)
from cliwrapped.ingestion.ingestion_service import IngestionService
from cliwrapped.ingestion.socket_server import IngestionSocketServer
from cliwrapped.storage.event_store import DurableEventStore
from cliwrapped.supervisor.models import ServiceState, ServiceStatus

RawFactory = Callable[..., RawCommandEvent]


@asynccontextmanager
async def running_server(
    config: DaemonConfig,
    store: DurableEventStore,
    engine: AggregationEngine,
) -> AsyncIterator[tuple[IngestionSocketServer, IngestionService]]:
    service = IngestionService(config, store, engine)
    server = IngestionSocketServer(
        config,
        service,
        lambda: ServiceStatus(
            state=ServiceState.RUNNING,
            queue_depth=service.depth(),
            events_stored=store.count,
        ),
    )
    await service.start()
    await server.start()
    try:
        yield server, service
    finally:
        await server.stop()
        await service.drain(timeout=2.0)


class TestProcessRequest:
    """Request dispatch without a live socket."""

    @pytest.fixture
    def make_server(
        self,
        store: DurableEventStore,
        engine: AggregationEngine,
    ) -> Callable[[DaemonConfig], tuple[IngestionSocketServer, IngestionService]]:
        def _make(config: DaemonConfig) -> tuple[IngestionSocketServer, IngestionService]:
            service = IngestionService(config, store, engine)
            server = IngestionSocketServer(
                config,
                service,
                lambda: ServiceStatus(state=ServiceState.RUNNING, queue_depth=4),
            )
            return server, service

        return _make

    @pytest.mark.asyncio
    async def test_ping(self, config: DaemonConfig, make_server) -> None:
        server, _ = make_server(config)
        reply = json.loads(await server._process_request(b'{"op": "ping"}\n'))
        assert reply == {"status": "ok", "state": "running", "queue_depth": 4}

    @pytest.mark.asyncio
    async def test_status(self, config: DaemonConfig, make_server) -> None:
        server, _ = make_server(config)
        reply = json.loads(await server._process_request(b'{"op": "status"}\n'))
        assert reply["status"] == "status"
        assert reply["service"]["state"] == "running"

    @pytest.mark.asyncio
    async def test_bare_event_line_is_a_submit(
        self,
        config: DaemonConfig,
        make_server,
        raw_event_factory: RawFactory,
    ) -> None:
        server, service = make_server(config)
        await service.start()
        line = json.dumps(raw_event_factory("ls").to_wire()).encode() + b"\n"

        reply = json.loads(await server._process_request(line))

        assert reply["status"] == "accepted"
        await service.drain(timeout=2.0)

    @pytest.mark.asyncio
    async def test_wrapped_submit(
        self,
        config: DaemonConfig,
        make_server,
        raw_event_factory: RawFactory,
    ) -> None:
        server, service = make_server(config)
        await service.start()
        request = {"op": "submit", "event": raw_event_factory("pwd").to_wire()}

        reply = json.loads(await server._process_request(json.dumps(request).encode()))

        assert reply["status"] == "accepted"
        await service.drain(timeout=2.0)

    @pytest.mark.asyncio
    async def test_invalid_event_is_rejected(
        self, config: DaemonConfig, make_server
    ) -> None:
        server, service = make_server(config)
        await service.start()

        reply = json.loads(await server._process_request(b'{"command": "ls"}\n'))

        assert reply["status"] == "rejected"
        assert reply["code"] == "VALIDATION_ERROR"
        await service.drain(timeout=2.0)

    @pytest.mark.parametrize(
        ("line", "fragment"),
        [
            (b"not json\n", "Invalid JSON"),
            (b"[1, 2, 3]\n", "JSON object"),
            (b'{"op": "explode"}\n', "unknown op"),
            (b'{"op": "ping", "extra": 1}\n', "extra"),
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_requests(
        self,
        config: DaemonConfig,
        make_server,
        line: bytes,
        fragment: str,
    ) -> None:
        server, _ = make_server(config)
        reply = json.loads(await server._process_request(line))
        assert reply["status"] == "error"
        assert fragment in reply["reason"]

    @pytest.mark.asyncio
    async def test_oversize_message(
        self, make_config: Callable[..., DaemonConfig], make_server
    ) -> None:
        server, _ = make_server(make_config(max_payload_bytes=1024))
        reply = json.loads(await server._process_request(b"x" * 2000 + b"\n"))
        assert reply["status"] == "error"
        assert "1024 bytes" in reply["reason"]


class TestLiveSocket:
    @pytest.mark.asyncio
    async def test_socket_lifecycle(
        self,
        config: DaemonConfig,
        store: DurableEventStore,
        engine: AggregationEngine,
    ) -> None:
        config.socket_path.write_text("leftover")
        async with running_server(config, store, engine) as (server, _):
            assert server.serving
            assert stat.S_ISSOCK(config.socket_path.stat().st_mode)
            assert stat.S_IMODE(config.socket_path.stat().st_mode) == 0o600
        assert not server.serving
        assert not config.socket_path.exists()

    @pytest.mark.asyncio
    async def test_hook_client_submit_and_duplicate(
        self,
        config: DaemonConfig,
        store: DurableEventStore,
        engine: AggregationEngine,
        raw_event_factory: RawFactory,
    ) -> None:
        event = raw_event_factory("git status", sequence=7)
        async with running_server(config, store, engine):
            with HookClient(config.socket_path, timeout=2.0) as client:
                first = await asyncio.to_thread(client.submit, event)
                second = await asyncio.to_thread(client.submit, event)

        assert first.outcome is HandoffOutcome.ACCEPTED
        assert first.delivered
        assert second.outcome is HandoffOutcome.DUPLICATE
        assert store.count == 1
        assert store.get(0).command == "git status"  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_hook_client_ping_and_status(
        self,
        config: DaemonConfig,
        store: DurableEventStore,
        engine: AggregationEngine,
    ) -> None:
        async with running_server(config, store, engine):
            with HookClient(config.socket_path, timeout=2.0) as client:
                pong = await asyncio.to_thread(client.ping)
                status = await asyncio.to_thread(client.status)

        assert pong is not None
        assert pong.state == "running"
        assert status is not None
        assert status.state is ServiceState.RUNNING

    @pytest.mark.asyncio
    async def test_rejection_reaches_client(
        self,
        config: DaemonConfig,
        store: DurableEventStore,
        engine: AggregationEngine,
    ) -> None:
        async with running_server(config, store, engine):
            with HookClient(config.socket_path, timeout=2.0) as client:
                result = await asyncio.to_thread(
                    client.submit, {"command": "ls", "sessionId": "s"}
                )

        assert result.outcome is HandoffOutcome.REJECTED
        assert not result.delivered
        assert store.count == 0

    @pytest.mark.asyncio
    async def test_submit_from_hook(
        self,
        make_config: Callable[..., DaemonConfig],
        store: DurableEventStore,
        engine: AggregationEngine,
    ) -> None:
        config = make_config(hook_timeout_seconds=2.0)
        hook_vars = {
            "command": "make test",
            "started": "1709632800.25",
            "finished": "1709632801.75",
            "status": "2",
            "cwd": "/repo",
            "session": "zsh-42",
            "sequence": "3",
        }
        async with running_server(config, store, engine):
            result = await asyncio.to_thread(submit_from_hook, "zsh", hook_vars, config)

        assert result.outcome is HandoffOutcome.ACCEPTED
        stored = store.get(0)
        assert stored is not None
        assert stored.duration_ms == 1500
        assert stored.exit_code == 2


class TestHookClientFailures:
    def test_missing_socket_is_unavailable(self, socket_path: Path) -> None:
        with HookClient(socket_path, timeout=0.2) as client:
            result = client.submit({"command": "ls"})
        assert result.outcome is HandoffOutcome.UNAVAILABLE
        assert client.ping() is None
        assert client.status() is None

    def test_silent_daemon_times_out(
        self, socket_path: Path, raw_event_factory: RawFactory
    ) -> None:
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        listener.bind(str(socket_path))
        listener.listen(1)
        try:
            with HookClient(socket_path, timeout=0.1) as client:
                result = client.submit(raw_event_factory())
        finally:
            listener.close()

        assert result.outcome is HandoffOutcome.TIMED_OUT
        assert result.elapsed_seconds < 1.0

    def test_bad_hook_variables_rejected(self, config: DaemonConfig) -> None:
        result = submit_from_hook("zsh", {"command": "ls"}, config)
        assert result.outcome is HandoffOutcome.REJECTED
        assert "invalid hook variables" in (result.reason or "")

    def test_unknown_shell_rejected(self, config: DaemonConfig) -> None:
        result = submit_from_hook("tcsh", {}, config)
        assert result.outcome is HandoffOutcome.REJECTED
