# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Unix socket channel in front of the ingestion service.

Architecture:
    shell hook -> HookClient -> Unix socket -> IngestionSocketServer -> IngestionService

One connection may carry many newline-delimited requests; each gets exactly
one response line. The socket file is created with ``socket_permissions``
(0600 by default) so only the owning user can submit.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable

from pydantic import ValidationError

from cliwrapped.config.settings import DaemonConfig
from cliwrapped.ingestion.ingestion_service import IngestionService
from cliwrapped.ingestion.protocol_models import (
    ErrorResponse,
    PingRequest,
    PingResponse,
    StatusRequest,
    StatusResponse,
    parse_request,
)
from cliwrapped.supervisor.models import ServiceStatus

logger = logging.getLogger(__name__)

_STREAM_OVERHEAD = 4096


class IngestionSocketServer:
    """Serves submit/ping/status requests over a Unix domain socket."""

    def __init__(
        self,
        config: DaemonConfig,
        ingestion: IngestionService,
        status_provider: Callable[[], ServiceStatus],
    ) -> None:
        self._config = config
        self._ingestion = ingestion
        self._status_provider = status_provider
        self._server: asyncio.AbstractServer | None = None
        self._closing = asyncio.Event()
        self._clients: set[asyncio.StreamWriter] = set()

    @property
    def serving(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        """Bind the socket, replacing a leftover file from a dead instance.

        The caller holds the instance lock, so any existing socket file is stale.
        """
        path = self._config.socket_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists() or path.is_symlink():
            path.unlink()
            logger.info(f"Removed stale socket: {path}")

        self._closing.clear()
        self._server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(path),
            limit=self._config.max_payload_bytes + _STREAM_OVERHEAD,
        )
        path.chmod(self._config.socket_permissions)
        logger.info("Ingestion socket listening", extra={"socket_path": str(path)})

    async def stop(self) -> None:
        if self._server is None:
            return
        self._closing.set()
        self._server.close()
        for writer in list(self._clients):
            writer.close()
        await self._server.wait_closed()
        self._server = None
        path = self._config.socket_path
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove socket file: {e}")
        logger.info("Ingestion socket closed")

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle one client connection (newline-delimited JSON protocol)."""
        self._clients.add(writer)
        try:
            while not self._closing.is_set():
                try:
                    line = await asyncio.wait_for(
                        reader.readline(),
                        timeout=self._config.socket_timeout_seconds,
                    )
                except TimeoutError:
                    break
                except (asyncio.LimitOverrunError, ValueError):
                    response = ErrorResponse(
                        reason=f"Message exceeds {self._config.max_payload_bytes} bytes"
                    ).model_dump_json()
                    writer.write(response.encode("utf-8") + b"\n")
                    await writer.drain()
                    break

                if not line:
                    break

                response = await self._process_request(line)
                writer.write(response.encode("utf-8") + b"\n")
                await writer.drain()

        except (ConnectionResetError, BrokenPipeError):
            pass
        except Exception as e:
            logger.exception(f"Error handling client: {e}")
        finally:
            self._clients.discard(writer)
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionResetError, BrokenPipeError):
                logger.debug("Error closing client writer", exc_info=True)

    async def _process_request(self, line: bytes) -> str:
        if len(line) > self._config.max_payload_bytes + 1:
            return ErrorResponse(
                reason=f"Message exceeds {self._config.max_payload_bytes} bytes"
            ).model_dump_json()

        try:
            raw_request = json.loads(line.decode("utf-8").strip())
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return ErrorResponse(reason=f"Invalid JSON: {e}").model_dump_json()

        if not isinstance(raw_request, dict):
            return ErrorResponse(
                reason="Request must be a JSON object"
            ).model_dump_json()

        try:
            request = parse_request(raw_request)
        except (ValueError, ValidationError) as e:
            return ErrorResponse(reason=str(e)).model_dump_json()

        if isinstance(request, PingRequest):
            status = self._status_provider()
            return PingResponse(
                state=status.state.value, queue_depth=status.queue_depth
            ).model_dump_json()
        if isinstance(request, StatusRequest):
            return StatusResponse(service=self._status_provider()).model_dump_json()

        ack = await self._ingestion.submit(request.event)
        return ack.model_dump_json()


__all__: list[str] = ["IngestionSocketServer"]
