# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Synchronous Unix socket client used by shell hooks.

The handoff is fire-and-forget with a bounded acknowledgement wait: the
whole exchange (connect + send + receive) shares one deadline of
``hook_timeout_seconds``. The client never raises; every failure maps to a
HandoffOutcome so a hook can always return promptly.

Protocol: newline-delimited JSON over a Unix domain socket.
    Submit: {"command": "...", "startTime": ..., ...}\\n
    Reply:  {"status": "accepted", "queue_depth": N}\\n
"""

from __future__ import annotations

import json
import logging
import socket
import time
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from cliwrapped.config.settings import DaemonConfig
from cliwrapped.events.adapters import adapter_for
from cliwrapped.events.models import RawCommandEvent, ShellKind
from cliwrapped.ingestion.protocol_models import (
    Acknowledgement,
    AckStatus,
    ErrorResponse,
    PingResponse,
    StatusResponse,
    parse_response,
)
from cliwrapped.supervisor.models import ServiceStatus

logger = logging.getLogger(__name__)

# 4 KiB is generous for a single JSON response line
_RECV_BUFSIZE = 4096
# Guard against unbounded buffer growth from a misbehaving daemon (1 MiB)
_MAX_RESPONSE_SIZE = 1_048_576


class HandoffOutcome(StrEnum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class HandoffResult:
    outcome: HandoffOutcome
    reason: str | None = None
    elapsed_seconds: float = 0.0

    @property
    def delivered(self) -> bool:
        return self.outcome in (HandoffOutcome.ACCEPTED, HandoffOutcome.DUPLICATE)


_ACK_OUTCOMES = {
    AckStatus.ACCEPTED: HandoffOutcome.ACCEPTED,
    AckStatus.DUPLICATE: HandoffOutcome.DUPLICATE,
    AckStatus.REJECTED: HandoffOutcome.REJECTED,
    AckStatus.UNAVAILABLE: HandoffOutcome.UNAVAILABLE,
}


class HookClient:
    """Client for the daemon's ingestion socket.

    Connection is lazy (opened on first call). Thread-safety is the
    caller's responsibility.

    Args:
        socket_path: Path to the daemon's Unix domain socket.
        timeout: Deadline in seconds for one complete request/response.
    """

    def __init__(self, socket_path: str | Path, timeout: float = 0.2) -> None:
        self._socket_path = str(socket_path)
        self._timeout = timeout
        self._sock: socket.socket | None = None
        self._buf = bytearray()

    @classmethod
    def from_config(cls, config: DaemonConfig) -> HookClient:
        return cls(config.socket_path, timeout=config.hook_timeout_seconds)

    def _connect(self, deadline: float) -> socket.socket:
        if self._sock is not None:
            return self._sock
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(_remaining(deadline))
            sock.connect(self._socket_path)
        except Exception:
            sock.close()
            raise
        self._sock = sock
        self._buf = bytearray()
        return sock

    def _exchange(self, request: Mapping[str, Any]) -> dict[str, Any]:
        deadline = time.monotonic() + self._timeout
        line = json.dumps(request).encode("utf-8") + b"\n"
        sock = self._connect(deadline)
        sock.settimeout(_remaining(deadline))
        sock.sendall(line)
        while b"\n" not in self._buf:
            sock.settimeout(_remaining(deadline))
            chunk = sock.recv(_RECV_BUFSIZE)
            if not chunk:
                raise ConnectionResetError("daemon closed connection")
            self._buf.extend(chunk)
            if len(self._buf) > _MAX_RESPONSE_SIZE:
                raise ValueError("daemon response exceeded size limit")
        idx = self._buf.index(b"\n")
        resp_line = bytes(self._buf[:idx])
        self._buf = self._buf[idx + 1 :]
        data = json.loads(resp_line)
        if not isinstance(data, dict):
            raise ValueError("daemon response is not a JSON object")
        return data

    def submit(self, event: RawCommandEvent | Mapping[str, Any]) -> HandoffResult:
        """Hand one event to the daemon and wait (bounded) for its acknowledgement."""
        started = time.monotonic()
        payload = event.to_wire() if isinstance(event, RawCommandEvent) else dict(event)
        try:
            response = parse_response(self._exchange(payload))
        except TimeoutError:
            self.close()
            return HandoffResult(
                HandoffOutcome.TIMED_OUT,
                f"no acknowledgement within {self._timeout}s",
                time.monotonic() - started,
            )
        except (OSError, ValueError, ValidationError) as e:
            self.close()
            logger.debug(f"Hook handoff failed: {e}")
            return HandoffResult(
                HandoffOutcome.UNAVAILABLE, str(e), time.monotonic() - started
            )

        elapsed = time.monotonic() - started
        if isinstance(response, Acknowledgement):
            outcome = _ACK_OUTCOMES[response.status]
            return HandoffResult(outcome, response.reason, elapsed)
        if isinstance(response, ErrorResponse):
            return HandoffResult(HandoffOutcome.REJECTED, response.reason, elapsed)
        return HandoffResult(
            HandoffOutcome.UNAVAILABLE, f"unexpected response {response!r}", elapsed
        )

    def ping(self) -> PingResponse | None:
        """Ping the daemon; None if it does not answer in time."""
        try:
            response = parse_response(self._exchange({"op": "ping"}))
        except (OSError, ValueError, ValidationError):
            self.close()
            return None
        return response if isinstance(response, PingResponse) else None

    def status(self) -> ServiceStatus | None:
        try:
            response = parse_response(self._exchange({"op": "status"}))
        except (OSError, ValueError, ValidationError):
            self.close()
            return None
        return response.service if isinstance(response, StatusResponse) else None

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None
            self._buf = bytearray()

    def __enter__(self) -> HookClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _remaining(deadline: float) -> float:
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise TimeoutError("hook handoff deadline exceeded")
    return remaining


def submit_from_hook(
    shell: ShellKind | str,
    hook_vars: Mapping[str, str],
    config: DaemonConfig | None = None,
) -> HandoffResult:
    """Normalize one shell's hook variables and hand the event to the daemon."""
    config = config or DaemonConfig()
    try:
        event = adapter_for(shell).normalize(hook_vars)
    except (KeyError, ValueError) as e:
        return HandoffResult(HandoffOutcome.REJECTED, f"invalid hook variables: {e}")
    with HookClient.from_config(config) as client:
        return client.submit(event)


__all__: list[str] = [
    "HandoffOutcome",
    "HandoffResult",
    "HookClient",
    "submit_from_hook",
]
