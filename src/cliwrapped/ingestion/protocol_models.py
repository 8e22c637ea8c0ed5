# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Socket protocol request/response models.

Protocol: newline-delimited JSON over a Unix domain socket, one request
and one response line per message.

    Submit (bare):  {"command": "ls", "startTime": ..., "sessionId": ..., ...}\\n
    Submit:         {"op": "submit", "event": {...}}\\n
    Reply:          {"status": "accepted", "queue_depth": 3, ...}\\n

    Ping:           {"op": "ping"}\\n
    Reply:          {"status": "ok", "state": "running", "queue_depth": 3}\\n

    Status:         {"op": "status"}\\n
    Reply:          {"status": "status", "service": {...}}\\n
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from cliwrapped.lib.errors import EnumErrorCode
from cliwrapped.supervisor.models import ServiceStatus

# =============================================================================
# Request Models
# =============================================================================


class PingRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    op: Literal["ping"] = Field(default="ping")


class StatusRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    op: Literal["status"] = Field(default="status")


class SubmitRequest(BaseModel):
    """Event submission; the event body is validated by the ingestion service."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    op: Literal["submit"] = Field(default="submit")
    event: dict[str, Any] = Field(...)


def parse_request(data: dict[str, Any]) -> PingRequest | StatusRequest | SubmitRequest:
    """Parse a raw dict into a typed request.

    A dict without ``op`` is a bare event line and becomes a SubmitRequest.

    Raises:
        ValueError: Unknown ``op``.
    """
    op = data.get("op")
    if op is None:
        return SubmitRequest(event=data)
    if op == "ping":
        return PingRequest.model_validate(data)
    if op == "status":
        return StatusRequest.model_validate(data)
    if op == "submit":
        return SubmitRequest.model_validate(data)
    raise ValueError(f"Invalid request: unknown op {op!r}")


# =============================================================================
# Response Models
# =============================================================================


class AckStatus(StrEnum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"


class Acknowledgement(BaseModel):
    """Result of ``submit``.

    ACCEPTED means queued (not yet durable). DUPLICATE means the idempotency
    key is already stored or queued. REJECTED carries VALIDATION_ERROR or
    QUEUE_FULL. UNAVAILABLE means ingestion is not accepting events.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: AckStatus
    code: EnumErrorCode | None = None
    reason: str | None = None
    queue_depth: int = Field(default=0, ge=0)

    @property
    def ok(self) -> bool:
        return self.status in (AckStatus.ACCEPTED, AckStatus.DUPLICATE)

    @classmethod
    def accepted(cls, queue_depth: int) -> Acknowledgement:
        return cls(status=AckStatus.ACCEPTED, queue_depth=queue_depth)

    @classmethod
    def duplicate(cls, queue_depth: int) -> Acknowledgement:
        return cls(
            status=AckStatus.DUPLICATE,
            code=EnumErrorCode.DUPLICATE_EVENT,
            queue_depth=queue_depth,
        )

    @classmethod
    def rejected(
        cls, code: EnumErrorCode, reason: str, queue_depth: int = 0
    ) -> Acknowledgement:
        return cls(
            status=AckStatus.REJECTED, code=code, reason=reason, queue_depth=queue_depth
        )

    @classmethod
    def unavailable(cls, reason: str) -> Acknowledgement:
        return cls(
            status=AckStatus.UNAVAILABLE,
            code=EnumErrorCode.SERVICE_UNAVAILABLE,
            reason=reason,
        )


class PingResponse(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    status: Literal["ok"] = Field(default="ok")
    state: str
    queue_depth: int = Field(..., ge=0)


class StatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    status: Literal["status"] = Field(default="status")
    service: ServiceStatus


class ErrorResponse(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    status: Literal["error"] = Field(default="error")
    reason: str = Field(..., min_length=1)


def parse_response(
    data: dict[str, Any],
) -> Acknowledgement | PingResponse | StatusResponse | ErrorResponse:
    """Parse a raw dict into a typed response model.

    Raises:
        ValueError: Unknown status.
    """
    status = data.get("status")
    if status in {s.value for s in AckStatus}:
        return Acknowledgement.model_validate(data)
    if status == "ok":
        return PingResponse.model_validate(data)
    if status == "status":
        return StatusResponse.model_validate(data)
    if status == "error":
        return ErrorResponse.model_validate(data)
    raise ValueError(f"Unknown response status: {status}")


__all__: list[str] = [
    "AckStatus",
    "Acknowledgement",
    "ErrorResponse",
    "PingRequest",
    "PingResponse",
    "StatusRequest",
    "StatusResponse",
    "SubmitRequest",
    "parse_request",
    "parse_response",
]
