# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Error codes and exception classes for cli-wrapped.

Per-event errors (EventValidationError) are isolated to the single event
and turned into rejection acknowledgements. Structural errors (storage,
corruption, lock) are surfaced through the supervisor's status.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class EnumErrorCode(StrEnum):
    """Error codes surfaced in acknowledgements and service status."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    DUPLICATE_EVENT = "DUPLICATE_EVENT"
    QUEUE_FULL = "QUEUE_FULL"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    IO_ERROR = "IO_ERROR"
    STORAGE_DEGRADED = "STORAGE_DEGRADED"
    CORRUPTION = "CORRUPTION"
    LOCK_CONFLICT = "LOCK_CONFLICT"
    DRAIN_TIMEOUT = "DRAIN_TIMEOUT"
    SCAN_CANCELLED = "SCAN_CANCELLED"


class CliWrappedError(Exception):
    """Base exception with an error code and contextual details.

    Attributes:
        code: Error code from EnumErrorCode.
        message: Human-readable error message.
        details: Additional error context.
    """

    default_code: EnumErrorCode = EnumErrorCode.IO_ERROR

    def __init__(
        self,
        message: str,
        code: EnumErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code}, message={self.message!r}, "
            f"details={self.details})"
        )


class EventValidationError(CliWrappedError):
    """A raw event failed validation. Only that event is discarded."""

    default_code = EnumErrorCode.VALIDATION_ERROR


class StorageIOError(CliWrappedError):
    """A write to the event store failed."""

    default_code = EnumErrorCode.IO_ERROR


class CorruptionError(CliWrappedError):
    """The log, index, or schema marker is inconsistent beyond repair by replay."""

    default_code = EnumErrorCode.CORRUPTION


class LockConflictError(CliWrappedError):
    """Another live instance holds the instance lock.

    Attributes:
        holder_pid: PID recorded by the holder, if readable.
    """

    default_code = EnumErrorCode.LOCK_CONFLICT

    def __init__(self, message: str, holder_pid: int | None = None) -> None:
        super().__init__(message, details={"holder_pid": holder_pid})
        self.holder_pid = holder_pid


class DrainTimeoutError(CliWrappedError):
    """The drain-on-stop flush did not finish within its timeout."""

    default_code = EnumErrorCode.DRAIN_TIMEOUT

    def __init__(self, lost_events: int) -> None:
        super().__init__(
            f"Drain timeout exceeded with {lost_events} events unflushed",
            details={"lost_events": lost_events},
        )
        self.lost_events = lost_events


class ServiceUnavailableError(CliWrappedError):
    """Ingestion is not accepting events (draining, stopped, or failed)."""

    default_code = EnumErrorCode.SERVICE_UNAVAILABLE


class ScanCancelledError(CliWrappedError):
    """A long-running scan stopped at a checkpoint because shutdown was requested."""

    default_code = EnumErrorCode.SCAN_CANCELLED


__all__ = [
    "CliWrappedError",
    "CorruptionError",
    "DrainTimeoutError",
    "EnumErrorCode",
    "EventValidationError",
    "LockConflictError",
    "ScanCancelledError",
    "ServiceUnavailableError",
    "StorageIOError",
]
