# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Command event models.

RawCommandEvent is the canonical shape every shell adapter normalizes to and
the payload carried over the ingestion socket (camelCase on the wire).
CommandEvent is the validated, immutable record persisted in the log.

Timestamp fields have no ``datetime.now()`` default: producers inject the
command's start time, and the ingestion service injects ``ingested_at``.
Naive datetimes are interpreted as UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.functional_validators import BeforeValidator

MAX_COMMAND_LENGTH = 16_384
EXIT_STATUS_MIN = 0
EXIT_STATUS_MAX = 255
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class ShellKind(StrEnum):
    """Shells with a hook adapter, plus UNKNOWN for imported history."""

    ZSH = "zsh"
    BASH = "bash"
    FISH = "fish"
    UNKNOWN = "unknown"


class ExitClass(StrEnum):
    """Coarse classification of an exit status.

    Values:
        SUCCESS: 0.
        FAILURE: 1-125, the command ran and reported an error.
        NOT_EXECUTABLE: 126, found but not executable.
        NOT_FOUND: 127, command not found.
        SIGNAL: 128-255, terminated by a signal (128 + n).
    """

    SUCCESS = "success"
    FAILURE = "failure"
    NOT_EXECUTABLE = "not_executable"
    NOT_FOUND = "not_found"
    SIGNAL = "signal"

    @classmethod
    def of(cls, exit_code: int) -> ExitClass:
        if exit_code == 0:
            return cls.SUCCESS
        if exit_code == 126:
            return cls.NOT_EXECUTABLE
        if exit_code == 127:
            return cls.NOT_FOUND
        if exit_code >= 128:
            return cls.SIGNAL
        return cls.FAILURE


def _coerce_timestamp(v: object) -> object:
    """Accept epoch seconds (int/float/numeric str) as well as datetimes."""
    if isinstance(v, bool):
        return v
    if isinstance(v, int | float):
        return datetime.fromtimestamp(v, tz=UTC)
    if isinstance(v, str):
        try:
            return datetime.fromtimestamp(float(v), tz=UTC)
        except ValueError:
            return v
    return v


def _ensure_utc(v: datetime) -> datetime:
    if v.tzinfo is None:
        return v.replace(tzinfo=UTC)
    if v.utcoffset() == timedelta(0):
        if v.tzinfo is not UTC:
            return v.replace(tzinfo=UTC)
        return v
    return v.astimezone(UTC)


Timestamp = Annotated[datetime, BeforeValidator(_coerce_timestamp)]


def command_category(command: str) -> str:
    """First word of the command, used as its category ("other" if blank)."""
    parts = command.split(None, 1)
    return parts[0] if parts else "other"


class RawCommandEvent(BaseModel):
    """Unvalidated-at-the-edge record for one completed command.

    Field aliases match the socket protocol:
    ``{command, startTime, durationMs, cwd, exitCode, shell, sessionId, sequence}``.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        str_strip_whitespace=False,
    )

    command: str = Field(..., max_length=MAX_COMMAND_LENGTH)
    start_time: Timestamp = Field(..., alias="startTime")
    duration_ms: int = Field(..., alias="durationMs", ge=0)
    cwd: str = Field(default="")
    exit_code: int = Field(
        ..., alias="exitCode", ge=EXIT_STATUS_MIN, le=EXIT_STATUS_MAX
    )
    shell: ShellKind = Field(default=ShellKind.UNKNOWN)
    session_id: str = Field(..., alias="sessionId", min_length=1, max_length=256)
    sequence: int = Field(..., ge=0)

    @field_validator("command", mode="after")
    @classmethod
    def validate_command_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("command text must not be empty")
        return v

    @field_validator("start_time", mode="after")
    @classmethod
    def ensure_utc_aware(cls, v: datetime) -> datetime:
        return _ensure_utc(v)

    def to_wire(self) -> dict[str, object]:
        """Serialize with protocol aliases (startTime as ISO-8601)."""
        return self.model_dump(mode="json", by_alias=True)


class CommandEvent(BaseModel):
    """A validated, persisted shell command event. Immutable."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    command: str = Field(..., min_length=1, max_length=MAX_COMMAND_LENGTH)
    started_at: datetime
    duration_ms: int = Field(..., ge=0)
    cwd: str = Field(default="")
    exit_code: int = Field(..., ge=EXIT_STATUS_MIN, le=EXIT_STATUS_MAX)
    shell: ShellKind
    session_id: str = Field(..., min_length=1)
    sequence: int = Field(..., ge=0)
    ingested_at: datetime

    @field_validator("started_at", "ingested_at", mode="after")
    @classmethod
    def ensure_utc_aware(cls, v: datetime) -> datetime:
        return _ensure_utc(v)

    @classmethod
    def from_raw(cls, raw: RawCommandEvent, ingested_at: datetime) -> CommandEvent:
        return cls(
            command=raw.command,
            started_at=raw.start_time,
            duration_ms=raw.duration_ms,
            cwd=raw.cwd,
            exit_code=raw.exit_code,
            shell=raw.shell,
            session_id=raw.session_id,
            sequence=raw.sequence,
            ingested_at=ingested_at,
        )

    @property
    def idempotency_key(self) -> tuple[str, int]:
        return (self.session_id, self.sequence)

    @property
    def started_at_ms(self) -> int:
        return (self.started_at - _EPOCH) // timedelta(milliseconds=1)

    @property
    def exit_class(self) -> ExitClass:
        return ExitClass.of(self.exit_code)

    @property
    def category(self) -> str:
        return command_category(self.command)


__all__: list[str] = [
    "CommandEvent",
    "EXIT_STATUS_MAX",
    "EXIT_STATUS_MIN",
    "ExitClass",
    "RawCommandEvent",
    "ShellKind",
    "command_category",
]
