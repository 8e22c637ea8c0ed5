# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT
"""Tests for command event models.

Covers:
- Wire aliases (startTime, durationMs, exitCode, sessionId)
- Timestamp coercion and UTC normalization
- Exit status classification and command categories
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from cliwrapped.events.models import (
    CommandEvent,
    ExitClass,
    RawCommandEvent,
    ShellKind,
    command_category,
)

pytestmark = pytest.mark.unit

WIRE_EVENT = {
    "command": "git status",
    "startTime": "2024-03-05T10:00:00Z",
    "durationMs": 42,
    "cwd": "/home/user/project",
    "exitCode": 0,
    "shell": "zsh",
    "sessionId": "abc",
    "sequence": 7,
}


class TestRawCommandEvent:
    def test_parses_wire_aliases(self) -> None:
        raw = RawCommandEvent.model_validate(WIRE_EVENT)

        assert raw.command == "git status"
        assert raw.start_time == datetime(2024, 3, 5, 10, tzinfo=UTC)
        assert raw.duration_ms == 42
        assert raw.exit_code == 0
        assert raw.shell is ShellKind.ZSH
        assert raw.session_id == "abc"
        assert raw.sequence == 7

    def test_accepts_python_field_names(self) -> None:
        raw = RawCommandEvent(
            command="ls",
            start_time=datetime(2024, 3, 5, 10, tzinfo=UTC),
            duration_ms=1,
            exit_code=0,
            session_id="s",
            sequence=0,
        )
        assert raw.shell is ShellKind.UNKNOWN
        assert raw.cwd == ""

    def test_epoch_seconds_coerced_to_utc(self) -> None:
        raw = RawCommandEvent.model_validate({**WIRE_EVENT, "startTime": 1709632800})
        assert raw.start_time == datetime(2024, 3, 5, 10, tzinfo=UTC)
        assert raw.start_time.tzinfo is UTC

    def test_naive_datetime_treated_as_utc(self) -> None:
        raw = RawCommandEvent.model_validate(
            {**WIRE_EVENT, "startTime": datetime(2024, 3, 5, 10)}
        )
        assert raw.start_time.tzinfo is UTC

    def test_offset_datetime_converted_to_utc(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        raw = RawCommandEvent.model_validate(
            {**WIRE_EVENT, "startTime": datetime(2024, 3, 5, 12, tzinfo=plus_two)}
        )
        assert raw.start_time == datetime(2024, 3, 5, 10, tzinfo=UTC)

    def test_to_wire_uses_aliases(self) -> None:
        wire = RawCommandEvent.model_validate(WIRE_EVENT).to_wire()
        assert wire["startTime"].startswith("2024-03-05T10:00:00")
        assert wire["durationMs"] == 42
        assert wire["exitCode"] == 0
        assert wire["sessionId"] == "abc"
        assert RawCommandEvent.model_validate(wire).start_time == datetime(
            2024, 3, 5, 10, tzinfo=UTC
        )

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("command", "   "),
            ("exitCode", 256),
            ("exitCode", -1),
            ("durationMs", -5),
            ("sessionId", ""),
            ("sequence", -1),
            ("shell", "tcsh"),
        ],
    )
    def test_invalid_fields_rejected(self, field: str, value: object) -> None:
        with pytest.raises(ValidationError):
            RawCommandEvent.model_validate({**WIRE_EVENT, field: value})

    def test_missing_required_field_rejected(self) -> None:
        payload = dict(WIRE_EVENT)
        del payload["exitCode"]
        with pytest.raises(ValidationError):
            RawCommandEvent.model_validate(payload)

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RawCommandEvent.model_validate({**WIRE_EVENT, "extra": 1})

    def test_frozen(self) -> None:
        raw = RawCommandEvent.model_validate(WIRE_EVENT)
        with pytest.raises(ValidationError):
            raw.command = "rm -rf /"  # type: ignore[misc]


class TestCommandEvent:
    def test_from_raw_copies_fields(self) -> None:
        raw = RawCommandEvent.model_validate(WIRE_EVENT)
        ingested = datetime(2024, 3, 5, 10, 0, 1, tzinfo=UTC)
        event = CommandEvent.from_raw(raw, ingested_at=ingested)

        assert event.command == raw.command
        assert event.started_at == raw.start_time
        assert event.ingested_at == ingested
        assert event.idempotency_key == ("abc", 7)

    def test_started_at_ms(self) -> None:
        raw = RawCommandEvent.model_validate(WIRE_EVENT)
        event = CommandEvent.from_raw(raw, ingested_at=raw.start_time)
        assert event.started_at_ms == 1709632800000

    def test_json_round_trip_preserves_event(self) -> None:
        raw = RawCommandEvent.model_validate(WIRE_EVENT)
        event = CommandEvent.from_raw(raw, ingested_at=raw.start_time)
        assert CommandEvent.model_validate_json(event.model_dump_json()) == event

    def test_category_and_exit_class(self) -> None:
        raw = RawCommandEvent.model_validate({**WIRE_EVENT, "exitCode": 127})
        event = CommandEvent.from_raw(raw, ingested_at=raw.start_time)
        assert event.category == "git"
        assert event.exit_class is ExitClass.NOT_FOUND


class TestExitClass:
    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            (0, ExitClass.SUCCESS),
            (1, ExitClass.FAILURE),
            (125, ExitClass.FAILURE),
            (126, ExitClass.NOT_EXECUTABLE),
            (127, ExitClass.NOT_FOUND),
            (130, ExitClass.SIGNAL),
            (255, ExitClass.SIGNAL),
        ],
    )
    def test_of(self, code: int, expected: ExitClass) -> None:
        assert ExitClass.of(code) is expected


class TestCommandCategory:
    def test_first_word(self) -> None:
        assert command_category("docker compose up -d") == "docker"

    def test_leading_whitespace_ignored(self) -> None:
        assert command_category("  make test") == "make"

    def test_blank_is_other(self) -> None:
        assert command_category("   ") == "other"
