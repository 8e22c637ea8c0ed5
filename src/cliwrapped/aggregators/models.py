# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Report models produced by the aggregation engine.

Every report has a well-defined zero value so an empty store answers with
zeros instead of raising.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cliwrapped.aggregators.enums import UsageTrend

WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


class FrequencyEntry(BaseModel):
    """One row of a top-k table."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    value: str
    count: int = Field(..., ge=0)


class DurationFilter(BaseModel):
    """Selects the events averaged by ``average_duration``.

    At most one of ``command`` and ``directory`` may be set: rollups keep
    per-command and per-directory sums, not their cross product.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    period: str = Field(default="all", description="Period key, e.g. 'day:2024-03-05'")
    command: str | None = None
    directory: str | None = None

    @model_validator(mode="after")
    def validate_single_dimension(self) -> DurationFilter:
        if self.command is not None and self.directory is not None:
            raise ValueError("Filter by command or by directory, not both")
        return self


class BusiestSlot(BaseModel):
    """Winning hour-of-day (0-23) or day-of-week (0 = Monday) slot."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    dimension: str
    slot: int | None = None
    label: str | None = None
    count: int = 0


class ActivityOverview(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    today: int = 0
    this_week: int = 0
    this_month: int = 0
    weekly_average: float = 0.0
    total_commands: int = 0
    unique_commands: int = 0
    first_command_at: datetime | None = None
    last_command_at: datetime | None = None
    usage_trend: UsageTrend = UsageTrend.NOT_AVAILABLE


class WrappedSummary(BaseModel):
    """Composite year-in-review (or any period) report."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    period: str
    total_commands: int = 0
    unique_command_count: int = 0
    top_commands: list[FrequencyEntry] = Field(default_factory=list)
    top_directories: list[FrequencyEntry] = Field(default_factory=list)
    top_categories: list[FrequencyEntry] = Field(default_factory=list)
    busiest_hour: BusiestSlot
    busiest_day: BusiestSlot
    busiest_date: str | None = None
    busiest_date_count: int = 0
    active_days: int = 0
    longest_streak_days: int = 0
    longest_streak_start: str | None = None
    longest_streak_end: str | None = None
    success_rate: float = 0.0
    average_duration_ms: float = 0.0
    hour_distribution: list[int] = Field(default_factory=lambda: [0] * 24)
    weekday_distribution: list[int] = Field(default_factory=lambda: [0] * 7)
    first_command_at: datetime | None = None
    last_command_at: datetime | None = None


class ReconcileReport(BaseModel):
    """Outcome of one reconciliation pass."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    events_scanned: int
    drifted_records: int
    duration_seconds: float
    completed_at: datetime


class RetentionReport(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    segments: list[int] = Field(default_factory=list)
    events_removed: int = 0


__all__: list[str] = [
    "ActivityOverview",
    "BusiestSlot",
    "DurationFilter",
    "FrequencyEntry",
    "ReconcileReport",
    "RetentionReport",
    "WEEKDAY_NAMES",
    "WrappedSummary",
]
