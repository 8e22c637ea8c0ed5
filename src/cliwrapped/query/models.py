# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Query API result models.

The analytics reports themselves are produced by the aggregation engine
and re-exported here so presentation code imports from one place.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from cliwrapped.aggregators.enums import StatMetric, UsageTrend
from cliwrapped.aggregators.models import (
    ActivityOverview,
    BusiestSlot,
    DurationFilter,
    FrequencyEntry,
    WrappedSummary,
)
from cliwrapped.events.models import CommandEvent


class HistoryPage(BaseModel):
    """One page of the command history."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    items: list[CommandEvent] = Field(default_factory=list)
    offset: int = Field(default=0, ge=0)
    limit: int = Field(..., ge=1)
    total: int = Field(default=0, ge=0)
    newest_first: bool = True

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


StatValue = (
    int | float | UsageTrend | BusiestSlot | list[FrequencyEntry] | dict[str, int]
)


class StatsResult(BaseModel):
    """Value of one metric over one period."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    metric: StatMetric
    period: str
    value: StatValue


__all__: list[str] = [
    "ActivityOverview",
    "BusiestSlot",
    "DurationFilter",
    "FrequencyEntry",
    "HistoryPage",
    "StatValue",
    "StatsResult",
    "WrappedSummary",
]
