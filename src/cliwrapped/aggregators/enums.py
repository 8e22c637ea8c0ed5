# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Enums for the aggregation engine and its query surface."""

from __future__ import annotations

from enum import StrEnum


class Granularity(StrEnum):
    """Width of a rollup bucket.

    Attributes:
        HOUR: One clock hour in the configured timezone.
        DAY: One calendar day.
        WEEK: One ISO week (Monday start).
        YEAR: One calendar year.
        ALL: The single all-time bucket.

    Example:
        >>> Granularity("day")
        <Granularity.DAY: 'day'>
    """

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    YEAR = "year"
    ALL = "all"


class StatMetric(StrEnum):
    """Metrics answerable by ``QueryAPI.stats``."""

    COUNT = "count"
    TOP_COMMANDS = "top_commands"
    TOP_DIRECTORIES = "top_directories"
    TOP_CATEGORIES = "top_categories"
    SUCCESS_RATE = "success_rate"
    AVERAGE_DURATION = "average_duration"
    BUSIEST_HOUR = "busiest_hour"
    BUSIEST_DAY = "busiest_day"
    EXIT_CLASSES = "exit_classes"
    USAGE_TREND = "usage_trend"


class BusiestDimension(StrEnum):
    HOUR_OF_DAY = "hour_of_day"
    DAY_OF_WEEK = "day_of_week"


class UsageTrend(StrEnum):
    """Direction of usage compared with the preceding period."""

    INCREASING = "increasing"
    DECREASING = "decreasing"
    STEADY = "steady"
    NOT_AVAILABLE = "not_available"


__all__ = [
    "BusiestDimension",
    "Granularity",
    "StatMetric",
    "UsageTrend",
]
