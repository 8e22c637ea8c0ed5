# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Incremental rollups over the event store and the analytics built on them."""

from cliwrapped.aggregators.aggregation_engine import AggregationEngine
from cliwrapped.aggregators.enums import (
    BusiestDimension,
    Granularity,
    StatMetric,
    UsageTrend,
)
from cliwrapped.aggregators.models import (
    ActivityOverview,
    BusiestSlot,
    DurationFilter,
    FrequencyEntry,
    ReconcileReport,
    RetentionReport,
    WrappedSummary,
)
from cliwrapped.aggregators.periods import Period

__all__ = [
    "ActivityOverview",
    "AggregationEngine",
    "BusiestDimension",
    "BusiestSlot",
    "DurationFilter",
    "FrequencyEntry",
    "Granularity",
    "Period",
    "ReconcileReport",
    "RetentionReport",
    "StatMetric",
    "UsageTrend",
    "WrappedSummary",
]
