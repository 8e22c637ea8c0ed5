# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Rollup working state.

These are internal mutable dataclasses, not report models. A RollupTable
maps every touched Period to a BucketStats; adding an event touches one
bucket per granularity (five buckets), each update a handful of dict and
list increments. Durations accumulate as integer milliseconds so means are
exact until the final division.

Tables compare equal field by field, which is how a rebuild from the store
is checked against the incrementally maintained table.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any

from cliwrapped.aggregators.periods import Period, period_keys, to_local
from cliwrapped.events.models import CommandEvent

HOURS_PER_DAY = 24
DAYS_PER_WEEK = 7


@dataclass
class DimensionStat:
    """Counters for one value of one dimension inside a bucket."""

    count: int = 0
    success: int = 0
    duration_ms: int = 0

    def add(self, succeeded: bool, duration_ms: int) -> None:
        self.count += 1
        self.success += int(succeeded)
        self.duration_ms += duration_ms

    def merge(self, other: DimensionStat) -> None:
        self.count += other.count
        self.success += other.success
        self.duration_ms += other.duration_ms

    def to_list(self) -> list[int]:
        return [self.count, self.success, self.duration_ms]

    @classmethod
    def from_list(cls, values: list[int]) -> DimensionStat:
        count, success, duration_ms = values
        return cls(int(count), int(success), int(duration_ms))


def _merge_dims(target: dict[str, DimensionStat], source: dict[str, DimensionStat]) -> None:
    for key, stat in source.items():
        target.setdefault(key, DimensionStat()).merge(stat)


@dataclass
class BucketStats:
    """Everything known about one period.

    Attributes:
        count: Events in the period.
        success_count: Events with exit status 0.
        duration_ms_total: Sum of durations in milliseconds.
        commands: Per command text.
        directories: Per working directory.
        categories: Per command category (first word).
        exit_classes: Event count per ExitClass value.
        hour_of_day: Local hour histogram (24 slots).
        day_of_week: Local weekday histogram, Monday = 0 (7 slots).
        first_ms: Earliest start time, epoch milliseconds.
        last_ms: Latest start time, epoch milliseconds.
    """

    count: int = 0
    success_count: int = 0
    duration_ms_total: int = 0
    commands: dict[str, DimensionStat] = field(default_factory=dict)
    directories: dict[str, DimensionStat] = field(default_factory=dict)
    categories: dict[str, DimensionStat] = field(default_factory=dict)
    exit_classes: dict[str, int] = field(default_factory=dict)
    hour_of_day: list[int] = field(default_factory=lambda: [0] * HOURS_PER_DAY)
    day_of_week: list[int] = field(default_factory=lambda: [0] * DAYS_PER_WEEK)
    first_ms: int | None = None
    last_ms: int | None = None

    def add(self, event: CommandEvent, local_start: datetime) -> None:
        succeeded = event.exit_code == 0
        self.count += 1
        self.success_count += int(succeeded)
        self.duration_ms_total += event.duration_ms
        self.commands.setdefault(event.command, DimensionStat()).add(
            succeeded, event.duration_ms
        )
        self.directories.setdefault(event.cwd, DimensionStat()).add(
            succeeded, event.duration_ms
        )
        self.categories.setdefault(event.category, DimensionStat()).add(
            succeeded, event.duration_ms
        )
        exit_class = event.exit_class.value
        self.exit_classes[exit_class] = self.exit_classes.get(exit_class, 0) + 1
        self.hour_of_day[local_start.hour] += 1
        self.day_of_week[local_start.weekday()] += 1

        started_ms = event.started_at_ms
        if self.first_ms is None or started_ms < self.first_ms:
            self.first_ms = started_ms
        if self.last_ms is None or started_ms > self.last_ms:
            self.last_ms = started_ms

    def merge(self, other: BucketStats) -> None:
        self.count += other.count
        self.success_count += other.success_count
        self.duration_ms_total += other.duration_ms_total
        _merge_dims(self.commands, other.commands)
        _merge_dims(self.directories, other.directories)
        _merge_dims(self.categories, other.categories)
        for key, value in other.exit_classes.items():
            self.exit_classes[key] = self.exit_classes.get(key, 0) + value
        for i, value in enumerate(other.hour_of_day):
            self.hour_of_day[i] += value
        for i, value in enumerate(other.day_of_week):
            self.day_of_week[i] += value
        if other.first_ms is not None and (
            self.first_ms is None or other.first_ms < self.first_ms
        ):
            self.first_ms = other.first_ms
        if other.last_ms is not None and (
            self.last_ms is None or other.last_ms > self.last_ms
        ):
            self.last_ms = other.last_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "success_count": self.success_count,
            "duration_ms_total": self.duration_ms_total,
            "commands": {k: v.to_list() for k, v in self.commands.items()},
            "directories": {k: v.to_list() for k, v in self.directories.items()},
            "categories": {k: v.to_list() for k, v in self.categories.items()},
            "exit_classes": dict(self.exit_classes),
            "hour_of_day": list(self.hour_of_day),
            "day_of_week": list(self.day_of_week),
            "first_ms": self.first_ms,
            "last_ms": self.last_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BucketStats:
        hour_of_day = [int(v) for v in data["hour_of_day"]]
        day_of_week = [int(v) for v in data["day_of_week"]]
        if len(hour_of_day) != HOURS_PER_DAY or len(day_of_week) != DAYS_PER_WEEK:
            raise ValueError("Histogram has the wrong number of slots")
        return cls(
            count=int(data["count"]),
            success_count=int(data["success_count"]),
            duration_ms_total=int(data["duration_ms_total"]),
            commands={k: DimensionStat.from_list(v) for k, v in data["commands"].items()},
            directories={
                k: DimensionStat.from_list(v) for k, v in data["directories"].items()
            },
            categories={k: DimensionStat.from_list(v) for k, v in data["categories"].items()},
            exit_classes={k: int(v) for k, v in data["exit_classes"].items()},
            hour_of_day=hour_of_day,
            day_of_week=day_of_week,
            first_ms=data.get("first_ms"),
            last_ms=data.get("last_ms"),
        )


@dataclass(frozen=True)
class AggregateRecord:
    """One flattened counter: (period, dimension, value, metric) -> amount."""

    period: str
    dimension: str
    value: str
    metric: str
    amount: int


def _record_key(record: AggregateRecord) -> tuple[str, str, str, str]:
    return (record.period, record.dimension, record.value, record.metric)


class RollupTable:
    """Period -> BucketStats."""

    def __init__(self) -> None:
        self.buckets: dict[Period, BucketStats] = {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RollupTable):
            return NotImplemented
        return self.buckets == other.buckets

    def __len__(self) -> int:
        return len(self.buckets)

    def apply(self, event: CommandEvent, tz: tzinfo | None = None) -> None:
        local = to_local(event.started_at, tz)
        for period in period_keys(event.started_at, tz):
            bucket = self.buckets.get(period)
            if bucket is None:
                bucket = self.buckets[period] = BucketStats()
            bucket.add(event, local)

    def get(self, period: Period) -> BucketStats | None:
        return self.buckets.get(period)

    def merge(self, other: RollupTable) -> None:
        for period, bucket in other.buckets.items():
            self.buckets.setdefault(period, BucketStats()).merge(bucket)

    def copy(self) -> RollupTable:
        return RollupTable.from_dict(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {str(period): bucket.to_dict() for period, bucket in self.buckets.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RollupTable:
        table = cls()
        for key, bucket in data.items():
            table.buckets[Period.parse(key)] = BucketStats.from_dict(bucket)
        return table

    def records(self) -> Iterator[AggregateRecord]:
        """Flatten every counter, e.g. (hour:2024-03-05T10, command, ls, count) -> 2."""
        for period, bucket in self.buckets.items():
            key = str(period)
            yield AggregateRecord(key, "all", "", "count", bucket.count)
            yield AggregateRecord(key, "all", "", "success", bucket.success_count)
            yield AggregateRecord(key, "all", "", "duration_ms", bucket.duration_ms_total)
            for dimension, table in (
                ("command", bucket.commands),
                ("directory", bucket.directories),
                ("category", bucket.categories),
            ):
                for value, stat in table.items():
                    yield AggregateRecord(key, dimension, value, "count", stat.count)
                    yield AggregateRecord(key, dimension, value, "success", stat.success)
                    yield AggregateRecord(key, dimension, value, "duration_ms", stat.duration_ms)
            for value, amount in bucket.exit_classes.items():
                yield AggregateRecord(key, "exit_class", value, "count", amount)

    def diff_count(self, other: RollupTable) -> int:
        """Number of flattened records that differ between two tables."""
        mine = {_record_key(r): r.amount for r in self.records()}
        theirs = {_record_key(r): r.amount for r in other.records()}
        keys = mine.keys() | theirs.keys()
        return sum(1 for key in keys if mine.get(key, 0) != theirs.get(key, 0))


__all__: list[str] = [
    "AggregateRecord",
    "BucketStats",
    "DimensionStat",
    "RollupTable",
]
