# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT
"""Tests for rollup buckets and tables."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from cliwrapped.aggregators.enums import Granularity
from cliwrapped.aggregators.periods import Period
from cliwrapped.aggregators.rollups import BucketStats, RollupTable
from cliwrapped.events.models import CommandEvent

pytestmark = pytest.mark.unit

BASE = datetime(2024, 3, 5, 10, tzinfo=UTC)
DAY = Period(Granularity.DAY, "2024-03-05")


@pytest.fixture
def table(event_factory: Callable[..., CommandEvent]) -> RollupTable:
    rollups = RollupTable()
    rollups.apply(event_factory("ls", sequence=0, duration_ms=10), UTC)
    rollups.apply(event_factory("ls -la", sequence=1, duration_ms=30), UTC)
    rollups.apply(
        event_factory(
            "git status",
            sequence=2,
            exit_code=1,
            cwd="/repo",
            start_time=BASE + timedelta(days=1, hours=3),
        ),
        UTC,
    )
    return rollups


class TestRollupTable:
    def test_event_touches_every_granularity(
        self, event_factory: Callable[..., CommandEvent]
    ) -> None:
        rollups = RollupTable()
        rollups.apply(event_factory(), UTC)
        assert len(rollups) == 5
        assert {p.granularity for p in rollups.buckets} == set(Granularity)

    def test_bucket_counters(self, table: RollupTable) -> None:
        bucket = table.get(DAY)
        assert bucket is not None
        assert bucket.count == 2
        assert bucket.success_count == 2
        assert bucket.duration_ms_total == 40
        assert bucket.commands["ls"].count == 1
        assert bucket.categories["ls"].count == 2
        assert bucket.hour_of_day[10] == 2
        assert bucket.day_of_week[1] == 2  # Tuesday
        assert bucket.first_ms == bucket.last_ms

    def test_all_time_bucket(self, table: RollupTable) -> None:
        bucket = table.get(Period.all_time())
        assert bucket is not None
        assert bucket.count == 3
        assert bucket.exit_classes == {"success": 2, "failure": 1}
        assert bucket.directories["/repo"].success == 0
        assert bucket.first_ms < bucket.last_ms  # type: ignore[operator]

    def test_serialization_preserves_table(self, table: RollupTable) -> None:
        assert RollupTable.from_dict(table.to_dict()) == table

    def test_copy_is_independent(
        self, table: RollupTable, event_factory: Callable[..., CommandEvent]
    ) -> None:
        copy = table.copy()
        copy.apply(event_factory("pwd", sequence=9), UTC)
        assert copy != table
        assert table.get(DAY).count == 2  # type: ignore[union-attr]

    def test_merge_equals_combined_apply(
        self, event_factory: Callable[..., CommandEvent]
    ) -> None:
        events = [
            event_factory(cmd, sequence=i, start_time=BASE + timedelta(hours=i))
            for i, cmd in enumerate(["ls", "make", "ls", "git push"])
        ]
        combined = RollupTable()
        left, right = RollupTable(), RollupTable()
        for i, event in enumerate(events):
            combined.apply(event, UTC)
            (left if i < 2 else right).apply(event, UTC)

        left.merge(right)
        assert left == combined

    def test_diff_count(
        self, table: RollupTable, event_factory: Callable[..., CommandEvent]
    ) -> None:
        assert table.diff_count(table.copy()) == 0
        drifted = table.copy()
        drifted.apply(event_factory("ls", sequence=10), UTC)
        assert table.diff_count(drifted) > 0

    def test_records_flatten_counters(self, table: RollupTable) -> None:
        records = {
            (r.period, r.dimension, r.value, r.metric): r.amount
            for r in table.records()
        }
        assert records[("day:2024-03-05", "all", "", "count")] == 2
        assert records[("all:all", "command", "git status", "success")] == 0
        assert records[("all:all", "exit_class", "failure", "count")] == 1


class TestBucketStats:
    def test_from_dict_rejects_bad_histogram(self) -> None:
        data = BucketStats().to_dict()
        data["hour_of_day"] = [0] * 23
        with pytest.raises(ValueError):
            BucketStats.from_dict(data)
