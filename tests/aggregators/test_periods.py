# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT
"""Tests for Period keys, parsing and bucket arithmetic."""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from cliwrapped.aggregators.enums import Granularity
from cliwrapped.aggregators.periods import Period, period_keys, to_local

pytestmark = pytest.mark.unit

MOMENT = datetime(2024, 3, 5, 10, 30, tzinfo=UTC)
BERLIN = ZoneInfo("Europe/Berlin")


class TestContaining:
    @pytest.mark.parametrize(
        ("granularity", "key"),
        [
            (Granularity.HOUR, "2024-03-05T10"),
            (Granularity.DAY, "2024-03-05"),
            (Granularity.WEEK, "2024-W10"),
            (Granularity.YEAR, "2024"),
            (Granularity.ALL, "all"),
        ],
    )
    def test_keys_in_utc(self, granularity: Granularity, key: str) -> None:
        assert Period.containing(granularity, MOMENT, UTC).key == key

    def test_configured_zone_shifts_buckets(self) -> None:
        late = datetime(2024, 3, 5, 23, 30, tzinfo=UTC)
        assert Period.containing(Granularity.DAY, late, BERLIN).key == "2024-03-06"
        assert Period.containing(Granularity.HOUR, late, BERLIN).key == "2024-03-06T00"

    def test_iso_week_year_boundary(self) -> None:
        # 2024-12-30 (Monday) belongs to ISO week 1 of 2025
        moment = datetime(2024, 12, 30, 12, tzinfo=UTC)
        assert Period.containing(Granularity.WEEK, moment, UTC).key == "2025-W01"
        assert Period.containing(Granularity.YEAR, moment, UTC).key == "2024"

    def test_period_keys_touch_every_granularity(self) -> None:
        keys = period_keys(MOMENT, UTC)
        assert [p.granularity for p in keys] == list(Granularity)
        assert str(keys[0]) == "hour:2024-03-05T10"

    def test_to_local_treats_naive_as_utc(self) -> None:
        local = to_local(datetime(2024, 3, 5, 10), BERLIN)
        assert local.hour == 11


class TestParse:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("day:2024-03-05", Period(Granularity.DAY, "2024-03-05")),
            ("2024-03-05", Period(Granularity.DAY, "2024-03-05")),
            ("2024-03-05T10", Period(Granularity.HOUR, "2024-03-05T10")),
            ("2024-W10", Period(Granularity.WEEK, "2024-W10")),
            ("2024", Period(Granularity.YEAR, "2024")),
            ("all", Period.all_time()),
            ("all:all", Period.all_time()),
            (" year:2023 ", Period(Granularity.YEAR, "2023")),
        ],
    )
    def test_valid(self, text: str, expected: Period) -> None:
        assert Period.parse(text) == expected

    @pytest.mark.parametrize(
        "text", ["yesterday", "day:2024-13-01", "fortnight:2024", "week:2024-W99"]
    )
    def test_invalid(self, text: str) -> None:
        with pytest.raises(ValueError):
            Period.parse(text)

    def test_str_round_trip(self) -> None:
        period = Period(Granularity.WEEK, "2024-W10")
        assert Period.parse(str(period)) == period


class TestArithmetic:
    @pytest.mark.parametrize(
        ("current", "previous"),
        [
            ("hour:2024-03-05T00", "hour:2024-03-04T23"),
            ("day:2024-03-01", "day:2024-02-29"),
            ("week:2024-W01", "week:2023-W52"),
            ("year:2024", "year:2023"),
        ],
    )
    def test_previous(self, current: str, previous: str) -> None:
        assert str(Period.parse(current).previous()) == previous

    def test_all_time_has_no_previous(self) -> None:
        with pytest.raises(ValueError):
            Period.all_time().previous()

    def test_bounds_in_utc(self) -> None:
        start, end = Period.parse("day:2024-03-05").bounds(BERLIN)
        assert start == datetime(2024, 3, 4, 23, tzinfo=UTC)
        assert end == datetime(2024, 3, 5, 23, tzinfo=UTC)

    def test_all_time_bounds_open(self) -> None:
        assert Period.all_time().bounds(UTC) == (None, None)

    def test_days_of_week(self) -> None:
        days = Period.parse("week:2024-W10").days()
        assert days[0] == "2024-03-04"
        assert days[-1] == "2024-03-10"
        assert len(days) == 7

    def test_days_of_leap_year(self) -> None:
        assert len(Period.parse("year:2024").days()) == 366

    def test_hour_not_day_aligned(self) -> None:
        with pytest.raises(ValueError):
            Period.parse("hour:2024-03-05T10").days()
