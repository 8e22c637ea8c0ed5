# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT
"""Tests for the read-only QueryAPI."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from cliwrapped.aggregators.aggregation_engine import AggregationEngine
from cliwrapped.aggregators.enums import StatMetric, UsageTrend
from cliwrapped.config.settings import DaemonConfig
from cliwrapped.events.models import CommandEvent
from cliwrapped.query.models import BusiestSlot, DurationFilter
from cliwrapped.query.query_api import MAX_PAGE_SIZE, QueryAPI
from cliwrapped.storage.event_store import DurableEventStore
from cliwrapped.supervisor.models import ServiceState, ServiceStatus

pytestmark = pytest.mark.unit

BASE = datetime(2024, 3, 5, 10, tzinfo=UTC)


@pytest.fixture
def api(
    store: DurableEventStore,
    engine: AggregationEngine,
    event_factory: Callable[..., CommandEvent],
    append_events: Callable[..., None],
) -> QueryAPI:
    append_events(
        store,
        engine,
        [
            event_factory("ls", sequence=0, duration_ms=10),
            event_factory(
                "ls",
                sequence=1,
                duration_ms=30,
                cwd="/repo",
                start_time=BASE + timedelta(hours=1),
            ),
            event_factory(
                "git status",
                sequence=2,
                duration_ms=20,
                exit_code=1,
                cwd="/repo",
                start_time=BASE + timedelta(days=1),
            ),
            event_factory(
                "make",
                cwd="/tmp/build",
                session_id="session-2",
                start_time=BASE + timedelta(days=2),
            ),
        ],
    )
    return QueryAPI(store, engine)


class TestHistory:
    def test_newest_first_paging(self, api: QueryAPI) -> None:
        page = api.history(offset=1, limit=2)
        assert page.total == 4
        assert [e.command for e in page.items] == ["git status", "ls"]
        assert page.has_more

    def test_oldest_first(self, api: QueryAPI) -> None:
        page = api.history(limit=10, newest_first=False)
        assert page.items[0].command == "ls"
        assert page.items[-1].command == "make"
        assert not page.has_more

    def test_command_filter(self, api: QueryAPI) -> None:
        assert api.history(command="ls").total == 2
        assert api.history(command="git", prefix=True).total == 1
        assert api.history(command="git").total == 0

    def test_directory_filter(self, api: QueryAPI) -> None:
        page = api.history(directory="/repo")
        assert page.total == 2
        assert [e.command for e in page.items] == ["git status", "ls"]

    def test_command_and_directory_filters_combine(self, api: QueryAPI) -> None:
        page = api.history(command="ls", directory="/repo")
        assert page.total == 1
        assert page.items[0].cwd == "/repo"
        assert api.history(command="ls", directory="/home/user").total == 1
        assert api.history(command="make", directory="/repo").total == 0
        assert api.history(command="git", directory="/re", prefix=True).total == 1

    def test_time_window(self, api: QueryAPI) -> None:
        page = api.history(
            since=BASE + timedelta(hours=1), until=BASE + timedelta(days=2)
        )
        assert [e.command for e in page.items] == ["git status", "ls"]

    def test_filter_combined_with_window(self, api: QueryAPI) -> None:
        page = api.history(command="ls", since=BASE + timedelta(minutes=30))
        assert page.total == 1
        assert page.items[0].cwd == "/repo"

    def test_naive_bounds_are_utc(self, api: QueryAPI) -> None:
        page = api.history(command="ls", until=datetime(2024, 3, 5, 10, 30))
        assert page.total == 1

    @pytest.mark.parametrize(
        ("offset", "limit"), [(-1, 10), (0, 0), (0, MAX_PAGE_SIZE + 1)]
    )
    def test_invalid_paging(self, api: QueryAPI, offset: int, limit: int) -> None:
        with pytest.raises(ValueError):
            api.history(offset=offset, limit=limit)

    def test_session(self, api: QueryAPI) -> None:
        assert [e.sequence for e in api.session("session-1")] == [0, 1, 2]
        assert api.session("missing") == []


class TestStats:
    def test_count(self, api: QueryAPI) -> None:
        assert api.stats("count").value == 4
        result = api.stats(StatMetric.COUNT, "day:2024-03-05")
        assert result.value == 2
        assert result.period == "day:2024-03-05"

    def test_top_commands(self, api: QueryAPI) -> None:
        value = api.stats("top_commands", n=1).value
        assert isinstance(value, list)
        assert (value[0].value, value[0].count) == ("ls", 2)

    def test_top_directories_and_categories(self, api: QueryAPI) -> None:
        directories = api.stats("top_directories").value
        categories = api.stats("top_categories").value
        assert isinstance(directories, list) and isinstance(categories, list)
        assert directories[0].value == "/repo"
        assert {entry.value for entry in categories} == {"ls", "git", "make"}

    def test_success_rate_and_exit_classes(self, api: QueryAPI) -> None:
        assert api.stats("success_rate").value == pytest.approx(0.75)
        assert api.stats("exit_classes").value == {"success": 3, "failure": 1}

    def test_average_duration(self, api: QueryAPI) -> None:
        assert api.stats("average_duration", "day:2024-03-05").value == 20.0
        assert api.average_duration(DurationFilter(command="ls")) == 20.0
        assert api.average_duration(DurationFilter(directory="/repo")) == 25.0

    def test_busiest_hour(self, api: QueryAPI) -> None:
        value = api.stats("busiest_hour", "day:2024-03-05").value
        assert isinstance(value, BusiestSlot)
        assert value.slot == 10

    def test_busiest_day(self, api: QueryAPI) -> None:
        value = api.stats("busiest_day").value
        assert isinstance(value, BusiestSlot)
        assert value.slot == 1  # Tuesday

    def test_trend_unavailable_for_small_periods(self, api: QueryAPI) -> None:
        assert api.stats("usage_trend").value is UsageTrend.NOT_AVAILABLE
        assert api.stats("usage_trend", "week:2024-W10").value is UsageTrend.NOT_AVAILABLE

    def test_empty_period_yields_zeros(self, api: QueryAPI) -> None:
        assert api.stats("count", "year:2020").value == 0
        assert api.stats("success_rate", "year:2020").value == 0.0
        assert api.stats("top_commands", "year:2020").value == []

    def test_unknown_metric(self, api: QueryAPI) -> None:
        with pytest.raises(ValueError):
            api.stats("mood")

    def test_bad_period(self, api: QueryAPI) -> None:
        with pytest.raises(ValueError):
            api.stats("count", "yesterday")


class TestWrapped:
    def test_year(self, api: QueryAPI) -> None:
        summary = api.wrapped(2024)
        assert summary.period == "year:2024"
        assert summary.total_commands == 4
        assert summary.unique_command_count == 3
        assert summary.active_days == 3
        assert summary.longest_streak_days == 3
        assert summary.longest_streak_start == "2024-03-05"
        assert summary.longest_streak_end == "2024-03-07"
        assert summary.busiest_date == "2024-03-05"

    def test_current_year_by_default(self, api: QueryAPI) -> None:
        summary = api.wrapped(now=datetime(2024, 7, 1, tzinfo=UTC))
        assert summary.period == "year:2024"
        assert summary.total_commands == 4

    def test_any_period(self, api: QueryAPI) -> None:
        summary = api.wrapped(period="day:2024-03-06", top_n=1)
        assert summary.total_commands == 1
        assert [e.value for e in summary.top_commands] == ["git status"]
        assert summary.success_rate == 0.0

    def test_empty_year(self, api: QueryAPI) -> None:
        summary = api.wrapped(2019)
        assert summary.total_commands == 0
        assert summary.longest_streak_days == 0
        assert summary.busiest_date is None


class TestActivityAndStatus:
    def test_activity(self, api: QueryAPI) -> None:
        overview = api.activity(now=BASE + timedelta(days=2, hours=1))
        assert overview.today == 1
        assert overview.this_week == 4
        assert overview.this_month == 4
        assert overview.total_commands == 4
        assert overview.unique_commands == 3
        assert overview.first_command_at == BASE

    def test_status_without_supervisor(self, api: QueryAPI) -> None:
        assert api.status().state is ServiceState.STOPPED

    def test_status_from_provider(
        self, store: DurableEventStore, engine: AggregationEngine, config: DaemonConfig
    ) -> None:
        api = QueryAPI(
            store, engine, lambda: ServiceStatus(state=ServiceState.RUNNING, pid=42)
        )
        status = api.status()
        assert status.state is ServiceState.RUNNING
        assert status.pid == 42
