# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Read-only query surface for presentation layers.

History listing reads the event store's indices; every statistic and the
wrapped summary come from the aggregation engine's rollups. Nothing here
mutates state, and an empty store yields zero-valued results.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from cliwrapped.aggregators.aggregation_engine import AggregationEngine
from cliwrapped.aggregators.enums import BusiestDimension, Granularity, StatMetric
from cliwrapped.aggregators.periods import Period
from cliwrapped.events.models import CommandEvent
from cliwrapped.query.models import (
    ActivityOverview,
    DurationFilter,
    HistoryPage,
    StatsResult,
    StatValue,
    WrappedSummary,
)
from cliwrapped.storage.event_store import DurableEventStore
from cliwrapped.supervisor.models import ServiceState, ServiceStatus

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 1000


class QueryAPI:
    """Paged history, stats by metric and period, wrapped summary, status.

    Example:
        >>> api = QueryAPI(store, engine, supervisor.status)
        >>> api.history(limit=20).items
        >>> api.stats("top_commands", "day:2024-03-05", n=5).value
        >>> api.wrapped(2024).longest_streak_days
    """

    def __init__(
        self,
        store: DurableEventStore,
        engine: AggregationEngine,
        status_provider: Callable[[], ServiceStatus] | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._status_provider = status_provider

    # =========================================================================
    # History
    # =========================================================================

    def history(
        self,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
        *,
        newest_first: bool = True,
        command: str | None = None,
        directory: str | None = None,
        prefix: bool = False,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> HistoryPage:
        """One page of stored events ordered by start time.

        ``command`` and ``directory`` filter by equality (or prefix) and
        combine when both are given. ``since`` / ``until`` bound the start
        time (``until`` exclusive).

        Raises:
            ValueError: Negative offset, or limit outside 1..MAX_PAGE_SIZE.
        """
        if offset < 0:
            raise ValueError("offset must be >= 0")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        filtered = command is not None or directory is not None
        if not filtered and since is None and until is None:
            items, total = self._store.page(offset, limit, newest_first=newest_first)
            return HistoryPage(
                items=items,
                offset=offset,
                limit=limit,
                total=total,
                newest_first=newest_first,
            )

        if command is not None:
            events = self._store.by_command(command, prefix=prefix)
            if directory is not None:
                events = [e for e in events if _matches(e.cwd, directory, prefix)]
        elif directory is not None:
            events = self._store.by_directory(directory, prefix=prefix)
        else:
            events = self._store.range(since, until)
        events = [e for e in events if _within(e, since, until)]
        events.sort(key=lambda e: (e.started_at, e.session_id, e.sequence))
        if newest_first:
            events.reverse()
        return HistoryPage(
            items=events[offset : offset + limit],
            offset=offset,
            limit=limit,
            total=len(events),
            newest_first=newest_first,
        )

    def session(self, session_id: str) -> list[CommandEvent]:
        """Events of one shell session in sequence order."""
        return self._store.session(session_id)

    # =========================================================================
    # Statistics
    # =========================================================================

    def stats(
        self,
        metric: StatMetric | str,
        period: Period | str | None = None,
        *,
        n: int = 10,
    ) -> StatsResult:
        """Value of ``metric`` over ``period`` (all time when omitted).

        Raises:
            ValueError: Unknown metric or unparseable period.
        """
        metric = StatMetric(metric)
        resolved = _resolve(period)
        engine = self._engine
        value: StatValue
        if metric is StatMetric.COUNT:
            value = engine.count(resolved)
        elif metric is StatMetric.TOP_COMMANDS:
            value = engine.top_frequency(n, resolved)
        elif metric is StatMetric.TOP_DIRECTORIES:
            value = engine.top_directories(n, resolved)
        elif metric is StatMetric.TOP_CATEGORIES:
            value = engine.top_categories(n, resolved)
        elif metric is StatMetric.SUCCESS_RATE:
            value = engine.success_rate(resolved)
        elif metric is StatMetric.AVERAGE_DURATION:
            value = engine.average_duration(DurationFilter(period=str(resolved)))
        elif metric is StatMetric.BUSIEST_HOUR:
            value = engine.busiest_period(BusiestDimension.HOUR_OF_DAY, resolved)
        elif metric is StatMetric.BUSIEST_DAY:
            value = engine.busiest_period(BusiestDimension.DAY_OF_WEEK, resolved)
        elif metric is StatMetric.EXIT_CLASSES:
            value = engine.exit_classes(resolved)
        else:
            value = engine.usage_trend(resolved)
        return StatsResult(metric=metric, period=str(resolved), value=value)

    def average_duration(self, selector: DurationFilter | None = None) -> float:
        return self._engine.average_duration(selector)

    def wrapped(
        self,
        year: int | None = None,
        *,
        period: Period | str | None = None,
        top_n: int | None = None,
        now: datetime | None = None,
    ) -> WrappedSummary:
        """Wrapped summary for a year (default: the current one) or any period."""
        if period is not None:
            return self._engine.wrapped_summary(_resolve(period), top_n)
        if year is None:
            now = now or datetime.now(UTC)
            year = int(
                Period.containing(Granularity.YEAR, now, self._engine.config.tzinfo).key
            )
        return self._engine.wrapped_summary(year, top_n)

    def activity(self, now: datetime | None = None) -> ActivityOverview:
        return self._engine.activity_overview(now or datetime.now(UTC))

    # =========================================================================
    # Service
    # =========================================================================

    def status(self) -> ServiceStatus:
        if self._status_provider is None:
            return ServiceStatus(state=ServiceState.STOPPED)
        return self._status_provider()


def _resolve(period: Period | str | None) -> Period:
    if period is None:
        return Period.all_time()
    if isinstance(period, Period):
        return period
    return Period.parse(period)


def _matches(value: str, wanted: str, prefix: bool) -> bool:
    return value.startswith(wanted) if prefix else value == wanted


def _within(
    event: CommandEvent, since: datetime | None, until: datetime | None
) -> bool:
    if since is not None and event.started_at < _aware(since):
        return False
    if until is not None and event.started_at >= _aware(until):
        return False
    return True


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


__all__: list[str] = ["DEFAULT_PAGE_SIZE", "MAX_PAGE_SIZE", "QueryAPI"]
