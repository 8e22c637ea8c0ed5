# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Incremental aggregation engine.

Keeps a RollupTable current as events are persisted and answers every
analytics query from it, never from raw events.

Key Semantics:
    - Incremental: ``apply(event, position)`` runs inline after the store
      acknowledged the append and touches five buckets.
    - Position-tracked: the engine remembers the next store position it
      expects. Positions below it are already included and are skipped,
      which makes a reconcile swap safe while the writer keeps applying.
    - Baseline: rollups of events removed by retention live in
      ``baseline.json`` together with the segments they cover. Live rollups
      are always baseline + every live event in the store.
    - Reconcile: a low-priority pass recomputes baseline + store into a
      fresh table, catches up on events appended meanwhile, swaps it in
      and reports how many flattened records had drifted.

Thread Safety:
    ``apply`` is called from the event loop thread while reconcile and
    retention run in worker threads, so table access is guarded by a
    ``threading.Lock``. The long store scan runs outside it. Reconcile and
    retention are serialized by a second lock.
"""

from __future__ import annotations

import heapq
import logging
import math
import threading
import time
from collections.abc import Mapping
from datetime import UTC, date, datetime, timedelta

from cliwrapped.aggregators.enums import BusiestDimension, Granularity, UsageTrend
from cliwrapped.aggregators.models import (
    WEEKDAY_NAMES,
    ActivityOverview,
    BusiestSlot,
    DurationFilter,
    FrequencyEntry,
    ReconcileReport,
    RetentionReport,
    WrappedSummary,
)
from cliwrapped.aggregators.periods import Period, to_local
from cliwrapped.aggregators.rollups import BucketStats, DimensionStat, RollupTable
from cliwrapped.config.settings import DaemonConfig
from cliwrapped.events.models import CommandEvent
from cliwrapped.lib.errors import CorruptionError
from cliwrapped.storage.atomic import read_json, write_json_atomic
from cliwrapped.storage.event_store import DurableEventStore

logger = logging.getLogger(__name__)

BASELINE_VERSION = 1
TREND_MIN_EVENTS = 10
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

PeriodLike = Period | str | None


def _from_ms(value: int | None) -> datetime | None:
    if value is None:
        return None
    return _EPOCH + timedelta(milliseconds=value)


def _top_entries(table: Mapping[str, DimensionStat], n: int) -> list[FrequencyEntry]:
    if n <= 0:
        return []
    best = heapq.nsmallest(n, table.items(), key=lambda kv: (-kv[1].count, kv[0]))
    return [FrequencyEntry(value=value, count=stat.count) for value, stat in best]


def _busiest(histogram: list[int], dimension: BusiestDimension) -> BusiestSlot:
    count = max(histogram, default=0)
    if count == 0:
        return BusiestSlot(dimension=dimension.value)
    slot = histogram.index(count)
    if dimension is BusiestDimension.DAY_OF_WEEK:
        label = WEEKDAY_NAMES[slot]
    else:
        label = f"{slot:02d}:00"
    return BusiestSlot(dimension=dimension.value, slot=slot, label=label, count=count)


def _longest_streak(days: list[str]) -> tuple[int, str | None, str | None]:
    """Longest run of consecutive calendar days in a sorted list of day keys."""
    best = (0, None, None)
    run_start: date | None = None
    previous: date | None = None
    length = 0
    for key in days:
        current = date.fromisoformat(key)
        if previous is not None and current - previous == timedelta(days=1):
            length += 1
        else:
            run_start, length = current, 1
        previous = current
        if length > best[0]:
            best = (length, run_start.isoformat(), current.isoformat())
    return best


class AggregationEngine:
    """Maintains rollups over the event store and answers analytics queries.

    Example:
        >>> engine = AggregationEngine(config, store)
        >>> engine.load_baseline()
        >>> engine.rebuild()
        >>> engine.top_frequency(5, "day:2024-03-05")
    """

    def __init__(self, config: DaemonConfig, store: DurableEventStore) -> None:
        self.config = config
        self.store = store
        self._tz = config.tzinfo
        self._lock = threading.Lock()
        self._maintenance_lock = threading.Lock()
        self._live = RollupTable()
        self._baseline = RollupTable()
        self._baseline_segments: set[int] = set()
        self._next_position = 0
        self.last_reconcile: ReconcileReport | None = None

    # =========================================================================
    # Baseline
    # =========================================================================

    def load_baseline(self) -> set[int]:
        """Load rollups of retired events; returns the segments they cover.

        Raises:
            CorruptionError: ``baseline.json`` exists but cannot be parsed.
        """
        path = self.config.baseline_path
        try:
            data = read_json(path)
            if data is None:
                return set()
            if data.get("version") != BASELINE_VERSION:
                raise ValueError(f"unsupported version {data.get('version')!r}")
            table = RollupTable.from_dict(data["rollups"])
            segments = {int(n) for n in data["segments"]}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise CorruptionError(f"Unreadable baseline {path}: {e}") from e

        with self._lock:
            self._baseline = table
            self._baseline_segments = segments
        logger.info(
            f"Loaded baseline covering {len(segments)} retired segments",
            extra={"buckets": len(table)},
        )
        return set(segments)

    @property
    def retired_segments(self) -> set[int]:
        with self._lock:
            return set(self._baseline_segments)

    def _write_baseline(self, table: RollupTable, segments: set[int]) -> None:
        write_json_atomic(
            self.config.baseline_path,
            {
                "version": BASELINE_VERSION,
                "segments": sorted(segments),
                "rollups": table.to_dict(),
            },
        )

    # =========================================================================
    # Maintenance
    # =========================================================================

    def apply(self, event: CommandEvent, position: int) -> bool:
        """Fold one persisted event into the live rollups.

        Returns:
            False if the position was already included (e.g. by a reconcile
            that caught up past it).
        """
        with self._lock:
            if position < self._next_position:
                return False
            self._live.apply(event, self._tz)
            self._next_position = position + 1
            return True

    def _recompute(
        self, cancel: threading.Event | None
    ) -> tuple[RollupTable, RollupTable, int]:
        marker = self.store.next_position
        with self._lock:
            fresh = self._baseline.copy()
        scanned = 0
        for _, event in self.store.iter_events(upto=marker, cancel=cancel):
            fresh.apply(event, self._tz)
            scanned += 1

        with self._lock:
            for position, event in self.store.iter_events(start=marker):
                fresh.apply(event, self._tz)
                scanned += 1
                marker = position + 1
            previous = self._live
            self._live = fresh
            self._next_position = marker
        return previous, fresh, scanned

    def rebuild(self, cancel: threading.Event | None = None) -> int:
        """Replace the live rollups with baseline + every stored event.

        Raises:
            ScanCancelledError: ``cancel`` was set mid-scan; live rollups
                are left untouched.
        """
        with self._maintenance_lock:
            _, _, scanned = self._recompute(cancel)
        logger.info(f"Rebuilt rollups from {scanned} stored events")
        return scanned

    def reconcile(self, cancel: threading.Event | None = None) -> ReconcileReport:
        """Recompute rollups from the store and report drift.

        Raises:
            ScanCancelledError: ``cancel`` was set mid-scan.
        """
        started = time.monotonic()
        with self._maintenance_lock:
            previous, fresh, scanned = self._recompute(cancel)
        drifted = fresh.diff_count(previous)
        report = ReconcileReport(
            events_scanned=scanned,
            drifted_records=drifted,
            duration_seconds=time.monotonic() - started,
            completed_at=datetime.now(UTC),
        )
        self.last_reconcile = report
        if drifted:
            logger.warning(
                f"Reconcile corrected {drifted} drifted aggregate records",
                extra={"events_scanned": scanned},
            )
        else:
            logger.debug(f"Reconcile found no drift across {scanned} events")
        return report

    def apply_retention(self, now: datetime) -> RetentionReport:
        """Fold expired segments into the baseline, then retire them from the store."""
        with self._maintenance_lock:
            expired = self.store.expired_segments(now)
            if not expired:
                return RetentionReport()
            events = self.store.read_segments(expired)
            with self._lock:
                baseline = self._baseline.copy()
                segments = self._baseline_segments | set(expired)
            for event in events:
                baseline.apply(event, self._tz)
            self._write_baseline(baseline, segments)
            with self._lock:
                self._baseline = baseline
                self._baseline_segments = segments
            removed = self.store.retire_segments(expired)
        logger.info(
            f"Retention folded {len(events)} events from {len(expired)} segments",
            extra={"segments": expired},
        )
        return RetentionReport(segments=expired, events_removed=removed)

    def snapshot(self) -> RollupTable:
        """Copy of the live rollups."""
        with self._lock:
            return self._live.copy()

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    def _resolve(period: PeriodLike) -> Period:
        if period is None:
            return Period.all_time()
        if isinstance(period, Period):
            return period
        return Period.parse(period)

    def _count(self, period: Period) -> int:
        bucket = self._live.get(period)
        return bucket.count if bucket else 0

    def bucket(self, period: PeriodLike = None) -> BucketStats:
        """Copy of one bucket's stats (empty stats if nothing was recorded)."""
        resolved = self._resolve(period)
        with self._lock:
            bucket = self._live.get(resolved)
            if bucket is None:
                return BucketStats()
            return BucketStats.from_dict(bucket.to_dict())

    def count(self, period: PeriodLike = None) -> int:
        resolved = self._resolve(period)
        with self._lock:
            return self._count(resolved)

    def top_frequency(self, n: int, period: PeriodLike = None) -> list[FrequencyEntry]:
        """The n most used commands in the period, ties by command text."""
        resolved = self._resolve(period)
        with self._lock:
            bucket = self._live.get(resolved)
            return _top_entries(bucket.commands if bucket else {}, n)

    def top_directories(self, n: int, period: PeriodLike = None) -> list[FrequencyEntry]:
        resolved = self._resolve(period)
        with self._lock:
            bucket = self._live.get(resolved)
            return _top_entries(bucket.directories if bucket else {}, n)

    def top_categories(self, n: int, period: PeriodLike = None) -> list[FrequencyEntry]:
        resolved = self._resolve(period)
        with self._lock:
            bucket = self._live.get(resolved)
            return _top_entries(bucket.categories if bucket else {}, n)

    def exit_classes(self, period: PeriodLike = None) -> dict[str, int]:
        resolved = self._resolve(period)
        with self._lock:
            bucket = self._live.get(resolved)
            return dict(bucket.exit_classes) if bucket else {}

    def success_rate(self, period: PeriodLike = None) -> float:
        """Fraction of events with exit status 0; 0.0 for an empty period."""
        resolved = self._resolve(period)
        with self._lock:
            bucket = self._live.get(resolved)
            if bucket is None or bucket.count == 0:
                return 0.0
            return bucket.success_count / bucket.count

    def average_duration(self, selector: DurationFilter | None = None) -> float:
        """Mean duration in milliseconds over integer millisecond sums."""
        selector = selector or DurationFilter()
        resolved = self._resolve(selector.period)
        with self._lock:
            bucket = self._live.get(resolved)
            if bucket is None:
                return 0.0
            if selector.command is not None:
                stat = bucket.commands.get(selector.command)
                total, count = (stat.duration_ms, stat.count) if stat else (0, 0)
            elif selector.directory is not None:
                stat = bucket.directories.get(selector.directory)
                total, count = (stat.duration_ms, stat.count) if stat else (0, 0)
            else:
                total, count = bucket.duration_ms_total, bucket.count
        return total / count if count else 0.0

    def busiest_period(
        self, dimension: BusiestDimension, period: PeriodLike = None
    ) -> BusiestSlot:
        """Hour of day or day of week with the most events; earliest slot wins ties."""
        resolved = self._resolve(period)
        with self._lock:
            bucket = self._live.get(resolved)
            if bucket is None:
                return BusiestSlot(dimension=dimension.value)
            histogram = (
                list(bucket.hour_of_day)
                if dimension is BusiestDimension.HOUR_OF_DAY
                else list(bucket.day_of_week)
            )
        return _busiest(histogram, dimension)

    def usage_trend(self, period: PeriodLike) -> UsageTrend:
        """Compare a period with the one before it.

        More than 1.2x the previous count is increasing, less than 0.8x is
        decreasing. Periods with 10 or fewer events, and the all-time
        period, have no trend.
        """
        resolved = self._resolve(period)
        if resolved.granularity is Granularity.ALL:
            return UsageTrend.NOT_AVAILABLE
        with self._lock:
            current = self._count(resolved)
            prior = self._count(resolved.previous())
        if current <= TREND_MIN_EVENTS:
            return UsageTrend.NOT_AVAILABLE
        if current > prior * 12 // 10:
            return UsageTrend.INCREASING
        if current < prior * 8 // 10:
            return UsageTrend.DECREASING
        return UsageTrend.STEADY

    def activity_overview(self, now: datetime) -> ActivityOverview:
        """Today / this week / this month counts plus lifetime figures."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        local_now = to_local(now, self._tz)
        week = Period.containing(Granularity.WEEK, now, self._tz)
        with self._lock:
            today = self._count(Period.containing(Granularity.DAY, now, self._tz))
            this_week = self._count(week)
            this_month = sum(
                self._count(
                    Period(Granularity.DAY, local_now.replace(day=d).strftime("%Y-%m-%d"))
                )
                for d in range(1, local_now.day + 1)
            )
            lifetime = self._live.get(Period.all_time())
            total = lifetime.count if lifetime else 0
            unique = len(lifetime.commands) if lifetime else 0
            first_ms = lifetime.first_ms if lifetime else None
            last_ms = lifetime.last_ms if lifetime else None

        weekly_average = 0.0
        first_at = _from_ms(first_ms)
        if total and first_at is not None:
            days = max(0, (now - first_at).days)
            weeks = max(1, math.ceil(days / 7))
            weekly_average = round(total / weeks, 1)

        return ActivityOverview(
            today=today,
            this_week=this_week,
            this_month=this_month,
            weekly_average=weekly_average,
            total_commands=total,
            unique_commands=unique,
            first_command_at=first_at,
            last_command_at=_from_ms(last_ms),
            usage_trend=self.usage_trend(week),
        )

    def _active_days(self, period: Period, bucket: BucketStats) -> list[tuple[str, int]]:
        if period.granularity is Granularity.HOUR:
            return [(period.key[:10], bucket.count)] if bucket.count else []
        if period.granularity is Granularity.ALL:
            return sorted(
                (p.key, b.count)
                for p, b in self._live.buckets.items()
                if p.granularity is Granularity.DAY and b.count
            )
        active = []
        for key in period.days():
            day = self._live.get(Period(Granularity.DAY, key))
            if day is not None and day.count:
                active.append((key, day.count))
        return active

    def wrapped_summary(
        self, target: int | PeriodLike = None, top_n: int | None = None
    ) -> WrappedSummary:
        """Composite report for a year (int) or any period, built from rollups only."""
        if isinstance(target, int):
            period = Period(Granularity.YEAR, f"{target:04d}")
        else:
            period = self._resolve(target)
        n = top_n if top_n is not None else self.config.wrapped_top_n

        with self._lock:
            bucket = self._live.get(period) or BucketStats()
            active = self._active_days(period, bucket)
            top_commands = _top_entries(bucket.commands, n)
            top_directories = _top_entries(bucket.directories, n)
            top_categories = _top_entries(bucket.categories, n)
            hours = list(bucket.hour_of_day)
            weekdays = list(bucket.day_of_week)

        streak, streak_start, streak_end = _longest_streak([key for key, _ in active])
        busiest_date, busiest_date_count = None, 0
        for key, count in active:
            if count > busiest_date_count:
                busiest_date, busiest_date_count = key, count

        return WrappedSummary(
            period=str(period),
            total_commands=bucket.count,
            unique_command_count=len(bucket.commands),
            top_commands=top_commands,
            top_directories=top_directories,
            top_categories=top_categories,
            busiest_hour=_busiest(hours, BusiestDimension.HOUR_OF_DAY),
            busiest_day=_busiest(weekdays, BusiestDimension.DAY_OF_WEEK),
            busiest_date=busiest_date,
            busiest_date_count=busiest_date_count,
            active_days=len(active),
            longest_streak_days=streak,
            longest_streak_start=streak_start,
            longest_streak_end=streak_end,
            success_rate=bucket.success_count / bucket.count if bucket.count else 0.0,
            average_duration_ms=(
                bucket.duration_ms_total / bucket.count if bucket.count else 0.0
            ),
            hour_distribution=hours,
            weekday_distribution=weekdays,
            first_command_at=_from_ms(bucket.first_ms),
            last_command_at=_from_ms(bucket.last_ms),
        )


__all__: list[str] = ["AggregationEngine", "BASELINE_VERSION", "TREND_MIN_EVENTS"]
