# SPDX-FileCopyrightText: 2025 OmniNode.ai Inc.
# SPDX-License-Identifier: MIT

"""Time bucket arithmetic.

A Period is a granularity plus a key in local wall-clock time:

    hour   2024-03-05T10
    day    2024-03-05
    week   2024-W10      (ISO week, Monday start)
    year   2024
    all    all

Local time means the configured IANA zone, or the system zone when none is
configured. Keys are plain strings so rollup tables serialize directly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo

from cliwrapped.aggregators.enums import Granularity

ALL_KEY = "all"

_PATTERNS: tuple[tuple[Granularity, re.Pattern[str]], ...] = (
    (Granularity.HOUR, re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}$")),
    (Granularity.DAY, re.compile(r"^\d{4}-\d{2}-\d{2}$")),
    (Granularity.WEEK, re.compile(r"^\d{4}-W\d{2}$")),
    (Granularity.YEAR, re.compile(r"^\d{4}$")),
    (Granularity.ALL, re.compile(r"^all$")),
)


def to_local(moment: datetime, tz: tzinfo | None) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(tz) if tz is not None else moment.astimezone()


def _key_for(granularity: Granularity, local: datetime) -> str:
    match granularity:
        case Granularity.HOUR:
            return local.strftime("%Y-%m-%dT%H")
        case Granularity.DAY:
            return local.strftime("%Y-%m-%d")
        case Granularity.WEEK:
            iso = local.isocalendar()
            return f"{iso.year:04d}-W{iso.week:02d}"
        case Granularity.YEAR:
            return f"{local.year:04d}"
        case _:
            return ALL_KEY


@dataclass(frozen=True, order=True)
class Period:
    """One bucket of one granularity."""

    granularity: Granularity
    key: str

    def __str__(self) -> str:
        return f"{self.granularity.value}:{self.key}"

    @classmethod
    def all_time(cls) -> Period:
        return cls(Granularity.ALL, ALL_KEY)

    @classmethod
    def containing(
        cls, granularity: Granularity, moment: datetime, tz: tzinfo | None = None
    ) -> Period:
        """The bucket of ``granularity`` that contains ``moment``."""
        return cls(granularity, _key_for(granularity, to_local(moment, tz)))

    @classmethod
    def parse(cls, text: str) -> Period:
        """Parse ``"day:2024-03-05"`` or a bare key whose shape implies the granularity.

        Raises:
            ValueError: The text is not a period key.
        """
        text = text.strip()
        if text in (ALL_KEY, f"{Granularity.ALL.value}:{ALL_KEY}"):
            return cls.all_time()
        if ":" in text:
            name, _, key = text.partition(":")
            granularity = Granularity(name)
        else:
            key = text
            granularity = next(
                (g for g, pattern in _PATTERNS if pattern.match(key)), None
            )
            if granularity is None:
                raise ValueError(f"Unrecognized period {text!r}")
        period = cls(granularity, key)
        period._naive_start()
        return period

    def _naive_start(self) -> datetime:
        try:
            match self.granularity:
                case Granularity.HOUR:
                    return datetime.strptime(self.key, "%Y-%m-%dT%H")
                case Granularity.DAY:
                    return datetime.strptime(self.key, "%Y-%m-%d")
                case Granularity.WEEK:
                    year, _, week = self.key.partition("-W")
                    return datetime.fromisocalendar(int(year), int(week), 1)
                case Granularity.YEAR:
                    return datetime(int(self.key), 1, 1)
        except ValueError as e:
            raise ValueError(f"Invalid {self.granularity.value} key {self.key!r}") from e
        raise ValueError("The all-time period has no start")

    def _naive_end(self) -> datetime:
        start = self._naive_start()
        match self.granularity:
            case Granularity.HOUR:
                return start + timedelta(hours=1)
            case Granularity.DAY:
                return start + timedelta(days=1)
            case Granularity.WEEK:
                return start + timedelta(days=7)
            case _:
                return datetime(start.year + 1, 1, 1)

    def bounds(self, tz: tzinfo | None = None) -> tuple[datetime | None, datetime | None]:
        """UTC ``[start, end)`` of the period; ``(None, None)`` for all time."""
        if self.granularity is Granularity.ALL:
            return None, None
        return _localize(self._naive_start(), tz), _localize(self._naive_end(), tz)

    def previous(self) -> Period:
        """The immediately preceding period of the same granularity.

        Raises:
            ValueError: The all-time period has no predecessor.
        """
        start = self._naive_start()
        match self.granularity:
            case Granularity.HOUR:
                prior = start - timedelta(hours=1)
            case Granularity.DAY:
                prior = start - timedelta(days=1)
            case Granularity.WEEK:
                prior = start - timedelta(days=7)
            case _:
                prior = datetime(start.year - 1, 1, 1)
        return Period(self.granularity, _key_for(self.granularity, prior))

    def days(self) -> list[str]:
        """Day keys covered by a day, week or year period."""
        if self.granularity in (Granularity.HOUR, Granularity.ALL):
            raise ValueError(f"{self.granularity.value} periods are not day-aligned")
        start, end = self._naive_start(), self._naive_end()
        count = (end - start).days
        return [(start + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(count)]


def _localize(naive: datetime, tz: tzinfo | None) -> datetime:
    local = naive.replace(tzinfo=tz) if tz is not None else naive.astimezone()
    return local.astimezone(UTC)


def period_keys(moment: datetime, tz: tzinfo | None = None) -> list[Period]:
    """Every bucket an event at ``moment`` contributes to."""
    local = to_local(moment, tz)
    return [Period(g, _key_for(g, local)) for g in Granularity]


__all__: list[str] = ["ALL_KEY", "Period", "period_keys", "to_local"]
