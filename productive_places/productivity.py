"""Productivity statistics over a user's frequent locations.

Every function here is a pure computation over a snapshot of locations: inputs are
never mutated, "now" and the timezone are explicit parameters. Caching the results
on the user is the caller's job (see ``service.ProductivityService``).
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from productive_places.errors import InvalidInput
from productive_places.models import DEFAULT_TZ, AggregateWindow, FrequentLocation, Weekday, WeekdayResult
from productive_places.timeutils import MS_PER_DAY, now_ms as _now_ms
from productive_places.timeutils import trend_date_label, weekday_of, window_start_ms

# Days used for "all time" by the daily trend query.
TREND_ALL_TIME_DAYS = 10_000

NOT_ENOUGH_INFORMATION = "Not enough information"


class TieBreak(Enum):
    """How to pick a weekday when several share the extreme average.

    Both policies scan Sunday -> Saturday and fall back to Saturday when no
    bucket equals the extreme.

    FIRST_MATCH: earliest matching weekday wins (what the app has always reported).
    LAST_MATCH: latest matching weekday wins.
    """

    FIRST_MATCH = "first_match"
    LAST_MATCH = "last_match"


class RankMode(Enum):
    BY_PRODUCTIVITY = "productivity"
    BY_FREQUENCY = "frequency"


@dataclass(frozen=True, slots=True)
class WeekdayBucket:
    """Productivity samples that fell on one weekday."""

    weekday: Weekday
    total: float
    count: int

    @property
    def average(self) -> float:
        """Dense average: 0 for an empty bucket (denominator masked to 1)."""

        return self.total / (self.count or 1)

    @property
    def average_or_none(self) -> float | None:
        return self.total / self.count if self.count else None


@dataclass(frozen=True, slots=True)
class WeekdayAggregateResult:
    """Most/least productive weekday for one window plus the underlying buckets."""

    window: AggregateWindow
    most: WeekdayResult
    least: WeekdayResult
    averages: tuple[float, ...]
    sample_counts: tuple[int, ...]


@dataclass(frozen=True, slots=True)
class RankedPlace:
    """One address in a ranking. ``times_observed`` is derived, never stored."""

    address: str
    average_productivity: float
    times_observed: int


def filter_window(
    locations: Iterable[FrequentLocation],
    window_days: int | None,
    now_ms: int | None = None,
) -> list[FrequentLocation]:
    """Keep locations that started within the window."""

    if window_days is not None and window_days < 0:
        raise InvalidInput(f"window_days must be >= 0, got {window_days}")
    start = window_start_ms(window_days, _now_ms() if now_ms is None else now_ms)
    if start is None:
        return list(locations)
    return [loc for loc in locations if loc.start_ms >= start]


def weekday_buckets(
    locations: Iterable[FrequentLocation],
    window_days: int | None = None,
    *,
    now_ms: int | None = None,
    tz_name: str = DEFAULT_TZ,
) -> list[WeekdayBucket]:
    """Seven buckets (Sunday=0) of rated locations, keyed by local weekday of start."""

    totals = [0.0] * 7
    counts = [0] * 7
    for loc in filter_window(locations, window_days, now_ms):
        if loc.productivity is None:
            continue
        day = weekday_of(loc.start_ms, tz_name)
        totals[day] += float(loc.productivity)
        counts[day] += 1
    return [WeekdayBucket(weekday=Weekday(i), total=totals[i], count=counts[i]) for i in range(7)]


def weekday_averages(
    locations: Iterable[FrequentLocation],
    window_days: int | None = None,
    *,
    now_ms: int | None = None,
    tz_name: str = DEFAULT_TZ,
) -> list[float]:
    """Average productivity per weekday, Sunday first; 0 where there are no samples."""

    return [b.average for b in weekday_buckets(locations, window_days, now_ms=now_ms, tz_name=tz_name)]


def pick_weekday(averages: Sequence[float], extreme: float, tie_break: TieBreak = TieBreak.FIRST_MATCH) -> Weekday:
    """Weekday whose average equals ``extreme`` under the given tie-break policy."""

    matches = [i for i, avg in enumerate(averages) if avg == extreme]
    if not matches:
        return Weekday.SATURDAY
    return Weekday(matches[0] if tie_break is TieBreak.FIRST_MATCH else matches[-1])


def _extreme_weekday(buckets: Sequence[WeekdayBucket], *, highest: bool, tie_break: TieBreak) -> WeekdayResult:
    averages = [b.average for b in buckets]
    extreme = max(averages) if highest else min(averages)
    day = pick_weekday(averages, extreme, tie_break)
    chosen = buckets[day]
    return WeekdayResult(weekday=day, average_productivity=chosen.average_or_none, sample_count=chosen.count)


def most_productive_weekday(
    locations: Iterable[FrequentLocation],
    window_days: int | None = None,
    *,
    now_ms: int | None = None,
    tz_name: str = DEFAULT_TZ,
    tie_break: TieBreak = TieBreak.FIRST_MATCH,
) -> WeekdayResult:
    buckets = weekday_buckets(locations, window_days, now_ms=now_ms, tz_name=tz_name)
    return _extreme_weekday(buckets, highest=True, tie_break=tie_break)


def least_productive_weekday(
    locations: Iterable[FrequentLocation],
    window_days: int | None = None,
    *,
    now_ms: int | None = None,
    tz_name: str = DEFAULT_TZ,
    tie_break: TieBreak = TieBreak.FIRST_MATCH,
) -> WeekdayResult:
    buckets = weekday_buckets(locations, window_days, now_ms=now_ms, tz_name=tz_name)
    return _extreme_weekday(buckets, highest=False, tie_break=tie_break)


def compute_weekday_aggregates(
    locations: Iterable[FrequentLocation],
    window: AggregateWindow,
    *,
    now_ms: int | None = None,
    tz_name: str = DEFAULT_TZ,
    tie_break: TieBreak = TieBreak.FIRST_MATCH,
) -> WeekdayAggregateResult:
    """Most and least productive weekday for one cached window, from one bucketing pass."""

    buckets = weekday_buckets(locations, window.days, now_ms=now_ms, tz_name=tz_name)
    return WeekdayAggregateResult(
        window=window,
        most=_extreme_weekday(buckets, highest=True, tie_break=tie_break),
        least=_extreme_weekday(buckets, highest=False, tie_break=tie_break),
        averages=tuple(b.average for b in buckets),
        sample_counts=tuple(b.count for b in buckets),
    )


def describe_weekday(result: WeekdayResult | None) -> str:
    """Presentation rule: weekday label, or a marker when nothing was recorded."""

    if result is None or result.sample_count == 0 or result.average_productivity is None:
        return NOT_ENOUGH_INFORMATION
    return result.weekday.label


def _address_runs(locations: Iterable[FrequentLocation]) -> list[RankedPlace]:
    """Count contiguous runs of equal address after sorting by address.

    Locations without a formatted address are ignored; a missing productivity
    counts as 0 in the run's sum.
    """

    tagged = sorted((loc for loc in locations if loc.formatted_address), key=lambda loc: loc.formatted_address)
    out: list[RankedPlace] = []
    for address, run in itertools.groupby(tagged, key=lambda loc: loc.formatted_address):
        members = list(run)
        total = sum(float(loc.productivity or 0) for loc in members)
        out.append(RankedPlace(address=address, average_productivity=total / len(members), times_observed=len(members)))
    return out


def _top_count(top_n: int, available: int) -> int:
    if top_n < 0:
        raise InvalidInput(f"top_n must be >= 0, got {top_n}")
    return min(top_n, available)


def split_by_average(places: Sequence[RankedPlace]) -> list[RankedPlace]:
    """Within each band of equal average, order by times observed (descending).

    Bands keep their order; input must already be sorted by average.
    """

    out: list[RankedPlace] = []
    for _, band in itertools.groupby(places, key=lambda p: p.average_productivity):
        out.extend(sorted(band, key=lambda p: p.times_observed, reverse=True))
    return out


def rank_by_average_productivity(
    locations: Iterable[FrequentLocation],
    window_days: int | None = None,
    top_n: int = 5,
    *,
    now_ms: int | None = None,
) -> list[RankedPlace]:
    """Top-N addresses by average productivity; ties broken by visit count."""

    places = _address_runs(filter_window(locations, window_days, now_ms))
    places.sort(key=lambda p: p.average_productivity, reverse=True)
    return split_by_average(places[: _top_count(top_n, len(places))])


def rank_by_visit_frequency(
    locations: Iterable[FrequentLocation],
    top_n: int = 5,
    *,
    window_days: int | None = None,
    now_ms: int | None = None,
) -> list[RankedPlace]:
    """Top-N addresses by number of recorded visits."""

    places = _address_runs(filter_window(locations, window_days, now_ms))
    places.sort(key=lambda p: p.times_observed, reverse=True)
    return places[: _top_count(top_n, len(places))]


def daily_productivity_trend(
    locations: Iterable[FrequentLocation],
    window_days: int | None = TREND_ALL_TIME_DAYS,
    *,
    now_ms: int | None = None,
    tz_name: str = DEFAULT_TZ,
) -> dict[str, float]:
    """Average productivity per local calendar day of ``end_ms``.

    Keys are "M/DD/YYYY" strings in lexicographic order; unrated visits count as 0.
    """

    now = _now_ms() if now_ms is None else now_ms
    days = TREND_ALL_TIME_DAYS if window_days is None else window_days
    by_day: dict[str, list[FrequentLocation]] = {}
    for loc in locations:
        if (now - loc.end_ms) / MS_PER_DAY <= days:
            by_day.setdefault(trend_date_label(loc.end_ms, tz_name), []).append(loc)

    return {
        label: sum(float(loc.productivity or 0) for loc in by_day[label]) / len(by_day[label])
        for label in sorted(by_day)
    }


def unrated_locations(
    locations: Iterable[FrequentLocation],
    window_days: int | None = 14,
    *,
    now_ms: int | None = None,
) -> list[FrequentLocation]:
    """Visits in the window that still wait for a productivity score."""

    return [loc for loc in filter_window(locations, window_days, now_ms) if loc.productivity is None]
