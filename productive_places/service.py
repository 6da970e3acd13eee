"""Entry points: raw observations in, enriched locations and aggregates out.

Each public method is one batch against one user document: load, compute, save
once. If the save fails the computed state is discarded with the in-memory user
and ``PersistenceFailure`` reaches the caller, who may retry the whole batch.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Sequence

from productive_places.clustering import cluster_accumulate, filter_singletons
from productive_places.enrich import EnrichParams, apply_presets, enrich_locations
from productive_places.errors import InvalidInput, LocationNotFound, ProductivityError, UserNotFound
from productive_places.geocode import Geocoder
from productive_places.models import DEFAULT_TZ, AggregateWindow, FrequentLocation, Observation, User
from productive_places.productivity import (
    RankedPlace,
    RankMode,
    TieBreak,
    WeekdayAggregateResult,
    compute_weekday_aggregates,
    daily_productivity_trend,
    rank_by_average_productivity,
    rank_by_visit_frequency,
    unrated_locations,
)
from productive_places.sittings import SittingParams, iter_sittings
from productive_places.store import UserStore
from productive_places.timeutils import now_ms

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepReport:
    """Outcome of one scheduled pass over all users."""

    processed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    new_locations: int = 0


class ProductivityService:
    """Coordinates segmentation, clustering, enrichment and aggregation per user."""

    def __init__(
        self,
        store: UserStore,
        geocoder: Geocoder,
        *,
        sitting: SittingParams | None = None,
        enrich: EnrichParams | None = None,
        tz_name: str = DEFAULT_TZ,
        coord_precision: int | None = None,
        tie_break: TieBreak = TieBreak.FIRST_MATCH,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.geocoder = geocoder
        self.sitting = sitting or SittingParams()
        self.enrich = enrich or EnrichParams()
        self.tz_name = tz_name
        self.coord_precision = coord_precision
        self.tie_break = tie_break
        self._clock = clock

    # ------------------------------------------------------------------ users

    def get_or_create_user(self, user_id: str) -> User:
        try:
            return self.store.load_user(user_id)
        except UserNotFound:
            logger.info("creating user %s", user_id)
            return self.store.create_user(user_id)

    # -------------------------------------------------------------- ingestion

    def locations_from_observations(self, observations: Iterable[Observation]) -> list[FrequentLocation]:
        """Segment -> cluster -> drop singletons. No I/O."""

        sittings = iter_sittings(observations, self.sitting)
        acc = cluster_accumulate(
            sittings,
            threshold=self.sitting.proximity_threshold,
            unit=self.sitting.unit,
            precision=self.coord_precision,
        )
        return filter_singletons(acc)

    def _ingest(self, user: User, observations: Iterable[Observation], *, replace: bool) -> list[FrequentLocation]:
        new_locations = self.locations_from_observations(observations)
        if replace:
            user.frequent_locations = list(new_locations)
        else:
            user.frequent_locations.extend(new_locations)

        stats = enrich_locations(
            user.frequent_locations,
            geocoder=self.geocoder,
            known_lookup=self.store.find_locations_by_coordinate,
            presets=user.preset_productive_locations,
            params=self.enrich,
        )
        logger.info(
            "user %s: new_locations=%s geocoded=%s known=%s memo=%s failed=%s presets=%s",
            user.user_id,
            len(new_locations),
            stats.geocoded,
            stats.known_hits,
            stats.memo_hits,
            stats.failed,
            stats.preset_applied,
        )
        return new_locations

    def process_raw_observations(
        self,
        user_id: str,
        observations: Iterable[Observation],
        *,
        replace: bool = False,
    ) -> list[FrequentLocation]:
        """Turn a batch of raw observations into enriched frequent locations.

        Args:
            user_id: Owner of the observations.
            observations: Timestamp-ordered observations.
            replace: Bulk-upload mode; the new locations replace the user's list
                instead of being appended.

        Returns:
            The newly created locations (already enriched).
        """

        user = self.store.load_user(user_id)
        new_locations = self._ingest(user, observations, replace=replace)
        self.store.save_user(user)
        return new_locations

    def queue_observations(self, user_id: str, observations: Iterable[Observation]) -> int:
        """Append background observations to the user's waiting queue.

        Returns:
            Queue length after the append.
        """

        user = self.store.load_user(user_id)
        user.pending_observations.extend(observations)
        self.store.save_user(user)
        return len(user.pending_observations)

    def process_pending_observations(self, user_id: str) -> list[FrequentLocation]:
        """Drain the background queue through the ingestion pipeline."""

        user = self.store.load_user(user_id)
        if not user.pending_observations:
            return []
        pending = list(user.pending_observations)
        new_locations = self._ingest(user, pending, replace=False)
        user.pending_observations = []
        self.store.save_user(user)
        return new_locations

    # ------------------------------------------------------------ aggregates

    def _compute(self, user: User, window: AggregateWindow) -> WeekdayAggregateResult:
        result = compute_weekday_aggregates(
            user.frequent_locations,
            window,
            now_ms=self._clock(),
            tz_name=self.tz_name,
            tie_break=self.tie_break,
        )
        user.most_productive[window] = result.most
        user.least_productive[window] = result.least
        return result

    def recompute_aggregates(self, user_id: str, window_days: int | None) -> WeekdayAggregateResult:
        """Recompute and cache most/least productive weekday for 7, 30 or all (None) days."""

        window = AggregateWindow.from_days(window_days)
        user = self.store.load_user(user_id)
        result = self._compute(user, window)
        self.store.save_user(user)
        return result

    def recompute_all_aggregates(self, user_id: str) -> dict[AggregateWindow, WeekdayAggregateResult]:
        user = self.store.load_user(user_id)
        results = {w: self._compute(user, w) for w in AggregateWindow}
        self.store.save_user(user)
        return results

    # --------------------------------------------------------------- queries

    def rank_locations(
        self,
        user_id: str,
        window_days: int | None,
        top_n: int,
        mode: RankMode = RankMode.BY_PRODUCTIVITY,
    ) -> list[RankedPlace]:
        user = self.store.load_user(user_id)
        if mode is RankMode.BY_FREQUENCY:
            return rank_by_visit_frequency(
                user.frequent_locations, top_n, window_days=window_days, now_ms=self._clock()
            )
        return rank_by_average_productivity(user.frequent_locations, window_days, top_n, now_ms=self._clock())

    def productivity_trend(self, user_id: str, window_days: int | None = None) -> dict[str, float]:
        user = self.store.load_user(user_id)
        return daily_productivity_trend(
            user.frequent_locations, window_days, now_ms=self._clock(), tz_name=self.tz_name
        )

    def unrated_locations(self, user_id: str, window_days: int | None = 14) -> list[FrequentLocation]:
        user = self.store.load_user(user_id)
        return unrated_locations(user.frequent_locations, window_days, now_ms=self._clock())

    # -------------------------------------------------------------- feedback

    def update_productivity(self, user_id: str, location_id: str, productivity: float) -> FrequentLocation:
        """Overwrite one visit's score. Cached aggregates are not recomputed."""

        try:
            score = float(productivity)
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"productivity must be a number, got {productivity!r}") from exc
        if not math.isfinite(score):
            raise InvalidInput(f"productivity must be finite, got {productivity!r}")

        user = self.store.load_user(user_id)
        loc = user.find_location(location_id)
        if loc is None:
            raise LocationNotFound(user_id, location_id)
        loc.productivity = score
        self.store.save_user(user)
        return loc

    def update_settings(
        self,
        user_id: str,
        *,
        presets: Mapping[str, float] | None = None,
        home_location: str | None = None,
        home_lat_long: str | None = None,
    ) -> User:
        """Store settings, apply presets to unrated visits and refresh all aggregates."""

        user = self.store.load_user(user_id)
        if home_location is not None:
            user.home_location = home_location
        if home_lat_long is not None:
            user.home_lat_long = home_lat_long
        if presets is not None:
            # only positive scores are kept as presets
            user.preset_productive_locations = {addr: float(v) for addr, v in presets.items() if float(v) > 0}
            applied = apply_presets(user.frequent_locations, user.preset_productive_locations)
            logger.info("user %s: presets=%s applied=%s", user_id, len(user.preset_productive_locations), applied)

        for window in AggregateWindow:
            self._compute(user, window)
        self.store.save_user(user)
        return user

    # ----------------------------------------------------------------- sweep

    def run_sweep(self, user_ids: Sequence[str] | None = None) -> SweepReport:
        """Process queued observations and refresh aggregates for every user.

        Users are handled one after another and independently: a failure is logged
        and recorded for that user, and the sweep moves on.
        """

        report = SweepReport()
        for user_id in self.store.list_user_ids() if user_ids is None else user_ids:
            try:
                report.new_locations += len(self.process_pending_observations(user_id))
                self.recompute_all_aggregates(user_id)
            except ProductivityError as exc:
                logger.error("sweep failed for user %s: %s", user_id, exc)
                report.failed[user_id] = str(exc)
                continue
            report.processed.append(user_id)
        logger.info(
            "sweep done: processed=%s failed=%s new_locations=%s",
            len(report.processed),
            len(report.failed),
            report.new_locations,
        )
        return report
