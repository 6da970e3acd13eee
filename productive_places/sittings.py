"""Dwell ("sitting") detection over a stream of raw observations."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Iterator

from productive_places.errors import InvalidInput
from productive_places.geo import DistanceUnit, is_within, validate_coordinate
from productive_places.models import Observation, Sitting
from productive_places.timeutils import subtract_minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SittingParams:
    """Parameters controlling sitting segmentation."""

    # An observation closer than this to the current anchor extends the dwell.
    proximity_threshold: float = 0.1
    unit: DistanceUnit = DistanceUnit.MILES
    # A dwell must last strictly longer than this before it is emitted.
    min_dwell_minutes: float = 15.0


def _checked(obs: Observation) -> Observation:
    """Validate and normalize one observation (timestamp floored to int)."""

    try:
        ts = float(obs.timestamp_ms)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"non-numeric timestamp: {obs.timestamp_ms!r}") from exc
    if not math.isfinite(ts) or ts < 0:
        raise InvalidInput(f"invalid timestamp: {obs.timestamp_ms!r}")
    lat, lon = validate_coordinate(obs.latitude, obs.longitude)
    return Observation(timestamp_ms=math.floor(ts), latitude=lat, longitude=lon)


def iter_sittings(
    observations: Iterable[Observation],
    params: SittingParams | None = None,
) -> Iterator[Sitting]:
    """Yield sittings detected in timestamp-ordered observations.

    Single forward pass. The first observation of a dwell is the anchor; later
    observations within ``proximity_threshold`` of it only move the dwell's end.
    When an observation lands further away, the dwell is emitted if
    ``start < end - min_dwell`` and the accumulator restarts at the new observation.

    Notes:
        A short dwell broken by movement is dropped, not merged forward.
        The dwell still open when the input ends is never emitted.
        Invalid observations are logged and skipped.
    """

    p = params or SittingParams()
    started = False
    start_ms = end_ms = 0
    anchor_lat = anchor_lon = 0.0
    rejected = 0

    for raw in observations:
        try:
            obs = _checked(raw)
        except InvalidInput as exc:
            rejected += 1
            logger.warning("skipping observation %r: %s", raw, exc)
            continue

        if not started:
            start_ms = end_ms = obs.timestamp_ms
            anchor_lat, anchor_lon = obs.latitude, obs.longitude
            started = True
            continue

        if is_within(obs.latitude, obs.longitude, anchor_lat, anchor_lon, p.proximity_threshold, p.unit):
            end_ms = obs.timestamp_ms
            continue

        if start_ms < subtract_minutes(end_ms, p.min_dwell_minutes):
            yield Sitting(start_ms=start_ms, end_ms=end_ms, latitude=anchor_lat, longitude=anchor_lon)

        start_ms = end_ms = obs.timestamp_ms
        anchor_lat, anchor_lon = obs.latitude, obs.longitude

    if rejected:
        logger.warning("%s observations rejected during segmentation", rejected)


def segment(
    observations: Iterable[Observation],
    params: SittingParams | None = None,
) -> list[Sitting]:
    """Materialized form of :func:`iter_sittings`."""

    return list(iter_sittings(observations, params))
