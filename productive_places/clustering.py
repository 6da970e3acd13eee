"""Greedy grouping of sittings into frequent-location candidates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import reduce
from typing import Iterable

from productive_places.geo import DistanceUnit, is_within
from productive_places.geocode import coord_key
from productive_places.models import FrequentLocation, Sitting, Visit

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClusterAnchor:
    """Coordinate of the sitting that opened a cluster. Never recomputed."""

    latitude: float
    longitude: float
    key: str


@dataclass(slots=True)
class ClusterAccumulator:
    """Anchors in creation order plus the member visits of each."""

    anchors: list[ClusterAnchor] = field(default_factory=list)
    members: dict[str, list[Visit]] = field(default_factory=dict)


def _assign(
    acc: ClusterAccumulator,
    sitting: Sitting,
    *,
    threshold: float,
    unit: DistanceUnit,
    precision: int | None,
) -> ClusterAccumulator:
    visit = Visit(start_ms=sitting.start_ms, end_ms=sitting.end_ms)
    for anchor in acc.anchors:
        if is_within(sitting.latitude, sitting.longitude, anchor.latitude, anchor.longitude, threshold, unit):
            acc.members[anchor.key].append(visit)
            return acc

    key = coord_key(sitting.latitude, sitting.longitude, precision)
    if key in acc.members:
        # Two anchors closer than the rounding step: share the existing bucket.
        acc.members[key].append(visit)
        return acc
    acc.anchors.append(ClusterAnchor(latitude=sitting.latitude, longitude=sitting.longitude, key=key))
    acc.members[key] = [visit]
    return acc


def cluster_accumulate(
    sittings: Iterable[Sitting],
    threshold: float = 0.1,
    unit: DistanceUnit = DistanceUnit.MILES,
    precision: int | None = None,
) -> ClusterAccumulator:
    """Fold sittings into clusters, first matching anchor wins.

    Each sitting is compared against existing anchors in creation order and joins
    the first one closer than ``threshold``; otherwise it opens a new cluster
    anchored at its own coordinate. Order dependent and not transitive.
    """

    return reduce(
        lambda acc, s: _assign(acc, s, threshold=threshold, unit=unit, precision=precision),
        sittings,
        ClusterAccumulator(),
    )


def cluster_sittings(
    sittings: Iterable[Sitting],
    threshold: float = 0.1,
    unit: DistanceUnit = DistanceUnit.MILES,
    precision: int | None = None,
) -> dict[str, list[Visit]]:
    """Cluster key -> ordered member visits (insertion ordered)."""

    acc = cluster_accumulate(sittings, threshold, unit, precision)
    return {a.key: list(acc.members[a.key]) for a in acc.anchors}


def filter_singletons(acc: ClusterAccumulator, min_members: int = 2) -> list[FrequentLocation]:
    """Expand clusters with at least ``min_members`` visits into location candidates.

    One FrequentLocation per member visit, carrying the anchor coordinate.
    Singleton clusters are discarded.
    """

    out: list[FrequentLocation] = []
    dropped = 0
    for anchor in acc.anchors:
        visits = acc.members[anchor.key]
        if len(visits) < min_members:
            dropped += 1
            continue
        for v in visits:
            out.append(
                FrequentLocation(
                    latitude=anchor.latitude,
                    longitude=anchor.longitude,
                    coord_key=anchor.key,
                    start_ms=v.start_ms,
                    end_ms=v.end_ms,
                )
            )
    logger.debug("clusters kept=%s dropped(singleton)=%s", len(acc.anchors) - dropped, dropped)
    return out
