"""Address enrichment for frequent locations.

Resolution order per distinct coordinate key:
  1. result already obtained for the same key in this batch (memo);
  2. an address already known from persisted locations (any user);
  3. the external geocoder.

All keys are registered by the coordinating thread before any lookup is submitted,
so a key is never geocoded twice in one batch. Geocode calls fan out on a thread
pool; their results are applied back in the coordinating thread.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from time import sleep, time
from typing import Callable, Iterable, Mapping, Sequence

from productive_places.errors import GeocodeUnavailable
from productive_places.geocode import Geocoder
from productive_places.models import Address, FrequentLocation

logger = logging.getLogger(__name__)

KnownLookup = Callable[[str], Iterable[FrequentLocation]]


@dataclass(frozen=True, slots=True)
class EnrichParams:
    """Fan-out settings for geocode lookups."""

    workers: int = 4
    # Minimum spacing between submissions; public services want >= 1.0s.
    min_interval_seconds: float = 0.0


@dataclass(slots=True)
class EnrichStats:
    """Counters for one enrichment batch."""

    unresolved: int = 0
    memo_hits: int = 0
    known_hits: int = 0
    geocoded: int = 0
    failed: int = 0
    preset_applied: int = 0


def _known_address(key: str, known_lookup: KnownLookup | None) -> Address | None:
    if known_lookup is None:
        return None
    for loc in known_lookup(key):
        if loc.address is not None:
            return loc.address
    return None


def _plan(
    unresolved: Sequence[FrequentLocation],
    known_lookup: KnownLookup | None,
    stats: EnrichStats,
) -> tuple[dict[str, Address], dict[str, tuple[float, float]]]:
    """Register every distinct key once: known addresses vs. keys to geocode."""

    resolved: dict[str, Address] = {}
    pending: dict[str, tuple[float, float]] = {}
    for loc in unresolved:
        key = loc.coord_key
        if key in resolved or key in pending:
            continue
        known = _known_address(key, known_lookup)
        if known is not None:
            resolved[key] = known
            stats.known_hits += 1
        else:
            pending[key] = (loc.latitude, loc.longitude)
    return resolved, pending


def _geocode_all(
    pending: Mapping[str, tuple[float, float]],
    geocoder: Geocoder,
    params: EnrichParams,
    stats: EnrichStats,
) -> dict[str, Address]:
    """Look up every pending key concurrently; failures are counted, not raised."""

    results: dict[str, Address] = {}
    if not pending:
        return results

    workers = max(1, min(int(params.workers), len(pending)))
    futures: dict[Future[Address], str] = {}
    next_submit_at = time()
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="geocode") as executor:
        for key, (lat, lon) in pending.items():
            if params.min_interval_seconds > 0:
                sleep(max(0.0, next_submit_at - time()))
                next_submit_at = max(next_submit_at + params.min_interval_seconds, time())
            futures[executor.submit(geocoder.reverse, lat, lon)] = key

        for fut in as_completed(futures):
            key = futures[fut]
            try:
                results[key] = fut.result()
                stats.geocoded += 1
            except GeocodeUnavailable as exc:
                stats.failed += 1
                logger.warning("geocode unavailable for %s: %s", key, exc)
            except Exception:
                # One bad lookup must not fail the batch; the key stays unresolved.
                stats.failed += 1
                logger.exception("geocode failed for %s", key)
    return results


def apply_presets(locations: Iterable[FrequentLocation], presets: Mapping[str, float]) -> int:
    """Give unrated locations the user's preset score for their address.

    Returns:
        Number of locations updated.
    """

    if not presets:
        return 0
    applied = 0
    for loc in locations:
        if loc.productivity is not None:
            continue
        addr = loc.formatted_address
        if addr and addr in presets:
            loc.productivity = presets[addr]
            applied += 1
    return applied


def enrich_locations(
    locations: Sequence[FrequentLocation],
    *,
    geocoder: Geocoder,
    known_lookup: KnownLookup | None = None,
    presets: Mapping[str, float] | None = None,
    params: EnrichParams | None = None,
) -> EnrichStats:
    """Resolve missing addresses in place and apply preset productivity.

    Args:
        locations: Locations to enrich; only those with ``address is None`` are looked up.
        geocoder: External reverse geocoder.
        known_lookup: coord_key -> previously persisted locations (any user).
        presets: formatted address -> productivity score.
        params: Fan-out settings.

    Returns:
        EnrichStats for logging/reporting. Locations whose lookup failed keep
        ``address=None`` and are retried on the next batch.
    """

    stats = EnrichStats()
    unresolved = [loc for loc in locations if loc.address is None]
    stats.unresolved = len(unresolved)

    if unresolved:
        resolved, pending = _plan(unresolved, known_lookup, stats)
        logger.info(
            "enrich: unresolved=%s distinct_keys=%s known=%s to_geocode=%s",
            len(unresolved),
            len(resolved) + len(pending),
            len(resolved),
            len(pending),
        )
        resolved.update(_geocode_all(pending, geocoder, params or EnrichParams(), stats))

        seen: set[str] = set()
        for loc in unresolved:
            address = resolved.get(loc.coord_key)
            if address is None:
                continue
            if loc.coord_key in seen:
                stats.memo_hits += 1
            seen.add(loc.coord_key)
            loc.address = address

    stats.preset_applied = apply_presets(locations, presets or {})
    return stats
