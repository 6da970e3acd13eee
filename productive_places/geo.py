"""Geospatial utilities (no external dependencies)."""

from __future__ import annotations

import math
from enum import Enum

from productive_places.errors import InvalidInput

EARTH_RADIUS_M = 6_371_000.0  # mean Earth radius in meters
METERS_PER_MILE = 1609.344


class DistanceUnit(str, Enum):
    """Unit for distances returned by :func:`distance`."""

    MILES = "miles"
    KM = "km"

    @classmethod
    def parse(cls, value: DistanceUnit | str) -> DistanceUnit:
        """Accept an enum member or a loose name ("miles", "mi", "M", "km", "K")."""

        if isinstance(value, DistanceUnit):
            return value
        s = str(value).strip().lower()
        if s in ("miles", "mile", "mi", "m"):
            return cls.MILES
        if s in ("km", "k", "kilometers", "kilometres"):
            return cls.KM
        raise InvalidInput(f"unknown distance unit: {value!r}")


def validate_coordinate(lat: float, lon: float) -> tuple[float, float]:
    """Coerce a lat/lon pair to floats and check the ranges.

    Raises:
        InvalidInput: If either value is not numeric, not finite, or out of range.
    """

    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"non-numeric coordinate: ({lat!r}, {lon!r})") from exc
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        raise InvalidInput(f"non-finite coordinate: ({lat!r}, {lon!r})")
    if not -90.0 <= lat_f <= 90.0 or not -180.0 <= lon_f <= 180.0:
        raise InvalidInput(f"coordinate out of range: ({lat_f}, {lon_f})")
    return lat_f, lon_f


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute Haversine distance in meters between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.

    Returns:
        Distance in meters.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    unit: DistanceUnit | str = DistanceUnit.MILES,
) -> float:
    """Great-circle distance between two points in miles or kilometers.

    Raises:
        InvalidInput: On malformed coordinates or an unknown unit.
    """

    lat1, lon1 = validate_coordinate(lat1, lon1)
    lat2, lon2 = validate_coordinate(lat2, lon2)
    meters = haversine_m(lat1, lon1, lat2, lon2)
    if DistanceUnit.parse(unit) is DistanceUnit.KM:
        return meters / 1000.0
    return meters / METERS_PER_MILE


def is_within(
    lat: float,
    lon: float,
    anchor_lat: float,
    anchor_lon: float,
    threshold: float,
    unit: DistanceUnit | str = DistanceUnit.MILES,
) -> bool:
    """Strict proximity test: distance to the anchor is below ``threshold``."""

    return distance(lat, lon, anchor_lat, anchor_lon, unit) < threshold
