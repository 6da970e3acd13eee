"""
Shared fixtures for productive_places tests.

Geocoding is always faked; nothing here touches the network.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

import pytest

from productive_places.errors import GeocodeUnavailable
from productive_places.geocode import coord_key
from productive_places.models import Address, FrequentLocation, Observation
from productive_places.timeutils import MS_PER_MINUTE


def utc_ms(year: int, month: int, day: int, hour: int = 10, minute: int = 0) -> int:
    return int(datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp() * 1000)


def dwell(lat: float, lon: float, start_min: int, end_min: int, *, base_ms: int = 0, step: int = 5) -> list[Observation]:
    """Observations at one point every ``step`` minutes, both ends included."""

    return [
        Observation(timestamp_ms=base_ms + m * MS_PER_MINUTE, latitude=lat, longitude=lon)
        for m in range(start_min, end_min + 1, step)
    ]


def make_location(
    start_ms: int,
    *,
    address: str | None = None,
    productivity: float | None = None,
    lat: float = 42.0,
    lon: float = -71.0,
    duration_min: int = 30,
) -> FrequentLocation:
    return FrequentLocation(
        latitude=lat,
        longitude=lon,
        coord_key=coord_key(lat, lon),
        start_ms=start_ms,
        end_ms=start_ms + duration_min * MS_PER_MINUTE,
        address=Address(formatted_address=address) if address is not None else None,
        productivity=productivity,
    )


class FakeGeocoder:
    """Records calls; answers from ``addresses`` keyed by coord_key, else a generated one."""

    def __init__(
        self,
        addresses: dict[str, Address] | None = None,
        *,
        fail_keys: set[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.addresses = addresses or {}
        self.fail_keys = fail_keys or set()
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def reverse(self, lat: float, lon: float) -> Address:
        key = coord_key(lat, lon)
        with self._lock:
            self.calls.append(key)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if key in self.fail_keys:
                raise GeocodeUnavailable(f"no answer for {key}")
            return self.addresses.get(key) or Address(formatted_address=f"Place {key}", place_id=key)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()
