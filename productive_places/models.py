"""Data models for observations, sittings, frequent locations and users."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Final


@dataclass(frozen=True, slots=True)
class Observation:
    """A single raw location ping from the device.

    Attributes:
        timestamp_ms: Unix epoch milliseconds.
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
    """

    timestamp_ms: int
    latitude: float
    longitude: float


@dataclass(frozen=True, slots=True)
class Sitting:
    """A dwell period at one place.

    The coordinate is the first observation of the dwell (the anchor), not a centroid.
    """

    start_ms: int
    end_ms: int
    latitude: float
    longitude: float

    @property
    def duration_seconds(self) -> float:
        """Dwell duration in seconds."""

        return max(0.0, (self.end_ms - self.start_ms) / 1000.0)


@dataclass(frozen=True, slots=True)
class Visit:
    """Start/end pair of one member sitting inside a cluster."""

    start_ms: int
    end_ms: int


@dataclass(frozen=True, slots=True)
class Address:
    """Reverse-geocoded place.

    ``Address.unknown()`` means the geocoder answered but had nothing for the
    coordinate. A location whose address is ``None`` has not been resolved yet.
    """

    formatted_address: str
    place_id: str = ""
    primary_type: str = ""

    @classmethod
    def unknown(cls) -> Address:
        return cls(formatted_address="", place_id="", primary_type="")

    @property
    def is_unknown(self) -> bool:
        return not (self.formatted_address or self.place_id or self.primary_type)


@dataclass(slots=True)
class FrequentLocation:
    """One visit to a clustered place, owned by a single user.

    The coordinate pair and ``coord_key`` are fixed when the cluster is formed.
    ``address`` and ``productivity`` are filled in later by enrichment or user feedback.
    """

    latitude: float
    longitude: float
    coord_key: str
    start_ms: int
    end_ms: int
    address: Address | None = None
    productivity: float | None = None
    location_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def formatted_address(self) -> str:
        """Resolved address text, or "" when unresolved/unknown."""

        return self.address.formatted_address if self.address is not None else ""


class Weekday(IntEnum):
    """Day of week, Sunday first."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @property
    def label(self) -> str:
        return self.name.capitalize()


class AggregateWindow(Enum):
    """Trailing windows for which weekday aggregates are cached on the user."""

    LAST_7_DAYS = 7
    LAST_30_DAYS = 30
    ALL_TIME = None

    @property
    def days(self) -> int | None:
        return self.value

    @property
    def key(self) -> str:
        """Stable document key: "7", "30" or "all"."""

        return "all" if self.value is None else str(self.value)

    @classmethod
    def from_days(cls, days: int | None) -> AggregateWindow:
        for w in cls:
            if w.value == days:
                return w
        raise ValueError(f"no cached aggregate window for days={days!r} (use 7, 30 or None)")


@dataclass(frozen=True, slots=True)
class WeekdayResult:
    """Most/least productive weekday for one window.

    ``average_productivity`` is None when the chosen weekday had no samples, so
    "no data" is not confused with an actual average of 0.
    """

    weekday: Weekday
    average_productivity: float | None
    sample_count: int


@dataclass(slots=True)
class User:
    """A user document: frequent locations, presets and cached aggregates."""

    user_id: str
    frequent_locations: list[FrequentLocation] = field(default_factory=list)
    preset_productive_locations: dict[str, float] = field(default_factory=dict)
    home_location: str = ""
    home_lat_long: str = ""
    pending_observations: list[Observation] = field(default_factory=list)
    most_productive: dict[AggregateWindow, WeekdayResult] = field(default_factory=dict)
    least_productive: dict[AggregateWindow, WeekdayResult] = field(default_factory=dict)

    def find_location(self, location_id: str) -> FrequentLocation | None:
        for loc in self.frequent_locations:
            if loc.location_id == location_id:
                return loc
        return None


DEFAULT_TZ: Final[str] = "UTC"
