"""Runtime configuration (environment variables, overridable from the CLI)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from productive_places.enrich import EnrichParams
from productive_places.geocode import (
    Geocoder,
    GoogleGeocodeConfig,
    GoogleReverseGeocoder,
    JsonDiskCache,
    NominatimConfig,
    NominatimReverseGeocoder,
    NullGeocoder,
)
from productive_places.models import DEFAULT_TZ
from productive_places.sittings import SittingParams

ENV_PREFIX = "PRODUCTIVE_PLACES_"
GEOCODERS = ("nominatim", "google", "none")
DEFAULT_USER_AGENT = "productive-places/0.1.0 (reverse-geocode; please set your own UA)"


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from exc


def _env_int(env: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Everything needed to wire a ProductivityService."""

    tz_name: str = DEFAULT_TZ
    data_dir: Path = Path("data")
    geocoder: str = "nominatim"
    geocode_cache: Path | None = None
    google_api_key: str = ""
    user_agent: str = DEFAULT_USER_AGENT
    geocode_timeout_seconds: float = 20.0
    # None keys clusters by their exact anchor coordinate
    coord_precision: int | None = None
    sitting: SittingParams = field(default_factory=SittingParams)
    enrich: EnrichParams = field(default_factory=EnrichParams)

    @property
    def users_dir(self) -> Path:
        return self.data_dir / "users"

    @property
    def cache_path(self) -> Path:
        return self.geocode_cache or (self.data_dir / "geocode_cache.json")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AppConfig:
        """Read ``PRODUCTIVE_PLACES_*`` variables (and ``GOOGLE_API_KEY``).

        Raises:
            ValueError: On malformed numeric values or an unknown geocoder name.
        """

        env = os.environ if environ is None else environ
        geocoder = env.get(ENV_PREFIX + "GEOCODER", "nominatim").strip().lower()
        if geocoder not in GEOCODERS:
            raise ValueError(f"{ENV_PREFIX}GEOCODER must be one of {GEOCODERS}, got {geocoder!r}")
        cache = env.get(ENV_PREFIX + "GEOCODE_CACHE")
        return cls(
            tz_name=env.get(ENV_PREFIX + "TZ", DEFAULT_TZ),
            data_dir=Path(env.get(ENV_PREFIX + "DATA_DIR", "data")),
            geocoder=geocoder,
            geocode_cache=Path(cache) if cache else None,
            google_api_key=env.get("GOOGLE_API_KEY", ""),
            user_agent=env.get(ENV_PREFIX + "USER_AGENT", DEFAULT_USER_AGENT),
            geocode_timeout_seconds=_env_float(env, "GEOCODE_TIMEOUT", 20.0),
            coord_precision=_env_int(env, "COORD_PRECISION", None),
            sitting=SittingParams(
                proximity_threshold=_env_float(env, "PROXIMITY_MILES", 0.1),
                min_dwell_minutes=_env_float(env, "MIN_DWELL_MINUTES", 15.0),
            ),
            enrich=EnrichParams(
                workers=_env_int(env, "GEOCODE_WORKERS", 4) or 1,
                min_interval_seconds=_env_float(env, "GEOCODE_MIN_INTERVAL", 0.0),
            ),
        )


def build_geocoder(cfg: AppConfig, cache: JsonDiskCache | None = None) -> Geocoder:
    """Instantiate the configured geocoder; ``cache`` is shared so the caller can flush it."""

    if cfg.geocoder == "none":
        return NullGeocoder()
    if cfg.geocoder == "google":
        return GoogleReverseGeocoder(
            GoogleGeocodeConfig(api_key=cfg.google_api_key, timeout_seconds=cfg.geocode_timeout_seconds),
            cache=cache,
        )
    return NominatimReverseGeocoder(
        NominatimConfig(
            user_agent=cfg.user_agent,
            timeout_seconds=cfg.geocode_timeout_seconds,
            min_interval_seconds=max(1.0, cfg.enrich.min_interval_seconds),
        ),
        cache=cache,
    )
