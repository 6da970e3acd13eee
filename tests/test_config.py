from __future__ import annotations

from pathlib import Path

import pytest

from productive_places.config import AppConfig, build_geocoder
from productive_places.geocode import GoogleReverseGeocoder, NominatimReverseGeocoder, NullGeocoder


class TestAppConfig:
    def test_defaults(self):
        cfg = AppConfig.from_env({})
        assert cfg.tz_name == "UTC"
        assert cfg.geocoder == "nominatim"
        assert cfg.users_dir == Path("data") / "users"
        assert cfg.cache_path == Path("data") / "geocode_cache.json"
        assert cfg.coord_precision is None
        assert cfg.sitting.proximity_threshold == 0.1
        assert cfg.sitting.min_dwell_minutes == 15.0
        assert cfg.enrich.workers == 4

    def test_overrides(self):
        cfg = AppConfig.from_env(
            {
                "PRODUCTIVE_PLACES_TZ": "UTC",
                "PRODUCTIVE_PLACES_DATA_DIR": "/srv/pp",
                "PRODUCTIVE_PLACES_GEOCODER": "Google",
                "PRODUCTIVE_PLACES_GEOCODE_CACHE": "/tmp/cache.json",
                "PRODUCTIVE_PLACES_COORD_PRECISION": "5",
                "PRODUCTIVE_PLACES_PROXIMITY_MILES": "0.2",
                "PRODUCTIVE_PLACES_MIN_DWELL_MINUTES": "20",
                "PRODUCTIVE_PLACES_GEOCODE_WORKERS": "8",
                "GOOGLE_API_KEY": "secret",
            }
        )
        assert cfg.tz_name == "UTC"
        assert cfg.users_dir == Path("/srv/pp/users")
        assert cfg.cache_path == Path("/tmp/cache.json")
        assert cfg.geocoder == "google"
        assert cfg.coord_precision == 5
        assert cfg.sitting.proximity_threshold == 0.2
        assert cfg.sitting.min_dwell_minutes == 20.0
        assert cfg.enrich.workers == 8
        assert cfg.google_api_key == "secret"

    def test_bad_values(self):
        with pytest.raises(ValueError):
            AppConfig.from_env({"PRODUCTIVE_PLACES_GEOCODER": "bing"})
        with pytest.raises(ValueError):
            AppConfig.from_env({"PRODUCTIVE_PLACES_PROXIMITY_MILES": "near"})
        with pytest.raises(ValueError):
            AppConfig.from_env({"PRODUCTIVE_PLACES_GEOCODE_WORKERS": "many"})


class TestBuildGeocoder:
    def test_kinds(self):
        assert isinstance(build_geocoder(AppConfig(geocoder="none")), NullGeocoder)
        assert isinstance(build_geocoder(AppConfig()), NominatimReverseGeocoder)
        assert isinstance(build_geocoder(AppConfig(geocoder="google", google_api_key="k")), GoogleReverseGeocoder)

    def test_google_needs_key(self):
        with pytest.raises(ValueError):
            build_geocoder(AppConfig(geocoder="google"))
