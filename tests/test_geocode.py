from __future__ import annotations

import pytest

from productive_places import geocode
from productive_places.errors import GeocodeUnavailable
from productive_places.geocode import (
    GoogleGeocodeConfig,
    GoogleReverseGeocoder,
    JsonDiskCache,
    NominatimConfig,
    NominatimReverseGeocoder,
    NullGeocoder,
    address_from_google,
    address_from_nominatim,
    coord_key,
)
from productive_places.models import Address


class TestCoordKey:
    def test_exact_by_default(self):
        assert coord_key(42.0, -71.0) == "42.0,-71.0"
        assert coord_key(42.123456789, -71.5) == "42.123456789,-71.5"

    def test_rounded(self):
        assert coord_key(42.123456, -71.98766, 4) == "42.1235,-71.9877"


class TestResponseMapping:
    def test_nominatim(self):
        addr = address_from_nominatim({"display_name": "Main Library, Boston", "place_id": 12, "category": "amenity"})
        assert addr == Address("Main Library, Boston", "12", "amenity")
        assert address_from_nominatim({"error": "Unable to geocode"}).is_unknown

    def test_google_ok(self):
        raw = {
            "status": "OK",
            "results": [
                {"formatted_address": "1 Main St", "place_id": "abc", "types": ["street_address", "premise"]},
                {"formatted_address": "Boston", "place_id": "def", "types": ["locality"]},
            ],
        }
        assert address_from_google(raw) == Address("1 Main St", "abc", "street_address")

    def test_google_empty(self):
        assert address_from_google({"status": "ZERO_RESULTS", "results": []}).is_unknown
        assert address_from_google({"status": "OK", "results": []}).is_unknown

    def test_google_error_status(self):
        with pytest.raises(GeocodeUnavailable):
            address_from_google({"status": "OVER_QUERY_LIMIT", "error_message": "quota"})


class TestJsonDiskCache:
    def test_journal_survives_without_flush(self, tmp_path):
        path = tmp_path / "geocode_cache.json"
        cache = JsonDiskCache(path)
        cache.set("1,2", Address("Somewhere"))
        assert not path.exists()

        reloaded = JsonDiskCache(path)
        assert reloaded.get("1,2") == Address("Somewhere")

    def test_flush_writes_snapshot_and_clears_journal(self, tmp_path):
        path = tmp_path / "geocode_cache.json"
        cache = JsonDiskCache(path)
        cache.set("1,2", Address("Somewhere"))
        cache.flush()
        assert path.exists()
        assert not (tmp_path / "geocode_cache.journal.jsonl").exists()
        assert JsonDiskCache(path).get("1,2") == Address("Somewhere")

    def test_corrupted_file_is_backed_up(self, tmp_path):
        path = tmp_path / "geocode_cache.json"
        path.write_text("{broken", encoding="utf-8")
        assert JsonDiskCache(path).get("1,2") is None
        assert (tmp_path / "geocode_cache.json.broken").exists()


class TestReverseGeocoders:
    def test_nominatim_uses_cache(self, tmp_path, monkeypatch):
        calls = []

        def fake_raw(lat, lon, cfg):
            calls.append((lat, lon))
            return {"display_name": "Main Library", "place_id": 1, "type": "library"}

        monkeypatch.setattr(geocode, "nominatim_reverse_raw", fake_raw)
        cache = JsonDiskCache(tmp_path / "cache.json")
        geocoder = NominatimReverseGeocoder(NominatimConfig(min_interval_seconds=0), cache=cache)

        first = geocoder.reverse(42.00001, -71.0)
        second = geocoder.reverse(42.00002, -71.0)  # same key at 4 decimals

        assert first == second == Address("Main Library", "1", "library")
        assert len(calls) == 1

    def test_google_network_failure(self, monkeypatch):
        def fake_raw(lat, lon, cfg):
            raise GeocodeUnavailable("request failed: timed out")

        monkeypatch.setattr(geocode, "google_reverse_raw", fake_raw)
        geocoder = GoogleReverseGeocoder(GoogleGeocodeConfig(api_key="k"))
        with pytest.raises(GeocodeUnavailable):
            geocoder.reverse(1.0, 2.0)

    def test_google_requires_key(self):
        with pytest.raises(ValueError):
            GoogleReverseGeocoder(GoogleGeocodeConfig(api_key=""))

    def test_null_geocoder(self):
        with pytest.raises(GeocodeUnavailable):
            NullGeocoder().reverse(1.0, 2.0)
