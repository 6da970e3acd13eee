from __future__ import annotations

from conftest import FakeGeocoder, make_location

from productive_places.enrich import EnrichParams, apply_presets, enrich_locations
from productive_places.geocode import coord_key
from productive_places.models import Address

KEY_A = coord_key(42.0, -71.0)
KEY_B = coord_key(42.5, -71.5)


def _locs_at(lat: float, lon: float, n: int, **kwargs):
    return [make_location(i * 1000, lat=lat, lon=lon, **kwargs) for i in range(n)]


class TestEnrichLocations:
    def test_one_geocode_per_distinct_key(self):
        geocoder = FakeGeocoder()
        locations = _locs_at(42.0, -71.0, 3) + _locs_at(42.5, -71.5, 2)

        stats = enrich_locations(locations, geocoder=geocoder, params=EnrichParams(workers=4))

        assert sorted(geocoder.calls) == sorted([KEY_A, KEY_B])
        assert stats.geocoded == 2
        assert stats.memo_hits == 3
        assert all(loc.address is not None for loc in locations)
        assert {loc.formatted_address for loc in locations[:3]} == {f"Place {KEY_A}"}

    def test_known_location_skips_geocoder(self):
        geocoder = FakeGeocoder()
        known = make_location(0, address="1 Known St")
        locations = _locs_at(42.0, -71.0, 2)

        stats = enrich_locations(
            locations,
            geocoder=geocoder,
            known_lookup=lambda key: [known] if key == KEY_A else [],
        )

        assert geocoder.calls == []
        assert stats.known_hits == 1
        assert [loc.formatted_address for loc in locations] == ["1 Known St", "1 Known St"]

    def test_known_lookup_ignores_unresolved_entries(self):
        geocoder = FakeGeocoder()
        unresolved = make_location(0)
        locations = _locs_at(42.0, -71.0, 1)

        enrich_locations(locations, geocoder=geocoder, known_lookup=lambda key: [unresolved])
        assert geocoder.calls == [KEY_A]

    def test_failure_leaves_address_unset(self):
        geocoder = FakeGeocoder(fail_keys={KEY_B})
        locations = _locs_at(42.0, -71.0, 2) + _locs_at(42.5, -71.5, 2)

        stats = enrich_locations(locations, geocoder=geocoder)

        assert stats.failed == 1
        assert stats.geocoded == 1
        assert all(loc.address is not None for loc in locations[:2])
        assert all(loc.address is None for loc in locations[2:])

    def test_unexpected_exception_is_absorbed(self):
        class Broken:
            def reverse(self, lat, lon):
                raise RuntimeError("boom")

        locations = _locs_at(42.0, -71.0, 2)
        stats = enrich_locations(locations, geocoder=Broken())
        assert stats.failed == 1
        assert all(loc.address is None for loc in locations)

    def test_resolved_locations_are_not_looked_up(self):
        geocoder = FakeGeocoder()
        done = make_location(0, address="Already")
        unknown = make_location(1)
        unknown.address = Address.unknown()

        stats = enrich_locations([done, unknown], geocoder=geocoder)

        assert geocoder.calls == []
        assert stats.unresolved == 0
        assert done.formatted_address == "Already"

    def test_concurrency_is_bounded_by_workers(self):
        geocoder = FakeGeocoder(delay=0.02)
        locations = [make_location(i, lat=40.0 + i * 0.1, lon=-70.0) for i in range(8)]

        enrich_locations(locations, geocoder=geocoder, params=EnrichParams(workers=2))

        assert len(geocoder.calls) == 8
        assert 1 <= geocoder.max_active <= 2
        assert all(loc.address is not None for loc in locations)

    def test_presets_applied_after_resolution(self):
        geocoder = FakeGeocoder(addresses={KEY_A: Address(formatted_address="Library")})
        locations = _locs_at(42.0, -71.0, 2)
        locations[1].productivity = 3.0

        stats = enrich_locations(locations, geocoder=geocoder, presets={"Library": 9.0})

        assert stats.preset_applied == 1
        assert [loc.productivity for loc in locations] == [9.0, 3.0]


class TestApplyPresets:
    def test_only_unrated_with_matching_address(self):
        locations = [
            make_location(0, address="Lab"),
            make_location(1, address="Lab", productivity=2.0),
            make_location(2, address="Cafe"),
            make_location(3),
        ]
        assert apply_presets(locations, {"Lab": 8.0}) == 1
        assert [loc.productivity for loc in locations] == [8.0, 2.0, None, None]

    def test_no_presets(self):
        assert apply_presets([make_location(0, address="Lab")], {}) == 0
