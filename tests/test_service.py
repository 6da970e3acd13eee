from __future__ import annotations

import pytest
from conftest import FakeGeocoder, dwell, utc_ms

from productive_places.errors import InvalidInput, LocationNotFound, PersistenceFailure, UserNotFound
from productive_places.geocode import NullGeocoder, coord_key
from productive_places.models import Address, AggregateWindow, Weekday
from productive_places.productivity import RankMode
from productive_places.service import ProductivityService
from productive_places.store import JsonUserStore
from productive_places.timeutils import MS_PER_DAY

BASE = utc_ms(2024, 1, 9, 9)  # Tuesday
NOW = BASE + MS_PER_DAY
LAB = (42.0, -71.0)
CAFE = (42.01, -71.01)
ELSEWHERE = (42.05, -71.05)
LAB_KEY = coord_key(*LAB)


def _day_of_pings():
    """Lab twice (kept), cafe once (singleton, dropped), trailing dwell never emitted."""

    return (
        dwell(*LAB, 0, 20, base_ms=BASE)
        + dwell(*CAFE, 25, 50, base_ms=BASE)
        + dwell(*LAB, 55, 80, base_ms=BASE)
        + dwell(*ELSEWHERE, 85, 90, base_ms=BASE)
    )


def _service(store, geocoder=None) -> ProductivityService:
    return ProductivityService(store, geocoder or FakeGeocoder(), tz_name="UTC", clock=lambda: NOW)


@pytest.fixture
def store(tmp_path):
    return JsonUserStore(tmp_path / "users")


class TestIngestion:
    def test_process_raw_observations(self, store, geocoder):
        svc = _service(store, geocoder)
        svc.get_or_create_user("alice")

        new_locations = svc.process_raw_observations("alice", _day_of_pings())

        assert len(new_locations) == 2
        assert {loc.coord_key for loc in new_locations} == {LAB_KEY}
        assert geocoder.calls == [LAB_KEY]
        assert all(loc.formatted_address == f"Place {LAB_KEY}" for loc in new_locations)
        saved = store.load_user("alice")
        assert [loc.location_id for loc in saved.frequent_locations] == [loc.location_id for loc in new_locations]

    def test_replace_and_append(self, store):
        svc = _service(store)
        svc.get_or_create_user("alice")
        svc.process_raw_observations("alice", _day_of_pings())
        svc.process_raw_observations("alice", _day_of_pings())
        assert len(store.load_user("alice").frequent_locations) == 4

        svc.process_raw_observations("alice", _day_of_pings(), replace=True)
        assert len(store.load_user("alice").frequent_locations) == 2

    def test_unknown_user(self, store):
        with pytest.raises(UserNotFound):
            _service(store).process_raw_observations("ghost", _day_of_pings())

    def test_failed_geocode_is_retried_next_batch(self, store):
        _service(store, NullGeocoder()).get_or_create_user("alice")
        _service(store, NullGeocoder()).process_raw_observations("alice", _day_of_pings())
        assert all(loc.address is None for loc in store.load_user("alice").frequent_locations)

        geocoder = FakeGeocoder()
        _service(store, geocoder).process_raw_observations("alice", [])
        assert geocoder.calls == [LAB_KEY]
        assert all(loc.address is not None for loc in store.load_user("alice").frequent_locations)

    def test_known_address_shared_across_users(self, store):
        first = FakeGeocoder(addresses={LAB_KEY: Address("Main Library")})
        svc = _service(store, first)
        svc.get_or_create_user("bob")
        svc.process_raw_observations("bob", _day_of_pings())

        second = FakeGeocoder()
        svc = _service(store, second)
        svc.get_or_create_user("alice")
        new_locations = svc.process_raw_observations("alice", _day_of_pings())

        assert second.calls == []
        assert {loc.formatted_address for loc in new_locations} == {"Main Library"}

    def test_queue_then_process_pending(self, store, geocoder):
        svc = _service(store, geocoder)
        svc.get_or_create_user("alice")
        pings = _day_of_pings()

        assert svc.queue_observations("alice", pings[:10]) == 10
        assert svc.queue_observations("alice", pings[10:]) == len(pings)
        assert store.load_user("alice").frequent_locations == []

        new_locations = svc.process_pending_observations("alice")
        assert len(new_locations) == 2
        user = store.load_user("alice")
        assert user.pending_observations == []
        assert len(user.frequent_locations) == 2
        assert svc.process_pending_observations("alice") == []

    def test_stray_file_in_user_dir_does_not_block_ingestion(self, store, geocoder):
        svc = _service(store, geocoder)
        svc.get_or_create_user("alice")
        (store.root / "my notes.json").write_text("{}", encoding="utf-8")

        new_locations = svc.process_raw_observations("alice", _day_of_pings())

        assert len(new_locations) == 2
        assert svc.run_sweep().failed == {}

    def test_save_failure_propagates(self, tmp_path):
        class FailingStore(JsonUserStore):
            def save_user(self, user):
                if user.frequent_locations:
                    raise PersistenceFailure("disk full")
                super().save_user(user)

        store = FailingStore(tmp_path)
        svc = _service(store)
        svc.get_or_create_user("alice")
        with pytest.raises(PersistenceFailure):
            svc.process_raw_observations("alice", _day_of_pings())
        assert store.load_user("alice").frequent_locations == []


class TestFeedbackAndAggregates:
    def _ingested(self, store):
        svc = _service(store, FakeGeocoder(addresses={LAB_KEY: Address("Main Library")}))
        svc.get_or_create_user("alice")
        svc.process_raw_observations("alice", _day_of_pings())
        return svc

    def test_rate_then_recompute(self, store):
        svc = self._ingested(store)
        locations = store.load_user("alice").frequent_locations
        svc.update_productivity("alice", locations[0].location_id, 4)
        updated = svc.update_productivity("alice", locations[1].location_id, "8")
        assert updated.productivity == 8.0

        # rating alone leaves cached aggregates untouched
        assert store.load_user("alice").most_productive == {}

        result = svc.recompute_aggregates("alice", None)
        assert result.most.weekday is Weekday.TUESDAY
        assert result.most.average_productivity == 6.0
        user = store.load_user("alice")
        assert user.most_productive[AggregateWindow.ALL_TIME] == result.most
        assert user.least_productive[AggregateWindow.ALL_TIME].sample_count == 0

    def test_rate_errors(self, store):
        svc = self._ingested(store)
        location_id = store.load_user("alice").frequent_locations[0].location_id
        with pytest.raises(LocationNotFound):
            svc.update_productivity("alice", "missing", 3)
        with pytest.raises(InvalidInput):
            svc.update_productivity("alice", location_id, float("nan"))
        with pytest.raises(InvalidInput):
            svc.update_productivity("alice", location_id, "high")

    def test_unsupported_window(self, store):
        svc = self._ingested(store)
        with pytest.raises(ValueError):
            svc.recompute_aggregates("alice", 14)

    def test_settings_apply_presets_and_refresh_all_windows(self, store):
        svc = self._ingested(store)
        user = svc.update_settings(
            "alice",
            presets={"Main Library": 7, "Nowhere": 0},
            home_location="2 Home Rd",
            home_lat_long="42.3485, -71.0765",
        )
        assert user.preset_productive_locations == {"Main Library": 7.0}
        saved = store.load_user("alice")
        assert [loc.productivity for loc in saved.frequent_locations] == [7.0, 7.0]
        assert saved.home_location == "2 Home Rd"
        assert set(saved.most_productive) == set(AggregateWindow)
        assert saved.most_productive[AggregateWindow.LAST_7_DAYS].weekday is Weekday.TUESDAY

    def test_queries(self, store):
        svc = self._ingested(store)
        assert len(svc.unrated_locations("alice")) == 2
        location_id = store.load_user("alice").frequent_locations[0].location_id
        svc.update_productivity("alice", location_id, 9)

        ranked = svc.rank_locations("alice", None, 5)
        assert [(p.address, p.average_productivity, p.times_observed) for p in ranked] == [("Main Library", 4.5, 2)]
        by_visits = svc.rank_locations("alice", 7, 5, RankMode.BY_FREQUENCY)
        assert by_visits[0].times_observed == 2
        assert svc.productivity_trend("alice") == {"1/09/2024": 4.5}
        assert len(svc.unrated_locations("alice")) == 1


class TestSweep:
    def test_failing_user_does_not_stop_sweep(self, store):
        svc = _service(store)
        svc.get_or_create_user("alice")
        svc.get_or_create_user("bob")
        svc.queue_observations("alice", _day_of_pings())
        (store.root / "broken.json").write_text("{oops", encoding="utf-8")

        report = svc.run_sweep()

        assert report.processed == ["alice", "bob"]
        assert list(report.failed) == ["broken"]
        assert report.new_locations == 2
        alice = store.load_user("alice")
        assert alice.pending_observations == []
        assert set(alice.most_productive) == set(AggregateWindow)

    def test_selected_users(self, store):
        svc = _service(store)
        svc.get_or_create_user("alice")
        report = svc.run_sweep(["alice", "ghost"])
        assert report.processed == ["alice"]
        assert "ghost" in report.failed
