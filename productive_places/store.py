"""User document storage.

The engine only needs ``load_user`` / ``save_user`` / ``find_locations_by_coordinate``.
``JsonUserStore`` keeps one JSON document per user on disk: the frequent locations
are embedded in order, next to presets, the pending observation queue and the
cached weekday aggregates.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Protocol

from productive_places.errors import InvalidInput, PersistenceFailure, ProductivityError, UserNotFound
from productive_places.geocode import address_from_dict, address_to_dict
from productive_places.models import AggregateWindow, FrequentLocation, Observation, User, Weekday, WeekdayResult

logger = logging.getLogger(__name__)

_USER_ID_RE = re.compile(r"^[A-Za-z0-9_.@-]{1,128}$")


class UserStore(Protocol):
    def load_user(self, user_id: str) -> User: ...

    def save_user(self, user: User) -> None: ...

    def create_user(self, user_id: str) -> User: ...

    def list_user_ids(self) -> list[str]: ...

    def find_locations_by_coordinate(self, key: str) -> list[FrequentLocation]: ...


def _weekday_result_to_doc(result: WeekdayResult) -> dict[str, Any]:
    return {
        "weekday": result.weekday.label,
        "average_productivity": result.average_productivity,
        "sample_count": result.sample_count,
    }


def _weekday_result_from_doc(doc: dict[str, Any]) -> WeekdayResult | None:
    if not doc or "weekday" not in doc:
        return None
    avg = doc.get("average_productivity")
    return WeekdayResult(
        weekday=Weekday[str(doc["weekday"]).upper()],
        average_productivity=None if avg is None else float(avg),
        sample_count=int(doc.get("sample_count", 0)),
    )


def _aggregates_from_doc(doc: dict[str, Any]) -> dict[AggregateWindow, WeekdayResult]:
    out: dict[AggregateWindow, WeekdayResult] = {}
    for window in AggregateWindow:
        result = _weekday_result_from_doc(doc.get(window.key) or {})
        if result is not None:
            out[window] = result
    return out


def location_to_doc(loc: FrequentLocation) -> dict[str, Any]:
    return {
        "location_id": loc.location_id,
        "latitude": loc.latitude,
        "longitude": loc.longitude,
        "coord_key": loc.coord_key,
        "start_ms": loc.start_ms,
        "end_ms": loc.end_ms,
        "address": address_to_dict(loc.address) if loc.address is not None else None,
        "productivity": loc.productivity,
    }


def location_from_doc(doc: dict[str, Any]) -> FrequentLocation:
    address = doc.get("address")
    productivity = doc.get("productivity")
    return FrequentLocation(
        location_id=str(doc["location_id"]),
        latitude=float(doc["latitude"]),
        longitude=float(doc["longitude"]),
        coord_key=str(doc["coord_key"]),
        start_ms=int(doc["start_ms"]),
        end_ms=int(doc["end_ms"]),
        address=address_from_dict(address) if isinstance(address, dict) else None,
        productivity=None if productivity is None else float(productivity),
    )


def user_to_doc(user: User) -> dict[str, Any]:
    return {
        "user_id": user.user_id,
        "preset_productive_locations": dict(user.preset_productive_locations),
        "home_location": user.home_location,
        "home_lat_long": user.home_lat_long,
        "pending_observations": [
            {"timestamp_ms": o.timestamp_ms, "latitude": o.latitude, "longitude": o.longitude}
            for o in user.pending_observations
        ],
        "frequent_locations": [location_to_doc(loc) for loc in user.frequent_locations],
        "most_productive": {w.key: _weekday_result_to_doc(r) for w, r in user.most_productive.items()},
        "least_productive": {w.key: _weekday_result_to_doc(r) for w, r in user.least_productive.items()},
    }


def user_from_doc(doc: dict[str, Any]) -> User:
    return User(
        user_id=str(doc["user_id"]),
        frequent_locations=[location_from_doc(d) for d in doc.get("frequent_locations", [])],
        preset_productive_locations={
            str(k): float(v) for k, v in (doc.get("preset_productive_locations") or {}).items()
        },
        home_location=str(doc.get("home_location", "") or ""),
        home_lat_long=str(doc.get("home_lat_long", "") or ""),
        pending_observations=[
            Observation(timestamp_ms=int(o["timestamp_ms"]), latitude=float(o["latitude"]), longitude=float(o["longitude"]))
            for o in doc.get("pending_observations", [])
        ],
        most_productive=_aggregates_from_doc(doc.get("most_productive") or {}),
        least_productive=_aggregates_from_doc(doc.get("least_productive") or {}),
    )


class JsonUserStore:
    """One JSON document per user under ``root`` (``<root>/<user_id>.json``)."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._lock = threading.Lock()
        # coord_key -> persisted locations of all users; rebuilt lazily after writes
        self._coord_index: dict[str, list[FrequentLocation]] | None = None

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, user_id: str) -> Path:
        if not _USER_ID_RE.match(user_id or ""):
            raise InvalidInput(f"invalid user id: {user_id!r}")
        return self._root / f"{user_id}.json"

    def exists(self, user_id: str) -> bool:
        return self._path(user_id).exists()

    def load_user(self, user_id: str) -> User:
        p = self._path(user_id)
        if not p.exists():
            raise UserNotFound(user_id)
        try:
            doc = json.loads(p.read_text(encoding="utf-8"))
            return user_from_doc(doc)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise PersistenceFailure(f"cannot read user document {p}: {exc}") from exc

    def save_user(self, user: User) -> None:
        p = self._path(user.user_id)
        tmp = p.with_suffix(p.suffix + ".tmp")
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(user_to_doc(user), ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(p)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceFailure(f"cannot write user document {p}: {exc}") from exc
        finally:
            with self._lock:
                self._coord_index = None
        logger.debug("saved user %s (%s locations)", user.user_id, len(user.frequent_locations))

    def create_user(self, user_id: str) -> User:
        user = User(user_id=user_id)
        self.save_user(user)
        return user

    def list_user_ids(self) -> list[str]:
        if not self._root.exists():
            return []
        # stray files whose names are not valid user ids are not user documents
        return sorted(p.stem for p in self._root.glob("*.json") if _USER_ID_RE.match(p.stem))

    def find_locations_by_coordinate(self, key: str) -> list[FrequentLocation]:
        with self._lock:
            if self._coord_index is None:
                self._coord_index = self._build_index()
            return list(self._coord_index.get(key, ()))

    def _build_index(self) -> dict[str, list[FrequentLocation]]:
        index: dict[str, list[FrequentLocation]] = {}
        for user_id in self.list_user_ids():
            try:
                user = self.load_user(user_id)
            except ProductivityError as exc:
                logger.warning("skipping user document %s while indexing: %s", user_id, exc)
                continue
            for loc in user.frequent_locations:
                index.setdefault(loc.coord_key, []).append(loc)
        return index
