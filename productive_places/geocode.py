"""Reverse geocoding (lat/lon -> Address).

Uses only the Python standard library for HTTP. Two backends are provided:
OpenStreetMap Nominatim and the Google Geocoding API.

Important:
    - Public reverse-geocoding services are rate-limited. Nominatim requires a
      descriptive User-Agent and at most ~1 request/second.
    - Both geocoders are called from worker threads during enrichment; shared
      state (throttle clock, disk cache) is lock-protected.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from productive_places.errors import GeocodeUnavailable
from productive_places.models import Address

logger = logging.getLogger(__name__)


def coord_key(lat: float, lon: float, precision: int | None = None) -> str:
    """Build a stable key for a coordinate.

    Notes:
        With ``precision=None`` the key is the exact "lat,lon" text, so only
        identical anchors share a key. With an integer precision the values are
        rounded first (precision=4 is ~11m of latitude), which lets GPS jitter
        share cached geocodes.
    """

    if precision is None:
        return f"{float(lat)},{float(lon)}"
    return f"{round(lat, precision):.{precision}f},{round(lon, precision):.{precision}f}"


def address_to_dict(address: Address) -> dict[str, str]:
    return {
        "formatted_address": address.formatted_address,
        "place_id": address.place_id,
        "primary_type": address.primary_type,
    }


def address_from_dict(data: dict[str, Any]) -> Address:
    return Address(
        formatted_address=str(data.get("formatted_address", "") or ""),
        place_id=str(data.get("place_id", "") or ""),
        primary_type=str(data.get("primary_type", "") or ""),
    )


class Geocoder(Protocol):
    """Capability consumed by the enricher."""

    def reverse(self, lat: float, lon: float) -> Address:
        """Resolve a coordinate; raise GeocodeUnavailable on failure."""
        ...


class JsonDiskCache:
    """Coordinate key -> Address, persisted as one JSON object on disk.

    Every ``set`` is also appended to a ``<stem>.journal.jsonl`` file beside the
    snapshot, so lookups paid for before a crash are replayed on the next load.
    ``flush`` rewrites the snapshot and drops the journal. All methods are safe to
    call from geocoding worker threads.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._journal_path = self._path.with_name(f"{self._path.stem}.journal.jsonl")
        self._entries: dict[str, dict[str, Any]] | None = None
        self._lock = threading.Lock()

    def _entries_locked(self) -> dict[str, dict[str, Any]]:
        if self._entries is None:
            self._entries = self._read_snapshot()
            self._entries.update(self._read_journal())
        return self._entries

    def _read_snapshot(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {}
        text = self._path.read_text(encoding="utf-8").strip()
        if not text:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            backup = self._path.with_suffix(self._path.suffix + ".broken")
            backup.write_text(text, encoding="utf-8")
            logger.warning("geocode cache %s is corrupted, moved to %s", self._path, backup)
            return {}
        return data if isinstance(data, dict) else {}

    def _read_journal(self) -> dict[str, dict[str, Any]]:
        replayed: dict[str, dict[str, Any]] = {}
        if not self._journal_path.exists():
            return replayed
        try:
            lines = self._journal_path.read_text(encoding="utf-8").splitlines()
        except OSError:
            logger.warning("could not replay geocode journal %s", self._journal_path)
            return replayed
        for line in filter(None, (s.strip() for s in lines)):
            try:
                rec = json.loads(line)
            except json.JSONDecodeError:
                continue  # torn tail write
            if isinstance(rec, dict) and isinstance(rec.get("k"), str) and isinstance(rec.get("v"), dict):
                replayed[rec["k"]] = rec["v"]
        return replayed

    def get(self, key: str) -> Address | None:
        with self._lock:
            data = self._entries_locked().get(key)
        return None if data is None else address_from_dict(data)

    def set(self, key: str, address: Address) -> None:
        value = address_to_dict(address)
        with self._lock:
            self._entries_locked()[key] = value
            self._journal_path.parent.mkdir(parents=True, exist_ok=True)
            with self._journal_path.open("a", encoding="utf-8", newline="\n") as f:
                f.write(json.dumps({"k": key, "v": value}, ensure_ascii=False) + "\n")

    def flush(self) -> None:
        """Write the full snapshot (tmp file + replace), then remove the journal."""

        with self._lock:
            entries = self._entries_locked()
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(entries, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self._path)
            self._journal_path.unlink(missing_ok=True)


def _get_json(url: str, *, headers: dict[str, str], timeout_seconds: float) -> dict[str, Any]:
    req = urllib.request.Request(url, headers=headers, method="GET")
    try:
        with urllib.request.urlopen(req, timeout=timeout_seconds) as resp:  # noqa: S310
            body = resp.read().decode("utf-8", errors="replace")
        raw = json.loads(body)
    except (OSError, ValueError) as exc:
        raise GeocodeUnavailable(f"request failed: {exc}") from exc
    if not isinstance(raw, dict):
        raise GeocodeUnavailable(f"unexpected response type: {type(raw).__name__}")
    return raw


class _Throttle:
    """Spaces consecutive requests at least ``min_interval`` seconds apart."""

    def __init__(self, min_interval: float) -> None:
        self._min_interval = min_interval
        self._last_request_at = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        if self._min_interval <= 0:
            return
        with self._lock:
            wait = self._min_interval - (time.monotonic() - self._last_request_at)
            if wait > 0:
                time.sleep(wait)
            self._last_request_at = time.monotonic()


@dataclass(frozen=True, slots=True)
class NominatimConfig:
    """Configuration for Nominatim reverse API."""

    base_url: str = "https://nominatim.openstreetmap.org/reverse"
    accept_language: str = "en"
    zoom: int = 18
    timeout_seconds: float = 20.0
    min_interval_seconds: float = 1.0
    user_agent: str = "productive-places/0.1.0 (reverse-geocode; please set your own UA)"
    cache_precision: int = 4


def nominatim_reverse_raw(lat: float, lon: float, cfg: NominatimConfig) -> dict[str, Any]:
    """Call Nominatim reverse API and return raw JSON dict.

    Pure function (no cache, no throttling state).

    Raises:
        GeocodeUnavailable: On network/HTTP/JSON errors.
    """

    params = {
        "format": "jsonv2",
        "lat": f"{lat:.8f}",
        "lon": f"{lon:.8f}",
        "zoom": str(cfg.zoom),
        "accept-language": cfg.accept_language,
    }
    url = f"{cfg.base_url}?{urllib.parse.urlencode(params)}"
    return _get_json(
        url,
        headers={"User-Agent": cfg.user_agent, "Accept": "application/json"},
        timeout_seconds=cfg.timeout_seconds,
    )


def address_from_nominatim(raw: dict[str, Any]) -> Address:
    """Map a Nominatim jsonv2 response to an Address."""

    if "error" in raw or not raw.get("display_name"):
        return Address.unknown()
    return Address(
        formatted_address=str(raw.get("display_name", "") or ""),
        place_id=str(raw.get("place_id", "") or ""),
        primary_type=str(raw.get("type") or raw.get("category") or ""),
    )


class NominatimReverseGeocoder:
    """Reverse geocoder using OpenStreetMap Nominatim."""

    def __init__(self, config: NominatimConfig, cache: JsonDiskCache | None = None) -> None:
        self._cfg = config
        self._cache = cache
        self._throttle = _Throttle(config.min_interval_seconds)

    def reverse(self, lat: float, lon: float) -> Address:
        key = coord_key(lat, lon, self._cfg.cache_precision)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        self._throttle.wait()
        address = address_from_nominatim(nominatim_reverse_raw(lat, lon, self._cfg))
        if self._cache is not None:
            self._cache.set(key, address)
        return address


@dataclass(frozen=True, slots=True)
class GoogleGeocodeConfig:
    """Configuration for the Google Geocoding API (reverse lookups)."""

    api_key: str
    base_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    language: str = "en"
    timeout_seconds: float = 10.0
    min_interval_seconds: float = 0.0
    cache_precision: int = 5


def google_reverse_raw(lat: float, lon: float, cfg: GoogleGeocodeConfig) -> dict[str, Any]:
    """Call the Google Geocoding API (latlng=...) and return the raw JSON dict."""

    params = {"latlng": f"{lat},{lon}", "key": cfg.api_key, "language": cfg.language}
    url = f"{cfg.base_url}?{urllib.parse.urlencode(params)}"
    return _get_json(url, headers={"Accept": "application/json"}, timeout_seconds=cfg.timeout_seconds)


def address_from_google(raw: dict[str, Any]) -> Address:
    """Map a Google Geocoding response to an Address (first result only).

    Raises:
        GeocodeUnavailable: For error statuses (quota, denied key, ...).
    """

    status = str(raw.get("status", "OK"))
    results = raw.get("results") or []
    if status == "ZERO_RESULTS" or (status == "OK" and not results):
        return Address.unknown()
    if status != "OK":
        raise GeocodeUnavailable(f"google geocoder status {status}: {raw.get('error_message', '')}")
    first = results[0]
    types = first.get("types") or []
    return Address(
        formatted_address=str(first.get("formatted_address", "") or ""),
        place_id=str(first.get("place_id", "") or ""),
        primary_type=str(types[0]) if types else "",
    )


class GoogleReverseGeocoder:
    """Reverse geocoder using the Google Geocoding API."""

    def __init__(self, config: GoogleGeocodeConfig, cache: JsonDiskCache | None = None) -> None:
        if not config.api_key:
            raise ValueError("Google geocoder needs an API key (GOOGLE_API_KEY)")
        self._cfg = config
        self._cache = cache
        self._throttle = _Throttle(config.min_interval_seconds)

    def reverse(self, lat: float, lon: float) -> Address:
        key = coord_key(lat, lon, self._cfg.cache_precision)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        self._throttle.wait()
        address = address_from_google(google_reverse_raw(lat, lon, self._cfg))
        if self._cache is not None:
            self._cache.set(key, address)
        return address


class NullGeocoder:
    """Geocoder that is always unavailable (offline runs)."""

    def reverse(self, lat: float, lon: float) -> Address:
        raise GeocodeUnavailable("geocoding disabled")
