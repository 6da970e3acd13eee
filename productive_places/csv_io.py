"""Observation input (CSV / device JSON) and frequent-location export."""

from __future__ import annotations

import csv
import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Sequence

from productive_places.errors import InvalidInput
from productive_places.geo import validate_coordinate
from productive_places.models import FrequentLocation, Observation
from productive_places.timeutils import dt_from_epoch_ms

logger = logging.getLogger(__name__)

# Accepted timestamp column names, first match wins.
TIMESTAMP_FIELDS = ("timestamp", "timestamp_ms", "geoTime")


@dataclass(frozen=True, slots=True)
class LoadSummary:
    """Quick summary of input parsing."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


def parse_observation(timestamp: Any, latitude: Any, longitude: Any) -> Observation:
    """Build a validated Observation; timestamp is floored to integer ms.

    Raises:
        InvalidInput: On missing/non-numeric/out-of-range values.
    """

    try:
        ts = float(str(timestamp).strip())
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"invalid timestamp: {timestamp!r}") from exc
    if not math.isfinite(ts) or ts < 0:
        raise InvalidInput(f"invalid timestamp: {timestamp!r}")
    lat, lon = validate_coordinate(latitude, longitude)
    return Observation(timestamp_ms=math.floor(ts), latitude=lat, longitude=lon)


def _row_timestamp(row: dict[str, Any]) -> Any:
    for name in TIMESTAMP_FIELDS:
        if row.get(name) not in (None, ""):
            return row[name]
    raise InvalidInput(f"row has none of the timestamp fields {TIMESTAMP_FIELDS}")


def load_observations(csv_path: str | Path) -> tuple[list[Observation], LoadSummary]:
    """Load observations from CSV (``timestamp``/``geoTime``, ``latitude``, ``longitude``).

    Rows keep file order; unparseable rows are skipped and counted.
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[Observation] = []
    fieldnames: Sequence[str] = ()

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or ()
        for row in reader:
            rows_total += 1
            try:
                parsed.append(parse_observation(_row_timestamp(row), row.get("latitude"), row.get("longitude")))
            except InvalidInput:
                continue

    summary = LoadSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("%s: %s rows could not be parsed and were skipped", p, summary.rows_skipped)
    return parsed, summary


def observations_from_payload(records: Iterable[dict[str, Any]]) -> tuple[list[Observation], int]:
    """Parse device payload records.

    Accepts both the background-location shape
    ``{"timestamp": ..., "coords": {"latitude": ..., "longitude": ...}}``
    and flat ``{"timestamp_ms"|"timestamp", "latitude", "longitude"}`` records.

    Returns:
        (observations, skipped_count)
    """

    out: list[Observation] = []
    skipped = 0
    for rec in records:
        try:
            if not isinstance(rec, dict):
                raise InvalidInput(f"record is not an object: {rec!r}")
            coords = rec.get("coords") if isinstance(rec.get("coords"), dict) else rec
            out.append(parse_observation(_row_timestamp(rec), coords.get("latitude"), coords.get("longitude")))
        except InvalidInput as exc:
            skipped += 1
            logger.debug("skipping record: %s", exc)
    return out, skipped


def load_observations_json(json_path: str | Path) -> tuple[list[Observation], LoadSummary]:
    """Load a JSON array of device payload records (see :func:`observations_from_payload`)."""

    p = Path(json_path)
    data = json.loads(p.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        # {"dataToBeProcessed": [...]} style wrapper
        data = next((v for v in data.values() if isinstance(v, list)), [])
    if not isinstance(data, list):
        raise InvalidInput(f"{p}: expected a JSON array of observations")

    parsed, skipped = observations_from_payload(data)
    if skipped:
        logger.warning("%s: %s records could not be parsed and were skipped", p, skipped)
    return parsed, LoadSummary(rows_total=len(data), rows_parsed=len(parsed), rows_skipped=skipped, fieldnames=())


def load_observations_any(path: str | Path) -> tuple[list[Observation], LoadSummary]:
    """Dispatch on file extension: ``.json`` -> JSON payload, anything else -> CSV."""

    if Path(path).suffix.lower() == ".json":
        return load_observations_json(path)
    return load_observations(path)


def write_locations_csv(locations: Iterable[FrequentLocation], out_path: str | Path, tz_name: str) -> int:
    """Export frequent locations with readable local times.

    Returns:
        Number of rows written.
    """

    p = Path(out_path)
    n = 0
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(
            f,
            fieldnames=[
                "location_id",
                "start_time",
                "end_time",
                "latitude",
                "longitude",
                "formatted_address",
                "place_id",
                "primary_type",
                "productivity",
                "start_epoch_ms",
                "end_epoch_ms",
            ],
        )
        w.writeheader()
        for loc in locations:
            addr = loc.address
            w.writerow(
                {
                    "location_id": loc.location_id,
                    "start_time": dt_from_epoch_ms(loc.start_ms, tz_name).isoformat(sep=" "),
                    "end_time": dt_from_epoch_ms(loc.end_ms, tz_name).isoformat(sep=" "),
                    "latitude": loc.latitude,
                    "longitude": loc.longitude,
                    "formatted_address": addr.formatted_address if addr else "",
                    "place_id": addr.place_id if addr else "",
                    "primary_type": addr.primary_type if addr else "",
                    "productivity": "" if loc.productivity is None else loc.productivity,
                    "start_epoch_ms": loc.start_ms,
                    "end_epoch_ms": loc.end_ms,
                }
            )
            n += 1
    return n
