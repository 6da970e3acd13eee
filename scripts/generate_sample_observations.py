from __future__ import annotations

import argparse
import csv
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Final

from zoneinfo import ZoneInfo


TZ: Final[str] = "Asia/Shanghai"


@dataclass(frozen=True, slots=True)
class Place:
    name: str
    lat: float
    lon: float


def _epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def generate_observations(
    *,
    days: int,
    seed: int,
    start_local: datetime,
    places: list[Place],
) -> list[dict[str, str]]:
    """Generate fake observations: dwells at a few places joined by short trips."""

    rng = random.Random(seed)
    tz = ZoneInfo(TZ)
    cur = start_local.replace(tzinfo=tz)
    end = cur + timedelta(days=days)

    out: list[dict[str, str]] = []
    place = rng.choice(places)

    while cur < end:
        # Dwell: pings every 1-5 minutes with ~20m of jitter, for 10-180 minutes
        dwell_until = cur + timedelta(minutes=rng.uniform(10, 180))
        while cur < dwell_until:
            out.append(
                {
                    "timestamp": str(_epoch_ms(cur)),
                    "latitude": f"{place.lat + rng.uniform(-0.0002, 0.0002):.7f}",
                    "longitude": f"{place.lon + rng.uniform(-0.0002, 0.0002):.7f}",
                }
            )
            cur += timedelta(seconds=rng.uniform(60, 300))

        # Trip: a few pings along the straight line to the next place
        nxt = rng.choice([p for p in places if p != place])
        steps = rng.randint(2, 5)
        for i in range(1, steps + 1):
            f = i / (steps + 1)
            cur += timedelta(minutes=rng.uniform(2, 8))
            out.append(
                {
                    "timestamp": str(_epoch_ms(cur)),
                    "latitude": f"{place.lat + (nxt.lat - place.lat) * f:.7f}",
                    "longitude": f"{place.lon + (nxt.lon - place.lon) * f:.7f}",
                }
            )
        place = nxt

        # Occasionally the phone stays quiet overnight
        if rng.random() < 0.1:
            cur += timedelta(hours=rng.uniform(6, 10))

    return out


def main() -> int:
    p = argparse.ArgumentParser(description="Generate fake location observations for demo/testing (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/observations.csv", help="Output CSV path")
    p.add_argument("--days", type=int, default=14, help="Number of days to simulate")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument(
        "--start",
        type=str,
        default="2025-01-01 08:00:00",
        help="Start local time in Asia/Shanghai, e.g. '2025-01-01 08:00:00'",
    )
    args = p.parse_args()

    start_local = datetime.fromisoformat(args.start)
    places = [
        Place("lab", 31.2304000, 121.4737000),
        Place("home", 31.2222000, 121.4588000),
        Place("library", 31.2000000, 121.4400000),
        Place("cafe", 31.2150000, 121.4650000),
    ]

    rows = generate_observations(days=args.days, seed=args.seed, start_local=start_local, places=places)
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    with out_path.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=["timestamp", "latitude", "longitude"])
        w.writeheader()
        w.writerows(rows)

    print(f"Generated: {out_path} (rows={len(rows)}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
