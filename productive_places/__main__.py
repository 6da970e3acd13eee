"""Module entry point: python -m productive_places ..."""

from __future__ import annotations

from productive_places.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
