"""Export raw storefront performance events for offline analysis.

Queries the ``performance_events`` table through the API's SQLAlchemy models
and writes the rows as CSV or JSON.

Example::
    python tooling/scripts/export_events.py --lookback-days 14 --event-type order_completed --format csv
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import datetime as dt
import json
import sys
from pathlib import Path
from typing import Any

from loguru import logger

FIELDNAMES = [
    "id",
    "created_at",
    "event_type",
    "product_id",
    "order_id",
    "user_id",
    "session_id",
    "revenue",
    "ip_address",
    "user_agent",
    "metadata",
]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export storefront performance events")
    parser.add_argument(
        "--lookback-days",
        type=int,
        default=7,
        help="Number of days to include in the export (defaults to 7).",
    )
    parser.add_argument(
        "--event-type",
        default=None,
        help="Restrict the export to one event type (e.g. product_view).",
    )
    parser.add_argument(
        "--format",
        choices=("csv", "json"),
        default="csv",
        help="Output format for the export.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Output file path. Defaults to performance-events.<format> in the current directory.",
    )
    return parser.parse_args(argv)


def _ensure_api_on_path() -> None:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))


async def _fetch_events(lookback_days: int, event_type: str | None) -> list[dict[str, Any]]:
    if lookback_days <= 0:
        raise ValueError("lookback_days must be positive")

    _ensure_api_on_path()

    from perftrack_api.db.session import async_session  # type: ignore import-position
    from perftrack_api.domain.analytics import EventFilters, SortDirection  # type: ignore import-position
    from perftrack_api.services.events import EventStore  # type: ignore import-position

    cutoff = dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=lookback_days)
    serialized: list[dict[str, Any]] = []
    page_size = 1000

    async with async_session() as session:
        store = EventStore(session)
        offset = 0
        while True:
            filters = EventFilters(
                event_type=event_type,
                date_from=cutoff,
                limit=page_size,
                offset=offset,
                direction=SortDirection.ASC,
            )
            batch = await store.get_events(filters)
            serialized.extend(event.as_dict() for event in batch)
            if len(batch) < page_size:
                break
            offset += page_size
    return serialized


def _write_csv(output_path: Path, events: list[dict[str, Any]]) -> None:
    with output_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=FIELDNAMES, extrasaction="ignore")
        writer.writeheader()
        for event in events:
            row = event.copy()
            if row["metadata"] is not None:
                row["metadata"] = json.dumps(row["metadata"], ensure_ascii=False)
            writer.writerow(row)


def _write_json(output_path: Path, events: list[dict[str, Any]]) -> None:
    with output_path.open("w", encoding="utf-8") as handle:
        json.dump(events, handle, ensure_ascii=False, indent=2)


async def _run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        events = await _fetch_events(args.lookback_days, args.event_type)
    except Exception as exc:  # noqa: BLE001 - CLI exit code instead of traceback
        logger.exception("Failed to fetch performance events", error=str(exc))
        return 1

    if not events:
        logger.warning("No performance events found for lookback window", lookback_days=args.lookback_days)

    output_path = args.output or Path(f"performance-events.{args.format}")
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if args.format == "csv":
        _write_csv(output_path, events)
    else:
        _write_json(output_path, events)

    logger.success(
        "Exported performance events",
        output=str(output_path),
        format=args.format,
        lookback_days=args.lookback_days,
        events=len(events),
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    return asyncio.run(_run(argv))


if __name__ == "__main__":
    sys.exit(main())
