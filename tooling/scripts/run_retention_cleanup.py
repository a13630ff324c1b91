"""Prune expired performance events once.

Useful when the in-process retention scheduler is disabled, e.g. from a
system cron entry.

Example:
    python tooling/scripts/run_retention_cleanup.py --retention-days 30
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Execute performance event retention cleanup once")
    parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Override the configured data_retention_days for this run.",
    )
    return parser.parse_args()


async def _run(retention_days: int | None) -> dict[str, Any]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from perftrack_api.db.session import async_session  # type: ignore import-position
    from perftrack_api.jobs.retention import run_retention_cleanup  # type: ignore import-position

    return await run_retention_cleanup(session_factory=async_session, retention_days=retention_days)


def main() -> int:
    args = parse_args()
    if args.retention_days is not None and args.retention_days <= 0:
        logger.error("retention_days must be positive", retention_days=args.retention_days)
        return 2
    summary = asyncio.run(_run(args.retention_days))
    logger.success(
        "Retention cleanup run completed",
        skipped=summary.get("skipped", False),
        removed=summary.get("removed", 0),
        retention_days=summary.get("retentionDays"),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
