"""Command-line entry point for the optimization routine."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional, Sequence

from portal.core.cache import CacheConfig, TaggedCache
from portal.core.db import Database
from portal.core.logging import configure_logging
from portal.core.settings import get_settings
from portal.maintenance.optimizer import run_optimization

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the portal performance optimization checklist once."
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON instead of text",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override DATABASE_URL for this run",
    )
    return parser


async def _ensure_schema(url: Optional[str], settings) -> None:
    database = Database(url=url, settings=settings)
    try:
        await database.create_all()
    finally:
        await database.dispose()


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    if settings.auto_create_schema:
        await _ensure_schema(args.database_url, settings)

    cache = TaggedCache(CacheConfig.from_settings(settings))
    report = await run_optimization(
        cache, settings, database_url=args.database_url, trace_memory=True
    )

    if args.json:
        print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2, default=str))
    else:
        print(report.render_text())

    if any(error.operation == "optimize_all" for error in report.errors):
        return 1
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
