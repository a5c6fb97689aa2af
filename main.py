#!/usr/bin/env python3
"""
Logbook - Entry point for running the sync service.

Usage:
    python main.py              # Run web server (settlement endpoint + sync controls)
    python main.py --sync-once  # Run one push-then-pull cycle and exit
"""

import argparse
import asyncio
import json
import logging

import uvicorn

from logbook import Database

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def sync_once() -> int:
    """Run a single full sync cycle against the configured remote store."""
    from logbook.app import build_dependencies

    db = Database()
    await db.connect()
    logger.info("Database connected")

    deps, connectivity = await build_dependencies(db)
    try:
        await connectivity.check()
        report = await deps.coordinator.full_sync()
        print(json.dumps(report.to_dict() if report else {}, indent=2))
        return 0 if report and not report.skipped else 1
    finally:
        await deps.remote.aclose()
        await db.close()


def main():
    parser = argparse.ArgumentParser(description="Logbook offline sync service")
    parser.add_argument("--sync-once", action="store_true", help="Run one sync cycle and exit (no web server)")
    parser.add_argument("--host", default="::", help="Web server host")
    parser.add_argument("--port", type=int, default=8000, help="Web server port")
    args = parser.parse_args()

    if args.sync_once:
        logger.info("Running a single sync cycle")
        raise SystemExit(asyncio.run(sync_once()))

    # The app's lifespan (logbook.app) connects the DB in the same loop that serves requests.
    logger.info(f"Running web server on {args.host}:{args.port}")
    uvicorn.run("logbook.app:app", host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
