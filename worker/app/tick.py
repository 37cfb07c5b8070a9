"""
Single live-scheduler pass, for an external periodic trigger:

    * * * * *  python -m worker.app.tick

Exits non-zero when any active source failed to schedule.
"""
from __future__ import annotations

import os
import sys

from .config import load_config
from .logging_setup import setup_logger
from .mongo import get_mongo, ensure_indexes
from .scheduler import run_live_tick
from .sources import LiveSourceStore
from .store import JobStore


def main() -> int:
    cfg = load_config(os.getenv("CONFIG_PATH", "/config/analysis.yaml"))
    logger = setup_logger(os.getenv("LOG_DIR", "/shared/logs"), name="scheduler")

    client, db = get_mongo(
        os.getenv("MONGO_URI", "mongodb://localhost:27017"),
        os.getenv("MONGO_DB", "segment_analysis"),
    )
    try:
        ensure_indexes(db)
        report = run_live_tick(
            jobs=JobStore(db, logger=logger),
            sources=LiveSourceStore(db),
            logger=logger,
            window_size=cfg.windows.size_seconds,
        )
    finally:
        client.close()

    logger.info(
        f"[tick] sources={report.sources} windows={report.windows} new={report.enqueued} errors={len(report.errors)}"
    )
    return 1 if report.errors else 0


if __name__ == "__main__":
    sys.exit(main())
