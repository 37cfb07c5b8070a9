# worker/app/main.py
from __future__ import annotations

import os
import time

from .config import load_config
from .detection import build_detector
from .logging_setup import setup_logger
from .mongo import get_mongo, ensure_indexes
from .scheduler import PeriodicTrigger, run_live_tick
from .sources import LiveSourceStore
from .store import JobStore
from .summarizer import GeminiSummarizer
from .video_host import MuxVideoHost
from .worker import start_workers


def main():
    mongo_uri = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    mongo_db = os.getenv("MONGO_DB", "segment_analysis")
    config_path = os.getenv("CONFIG_PATH", "/config/analysis.yaml")
    log_dir = os.getenv("LOG_DIR", "/shared/logs")
    # ANALYSIS_SCHEDULER=0 when the live tick is driven by an external cron (worker.app.tick)
    run_scheduler = os.getenv("ANALYSIS_SCHEDULER", "1").lower() in {"1", "true", "yes", "on"}

    cfg = load_config(config_path)
    logger = setup_logger(log_dir)

    client, db = get_mongo(mongo_uri, mongo_db)
    ensure_indexes(db)

    store = JobStore(
        db,
        backoff_base_seconds=cfg.worker.backoff_base_seconds,
        lease_seconds=cfg.worker.lease_seconds,
        logger=logger,
    )
    sources = LiveSourceStore(db)

    host = MuxVideoHost(
        cfg.video_host,
        logger,
        token_id=os.getenv("MUX_TOKEN_ID"),
        token_secret=os.getenv("MUX_TOKEN_SECRET"),
    )
    detector = build_detector(cfg.detection, roboflow_api_key=os.getenv("ROBOFLOW_API_KEY"))
    summarizer = GeminiSummarizer(
        api_key=os.getenv("GEMINI_API_KEY"),
        model=cfg.summarizer.model,
        logger=logger,
        poll_seconds=cfg.summarizer.upload_poll_seconds,
        upload_timeout=cfg.summarizer.upload_timeout_seconds,
    )

    logger.info(
        f"[main] config: workers={os.getenv('ANALYSIS_WORKERS', cfg.worker.count)} "
        f"max_attempts={cfg.worker.max_attempts} window={cfg.windows.size_seconds}s "
        f"detector={cfg.detection.backend}@{cfg.detection.sample_fps}fps"
    )

    # Orphaned processing jobs go back to the queue once their lease runs out
    PeriodicTrigger(
        name="lease-sweep",
        interval=cfg.scheduler.sweep_interval_seconds,
        fn=lambda: store.requeue_expired(cfg.worker.max_attempts),
        logger=logger,
    ).start()

    if run_scheduler:
        PeriodicTrigger(
            name="live-scheduler",
            interval=cfg.scheduler.interval_seconds,
            fn=lambda: run_live_tick(jobs=store, sources=sources, logger=logger, window_size=cfg.windows.size_seconds),
            logger=logger,
        ).start()

    start_workers(
        count=int(os.getenv("ANALYSIS_WORKERS", cfg.worker.count)),
        store=store,
        host=host,
        detector=detector,
        summarizer=summarizer,
        cfg=cfg,
        logger=logger,
    )

    logger.info("[main] analysis worker running")
    while True:
        time.sleep(5)


if __name__ == "__main__":
    main()
