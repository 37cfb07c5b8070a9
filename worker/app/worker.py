from __future__ import annotations
import os
import random
import socket
import threading
from typing import List

from .config import AppConfig
from .errors import StaleClaimError
from .jobs import DEAD
from .pipeline import PipelineFailure, run_pipeline
from .store import JobStore


class AnalysisWorker:
    """
    Polls the job store, analyses one segment at a time and records the
    outcome. Any number of these may run against the same store; the claim
    is the only point where they meet.
    """

    def __init__(self, *, worker_id: str, store: JobStore, host, detector, summarizer, cfg: AppConfig, logger):
        self.worker_id = worker_id
        self.store = store
        self.host = host
        self.detector = detector
        self.summarizer = summarizer
        self.cfg = cfg
        self.logger = logger
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def run_once(self) -> bool:
        """Claims and processes at most one job. Returns False on an empty queue."""
        job = self.store.claim_next(self.worker_id)
        if job is None:
            return False

        max_attempts = self.cfg.worker.max_attempts
        self.logger.info(
            f"[{self.worker_id}] processing job {job.job_id}: {job.source_type} {job.source_id} "
            f"[{job.start_epoch}, {job.end_epoch}) attempt {job.attempts + 1}/{max_attempts}"
        )

        try:
            outcome = run_pipeline(
                job,
                host=self.host,
                detector=self.detector,
                summarizer=self.summarizer,
                cfg=self.cfg,
                logger=self.logger,
            )
            if isinstance(outcome, PipelineFailure):
                failed = self.store.mark_failed(job.job_id, outcome.message, max_attempts, worker_id=self.worker_id)
                level = self.logger.error if failed.status == DEAD else self.logger.warning
                level(f"[{self.worker_id}] job {job.job_id} failed at {outcome.stage} ({failed.status}): {outcome.cause}")
            else:
                self.store.mark_succeeded(job.job_id, outcome.result, worker_id=self.worker_id)
                self.logger.info(f"[{self.worker_id}] job {job.job_id} succeeded")
        except StaleClaimError as e:
            self.logger.warning(f"[{self.worker_id}] dropped outcome of job {job.job_id}: {e}")
        except Exception as e:
            self.logger.exception(f"[{self.worker_id}] unexpected error on job {job.job_id}: {e}")
            try:
                self.store.mark_failed(job.job_id, f"worker: {e}", max_attempts, worker_id=self.worker_id)
            except StaleClaimError:
                self.logger.warning(f"[{self.worker_id}] job {job.job_id} already left processing")
        return True

    def run_forever(self) -> None:
        wcfg = self.cfg.worker
        delay = wcfg.poll_min_seconds
        self.logger.info(f"[{self.worker_id}] started")

        while not self._stop.is_set():
            try:
                worked = self.run_once()
            except Exception as e:
                # store unreachable; keep the worker alive and back off
                self.logger.exception(f"[{self.worker_id}] poll failed: {e}")
                worked = False

            if worked:
                delay = wcfg.poll_min_seconds
                continue

            self._stop.wait(delay + random.uniform(0, delay / 4))
            delay = min(delay * 2, wcfg.poll_max_seconds)

        self.logger.info(f"[{self.worker_id}] stopped")


def start_workers(*, count: int, store: JobStore, host, detector, summarizer, cfg: AppConfig, logger) -> List[AnalysisWorker]:
    """
    Starts N daemon threads running AnalysisWorker.run_forever.
    """
    count = max(1, int(count))
    # claims are recorded per worker, so ids must be unique across hosts
    prefix = f"{socket.gethostname()}-{os.getpid()}"
    workers = []
    for i in range(count):
        w = AnalysisWorker(
            worker_id=f"{prefix}-worker-{i}",
            store=store,
            host=host,
            detector=detector,
            summarizer=summarizer,
            cfg=cfg,
            logger=logger,
        )
        t = threading.Thread(target=w.run_forever, daemon=True, name=f"analysis-worker-{i}")
        t.start()
        workers.append(w)
        logger.info(f"[main] started analysis worker: {t.name}")
    return workers
