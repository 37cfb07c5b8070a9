from __future__ import annotations
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .jobs import AnalysisJob
from .segment_clock import WINDOW_SIZE, live_windows
from .sources import LiveSourceStore
from .store import JobStore


@dataclass
class TickReport:
    sources: int = 0
    windows: int = 0
    enqueued: int = 0
    watermarks: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)


def run_live_tick(
    *,
    jobs: JobStore,
    sources: LiveSourceStore,
    logger,
    now: Optional[int] = None,
    window_size: int = WINDOW_SIZE,
) -> TickReport:
    """
    One scheduler pass over every active live source.

    Holds no state between calls: the watermark lives on the source document
    and double enqueueing is absorbed by the job store, so overlapping or
    repeated ticks are harmless. The watermark only moves after the batch is
    stored; a crash in between re-enqueues the same windows next time.
    """
    now = int(now if now is not None else time.time())
    report = TickReport()

    for src in sources.active_sources():
        source_id = src["_id"]
        report.sources += 1
        try:
            tick = live_windows(src.get("lastProcessedEpoch"), now, window_size)
            if not tick.windows:
                continue

            batch: List[AnalysisJob] = [
                AnalysisJob.live(source_id, src["playbackId"], w) for w in tick.windows
            ]
            created = jobs.enqueue(batch)
            sources.advance_watermark(source_id, tick.watermark)

            report.windows += len(batch)
            report.enqueued += created
            report.watermarks[source_id] = tick.watermark
            if len(batch) > 1:
                logger.info(
                    f"[scheduler] {source_id}: gap-filled {len(batch)} windows "
                    f"[{tick.windows[0].start}, {tick.watermark}) new={created}"
                )
            else:
                logger.info(f"[scheduler] {source_id}: window [{tick.windows[0].start}, {tick.watermark}) new={created}")
        except Exception as e:
            report.errors[source_id] = str(e)
            logger.exception(f"[scheduler] tick failed for source {source_id}: {e}")

    return report


class PeriodicTrigger:
    """
    Calls `fn` every `interval` seconds on a daemon thread.
    Exceptions from `fn` are logged and the timer keeps running.
    """

    def __init__(self, *, name: str, interval: float, fn: Callable[[], object], logger):
        self.name = name
        self.interval = interval
        self.fn = fn
        self.logger = logger
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "PeriodicTrigger":
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()
        self.logger.info(f"[{self.name}] started every {self.interval:.0f}s")
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                self.fn()
            except Exception as e:
                self.logger.exception(f"[{self.name}] run failed: {e}")
            elapsed = time.monotonic() - started
            self._stop.wait(max(0.0, self.interval - elapsed))
