from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Union

from .config import AppConfig
from .detection import run_detection_stage
from .errors import AnalysisError, SummaryValidationError
from .jobs import AnalysisJob
from .results import AnalysisResult


@dataclass
class PipelineSuccess:
    result: AnalysisResult


@dataclass
class PipelineFailure:
    stage: str
    cause: BaseException

    @property
    def message(self) -> str:
        return f"{self.stage}: {self.cause}"


PipelineOutcome = Union[PipelineSuccess, PipelineFailure]


def _stage_of(exc: BaseException, default: str) -> str:
    if isinstance(exc, AnalysisError):
        return exc.stage
    return default


def check_event_offsets(analysis, window_seconds: int) -> None:
    """Rejects events placed at or past the end of the window (tail windows are shorter than 60s)."""
    for ev in analysis.events:
        if ev.timestamp_seconds >= window_seconds:
            raise SummaryValidationError(
                f"event '{ev.name}' at {ev.timestamp_seconds}s is outside the {window_seconds}s window"
            )


def run_pipeline(job: AnalysisJob, *, host, detector, summarizer, cfg: AppConfig, logger) -> PipelineOutcome:
    """
    fetch -> (detection || summarization) -> merged result.

    Both stages run side by side on the same segment bytes and both must
    succeed; nothing is returned for persistence otherwise.
    """
    try:
        video = host.fetch_segment(job)
    except Exception as e:
        return PipelineFailure(_stage_of(e, "fetch"), e)

    det_cfg = cfg.detection
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"job-{job.job_id[:8]}") as pool:
        detect_f = pool.submit(
            run_detection_stage,
            video,
            detector,
            fps=det_cfg.sample_fps,
            threshold=det_cfg.confidence_threshold,
            concurrency=det_cfg.concurrency,
            logger=logger,
        )
        summary_f = pool.submit(summarizer.summarize, video)

        try:
            frames = detect_f.result()
        except Exception as e:
            return PipelineFailure(_stage_of(e, "detection"), e)
        try:
            summary = summary_f.result()
        except Exception as e:
            return PipelineFailure(_stage_of(e, "summarization"), e)

    try:
        check_event_offsets(summary["analysis"], job.window_seconds)
    except SummaryValidationError as e:
        return PipelineFailure(e.stage, e)

    result = AnalysisResult.merge(summary["analysis"], frames, raw=summary.get("raw"))
    return PipelineSuccess(result)
