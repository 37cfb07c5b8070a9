from __future__ import annotations
from typing import Any, Callable, Dict, Optional

from .jobs import AnalysisJob
from .segment_clock import WINDOW_SIZE, duration_windows
from .sources import DISABLED, IDLE, LiveSourceStore
from .store import JobStore

ASSET_READY = "video.asset.ready"
LIVE_STREAM_COMPLETED = "video.asset.live_stream_completed"
LIVE_STREAM_ACTIVE = "video.live_stream.active"
LIVE_STREAM_IDLE = "video.live_stream.idle"
LIVE_STREAM_DISABLED = "video.live_stream.disabled"


def _enqueue_asset_windows(jobs: JobStore, asset_id: str, playback_id: Optional[str], duration: float, *, window_size: int, logger, label: str) -> int:
    if not playback_id or not duration or duration <= 0:
        logger.warning(f"[enqueue] {label} asset {asset_id} missing playback_id or duration, skipping")
        return 0

    windows = duration_windows(duration, window_size)
    batch = [AnalysisJob.for_asset(asset_id, playback_id, w) for w in windows]
    created = jobs.enqueue(batch)

    tail = 1 if windows and windows[-1].length < window_size else 0
    logger.info(
        f"[enqueue] {label} asset {asset_id}: {len(batch) - tail} complete + {tail} tail "
        f"windows (duration={duration}s) new={created}"
    )
    return len(batch)


def reconcile_live_completion(
    jobs: JobStore,
    asset_id: str,
    playback_id: Optional[str],
    duration: float,
    *,
    logger,
    window_size: int = WINDOW_SIZE,
) -> int:
    """
    Enqueues every window of the final recording of a finished live stream,
    addressed on the recording's own timeline. Submitted unconditionally;
    windows that already exist are dropped by the store.
    """
    return _enqueue_asset_windows(
        jobs, asset_id, playback_id, duration,
        window_size=window_size, logger=logger, label="completed-live",
    )


def enqueue_vod_asset(
    jobs: JobStore,
    asset_id: str,
    playback_id: Optional[str],
    duration: float,
    *,
    logger,
    window_size: int = WINDOW_SIZE,
) -> int:
    return _enqueue_asset_windows(
        jobs, asset_id, playback_id, duration,
        window_size=window_size, logger=logger, label="vod",
    )


def _duration(data: Dict[str, Any], lookup, logger) -> float:
    duration = data.get("duration")
    if duration or lookup is None or not data.get("id"):
        return duration or 0
    try:
        duration = lookup(data["id"])
    except Exception as e:
        logger.warning(f"[enqueue] could not look up duration of asset {data['id']}: {e}")
        return 0
    logger.info(f"[enqueue] asset {data['id']}: duration {duration}s from the host API")
    return duration or 0


def _first_playback_id(data: Dict[str, Any]) -> Optional[str]:
    ids = data.get("playback_ids") or []
    if not ids:
        return None
    return ids[0].get("id")


def handle_lifecycle_event(
    event: Dict[str, Any],
    *,
    jobs: JobStore,
    sources: LiveSourceStore,
    logger,
    window_size: int = WINDOW_SIZE,
    duration_lookup: Optional[Callable[[str], Optional[float]]] = None,
) -> Dict[str, Any]:
    """
    Routes one video-host webhook to the matching enqueuer. Returns a short
    description of what was done, for the webhook response body.

    Recording events that arrive without a duration ask `duration_lookup`
    (the video host's asset API) for it.
    """
    event_type = event.get("type")
    data = event.get("data") or {}
    obj_id = data.get("id")

    if event_type == ASSET_READY:
        if data.get("live_stream_id"):
            # the recording of a live stream is reconciled once it completes
            logger.info(f"[enqueue] asset {obj_id} belongs to live stream {data['live_stream_id']}, waiting for completion")
            return {"action": "skipped", "reason": "live-derived asset"}
        n = enqueue_vod_asset(jobs, obj_id, _first_playback_id(data), _duration(data, duration_lookup, logger), logger=logger, window_size=window_size)
        return {"action": "vod_enqueued", "windows": n}

    if event_type == LIVE_STREAM_COMPLETED:
        n = reconcile_live_completion(jobs, obj_id, _first_playback_id(data), _duration(data, duration_lookup, logger), logger=logger, window_size=window_size)
        return {"action": "live_reconciled", "windows": n}

    if event_type == LIVE_STREAM_ACTIVE:
        playback_id = _first_playback_id(data)
        if not playback_id:
            logger.warning(f"[enqueue] live stream {obj_id} active without playback_id, not scheduling")
            return {"action": "skipped", "reason": "no playback id"}
        sources.start(obj_id, playback_id)
        logger.info(f"[enqueue] live stream {obj_id} active, scheduling on playback {playback_id}")
        return {"action": "source_started"}

    if event_type in (LIVE_STREAM_IDLE, LIVE_STREAM_DISABLED):
        status = IDLE if event_type == LIVE_STREAM_IDLE else DISABLED
        found = sources.set_status(obj_id, status)
        logger.info(f"[enqueue] live stream {obj_id} -> {status} (known={found})")
        return {"action": f"source_{status}"}

    return {"action": "ignored"}
