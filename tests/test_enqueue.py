from __future__ import annotations

import pytest

from worker.app.enqueue import (
    ASSET_READY,
    LIVE_STREAM_ACTIVE,
    LIVE_STREAM_COMPLETED,
    LIVE_STREAM_DISABLED,
    LIVE_STREAM_IDLE,
    enqueue_vod_asset,
    handle_lifecycle_event,
    reconcile_live_completion,
)
from worker.app.jobs import KEY_SPACE_ASSET, SOURCE_VOD
from worker.app.scheduler import run_live_tick
from worker.app.sources import ACTIVE, DISABLED, IDLE


def _event(event_type: str, **data) -> dict:
    return {"type": event_type, "data": data}


def _asset_windows(db, source_id: str):
    return sorted(
        (d["assetStartSeconds"], d["assetEndSeconds"])
        for d in db.analysis_jobs.find({"sourceId": source_id})
    )


def test_vod_asset_is_split_with_short_tail(store, db, logger) -> None:
    n = enqueue_vod_asset(store, "asset-1", "pb-1", 125.0, logger=logger)

    assert n == 3
    assert _asset_windows(db, "asset-1") == [(0, 60), (60, 120), (120, 125)]
    doc = db.analysis_jobs.find_one({"assetStartSeconds": 0})
    assert doc["sourceType"] == SOURCE_VOD
    assert doc["keySpace"] == KEY_SPACE_ASSET


def test_vod_asset_exact_multiple_has_no_tail(store, db, logger) -> None:
    enqueue_vod_asset(store, "asset-1", "pb-1", 120, logger=logger)

    assert _asset_windows(db, "asset-1") == [(0, 60), (60, 120)]


@pytest.mark.parametrize("playback_id,duration", [(None, 125.0), ("pb", 0), ("pb", None)])
def test_vod_asset_without_playback_or_duration_is_skipped(store, db, logger, playback_id, duration) -> None:
    assert enqueue_vod_asset(store, "asset-1", playback_id, duration, logger=logger) == 0
    assert db.analysis_jobs.count_documents({}) == 0


def test_completion_reconcile_is_idempotent(store, db, logger) -> None:
    reconcile_live_completion(store, "rec-1", "pb", 185, logger=logger)
    reconcile_live_completion(store, "rec-1", "pb", 185, logger=logger)

    assert _asset_windows(db, "rec-1") == [(0, 60), (60, 120), (120, 180), (180, 185)]


def test_completion_does_not_collide_with_live_windows(store, sources, db, logger) -> None:
    # a stream whose epoch happens to be small enough to look like asset seconds
    sources.start("src", "pb")
    sources.advance_watermark("src", 0)
    run_live_tick(jobs=store, sources=sources, logger=logger, now=120)

    reconcile_live_completion(store, "src", "pb", 120, logger=logger)

    spaces = sorted(d["keySpace"] for d in db.analysis_jobs.find({"sourceId": "src"}))
    assert spaces == ["asset", "asset", "epoch", "epoch"]


def test_asset_ready_enqueues_vod(store, sources, db, logger) -> None:
    event = _event(ASSET_READY, id="asset-1", duration=61.5, playback_ids=[{"id": "pb-1", "policy": "public"}])

    out = handle_lifecycle_event(event, jobs=store, sources=sources, logger=logger)

    assert out == {"action": "vod_enqueued", "windows": 2}
    assert _asset_windows(db, "asset-1") == [(0, 60), (60, 62)]


def test_asset_ready_for_live_recording_waits_for_completion(store, sources, db, logger) -> None:
    event = _event(ASSET_READY, id="rec-1", duration=300, live_stream_id="ls-1", playback_ids=[{"id": "pb"}])

    out = handle_lifecycle_event(event, jobs=store, sources=sources, logger=logger)

    assert out["action"] == "skipped"
    assert db.analysis_jobs.count_documents({}) == 0


def test_live_stream_completed_reconciles(store, sources, db, logger) -> None:
    event = _event(LIVE_STREAM_COMPLETED, id="rec-1", duration=90, playback_ids=[{"id": "pb"}])

    out = handle_lifecycle_event(event, jobs=store, sources=sources, logger=logger)

    assert out == {"action": "live_reconciled", "windows": 2}


def test_live_stream_lifecycle_toggles_source(store, sources, logger) -> None:
    handle_lifecycle_event(_event(LIVE_STREAM_ACTIVE, id="ls-1", playback_ids=[{"id": "pb"}]),
                           jobs=store, sources=sources, logger=logger)
    assert sources.get("ls-1")["status"] == ACTIVE

    out = handle_lifecycle_event(_event(LIVE_STREAM_IDLE, id="ls-1"), jobs=store, sources=sources, logger=logger)
    assert out == {"action": "source_idle"}
    assert sources.get("ls-1")["status"] == IDLE

    handle_lifecycle_event(_event(LIVE_STREAM_DISABLED, id="ls-1"), jobs=store, sources=sources, logger=logger)
    assert sources.get("ls-1")["status"] == DISABLED


def test_live_stream_active_without_playback_is_skipped(store, sources, logger) -> None:
    out = handle_lifecycle_event(_event(LIVE_STREAM_ACTIVE, id="ls-1"), jobs=store, sources=sources, logger=logger)

    assert out == {"action": "skipped", "reason": "no playback id"}
    assert sources.get("ls-1") is None


def test_unknown_event_is_ignored(store, sources, logger) -> None:
    out = handle_lifecycle_event(_event("video.asset.deleted", id="a"), jobs=store, sources=sources, logger=logger)

    assert out == {"action": "ignored"}


def test_completed_recording_without_duration_asks_host(store, sources, db, logger) -> None:
    asked = []

    def lookup(asset_id):
        asked.append(asset_id)
        return 125.0

    event = _event(LIVE_STREAM_COMPLETED, id="rec-1", playback_ids=[{"id": "pb"}])

    out = handle_lifecycle_event(event, jobs=store, sources=sources, logger=logger, duration_lookup=lookup)

    assert asked == ["rec-1"]
    assert out == {"action": "live_reconciled", "windows": 3}
    assert _asset_windows(db, "rec-1") == [(0, 60), (60, 120), (120, 125)]


def test_duration_in_payload_skips_lookup(store, sources, logger) -> None:
    def lookup(asset_id):
        raise AssertionError("lookup should not be called")

    event = _event(ASSET_READY, id="asset-1", duration=30, playback_ids=[{"id": "pb"}])

    out = handle_lifecycle_event(event, jobs=store, sources=sources, logger=logger, duration_lookup=lookup)

    assert out == {"action": "vod_enqueued", "windows": 1}


def test_failed_duration_lookup_enqueues_nothing(store, sources, db, logger) -> None:
    def lookup(asset_id):
        raise RuntimeError("401 Unauthorized")

    event = _event(ASSET_READY, id="asset-1", playback_ids=[{"id": "pb"}])

    out = handle_lifecycle_event(event, jobs=store, sources=sources, logger=logger, duration_lookup=lookup)

    assert out == {"action": "vod_enqueued", "windows": 0}
    assert db.analysis_jobs.count_documents({}) == 0
