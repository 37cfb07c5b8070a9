from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from worker.app.errors import StaleClaimError, WindowKeyAliasError
from worker.app.jobs import AnalysisJob, DEAD, PROCESSING, QUEUED, SUCCEEDED, utcnow
from worker.app.results import AnalysisResult
from worker.app.segment_clock import Window
from worker.app.store import JobStore, LEASE_EXPIRED


def _result(summary: str = "A person walks past the entrance.") -> AnalysisResult:
    return AnalysisResult(
        summary=summary,
        tags=["entrance", "pedestrian"],
        entities=[{"type": "person", "name": "man in red jacket", "confidence": 0.9}],
        events=[{
            "name": "Person falls",
            "description": "A man trips on the step and falls.",
            "severity": "High",
            "type": "Medical Emergency",
            "timestamp_seconds": 12.5,
            "affected_entity_ids": [0, 7],
        }],
        frame_detections=[{"frameIndex": 0, "frameTimestamp": 0.0, "detections": []}],
        raw={"provider": "test"},
    )


def test_enqueue_same_window_twice_creates_one_row(store: JobStore, db) -> None:
    job = AnalysisJob.for_asset("asset-1", "pb-1", Window(0, 60))
    again = AnalysisJob.for_asset("asset-1", "pb-1", Window(0, 60))

    assert store.enqueue([job]) == 1
    assert store.enqueue([again]) == 0
    assert db.analysis_jobs.count_documents({}) == 1


def test_enqueue_live_windows_dedup_on_epoch(store: JobStore, db) -> None:
    w = Window(1_700_000_000, 1_700_000_060)

    created = store.enqueue([AnalysisJob.live("stream-1", "pb", w), AnalysisJob.live("stream-1", "pb", w)])

    assert created == 1
    doc = db.analysis_jobs.find_one({})
    assert doc["keySpace"] == "epoch"
    assert doc["assetStartSeconds"] is None


def test_epoch_and_asset_key_spaces_do_not_collide(store: JobStore) -> None:
    live = AnalysisJob.live("src", "pb", Window(0, 60))
    asset = AnalysisJob.for_asset("src", "pb", Window(0, 60))

    assert store.enqueue([live, asset]) == 2


def test_job_addressed_twice_onto_different_jobs_is_rejected(store: JobStore) -> None:
    store.enqueue([
        AnalysisJob.live("src", "pb", Window(100, 160)),
        AnalysisJob.for_asset("src", "pb", Window(0, 60)),
    ])
    both = AnalysisJob(
        source_type="live", source_id="src", playback_id="pb",
        start_epoch=100, end_epoch=160, asset_start_seconds=0, asset_end_seconds=60,
    )

    with pytest.raises(WindowKeyAliasError):
        store.enqueue([both])


def test_claim_returns_job_in_processing(store: JobStore) -> None:
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(0, 60))])

    job = store.claim_next("w1")

    assert job is not None
    assert job.status == PROCESSING
    assert job.claimed_by == "w1"
    assert job.attempts == 0
    assert job.lease_expires_at is not None
    assert store.claim_next("w2") is None


def test_claim_on_empty_queue_returns_none(store: JobStore) -> None:
    assert store.claim_next("w1") is None


def test_claim_is_fifo(store: JobStore) -> None:
    t0 = utcnow()
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(60, 120))], now=t0)
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(0, 60))], now=t0 + timedelta(seconds=1))

    first = store.claim_next("w", now=t0 + timedelta(seconds=2))

    assert first.asset_start_seconds == 60


def test_concurrent_workers_claim_single_job_once(store: JobStore) -> None:
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(0, 60))])
    n = 16
    barrier = threading.Barrier(n)
    claimed = [None] * n

    def poll(i: int) -> None:
        barrier.wait()
        claimed[i] = store.claim_next(f"w{i}")

    threads = [threading.Thread(target=poll, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [j for j in claimed if j is not None]
    assert len(winners) == 1
    assert store.get(winners[0].job_id).claimed_by == winners[0].claimed_by


def test_sequential_workers_only_one_wins(store: JobStore) -> None:
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(0, 60))])

    results = [store.claim_next(f"w{i}") for i in range(5)]

    assert sum(r is not None for r in results) == 1


def test_mark_succeeded_persists_result_and_events(store: JobStore, db) -> None:
    store.enqueue([AnalysisJob.for_asset("asset-9", "pb", Window(120, 180))])
    job = store.claim_next("w1")

    done = store.mark_succeeded(job.job_id, _result(), worker_id="w1")

    assert done.status == SUCCEEDED
    assert done.result_ref == job.job_id
    assert done.attempts == 1
    assert done.error is None
    row = db.analysis_results.find_one({"jobId": job.job_id})
    assert row["summary"].startswith("A person")
    assert row["frameDetections"][0]["frameIndex"] == 0

    ev = db.analysis_events.find_one({"jobId": job.job_id})
    assert ev["timestampSeconds"] == pytest.approx(132.5)
    assert ev["offsetSeconds"] == pytest.approx(12.5)
    # index 7 does not exist and is dropped
    assert ev["affectedEntities"] == [{"type": "person", "name": "man in red jacket", "confidence": 0.9}]


def test_live_event_timestamps_are_epoch_based(store: JobStore, db) -> None:
    store.enqueue([AnalysisJob.live("stream", "pb", Window(1_700_000_000, 1_700_000_060))])
    job = store.claim_next("w1")

    store.mark_succeeded(job.job_id, _result(), worker_id="w1")

    ev = db.analysis_events.find_one({"jobId": job.job_id})
    assert ev["timestampSeconds"] == pytest.approx(1_700_000_012.5)


def test_mark_failed_requeues_until_dead(store: JobStore) -> None:
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(0, 60))])

    statuses = []
    for _ in range(3):
        job = store.claim_next("w1")
        failed = store.mark_failed(job.job_id, "detector timeout", max_attempts=3, worker_id="w1")
        statuses.append((failed.status, failed.attempts))

    assert statuses == [(QUEUED, 1), (QUEUED, 2), (DEAD, 3)]
    dead = store.get(job.job_id)
    assert dead.error == "detector timeout"
    assert store.claim_next("w1") is None


def test_fail_twice_then_succeed_ends_with_max_attempts(store: JobStore) -> None:
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(0, 60))])
    for _ in range(2):
        job = store.claim_next("w1")
        store.mark_failed(job.job_id, "boom", max_attempts=3, worker_id="w1")

    job = store.claim_next("w1")
    done = store.mark_succeeded(job.job_id, _result(), worker_id="w1")

    assert done.status == SUCCEEDED
    assert done.attempts == 3


def test_retry_waits_for_backoff(db, logger) -> None:
    store = JobStore(db, backoff_base_seconds=10, logger=logger)
    t0 = utcnow()
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(0, 60))], now=t0)
    job = store.claim_next("w1", now=t0)
    store.mark_failed(job.job_id, "rate limited", max_attempts=5, worker_id="w1", now=t0)

    assert store.claim_next("w1", now=t0 + timedelta(seconds=5)) is None
    assert store.claim_next("w1", now=t0 + timedelta(seconds=11)) is not None


def test_retry_delay_doubles(db) -> None:
    store = JobStore(db, backoff_base_seconds=10)

    assert [store.retry_delay(n) for n in (1, 2, 3)] == [10, 20, 40]


def test_expired_lease_is_requeued_and_late_result_dropped(store: JobStore, db) -> None:
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(0, 60))])
    job = store.claim_next("crashed-worker")

    swept = store.requeue_expired(max_attempts=3, now=utcnow() + timedelta(seconds=120))

    assert swept == 1
    back = store.get(job.job_id)
    assert back.status == QUEUED
    assert back.attempts == 1
    assert back.error == LEASE_EXPIRED
    assert back.claimed_by is None

    with pytest.raises(StaleClaimError):
        store.mark_succeeded(job.job_id, _result(), worker_id="crashed-worker")
    assert db.analysis_results.count_documents({}) == 0


def test_late_rollback_keeps_result_of_next_holder(store: JobStore, db, monkeypatch) -> None:
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(0, 60))])
    job = store.claim_next("old")
    real_save = store.results.save
    later = utcnow() + timedelta(seconds=120)

    def save_then_lose_lease(j, result, now=None, claimed_by=None):
        ref = real_save(j, result, now=now, claimed_by=claimed_by)
        if claimed_by == "old":
            # lease runs out mid-write; another worker finishes the job first
            store.requeue_expired(max_attempts=3, now=later)
            store.claim_next("new", now=later)
            store.mark_succeeded(j.job_id, _result("Second run summary."), worker_id="new")
        return ref

    monkeypatch.setattr(store.results, "save", save_then_lose_lease)

    with pytest.raises(StaleClaimError):
        store.mark_succeeded(job.job_id, _result("First run summary."), worker_id="old")

    done = store.get(job.job_id)
    assert done.status == SUCCEEDED
    row = db.analysis_results.find_one({"jobId": job.job_id})
    assert row["summary"] == "Second run summary."
    assert row["claimedBy"] == "new"
    assert db.analysis_events.count_documents({"jobId": job.job_id, "claimedBy": "new"}) == 1


def test_live_lease_is_not_swept(store: JobStore) -> None:
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(0, 60))])
    store.claim_next("w1")

    assert store.requeue_expired(max_attempts=3) == 0


def test_reclaimed_job_cannot_be_finished_by_previous_holder(store: JobStore) -> None:
    store.enqueue([AnalysisJob.for_asset("a", "pb", Window(0, 60))])
    job = store.claim_next("old")
    store.requeue_expired(max_attempts=3, now=utcnow() + timedelta(seconds=120))
    store.claim_next("new")

    with pytest.raises(StaleClaimError):
        store.mark_failed(job.job_id, "late failure", max_attempts=3, worker_id="old")
    assert store.get(job.job_id).claimed_by == "new"


def test_status_counts(store: JobStore) -> None:
    store.enqueue([
        AnalysisJob.for_asset("a", "pb", Window(0, 60)),
        AnalysisJob.for_asset("a", "pb", Window(60, 120)),
        AnalysisJob.live("s", "pb", Window(1000, 1060)),
    ])
    job = store.claim_next("w1")
    store.mark_succeeded(job.job_id, _result(), worker_id="w1")

    stats = store.status_counts()

    assert stats["total"] == 3
    assert stats["byStatus"][QUEUED] == 2
    assert stats["byStatus"][SUCCEEDED] == 1
    assert stats["bySource"] == {"vod": 2, "live": 1}
    assert stats["oldestQueuedAgeSeconds"] is not None
    assert stats["lastSucceededAt"] is not None
