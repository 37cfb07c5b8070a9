from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .errors import StaleClaimError, WindowKeyAliasError
from .jobs import (
    AnalysisJob,
    DEAD,
    PROCESSING,
    QUEUED,
    SOURCE_LIVE,
    SOURCE_VOD,
    STATUSES,
    SUCCEEDED,
    utcnow,
)
from .results import AnalysisResult, ResultStore

LEASE_EXPIRED = "lease expired"


class JobStore:
    """
    Durable analysis queue on the `analysis_jobs` collection.

    Every transition is a single conditional update on the job's status, so
    any number of workers and scheduler ticks may share the collection
    without in-process locks.
    """

    def __init__(self, db, *, backoff_base_seconds: float = 10.0, lease_seconds: int = 600, logger=None):
        self.jobs = db.analysis_jobs
        self.results = ResultStore(db)
        self.backoff_base_seconds = backoff_base_seconds
        self.lease_seconds = lease_seconds
        self.logger = logger

    # ---- enqueue ----

    def enqueue(self, jobs: Iterable[AnalysisJob], now: Optional[datetime] = None) -> int:
        """
        Inserts jobs whose window is not known yet. Known windows are skipped
        silently. Returns how many rows were actually created.
        """
        now = now or utcnow()
        created = 0
        for job in jobs:
            if job.epoch_key and job.asset_key:
                self._check_alias(job)

            doc = job.to_doc()
            key = doc.pop("windowKey")
            doc.update(
                status=QUEUED,
                attempts=0,
                error=None,
                resultRef=None,
                createdAt=now,
                updatedAt=now,
                availableAt=now,
                leaseExpiresAt=None,
                claimedBy=None,
            )
            try:
                res = self.jobs.update_one({"windowKey": key}, {"$setOnInsert": doc}, upsert=True)
            except DuplicateKeyError:
                # lost an insert race to another enqueuer; same outcome
                continue
            if res.upserted_id is not None:
                created += 1
        return created

    def _check_alias(self, job: AnalysisJob) -> None:
        """
        Guards jobs that carry both a wall-clock and an asset address. The
        `live` and `for_asset` constructors only ever set one, so this only
        fires for jobs built by hand or read back from older rows.
        """
        found = self.jobs.find(
            {"windowKey": {"$in": [job.epoch_key, job.asset_key]}},
            projection={"_id": 1, "windowKey": 1},
        )
        owners = {d["windowKey"]: d["_id"] for d in found}
        if len(set(owners.values())) > 1:
            raise WindowKeyAliasError(
                f"window of source {job.source_id} maps to two jobs: {sorted(owners.items())}"
            )

    # ---- claim / transitions ----

    def claim_next(self, worker_id: str, now: Optional[datetime] = None) -> Optional[AnalysisJob]:
        now = now or utcnow()
        doc = self.jobs.find_one_and_update(
            {"status": QUEUED, "availableAt": {"$lte": now}},
            {"$set": {
                "status": PROCESSING,
                "claimedBy": worker_id,
                "leaseExpiresAt": now + timedelta(seconds=self.lease_seconds),
                "updatedAt": now,
            }},
            sort=[("createdAt", ASCENDING), ("startEpoch", ASCENDING)],
            return_document=ReturnDocument.AFTER,
        )
        return AnalysisJob.from_doc(doc) if doc else None

    def mark_succeeded(
        self,
        job_id: str,
        result: AnalysisResult,
        *,
        worker_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AnalysisJob:
        now = now or utcnow()
        held = self._held(job_id, worker_id)
        if held is None:
            raise StaleClaimError(f"job {job_id} is not processing")

        job = AnalysisJob.from_doc(held)
        ref = self.results.save(job, result, now=now, claimed_by=worker_id)

        updated = self.jobs.find_one_and_update(
            self._held_filter(job_id, worker_id),
            {
                "$set": {
                    "status": SUCCEEDED,
                    "resultRef": ref,
                    "error": None,
                    "leaseExpiresAt": None,
                    "updatedAt": now,
                },
                "$inc": {"attempts": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            # reclaimed while we were writing; only our own rows are removed
            self.results.delete(job_id, claimed_by=worker_id)
            raise StaleClaimError(f"job {job_id} was reclaimed before it could succeed")
        return AnalysisJob.from_doc(updated)

    def mark_failed(
        self,
        job_id: str,
        error: str,
        max_attempts: int,
        *,
        worker_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AnalysisJob:
        now = now or utcnow()
        held = self._held(job_id, worker_id)
        if held is None:
            raise StaleClaimError(f"job {job_id} is not processing")

        attempts = int(held.get("attempts", 0)) + 1
        update: Dict[str, Any] = {
            "attempts": attempts,
            "error": error,
            "claimedBy": None,
            "leaseExpiresAt": None,
            "updatedAt": now,
        }
        if attempts < max_attempts:
            update["status"] = QUEUED
            update["availableAt"] = now + timedelta(seconds=self.retry_delay(attempts))
        else:
            update["status"] = DEAD

        flt = self._held_filter(job_id, worker_id)
        flt["attempts"] = held.get("attempts", 0)
        updated = self.jobs.find_one_and_update(flt, {"$set": update}, return_document=ReturnDocument.AFTER)
        if updated is None:
            raise StaleClaimError(f"job {job_id} changed while being failed")

        if self.logger and update["status"] == DEAD:
            self.logger.error(f"[store] job {job_id} dead-lettered after {attempts} attempts: {error}")
        return AnalysisJob.from_doc(updated)

    def requeue_expired(self, max_attempts: int, now: Optional[datetime] = None) -> int:
        """
        Returns processing jobs whose lease ran out to the queue. The lost
        attempt counts against the job, so a segment that keeps killing its
        worker ends up dead instead of cycling forever.
        """
        now = now or utcnow()
        swept = 0
        expired = list(self.jobs.find(
            {"status": PROCESSING, "leaseExpiresAt": {"$lt": now}},
            projection={"_id": 1},
        ))
        for d in expired:
            try:
                self.mark_failed(d["_id"], LEASE_EXPIRED, max_attempts, now=now)
            except StaleClaimError:
                continue
            swept += 1
        if swept and self.logger:
            self.logger.warning(f"[store] reclaimed {swept} job(s) with expired leases")
        return swept

    def retry_delay(self, attempts: int) -> float:
        return self.backoff_base_seconds * (2 ** max(0, attempts - 1))

    def _held_filter(self, job_id: str, worker_id: Optional[str]) -> Dict[str, Any]:
        flt: Dict[str, Any] = {"_id": job_id, "status": PROCESSING}
        if worker_id is not None:
            flt["claimedBy"] = worker_id
        return flt

    def _held(self, job_id: str, worker_id: Optional[str]) -> Optional[Dict[str, Any]]:
        return self.jobs.find_one(self._held_filter(job_id, worker_id))

    # ---- reads ----

    def get(self, job_id: str) -> Optional[AnalysisJob]:
        d = self.jobs.find_one({"_id": job_id})
        return AnalysisJob.from_doc(d) if d else None

    def list_jobs(
        self,
        status: Optional[str] = None,
        source_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[AnalysisJob]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if source_id:
            query["sourceId"] = source_id
        cur = self.jobs.find(query).sort([("createdAt", DESCENDING), ("startEpoch", DESCENDING)]).limit(limit)
        return [AnalysisJob.from_doc(d) for d in cur]

    def status_counts(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        by_status = {s: self.jobs.count_documents({"status": s}) for s in STATUSES}
        by_source = {s: self.jobs.count_documents({"sourceType": s}) for s in (SOURCE_VOD, SOURCE_LIVE)}

        oldest = self.jobs.find_one({"status": QUEUED}, sort=[("createdAt", ASCENDING)])
        newest = self.jobs.find_one({"status": SUCCEEDED}, sort=[("updatedAt", DESCENDING)])

        return {
            "total": sum(by_status.values()),
            "byStatus": by_status,
            "bySource": by_source,
            "oldestQueuedAgeSeconds": (now - oldest["createdAt"]).total_seconds() if oldest else None,
            "lastSucceededAt": newest["updatedAt"] if newest else None,
        }
