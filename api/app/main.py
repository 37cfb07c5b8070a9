from __future__ import annotations
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request

from worker.app.config import VideoHostConfig
from worker.app.enqueue import handle_lifecycle_event
from worker.app.jobs import AnalysisJob, STATUSES
from worker.app.logging_setup import setup_logger
from worker.app.mongo import ensure_indexes, get_mongo
from worker.app.results import ResultStore
from worker.app.sources import LiveSourceStore
from worker.app.store import JobStore
from worker.app.video_host import MuxVideoHost

from .schemas import EventOut, JobOut, JobStatsOut, ResultOut, WebhookAck

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "segment_analysis")
LOG_DIR = os.getenv("LOG_DIR", "/shared/logs")
WINDOW_SECONDS = int(os.getenv("WINDOW_SECONDS", "60"))

logger = logging.getLogger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logger(LOG_DIR, name="api")
    ensure_indexes(get_database())
    yield
    client.close()


app = FastAPI(title="Segment Analysis API", lifespan=lifespan)

client, db = get_mongo(MONGO_URI, MONGO_DB)


def get_database():
    return db


video_host = MuxVideoHost(
    VideoHostConfig(),
    logger,
    token_id=os.getenv("MUX_TOKEN_ID"),
    token_secret=os.getenv("MUX_TOKEN_SECRET"),
)


def get_video_host():
    return video_host


def _job_out(job: AnalysisJob) -> dict:
    d = job.to_doc()
    d["id"] = d.pop("_id")
    return d


@app.post("/webhooks/mux", status_code=202, response_model=WebhookAck)
async def mux_webhook(request: Request, database=Depends(get_database), host=Depends(get_video_host)):
    try:
        event = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body is not JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")

    outcome = handle_lifecycle_event(
        event,
        jobs=JobStore(database, logger=logger),
        sources=LiveSourceStore(database),
        logger=logger,
        window_size=WINDOW_SECONDS,
        duration_lookup=host.asset_duration,
    )
    return WebhookAck(**outcome)


@app.get("/jobs", response_model=List[JobOut])
def list_jobs(
    status: Optional[str] = None,
    source_id: Optional[str] = None,
    limit: int = Query(50, ge=1),
    database=Depends(get_database),
):
    if status is not None and status not in STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    jobs = JobStore(database).list_jobs(status=status, source_id=source_id, limit=min(limit, 200))
    return [_job_out(j) for j in jobs]


@app.get("/jobs/stats", response_model=JobStatsOut)
def job_stats(database=Depends(get_database)):
    return JobStore(database).status_counts()


@app.get("/jobs/{job_id}", response_model=JobOut)
def get_job(job_id: str, database=Depends(get_database)):
    job = JobStore(database).get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Not found")
    return _job_out(job)


@app.get("/results/{job_id}", response_model=ResultOut)
def get_result(job_id: str, database=Depends(get_database)):
    d = ResultStore(database).get(job_id)
    if not d:
        raise HTTPException(status_code=404, detail="Result not found")
    return d


@app.get("/sources/{source_id}/events", response_model=List[EventOut])
def source_events(
    source_id: str,
    severity: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
    database=Depends(get_database),
):
    return ResultStore(database).events_for_source(source_id, severity=severity, limit=limit)

