from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING

from .jobs import AnalysisJob, KEY_SPACE_ASSET, utcnow


@dataclass
class AnalysisResult:
    summary: str
    tags: List[str]
    entities: List[Dict[str, Any]]
    events: List[Dict[str, Any]]
    frame_detections: List[Dict[str, Any]] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def merge(cls, analysis, frames, raw: Optional[Dict[str, Any]] = None) -> "AnalysisResult":
        """
        Combines the summarization output (a SegmentAnalysis) with the
        detection output (a list of FrameDetections) into one result.
        """
        data = analysis.model_dump()
        return cls(
            summary=data["summary"],
            tags=list(data["tags"]),
            entities=list(data["entities"]),
            events=list(data["events"]),
            frame_detections=[f.to_doc() for f in frames],
            raw=raw if raw is not None else data,
        )


def event_docs(job: AnalysisJob, result: AnalysisResult, created_at: datetime) -> List[Dict[str, Any]]:
    """
    Denormalized event rows. Offsets reported by the model are relative to the
    window; the stored timestamp is placed on the job's own timeline (asset
    seconds for asset jobs, epoch seconds for live jobs).
    """
    if job.key_space == KEY_SPACE_ASSET:
        base = job.asset_start_seconds or 0
    else:
        base = job.start_epoch

    docs = []
    for ev in result.events:
        indices = ev.get("affected_entity_ids") or []
        affected = [result.entities[i] for i in indices if 0 <= i < len(result.entities)]
        offset = float(ev.get("timestamp_seconds", 0))
        docs.append({
            "jobId": job.job_id,
            "sourceId": job.source_id,
            "sourceType": job.source_type,
            "name": ev["name"],
            "description": ev["description"],
            "severity": ev["severity"],
            "type": ev["type"],
            "offsetSeconds": offset,
            "timestampSeconds": base + offset,
            "affectedEntities": affected,
            "createdAt": created_at,
        })
    return docs


class ResultStore:
    def __init__(self, db):
        self.results = db.analysis_results
        self.events = db.analysis_events

    def save(self, job: AnalysisJob, result: AnalysisResult, now: Optional[datetime] = None, claimed_by: Optional[str] = None) -> str:
        now = now or utcnow()
        doc = {
            "jobId": job.job_id,
            "summary": result.summary,
            "tags": result.tags,
            "entities": result.entities,
            "events": result.events,
            "frameDetections": result.frame_detections,
            "raw": result.raw,
            "createdAt": now,
            "claimedBy": claimed_by,
        }
        # keyed by job so a replayed success overwrites instead of duplicating
        self.results.replace_one({"jobId": job.job_id}, doc, upsert=True)
        self.events.delete_many({"jobId": job.job_id})
        rows = event_docs(job, result, now)
        for row in rows:
            row["claimedBy"] = claimed_by
        if rows:
            self.events.insert_many(rows)
        return job.job_id

    def delete(self, job_id: str, claimed_by: Optional[str] = None) -> None:
        """Removes the rows written under one claim; rows of a later holder stay."""
        flt = {"jobId": job_id, "claimedBy": claimed_by}
        self.results.delete_one(flt)
        self.events.delete_many(flt)

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        return self.results.find_one({"jobId": job_id}, projection={"_id": 0})

    def events_for_source(self, source_id: str, severity: Optional[str] = None, limit: int = 200) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"sourceId": source_id}
        if severity:
            query["severity"] = severity
        cur = self.events.find(query, projection={"_id": 0}).sort("timestampSeconds", ASCENDING).limit(limit)
        return list(cur)
