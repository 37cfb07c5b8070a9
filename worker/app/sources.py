from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from .jobs import utcnow

ACTIVE = "active"
IDLE = "idle"
DISABLED = "disabled"
SOURCE_STATUSES = (ACTIVE, IDLE, DISABLED)


class LiveSourceStore:
    """
    One document per live source holding its scheduling watermark:
    the epoch second up to which windows have been enqueued (exclusive).
    """

    def __init__(self, db):
        self.sources = db.live_sources

    def start(self, source_id: str, playback_id: str, now: Optional[datetime] = None) -> None:
        """
        Marks a source active. A replayed event for a source that is already
        active keeps its watermark; a source coming back from idle or disabled
        is re-seeded by the next tick, so the time it was off air is never
        scheduled.
        """
        now = now or utcnow()
        res = self.sources.update_one(
            {"_id": source_id, "status": ACTIVE},
            {"$set": {"playbackId": playback_id, "updatedAt": now}},
        )
        if res.matched_count:
            return
        self.sources.update_one(
            {"_id": source_id},
            {
                "$set": {"playbackId": playback_id, "status": ACTIVE, "lastProcessedEpoch": None, "updatedAt": now},
                "$setOnInsert": {"createdAt": now},
            },
            upsert=True,
        )

    def set_status(self, source_id: str, status: str, now: Optional[datetime] = None) -> bool:
        if status not in SOURCE_STATUSES:
            raise ValueError(f"unknown live source status: {status}")
        res = self.sources.update_one(
            {"_id": source_id},
            {"$set": {"status": status, "updatedAt": now or utcnow()}},
        )
        return res.matched_count > 0

    def get(self, source_id: str) -> Optional[Dict[str, Any]]:
        return self.sources.find_one({"_id": source_id})

    def active_sources(self) -> List[Dict[str, Any]]:
        return list(self.sources.find({"status": ACTIVE}))

    def advance_watermark(self, source_id: str, epoch: int, now: Optional[datetime] = None) -> None:
        """Moves the watermark forward only; a stale tick cannot rewind it."""
        self.sources.update_one(
            {
                "_id": source_id,
                "$or": [{"lastProcessedEpoch": None}, {"lastProcessedEpoch": {"$lt": int(epoch)}}],
            },
            {"$set": {"lastProcessedEpoch": int(epoch), "updatedAt": now or utcnow()}},
        )
