from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .segment_clock import Window

SOURCE_VOD = "vod"
SOURCE_LIVE = "live"

QUEUED = "queued"
PROCESSING = "processing"
SUCCEEDED = "succeeded"
FAILED = "failed"
DEAD = "dead"
STATUSES = (QUEUED, PROCESSING, SUCCEEDED, FAILED, DEAD)

# Live jobs are addressed on the wall clock, asset jobs on seconds from the
# start of the asset. Keys from the two spaces must never be compared.
KEY_SPACE_EPOCH = "epoch"
KEY_SPACE_ASSET = "asset"


def utcnow() -> datetime:
    # naive UTC, matching what pymongo hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_key(source_id: str, start_epoch: int, end_epoch: int) -> str:
    return f"{KEY_SPACE_EPOCH}:{source_id}:{int(start_epoch)}:{int(end_epoch)}"


def asset_key(source_id: str, asset_start: int, asset_end: int) -> str:
    return f"{KEY_SPACE_ASSET}:{source_id}:{int(asset_start)}:{int(asset_end)}"


@dataclass
class AnalysisJob:
    source_type: str
    source_id: str
    playback_id: str
    start_epoch: int
    end_epoch: int
    asset_start_seconds: Optional[int] = None
    asset_end_seconds: Optional[int] = None
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: str = QUEUED
    attempts: int = 0
    error: Optional[str] = None
    result_ref: Optional[str] = None
    created_at: Optional[datetime] = None  # UTC
    updated_at: Optional[datetime] = None
    available_at: Optional[datetime] = None
    lease_expires_at: Optional[datetime] = None
    claimed_by: Optional[str] = None

    @classmethod
    def live(cls, source_id: str, playback_id: str, window: Window) -> "AnalysisJob":
        return cls(
            source_type=SOURCE_LIVE,
            source_id=source_id,
            playback_id=playback_id,
            start_epoch=window.start,
            end_epoch=window.end,
        )

    @classmethod
    def for_asset(cls, asset_id: str, playback_id: str, window: Window) -> "AnalysisJob":
        # Asset jobs reuse relative seconds as epoch-shaped bounds.
        return cls(
            source_type=SOURCE_VOD,
            source_id=asset_id,
            playback_id=playback_id,
            start_epoch=window.start,
            end_epoch=window.end,
            asset_start_seconds=window.start,
            asset_end_seconds=window.end,
        )

    @property
    def key_space(self) -> str:
        return KEY_SPACE_ASSET if self.asset_start_seconds is not None else KEY_SPACE_EPOCH

    @property
    def epoch_key(self) -> Optional[str]:
        if self.source_type != SOURCE_LIVE:
            return None
        return epoch_key(self.source_id, self.start_epoch, self.end_epoch)

    @property
    def asset_key(self) -> Optional[str]:
        if self.asset_start_seconds is None or self.asset_end_seconds is None:
            return None
        return asset_key(self.source_id, self.asset_start_seconds, self.asset_end_seconds)

    @property
    def window_key(self) -> str:
        """The dedup key in the job's own key space."""
        key = self.asset_key if self.key_space == KEY_SPACE_ASSET else self.epoch_key
        if key is None:
            raise ValueError(f"job {self.job_id} has no usable window address")
        return key

    @property
    def window_seconds(self) -> int:
        return int(self.end_epoch - self.start_epoch)

    def to_doc(self) -> Dict[str, Any]:
        return {
            "_id": self.job_id,
            "sourceType": self.source_type,
            "sourceId": self.source_id,
            "playbackId": self.playback_id,
            "startEpoch": int(self.start_epoch),
            "endEpoch": int(self.end_epoch),
            "assetStartSeconds": self.asset_start_seconds,
            "assetEndSeconds": self.asset_end_seconds,
            "keySpace": self.key_space,
            "windowKey": self.window_key,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.error,
            "resultRef": self.result_ref,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "availableAt": self.available_at,
            "leaseExpiresAt": self.lease_expires_at,
            "claimedBy": self.claimed_by,
        }

    @classmethod
    def from_doc(cls, d: Dict[str, Any]) -> "AnalysisJob":
        return cls(
            job_id=d["_id"],
            source_type=d["sourceType"],
            source_id=d["sourceId"],
            playback_id=d["playbackId"],
            start_epoch=d["startEpoch"],
            end_epoch=d["endEpoch"],
            asset_start_seconds=d.get("assetStartSeconds"),
            asset_end_seconds=d.get("assetEndSeconds"),
            status=d.get("status", QUEUED),
            attempts=d.get("attempts", 0),
            error=d.get("error"),
            result_ref=d.get("resultRef"),
            created_at=d.get("createdAt"),
            updated_at=d.get("updatedAt"),
            available_at=d.get("availableAt"),
            lease_expires_at=d.get("leaseExpiresAt"),
            claimed_by=d.get("claimedBy"),
        )
