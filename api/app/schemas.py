from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict, Any, List

class JobOut(BaseModel):
    id: str
    sourceType: str
    sourceId: str
    playbackId: str
    startEpoch: int
    endEpoch: int
    assetStartSeconds: Optional[int] = None
    assetEndSeconds: Optional[int] = None
    status: str
    attempts: int
    error: Optional[str] = None
    resultRef: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

class JobStatsOut(BaseModel):
    total: int
    byStatus: Dict[str, int]
    bySource: Dict[str, int]
    oldestQueuedAgeSeconds: Optional[float] = None
    lastSucceededAt: Optional[datetime] = None

class BBox(BaseModel):
    x: float
    y: float
    width: float
    height: float

class DetectionOut(BaseModel):
    label: str = Field(alias="class")
    confidence: float
    bbox: BBox

class FrameDetectionsOut(BaseModel):
    frameIndex: int
    frameTimestamp: float
    detections: List[DetectionOut]

class ResultOut(BaseModel):
    jobId: str
    summary: str
    tags: List[str]
    entities: List[Dict[str, Any]]
    events: List[Dict[str, Any]]
    frameDetections: List[FrameDetectionsOut] = []
    createdAt: Optional[datetime] = None

class EventOut(BaseModel):
    jobId: str
    sourceId: str
    sourceType: str
    name: str
    description: str
    severity: str
    type: str
    offsetSeconds: float
    timestampSeconds: float
    affectedEntities: List[Dict[str, Any]] = []
    createdAt: Optional[datetime] = None

class WebhookAck(BaseModel):
    status: str = "accepted"
    action: str
    windows: Optional[int] = None
    reason: Optional[str] = None
