from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal, Optional
import yaml
import os

class WindowConfig(BaseModel):
    size_seconds: int = Field(default=60, gt=0)

class SchedulerConfig(BaseModel):
    interval_seconds: float = 60.0  # how often the live tick runs in-process
    sweep_interval_seconds: float = 30.0

class WorkerConfig(BaseModel):
    count: int = 3
    max_attempts: int = 3
    backoff_base_seconds: float = 10.0  # retry delay = base * 2**(attempts - 1)
    lease_seconds: int = 600  # processing jobs older than this are reclaimed
    poll_min_seconds: float = 1.0
    poll_max_seconds: float = 5.0

class DetectionConfig(BaseModel):
    backend: Literal["roboflow", "yolo"] = "roboflow"
    sample_fps: float = 8.0
    confidence_threshold: float = 0.3
    concurrency: int = 1  # detector calls in flight per segment
    roboflow_url: str = "https://serverless.roboflow.com/person-detection-j44uo/1"
    roboflow_timeout_seconds: float = 30.0
    yolo_model_path: str = "/models/yolov8n.pt"
    yolo_iou: float = 0.5

class SummarizerConfig(BaseModel):
    model: str = "gemini-2.5-flash"
    upload_poll_seconds: float = 2.0
    upload_timeout_seconds: float = 300.0

class VideoHostConfig(BaseModel):
    stream_base_url: str = "https://stream.mux.com"
    api_base_url: str = "https://api.mux.com"
    fetch_timeout_seconds: float = 120.0

class AppConfig(BaseModel):
    windows: WindowConfig = Field(default_factory=WindowConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    summarizer: SummarizerConfig = Field(default_factory=SummarizerConfig)
    video_host: VideoHostConfig = Field(default_factory=VideoHostConfig)

def load_config(path: Optional[str]) -> AppConfig:
    if not path:
        return AppConfig()
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return AppConfig.model_validate(raw)
