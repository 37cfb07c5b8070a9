from __future__ import annotations
import base64
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from .errors import DetectionError
from .frames import VideoFrame, extract_frames


@dataclass
class Prediction:
    """Detector output in source pixels; (x, y) is the box center."""
    x: float
    y: float
    width: float
    height: float
    confidence: float
    label: str


@dataclass
class DetectorResponse:
    predictions: List[Prediction]
    image_width: int
    image_height: int


@dataclass
class Detection:
    label: str
    confidence: float
    bbox: Dict[str, float]  # normalized top-left x/y + width/height

    def to_doc(self) -> Dict[str, Any]:
        return {"class": self.label, "confidence": self.confidence, "bbox": dict(self.bbox)}


@dataclass
class FrameDetections:
    frame_index: int
    frame_timestamp: float
    detections: List[Detection] = field(default_factory=list)

    def to_doc(self) -> Dict[str, Any]:
        return {
            "frameIndex": self.frame_index,
            "frameTimestamp": round(self.frame_timestamp, 3),
            "detections": [d.to_doc() for d in self.detections],
        }


def _clamp(v: float) -> float:
    return max(0.0, min(1.0, v))


def normalize_prediction(pred: Prediction, image_width: int, image_height: int) -> Detection:
    if image_width <= 0 or image_height <= 0:
        raise DetectionError(f"invalid source image size {image_width}x{image_height}")
    left = pred.x - pred.width / 2
    top = pred.y - pred.height / 2
    return Detection(
        label=pred.label,
        confidence=float(pred.confidence),
        bbox={
            "x": _clamp(left / image_width),
            "y": _clamp(top / image_height),
            "width": _clamp(pred.width / image_width),
            "height": _clamp(pred.height / image_height),
        },
    )


class RoboflowDetector:
    """Hosted detector: one base64 JPEG per request."""

    def __init__(self, *, url: str, api_key: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        if not api_key:
            raise ValueError("ROBOFLOW_API_KEY is required for the roboflow backend")
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def detect(self, jpeg: bytes) -> DetectorResponse:
        try:
            resp = self.session.post(
                self.url,
                data=base64.b64encode(jpeg).decode("ascii"),
                params={"api_key": self.api_key},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as e:
            raise DetectionError(f"detector request failed: {e}")
        except ValueError as e:
            raise DetectionError(f"detector returned invalid JSON: {e}")

        try:
            image = body["image"]
            preds = [
                Prediction(
                    x=float(p["x"]),
                    y=float(p["y"]),
                    width=float(p["width"]),
                    height=float(p["height"]),
                    confidence=float(p["confidence"]),
                    label=str(p.get("class", "object")),
                )
                for p in body.get("predictions", [])
            ]
            return DetectorResponse(preds, int(image["width"]), int(image["height"]))
        except (KeyError, TypeError, ValueError) as e:
            raise DetectionError(f"malformed detector response: {e}")


class YoloDetector:
    """
    Local ultralytics model with the same contract as the hosted detector.
    Boxes are read in center-xywh form so normalization is shared.
    """

    def __init__(self, *, model_path: str, conf: float = 0.25, iou: float = 0.5, device: Optional[str] = None):
        import torch
        from ultralytics import YOLO

        self.device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self.model = YOLO(model_path)
        self.conf = conf
        self.iou = iou

    def detect(self, jpeg: bytes) -> DetectorResponse:
        import cv2
        import numpy as np

        img = cv2.imdecode(np.frombuffer(jpeg, dtype=np.uint8), cv2.IMREAD_COLOR)
        if img is None:
            raise DetectionError("could not decode frame")
        h, w = img.shape[:2]

        try:
            results = self.model.predict(img, conf=self.conf, iou=self.iou, device=self.device, verbose=False)
        except Exception as e:
            raise DetectionError(f"yolo inference failed: {e}")

        r = results[0]
        preds: List[Prediction] = []
        if r.boxes is not None and len(r.boxes) > 0:
            xywh = r.boxes.xywh.cpu().numpy()
            conf = r.boxes.conf.cpu().numpy()
            cls = r.boxes.cls.cpu().numpy().astype(int)
            for (cx, cy, bw, bh), c, k in zip(xywh, conf, cls):
                preds.append(Prediction(float(cx), float(cy), float(bw), float(bh), float(c), str(r.names.get(int(k), int(k)))))
        return DetectorResponse(preds, int(w), int(h))


def build_detector(cfg, *, roboflow_api_key: Optional[str] = None):
    if cfg.backend == "yolo":
        return YoloDetector(model_path=cfg.yolo_model_path, conf=cfg.confidence_threshold, iou=cfg.yolo_iou)
    return RoboflowDetector(url=cfg.roboflow_url, api_key=roboflow_api_key or "", timeout=cfg.roboflow_timeout_seconds)


def run_detection_stage(
    video: bytes,
    detector,
    *,
    fps: float,
    threshold: float,
    logger,
    concurrency: int = 1,
    extract: Callable[[bytes, float], List[VideoFrame]] = extract_frames,
) -> List[FrameDetections]:
    """
    Samples the segment at `fps` and runs the detector on every frame.
    Any detector failure fails the whole stage; there are no partial results.
    """
    frames = extract(video, fps)

    def _one(frame: VideoFrame) -> FrameDetections:
        resp = detector.detect(frame.jpeg)
        kept = [
            normalize_prediction(p, resp.image_width, resp.image_height)
            for p in resp.predictions
            if p.confidence >= threshold
        ]
        return FrameDetections(frame.index, frame.timestamp, kept)

    if concurrency > 1:
        with ThreadPoolExecutor(max_workers=concurrency) as pool:
            out = list(pool.map(_one, frames))
    else:
        out = [_one(f) for f in frames]

    hits = sum(1 for f in out if f.detections)
    total = sum(len(f.detections) for f in out)
    coverage = (hits / len(out) * 100) if out else 0.0
    logger.info(
        f"[detection] {total} detections in {hits}/{len(out)} frames "
        f"({coverage:.1f}% coverage, fps={fps}, threshold={threshold})"
    )
    return out
