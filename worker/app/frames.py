from __future__ import annotations
import os
import subprocess
import tempfile
from dataclasses import dataclass
from typing import List

from .errors import DetectionError


@dataclass
class VideoFrame:
    index: int
    timestamp: float  # seconds from segment start
    jpeg: bytes


def extract_frames(video: bytes, fps: float, timeout: float = 120.0) -> List[VideoFrame]:
    """
    Samples JPEG frames from an MP4 segment at a fixed rate with FFmpeg.
    Frame i is stamped i / fps seconds after the start of the segment.
    """
    if fps <= 0:
        raise ValueError("fps must be positive")

    with tempfile.TemporaryDirectory(prefix="frames-") as tmp:
        in_path = os.path.join(tmp, "input.mp4")
        with open(in_path, "wb") as f:
            f.write(video)

        cmd = [
            "ffmpeg", "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-i", in_path,
            "-vf", f"fps={fps}",
            "-q:v", "2",
            os.path.join(tmp, "frame-%05d.jpg"),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            raise DetectionError(f"frame extraction timed out after {timeout:.0f}s")
        except OSError as e:
            raise DetectionError(f"ffmpeg could not start: {e}")
        if result.returncode != 0:
            raise DetectionError(f"frame extraction failed: {(result.stderr or '').strip()[-500:]}")

        names = sorted(n for n in os.listdir(tmp) if n.startswith("frame-") and n.endswith(".jpg"))
        frames = []
        for i, name in enumerate(names):
            with open(os.path.join(tmp, name), "rb") as f:
                frames.append(VideoFrame(index=i, timestamp=i / fps, jpeg=f.read()))
    return frames
