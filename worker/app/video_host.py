from __future__ import annotations
import os
import subprocess
import tempfile
from typing import Optional
from urllib.parse import urlencode

import requests

from .config import VideoHostConfig
from .errors import EmptySegmentError, SegmentFetchError
from .jobs import AnalysisJob, SOURCE_LIVE


class MuxVideoHost:
    """
    Fetches a job's window from the video host as an MP4.

    Live jobs are clipped on the stream's wall clock (program_*_time), asset
    jobs on seconds from the start of the recording (asset_*_time). The HLS
    rendition is transmuxed locally by FFmpeg without re-encoding.
    """

    def __init__(self, cfg: VideoHostConfig, logger, token_id: Optional[str] = None, token_secret: Optional[str] = None):
        self.cfg = cfg
        self.logger = logger
        self.token_id = token_id
        self.token_secret = token_secret

    def segment_url(self, job: AnalysisJob) -> str:
        if job.source_type == SOURCE_LIVE and job.asset_start_seconds is None:
            params = {"program_start_time": int(job.start_epoch), "program_end_time": int(job.end_epoch)}
        else:
            start = job.asset_start_seconds if job.asset_start_seconds is not None else job.start_epoch
            end = job.asset_end_seconds if job.asset_end_seconds is not None else job.end_epoch
            params = {"asset_start_time": int(start), "asset_end_time": int(end)}
        base = self.cfg.stream_base_url.rstrip("/")
        return f"{base}/{job.playback_id}.m3u8?{urlencode(params)}"

    def fetch_segment(self, job: AnalysisJob) -> bytes:
        url = self.segment_url(job)
        with tempfile.TemporaryDirectory(prefix="segment-") as tmp:
            out_mp4 = os.path.join(tmp, "segment.mp4")
            cmd = [
                "ffmpeg",
                "-hide_banner",
                "-loglevel", "warning",
                "-protocol_whitelist", "file,http,https,tcp,tls",
                "-reconnect", "1",
                "-reconnect_streamed", "1",
                "-reconnect_delay_max", "5",
                "-live_start_index", "-1",
                "-i", url,
                "-c:v", "copy",
                "-c:a", "copy",
                "-f", "mp4",
                "-movflags", "faststart",
                "-y",
                out_mp4,
            ]
            try:
                result = subprocess.run(
                    cmd, capture_output=True, text=True, timeout=self.cfg.fetch_timeout_seconds
                )
            except subprocess.TimeoutExpired:
                raise SegmentFetchError(
                    f"ffmpeg timed out after {self.cfg.fetch_timeout_seconds:.0f}s fetching {url}"
                )
            except OSError as e:
                raise SegmentFetchError(f"ffmpeg could not start: {e}")

            if result.returncode != 0:
                tail = (result.stderr or "").strip()[-500:]
                raise SegmentFetchError(f"ffmpeg exited {result.returncode} for {url}: {tail}")

            if not os.path.exists(out_mp4) or os.path.getsize(out_mp4) == 0:
                raise EmptySegmentError(f"empty segment for job {job.job_id} ({url})")

            with open(out_mp4, "rb") as f:
                data = f.read()

        self.logger.info(f"[video-host] job {job.job_id}: segment ready {len(data) / 1024 / 1024:.1f}MB")
        return data

    def asset_duration(self, asset_id: str) -> Optional[float]:
        """Current duration reported by the host API, or None when unknown."""
        if not self.token_id or not self.token_secret:
            raise RuntimeError("MUX_TOKEN_ID / MUX_TOKEN_SECRET are required for the asset API")
        resp = requests.get(
            f"{self.cfg.api_base_url.rstrip('/')}/video/v1/assets/{asset_id}",
            auth=(self.token_id, self.token_secret),
            timeout=10,
        )
        resp.raise_for_status()
        return resp.json().get("data", {}).get("duration")
