from __future__ import annotations
import os
import tempfile
import time
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import SummarizerError, SummaryValidationError

Severity = Literal["Minor", "Medium", "High"]
EventType = Literal[
    "Crime",
    "Medical Emergency",
    "Traffic Incident",
    "Property Damage",
    "Safety Hazard",
    "Suspicious Activity",
    "Normal Activity",
    "Camera Interference",
]


class Entity(BaseModel):
    type: str = Field(description="Entity type: person, object, location, activity, etc.")
    name: str = Field(description="Name or description of the entity")
    confidence: float = Field(ge=0, le=1, description="Confidence score 0-1")


class Event(BaseModel):
    name: str = Field(description="Event name or title")
    description: str = Field(description="Detailed description of what happened")
    severity: Severity
    type: EventType
    timestamp_seconds: float = Field(ge=0, lt=60, description="Seconds from the start of this clip, under 60")
    affected_entity_ids: Optional[List[int]] = Field(
        default=None, description="0-based indices into the entities array of those involved"
    )


class SegmentAnalysis(BaseModel):
    summary: str = Field(description="A concise 2-3 sentence summary of what is happening in the video")
    tags: List[str] = Field(max_length=10, description="Relevant tags and keywords")
    entities: List[Entity]
    events: List[Event]


PROMPT = """Analyze this video segment and provide:
1. A concise summary (2-3 sentences) of what is happening.
2. Relevant tags or keywords (up to 10).
3. Detected people, objects, locations, and activities with confidence scores.
4. Notable events with detailed information.

IMPORTANT: Only describe events that are genuinely noteworthy and would matter to a human reviewer. If nothing significant happens, return no events. Do not flag trivial or routine actions.

For each notable event, provide:
   - Name: a clear, descriptive title for what occurred.
   - Description: a natural-language explanation of the event, as a person would describe it.
   - Severity:
     * High: critical incidents needing immediate attention (active theft, assault, medical emergency, fire, weapon).
     * Medium: unusual or suspicious incidents worth review (suspicious behavior, trespassing, safety violation, property damage).
     * Minor: routine events that may be worth noting (delivery, maintenance, normal activity in a new area).
   - Type: one of Crime, Medical Emergency, Traffic Incident, Property Damage, Safety Hazard, Suspicious Activity, Normal Activity, Camera Interference.
   - Timestamp: when the event occurred, in seconds from the start of the clip (at least 0 and less than the clip length).
   - Involvement: which entities (by index in the entities list) were involved, if any.

Describe people by appearance or action, not by ID numbers. Prioritize accuracy in timing and severity over the number of events."""


def parse_analysis(text: Optional[str]) -> SegmentAnalysis:
    if not text:
        raise SummaryValidationError("empty structured response")
    try:
        return SegmentAnalysis.model_validate_json(text)
    except ValidationError as e:
        raise SummaryValidationError(f"response does not match analysis schema: {e.error_count()} error(s): {e}")


def _state(file) -> str:
    state = getattr(file, "state", None)
    return str(getattr(state, "name", state) or "")


class GeminiSummarizer:
    """
    Multimodal summarization through the google-genai SDK: upload the
    segment to the Files API, wait for it to be processed, then request a
    JSON object constrained to SegmentAnalysis.
    """

    def __init__(self, *, api_key: Optional[str] = None, model: str, logger, poll_seconds: float = 2.0, upload_timeout: float = 300.0, client=None):
        if client is None:
            from google import genai
            if not api_key:
                raise ValueError("GEMINI_API_KEY is required for summarization")
            client = genai.Client(api_key=api_key)
        self.client = client
        self.model = model
        self.logger = logger
        self.poll_seconds = poll_seconds
        self.upload_timeout = upload_timeout

    def _upload(self, video: bytes):
        from google.genai import types

        with tempfile.TemporaryDirectory(prefix="summarize-") as tmp:
            path = os.path.join(tmp, "segment.mp4")
            with open(path, "wb") as f:
                f.write(video)
            uploaded = self.client.files.upload(
                file=path,
                config=types.UploadFileConfig(mime_type="video/mp4", display_name="segment.mp4"),
            )

        try:
            deadline = time.monotonic() + self.upload_timeout
            file = self.client.files.get(name=uploaded.name)
            while _state(file) == "PROCESSING":
                if time.monotonic() > deadline:
                    raise SummarizerError(f"uploaded file {uploaded.name} still processing after {self.upload_timeout:.0f}s")
                time.sleep(self.poll_seconds)
                file = self.client.files.get(name=uploaded.name)

            if _state(file) == "FAILED":
                raise SummarizerError(f"provider failed to process uploaded file {uploaded.name}")
        except Exception:
            self._delete(uploaded.name)
            raise
        return file

    def _delete(self, name: str) -> None:
        try:
            self.client.files.delete(name=name)
        except Exception as e:
            # files expire on their own after 48h
            self.logger.warning(f"[summarizer] could not delete uploaded file {name}: {e}")

    def summarize(self, video: bytes) -> Dict[str, Any]:
        """Returns {"analysis": SegmentAnalysis, "raw": dict}."""
        from google.genai import types

        try:
            file = self._upload(video)
        except SummarizerError:
            raise
        except Exception as e:
            raise SummarizerError(f"upload failed: {e}")

        try:
            resp = self.client.models.generate_content(
                model=self.model,
                contents=[file, PROMPT],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=SegmentAnalysis,
                    temperature=0.2,
                ),
            )
        except Exception as e:
            raise SummarizerError(f"generate_content failed: {e}")
        finally:
            self._delete(file.name)

        text = getattr(resp, "text", None)
        analysis = parse_analysis(text)
        self.logger.info(
            f"[summarizer] tags={len(analysis.tags)} entities={len(analysis.entities)} events={len(analysis.events)}"
        )
        return {"analysis": analysis, "raw": analysis.model_dump() | {"response_text": text}}
