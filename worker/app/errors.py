from __future__ import annotations


class AnalysisError(Exception):
    """Base class for failures raised while analysing a segment."""

    stage = "pipeline"


class SegmentFetchError(AnalysisError):
    stage = "fetch"


class EmptySegmentError(SegmentFetchError):
    """The video host returned no bytes for the window (often edge lag)."""


class DetectionError(AnalysisError):
    stage = "detection"


class SummarizerError(AnalysisError):
    stage = "summarization"


class SummaryValidationError(SummarizerError):
    """Structured response did not conform to the analysis schema."""


class StaleClaimError(Exception):
    """The job is no longer held by the caller (it was reclaimed or finished)."""


class WindowKeyAliasError(Exception):
    """A job's epoch address and asset address point at two different jobs."""
