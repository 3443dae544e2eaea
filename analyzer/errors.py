"""Error taxonomy for the semantic annotation pipeline.

None of these are fatal to the host application: per-detection errors are
dropped inside the mapper, per-cycle errors degrade to an empty label set.
"""

from enum import StrEnum
from typing import Any


class SemanticPipelineError(Exception):
    """Base class for pipeline errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ReconstructionFailure(StrEnum):
    """Why a reconstruction failed."""

    MISSING_SNAPSHOT = "missing-snapshot"
    BUILD_FAILED = "build-failed"


class ReconstructionError(SemanticPipelineError):
    """The offscreen document could not be rebuilt."""

    def __init__(self, reason: ReconstructionFailure, message: str = ""):
        self.reason = reason
        super().__init__(message or reason.value)

    @classmethod
    def missing_snapshot(cls) -> "ReconstructionError":
        return cls(
            ReconstructionFailure.MISSING_SNAPSHOT,
            "No full snapshot found in the event stream",
        )


class CaptureError(SemanticPipelineError):
    """Rasterizing the surface failed (e.g. tainted canvas, closed page)."""


class JobSubmissionError(SemanticPipelineError):
    """The analysis service rejected or never received the upload."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class JobTimeoutError(SemanticPipelineError):
    """Polling hit the attempt ceiling without a usable result."""

    def __init__(self, job_id: str, attempts: int, last_error: str | None = None):
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error
        message = f"Job {job_id} gave no results after {attempts} attempts"
        if last_error:
            message += f" (last error: {last_error})"
        super().__init__(message)


class CoordinateParseError(SemanticPipelineError):
    """One detection carried a malformed box or payload."""

    def __init__(self, detection_id: str, raw: Any, message: str = ""):
        self.detection_id = detection_id
        self.raw = raw
        super().__init__(message or f"Invalid coordinates for ID {detection_id}: {raw!r}")
