"""Analysis module for turning recorded snapshots into semantic labels."""

from .builder import Mirror, NodeTreeBuilder, RenderedSurface, render_html
from .capture import SurfaceCapturer
from .client import AnalysisJobClient
from .errors import (
    CaptureError,
    CoordinateParseError,
    JobSubmissionError,
    JobTimeoutError,
    ReconstructionError,
    ReconstructionFailure,
    SemanticPipelineError,
)
from .mapper import CoordinateMapper
from .matching import ElementMatcher, ElementRect
from .processor import SemanticProcessor
from .schema import (
    AnalysisJob,
    BoundingBox,
    BoxLayout,
    CapturedImage,
    DetectionResult,
    JobStatus,
    ProcessedSession,
    SemanticLabel,
)
from .timeline import LabelTimelineIndex, enhance_events

__all__ = [
    # Pipeline stages
    "NodeTreeBuilder",
    "SurfaceCapturer",
    "AnalysisJobClient",
    "CoordinateMapper",
    "ElementMatcher",
    "LabelTimelineIndex",
    "SemanticProcessor",
    # Surface
    "Mirror",
    "RenderedSurface",
    "render_html",
    "ElementRect",
    # Data types
    "AnalysisJob",
    "BoundingBox",
    "BoxLayout",
    "CapturedImage",
    "DetectionResult",
    "JobStatus",
    "ProcessedSession",
    "SemanticLabel",
    "enhance_events",
    # Errors
    "CaptureError",
    "CoordinateParseError",
    "JobSubmissionError",
    "JobTimeoutError",
    "ReconstructionError",
    "ReconstructionFailure",
    "SemanticPipelineError",
]
