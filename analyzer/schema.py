"""Data models for detections, semantic labels, and analysis jobs."""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml


# =============================================================================
# Geometry
# =============================================================================


@dataclass(frozen=True)
class BoundingBox:
    """Absolute pixel box relative to the canonical viewport."""

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def intersects(self, other: "BoundingBox") -> bool:
        """True if the two boxes touch or overlap."""
        return not (
            self.right < other.x
            or self.x > other.right
            or self.bottom < other.y
            or self.y > other.bottom
        )

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, d: dict) -> "BoundingBox":
        return cls(x=d["x"], y=d["y"], width=d["width"], height=d["height"])


# =============================================================================
# Capture and Analysis Jobs
# =============================================================================


@dataclass(frozen=True)
class CapturedImage:
    """An encoded still of the offscreen surface.

    ``width`` and ``height`` are the canonical viewport dimensions, which the
    coordinate mapper scales fractional boxes against.
    """

    data: bytes
    width: int
    height: int
    media_type: str = "image/webp"

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height


class BoxLayout(StrEnum):
    """How the four numbers of a detection box are arranged."""

    CORNERS = "corners"  # [x1, y1, x2, y2], used by the results endpoint
    XYWH = "xywh"  # [x, y, width, height], used by parsed-text coordinate maps


class JobStatus(StrEnum):
    """Lifecycle of a remote analysis job."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed-out"


@dataclass
class DetectionResult:
    """One raw finding from the analysis service.

    ``bbox`` is kept exactly as received; validation happens in the mapper so
    that one malformed entry never spoils the rest of a batch.
    """

    detection_id: str
    bbox: Any
    text: str = ""
    score: float | None = None
    layout: BoxLayout = BoxLayout.CORNERS

    def to_dict(self) -> dict:
        return {
            "id": self.detection_id,
            "bbox": self.bbox,
            "text": self.text,
            "score": self.score,
            "layout": self.layout.value,
        }


@dataclass
class AnalysisJob:
    """A submitted image and its polling state."""

    job_id: str
    token: int  # Submission generation; later submissions get higher tokens
    submitted_at: datetime = field(default_factory=datetime.now)
    status: JobStatus = JobStatus.PENDING
    results: list[DetectionResult] = field(default_factory=list)
    parsed_text: str | None = None  # "Text Box ID {n}: ..." block, if the service sent one
    attempts: int = 0
    superseded: bool = False
    error: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.status != JobStatus.PENDING


# =============================================================================
# Semantic Labels
# =============================================================================


@dataclass(frozen=True)
class SemanticLabel:
    """A positioned annotation tied to the snapshot it was detected in.

    ``timestamp`` always equals the timestamp of the full snapshot event that
    produced the label. ``node_id`` is the serialized node the label was
    matched to, if any; overlays are resolved through it.
    """

    element_id: str
    timestamp: float
    bounding_box: BoundingBox
    label: str
    confidence: float
    node_id: int | None = None

    def with_node(self, node_id: int | None) -> "SemanticLabel":
        """Copy of this label joined to a serialized node."""
        return SemanticLabel(
            element_id=self.element_id,
            timestamp=self.timestamp,
            bounding_box=self.bounding_box,
            label=self.label,
            confidence=self.confidence,
            node_id=node_id,
        )

    def to_dict(self) -> dict:
        """Convert to serializable dictionary (rrweb-side key names)."""
        return {
            "elementId": self.element_id,
            "timestamp": self.timestamp,
            "boundingBox": self.bounding_box.to_dict(),
            "label": self.label,
            "confidence": self.confidence,
            "nodeId": self.node_id,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SemanticLabel":
        """Create from dictionary."""
        return cls(
            element_id=str(d["elementId"]),
            timestamp=d["timestamp"],
            bounding_box=BoundingBox.from_dict(d["boundingBox"]),
            label=d["label"],
            confidence=d.get("confidence", 0.95),
            node_id=d.get("nodeId"),
        )


@dataclass
class ProcessedSession:
    """Labels produced for one recorded session.

    Saved as JSON or YAML depending on the file extension.
    """

    labels: list[SemanticLabel]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    source: str | None = None  # Path of the events file, if known
    stats: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "source": self.source,
            "stats": self.stats,
            "semanticMapping": [label.to_dict() for label in self.labels],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ProcessedSession":
        return cls(
            labels=[SemanticLabel.from_dict(x) for x in d.get("semanticMapping", [])],
            id=d.get("id") or str(uuid.uuid4()),
            created_at=d.get("created_at", datetime.now().isoformat()),
            source=d.get("source"),
            stats=d.get("stats", {}),
        )

    def save(self, path: Path) -> Path:
        """Save to file (YAML for .yaml/.yml, JSON otherwise)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(self.to_dict(), f, indent=2)
        return path

    @classmethod
    def load(cls, path: Path) -> "ProcessedSession":
        """Load from a .json or .yaml file."""
        path = Path(path)

        with open(path, encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        return cls.from_dict(data)
