"""Convert service detections into pixel-space semantic labels."""

import json
import logging
import math
import re
from typing import Any

from .errors import CoordinateParseError
from .schema import BoundingBox, BoxLayout, DetectionResult, SemanticLabel

# Configure module logger
_module_logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.95

# Correlates a detection id with its line in the parsed-text block, e.g.
# "Text Box ID 3: Sign in". Versioned with the service; validated, not assumed.
TEXT_BOX_LINE = re.compile(r"^Text Box ID (\d+):\s*(.*)$")


def parse_coordinates(raw: Any) -> dict[str, Any]:
    """Parse a coordinate map keyed by detection id.

    Accepts a dict, a JSON string, or the JSON-like string with single quotes
    some services emit (quotes are swapped before parsing).

    Raises:
        CoordinateParseError: If the payload cannot be read as a mapping.
    """
    data = raw
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        try:
            data = json.loads(text)
        except ValueError:
            try:
                data = json.loads(text.replace("'", '"'))
            except ValueError as e:
                raise CoordinateParseError("*", raw, f"Unparseable coordinates payload: {e}") from e

    if not isinstance(data, dict):
        raise CoordinateParseError("*", raw, "Coordinates payload is not a mapping")
    return {str(key): value for key, value in data.items()}


def detections_from_results(results: list[Any]) -> list[DetectionResult]:
    """Build detections from ``{"results": [{text, bbox, score}, ...]}`` entries.

    Entries that are not objects are kept with an empty box so the mapper
    drops (and logs) them alongside other malformed items.
    """
    detections = []
    for index, entry in enumerate(results):
        if not isinstance(entry, dict):
            detections.append(DetectionResult(detection_id=str(index), bbox=entry))
            continue
        detections.append(DetectionResult(
            detection_id=str(entry.get("id", index)),
            bbox=entry.get("bbox"),
            text=str(entry.get("text") or ""),
            score=entry.get("score"),
            layout=BoxLayout.CORNERS,
        ))
    return detections


def detections_from_parsed_text(parsed_text: str | None, coordinates: Any) -> list[DetectionResult]:
    """Build detections from a coordinate map plus a parsed-text block.

    Text stays empty here; the mapper resolves it from the parsed-text lines.
    """
    coordinate_map = parse_coordinates(coordinates)
    return [
        DetectionResult(detection_id=detection_id, bbox=box, layout=BoxLayout.XYWH)
        for detection_id, box in coordinate_map.items()
    ]


def index_text_lines(parsed_text: str | None) -> dict[str, str]:
    """Map detection ids to their text from ``Text Box ID {n}:`` lines."""
    lines: dict[str, str] = {}
    if not parsed_text:
        return lines

    for line in parsed_text.splitlines():
        match = TEXT_BOX_LINE.match(line.strip())
        if match:
            lines.setdefault(match.group(1), match.group(2).strip())
    return lines


def validate_box(detection_id: str, raw: Any) -> tuple[float, float, float, float]:
    """Check that ``raw`` has exactly four finite numeric components.

    Raises:
        CoordinateParseError: If it does not.
    """
    if not isinstance(raw, (list, tuple)) or len(raw) != 4:
        raise CoordinateParseError(detection_id, raw)

    values = []
    for component in raw:
        if isinstance(component, bool):
            raise CoordinateParseError(detection_id, raw, f"Invalid coordinate values for ID {detection_id}: {raw!r}")
        try:
            value = float(component)
        except (TypeError, ValueError):
            raise CoordinateParseError(detection_id, raw, f"Invalid coordinate values for ID {detection_id}: {raw!r}") from None
        if not math.isfinite(value):
            raise CoordinateParseError(detection_id, raw, f"Invalid coordinate values for ID {detection_id}: {raw!r}")
        values.append(value)

    return values[0], values[1], values[2], values[3]


class CoordinateMapper:
    """Normalizes detection boxes to ``{x, y, width, height}`` in pixels.

    The box layout comes from each detection (corners for the results
    endpoint, xywh for parsed-text coordinate maps). Scale is detected per
    box: if every component lies in [0, 1] the box is fractional and is
    scaled by the image size, otherwise it is already in pixels.
    """

    def __init__(self, default_confidence: float = DEFAULT_CONFIDENCE):
        self.default_confidence = default_confidence
        self.dropped = 0  # Detections discarded over this mapper's lifetime

    def to_pixel_box(
        self,
        detection: DetectionResult,
        image_size: tuple[int, int],
    ) -> BoundingBox:
        """Convert one detection's box to a pixel BoundingBox.

        Raises:
            CoordinateParseError: For malformed or inverted boxes.
        """
        a, b, c, d = validate_box(detection.detection_id, detection.bbox)
        width, height = image_size

        fractional = all(0.0 <= v <= 1.0 for v in (a, b, c, d))
        sx, sy = (width, height) if fractional else (1, 1)

        if detection.layout == BoxLayout.CORNERS:
            if c < a or d < b:
                raise CoordinateParseError(
                    detection.detection_id,
                    detection.bbox,
                    f"Inverted corners for ID {detection.detection_id}: {detection.bbox!r}",
                )
            return BoundingBox(x=a * sx, y=b * sy, width=(c - a) * sx, height=(d - b) * sy)

        if c < 0 or d < 0:
            raise CoordinateParseError(
                detection.detection_id,
                detection.bbox,
                f"Negative size for ID {detection.detection_id}: {detection.bbox!r}",
            )
        return BoundingBox(x=a * sx, y=b * sy, width=c * sx, height=d * sy)

    def confidence_for(self, detection: DetectionResult) -> float:
        """Service score clamped to [0, 1], or the default when missing."""
        score = detection.score
        if score is None or isinstance(score, bool):
            return self.default_confidence
        try:
            value = float(score)
        except (TypeError, ValueError):
            return self.default_confidence
        if not math.isfinite(value):
            return self.default_confidence
        return min(1.0, max(0.0, value))

    def map(
        self,
        results: list[DetectionResult],
        image_size: tuple[int, int],
        parsed_text: str | None = None,
        timestamp: float = 0,
    ) -> list[SemanticLabel]:
        """Turn a batch of detections into labels for one snapshot.

        Malformed boxes and detections without text are dropped one by one;
        the rest of the batch is always kept.

        Args:
            results: Raw detections from the analysis service.
            image_size: (width, height) of the captured image.
            parsed_text: Optional ``Text Box ID {n}:`` block for text lookup.
            timestamp: Timestamp of the snapshot the image was captured from.

        Returns:
            Labels in the order the detections arrived.
        """
        text_lines = index_text_lines(parsed_text)
        labels: list[SemanticLabel] = []

        for detection in results:
            try:
                box = self.to_pixel_box(detection, image_size)
            except CoordinateParseError as e:
                self.dropped += 1
                _module_logger.warning(e.message)
                continue

            text = detection.text.strip() or text_lines.get(detection.detection_id, "")
            if not text:
                self.dropped += 1
                _module_logger.debug(f"No text for detection {detection.detection_id}, dropping")
                continue

            labels.append(SemanticLabel(
                element_id=detection.detection_id,
                timestamp=timestamp,
                bounding_box=box,
                label=text,
                confidence=self.confidence_for(detection),
            ))

        return labels
