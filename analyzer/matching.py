"""Join pixel-space labels to the rendered elements they cover."""

import logging
from dataclasses import dataclass

from .builder import NODE_ID_ATTRIBUTE, RenderedSurface
from .schema import BoundingBox, SemanticLabel

# Configure module logger
_module_logger = logging.getLogger(__name__)

MIN_ELEMENT_SIZE = 5  # Pixels; smaller elements are never matched

# Score weights
OVERLAP_WEIGHT = 0.35
SIZE_WEIGHT = 0.25
POSITION_WEIGHT = 0.25
TEXT_WEIGHT = 0.15

COLLECT_RECTS_JS = f"""
() => Array.from(document.querySelectorAll('[{NODE_ID_ATTRIBUTE}]')).map((el) => {{
  const rect = el.getBoundingClientRect();
  return {{
    id: Number(el.getAttribute('{NODE_ID_ATTRIBUTE}')),
    tag: el.tagName.toLowerCase(),
    x: rect.x, y: rect.y, width: rect.width, height: rect.height,
    text: (el.textContent || '').slice(0, 500),
  }};
}})
"""


@dataclass(frozen=True)
class ElementRect:
    """Layout of one rendered element, keyed by its serialized node id."""

    node_id: int
    box: BoundingBox
    text: str = ""
    tag: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "ElementRect":
        return cls(
            node_id=int(d["id"]),
            box=BoundingBox(x=d["x"], y=d["y"], width=d["width"], height=d["height"]),
            text=d.get("text") or "",
            tag=d.get("tag", ""),
        )


async def collect_rects(surface: RenderedSurface) -> list[ElementRect]:
    """Read bounding rects and text for every element in the surface."""
    raw = await surface.page.evaluate(COLLECT_RECTS_JS)
    return [ElementRect.from_dict(r) for r in raw]


def text_similarity(element_text: str, label_text: str) -> float:
    """1.0 on containment, 0.5 when half of either text is contained."""
    element_text = element_text.lower()
    label_text = label_text.lower()

    if label_text and label_text in element_text:
        return 1.0
    if element_text and label_text:
        half_label = label_text[: len(label_text) // 2]
        half_element = element_text[: len(element_text) // 2]
        if half_label in element_text or half_element in label_text:
            return 0.5
    return 0.0


class ElementMatcher:
    """Picks the element that best explains a detection.

    Combines overlap, size similarity, centre distance, and text similarity.
    A label only gets a node id if the best score clears ``threshold``.
    """

    def __init__(self, threshold: float = 0.3, viewport: tuple[int, int] = (1024, 768)):
        self.threshold = threshold
        self.viewport = viewport

    def score(self, label: SemanticLabel, element: ElementRect) -> float:
        target = label.bounding_box
        rect = element.box

        overlap = OVERLAP_WEIGHT if rect.intersects(target) else 0.0

        target_area = target.area
        element_area = rect.area
        larger = max(target_area, element_area)
        size_similarity = min(target_area, element_area) / larger if larger > 0 else 0.0

        tx, ty = target.center
        ex, ey = rect.center
        max_distance = max(self.viewport)
        position_similarity = 1 - (abs(tx - ex) + abs(ty - ey)) / max_distance

        return (
            overlap
            + size_similarity * SIZE_WEIGHT
            + position_similarity * POSITION_WEIGHT
            + text_similarity(element.text, label.label) * TEXT_WEIGHT
        )

    def match(self, label: SemanticLabel, elements: list[ElementRect]) -> int | None:
        """Node id of the best-matching element, or None."""
        best_id = None
        best_score = 0.0

        for element in elements:
            if element.box.width < MIN_ELEMENT_SIZE or element.box.height < MIN_ELEMENT_SIZE:
                continue
            score = self.score(label, element)
            if score > best_score:
                best_score = score
                best_id = element.node_id

        if best_id is None or best_score <= self.threshold:
            _module_logger.debug(
                f"No good match for {label.label!r}, best score was {best_score:.3f}"
            )
            return None
        return best_id

    def assign(self, labels: list[SemanticLabel], elements: list[ElementRect]) -> list[SemanticLabel]:
        """Copies of ``labels`` with ``node_id`` set where a match was found."""
        return [label.with_node(self.match(label, elements)) for label in labels]
