"""Rebuild a static document from a serialized snapshot inside an offscreen page."""

import asyncio
import html
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from config import CaptureConfig
from recorder.events import NodeType, RecordedEvent, SerializedNode, find_full_snapshot

from .errors import ReconstructionError, ReconstructionFailure

if TYPE_CHECKING:
    from utils.logger import AnnotationLogger

# Configure module logger
_module_logger = logging.getLogger(__name__)

NODE_ID_ATTRIBUTE = "data-rr-id"

VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
})

# Attributes that would make the offscreen render load or run something
DROPPED_ATTRIBUTES = frozenset({"srcdoc"})

# Attributes starting with "on" that are not event handlers
NON_HANDLER_ATTRIBUTES = frozenset({"open"})

FIXED_POSITION = re.compile(r"position\s*:\s*fixed", re.IGNORECASE)

# Fidelity hacks: the surface is not a real viewport, and animations would
# make two captures of the same tree differ.
SURFACE_STYLE = """html {{ width: {width}px; min-height: {height}px; background: {background}; }}
*, *::before, *::after {{
  animation: none !important;
  transition: none !important;
  caret-color: transparent !important;
}}"""


def is_handler(name: str) -> bool:
    """True for inline event handler attributes such as onclick."""
    return name.startswith("on") and name not in NON_HANDLER_ATTRIBUTES


def rewrite_fixed_position(css: str) -> str:
    """Turn ``position: fixed`` into ``position: absolute``."""
    return FIXED_POSITION.sub("position: absolute", css)


class Mirror:
    """Maps serialized node ids to the nodes rendered in the current surface.

    Only valid for one reconstruction: the builder resets it before every
    rebuild.
    """

    def __init__(self) -> None:
        self._nodes: dict[int, SerializedNode] = {}

    def add(self, node: SerializedNode) -> None:
        self._nodes[node.id] = node

    def get_node(self, node_id: int) -> SerializedNode | None:
        return self._nodes.get(node_id)

    def has(self, node_id: int) -> bool:
        return node_id in self._nodes

    def reset(self) -> None:
        self._nodes.clear()

    def element_ids(self) -> list[int]:
        """Ids of element nodes, in insertion (document) order."""
        return [i for i, n in self._nodes.items() if n.is_element]

    def __len__(self) -> int:
        return len(self._nodes)


def render_html(
    tree: SerializedNode,
    capture_config: CaptureConfig | None = None,
    mirror: Mirror | None = None,
) -> str:
    """Serialize a node tree to a standalone HTML document.

    Pure and deterministic: the same tree always yields the same string.
    Every element carries its serialized id in ``data-rr-id`` so it can be
    located in the rendered page. Scripts and inline handlers are dropped.
    """
    capture_config = capture_config or CaptureConfig()
    surface_style = SURFACE_STYLE.format(
        width=capture_config.width,
        height=capture_config.height,
        background=capture_config.background,
    )
    style_tag = f'<style data-semantic-surface="true">{surface_style}</style>'

    parts: list[str] = []
    state = {"style_injected": False, "doctype_end": 0}

    def attr_text(node: SerializedNode) -> tuple[str, str | None]:
        inlined_css = None
        rendered = [f'{NODE_ID_ATTRIBUTE}="{node.id}"']
        for name, value in node.attributes.items():
            lname = name.lower()
            if lname == "_csstext":
                inlined_css = str(value)
                continue
            if lname.startswith("rr_") or is_handler(lname) or lname in DROPPED_ATTRIBUTES:
                continue
            if node.tag_name == "iframe" and lname == "src":
                continue
            if value is None or value is False:
                continue
            if value is True:
                rendered.append(name)
                continue
            text = str(value)
            if lname == "style":
                text = rewrite_fixed_position(text)
            rendered.append(f'{name}="{html.escape(text, quote=True)}"')
        return " ".join(rendered), inlined_css

    def visit(node: SerializedNode, parent_tag: str) -> None:
        if mirror is not None:
            mirror.add(node)

        if node.type == NodeType.DOCUMENT:
            for child in node.child_nodes:
                visit(child, parent_tag)
        elif node.type == NodeType.DOCUMENT_TYPE:
            parts.append(f"<!DOCTYPE {node.name or 'html'}>")
            state["doctype_end"] = len(parts)
        elif node.type == NodeType.TEXT:
            if parent_tag == "script":
                return
            if node.is_style or parent_tag == "style":
                parts.append(rewrite_fixed_position(node.text_content))
            else:
                parts.append(html.escape(node.text_content, quote=False))
        elif node.type == NodeType.COMMENT:
            parts.append(f"<!--{node.text_content.replace('--', '- -')}-->")
        elif node.type == NodeType.CDATA:
            return
        elif node.type == NodeType.ELEMENT:
            visit_element(node)

    def visit_element(node: SerializedNode) -> None:
        tag = node.tag_name or "div"
        attrs, inlined_css = attr_text(node)

        if tag == "script":
            parts.append(f'<noscript {NODE_ID_ATTRIBUTE}="{node.id}"></noscript>')
            for child in node.child_nodes:
                if mirror is not None:
                    mirror.add(child)
            return

        if tag == "link" and inlined_css is not None:
            # Stylesheet captured inline by the recorder; render it as <style>
            parts.append(f"<style {attrs}>{rewrite_fixed_position(inlined_css)}</style>")
            return

        parts.append(f"<{tag} {attrs}>")
        if tag in VOID_ELEMENTS:
            return

        if inlined_css is not None:
            parts.append(rewrite_fixed_position(inlined_css))
        for child in node.child_nodes:
            visit(child, tag)

        if tag == "head" and not state["style_injected"]:
            parts.append(style_tag)
            state["style_injected"] = True
        parts.append(f"</{tag}>")

    visit(tree, "")

    if not state["style_injected"]:
        # Must follow the doctype or Chromium falls back to quirks mode
        parts.insert(state["doctype_end"], style_tag)
    return "".join(parts)


@dataclass
class RenderedSurface:
    """The offscreen page the builder renders into.

    Owned by one builder and reused for every reconstruction.
    """

    page: Page
    width: int
    height: int
    mirror: Mirror = field(default_factory=Mirror)
    snapshot_timestamp: float | None = None  # Timestamp of the tree on display

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def locate(self, node_id: int) -> Locator:
        """Locator for the rendered element with the given serialized id."""
        return self.page.locator(f'[{NODE_ID_ATTRIBUTE}="{node_id}"]')

    async def close(self) -> None:
        """Release the page."""
        if not self.page.is_closed():
            await self.page.close()


class NodeTreeBuilder:
    """Reconstructs full snapshots into a single, reused offscreen surface.

    Each call is a fresh point-in-time render, never a diff: the page is
    cleared and the mirror reset before building. Calls are serialized on an
    internal lock since the surface has exactly one owner.
    """

    def __init__(
        self,
        page: Page,
        capture_config: CaptureConfig | None = None,
        logger: "AnnotationLogger | None" = None,
    ):
        """Initialize the builder.

        Args:
            page: Playwright page sized to the canonical viewport.
            capture_config: Viewport and background settings.
            logger: Optional AnnotationLogger for styled output.
        """
        self.capture_config = capture_config or CaptureConfig()
        self.logger = logger
        self.surface = RenderedSurface(
            page=page,
            width=self.capture_config.width,
            height=self.capture_config.height,
        )
        self._lock = asyncio.Lock()

    async def reconstruct(
        self,
        tree: SerializedNode,
        timestamp: float | None = None,
    ) -> RenderedSurface:
        """Rebuild ``tree`` into the surface and return it."""
        async with self._lock:
            surface = self.surface
            surface.mirror.reset()
            surface.snapshot_timestamp = None

            try:
                await surface.page.set_content("")
                document = render_html(tree, self.capture_config, surface.mirror)
                await surface.page.set_content(document, wait_until="domcontentloaded")
            except (PlaywrightError, ValueError, KeyError) as e:
                surface.mirror.reset()
                _module_logger.error(f"Failed to rebuild snapshot: {e}")
                raise ReconstructionError(ReconstructionFailure.BUILD_FAILED, str(e)) from e

            surface.snapshot_timestamp = timestamp
            _module_logger.debug(
                f"Rebuilt snapshot at {timestamp} with {len(surface.mirror)} nodes"
            )
            return surface

    async def reconstruct_events(
        self,
        events: list[RecordedEvent],
        upto: float | None = None,
    ) -> RenderedSurface:
        """Rebuild the latest full snapshot at or before ``upto``."""
        event = find_full_snapshot(events, upto)
        if event is None:
            raise ReconstructionError.missing_snapshot()

        try:
            tree = event.snapshot_tree()
        except (ValueError, KeyError) as e:
            raise ReconstructionError(ReconstructionFailure.BUILD_FAILED, str(e)) from e

        if self.logger:
            self.logger.step(f"Rebuilding snapshot at {event.timestamp}ms...")
        return await self.reconstruct(tree, timestamp=event.timestamp)
