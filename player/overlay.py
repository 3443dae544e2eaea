"""Draw semantic labels over a replaying session."""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from playwright.async_api import Page

from analyzer.schema import BoundingBox, SemanticLabel
from analyzer.timeline import LabelTimelineIndex

from .hooks import OverlayLayer, ReplayEvent, ReplayLifecycle, ReplayMirror

if TYPE_CHECKING:
    from utils.logger import AnnotationLogger

# Configure module logger
_module_logger = logging.getLogger(__name__)

OVERLAY_CONTAINER_CLASS = "semantic-overlay-container"
OVERLAY_ID_ATTRIBUTE = "data-semantic-overlay"

CONTAINER_STYLE = {
    "position": "absolute",
    "top": "0",
    "left": "0",
    "width": "100%",
    "height": "100%",
    "pointer-events": "none",
}

BOX_STYLE = {
    "position": "absolute",
    "border": "2px solid rgba(75, 85, 99, 0.5)",
    "border-radius": "4px",
    "background-color": "rgba(75, 85, 99, 0.1)",
    "pointer-events": "none",
}

TOOLTIP_STYLE = {
    "position": "absolute",
    "top": "-25px",
    "left": "0",
    "background-color": "rgba(75, 85, 99, 0.9)",
    "color": "white",
    "padding": "2px 6px",
    "border-radius": "4px",
    "font-size": "12px",
    "white-space": "nowrap",
}


def css(style: dict[str, str]) -> str:
    """Inline CSS text for a style dict."""
    return "; ".join(f"{key}: {value}" for key, value in style.items())


@dataclass(frozen=True)
class OverlaySpec:
    """What to draw for one active label."""

    label: SemanticLabel

    @property
    def box(self) -> BoundingBox:
        return self.label.bounding_box

    @property
    def tooltip(self) -> str:
        # Half-up, like the browser's Math.round
        percent = math.floor(self.label.confidence * 100 + 0.5)
        return f"{self.label.label} ({percent}%)"

    @property
    def box_style(self) -> dict[str, str]:
        box = self.box
        return {
            **BOX_STYLE,
            "left": f"{box.x:g}px",
            "top": f"{box.y:g}px",
            "width": f"{box.width:g}px",
            "height": f"{box.height:g}px",
        }

    def to_dict(self) -> dict:
        return {
            "elementId": self.label.element_id,
            "nodeId": self.label.node_id,
            "tooltip": self.tooltip,
            "boxStyle": css(self.box_style),
            "tooltipStyle": css(TOOLTIP_STYLE),
        }


@dataclass
class OverlayHandle:
    """One mounted overlay; valid only while its label is active."""

    spec: OverlaySpec
    node: Any
    token: Any
    layer: OverlayLayer
    mounted: bool = True

    async def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        await self.layer.unmount(self.token)


class OverlayRenderer:
    """Keeps overlays in sync with playback.

    On every play, pause, or seek all current overlays are removed, the
    labels active at the new time are looked up, and each one whose node
    still exists in the replayed document gets a box with a tooltip.

    Example:
        >>> renderer = OverlayRenderer(index, replayer.mirror, layer)
        >>> renderer.attach(lifecycle)
        >>> await lifecycle.emit("seek", 1500)
        >>> len(renderer.handles)
    """

    def __init__(
        self,
        index: LabelTimelineIndex,
        mirror: ReplayMirror,
        layer: OverlayLayer,
        logger: "AnnotationLogger | None" = None,
    ):
        self.index = index
        self.mirror = mirror
        self.layer = layer
        self.logger = logger

        self._handles: list[OverlayHandle] = []
        self._lifecycle: ReplayLifecycle | None = None
        self._lock = asyncio.Lock()
        self._destroyed = False

    @property
    def handles(self) -> list[OverlayHandle]:
        return list(self._handles)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def attach(self, lifecycle: ReplayLifecycle) -> None:
        """Subscribe to play, pause and seek on ``lifecycle``."""
        self.detach()
        lifecycle.on(ReplayEvent.PLAY, self.on_play)
        lifecycle.on(ReplayEvent.PAUSE, self.on_pause)
        lifecycle.on(ReplayEvent.SEEK, self.on_seek)
        self._lifecycle = lifecycle

    def detach(self) -> None:
        if self._lifecycle is None:
            return
        self._lifecycle.off(ReplayEvent.PLAY, self.on_play)
        self._lifecycle.off(ReplayEvent.PAUSE, self.on_pause)
        self._lifecycle.off(ReplayEvent.SEEK, self.on_seek)
        self._lifecycle = None

    async def on_play(self, current_time: float) -> None:
        await self.refresh(current_time)

    async def on_pause(self, current_time: float) -> None:
        await self.refresh(current_time)

    async def on_seek(self, current_time: float) -> None:
        await self.refresh(current_time)

    async def refresh(self, current_time: float) -> list[OverlayHandle]:
        """Replace all overlays with those for labels active at ``current_time``."""
        async with self._lock:
            if self._destroyed:
                return []
            await self._clear()

            for label in self.index.query(current_time):
                if label.node_id is None:
                    _module_logger.debug(f"Label {label.element_id} has no node, skipping")
                    continue
                node = self.mirror.get_node(label.node_id)
                if node is None:
                    _module_logger.debug(
                        f"Node {label.node_id} for label {label.element_id} not in document, skipping"
                    )
                    continue

                spec = OverlaySpec(label)
                try:
                    token = await self.layer.mount(spec, node)
                except Exception as e:
                    _module_logger.warning(f"Could not draw overlay for label {label.element_id}: {e}")
                    continue
                self._handles.append(OverlayHandle(spec=spec, node=node, token=token, layer=self.layer))

            _module_logger.debug(f"{len(self._handles)} overlays at {current_time}ms")
            return list(self._handles)

    async def clear(self) -> None:
        async with self._lock:
            await self._clear()

    async def _clear(self) -> None:
        handles, self._handles = self._handles, []
        for handle in handles:
            try:
                await handle.unmount()
            except Exception as e:
                _module_logger.warning(f"Could not remove overlay {handle.token}: {e}")

    async def destroy(self) -> None:
        """Remove every overlay and stop listening to playback."""
        self.detach()
        async with self._lock:
            await self._clear()
            self._destroyed = True


MOUNT_CONTAINER_JS = """
({ wrapperSelector, containerClass, containerStyle }) => {
  const wrapper = document.querySelector(wrapperSelector);
  if (!wrapper) return false;
  let container = wrapper.querySelector(':scope > .' + containerClass);
  if (!container) {
    container = document.createElement('div');
    container.className = containerClass;
    container.style.cssText = containerStyle;
    if (getComputedStyle(wrapper).position === 'static') wrapper.style.position = 'relative';
    wrapper.appendChild(container);
  }
  return true;
}
"""

MOUNT_OVERLAY_JS = """
({ wrapperSelector, containerClass, idAttribute, token, spec }) => {
  const container = document.querySelector(wrapperSelector + ' > .' + containerClass);
  if (!container) return false;
  const box = document.createElement('div');
  box.setAttribute(idAttribute, String(token));
  box.style.cssText = spec.boxStyle;
  const tooltip = document.createElement('div');
  tooltip.style.cssText = spec.tooltipStyle;
  tooltip.textContent = spec.tooltip;
  box.appendChild(tooltip);
  container.appendChild(box);
  return true;
}
"""

UNMOUNT_OVERLAY_JS = """
({ idAttribute, token }) => {
  const el = document.querySelector('[' + idAttribute + '="' + token + '"]');
  if (el) el.remove();
}
"""

CLEAR_OVERLAYS_JS = """
({ wrapperSelector, containerClass }) => {
  const container = document.querySelector(wrapperSelector + ' > .' + containerClass);
  if (container) container.replaceChildren();
}
"""


class PageOverlayLayer:
    """OverlayLayer that draws into a Playwright page.

    Overlays go into a ``semantic-overlay-container`` div appended to the
    element matched by ``wrapper_selector`` (the replayer wrapper, or
    ``body`` when drawing over a reconstructed snapshot).
    """

    def __init__(self, page: Page, wrapper_selector: str = ".replayer-wrapper"):
        self.page = page
        self.wrapper_selector = wrapper_selector
        self._next_token = 0

    async def ensure_container(self) -> bool:
        """Create the overlay container if missing; False if there is no wrapper."""
        return await self.page.evaluate(MOUNT_CONTAINER_JS, {
            "wrapperSelector": self.wrapper_selector,
            "containerClass": OVERLAY_CONTAINER_CLASS,
            "containerStyle": css(CONTAINER_STYLE),
        })

    async def mount(self, spec: OverlaySpec, node: Any) -> int | None:
        if not await self.ensure_container():
            _module_logger.warning(f"No element matches {self.wrapper_selector!r}, overlay not drawn")
            return None

        self._next_token += 1
        token = self._next_token
        await self.page.evaluate(MOUNT_OVERLAY_JS, {
            "wrapperSelector": self.wrapper_selector,
            "containerClass": OVERLAY_CONTAINER_CLASS,
            "idAttribute": OVERLAY_ID_ATTRIBUTE,
            "token": token,
            "spec": spec.to_dict(),
        })
        return token

    async def unmount(self, token: Any) -> None:
        if token is None or self.page.is_closed():
            return
        await self.page.evaluate(UNMOUNT_OVERLAY_JS, {
            "idAttribute": OVERLAY_ID_ATTRIBUTE,
            "token": token,
        })

    async def clear(self) -> None:
        if self.page.is_closed():
            return
        await self.page.evaluate(CLEAR_OVERLAYS_JS, {
            "wrapperSelector": self.wrapper_selector,
            "containerClass": OVERLAY_CONTAINER_CLASS,
        })
