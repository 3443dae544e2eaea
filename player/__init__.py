"""Replay-time overlay rendering for semantic labels."""

from .hooks import OverlayLayer, ReplayEvent, ReplayLifecycle, ReplayMirror
from .overlay import OverlayHandle, OverlayRenderer, OverlaySpec, PageOverlayLayer

__all__ = [
    "OverlayHandle",
    "OverlayLayer",
    "OverlayRenderer",
    "OverlaySpec",
    "PageOverlayLayer",
    "ReplayEvent",
    "ReplayLifecycle",
    "ReplayMirror",
]
