"""Recording module for semantic replay.

This module provides:
- RecordedEvent: rrweb events (full and incremental snapshots)
- SerializedNode: serialized DOM tree carried by full snapshots
- load_events: read a recorded session from disk
"""

from .events import (
    EventType,
    IncrementalSource,
    NodeType,
    RecordedEvent,
    SerializedNode,
    find_full_snapshot,
    full_snapshots,
    load_events,
)

__all__ = [
    "EventType",
    "IncrementalSource",
    "NodeType",
    "RecordedEvent",
    "SerializedNode",
    "find_full_snapshot",
    "full_snapshots",
    "load_events",
]
