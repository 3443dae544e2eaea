"""Recorded rrweb events and serialized DOM snapshots."""

import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any


class EventType(IntEnum):
    """rrweb event types."""

    DOM_CONTENT_LOADED = 0
    LOAD = 1
    FULL_SNAPSHOT = 2
    INCREMENTAL_SNAPSHOT = 3
    META = 4
    CUSTOM = 5
    PLUGIN = 6


class IncrementalSource(IntEnum):
    """Source of an incremental snapshot (rrweb)."""

    MUTATION = 0
    MOUSE_MOVE = 1
    MOUSE_INTERACTION = 2
    SCROLL = 3
    VIEWPORT_RESIZE = 4
    INPUT = 5
    TOUCH_MOVE = 6
    MEDIA_INTERACTION = 7
    STYLE_SHEET_RULE = 8
    CANVAS_MUTATION = 9
    FONT = 10
    LOG = 11
    DRAG = 12
    STYLE_DECLARATION = 13
    SELECTION = 14
    ADOPTED_STYLE_SHEET = 15


class NodeType(IntEnum):
    """Serialized node types (rrweb-snapshot)."""

    DOCUMENT = 0
    DOCUMENT_TYPE = 1
    ELEMENT = 2
    TEXT = 3
    CDATA = 4
    COMMENT = 5


@dataclass
class SerializedNode:
    """One node of a serialized DOM tree.

    Ids are unique within a single full snapshot and are the join key used
    later to find the live node through the replay engine's mirror.
    """

    id: int
    type: NodeType
    tag_name: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)
    text_content: str = ""
    child_nodes: list["SerializedNode"] = field(default_factory=list)
    is_svg: bool = False
    is_style: bool = False  # Text node inside a <style> element
    name: str = ""  # Doctype name
    public_id: str = ""
    system_id: str = ""

    @property
    def is_element(self) -> bool:
        return self.type == NodeType.ELEMENT

    @property
    def is_text(self) -> bool:
        return self.type == NodeType.TEXT

    def iter_nodes(self) -> Iterator["SerializedNode"]:
        """Walk the tree depth-first, starting with this node."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.child_nodes))

    def to_dict(self) -> dict:
        """Convert back to the rrweb-snapshot JSON shape."""
        d: dict[str, Any] = {"id": self.id, "type": int(self.type)}
        if self.type == NodeType.ELEMENT:
            d["tagName"] = self.tag_name
            d["attributes"] = self.attributes
            if self.is_svg:
                d["isSVG"] = True
        elif self.type == NodeType.DOCUMENT_TYPE:
            d["name"] = self.name
            d["publicId"] = self.public_id
            d["systemId"] = self.system_id
        elif self.type in (NodeType.TEXT, NodeType.CDATA, NodeType.COMMENT):
            d["textContent"] = self.text_content
            if self.is_style:
                d["isStyle"] = True
        if self.type in (NodeType.DOCUMENT, NodeType.ELEMENT):
            d["childNodes"] = [c.to_dict() for c in self.child_nodes]
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "SerializedNode":
        """Create from an rrweb-snapshot node dictionary."""
        if "id" not in d or "type" not in d:
            raise ValueError(f"Serialized node is missing id/type: {sorted(d)}")

        return cls(
            id=int(d["id"]),
            type=NodeType(d["type"]),
            tag_name=str(d.get("tagName", "")).lower(),
            attributes=dict(d.get("attributes") or {}),
            text_content=d.get("textContent") or "",
            child_nodes=[cls.from_dict(c) for c in d.get("childNodes") or []],
            is_svg=bool(d.get("isSVG", False)),
            is_style=bool(d.get("isStyle", False)),
            name=d.get("name", ""),
            public_id=d.get("publicId", ""),
            system_id=d.get("systemId", ""),
        )


@dataclass
class RecordedEvent:
    """A single rrweb event.

    Only full snapshots and incremental snapshots matter to the pipeline;
    every other type is carried through untouched.
    """

    type: EventType | int
    timestamp: float  # Milliseconds since session start
    data: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)  # Unknown top-level keys

    @property
    def is_full_snapshot(self) -> bool:
        return self.type == EventType.FULL_SNAPSHOT

    @property
    def is_incremental(self) -> bool:
        return self.type == EventType.INCREMENTAL_SNAPSHOT

    @property
    def is_mutation(self) -> bool:
        return self.is_incremental and self.data.get("source") == IncrementalSource.MUTATION

    def snapshot_tree(self) -> SerializedNode:
        """Parse the full snapshot payload into a node tree."""
        if not self.is_full_snapshot:
            raise ValueError(f"Event at {self.timestamp} is not a full snapshot")
        node = self.data.get("node")
        if not isinstance(node, dict):
            raise ValueError(f"Full snapshot at {self.timestamp} has no node tree")
        return SerializedNode.from_dict(node)

    def to_dict(self) -> dict:
        """Convert to serializable dictionary."""
        return {
            **self.extra,
            "type": int(self.type),
            "data": self.data,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "RecordedEvent":
        """Create from an rrweb event dictionary."""
        raw_type = d["type"]
        try:
            event_type: EventType | int = EventType(raw_type)
        except ValueError:
            event_type = int(raw_type)

        return cls(
            type=event_type,
            timestamp=d["timestamp"],
            data=d.get("data") or {},
            extra={k: v for k, v in d.items() if k not in ("type", "data", "timestamp")},
        )


def load_events(path: Path) -> list[RecordedEvent]:
    """Load recorded events from a JSON file.

    Accepts a bare JSON array or an object with an ``events`` key.
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)

    if isinstance(raw, dict):
        raw = raw.get("events", [])
    if not isinstance(raw, list):
        raise ValueError(f"Expected a list of events in {path}")

    return [RecordedEvent.from_dict(e) for e in raw]


def full_snapshots(events: list[RecordedEvent]) -> list[RecordedEvent]:
    """All full snapshot events, in stream order."""
    return [e for e in events if e.is_full_snapshot]


def find_full_snapshot(
    events: list[RecordedEvent],
    upto: float | None = None,
) -> RecordedEvent | None:
    """Latest full snapshot at or before ``upto`` (or the last one overall)."""
    found = None
    for event in events:
        if upto is not None and event.timestamp > upto:
            break
        if event.is_full_snapshot:
            found = event
    return found
