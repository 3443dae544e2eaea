"""Time index of semantic labels for playback queries."""

from bisect import bisect_right, insort
from collections.abc import Iterable

from recorder.events import RecordedEvent

from .schema import SemanticLabel


class LabelTimelineIndex:
    """Labels bucketed by the snapshot timestamp they came from.

    A label is active at time ``t`` once ``label.timestamp <= t``. Without
    retirement the active set only grows as playback advances. With
    ``retire_superseded`` only the latest bucket at or before ``t`` is active,
    since a later snapshot replaces the screen the earlier labels described.
    Snapshots that produced no labels are recorded with ``mark`` as empty
    buckets, so they retire earlier labels too.

    ``query`` costs a binary search plus the size of the active set, not the
    total number of labels.
    """

    def __init__(self, labels: Iterable[SemanticLabel] = (), retire_superseded: bool = False):
        self.retire_superseded = retire_superseded
        self._keys: list[float] = []
        self._buckets: dict[float, list[SemanticLabel]] = {}
        self._count = 0
        self.insert(labels)

    def insert(self, labels: Iterable[SemanticLabel]) -> None:
        """Add labels; labels sharing a timestamp keep insertion order."""
        for label in labels:
            bucket = self._buckets.get(label.timestamp)
            if bucket is None:
                bucket = self._buckets[label.timestamp] = []
                insort(self._keys, label.timestamp)
            bucket.append(label)
            self._count += 1

    def mark(self, timestamp: float) -> None:
        """Record a snapshot at ``timestamp`` even if it has no labels."""
        if timestamp not in self._buckets:
            self._buckets[timestamp] = []
            insort(self._keys, timestamp)

    def query(self, time: float) -> list[SemanticLabel]:
        """All labels active at ``time``, oldest snapshot first."""
        end = bisect_right(self._keys, time)
        if end == 0:
            return []

        if self.retire_superseded:
            return list(self._buckets[self._keys[end - 1]])

        active: list[SemanticLabel] = []
        for key in self._keys[:end]:
            active.extend(self._buckets[key])
        return active

    def labels_at(self, timestamp: float) -> list[SemanticLabel]:
        """Labels produced by the snapshot at exactly ``timestamp``."""
        return list(self._buckets.get(timestamp, ()))

    @property
    def timestamps(self) -> list[float]:
        """Snapshot timestamps that have labels."""
        return [key for key in self._keys if self._buckets[key]]

    def clear(self) -> None:
        self._keys.clear()
        self._buckets.clear()
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def __iter__(self):
        for key in self._keys:
            yield from self._buckets[key]


def enhance_events(events: list[RecordedEvent], index: LabelTimelineIndex) -> list[dict]:
    """Serialize events, attaching ``semanticLabels`` to full snapshots that have labels.

    Other fields are left exactly as recorded, so players that ignore the
    extra key replay the stream unchanged.
    """
    enhanced = []
    for event in events:
        d = event.to_dict()
        labels = index.labels_at(event.timestamp) if event.is_full_snapshot else []
        if labels:
            d["semanticLabels"] = [label.to_dict() for label in labels]
        enhanced.append(d)
    return enhanced
