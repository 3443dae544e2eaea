"""Tests for labels, processed sessions and pipeline stats."""

import json

import pytest

from analyzer.schema import BoundingBox, ProcessedSession, SemanticLabel
from utils.tracking import PipelineStats, Timer


def make_label(node_id=None) -> SemanticLabel:
    return SemanticLabel(
        element_id="3",
        timestamp=1000,
        bounding_box=BoundingBox(102.4, 76.8, 204.8, 76.8),
        label="Sign in",
        confidence=0.9,
        node_id=node_id,
    )


class TestBoundingBox:
    """Box geometry."""

    def test_geometry(self):
        box = BoundingBox(10, 20, 30, 40)
        assert (box.right, box.bottom, box.area, box.center) == (40, 60, 1200, (25, 40))

    def test_intersects(self):
        box = BoundingBox(0, 0, 10, 10)
        assert box.intersects(BoundingBox(5, 5, 10, 10))
        assert box.intersects(BoundingBox(10, 0, 5, 5))
        assert not box.intersects(BoundingBox(11, 11, 5, 5))


class TestSemanticLabel:
    """Label serialization."""

    def test_to_dict_keys(self):
        d = make_label(node_id=10).to_dict()
        assert d == {
            "elementId": "3",
            "timestamp": 1000,
            "boundingBox": {"x": 102.4, "y": 76.8, "width": 204.8, "height": 76.8},
            "label": "Sign in",
            "confidence": 0.9,
            "nodeId": 10,
        }

    def test_with_node_copies(self):
        label = make_label()
        joined = label.with_node(7)
        assert joined.node_id == 7
        assert label.node_id is None
        assert joined.bounding_box == label.bounding_box


class TestProcessedSession:
    """Saving and loading annotated sessions."""

    @pytest.mark.parametrize("suffix", [".json", ".yaml"])
    def test_save_and_load(self, tmp_path, suffix):
        session = ProcessedSession(labels=[make_label(10), make_label()], source="events.json", stats={"uploads": 1})

        path = session.save(tmp_path / "out" / f"labels{suffix}")
        loaded = ProcessedSession.load(path)

        assert loaded.id == session.id
        assert loaded.labels == session.labels
        assert loaded.stats == {"uploads": 1}

    def test_json_uses_semantic_mapping_key(self, tmp_path):
        path = ProcessedSession(labels=[make_label()]).save(tmp_path / "labels.json")
        data = json.loads(path.read_text())
        assert data["semanticMapping"][0]["elementId"] == "3"


class TestPipelineStats:
    """Cycle bookkeeping."""

    def test_record_cycle_updates_totals(self):
        stats = PipelineStats()
        stats.record_cycle(1000, "labelled", labels=3, attempts=2, elapsed=1.5)
        stats.record_cycle(3000, "JobTimeoutError", attempts=5)
        stats.record_failure("JobTimeoutError")

        assert stats.labels == 3
        assert stats.poll_attempts == 7
        assert stats.total_failures == 1
        assert stats.get_summary()["Failures"] == "JobTimeoutError: 1"
        assert stats.get_cycle_summary()[0] == ["1000", "labelled", "3", "2", "1.5s"]
        assert stats.to_dict()["cycles"][1]["status"] == "JobTimeoutError"

    def test_timer(self):
        with Timer("x") as timer:
            pass
        assert timer.elapsed >= 0
        assert timer.elapsed_str.endswith("s")
