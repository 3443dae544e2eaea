"""Tests for the CLI commands that do not need a browser or the service."""

import pytest
from typer.testing import CliRunner

from analyzer.schema import BoundingBox, ProcessedSession, SemanticLabel
from config import CaptureConfig, get_config, update_config
from main import app

runner = CliRunner()


@pytest.fixture
def labels_file(tmp_path):
    labels = [
        SemanticLabel("0", 1000, BoundingBox(102.4, 76.8, 204.8, 76.8), "Sign in", 0.9, node_id=10),
        SemanticLabel("1", 3000, BoundingBox(10, 10, 50, 20), "Search", 0.95),
    ]
    session = ProcessedSession(
        labels=labels,
        source="session.json",
        stats={"failures": {"JobTimeoutError": 1}},
    )
    return session.save(tmp_path / "labels.json")


def test_labels_at_time(labels_file):
    result = runner.invoke(app, ["labels", str(labels_file), "--at", "1500"])

    assert result.exit_code == 0
    assert "Sign in" in result.output
    assert "Search" not in result.output


def test_labels_before_first_snapshot(labels_file):
    result = runner.invoke(app, ["labels", str(labels_file), "--at", "10"])

    assert result.exit_code == 0
    assert "No labels active" in result.output


def test_show(labels_file):
    result = runner.invoke(app, ["show", str(labels_file)])

    assert result.exit_code == 0
    assert "1000ms" in result.output
    assert "3000ms" in result.output
    assert "JobTimeoutError" in result.output


def test_missing_labels_file(tmp_path):
    result = runner.invoke(app, ["show", str(tmp_path / "nope.json")])
    assert result.exit_code == 1


def test_annotate_missing_events_file(tmp_path):
    result = runner.invoke(app, ["annotate", str(tmp_path / "nope.json")])
    assert result.exit_code == 1


def test_annotate_empty_events_file(tmp_path):
    path = tmp_path / "empty.json"
    path.write_text("[]")

    result = runner.invoke(app, ["annotate", str(path)])

    assert result.exit_code == 1
    assert "No events" in result.output


def test_update_config():
    config = get_config()
    original = config.match_threshold
    try:
        update_config(match_threshold=0.5, not_a_setting=1)
        assert get_config().match_threshold == 0.5
        assert not hasattr(get_config(), "not_a_setting")
    finally:
        update_config(match_threshold=original)


def test_capture_media_type():
    assert CaptureConfig().media_type == "image/webp"
    assert CaptureConfig().viewport == {"width": 1024, "height": 768}
