"""Tests for replay lifecycle hooks and the overlay renderer."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from analyzer.builder import Mirror
from analyzer.schema import BoundingBox, SemanticLabel
from analyzer.timeline import LabelTimelineIndex
from player.hooks import ReplayEvent, ReplayLifecycle
from player.overlay import (
    MOUNT_CONTAINER_JS,
    OVERLAY_CONTAINER_CLASS,
    OverlayRenderer,
    OverlaySpec,
    PageOverlayLayer,
)
from recorder.events import NodeType, SerializedNode


class FakeLayer:
    """Records mounts and unmounts instead of touching a DOM."""

    def __init__(self):
        self.mounted: dict[int, OverlaySpec] = {}
        self.unmounted: list[int] = []
        self._next = 0

    async def mount(self, spec, node):
        self._next += 1
        self.mounted[self._next] = spec
        return self._next

    async def unmount(self, token):
        self.unmounted.append(token)
        self.mounted.pop(token, None)

    async def clear(self):
        self.mounted.clear()


def make_label(element_id: str, timestamp: float, node_id: int | None, confidence: float = 0.95) -> SemanticLabel:
    return SemanticLabel(
        element_id=element_id,
        timestamp=timestamp,
        bounding_box=BoundingBox(102.4, 76.8, 204.8, 76.8),
        label=f"Label {element_id}",
        confidence=confidence,
        node_id=node_id,
    )


@pytest.fixture
def mirror() -> Mirror:
    mirror = Mirror()
    for node_id in (10, 20):
        mirror.add(SerializedNode(id=node_id, type=NodeType.ELEMENT, tag_name="div"))
    return mirror


@pytest.fixture
def index() -> LabelTimelineIndex:
    return LabelTimelineIndex([
        make_label("a", 1000, node_id=10),
        make_label("gone", 1000, node_id=99),
        make_label("unmatched", 1000, node_id=None),
        make_label("b", 3000, node_id=20),
    ])


class TestReplayLifecycle:
    """Registering and emitting playback hooks."""

    @pytest.mark.asyncio
    async def test_sync_and_async_hooks(self):
        lifecycle = ReplayLifecycle()
        seen = []
        async_hook = AsyncMock()

        lifecycle.on("play", seen.append)
        lifecycle.on(ReplayEvent.PLAY, async_hook)
        await lifecycle.emit("play", 1200)

        assert seen == [1200]
        async_hook.assert_awaited_once_with(1200)

    @pytest.mark.asyncio
    async def test_off_removes_hook(self):
        lifecycle = ReplayLifecycle()
        seen = []
        lifecycle.on("seek", seen.append)
        lifecycle.off("seek", seen.append)

        await lifecycle.emit("seek", 10)

        assert seen == []

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError):
            ReplayLifecycle().on("rewind", print)


class TestOverlaySpec:
    """Overlay appearance."""

    def test_tooltip_rounds_half_up(self):
        assert OverlaySpec(make_label("a", 0, 1, confidence=0.95)).tooltip == "Label a (95%)"
        assert OverlaySpec(make_label("a", 0, 1, confidence=0.125)).tooltip == "Label a (13%)"

    def test_box_style(self):
        style = OverlaySpec(make_label("a", 0, 1)).box_style

        assert style["left"] == "102.4px"
        assert style["top"] == "76.8px"
        assert style["width"] == "204.8px"
        assert style["border"] == "2px solid rgba(75, 85, 99, 0.5)"
        assert style["pointer-events"] == "none"


class TestOverlayRenderer:
    """Keeping overlays in sync with playback."""

    @pytest.mark.asyncio
    async def test_mounts_only_resolvable_labels(self, index, mirror):
        layer = FakeLayer()
        renderer = OverlayRenderer(index, mirror, layer)
        lifecycle = ReplayLifecycle()
        renderer.attach(lifecycle)

        await lifecycle.emit("seek", 1500)

        assert [h.spec.label.element_id for h in renderer.handles] == ["a"]
        assert list(layer.mounted) == [1]

    @pytest.mark.asyncio
    async def test_each_transition_replaces_previous_overlays(self, index, mirror):
        layer = FakeLayer()
        renderer = OverlayRenderer(index, mirror, layer)
        lifecycle = ReplayLifecycle()
        renderer.attach(lifecycle)

        await lifecycle.emit("play", 1500)
        first = renderer.handles
        await lifecycle.emit("pause", 3500)

        assert not first[0].mounted
        assert layer.unmounted == [1]
        assert sorted(h.spec.label.element_id for h in renderer.handles) == ["a", "b"]
        assert len(layer.mounted) == 2

    @pytest.mark.asyncio
    async def test_seek_backwards_removes_overlays(self, index, mirror):
        layer = FakeLayer()
        renderer = OverlayRenderer(index, mirror, layer)

        await renderer.on_seek(3500)
        await renderer.on_seek(500)

        assert renderer.handles == []
        assert layer.mounted == {}

    @pytest.mark.asyncio
    async def test_destroy_unmounts_and_detaches(self, index, mirror):
        layer = FakeLayer()
        renderer = OverlayRenderer(index, mirror, layer)
        lifecycle = ReplayLifecycle()
        renderer.attach(lifecycle)
        await lifecycle.emit("seek", 3500)

        await renderer.destroy()

        assert renderer.handles == []
        assert layer.mounted == {}
        assert lifecycle.hooks("seek") == []
        await lifecycle.emit("seek", 3500)
        assert await renderer.refresh(3500) == []
        assert layer.mounted == {}

    @pytest.mark.asyncio
    async def test_failed_mount_skips_only_that_label(self, index, mirror):
        layer = BrokenLayer(fail_mount_for={"a"})
        renderer = OverlayRenderer(index, mirror, layer)
        lifecycle = ReplayLifecycle()
        renderer.attach(lifecycle)

        await lifecycle.emit("play", 3500)

        assert [h.spec.label.element_id for h in renderer.handles] == ["b"]
        assert [spec.label.element_id for spec in layer.mounted.values()] == ["b"]

    @pytest.mark.asyncio
    async def test_failed_unmount_does_not_stop_playback(self, index, mirror):
        layer = BrokenLayer(fail_unmount=True)
        renderer = OverlayRenderer(index, mirror, layer)
        lifecycle = ReplayLifecycle()
        renderer.attach(lifecycle)

        await lifecycle.emit("play", 3500)
        await lifecycle.emit("seek", 1500)
        await renderer.destroy()

        assert renderer.handles == []
        assert renderer.destroyed


class BrokenLayer(FakeLayer):
    """A layer whose page went away part way through."""

    def __init__(self, fail_mount_for=(), fail_unmount=False):
        super().__init__()
        self.fail_mount_for = set(fail_mount_for)
        self.fail_unmount = fail_unmount

    async def mount(self, spec, node):
        if spec.label.element_id in self.fail_mount_for:
            raise RuntimeError("page navigated")
        return await super().mount(spec, node)

    async def unmount(self, token):
        if self.fail_unmount:
            raise RuntimeError("page closed")
        await super().unmount(token)


class TestPageOverlayLayer:
    """Drawing overlays into a Playwright page."""

    @pytest.mark.asyncio
    async def test_mount_creates_container_and_overlay(self):
        page = MagicMock()
        page.evaluate = AsyncMock(return_value=True)
        layer = PageOverlayLayer(page, "body")

        token = await layer.mount(OverlaySpec(make_label("a", 0, 10)), node=None)

        assert token == 1
        assert page.evaluate.await_count == 2
        script, args = page.evaluate.await_args_list[0].args
        assert script == MOUNT_CONTAINER_JS
        assert args["containerClass"] == OVERLAY_CONTAINER_CLASS
        assert "pointer-events: none" in args["containerStyle"]
        overlay_args = page.evaluate.await_args_list[1].args[1]
        assert overlay_args["spec"]["tooltip"] == "Label a (95%)"

    @pytest.mark.asyncio
    async def test_mount_without_wrapper(self):
        page = MagicMock()
        page.evaluate = AsyncMock(return_value=False)
        layer = PageOverlayLayer(page, ".replayer-wrapper")

        token = await layer.mount(OverlaySpec(make_label("a", 0, 10)), node=None)

        assert token is None
        assert page.evaluate.await_count == 1

    @pytest.mark.asyncio
    async def test_unmount_skips_closed_page(self):
        page = MagicMock()
        page.evaluate = AsyncMock()
        page.is_closed = MagicMock(return_value=True)

        await PageOverlayLayer(page).unmount(3)

        page.evaluate.assert_not_awaited()
