"""Shared fixtures: recorded sessions, fake Playwright pages, and a fake analysis service."""

import io
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from PIL import Image

from analyzer.matching import COLLECT_RECTS_JS
from recorder.events import RecordedEvent


SNAPSHOT_NODE = {
    "type": 0,
    "id": 1,
    "childNodes": [
        {"type": 1, "id": 2, "name": "html", "publicId": "", "systemId": ""},
        {
            "type": 2,
            "id": 3,
            "tagName": "html",
            "attributes": {"lang": "en"},
            "childNodes": [
                {
                    "type": 2,
                    "id": 4,
                    "tagName": "head",
                    "attributes": {},
                    "childNodes": [
                        {
                            "type": 2,
                            "id": 5,
                            "tagName": "style",
                            "attributes": {},
                            "childNodes": [
                                {"type": 3, "id": 6, "textContent": ".bar { position: fixed; }", "isStyle": True},
                            ],
                        },
                        {
                            "type": 2,
                            "id": 7,
                            "tagName": "script",
                            "attributes": {"src": "app.js"},
                            "childNodes": [{"type": 3, "id": 8, "textContent": "alert(1)"}],
                        },
                    ],
                },
                {
                    "type": 2,
                    "id": 9,
                    "tagName": "body",
                    "attributes": {"onload": "init()"},
                    "childNodes": [
                        {
                            "type": 2,
                            "id": 10,
                            "tagName": "BUTTON",
                            "attributes": {"class": "primary", "onclick": "go()", "style": "position: fixed; top: 0"},
                            "childNodes": [{"type": 3, "id": 11, "textContent": "Sign in"}],
                        },
                        {"type": 2, "id": 12, "tagName": "details", "attributes": {"open": True}, "childNodes": []},
                        {
                            "type": 2,
                            "id": 13,
                            "tagName": "link",
                            "attributes": {"rel": "stylesheet", "_cssText": "body { margin: 0; }"},
                            "childNodes": [],
                        },
                        {"type": 2, "id": 14, "tagName": "img", "attributes": {"src": "a.png", "rr_width": "10px"}},
                        {"type": 5, "id": 15, "textContent": "footer"},
                    ],
                },
            ],
        },
    ],
}

# Layout the fake page reports for the snapshot above
ELEMENT_RECTS = [
    {"id": 3, "tag": "html", "x": 0, "y": 0, "width": 1024, "height": 768, "text": "Sign in"},
    {"id": 9, "tag": "body", "x": 0, "y": 0, "width": 1024, "height": 768, "text": "Sign in"},
    {"id": 10, "tag": "button", "x": 102.4, "y": 76.8, "width": 204.8, "height": 76.8, "text": "Sign in"},
    {"id": 14, "tag": "img", "x": 600, "y": 500, "width": 3, "height": 3, "text": ""},
]

RESULTS_PAYLOAD = {
    "results": [
        {"text": "Sign in", "bbox": [0.1, 0.1, 0.3, 0.2], "score": 0.9},
    ],
}


def full_snapshot_event(timestamp: float, node: dict | None = None) -> dict:
    return {
        "type": 2,
        "timestamp": timestamp,
        "data": {"node": node or SNAPSHOT_NODE, "initialOffset": {"top": 0, "left": 0}},
    }


def png_bytes(size=(1024, 768), color=(255, 0, 0, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def raw_events() -> list[dict]:
    return [
        {"type": 4, "timestamp": 900, "data": {"href": "https://example.com", "width": 1280, "height": 800}},
        full_snapshot_event(1000),
        {"type": 3, "timestamp": 1500, "data": {"source": 0, "adds": [], "removes": [], "texts": [], "attributes": []}},
        {"type": 3, "timestamp": 1700, "data": {"source": 1, "positions": []}, "delay": 5},
        full_snapshot_event(3000),
    ]


@pytest.fixture
def events(raw_events) -> list[RecordedEvent]:
    return [RecordedEvent.from_dict(e) for e in raw_events]


@pytest.fixture
def page():
    """A Playwright page stand-in good enough for the builder, capturer and matcher."""
    page = MagicMock()
    page.set_content = AsyncMock()
    page.screenshot = AsyncMock(return_value=png_bytes())
    page.close = AsyncMock()
    page.is_closed = MagicMock(return_value=False)

    async def evaluate(script, *args):
        if script == COLLECT_RECTS_JS:
            return ELEMENT_RECTS
        return {"total": 0, "timedOut": 0, "failed": 0}

    page.evaluate = AsyncMock(side_effect=evaluate)
    return page


class FakeService:
    """In-memory analysis service behind httpx.MockTransport.

    ``results`` lists what each poll gets, as ``(status, payload)`` pairs or
    exceptions to raise; the last entry repeats once the list runs out. A str
    payload is sent as a raw body.
    """

    def __init__(self, results=None, upload_status=200):
        self.results = list(results or [(200, RESULTS_PAYLOAD)])
        self.upload_status = upload_status
        self.uploads: list[httpx.Request] = []
        self.polls: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/upload":
            self.uploads.append(request)
            if self.upload_status != 200:
                return httpx.Response(self.upload_status, json={"error": "rejected"})
            return httpx.Response(200, json={"jobId": f"job-{len(self.uploads)}"})

        if request.method == "GET" and request.url.path.startswith("/results/"):
            self.polls.append(request)
            index = min(len(self.polls), len(self.results)) - 1
            entry = self.results[index]
            if isinstance(entry, Exception):
                raise entry
            status, payload = entry
            if payload is None:
                return httpx.Response(status)
            if isinstance(payload, str):
                return httpx.Response(status, content=payload.encode())
            return httpx.Response(status, json=payload)

        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), base_url="http://analysis.test")


@pytest.fixture
def service() -> FakeService:
    return FakeService()
