"""Tests for the analysis service job client."""

import httpx
import pytest

from analyzer.client import AnalysisJobClient
from analyzer.errors import JobSubmissionError, JobTimeoutError
from analyzer.schema import BoxLayout, CapturedImage, JobStatus
from config import EmptyResultsPolicy, PollConfig

from conftest import RESULTS_PAYLOAD, FakeService


IMAGE = CapturedImage(data=b"RIFF....WEBP", width=1024, height=768, media_type="image/webp")


def make_client(service: FakeService, **poll_kwargs):
    sleeps: list[float] = []

    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)

    poll = PollConfig(interval=0.5, **poll_kwargs)
    client = AnalysisJobClient(service.client(), poll, sleep=sleep)
    return client, sleeps


class TestSubmit:
    """Uploading captured images."""

    @pytest.mark.asyncio
    async def test_posts_image_body(self, service):
        client, _ = make_client(service)

        job = await client.submit(IMAGE)

        assert job.job_id == "job-1"
        assert job.token == 1
        assert job.status == JobStatus.PENDING
        assert client.in_flight
        assert len(service.uploads) == 1
        request = service.uploads[0]
        assert request.headers["content-type"] == "image/webp"
        assert request.content == IMAGE.data

    @pytest.mark.asyncio
    async def test_second_submit_while_in_flight_is_noop(self, service):
        client, _ = make_client(service)

        first = await client.submit(IMAGE)
        second = await client.submit(IMAGE)

        assert first is not None
        assert second is None
        assert len(service.uploads) == 1
        assert client.active_job is first

    @pytest.mark.asyncio
    async def test_error_status_raises_and_releases(self):
        service = FakeService(upload_status=503)
        client, _ = make_client(service)

        with pytest.raises(JobSubmissionError) as exc_info:
            await client.submit(IMAGE)

        assert exc_info.value.status_code == 503
        assert not client.in_flight

    @pytest.mark.asyncio
    async def test_missing_job_id_raises(self):
        def handler(request):
            return httpx.Response(200, json={"status": "queued"})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://analysis.test")
        client = AnalysisJobClient(http, PollConfig())

        with pytest.raises(JobSubmissionError):
            await client.submit(IMAGE)
        assert not client.in_flight

    @pytest.mark.asyncio
    async def test_network_error_raises_and_allows_retry(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectError("connection refused")
            return httpx.Response(200, json={"jobId": "job-2"})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://analysis.test")
        client = AnalysisJobClient(http, PollConfig())

        with pytest.raises(JobSubmissionError):
            await client.submit(IMAGE)

        job = await client.submit(IMAGE)
        assert job.job_id == "job-2"
        assert job.token == 2


class TestAwaitResult:
    """Polling for results."""

    @pytest.mark.asyncio
    async def test_polls_until_ready(self):
        service = FakeService(results=[(404, None), (404, None), (200, RESULTS_PAYLOAD)])
        client, sleeps = make_client(service, max_attempts=10)

        job = await client.submit(IMAGE)
        detections = await client.await_result(job)

        assert len(detections) == 1
        assert detections[0].text == "Sign in"
        assert detections[0].bbox == [0.1, 0.1, 0.3, 0.2]
        assert detections[0].layout == BoxLayout.CORNERS
        assert job.status == JobStatus.READY
        assert job.attempts == 3
        assert len(service.polls) == 3
        assert sleeps == [0.5, 0.5]
        assert not client.in_flight

    @pytest.mark.asyncio
    async def test_never_ready_stops_at_max_attempts(self):
        service = FakeService(results=[(404, None)])
        client, sleeps = make_client(service, max_attempts=5)

        job = await client.submit(IMAGE)
        with pytest.raises(JobTimeoutError) as exc_info:
            await client.await_result(job)

        assert exc_info.value.attempts == 5
        assert len(service.polls) == 5
        assert len(sleeps) == 4
        assert job.status == JobStatus.TIMED_OUT
        assert not client.in_flight

    @pytest.mark.asyncio
    async def test_error_on_final_attempt_raises_timeout(self):
        service = FakeService(results=[(404, None), (404, None), (500, {"detail": "boom"})])
        client, _ = make_client(service, max_attempts=3)

        job = await client.submit(IMAGE)
        with pytest.raises(JobTimeoutError) as exc_info:
            await client.await_result(job)

        assert "HTTP 500" in exc_info.value.last_error
        assert job.status == JobStatus.FAILED
        assert not client.in_flight

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self):
        service = FakeService(results=[
            httpx.ReadTimeout("slow"),
            (200, {"error": "model warming up"}),
            (200, "not json"),
            (200, RESULTS_PAYLOAD),
        ])
        client, _ = make_client(service, max_attempts=5)

        job = await client.submit(IMAGE)
        detections = await client.await_result(job)

        assert len(detections) == 1
        assert job.attempts == 4

    @pytest.mark.asyncio
    async def test_empty_results_keep_polling_by_default(self):
        service = FakeService(results=[(200, {"results": []}), (200, {"results": []}), (200, RESULTS_PAYLOAD)])
        client, _ = make_client(service, max_attempts=5)

        job = await client.submit(IMAGE)
        detections = await client.await_result(job)

        assert len(detections) == 1
        assert job.attempts == 3

    @pytest.mark.asyncio
    async def test_accept_empty_finishes_on_first_empty_response(self):
        service = FakeService(results=[(200, {"results": []}), (200, RESULTS_PAYLOAD)])
        client, _ = make_client(service, max_attempts=5, empty_results=EmptyResultsPolicy.ACCEPT_EMPTY)

        job = await client.submit(IMAGE)
        detections = await client.await_result(job)

        assert detections == []
        assert job.attempts == 1
        assert job.status == JobStatus.READY

    @pytest.mark.asyncio
    async def test_parsed_text_payload(self):
        payload = {
            "parsedText": "Text Box ID 0: Sign in\nText Box ID 1: Search",
            "coordinates": "{'0': [0.1, 0.1, 0.2, 0.1], '1': [0.5, 0.1, 0.3, 0.05]}",
        }
        service = FakeService(results=[(200, payload)])
        client, _ = make_client(service)

        job = await client.submit(IMAGE)
        detections = await client.await_result(job)

        assert [d.detection_id for d in detections] == ["0", "1"]
        assert all(d.layout == BoxLayout.XYWH for d in detections)
        assert job.parsed_text.startswith("Text Box ID 0")

    @pytest.mark.asyncio
    async def test_guard_released_after_failure_allows_next_job(self):
        service = FakeService(results=[(404, None)])
        client, _ = make_client(service, max_attempts=2)

        job = await client.submit(IMAGE)
        with pytest.raises(JobTimeoutError):
            await client.await_result(job)

        service.results = [(200, RESULTS_PAYLOAD)]
        detections = await client.run(IMAGE)
        assert len(detections) == 1
        assert len(service.uploads) == 2


class TestSupersede:
    """Job tokens and superseding."""

    @pytest.mark.asyncio
    async def test_superseded_job_is_not_current(self, service):
        client, _ = make_client(service)

        job = await client.submit(IMAGE)
        assert client.is_current(job)

        assert client.supersede() is job
        assert job.superseded
        assert not client.is_current(job)

    @pytest.mark.asyncio
    async def test_older_token_is_not_current(self, service):
        client, _ = make_client(service)

        first = await client.submit(IMAGE)
        await client.await_result(first)
        second = await client.submit(IMAGE)

        assert second.token > first.token
        assert not client.is_current(first)
        assert client.is_current(second)

    def test_supersede_without_job(self, service):
        client, _ = make_client(service)
        assert client.supersede() is None


def test_poll_ceiling():
    assert PollConfig(interval=10, max_attempts=120).ceiling == 1200
