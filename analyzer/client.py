"""Client for the remote visual-analysis service (upload, then poll for results)."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import httpx

from config import EmptyResultsPolicy, PollConfig

from .errors import CoordinateParseError, JobSubmissionError, JobTimeoutError
from .mapper import detections_from_parsed_text, detections_from_results
from .schema import AnalysisJob, CapturedImage, DetectionResult, JobStatus

if TYPE_CHECKING:
    from utils.logger import AnnotationLogger

# Configure module logger
_module_logger = logging.getLogger(__name__)

UPLOAD_PATH = "/upload"
RESULTS_PATH = "/results/{job_id}"


class _PollFailure(Exception):
    """A results request that neither succeeded nor reported not-ready."""


class AnalysisJobClient:
    """Submits captured images and polls for detections.

    The HTTP session is passed in rather than created here, so each pipeline
    owns its client and tests can hand in a mock transport.

    Only one job may be in flight at a time. A submission made while a job
    is active is a no-op and returns ``None``; no request is sent.

    Example:
        >>> async with httpx.AsyncClient(base_url="http://localhost:7860") as http:
        ...     client = AnalysisJobClient(http, PollConfig(interval=2, max_attempts=30))
        ...     job = await client.submit(image)
        ...     detections = await client.await_result(job)
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        poll: PollConfig | None = None,
        logger: "AnnotationLogger | None" = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the job client.

        Args:
            http: Session-scoped httpx client with ``base_url`` set to the service.
            poll: Polling interval, attempt ceiling and empty-results policy.
            logger: Optional AnnotationLogger for styled output.
            sleep: Delay function between polls (injectable for tests).
        """
        self.http = http
        self.poll = poll or PollConfig()
        self.logger = logger
        self._sleep = sleep

        self._busy = False
        self._active: AnalysisJob | None = None
        self._token = 0

    @property
    def in_flight(self) -> bool:
        """Whether a job is currently submitted or being polled."""
        return self._busy

    @property
    def active_job(self) -> AnalysisJob | None:
        return self._active

    @property
    def current_token(self) -> int:
        """Token of the most recent submission."""
        return self._token

    def is_current(self, job: AnalysisJob) -> bool:
        """True if ``job`` is the latest submission and was not superseded."""
        return job.token == self._token and not job.superseded

    def supersede(self) -> AnalysisJob | None:
        """Mark the in-flight job as superseded so its result gets discarded.

        The poll loop keeps running to its own end; only the outcome is
        ignored when it is applied.
        """
        job = self._active
        if job is not None and not job.superseded:
            job.superseded = True
            _module_logger.info(f"Job {job.job_id} superseded by a newer snapshot")
        return job

    def _release(self, job: AnalysisJob | None = None) -> None:
        if job is None or self._active is job:
            self._active = None
            self._busy = False

    async def submit(self, image: CapturedImage) -> AnalysisJob | None:
        """Upload ``image`` and return the job the service created.

        Returns:
            The new AnalysisJob, or None if another job is still in flight.

        Raises:
            JobSubmissionError: On network failure, an error status, or a
                response without a job id.
        """
        if self._busy:
            _module_logger.info("Analysis job already in flight, ignoring submission")
            return None

        # Claim the slot before the first await so concurrent callers see it
        self._busy = True
        self._token += 1
        token = self._token

        try:
            response = await self.http.post(
                UPLOAD_PATH,
                content=image.data,
                headers={"Content-Type": image.media_type},
                timeout=self.poll.request_timeout,
            )
            await response.aread()
        except httpx.HTTPError as e:
            self._release()
            _module_logger.error(f"Upload failed: {e}")
            raise JobSubmissionError(f"Upload failed: {e}") from e

        if response.is_error:
            self._release()
            _module_logger.error(f"Upload rejected with HTTP {response.status_code}")
            raise JobSubmissionError(
                f"Upload rejected with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = json.loads(response.content)
        except ValueError as e:
            self._release()
            raise JobSubmissionError(f"Upload response is not JSON: {e}") from e

        job_id = payload.get("jobId") if isinstance(payload, dict) else None
        if not isinstance(job_id, str) or not job_id:
            self._release()
            raise JobSubmissionError(f"Upload response has no jobId: {payload!r}")

        job = AnalysisJob(job_id=job_id, token=token)
        self._active = job

        _module_logger.info(f"Submitted job {job_id} ({len(image.data)} bytes)")
        if self.logger:
            self.logger.info(f"Submitted analysis job [cyan]{job_id}[/cyan]")
        return job

    async def await_result(self, job: AnalysisJob) -> list[DetectionResult]:
        """Poll until ``job`` has detections or the attempt ceiling is reached.

        The results endpoint is called at most ``poll.max_attempts`` times.

        Raises:
            JobTimeoutError: If no usable result arrived in time.
        """
        max_attempts = max(1, self.poll.max_attempts)
        last_error: str | None = None

        try:
            for attempt in range(1, max_attempts + 1):
                job.attempts = attempt
                final = attempt == max_attempts

                try:
                    detections = await self._poll_once(job)
                except _PollFailure as e:
                    last_error = str(e)
                    _module_logger.warning(
                        f"Polling job {job.job_id} failed "
                        f"(attempt {attempt}/{max_attempts}): {e}"
                    )
                    detections = None

                if detections is not None:
                    job.results = detections
                    job.status = JobStatus.READY
                    _module_logger.info(
                        f"Job {job.job_id} ready after {attempt} attempts "
                        f"with {len(detections)} detections"
                    )
                    return detections

                if not final:
                    await self._sleep(self.poll.interval)

            job.status = JobStatus.FAILED if last_error else JobStatus.TIMED_OUT
            job.error = last_error
            raise JobTimeoutError(job.job_id, job.attempts, last_error)
        finally:
            self._release(job)

    async def run(self, image: CapturedImage) -> list[DetectionResult] | None:
        """Submit and wait in one call; None if another job was in flight."""
        job = await self.submit(image)
        if job is None:
            return None
        return await self.await_result(job)

    async def _poll_once(self, job: AnalysisJob) -> list[DetectionResult] | None:
        """One results request.

        Returns:
            Detections when the job is done, None when it is not ready yet.

        Raises:
            _PollFailure: On transport errors, unexpected status, or a bad body.
        """
        try:
            response = await self.http.get(
                RESULTS_PATH.format(job_id=job.job_id),
                timeout=self.poll.request_timeout,
            )
            # The body may arrive in chunks; parse only once it is complete
            body = await response.aread()
        except httpx.HTTPError as e:
            raise _PollFailure(f"request error: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise _PollFailure(f"unexpected HTTP {response.status_code}")

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise _PollFailure(f"invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise _PollFailure(f"unexpected payload type {type(payload).__name__}")
        if payload.get("error"):
            raise _PollFailure(f"service error: {payload['error']}")

        if "coordinates" in payload:
            job.parsed_text = payload.get("parsedText") or payload.get("parsed_text") or ""
            try:
                detections = detections_from_parsed_text(job.parsed_text, payload["coordinates"])
            except CoordinateParseError as e:
                raise _PollFailure(e.message) from e
        else:
            results = payload.get("results")
            if results is None:
                results = []
            if not isinstance(results, list):
                raise _PollFailure("results is not a list")
            detections = detections_from_results(results)

        if not detections:
            if self.poll.empty_results == EmptyResultsPolicy.ACCEPT_EMPTY:
                return []
            return None
        return detections
