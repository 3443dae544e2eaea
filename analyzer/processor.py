"""Semantic annotation pipeline: snapshot -> image -> detections -> labels."""

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from config import Config
from recorder.events import RecordedEvent, full_snapshots
from utils.tracking import PipelineStats, Timer

from .builder import NodeTreeBuilder
from .capture import SurfaceCapturer
from .client import AnalysisJobClient
from .errors import ReconstructionError, ReconstructionFailure, SemanticPipelineError
from .mapper import CoordinateMapper
from .matching import ElementMatcher, ElementRect, collect_rects
from .schema import ProcessedSession, SemanticLabel
from .timeline import LabelTimelineIndex

if TYPE_CHECKING:
    from utils.logger import AnnotationLogger

# Configure module logger
_module_logger = logging.getLogger(__name__)

LabelSubscriber = Callable[[list[SemanticLabel]], None]


class SemanticProcessor:
    """Runs the annotation pipeline over recorded full snapshots.

    Owns one offscreen surface and one job client. At most one
    reconstruct -> capture -> analyze cycle runs at a time; no error in a
    cycle escapes, it only means that snapshot gets no labels.

    Example:
        >>> async with SemanticProcessor(config) as processor:
        ...     session = await processor.process_session(events)
        >>> session.labels[0].bounding_box
    """

    def __init__(
        self,
        config: Config | None = None,
        http: httpx.AsyncClient | None = None,
        logger: "AnnotationLogger | None" = None,
        index: LabelTimelineIndex | None = None,
    ):
        """Initialize the processor.

        Args:
            config: Pipeline configuration (a fresh default Config if omitted).
            http: Session-scoped client for the analysis service. One is
                created against ``config.service_url`` if not provided.
            logger: Optional AnnotationLogger for styled output.
            index: Timeline index to fill; a new one is created if omitted.
        """
        self.config = config or Config()
        self.logger = logger
        self.stats = PipelineStats()
        self.index = index or LabelTimelineIndex(retire_superseded=self.config.retire_superseded)

        self.http = http
        self._owns_http = http is None

        self.mapper = CoordinateMapper(default_confidence=self.config.default_confidence)
        self.matcher = ElementMatcher(
            threshold=self.config.match_threshold,
            viewport=(self.config.capture.width, self.config.capture.height),
        )
        self.capturer = SurfaceCapturer(logger=logger)
        self.builder: NodeTreeBuilder | None = None
        self.client: AnalysisJobClient | None = None

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

        self._subscribers: list[LabelSubscriber] = []
        self._tasks: set[asyncio.Task] = set()
        self._cycle_active = False
        self._pending: RecordedEvent | None = None
        self._generation = 0
        self._closing: asyncio.Task | None = None
        self._destroyed = False

    async def __aenter__(self) -> "SemanticProcessor":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.destroy()
        await self.wait_closed()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self, page: Page | None = None) -> None:
        """Create the offscreen surface and the job client.

        Args:
            page: Existing page to render into. If omitted, a headless
                Chromium is launched with the canonical viewport.
        """
        capture = self.config.capture

        if page is None:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self.config.headless)
            self._context = await self._browser.new_context(
                viewport=capture.viewport,
                device_scale_factor=capture.device_scale_factor,
                java_script_enabled=True,
            )
            page = await self._context.new_page()

        self.builder = NodeTreeBuilder(page, capture, self.logger)

        if self.http is None:
            self.http = httpx.AsyncClient(base_url=self.config.service_url)
        self.client = AnalysisJobClient(self.http, self.config.poll, self.logger)

        _module_logger.info(
            f"Semantic processor ready ({capture.width}x{capture.height}, "
            f"service {self.http.base_url})"
        )

    async def destroy(self) -> None:
        """Release the surface and browser.

        Polls still running keep going until they exhaust themselves; their
        results are discarded. An owned HTTP client is closed once they end;
        await ``wait_closed`` to wait for that.
        """
        if self._destroyed:
            return
        self._destroyed = True
        self._subscribers.clear()
        self._pending = None

        try:
            if self.builder is not None:
                await self.builder.surface.close()
            if self._context:
                await self._context.close()
            if self._browser:
                await self._browser.close()
            if self._playwright:
                await self._playwright.stop()
        except PlaywrightError as e:
            _module_logger.warning(f"Error while closing browser: {e}")

        running = [t for t in self._tasks if not t.done()]
        if self._owns_http and self.http is not None:
            if running:
                self._closing = asyncio.create_task(self._close_http_after(running))
            else:
                await self.http.aclose()

        _module_logger.info("Semantic processor destroyed")

    async def _close_http_after(self, tasks: list[asyncio.Task]) -> None:
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.http.aclose()
        _module_logger.debug("Analysis service client closed")

    async def wait_closed(self) -> None:
        """Wait for background cycles to end and the owned HTTP client to close."""
        if self._closing is not None:
            await self._closing

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def busy(self) -> bool:
        """Whether a cycle is currently running."""
        return self._cycle_active

    def subscribe(self, callback: LabelSubscriber) -> None:
        """Call ``callback`` with each batch of labels as it is indexed."""
        self._subscribers.append(callback)

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def process_session(
        self,
        events: list[RecordedEvent],
        source: str | None = None,
    ) -> ProcessedSession:
        """Annotate every full snapshot in ``events``, one after another.

        Raises:
            ReconstructionError: If the stream contains no full snapshot.
        """
        snapshots = full_snapshots(events)
        if not snapshots:
            raise ReconstructionError.missing_snapshot()

        labels: list[SemanticLabel] = []
        for event in snapshots:
            labels.extend(await self.process_snapshot(event))

        return ProcessedSession(labels=labels, source=source, stats=self.stats.to_dict())

    async def process_snapshot(self, event: RecordedEvent) -> list[SemanticLabel]:
        """Run one cycle for a full snapshot event.

        Returns:
            Labels indexed for this snapshot; empty when the cycle was skipped
            or failed, or when its result was superseded.
        """
        if self._destroyed:
            return []
        if self.builder is None or self.client is None:
            raise RuntimeError("SemanticProcessor.initialize() has not been called")

        if self._cycle_active or self.client.in_flight:
            self.stats.skipped_snapshots += 1
            self.stats.record_cycle(event.timestamp, "skipped")
            _module_logger.info(f"Cycle in progress, skipping snapshot at {event.timestamp}")
            return []

        self._cycle_active = True
        try:
            return await self._run_cycle(event, self._generation)
        finally:
            self._cycle_active = False

    def observe(self, event: RecordedEvent) -> asyncio.Task | None:
        """Feed a live event; full snapshots start a background cycle.

        While a cycle is running, a new snapshot is dropped, or, with
        ``supersede_in_flight``, marks the running job superseded and is
        processed as soon as the current cycle ends (latest wins).

        Returns:
            The task started for this event, if any.
        """
        if self._destroyed or not event.is_full_snapshot:
            return None

        if self._cycle_active:
            if self.config.supersede_in_flight and self.client is not None:
                # Covers a cycle that has not uploaded yet, which the client cannot mark
                self._generation += 1
                self.client.supersede()
                self._pending = event
            else:
                self.stats.skipped_snapshots += 1
                self.stats.record_cycle(event.timestamp, "skipped")
                _module_logger.info(f"Cycle in progress, ignoring snapshot at {event.timestamp}")
            return None

        # Claimed synchronously so two observe() calls in a row cannot both start
        self._cycle_active = True
        task = asyncio.create_task(self._observe_cycle(event, self._generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _observe_cycle(self, event: RecordedEvent, generation: int) -> list[SemanticLabel]:
        try:
            labels = await self._run_cycle(event, generation)
        finally:
            self._cycle_active = False

        pending, self._pending = self._pending, None
        if pending is not None and not self._destroyed:
            self.observe(pending)
        return labels

    async def _run_cycle(self, event: RecordedEvent, generation: int) -> list[SemanticLabel]:
        timestamp = event.timestamp
        timer = Timer(f"Snapshot {timestamp}")
        timer.start()
        job = None

        try:
            try:
                tree = event.snapshot_tree()
            except (ValueError, KeyError) as e:
                raise ReconstructionError(ReconstructionFailure.BUILD_FAILED, str(e)) from e

            surface = await self.builder.reconstruct(tree, timestamp=timestamp)
            image = await self.capturer.capture(surface, self.config.capture)
            rects = await self._collect_rects(surface)

            job = await self.client.submit(image)
            if job is None:
                self.stats.skipped_snapshots += 1
                self.stats.record_cycle(timestamp, "skipped", elapsed=timer.stop())
                return []
            self.stats.uploads += 1

            detections = await self.client.await_result(job)
        except SemanticPipelineError as e:
            kind = type(e).__name__
            self.stats.record_failure(kind)
            self.stats.record_cycle(
                timestamp,
                kind,
                attempts=job.attempts if job else 0,
                elapsed=timer.stop(),
            )
            _module_logger.warning(f"No labels for snapshot at {timestamp}: {e.message}")
            if not self._destroyed and generation == self._generation:
                self.index.mark(timestamp)
            if self.logger:
                self.logger.cycle(timestamp, kind)
            return []

        if self._destroyed or generation != self._generation or not self.client.is_current(job):
            self.stats.discarded_results += 1
            self.stats.record_cycle(timestamp, "discarded", attempts=job.attempts, elapsed=timer.stop())
            _module_logger.info(f"Discarding stale result of job {job.job_id}")
            return []

        dropped_before = self.mapper.dropped
        labels = self.mapper.map(detections, image.size, job.parsed_text, timestamp)
        self.stats.dropped_detections += self.mapper.dropped - dropped_before
        labels = self.matcher.assign(labels, rects)

        self.index.mark(timestamp)
        self.index.insert(labels)
        for subscriber in list(self._subscribers):
            subscriber(labels)

        status = "labelled" if labels else "empty"
        self.stats.record_cycle(timestamp, status, labels=len(labels), attempts=job.attempts, elapsed=timer.stop())
        if self.logger:
            self.logger.cycle(timestamp, status, len(labels))
        return labels

    async def _collect_rects(self, surface) -> list[ElementRect]:
        """Element layout of the surface, read before it can be rebuilt again."""
        try:
            return await collect_rects(surface)
        except PlaywrightError as e:
            _module_logger.warning(f"Could not read element layout, labels stay unmatched: {e}")
            return []
