"""Pipeline statistics and timing utilities."""

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class CycleRecord:
    """Outcome of one reconstruct -> capture -> analyze cycle."""

    timestamp: float  # Snapshot timestamp (ms)
    status: str  # labelled, empty, skipped, or an error kind
    labels: int = 0
    attempts: int = 0
    elapsed: float = 0.0  # Seconds

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "status": self.status,
            "labels": self.labels,
            "attempts": self.attempts,
            "elapsed": round(self.elapsed, 3),
        }


@dataclass
class PipelineStats:
    """Tracks what the annotation pipeline did across a session.

    Failures are counted by kind (the error class name) so a summary can
    show whether labels were missing because of capture, upload, or timeouts.
    """

    uploads: int = 0
    poll_attempts: int = 0
    labels: int = 0
    dropped_detections: int = 0
    skipped_snapshots: int = 0
    discarded_results: int = 0  # Results that arrived for a superseded job or after teardown

    failures: dict[str, int] = field(default_factory=dict)
    cycles: list[CycleRecord] = field(default_factory=list)

    def record_cycle(
        self,
        timestamp: float,
        status: str,
        labels: int = 0,
        attempts: int = 0,
        elapsed: float = 0.0,
    ) -> CycleRecord:
        """Record one cycle and update the totals."""
        record = CycleRecord(
            timestamp=timestamp,
            status=status,
            labels=labels,
            attempts=attempts,
            elapsed=elapsed,
        )
        self.cycles.append(record)
        self.labels += labels
        self.poll_attempts += attempts
        return record

    def record_failure(self, kind: str) -> None:
        self.failures[kind] = self.failures.get(kind, 0) + 1

    @property
    def total_failures(self) -> int:
        return sum(self.failures.values())

    def get_summary(self) -> dict[str, str]:
        """Get a summary dictionary for display."""
        failures = ", ".join(f"{k}: {v}" for k, v in sorted(self.failures.items())) or "None"

        return {
            "Snapshots": str(len(self.cycles)),
            "Uploads": str(self.uploads),
            "Poll Attempts": f"{self.poll_attempts:,}",
            "Labels": f"{self.labels:,}",
            "Dropped Detections": str(self.dropped_detections),
            "Skipped Snapshots": str(self.skipped_snapshots),
            "Failures": failures,
        }

    def get_cycle_summary(self) -> list[list[str]]:
        """Get per-snapshot breakdown for table display."""
        return [
            [
                f"{c.timestamp:g}",
                c.status,
                str(c.labels),
                str(c.attempts),
                f"{c.elapsed:.1f}s",
            ]
            for c in self.cycles
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploads": self.uploads,
            "poll_attempts": self.poll_attempts,
            "labels": self.labels,
            "dropped_detections": self.dropped_detections,
            "skipped_snapshots": self.skipped_snapshots,
            "discarded_results": self.discarded_results,
            "failures": dict(self.failures),
            "cycles": [c.to_dict() for c in self.cycles],
        }


class Timer:
    """Context manager for timing operations."""

    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start_time: float | None = None
        self.end_time: float | None = None

    def __enter__(self) -> "Timer":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    @property
    def elapsed(self) -> float:
        """Get elapsed time in seconds."""
        if self.start_time is None:
            return 0.0
        end = self.end_time or time.monotonic()
        return end - self.start_time

    @property
    def elapsed_str(self) -> str:
        """Get elapsed time as a formatted string."""
        seconds = self.elapsed
        if seconds < 60:
            return f"{seconds:.1f}s"
        minutes = int(seconds // 60)
        secs = seconds % 60
        if minutes < 60:
            return f"{minutes}m {secs:.0f}s"
        return f"{minutes // 60}h {minutes % 60}m {secs:.0f}s"

    def start(self) -> None:
        """Manually start the timer."""
        self.start_time = time.monotonic()
        self.end_time = None

    def stop(self) -> float:
        """Manually stop the timer and return elapsed time."""
        self.end_time = time.monotonic()
        return self.elapsed
