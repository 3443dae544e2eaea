"""Configuration and settings for the semantic annotation pipeline."""

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path


class EmptyResultsPolicy(StrEnum):
    """How a successful-but-empty results response is treated while polling."""

    KEEP_POLLING = "keep-polling"  # Same as not-ready (service default behaviour)
    ACCEPT_EMPTY = "accept-empty"  # Finish the job with zero detections


@dataclass
class CaptureConfig:
    """Rasterization settings for the offscreen surface.

    The canonical viewport keeps detections comparable across sessions, so
    captured images always come out at exactly ``width`` x ``height`` no
    matter which device scale factor is used internally.
    """

    width: int = 1024
    height: int = 768
    device_scale_factor: float = 1.0  # >1 renders sharper, then downsamples
    image_format: str = "webp"  # webp, png or jpeg
    quality: int = 95
    background: str = "#ffffff"
    resource_timeout: float = 5.0  # Seconds to wait for each image/stylesheet

    @property
    def viewport(self) -> dict[str, int]:
        """Viewport dict in the shape Playwright expects."""
        return {"width": self.width, "height": self.height}

    @property
    def media_type(self) -> str:
        """MIME type of the encoded image."""
        fmt = self.image_format.lower()
        if fmt == "jpg":
            fmt = "jpeg"
        return f"image/{fmt}"


@dataclass
class PollConfig:
    """Polling settings for the remote analysis service."""

    interval: float = 10.0  # Seconds between results requests
    max_attempts: int = 120  # ~20 minutes worst case at the default interval
    empty_results: EmptyResultsPolicy = EmptyResultsPolicy.KEEP_POLLING
    request_timeout: float = 30.0

    @property
    def ceiling(self) -> float:
        """Worst-case time spent polling one job, in seconds."""
        return self.interval * self.max_attempts


@dataclass
class Config:
    """Pipeline configuration."""

    # Remote visual-analysis service
    service_url: str = "http://localhost:7860"

    capture: CaptureConfig = field(default_factory=CaptureConfig)
    poll: PollConfig = field(default_factory=PollConfig)

    # Mapping
    default_confidence: float = 0.95  # Used when the service sends no score
    match_threshold: float = 0.3  # Minimum element match score

    # Timeline
    retire_superseded: bool = False  # Hide labels once a later snapshot is processed

    # A snapshot observed mid-job either gets dropped (False) or supersedes the
    # running job, whose result is then discarded, and runs next (True)
    supersede_in_flight: bool = False

    # Browser
    headless: bool = True

    # Storage paths
    labels_dir: Path = Path("./labels")
    logs_dir: Path = Path("./logs")


# Global config instance
config = Config()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config


def update_config(**kwargs) -> Config:
    """Update configuration with new values."""
    global config
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
    return config
