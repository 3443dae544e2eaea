"""Rasterize the offscreen surface into a still image."""

import asyncio
import logging
from io import BytesIO
from typing import TYPE_CHECKING

from PIL import Image, ImageColor, UnidentifiedImageError
from playwright.async_api import Error as PlaywrightError

from config import CaptureConfig

from .builder import RenderedSurface
from .errors import CaptureError
from .schema import CapturedImage

if TYPE_CHECKING:
    from utils.logger import AnnotationLogger

# Configure module logger
_module_logger = logging.getLogger(__name__)

PIL_FORMATS = {"webp": "WEBP", "png": "PNG", "jpeg": "JPEG", "jpg": "JPEG"}

# Every pending image/stylesheet resolves on load, error, or its own timeout
WAIT_FOR_RESOURCES_JS = """
async (timeoutMs) => {
  const wait = (el) => new Promise((resolve) => {
    const timer = setTimeout(() => resolve('timeout'), timeoutMs);
    const done = (outcome) => () => { clearTimeout(timer); resolve(outcome); };
    el.addEventListener('load', done('load'), { once: true });
    el.addEventListener('error', done('error'), { once: true });
  });
  const pending = [];
  for (const img of Array.from(document.images)) {
    if (!img.complete) pending.push(wait(img));
  }
  for (const link of Array.from(document.querySelectorAll('link[rel~="stylesheet"]'))) {
    if (!link.sheet) pending.push(wait(link));
  }
  const outcomes = await Promise.all(pending);
  if (document.fonts && document.fonts.ready) {
    await Promise.race([
      document.fonts.ready,
      new Promise((resolve) => setTimeout(resolve, timeoutMs)),
    ]);
  }
  return {
    total: outcomes.length,
    timedOut: outcomes.filter((o) => o === 'timeout').length,
    failed: outcomes.filter((o) => o === 'error').length,
  };
}
"""


class SurfaceCapturer:
    """Turns a rendered surface into a canonical-size encoded image."""

    def __init__(self, logger: "AnnotationLogger | None" = None):
        self.logger = logger

    async def wait_for_resources(self, surface: RenderedSurface, timeout: float) -> dict:
        """Wait for pending images and stylesheets, each bounded by ``timeout``.

        Returns counts of resources that were pending, timed out, or failed.
        """
        try:
            # Outer guard in case the page itself stops responding
            summary = await asyncio.wait_for(
                surface.page.evaluate(WAIT_FOR_RESOURCES_JS, int(timeout * 1000)),
                timeout=timeout * 2 + 1.0,
            )
        except asyncio.TimeoutError:
            _module_logger.warning("Resource wait did not settle, capturing anyway")
            return {"total": 0, "timedOut": 0, "failed": 0}

        if summary.get("timedOut"):
            _module_logger.warning(
                f"{summary['timedOut']} of {summary['total']} resources timed out before capture"
            )
        return summary

    async def capture(
        self,
        surface: RenderedSurface,
        config: CaptureConfig | None = None,
    ) -> CapturedImage:
        """Rasterize ``surface`` at the canonical viewport size.

        Raises:
            CaptureError: If the page cannot be screenshotted or encoded.
        """
        config = config or CaptureConfig()

        try:
            await self.wait_for_resources(surface, config.resource_timeout)
            raw = await surface.page.screenshot(
                type="png",
                clip={"x": 0, "y": 0, "width": config.width, "height": config.height},
                animations="disabled",
            )
        except PlaywrightError as e:
            _module_logger.error(f"Screenshot failed: {e}")
            raise CaptureError(f"Screenshot failed: {e}") from e

        data = encode_image(raw, config)
        if self.logger:
            self.logger.info(
                f"Captured {config.width}x{config.height} {config.image_format} "
                f"({len(data) / 1024:.1f} KB)"
            )

        return CapturedImage(
            data=data,
            width=config.width,
            height=config.height,
            media_type=config.media_type,
        )


def encode_image(raw: bytes, config: CaptureConfig) -> bytes:
    """Flatten, resize to the canonical viewport, and encode a screenshot."""
    fmt = PIL_FORMATS.get(config.image_format.lower())
    if fmt is None:
        raise CaptureError(f"Unsupported image format: {config.image_format}")

    try:
        with Image.open(BytesIO(raw)) as img:
            img.load()
            if img.mode in ("RGBA", "LA", "P"):
                # Flatten transparency onto the page background
                img = img.convert("RGBA")
                background = Image.new("RGBA", img.size, ImageColor.getcolor(config.background, "RGBA"))
                background.alpha_composite(img)
                img = background.convert("RGB")
            elif img.mode != "RGB":
                img = img.convert("RGB")

            # Device scale factor > 1 yields a larger bitmap; bring it back
            if img.size != (config.width, config.height):
                img = img.resize((config.width, config.height), Image.Resampling.LANCZOS)

            buffer = BytesIO()
            if fmt == "PNG":
                img.save(buffer, format=fmt)
            else:
                img.save(buffer, format=fmt, quality=config.quality)
            return buffer.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise CaptureError(f"Could not encode screenshot: {e}") from e
