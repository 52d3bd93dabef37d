"""Compositor: background scaled to the canvas, keyed video drawn on top.

Each pass:
1. Skip entirely while the canvas (background) size is unknown or zero.
2. Clear; draw the background scaled to fill, or the placeholder fill.
3. Sample + key the current video frame, alpha-composite it into the
   transform rectangle (scaled, cropped to the canvas).
4. If sampling/keying fails, draw the raw video frame opaque instead.

CRITICAL: blend math uses float32 to avoid uint8 overflow/wrap.
"""

import logging
import math

import cv2
import numpy as np
import sentry_sdk

from engine.chroma import ChromaKeySettings
from engine.keyer import key_frame
from engine.sampler import FrameSampler
from engine.transform import VideoTransform

logger = logging.getLogger(__name__)

# Tailwind gray-700, shown while the background image is not decoded.
PLACEHOLDER_RGB = (55, 65, 81)


def visible_region(
    rect: VideoTransform, canvas_size: tuple[int, int]
) -> tuple[int, int, int, int] | None:
    """Integer (x0, y0, x1, y1) of the rectangle clipped to the canvas."""
    width, height = canvas_size
    x0 = max(0, math.floor(rect.x))
    y0 = max(0, math.floor(rect.y))
    x1 = min(width, math.ceil(rect.x + rect.width))
    y1 = min(height, math.ceil(rect.y + rect.height))
    if x1 <= x0 or y1 <= y0:
        return None
    return x0, y0, x1, y1


def warp_into_rect(
    frame: np.ndarray,
    rect: VideoTransform,
    region: tuple[int, int, int, int],
) -> np.ndarray:
    """Resample ``frame`` stretched over ``rect``, only for the visible region.

    Uses pixel-center mapping with edge replication, so a region that covers
    the whole rectangle matches ``cv2.resize`` output.
    """
    x0, y0, x1, y1 = region
    src_h, src_w = frame.shape[:2]
    sx = rect.width / src_w
    sy = rect.height / src_h
    matrix = np.array(
        [
            [sx, 0.0, 0.5 * sx - 0.5 + rect.x - x0],
            [0.0, sy, 0.5 * sy - 0.5 + rect.y - y0],
        ],
        dtype=np.float64,
    )
    return cv2.warpAffine(
        frame,
        matrix,
        (x1 - x0, y1 - y0),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_REPLICATE,
    )


def alpha_over(canvas: np.ndarray, layer: np.ndarray, region: tuple[int, int, int, int]):
    """Composite RGBA ``layer`` onto ``canvas`` at ``region`` in place."""
    x0, y0, x1, y1 = region
    base = canvas[y0:y1, x0:x1, :3].astype(np.float32)
    alpha = layer[:, :, 3:4].astype(np.float32) / 255.0
    blended = base * (1.0 - alpha) + layer[:, :, :3].astype(np.float32) * alpha
    canvas[y0:y1, x0:x1, :3] = np.clip(blended + 0.5, 0, 255).astype(np.uint8)


class Compositor:
    """Produces one composite frame per call to :meth:`render`."""

    def __init__(self, sampler: FrameSampler | None = None) -> None:
        self.sampler = sampler or FrameSampler()
        self.canvas: np.ndarray | None = None
        self.fallback_count = 0
        self._bg_cache_key: tuple | None = None
        self._bg_scaled: np.ndarray | None = None

    @property
    def canvas_size(self) -> tuple[int, int]:
        if self.canvas is None:
            return (0, 0)
        return (self.canvas.shape[1], self.canvas.shape[0])

    def _ensure_canvas(self, width: int, height: int) -> np.ndarray:
        if self.canvas is None or self.canvas.shape[:2] != (height, width):
            logger.debug("Canvas resized to %dx%d", width, height)
            self.canvas = np.zeros((height, width, 4), dtype=np.uint8)
        return self.canvas

    def _scaled_background(self, background, width: int, height: int) -> np.ndarray:
        key = (background.token, width, height)
        if key != self._bg_cache_key:
            pixels = background.pixels
            if pixels.shape[:2] == (height, width):
                self._bg_scaled = pixels
            else:
                self._bg_scaled = cv2.resize(
                    pixels, (width, height), interpolation=cv2.INTER_LINEAR
                )
            self._bg_cache_key = key
        return self._bg_scaled

    def render(
        self,
        canvas_size: tuple[int, int] | None,
        background,
        source,
        transform: VideoTransform,
        settings: ChromaKeySettings,
    ) -> np.ndarray | None:
        """Composite one frame.

        Args:
            canvas_size: Background natural (width, height), or None if unknown.
            background:  Decoded background (``pixels`` + ``token``) or None.
            source:      Video source (``width``, ``height``,
                         ``current_frame()``) or None.
            transform:   Destination rectangle in canvas pixels.
            settings:    Chroma key settings.

        Returns:
            The canvas (RGBA uint8, owned by the compositor and overwritten by
            the next call), or None if nothing was drawn.
        """
        if canvas_size is None:
            return None
        width, height = canvas_size
        if width <= 0 or height <= 0:
            return None

        canvas = self._ensure_canvas(width, height)
        canvas.fill(0)

        if background is not None:
            canvas[:, :, :] = self._scaled_background(background, width, height)
            canvas[:, :, 3] = 255
        else:
            canvas[:, :, :3] = PLACEHOLDER_RGB
            canvas[:, :, 3] = 255

        if source is not None:
            self._draw_video(canvas, source, transform, settings)
        return canvas

    def _draw_video(self, canvas, source, transform, settings) -> None:
        region = visible_region(transform, (canvas.shape[1], canvas.shape[0]))
        try:
            frame = self.sampler.sample(source)
            if frame is None:
                return
            key_frame(frame, settings)
        except Exception as e:
            self.fallback_count += 1
            logger.error("Error processing video frame: %s", type(e).__name__)
            logger.debug("Frame processing detail: %s", e)
            sentry_sdk.add_breadcrumb(
                category="compositor",
                message=f"Keying failed, drawing raw video ({type(e).__name__})",
                level="warning",
            )
            self._draw_raw(canvas, source, transform, region)
            return

        if region is None:
            return
        layer = warp_into_rect(frame, transform, region)
        alpha_over(canvas, layer, region)

    def _draw_raw(self, canvas, source, transform, region) -> None:
        if region is None:
            return
        raw = source.current_frame()
        if raw is None or raw.ndim != 3 or raw.shape[2] < 3:
            return
        layer = warp_into_rect(np.ascontiguousarray(raw[:, :, :3]), transform, region)
        x0, y0, x1, y1 = region
        canvas[y0:y1, x0:x1, :3] = layer
