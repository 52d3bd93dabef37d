"""Background image decoding via Pillow."""

import itertools
import logging
from dataclasses import dataclass, field

import numpy as np
from PIL import Image, UnidentifiedImageError

from assets.loading import AssetLoadError, AssetSlot

logger = logging.getLogger(__name__)

_tokens = itertools.count(1)


@dataclass(frozen=True, eq=False)
class BackgroundImage:
    """Decoded still image. ``pixels`` is RGBA uint8 (H, W, 4)."""

    pixels: np.ndarray
    path: str = ""
    token: int = field(default_factory=lambda: next(_tokens))

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def dimensions(self) -> tuple[int, int]:
        return (self.width, self.height)


def from_array(pixels: np.ndarray, path: str = "") -> BackgroundImage:
    """Wrap an in-memory RGB/RGBA array as a background."""
    if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
        raise ValueError(f"Expected (H, W, 3|4) array, got {pixels.shape}")
    if pixels.shape[2] == 3:
        alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=np.uint8)
        pixels = np.concatenate([pixels.astype(np.uint8), alpha], axis=2)
    return BackgroundImage(pixels=np.ascontiguousarray(pixels, dtype=np.uint8), path=path)


def decode_background(path: str) -> BackgroundImage:
    """Decode an image file to RGBA at its natural size.

    Raises:
        AssetLoadError: If the file is missing, undecodable, or 0x0.
    """
    try:
        with Image.open(path) as img:
            img.load()
            rgba = img.convert("RGBA")
    except FileNotFoundError:
        raise AssetLoadError("Background image not found")
    except (UnidentifiedImageError, OSError) as e:
        raise AssetLoadError(f"Failed to decode background image: {type(e).__name__}")

    if rgba.width <= 0 or rgba.height <= 0:
        raise AssetLoadError("Background image has invalid dimensions (0x0)")

    logger.info("Background decoded: %dx%d", rgba.width, rgba.height)
    return BackgroundImage(pixels=np.asarray(rgba, dtype=np.uint8).copy(), path=path)


def background_slot() -> AssetSlot[BackgroundImage]:
    return AssetSlot("background", decode_background)
