"""Color-distance keyer: hard-threshold RGB chroma key.

A pixel is background when its Euclidean RGB distance to the key color is
strictly below the tolerance. Background pixels get alpha 0; every other pixel
keeps its original RGBA. No feathering: edges are binary.

Max distance in RGB space is sqrt(3) * 255 ~= 441.7, so tolerance 255 does not
key out colors opposite the key (black vs a white key stays opaque).
"""

import math

import numpy as np

from engine.chroma import ChromaKeySettings


def color_distance(pixel: tuple[int, int, int], key: tuple[int, int, int]) -> float:
    r, g, b = pixel
    kr, kg, kb = key
    return math.sqrt((r - kr) ** 2 + (g - kg) ** 2 + (b - kb) ** 2)


def is_background(pixel: tuple[int, int, int], key: tuple[int, int, int], tolerance: float) -> bool:
    return color_distance(pixel, key) < tolerance


def background_mask(frame: np.ndarray, key: tuple[int, int, int], tolerance: float) -> np.ndarray:
    """Boolean (H, W) mask of pixels classified as background."""
    rgb = frame[:, :, :3].astype(np.int32)
    diff = rgb - np.asarray(key, dtype=np.int32)
    # float64 sqrt keeps the strict boundary identical to the scalar path
    dist = np.sqrt(np.einsum("ijk,ijk->ij", diff, diff).astype(np.float64))
    return dist < float(tolerance)


def key_frame(
    frame: np.ndarray,
    settings: ChromaKeySettings,
    tolerance: float | None = None,
) -> np.ndarray:
    """Zero the alpha of background pixels in place and return the frame.

    Args:
        frame:     RGBA uint8 (H, W, 4); mutated in place.
        settings:  Key color and tolerance.
        tolerance: Optional override (fractional values allowed).

    Raises:
        ValueError: If the frame is not an RGBA uint8 array.
    """
    if not isinstance(frame, np.ndarray) or frame.ndim != 3 or frame.shape[2] != 4:
        shape = getattr(frame, "shape", None)
        raise ValueError(f"Expected RGBA frame (H, W, 4), got {shape}")
    if frame.dtype != np.uint8:
        raise ValueError(f"Expected uint8 frame, got {frame.dtype}")

    tol = settings.tolerance if tolerance is None else tolerance
    if tol <= 0:
        return frame

    mask = background_mask(frame, settings.color.as_tuple(), tol)
    frame[:, :, 3][mask] = 0
    return frame
