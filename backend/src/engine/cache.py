"""JPEG encoding for preview transport (ring buffer, base64 responses, AI snapshots)."""

import base64
import io

import cv2
import numpy as np
from PIL import Image

DEFAULT_SLOT_SIZE = 4 * 1024 * 1024  # 4MB
QUALITY_FALLBACK_CHAIN = (95, 85, 75, 65, 50)


def encode_mjpeg(frame: np.ndarray, quality: int = 95) -> bytes:
    """Encode an RGB/RGBA frame to JPEG bytes. Drops alpha (JPEG is RGB only)."""
    img = Image.fromarray(np.ascontiguousarray(frame[:, :, :3]))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def encode_mjpeg_fit(
    frame: np.ndarray,
    max_bytes: int = DEFAULT_SLOT_SIZE,
    quality_chain: tuple[int, ...] = QUALITY_FALLBACK_CHAIN,
) -> tuple[bytes, int]:
    """Encode, stepping quality down until the result fits in ``max_bytes``.

    Returns (jpeg_bytes, quality_used).
    Raises ValueError if the frame exceeds max_bytes at the lowest quality.
    """
    if not quality_chain:
        raise ValueError("quality_chain must not be empty")
    data = b""
    for q in quality_chain:
        data = encode_mjpeg(frame, quality=q)
        if len(data) <= max_bytes:
            return data, q
    raise ValueError(
        f"MJPEG frame ({len(data)} bytes) exceeds {max_bytes} bytes "
        f"even at quality {quality_chain[-1]}"
    )


def decode_mjpeg(data: bytes) -> np.ndarray:
    """Decode JPEG bytes back to an RGB numpy array."""
    img = Image.open(io.BytesIO(data))
    return np.array(img)


def downscale(frame: np.ndarray, max_dim: int) -> np.ndarray:
    """Shrink so neither side exceeds ``max_dim``; never upscales."""
    h, w = frame.shape[:2]
    if max(w, h) <= max_dim:
        return frame
    # Truncate like assigning a float to canvas.width
    if w >= h:
        new_w, new_h = max_dim, max(1, int(h * max_dim / w))
    else:
        new_w, new_h = max(1, int(w * max_dim / h)), max_dim
    return cv2.resize(frame, (new_w, new_h), interpolation=cv2.INTER_AREA)


def encode_jpeg_b64(frame: np.ndarray, quality: int = 85, max_dim: int | None = None) -> str:
    """JPEG + base64 for JSON transport, optionally downscaled first."""
    if max_dim is not None:
        frame = downscale(frame, max_dim)
    return base64.b64encode(encode_mjpeg(frame, quality=quality)).decode("ascii")
