"""Frame sampler: copies the current video frame into a native-size buffer."""

import logging

import numpy as np

logger = logging.getLogger(__name__)


class FrameSampler:
    """Owns the offscreen RGBA buffer the keyer works on.

    The buffer always matches the source's native resolution, independent of
    the size the frame is later drawn at. It is reallocated when the native
    resolution changes (e.g. after a new video is loaded).
    """

    def __init__(self) -> None:
        self._buffer: np.ndarray | None = None

    @property
    def buffer_shape(self) -> tuple[int, ...] | None:
        return None if self._buffer is None else self._buffer.shape

    def reset(self) -> None:
        self._buffer = None

    def sample(self, source) -> np.ndarray | None:
        """Copy ``source.current_frame()`` into the buffer.

        ``source`` exposes native ``width``/``height`` and ``current_frame()``
        returning an RGBA uint8 array or None. Returns None (no error) while
        the source reports a zero dimension or has no decoded frame yet.

        Raises:
            ValueError: If the decoded frame does not match the native size.
        """
        width = int(source.width or 0)
        height = int(source.height or 0)
        if width <= 0 or height <= 0:
            return None

        frame = source.current_frame()
        if frame is None:
            return None

        if self._buffer is None or self._buffer.shape != (height, width, 4):
            logger.debug("Sampler buffer resized to %dx%d", width, height)
            self._buffer = np.zeros((height, width, 4), dtype=np.uint8)

        if frame.shape[:2] != (height, width):
            raise ValueError(
                f"Decoded frame {frame.shape[1]}x{frame.shape[0]} does not match "
                f"native size {width}x{height}"
            )

        if frame.shape[2] == 4:
            np.copyto(self._buffer, frame)
        else:
            self._buffer[:, :, :3] = frame[:, :, :3]
            self._buffer[:, :, 3] = 255
        return self._buffer
