"""Frame sinks: consumers of composited frames."""

import logging
import threading

import numpy as np

from memory.writer import SharedMemoryWriter

logger = logging.getLogger(__name__)


class FrameSink:
    """Receives every composite the render loop produces.

    ``push`` runs on the render thread; implementations must copy the frame
    if they keep it, since the compositor reuses its canvas.
    """

    def push(self, frame: np.ndarray, timestamp: float) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class LatestFrameSink(FrameSink):
    """Keeps a copy of the most recent composite for on-demand preview."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame: np.ndarray | None = None
        self._timestamp = 0.0

    def push(self, frame: np.ndarray, timestamp: float) -> None:
        copy = frame.copy()
        with self._lock:
            self._frame = copy
            self._timestamp = timestamp

    def clear(self) -> None:
        with self._lock:
            self._frame = None

    def latest(self) -> tuple[np.ndarray | None, float]:
        with self._lock:
            return self._frame, self._timestamp


class SharedMemorySink(FrameSink):
    """Streams composites into the MJPEG ring buffer for the UI process."""

    def __init__(self, writer: SharedMemoryWriter, every_nth: int = 1) -> None:
        self.writer = writer
        self.every_nth = max(1, every_nth)
        self._count = 0

    def push(self, frame: np.ndarray, timestamp: float) -> None:
        self._count += 1
        if self._count % self.every_nth:
            return
        self.writer.write_frame(frame)

    def close(self) -> None:
        self.writer.close()
