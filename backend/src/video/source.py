"""Live video source: a looping, muted playback head over a VideoReader.

Plays the role of the hidden ``<video loop muted>`` element: it exposes the
native size, play/pause/seek, and the frame that should be visible right now.
"""

import logging
import math
import threading
import time
from typing import Callable

import av
import numpy as np

from assets.loading import AssetLoadError, AssetSlot
from video.ingest import probe
from video.reader import VideoReader

logger = logging.getLogger(__name__)


class VideoSource:
    def __init__(self, reader: VideoReader, clock: Callable[[], float] = time.monotonic):
        self._reader = reader
        self._clock = clock
        self._lock = threading.Lock()
        # Serialises decode against close(); the render thread may be mid-decode on swap.
        self._decode_lock = threading.Lock()
        self.path = ""
        self.width: int = reader.width
        self.height: int = reader.height
        self.fps: float = reader.fps
        self.frame_count: int = max(1, reader.frame_count)
        self._playing = False
        self._anchor_clock = 0.0
        self._anchor_pos = 0.0
        self._frame: np.ndarray | None = None
        self._frame_index = -1
        self._closed = False

    @classmethod
    def open(cls, path: str, clock: Callable[[], float] = time.monotonic) -> "VideoSource":
        """Open ``path`` for playback.

        Raises:
            AssetLoadError: If the file has no decodable video stream or 0x0 size.
        """
        info = probe(path)
        if not info["ok"]:
            raise AssetLoadError(info["error"])
        if info["width"] <= 0 or info["height"] <= 0:
            raise AssetLoadError("Video has invalid dimensions (0x0)")
        try:
            reader = VideoReader(path)
        except (av.error.FFmpegError, ValueError) as e:
            raise AssetLoadError(f"Failed to open video: {type(e).__name__}")
        source = cls(reader, clock=clock)
        source.path = path
        logger.info(
            "Video opened: %dx%d @ %.2f fps, %d frames",
            source.width,
            source.height,
            source.fps,
            source.frame_count,
        )
        return source

    @property
    def aspect_ratio(self) -> float | None:
        if self.width <= 0 or self.height <= 0:
            return None
        return self.width / self.height

    @property
    def duration_s(self) -> float:
        return self.frame_count / self.fps if self.fps > 0 else 0.0

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def position_s(self) -> float:
        """Current playback position, wrapped to the clip length (looping)."""
        with self._lock:
            return self._position_locked()

    def _position_locked(self) -> float:
        pos = self._anchor_pos
        if self._playing:
            pos += self._clock() - self._anchor_clock
        duration = self.duration_s
        if duration > 0:
            pos %= duration
        return pos

    def play(self) -> None:
        with self._lock:
            if self._playing:
                return
            self._anchor_clock = self._clock()
            self._playing = True

    def pause(self) -> None:
        with self._lock:
            if not self._playing:
                return
            self._anchor_pos = self._position_locked()
            self._playing = False

    def seek(self, time_s: float) -> None:
        with self._lock:
            duration = self.duration_s
            self._anchor_pos = max(0.0, min(float(time_s), duration)) if duration else 0.0
            self._anchor_clock = self._clock()

    @property
    def target_frame_index(self) -> int:
        return math.floor(self.position_s * self.fps) % self.frame_count

    def current_frame(self) -> np.ndarray | None:
        """RGBA frame for the current playback position.

        Decode failures are logged and the last good frame is returned.
        """
        index = self.target_frame_index
        with self._decode_lock:
            if self._closed:
                return None
            if index == self._frame_index and self._frame is not None:
                return self._frame
            return self._decode_locked(index)

    def _decode_locked(self, index: int) -> np.ndarray | None:
        try:
            frame = self._reader.decode_frame(index)
        except IndexError:
            # Container over-reported its length; wrap around at the real end.
            if index > 0:
                logger.debug("Frame %d past end of stream, clamping length", index)
                with self._lock:
                    self.frame_count = index
                return self._decode_first()
            return self._frame
        except av.error.FFmpegError as e:
            logger.warning("Decode failed at frame %d: %s", index, type(e).__name__)
            return self._frame
        self._frame = frame
        self._frame_index = index
        return frame

    def _decode_first(self) -> np.ndarray | None:
        try:
            frame = self._reader.decode_frame(0)
        except (IndexError, av.error.FFmpegError) as e:
            logger.warning("Decode of first frame failed: %s", type(e).__name__)
            return self._frame
        self._frame = frame
        self._frame_index = 0
        return frame

    def info(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "aspect_ratio": self.aspect_ratio,
            "fps": self.fps,
            "frame_count": self.frame_count,
            "duration_s": round(self.duration_s, 6),
            "position_s": round(self.position_s, 6),
            "is_playing": self.is_playing,
        }

    def close(self) -> None:
        with self._decode_lock:
            if self._closed:
                return
            self._closed = True
            self._playing = False
            self._reader.close()


def video_slot() -> AssetSlot[VideoSource]:
    return AssetSlot("video", VideoSource.open)
