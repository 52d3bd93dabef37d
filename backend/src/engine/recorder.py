"""Recorder: captures the composite stream to a VP9/WebM download.

The recorder is a frame sink. While recording it samples the render loop's
output at a fixed 30 fps, queues the frames, and encodes them on a background
thread into a temporary file. Stopping finalises the container and saves it
as ``video_with_new_background.webm`` in the output directory.
"""

import logging
import os
import queue
import tempfile
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import cv2
import numpy as np
import sentry_sdk

from engine.sinks import FrameSink
from video.writer import VideoWriter

logger = logging.getLogger(__name__)

CAPTURE_FPS = 30
CODEC = "libvpx-vp9"
OUTPUT_FILENAME = "video_with_new_background.webm"
MAX_QUEUED_FRAMES = 90  # 3s at 30fps

_STOP = object()


def default_output_dir() -> str:
    return os.environ.get("BACKDROP_OUTPUT_DIR", str(Path.home() / "Downloads"))


def unique_download_path(directory: str, filename: str = OUTPUT_FILENAME) -> str:
    """Pick ``filename`` or ``name (n).ext`` like a browser download would."""
    base = Path(directory)
    candidate = base / filename
    stem, suffix = os.path.splitext(filename)
    n = 1
    while candidate.exists():
        candidate = base / f"{stem} ({n}){suffix}"
        n += 1
    return str(candidate)


class RecordingStatus(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    SAVED = "saved"
    ERROR = "error"


@dataclass
class RecordingJob:
    """State of one recording session."""

    status: RecordingStatus = RecordingStatus.IDLE
    frames_written: int = 0
    frames_dropped: int = 0
    error: str | None = None
    temp_path: str = ""
    output_path: str = ""
    size: tuple[int, int] | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _queue: queue.Queue = field(default_factory=lambda: queue.Queue(MAX_QUEUED_FRAMES))
    _thread: threading.Thread | None = field(default=None, repr=False)
    _next_due: float | None = None


class Recorder(FrameSink):
    """One recording at a time. ``push`` is called from the render loop."""

    def __init__(self, output_dir: str | None = None, fps: int = CAPTURE_FPS) -> None:
        self.output_dir = output_dir or default_output_dir()
        self.fps = fps
        self._job: RecordingJob | None = None
        self._lock = threading.Lock()

    @property
    def job(self) -> RecordingJob | None:
        return self._job

    @property
    def is_recording(self) -> bool:
        job = self._job
        return job is not None and job.status == RecordingStatus.RECORDING

    def start(self, composite_active: bool = True) -> RecordingJob:
        """Begin capturing.

        Raises:
            RuntimeError: If already recording or the composite is not live.
        """
        with self._lock:
            if self.is_recording:
                raise RuntimeError("Recording already in progress")
            if not composite_active:
                raise RuntimeError("Composite is not active (background and video must be ready)")

            os.makedirs(self.output_dir, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                prefix=".recording_", suffix=".webm", dir=self.output_dir
            )
            os.close(fd)

            job = RecordingJob(temp_path=temp_path)
            thread = threading.Thread(
                target=self._run_encoder, args=(job,), name="recorder", daemon=True
            )
            job._thread = thread
            job.status = RecordingStatus.RECORDING
            self._job = job
            thread.start()
            logger.info("Recording started at %d fps", self.fps)
            return job

    def push(self, frame: np.ndarray, timestamp: float) -> None:
        job = self._job
        if job is None or job.status != RecordingStatus.RECORDING:
            return

        period = 1.0 / self.fps
        if job._next_due is None:
            job._next_due = timestamp
        if timestamp < job._next_due:
            return
        job._next_due += period
        if timestamp - job._next_due > period:
            # Loop stalled; resync rather than emitting a burst
            job._next_due = timestamp + period

        if job.size is None:
            # yuv420p needs even dimensions
            job.size = (max(2, frame.shape[1] // 2 * 2), max(2, frame.shape[0] // 2 * 2))
        width, height = job.size
        if frame.shape[:2] != (height, width):
            captured = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
        else:
            captured = frame.copy()

        try:
            job._queue.put_nowait(captured)
        except queue.Full:
            with job._lock:
                job.frames_dropped += 1

    def _run_encoder(self, job: RecordingJob) -> None:
        writer = None
        try:
            while True:
                item = job._queue.get()
                if item is _STOP:
                    break
                if writer is None:
                    h, w = item.shape[:2]
                    writer = VideoWriter(job.temp_path, w, h, fps=self.fps, codec=CODEC)
                writer.write_frame(item)
                with job._lock:
                    job.frames_written += 1
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Recording encoder failed")
            with job._lock:
                job.status = RecordingStatus.ERROR
                job.error = f"Recording failed: {type(e).__name__}"
            # Drain so stop() never blocks on a full queue
            while True:
                try:
                    if job._queue.get_nowait() is _STOP:
                        break
                except queue.Empty:
                    break
        finally:
            if writer is not None:
                try:
                    writer.close()
                except Exception as e:
                    logger.error("Failed to finalise recording: %s", type(e).__name__)

    def stop(self, timeout: float = 30.0) -> str | None:
        """Finalise and save the recording. Returns the saved path.

        No-op (returns None) when nothing is recording.
        """
        with self._lock:
            job = self._job
            if job is None:
                return None
            if job.status == RecordingStatus.ERROR:
                _remove_quietly(job.temp_path)
                return None
            if job.status != RecordingStatus.RECORDING:
                return None
            with job._lock:
                job.status = RecordingStatus.SAVED

        job._queue.put(_STOP)
        if job._thread is not None:
            job._thread.join(timeout)

        if job.error is not None:
            job.status = RecordingStatus.ERROR
            _remove_quietly(job.temp_path)
            return None

        output_path = unique_download_path(self.output_dir)
        try:
            if not os.path.exists(job.temp_path):
                Path(job.temp_path).touch()
            os.replace(job.temp_path, output_path)
        except OSError as e:
            sentry_sdk.capture_exception(e)
            logger.error("Failed to save recording: %s", type(e).__name__)
            with job._lock:
                job.status = RecordingStatus.ERROR
                job.error = f"Failed to save recording: {type(e).__name__}"
            _remove_quietly(job.temp_path)
            return None

        job.output_path = output_path
        logger.info(
            "Recording saved: %d frames written, %d dropped",
            job.frames_written,
            job.frames_dropped,
        )
        return output_path

    def get_status(self) -> dict:
        """Return serializable status dict."""
        if self._job is None:
            return {
                "status": RecordingStatus.IDLE.value,
                "frames_written": 0,
                "frames_dropped": 0,
            }
        with self._job._lock:
            return {
                "status": self._job.status.value,
                "frames_written": self._job.frames_written,
                "frames_dropped": self._job.frames_dropped,
                "output_path": self._job.output_path,
                "error": self._job.error,
            }

    def close(self) -> None:
        if self.is_recording:
            self.stop()


def _remove_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except OSError:
        pass
