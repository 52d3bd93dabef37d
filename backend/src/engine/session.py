"""Editing session: the single mutable state the render loop reads from.

All mutation goes through the setters below (called from the command thread
and from asset-load callbacks). The render thread only ever sees immutable
:class:`SessionSnapshot` values taken once per tick.
"""

import logging
import threading
from dataclasses import dataclass

from assets.background import BackgroundImage, background_slot
from assets.loading import AssetSlot, AssetState
from engine.chroma import ChromaKeySettings
from engine.transform import TransformModel, TransformPercentages, VideoTransform
from video.source import VideoSource, video_slot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionSnapshot:
    background: BackgroundImage | None
    background_size: tuple[int, int] | None
    video: VideoSource | None
    transform: VideoTransform
    chroma: ChromaKeySettings

    @property
    def composite_ready(self) -> bool:
        return self.background is not None and self.video is not None


class Session:
    def __init__(
        self,
        background: AssetSlot[BackgroundImage] | None = None,
        video: AssetSlot[VideoSource] | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self.background = background or background_slot()
        self.video = video or video_slot()
        self._transform = TransformModel()
        self._chroma = ChromaKeySettings()
        self.background.add_listener(self._on_background_settled)
        self.video.add_listener(self._on_video_settled)

    # --- assets ---

    def load_background(self, path: str) -> None:
        """Start decoding a new background. Dimensions are unknown until it lands."""
        with self._lock:
            self._transform.set_background_size(None)
            self.background.load(path)

    def load_video(self, path: str) -> None:
        """Start opening a new video. Aspect ratio is unknown until it lands."""
        with self._lock:
            self._transform.clear_video_aspect()
            self.video.load(path)

    def _on_background_settled(
        self, state: AssetState, image: BackgroundImage | None, generation: int
    ) -> None:
        with self._lock:
            # A newer load already reset the size; keep it unknown
            if not self.background.is_current(generation):
                return
            if state == AssetState.READY and image is not None:
                self._transform.set_background_size(image.dimensions)
            else:
                self._transform.set_background_size(None)

    def _on_video_settled(
        self, state: AssetState, source: VideoSource | None, generation: int
    ) -> None:
        with self._lock:
            if not self.video.is_current(generation):
                return
            if state == AssetState.READY and source is not None:
                self._transform.set_video_aspect(source.width, source.height)
            else:
                self._transform.clear_video_aspect()
        if state == AssetState.READY and source is not None:
            source.play()

    # --- transform ---

    @property
    def transform(self) -> VideoTransform:
        with self._lock:
            return self._transform.transform

    @property
    def background_size(self) -> tuple[int, int] | None:
        with self._lock:
            return self._transform.background_size

    @property
    def aspect_ratio(self) -> float | None:
        with self._lock:
            return self._transform.aspect_ratio

    def set_transform(self, x, y, width, height) -> bool:
        with self._lock:
            return self._transform.set_transform(x, y, width, height)

    def set_transform_percent(self, field: str, value) -> bool:
        with self._lock:
            return self._transform.set_percent(field, value)

    def transform_percentages(self) -> TransformPercentages | None:
        with self._lock:
            return self._transform.percentages()

    # --- chroma key ---

    @property
    def chroma(self) -> ChromaKeySettings:
        with self._lock:
            return self._chroma

    def update_chroma_key(self, *, hex_color=None, color=None, tolerance=None) -> ChromaKeySettings:
        with self._lock:
            self._chroma = self._chroma.update(
                hex_color=hex_color, color=color, tolerance=tolerance
            )
            return self._chroma

    # --- render loop ---

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                background=self.background.value,
                background_size=self._transform.background_size,
                video=self.video.value,
                transform=self._transform.transform,
                chroma=self._chroma,
            )

    def describe(self) -> dict:
        with self._lock:
            percentages = self._transform.percentages()
            video = self.video.value
            return {
                "background": {
                    "state": self.background.state.value,
                    "dimensions": list(self._transform.background_size)
                    if self._transform.background_size
                    else None,
                    "error": self.background.error,
                },
                "video": {
                    "state": self.video.state.value,
                    "aspect_ratio": self._transform.aspect_ratio,
                    "info": video.info() if video is not None else None,
                    "error": self.video.error,
                },
                "transform": self._transform.transform.to_dict(),
                "percentages": percentages.to_dict() if percentages else None,
                "chroma": self._chroma.to_dict(),
            }

    def close(self) -> None:
        self.background.clear()
        self.video.clear()
