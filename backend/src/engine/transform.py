"""Video transform model: pixel rectangle with percentage views and aspect lock.

The rectangle is stored in background-image pixels. Callers edit it in
percentages of the background canvas; width/height edits are locked to the
video's native aspect ratio.

Position percentages map onto the *movable* range (background minus video
size). When the video is as large or larger than the background along an axis,
that axis is not draggable and the offset is pinned to ``movable / 2``.
"""

import math
from dataclasses import asdict, dataclass

DEFAULT_X = 250
DEFAULT_Y = 500
DEFAULT_WIDTH = 1778
DEFAULT_HEIGHT = 1000

PERCENT_FIELDS = ("lr_pos_percent", "ud_pos_percent", "width_percent", "height_percent")


def js_round(value: float) -> int:
    """Round half up, matching browser ``Math.round`` (not banker's rounding)."""
    return math.floor(value + 0.5)


def _parse_number(value) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


@dataclass(frozen=True)
class VideoTransform:
    x: float = DEFAULT_X
    y: float = DEFAULT_Y
    width: float = DEFAULT_WIDTH
    height: float = DEFAULT_HEIGHT

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TransformPercentages:
    lr: float
    ud: float
    width: float
    height: float

    def to_dict(self) -> dict:
        return {
            "lr": round(self.lr, 1),
            "ud": round(self.ud, 1),
            "width": round(self.width, 1),
            "height": round(self.height, 1),
        }


class TransformModel:
    """Owns the VideoTransform plus the asset facts percentage edits need."""

    def __init__(self, transform: VideoTransform | None = None) -> None:
        self.transform = transform or VideoTransform()
        self.background_size: tuple[int, int] | None = None
        self.aspect_ratio: float | None = None

    @property
    def available(self) -> bool:
        """Percentage views/edits need both background size and aspect ratio."""
        return self.background_size is not None and bool(self.aspect_ratio)

    def set_background_size(self, size: tuple[int, int] | None) -> None:
        self.background_size = size

    def set_video_aspect(self, native_width: int, native_height: int) -> None:
        """Apply new video metadata: keep pixel width, re-derive height."""
        if native_width <= 0 or native_height <= 0:
            self.aspect_ratio = None
            return
        self.aspect_ratio = native_width / native_height
        width = self.transform.width
        self.transform = VideoTransform(
            x=self.transform.x,
            y=self.transform.y,
            width=width,
            height=max(1, js_round(width / self.aspect_ratio)),
        )

    def clear_video_aspect(self) -> None:
        self.aspect_ratio = None

    def set_transform(self, x, y, width, height) -> bool:
        """Replace the rectangle in pixel units. Invalid input is ignored."""
        values = [_parse_number(v) for v in (x, y, width, height)]
        if any(v is None for v in values):
            return False
        nx, ny, nw, nh = values
        if nw <= 0 or nh <= 0:
            return False
        self.transform = VideoTransform(x=nx, y=ny, width=nw, height=nh)
        return True

    def set_percent(self, field: str, value) -> bool:
        """Apply a percentage edit. Returns False when rejected (no mutation)."""
        if not self.available:
            return False
        percent = _parse_number(value)
        if percent is None:
            return False

        bg_width, bg_height = self.background_size
        aspect = self.aspect_ratio
        t = self.transform

        if field == "lr_pos_percent":
            movable = bg_width - t.width
            x = movable / 2 if movable <= 0 else js_round(percent / 100 * movable)
            self.transform = VideoTransform(x=x, y=t.y, width=t.width, height=t.height)
        elif field == "ud_pos_percent":
            movable = bg_height - t.height
            y = movable / 2 if movable <= 0 else js_round(percent / 100 * movable)
            self.transform = VideoTransform(x=t.x, y=y, width=t.width, height=t.height)
        elif field == "width_percent":
            width = max(1, js_round(percent / 100 * bg_width))
            height = max(1, js_round(width / aspect))
            self.transform = VideoTransform(x=t.x, y=t.y, width=width, height=height)
        elif field == "height_percent":
            height = max(1, js_round(percent / 100 * bg_height))
            width = max(1, js_round(height * aspect))
            self.transform = VideoTransform(x=t.x, y=t.y, width=width, height=height)
        else:
            return False
        return True

    def percentages(self) -> TransformPercentages | None:
        """Displayed percentages, or None while unavailable."""
        if not self.available:
            return None
        bg_width, bg_height = self.background_size
        t = self.transform

        movable_w = bg_width - t.width
        lr = 50.0 if movable_w <= 0 else t.x / movable_w * 100
        movable_h = bg_height - t.height
        ud = 50.0 if movable_h <= 0 else t.y / movable_h * 100

        return TransformPercentages(
            lr=max(0.0, min(100.0, lr)),
            ud=max(0.0, min(100.0, ud)),
            width=t.width / bg_width * 100,
            height=t.height / bg_height * 100,
        )
