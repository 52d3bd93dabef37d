"""Chroma key settings: key color, its hex mirror, and tolerance."""

import math
import re
from dataclasses import dataclass, field

_HEX_PATTERN = re.compile(r"^#?([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})$", re.IGNORECASE)

MIN_TOLERANCE = 0
MAX_TOLERANCE = 255


@dataclass(frozen=True)
class RGBColor:
    r: int
    g: int
    b: int

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.r, self.g, self.b)


WHITE = RGBColor(255, 255, 255)


def hex_to_rgb(hex_color: str) -> RGBColor | None:
    """Parse '#RRGGBB' (leading '#' optional, any case). None if malformed."""
    if not isinstance(hex_color, str):
        return None
    match = _HEX_PATTERN.match(hex_color.strip())
    if match is None:
        return None
    return RGBColor(*(int(part, 16) for part in match.groups()))


def rgb_to_hex(r: int, g: int, b: int) -> str:
    """Format channels as uppercase '#RRGGBB'."""
    return "#" + format((1 << 24) + (r << 16) + (g << 8) + b, "x")[1:].upper()


def _valid_channel(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 255


def _coerce_color(value) -> RGBColor | None:
    if isinstance(value, RGBColor):
        channels = value.as_tuple()
    elif isinstance(value, dict):
        channels = (value.get("r"), value.get("g"), value.get("b"))
    elif isinstance(value, (list, tuple)) and len(value) == 3:
        channels = tuple(value)
    else:
        return None
    if not all(_valid_channel(c) for c in channels):
        return None
    return RGBColor(*channels)


def _coerce_tolerance(value) -> int | None:
    """Parse a tolerance, clamping numeric input to [0, 255]."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return max(MIN_TOLERANCE, min(MAX_TOLERANCE, int(number)))


@dataclass(frozen=True)
class ChromaKeySettings:
    """Global key color choice; survives asset changes.

    ``color`` and ``hex_color`` always describe the same value. Use
    :meth:`update` instead of constructing modified copies by hand.
    """

    color: RGBColor = field(default=WHITE)
    hex_color: str = "#FFFFFF"
    tolerance: int = MAX_TOLERANCE

    def update(self, *, hex_color=None, color=None, tolerance=None) -> "ChromaKeySettings":
        """Return settings with the supplied fields applied.

        The supplied color field is authoritative and the other is derived;
        ``hex_color`` wins when both are given. Malformed values are ignored.
        """
        new_color = self.color
        new_hex = self.hex_color

        if hex_color is not None:
            parsed = hex_to_rgb(hex_color)
            if parsed is not None:
                new_color = parsed
                new_hex = rgb_to_hex(*parsed.as_tuple())
        elif color is not None:
            parsed = _coerce_color(color)
            if parsed is not None:
                new_color = parsed
                new_hex = rgb_to_hex(*parsed.as_tuple())

        new_tolerance = self.tolerance
        if tolerance is not None:
            coerced = _coerce_tolerance(tolerance)
            if coerced is not None:
                new_tolerance = coerced

        return ChromaKeySettings(color=new_color, hex_color=new_hex, tolerance=new_tolerance)

    def to_dict(self) -> dict:
        return {
            "color": {"r": self.color.r, "g": self.color.g, "b": self.color.b},
            "hex_color": self.hex_color,
            "tolerance": self.tolerance,
        }
