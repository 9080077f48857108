"""Core vision data types shared across the segment pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from segcrop.errors import ValidationError


@dataclass(frozen=True)
class Rect:
    """Axis-aligned integer rectangle in working image coordinates.

    Working coordinates have their origin at the bottom-left corner of the
    image with y growing upwards. Raster buffers (numpy, Pillow) are
    top-left/row-major; see `to_raster_box` for the inverse mapping.

    Attributes:
        x, y: Bottom-left corner.
        width, height: Extent in pixels (may be zero after an empty intersection).
    """

    x: int
    y: int
    width: int
    height: int

    @classmethod
    def of_size(cls, size: tuple[int, int]) -> Rect:
        """Return the full extent of an image of `size` (width, height)."""
        w, h = size
        return cls(0, 0, int(w), int(h))

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def inset(self, d: int) -> Rect:
        """Shrink by `d` on every side (negative `d` grows)."""
        return Rect(self.x + d, self.y + d, self.width - 2 * d, self.height - 2 * d)

    def intersection(self, other: Rect) -> Rect:
        """Return the overlap of two rectangles (zero-size when disjoint)."""
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.x + self.width, other.x + other.width)
        y2 = min(self.y + self.height, other.y + other.height)
        if x2 <= x1 or y2 <= y1:
            return Rect(x1, y1, 0, 0)
        return Rect(x1, y1, x2 - x1, y2 - y1)

    def contains(self, other: Rect) -> bool:
        return (
            other.x >= self.x
            and other.y >= self.y
            and other.x + other.width <= self.x + self.width
            and other.y + other.height <= self.y + self.height
        )

    def to_raster_box(self, raster_height: int) -> tuple[int, int, int, int]:
        """Map to a Pillow (left, upper, right, lower) box on a raster of `raster_height` rows."""
        top = raster_height - (self.y + self.height)
        return self.x, top, self.x + self.width, top + self.height

    def as_list(self) -> list[int]:
        return [self.x, self.y, self.width, self.height]


class PointCategory(IntEnum):
    """Prompt category as understood by SAM-style point decoders."""

    BACKGROUND = 0
    FOREGROUND = 1


@dataclass(frozen=True)
class PointPrompt:
    """A point prompt in original image pixel space (top-left origin)."""

    x: float
    y: float
    category: PointCategory


def parse_point(raw: str) -> tuple[float, float]:
    """Parse an 'x,y' string into a coordinate pair."""
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 2:
        raise ValidationError(f"Invalid point {raw!r}; expected 'x,y'.")
    try:
        return float(parts[0]), float(parts[1])
    except ValueError as e:
        raise ValidationError(f"Invalid point {raw!r}; expected numeric 'x,y'.") from e


def parse_category(raw: str | int) -> PointCategory:
    """Parse a point type (0=background, 1=foreground)."""
    try:
        return PointCategory(int(raw))
    except ValueError as e:
        raise ValidationError(f"Invalid point type {raw!r}; expected 0 or 1.") from e


def build_prompts(
    points: list[tuple[float, float]],
    types: list[PointCategory],
) -> list[PointPrompt]:
    """Zip parallel point/type lists into prompts, preserving order.

    Raises:
        ValidationError: If the two lists differ in length.
    """
    if len(points) != len(types):
        raise ValidationError(
            f"points and types count must match (got {len(points)} points, {len(types)} types)."
        )
    return [PointPrompt(x=float(x), y=float(y), category=t) for (x, y), t in zip(points, types)]
