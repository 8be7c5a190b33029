"""
Points and rectangles shared by the tracking engine.

Rectangles are half-open: a pixel rectangle (x1, y1, x2, y2) covers the
columns x1..x2-1 and the rows y1..y2-1.
"""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class Point:
    """A 2D point or offset in canonical or pixel coordinates."""
    x: float
    y: float

    def __add__(self, other: "Point") -> "Point":
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: "Point") -> "Point":
        return Point(self.x - other.x, self.y - other.y)

    def rounded(self) -> "Point":
        """Round to the nearest pixel center (halves round up)."""
        return Point(math.floor(self.x + 0.5), math.floor(self.y + 0.5))

    def to_tuple(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle; empty when x2 <= x1 or y2 <= y1."""
    x1: float
    y1: float
    x2: float
    y2: float

    @classmethod
    def from_tuple(cls, values) -> "Rect":
        x1, y1, x2, y2 = values
        return cls(x1, y1, x2, y2)

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    def is_empty(self) -> bool:
        return self.x2 <= self.x1 or self.y2 <= self.y1

    def translated(self, offset: Point) -> "Rect":
        return Rect(
            self.x1 + offset.x,
            self.y1 + offset.y,
            self.x2 + offset.x,
            self.y2 + offset.y,
        )

    def intersect(self, other: "Rect") -> "Rect":
        """
        Intersection of two rectangles.

        The result may be empty; callers test it with is_empty().
        """
        return Rect(
            max(self.x1, other.x1),
            max(self.y1, other.y1),
            min(self.x2, other.x2),
            min(self.y2, other.y2),
        )

    def to_pixels(self) -> "Rect":
        """Smallest enclosing integer rectangle (floor/ceil)."""
        return Rect(
            math.floor(self.x1),
            math.floor(self.y1),
            math.ceil(self.x2),
            math.ceil(self.y2),
        )

    def scaled_x(self, factor: float) -> "Rect":
        """Scale the horizontal edges, used for pixel aspect ratio conversion."""
        return Rect(self.x1 * factor, self.y1, self.x2 * factor, self.y2)

    def contains(self, x: float, y: float) -> bool:
        return self.x1 <= x < self.x2 and self.y1 <= y < self.y2

    def to_tuple(self) -> tuple[float, float, float, float]:
        return (self.x1, self.y1, self.x2, self.y2)
