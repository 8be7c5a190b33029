"""
Pattern extraction.

A Pattern is the weighted patch of the reference image that the search
tries to find again in the next frame. Offsets are stored relative to
the integer pixel center the pattern was extracted around.
"""

import logging
from dataclasses import dataclass

import numpy as np

from pmtrack.core.base import ImageSampler
from pmtrack.core.errors import EmptyPatternError
from pmtrack.core.geometry import Point, Rect

logger = logging.getLogger(__name__)

# Only color channels are compared; a fourth (alpha) channel is ignored
MAX_SCORE_COMPONENTS = 3


@dataclass(frozen=True)
class Pattern:
    """
    Immutable reference patch.

    Attributes:
        center: Integer pixel center in the reference image
        rect: Pixel rectangle relative to `center` covered by the patch
        samples: Channel values, shape (rect.height, rect.width, C)
        weights: Per-pixel weights in [0, 1], shape (rect.height, rect.width)
        total_weight: Sum of `weights`, always > 0
    """
    center: Point
    rect: Rect
    samples: np.ndarray
    weights: np.ndarray
    total_weight: float

    @property
    def score_components(self) -> int:
        return min(self.samples.shape[2], MAX_SCORE_COMPONENTS)

    @property
    def color_samples(self) -> np.ndarray:
        """Samples restricted to the channels that take part in scoring."""
        return self.samples[:, :, :self.score_components]

    @property
    def size(self) -> tuple[int, int]:
        """Pattern (width, height) in pixels."""
        return (int(self.rect.width), int(self.rect.height))


def pattern_bounds(center: Point, pattern_rect: Rect) -> Rect:
    """
    Absolute pixel rectangle of a pattern around `center`.

    The rectangle is made at least 2 pixels wide and high before being
    rounded outward to whole pixels.
    """
    x1 = center.x + pattern_rect.x1
    x2 = center.x + pattern_rect.x2
    y1 = center.y + pattern_rect.y1
    y2 = center.y + pattern_rect.y2
    if x2 < x1 + 2:
        x1 = (x1 + x2) / 2 - 1
        x2 = x1 + 2
    if y2 < y1 + 2:
        y1 = (y1 + y2) / 2 - 1
        y2 = y1 + 2
    return Rect(x1, y1, x2, y2).to_pixels()


def _defined(bounds: Rect, rect: Rect) -> np.ndarray:
    """Boolean (H, W) array telling which pixels of `rect` lie in `bounds`."""
    xs = np.arange(int(rect.x1), int(rect.x2))
    ys = np.arange(int(rect.y1), int(rect.y2))
    inside_x = (xs >= bounds.x1) & (xs < bounds.x2)
    inside_y = (ys >= bounds.y1) & (ys < bounds.y2)
    return inside_y[:, np.newaxis] & inside_x[np.newaxis, :]


def _mask_weights(mask: ImageSampler, rect: Rect) -> np.ndarray:
    """Mask values over `rect` normalized to [0, 1]; zero outside the mask."""
    block = mask.window(int(rect.x1), int(rect.y1), int(rect.x2), int(rect.y2))
    # a mask's coverage lives in its last channel (alpha for RGBA)
    values = np.clip(block[:, :, -1] / mask.max_value, 0.0, 1.0)
    return np.where(_defined(mask.bounds(), rect), values, 0.0)


def extract_pattern(
    ref: ImageSampler,
    center: Point,
    pattern_rect: Rect,
    mask: ImageSampler | None = None,
) -> Pattern:
    """
    Build the Pattern to track from a reference image.

    Args:
        ref: Reference image
        center: Pattern center in pixel coordinates (may be fractional)
        pattern_rect: Pattern rectangle in pixels, relative to `center`
        mask: Optional weighting image; its values scale each pixel's weight

    Returns:
        The extracted Pattern

    Raises:
        EmptyPatternError: If the pattern misses the reference image or
            every pixel has zero weight
    """
    center_i = center.rounded()
    rect = pattern_bounds(center, pattern_rect).intersect(ref.bounds())
    if rect.is_empty():
        raise EmptyPatternError(f"Pattern around {center.to_tuple()} is outside the reference image")

    defined = _defined(ref.bounds(), rect)
    block = ref.window(int(rect.x1), int(rect.y1), int(rect.x2), int(rect.y2))
    samples = np.where(defined[:, :, np.newaxis], block, 0.0)

    if mask is None:
        weights = defined.astype(np.float64)
    else:
        weights = np.where(defined, _mask_weights(mask, rect), 0.0)

    total_weight = float(weights.sum())
    if total_weight <= 0:
        raise EmptyPatternError(f"Pattern around {center.to_tuple()} has no weight")

    samples.setflags(write=False)
    weights.setflags(write=False)
    relative = rect.translated(Point(-center_i.x, -center_i.y))
    logger.debug(
        "Extracted %dx%d pattern at %s (weight %.1f)",
        relative.width, relative.height, center_i.to_tuple(), total_weight,
    )
    return Pattern(
        center=center_i,
        rect=relative,
        samples=samples,
        weights=weights,
        total_weight=total_weight,
    )
