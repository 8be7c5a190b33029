"""
Collaborator protocols for the tracking engine.

The engine only relies on the interfaces defined here, so hosts can plug
in their own image access, parameter storage and keyframe storage.

Beyond plain sampling and keyframe lookup, the protocols carry what the
numpy engine needs: ImageSampler exposes its dtype, channel count, max
value and a clamped `window` block read, and TrajectoryStore adds
`get_at_or_after` for backward tracking and `has_keyframe` so the frame
tracked from can be pinned.
"""

from typing import Protocol, runtime_checkable

import numpy as np

from pmtrack.core.geometry import Point, Rect


@runtime_checkable
class ImageSampler(Protocol):
    """Read-only random access to pixels inside a bounds rectangle."""

    @property
    def dtype(self) -> np.dtype:
        """Pixel storage type (the bit depth)."""
        ...

    @property
    def components(self) -> int:
        """Number of channels per pixel."""
        ...

    @property
    def max_value(self) -> float:
        """Value of a fully saturated channel for this bit depth."""
        ...

    def bounds(self) -> Rect:
        """Integer pixel rectangle in which samples are defined."""
        ...

    def pixel_aspect_ratio(self) -> float:
        ...

    def sample(self, x: int, y: int) -> np.ndarray | None:
        """Channel values at (x, y), or None outside bounds."""
        ...

    def window(self, x1: int, y1: int, x2: int, y2: int) -> np.ndarray:
        """Float block of a rectangle with nearest-pixel border extension."""
        ...


@runtime_checkable
class ImageProvider(Protocol):
    """Supplies one image per frame time."""

    def fetch(self, time: int) -> ImageSampler | None:
        """Return the image at `time`, or None if it cannot be fetched."""
        ...


@runtime_checkable
class ParameterStore(Protocol):
    """Read-only tracker parameters, keyed by time."""

    def pattern_rect(self, time: int) -> Rect:
        """Pattern rectangle relative to the tracked center."""
        ...

    def search_rect(self, time: int) -> Rect:
        """Search rectangle relative to the tracked center."""
        ...

    def score_kind(self, time: int):
        ...

    def reference_frame_at(self, time: int) -> int | None:
        """Fixed reference frame, or None to track from the adjacent frame."""
        ...

    def center_offset(self, time: int) -> Point:
        ...


@runtime_checkable
class TrajectoryStore(Protocol):
    """Keyframe storage for the tracked center."""

    def has_keyframe(self, time: int) -> bool:
        ...

    def get_at_or_before(self, time: int) -> Point | None:
        ...

    def get_at_or_after(self, time: int) -> Point | None:
        ...

    def set_at(self, time: int, center: Point, score: float) -> None:
        ...

    def delete_at(self, time: int) -> None:
        ...


@runtime_checkable
class CancellationToken(Protocol):

    def is_requested(self) -> bool:
        ...


@runtime_checkable
class ProgressSink(Protocol):

    def report(self, fraction: float) -> bool:
        """Report progress; returning False requests cancellation."""
        ...
