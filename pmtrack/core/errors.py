"""
Exceptions raised by the tracking engine.

Per-frame failures (EmptyPatternError, ImageFetchError) are caught by
TrackSession and turned into keyframe deletions. FormatMismatchError is
fatal and aborts the whole session.
"""


class TrackingError(Exception):
    """Base class for tracking errors."""


class EmptyPatternError(TrackingError):
    """The pattern has no weight: fully masked or outside the reference image."""


class ImageFetchError(TrackingError):
    """A reference or search image could not be obtained for a frame."""

    def __init__(self, time: int, role: str = "search"):
        super().__init__(f"No {role} image available at frame {time}")
        self.time = time
        self.role = role


class FormatMismatchError(TrackingError):
    """Reference and search images differ in bit depth or channel count."""
