"""
Core module - Geometry, collaborator protocols, images, video and configuration.
"""

from pmtrack.core.geometry import Point, Rect
from pmtrack.core.errors import (
    TrackingError,
    EmptyPatternError,
    ImageFetchError,
    FormatMismatchError,
)
from pmtrack.core.image import ArrayImage, FrameSequence, load_image, to_lab
from pmtrack.core.video import VideoFrameProvider, VideoProperties
from pmtrack.core.config import TrackerConfig, load_config, save_config

__all__ = [
    "Point",
    "Rect",
    "TrackingError",
    "EmptyPatternError",
    "ImageFetchError",
    "FormatMismatchError",
    "ArrayImage",
    "FrameSequence",
    "load_image",
    "to_lab",
    "VideoFrameProvider",
    "VideoProperties",
    "TrackerConfig",
    "load_config",
    "save_config",
]
