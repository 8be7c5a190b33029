"""
Video input for the tracking engine.

VideoFrameProvider gives random access to the frames of a video file as
ArrayImages, which is what TrackSession needs to fetch reference and
search frames. Frames are numbered from 1.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path

import cv2

from pmtrack.core.image import ArrayImage

logger = logging.getLogger(__name__)


@dataclass
class VideoProperties:
    """Properties of a video file."""
    width: int
    height: int
    fps: float
    frame_count: int

    @classmethod
    def from_capture(cls, cap: cv2.VideoCapture) -> "VideoProperties":
        """Create VideoProperties from an OpenCV VideoCapture."""
        return cls(
            width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            fps=cap.get(cv2.CAP_PROP_FPS),
            frame_count=int(cap.get(cv2.CAP_PROP_FRAME_COUNT)),
        )


class VideoFrameProvider:
    """
    ImageProvider over a video file.

    Decoded frames are converted from OpenCV's BGR order to RGB and kept
    in a small LRU cache, since consecutive tracking steps reuse frames.

    Example:
        with VideoFrameProvider("input.mp4") as frames:
            image = frames.fetch(100)
    """

    def __init__(
        self,
        path: str | Path,
        cache_size: int = 4,
        pixel_aspect_ratio: float = 1.0,
    ):
        """
        Initialize the provider.

        Args:
            path: Path to video file
            cache_size: Number of decoded frames to keep
            pixel_aspect_ratio: Pixel aspect ratio reported by the frames
        """
        self.path = Path(path)
        self.cache_size = max(1, cache_size)
        self.pixel_aspect_ratio = pixel_aspect_ratio

        self._cap: cv2.VideoCapture | None = None
        self._props: VideoProperties | None = None
        self._next_frame = 1
        self._cache: OrderedDict[int, ArrayImage] = OrderedDict()

    def open(self) -> "VideoFrameProvider":
        """Open the video file."""
        if not self.path.exists():
            raise FileNotFoundError(f"Video file not found: {self.path}")

        self._cap = cv2.VideoCapture(str(self.path))
        if not self._cap.isOpened():
            raise RuntimeError(f"Failed to open video: {self.path}")

        self._props = VideoProperties.from_capture(self._cap)
        self._next_frame = 1
        return self

    def close(self) -> None:
        """Close the video file."""
        if self._cap:
            self._cap.release()
            self._cap = None
        self._cache.clear()

    @property
    def properties(self) -> VideoProperties:
        """Get video properties."""
        if self._props is None:
            raise RuntimeError("Video not opened. Call open() first.")
        return self._props

    @property
    def frame_count(self) -> int:
        return self.properties.frame_count

    def _decode(self, time: int) -> ArrayImage | None:
        if time != self._next_frame:
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, time - 1)
        ret, frame = self._cap.read()
        if not ret:
            # position is unknown after a failed read
            self._next_frame = -1
            return None
        self._next_frame = time + 1
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return ArrayImage(rgb, pixel_aspect_ratio=self.pixel_aspect_ratio)

    def fetch(self, time: int) -> ArrayImage | None:
        """
        Get frame `time` (1-indexed).

        Returns:
            The frame, or None if it is outside the video or fails to decode
        """
        if self._cap is None:
            self.open()
        if time in self._cache:
            self._cache.move_to_end(time)
            return self._cache[time]
        if time < 1 or time > self.frame_count:
            return None

        image = self._decode(time)
        if image is None:
            logger.warning("Failed to decode frame %d of %s", time, self.path)
            return None

        self._cache[time] = image
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return image

    def __enter__(self) -> "VideoFrameProvider":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

