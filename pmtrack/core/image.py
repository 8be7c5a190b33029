"""
In-memory images for the tracking engine.

ArrayImage wraps a numpy array and implements the ImageSampler protocol.
FrameSequence maps frame times to images and implements ImageProvider.
"""

from typing import Mapping

import cv2
import numpy as np

from pmtrack.core.geometry import Rect


# Maximum channel value per integer bit depth; float images are in [0, 1]
INTEGER_MAX_VALUES = {
    np.dtype(np.uint8): 255.0,
    np.dtype(np.uint16): 65535.0,
}

SUPPORTED_COMPONENTS = (1, 3, 4)


class ArrayImage:
    """
    A numpy-backed image with an integer origin.

    Pixel (x, y) is stored at data[y - origin_y, x - origin_x]. Arrays of
    shape (H, W) are treated as single-channel images.

    Example:
        >>> img = ArrayImage(np.zeros((480, 640, 3), np.uint8))
        >>> img.bounds()
        Rect(x1=0, y1=0, x2=640, y2=480)
    """

    def __init__(
        self,
        data: np.ndarray,
        origin: tuple[int, int] = (0, 0),
        pixel_aspect_ratio: float = 1.0,
    ):
        data = np.asarray(data)
        if data.ndim == 2:
            data = data[:, :, np.newaxis]
        if data.ndim != 3:
            raise ValueError(f"Expected a 2D or 3D array, got shape {data.shape}")
        if data.shape[0] == 0 or data.shape[1] == 0:
            raise ValueError("Image has no pixels")
        if data.dtype.kind != "f" and data.dtype not in INTEGER_MAX_VALUES:
            raise ValueError(f"Unsupported pixel type: {data.dtype}")
        if pixel_aspect_ratio <= 0:
            raise ValueError("Pixel aspect ratio must be positive")

        self.data = data
        self.origin = (int(origin[0]), int(origin[1]))
        self._par = float(pixel_aspect_ratio)

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def components(self) -> int:
        return self.data.shape[2]

    @property
    def max_value(self) -> float:
        return INTEGER_MAX_VALUES.get(self.data.dtype, 1.0)

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    def bounds(self) -> Rect:
        ox, oy = self.origin
        return Rect(ox, oy, ox + self.width, oy + self.height)

    def pixel_aspect_ratio(self) -> float:
        return self._par

    def sample(self, x: int, y: int) -> np.ndarray | None:
        """Channel values at (x, y), or None outside the image."""
        col = x - self.origin[0]
        row = y - self.origin[1]
        if 0 <= col < self.width and 0 <= row < self.height:
            return self.data[row, col]
        return None

    def window(self, x1: int, y1: int, x2: int, y2: int) -> np.ndarray:
        """
        Extract a float64 block covering [x1, x2) x [y1, y2).

        Coordinates outside the image are clamped to the nearest edge
        pixel, so the block always has shape (y2 - y1, x2 - x1, C).
        """
        cols = np.clip(np.arange(x1, x2) - self.origin[0], 0, self.width - 1)
        rows = np.clip(np.arange(y1, y2) - self.origin[1], 0, self.height - 1)
        return self.data[np.ix_(rows, cols)].astype(np.float64)

    def __repr__(self) -> str:
        return (
            f"ArrayImage({self.width}x{self.height}x{self.components}, "
            f"dtype={self.dtype}, origin={self.origin})"
        )


def to_lab(image: ArrayImage) -> ArrayImage:
    """
    Convert an RGB(A) image to CIE L*a*b*.

    Alpha is dropped. Single-channel images are returned unchanged since
    they carry no chromaticity.
    """
    if image.components < 3:
        return image
    rgb = image.data[:, :, :3].astype(np.float32) / np.float32(image.max_value)
    lab = cv2.cvtColor(rgb, cv2.COLOR_RGB2Lab)
    return ArrayImage(lab, origin=image.origin, pixel_aspect_ratio=image.pixel_aspect_ratio())


class FrameSequence:
    """
    ImageProvider over images held in memory.

    A frame mapped to None, or missing from the mapping, fails to fetch.

    Example:
        >>> frames = FrameSequence({1: frame1, 2: frame2})
        >>> frames.fetch(2)
    """

    def __init__(
        self,
        frames: Mapping[int, np.ndarray | ArrayImage | None],
        pixel_aspect_ratio: float = 1.0,
    ):
        self._frames: dict[int, ArrayImage | None] = {}
        for time, frame in frames.items():
            if frame is None or isinstance(frame, ArrayImage):
                self._frames[time] = frame
            else:
                self._frames[time] = ArrayImage(frame, pixel_aspect_ratio=pixel_aspect_ratio)

    def fetch(self, time: int) -> ArrayImage | None:
        return self._frames.get(time)

    def __len__(self) -> int:
        return len(self._frames)


def load_image(path, pixel_aspect_ratio: float = 1.0) -> ArrayImage:
    """
    Read an image file (e.g. a mask) with OpenCV.

    Color images are reordered from BGR(A) to RGB(A); bit depth is kept.

    Raises:
        FileNotFoundError: If the file cannot be read
    """
    data = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if data is None:
        raise FileNotFoundError(f"Failed to load image: {path}")
    if data.ndim == 3 and data.shape[2] == 3:
        data = cv2.cvtColor(data, cv2.COLOR_BGR2RGB)
    elif data.ndim == 3 and data.shape[2] == 4:
        data = cv2.cvtColor(data, cv2.COLOR_BGRA2RGBA)
    return ArrayImage(data, pixel_aspect_ratio=pixel_aspect_ratio)
