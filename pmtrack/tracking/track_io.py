"""
Trajectory file I/O.

Trajectories are stored either in the .crv format (one `FRAME [[ x, y ]]`
line per keyframe) or as CSV with a `frame,x,y,score` header. Untracked
frames are simply absent from both formats.
"""

import csv
import re
from pathlib import Path
from typing import Iterator


# Pattern for parsing CRV format: FRAME [[ x, y ]]
CRV_PATTERN = re.compile(r'(-?\d+)\s*\[\[\s*(-?[\d.eE+-]+)\s*,\s*(-?[\d.eE+-]+)\s*\]\]')

# Pattern for parsing simple format: FRAME x y
SIMPLE_PATTERN = re.compile(r'(-?\d+)\s+(-?[\d.eE+-]+)\s+(-?[\d.eE+-]+)')

CSV_HEADER = ["frame", "x", "y", "score"]


def parse_track_line(line: str) -> tuple[int, float, float] | None:
    """
    Parse a single line of tracking data.

    Supports two formats:
        - CRV format: FRAME [[ x, y ]]
        - Simple format: FRAME x y

    Args:
        line: Line of text to parse

    Returns:
        Tuple of (frame_number, x, y) or None if line doesn't match
    """
    line = line.strip()
    if not line:
        return None

    match = CRV_PATTERN.match(line) or SIMPLE_PATTERN.match(line)
    if match:
        return (
            int(match.group(1)),
            float(match.group(2)),
            float(match.group(3)),
        )

    return None


def iter_crv_file(path: str | Path) -> Iterator[tuple[int, float, float]]:
    """
    Iterate over tracking data from a .crv file.

    Args:
        path: Path to the .crv file

    Yields:
        Tuples of (frame_number, x, y)
    """
    path = Path(path)
    with open(path, 'r') as f:
        for line in f:
            parsed = parse_track_line(line)
            if parsed:
                yield parsed


def read_crv_file(path: str | Path) -> dict[int, tuple[float, float]]:
    """
    Read tracking data from a .crv file.

    Args:
        path: Path to the .crv file

    Returns:
        Dictionary mapping frame numbers to (x, y) coordinates

    Example:
        >>> data = read_crv_file("track01.crv")
        >>> x, y = data[100]
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Track file not found: {path}")

    return {frame: (x, y) for frame, x, y in iter_crv_file(path)}


def write_crv_file(
    path: str | Path,
    data: dict[int, tuple[float, float]] | list[tuple[int, float, float]],
) -> None:
    """
    Write tracking data to a .crv file.

    Args:
        path: Output path for the .crv file
        data: Either a dict mapping frame -> (x, y) or a list of (frame, x, y) tuples

    Example:
        >>> write_crv_file("track01.crv", {100: (320.5, 240.25), 101: (321.0, 240.5)})
    """
    path = Path(path)

    if isinstance(data, list):
        items = sorted(data, key=lambda x: x[0])
    else:
        items = [(f, xy[0], xy[1]) for f, xy in sorted(data.items())]

    with open(path, 'w') as f:
        for frame, x, y in items:
            f.write(f"{frame} [[ {x}, {y}]]\n")


def write_track_csv(
    path: str | Path,
    rows: list[tuple[int, float, float, float]],
) -> None:
    """
    Write (frame, x, y, score) rows to a CSV file, sorted by frame.

    Args:
        path: Output path for the CSV file
        rows: Keyframe rows
    """
    with open(path, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for frame, x, y, score in sorted(rows, key=lambda r: r[0]):
            writer.writerow([frame, x, y, score])


def read_track_csv(path: str | Path) -> list[tuple[int, float, float, float]]:
    """
    Read rows written by write_track_csv.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the header is not frame,x,y,score
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Track file not found: {path}")

    with open(path, 'r', newline='') as f:
        reader = csv.DictReader(f)
        if reader.fieldnames != CSV_HEADER:
            raise ValueError(f"Unexpected CSV header in {path}: {reader.fieldnames}")
        return [
            (int(row["frame"]), float(row["x"]), float(row["y"]), float(row["score"]))
            for row in reader
        ]
