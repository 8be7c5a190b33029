"""
Keyframed trajectory of a tracked point.

A Trajectory maps frame times to the tracked center and the score of the
match that produced it. A missing keyframe means the point could not be
tracked on that frame; gaps are never filled in.
"""

import bisect
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from pmtrack.core.geometry import Point
from pmtrack.tracking.track_io import (
    read_crv_file,
    read_track_csv,
    write_crv_file,
    write_track_csv,
)


@dataclass(frozen=True)
class Keyframe:
    """One tracked position."""
    time: int
    center: Point
    score: float = 0.0


class Trajectory:
    """
    Time-ordered keyframe store implementing the TrajectoryStore protocol.

    Example:
        >>> traj = Trajectory()
        >>> traj.set_at(1, Point(100.0, 50.0))
        >>> traj.get_at_or_before(5)
        Point(x=100.0, y=50.0)
    """

    def __init__(self, keyframes: dict[int, Point] | None = None):
        self._keyframes: dict[int, Keyframe] = {}
        self._times: list[int] = []
        for time, center in (keyframes or {}).items():
            self.set_at(time, center)

    def set_at(self, time: int, center: Point, score: float = 0.0) -> None:
        """Create or overwrite the keyframe at `time`."""
        if time not in self._keyframes:
            bisect.insort(self._times, time)
        self._keyframes[time] = Keyframe(time, center, score)

    def delete_at(self, time: int) -> None:
        """Remove the keyframe at `time` if there is one."""
        if self._keyframes.pop(time, None) is not None:
            self._times.pop(bisect.bisect_left(self._times, time))

    def get(self, time: int) -> Keyframe | None:
        return self._keyframes.get(time)

    def has_keyframe(self, time: int) -> bool:
        return time in self._keyframes

    def get_at_or_before(self, time: int) -> Point | None:
        """Center of the latest keyframe at or before `time`."""
        index = bisect.bisect_right(self._times, time)
        if index == 0:
            return None
        return self._keyframes[self._times[index - 1]].center

    def get_at_or_after(self, time: int) -> Point | None:
        """Center of the earliest keyframe at or after `time`."""
        index = bisect.bisect_left(self._times, time)
        if index == len(self._times):
            return None
        return self._keyframes[self._times[index]].center

    @property
    def times(self) -> list[int]:
        return list(self._times)

    @property
    def frame_range(self) -> tuple[int, int] | None:
        if not self._times:
            return None
        return (self._times[0], self._times[-1])

    def gaps(self) -> list[int]:
        """Frames without a keyframe between the first and last keyframe."""
        if not self._times:
            return []
        first, last = self._times[0], self._times[-1]
        return [t for t in range(first, last + 1) if t not in self._keyframes]

    def to_dict(self) -> dict[int, tuple[float, float]]:
        """Frame -> (x, y) mapping, as used by the .crv writers."""
        return {t: self._keyframes[t].center.to_tuple() for t in self._times}

    @classmethod
    def from_crv(cls, path: str | Path) -> "Trajectory":
        """Load keyframes from a .crv file."""
        return cls({frame: Point(x, y) for frame, (x, y) in read_crv_file(path).items()})

    def to_crv(self, path: str | Path) -> None:
        """Write keyframes to a .crv file."""
        write_crv_file(path, self.to_dict())

    @classmethod
    def from_csv(cls, path: str | Path) -> "Trajectory":
        """Load keyframes and scores from a frame,x,y,score CSV file."""
        traj = cls()
        for frame, x, y, score in read_track_csv(path):
            traj.set_at(frame, Point(x, y), score)
        return traj

    def to_csv(self, path: str | Path) -> None:
        """Write keyframes and scores to a CSV file."""
        write_track_csv(
            path,
            [(k.time, k.center.x, k.center.y, k.score) for k in self],
        )

    def __contains__(self, time: int) -> bool:
        return self.has_keyframe(time)

    def __iter__(self) -> Iterator[Keyframe]:
        for time in self._times:
            yield self._keyframes[time]

    def __len__(self) -> int:
        return len(self._keyframes)

    def __repr__(self) -> str:
        return f"Trajectory({len(self)} keyframes, range={self.frame_range})"
