"""
Frame-range tracking sessions.

TrackSession advances a point's Trajectory one frame at a time: each step
extracts the pattern from a reference frame, searches for it in the next
frame, refines the match to sub-pixel precision and writes a keyframe.
Frames that cannot be tracked lose their keyframe; the session carries on
from the last successful position.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from pmtrack.core.base import (
    CancellationToken,
    ImageProvider,
    ImageSampler,
    ParameterStore,
    ProgressSink,
    TrajectoryStore,
)
from pmtrack.core.errors import EmptyPatternError, FormatMismatchError, ImageFetchError
from pmtrack.core.geometry import Point
from pmtrack.core.image import SUPPORTED_COMPONENTS, to_lab
from pmtrack.tracking.pattern import extract_pattern
from pmtrack.tracking.scoring import ScoreFunction, get_score_function
from pmtrack.tracking.search import SearchReducer, search_bounds
from pmtrack.tracking.subpixel import refine_candidate

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle of a TrackSession."""
    IDLE = "idle"
    STEPPING = "stepping"
    DONE = "done"
    CANCELLED = "cancelled"
    FATAL = "fatal"


class StepStatus(Enum):
    TRACKED = "tracked"
    LOST = "lost"
    CANCELLED = "cancelled"


@dataclass
class StepResult:
    """Outcome of tracking one frame."""
    time: int
    reference_time: int
    status: StepStatus
    center: Point | None = None
    score: float | None = None
    subpixel: tuple[float, float] | None = None
    reason: str = ""

    @property
    def tracked(self) -> bool:
        return self.status is StepStatus.TRACKED


@dataclass
class SessionResult:
    """Summary of a TrackSession run."""
    state: SessionState
    first: int
    last: int
    steps: int
    total: int
    tracked: list[int] = field(default_factory=list)
    lost: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "first": self.first,
            "last": self.last,
            "steps": self.steps,
            "total": self.total,
            "tracked": len(self.tracked),
            "lost": list(self.lost),
        }


class CancelFlag:
    """
    Thread-safe cancellation token.

    Example:
        >>> flag = CancelFlag()
        >>> session = TrackSession(frames, trajectory, config, cancel=flag)
        >>> flag.request()  # from another thread
    """

    def __init__(self):
        self._event = threading.Event()

    def request(self) -> None:
        self._event.set()

    def is_requested(self) -> bool:
        return self._event.is_set()


ProgressCallback = Callable[[float], bool]


class TrackSession:
    """
    Tracks one point over a range of frames.

    Attributes:
        state: Current SessionState
        last_result: SessionResult of the most recent run, if any

    Example:
        >>> trajectory = Trajectory({1: Point(320.0, 240.0)})
        >>> session = TrackSession(frames, trajectory, TrackerConfig(score="zncc"))
        >>> result = session.run(1, 100)
        >>> result.state
        <SessionState.DONE: 'done'>
    """

    def __init__(
        self,
        images: ImageProvider,
        trajectory: TrajectoryStore,
        params: ParameterStore,
        mask: ImageProvider | ImageSampler | None = None,
        colorspace: str = "rgb",
        reducer: SearchReducer | None = None,
        cancel: CancellationToken | None = None,
        progress: ProgressSink | ProgressCallback | None = None,
        on_step: Callable[[StepResult], None] | None = None,
    ):
        """
        Initialize the session.

        Args:
            images: Provider of the frames to track in
            trajectory: Keyframe store, read for start positions and written with results
            params: Tracker parameters (boxes, score, reference frame, offset)
            mask: Optional weighting image, or a provider of one per frame
            colorspace: "rgb" to compare raw values, "lab" to compare in CIE L*a*b*
            reducer: Search reducer to use; one is created and owned if omitted
            cancel: Token polled between frames and between search rows
            progress: Receives the completed fraction; returning False cancels
            on_step: Called with each StepResult
        """
        if colorspace not in ("rgb", "lab"):
            raise ValueError(f"Unknown colorspace '{colorspace}'")
        self.images = images
        self.trajectory = trajectory
        self.params = params
        self.mask = mask
        self.colorspace = colorspace
        self.cancel = cancel
        self.progress = progress
        self.on_step = on_step
        self._owns_reducer = reducer is None
        self.reducer = reducer
        self.state = SessionState.IDLE
        self.last_result: SessionResult | None = None
        self._forward = True
        self._score_fn: ScoreFunction | None = None
        self._lab_cache: dict[int, ImageSampler] = {}

    @classmethod
    def from_config(cls, images: ImageProvider, trajectory: TrajectoryStore, config, **kwargs) -> "TrackSession":
        """Create a session whose parameters, colorspace and workers come from a TrackerConfig."""
        owns_reducer = "reducer" not in kwargs
        kwargs.setdefault("colorspace", config.colorspace)
        if owns_reducer:
            kwargs["reducer"] = SearchReducer(
                num_workers=config.num_workers, rows_per_chunk=config.rows_per_chunk
            )
        session = cls(images, trajectory, config, **kwargs)
        session._owns_reducer = owns_reducer
        return session

    def _cancel_requested(self) -> bool:
        return self.cancel is not None and self.cancel.is_requested()

    def _report(self, fraction: float) -> bool:
        if self.progress is None:
            return True
        if hasattr(self.progress, "report"):
            keep_going = self.progress.report(fraction)
        else:
            keep_going = self.progress(fraction)
        return keep_going is not False

    def _keyframe_behind(self, time: int) -> Point | None:
        """Latest keyframe at `time` or earlier in tracking order."""
        if self._forward:
            return self.trajectory.get_at_or_before(time)
        return self.trajectory.get_at_or_after(time)

    def _fetch(self, time: int, role: str) -> ImageSampler:
        image = self.images.fetch(time)
        if image is None:
            raise ImageFetchError(time, role)
        return image

    def _fetch_mask(self, time: int) -> ImageSampler | None:
        if self.mask is None:
            return None
        if isinstance(self.mask, ImageProvider):
            return self.mask.fetch(time)
        return self.mask

    def _scoring_image(self, time: int, image: ImageSampler) -> ImageSampler:
        """The image as compared by the score: raw, or converted to Lab."""
        if self.colorspace != "lab":
            return image
        cached = self._lab_cache.get(time)
        if cached is None:
            cached = to_lab(image)
            # a step only ever needs its reference and search frames
            if len(self._lab_cache) >= 2:
                self._lab_cache.pop(next(iter(self._lab_cache)))
            self._lab_cache[time] = cached
        return cached

    @staticmethod
    def _check_formats(ref: ImageSampler, other: ImageSampler) -> None:
        if ref.dtype != other.dtype or ref.components != other.components:
            raise FormatMismatchError(
                f"Reference image ({ref.dtype}, {ref.components} channels) does not match "
                f"search image ({other.dtype}, {other.components} channels)"
            )
        if ref.components not in SUPPORTED_COMPONENTS:
            raise FormatMismatchError(f"Unsupported channel count: {ref.components}")

    def _lose(self, time: int, ref_time: int, reason: str) -> StepResult:
        self.trajectory.delete_at(time)
        logger.info("Frame %d not tracked (%s); keyframe removed", time, reason)
        return StepResult(time=time, reference_time=ref_time, status=StepStatus.LOST, reason=reason)

    def step(self, time: int, target: int) -> StepResult:
        """
        Track the point from frame `time` to frame `target`.

        `time` must hold the keyframe to start from; run() passes the last
        successfully tracked frame, so a lost frame is skipped over rather
        than used as a reference.

        Per-frame failures delete the keyframe at `target` and return a
        LOST result.

        Raises:
            FormatMismatchError: If the reference and search images differ in format
        """
        self._forward = target >= time
        if self._score_fn is None:
            self._score_fn = get_score_function(self.params.score_kind(time))
        if self.reducer is None:
            self.reducer = SearchReducer()
            self._owns_reducer = True

        ref_time = self.params.reference_frame_at(time)
        if ref_time is None:
            ref_time = time

        try:
            ref_img = self._fetch(ref_time, "reference")
            other_img = self._fetch(target, "search")
        except ImageFetchError as e:
            return self._lose(target, ref_time, str(e))
        self._check_formats(ref_img, other_img)

        ref_key = self._keyframe_behind(ref_time)
        from_key = self._keyframe_behind(time)
        if ref_key is None or from_key is None:
            return self._lose(target, ref_time, "no keyframe to track from")

        offset = self.params.center_offset(ref_time)
        par = ref_img.pixel_aspect_ratio()
        ref_center = _to_pixels(ref_key + offset, par)
        from_center = _to_pixels(from_key + offset, par)
        pattern_rect = self.params.pattern_rect(ref_time).scaled_x(1.0 / par)
        search_rect = self.params.search_rect(ref_time).scaled_x(1.0 / par)

        ref_scored = self._scoring_image(ref_time, ref_img)
        other_scored = self._scoring_image(target, other_img)

        try:
            pattern = extract_pattern(ref_scored, ref_center, pattern_rect, self._fetch_mask(ref_time))
        except EmptyPatternError as e:
            return self._lose(target, ref_time, str(e))

        window = search_bounds(from_center, pattern_rect, search_rect)
        score_fn = self._score_fn
        best = self.reducer.reduce(pattern, other_scored, window, score_fn, cancel=self.cancel)

        if self._cancel_requested():
            return StepResult(time=target, reference_time=ref_time, status=StepStatus.CANCELLED)
        if not best.found:
            return self._lose(target, ref_time, "no candidate in search window")

        match = refine_candidate(
            best,
            lambda dx, dy: score_fn.score(pattern, other_scored, best.point.x + dx, best.point.y + dy),
        )
        if not self.trajectory.has_keyframe(ref_time):
            # pin the position the pattern was taken from
            self.trajectory.set_at(ref_time, ref_key, 0.0)
        position = match.position
        new_center = Point(
            (ref_center.x + position.x - pattern.center.x) * par,
            ref_center.y + position.y - pattern.center.y,
        ) - offset
        self.trajectory.set_at(target, new_center, match.score)
        logger.debug(
            "Frame %d -> %d: (%.3f, %.3f) score %.6g", time, target, new_center.x, new_center.y, match.score
        )
        return StepResult(
            time=target,
            reference_time=ref_time,
            status=StepStatus.TRACKED,
            center=new_center,
            score=match.score,
            subpixel=(match.dx, match.dy),
        )

    def run(self, first: int, last: int) -> SessionResult:
        """
        Track from `first` to `last`, forward if last >= first, else backward.

        Args:
            first: Frame holding (or preceded by) the starting keyframe
            last: Last frame to write a keyframe for

        Returns:
            SessionResult with the terminal state

        Raises:
            FormatMismatchError: If two frames differ in format (state becomes FATAL)
            ValueError: If there is no keyframe to start from
            RuntimeError: If the session is already running
        """
        if self.state is SessionState.STEPPING:
            raise RuntimeError("Session is already running")

        self._forward = last >= first
        if self._keyframe_behind(first) is None:
            raise ValueError(f"No keyframe at or behind frame {first} to start tracking from")

        direction = 1 if self._forward else -1
        total = abs(last - first)
        result = SessionResult(state=SessionState.STEPPING, first=first, last=last, steps=0, total=total)
        self._score_fn = get_score_function(self.params.score_kind(first))
        self._lab_cache.clear()
        logger.info(
            "Tracking frames %d -> %d (%s, %s)",
            first, last, "forward" if self._forward else "backward", self._score_fn.kind.name,
        )
        self.state = SessionState.STEPPING

        # frame whose keyframe and image the next step tracks from
        anchor = first
        target = first
        try:
            while target != last:
                if self._cancel_requested():
                    self.state = SessionState.CANCELLED
                    break
                target += direction
                step = self.step(anchor, target)
                if self.on_step is not None:
                    self.on_step(step)
                if step.status is StepStatus.CANCELLED:
                    self.state = SessionState.CANCELLED
                    break
                if step.tracked:
                    result.tracked.append(target)
                    anchor = target
                else:
                    result.lost.append(target)
                result.steps += 1
                if not self._report(result.steps / total):
                    self.state = SessionState.CANCELLED
                    break
            else:
                self.state = SessionState.DONE
        except FormatMismatchError as e:
            self.state = SessionState.FATAL
            logger.error("Tracking aborted at frame %d: %s", target, e)
            raise
        finally:
            if self.state is SessionState.STEPPING:
                # an exception escaped from a collaborator or callback
                self.state = SessionState.FATAL
                logger.error("Tracking aborted at frame %d", target)
            result.state = self.state
            self.last_result = result
            self._lab_cache.clear()
            if self._owns_reducer and self.reducer is not None:
                self.reducer.close()

        logger.info(
            "Tracking %s: %d tracked, %d lost", self.state.value, len(result.tracked), len(result.lost)
        )
        return result


def _to_pixels(point: Point, pixel_aspect_ratio: float) -> Point:
    return Point(point.x / pixel_aspect_ratio, point.y)
