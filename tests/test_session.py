"""
Tests for TrackSession.
"""

import pytest
import numpy as np


PATTERN_BOX = (-6, -6, 7, 7)
SEARCH_BOX = (-15, -15, 16, 16)
START = (32, 32)
MOTION = (2, 1)


def blob(cx, cy, size=96):
    """Radially symmetric blob centered on an integer pixel."""
    ys, xs = np.mgrid[0:size, 0:size].astype(np.float64)
    r2 = (xs - cx) ** 2 + (ys - cy) ** 2
    return np.stack(
        [np.exp(-r2 / 72.0), np.exp(-r2 / 162.0), 0.5 * np.exp(-r2 / 32.0)], axis=-1
    )


def center_at(t):
    return (START[0] + MOTION[0] * (t - 1), START[1] + MOTION[1] * (t - 1))


def moving_frames(n=5):
    """Frames 1..n of a blob moving by MOTION pixels per frame."""
    return {t: blob(*center_at(t)) for t in range(1, n + 1)}


def make_config(**kwargs):
    from pmtrack.core.config import TrackerConfig

    kwargs.setdefault("pattern_box", PATTERN_BOX)
    kwargs.setdefault("search_box", SEARCH_BOX)
    kwargs.setdefault("num_workers", 1)
    return TrackerConfig(**kwargs)


def make_session(frames, trajectory, config=None, pixel_aspect_ratio=1.0, **kwargs):
    from pmtrack.core.image import FrameSequence
    from pmtrack.tracking.session import TrackSession

    sequence = FrameSequence(frames, pixel_aspect_ratio=pixel_aspect_ratio)
    return TrackSession.from_config(sequence, trajectory, config or make_config(), **kwargs)


def assert_tracked(trajectory, times, offset=(0.0, 0.0), scale_x=1.0, abs_tol=1e-6):
    for t in times:
        keyframe = trajectory.get(t)
        assert keyframe is not None, f"frame {t} not tracked"
        x, y = center_at(t)
        assert keyframe.center.x == pytest.approx(x * scale_x - offset[0], abs=abs_tol)
        assert keyframe.center.y == pytest.approx(y - offset[1], abs=abs_tol)


class TestForwardBackward:
    """Tests for tracking in both directions."""

    def test_forward(self):
        """Test tracking a moving blob forward."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.session import SessionState
        from pmtrack.tracking.trajectory import Trajectory

        trajectory = Trajectory({1: Point(*START)})
        session = make_session(moving_frames(), trajectory)
        result = session.run(1, 5)

        assert result.state is SessionState.DONE
        assert session.state is SessionState.DONE
        assert result.tracked == [2, 3, 4, 5]
        assert result.lost == []
        assert result.steps == result.total == 4
        assert_tracked(trajectory, range(1, 6))
        assert trajectory.get(5).score == pytest.approx(0.0, abs=1e-12)

    def test_backward(self):
        """Test tracking from the last frame back to the first."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.session import SessionState
        from pmtrack.tracking.trajectory import Trajectory

        trajectory = Trajectory({5: Point(*center_at(5))})
        result = make_session(moving_frames(), trajectory).run(5, 1)

        assert result.state is SessionState.DONE
        assert result.tracked == [4, 3, 2, 1]
        assert_tracked(trajectory, range(1, 6))

    def test_parallel_search(self):
        """Test that several search workers give the same track."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.trajectory import Trajectory

        trajectory = Trajectory({1: Point(*START)})
        config = make_config(num_workers=4, rows_per_chunk=2)
        make_session(moving_frames(), trajectory, config).run(1, 5)
        assert_tracked(trajectory, range(2, 6))

    def test_same_first_and_last(self):
        """Test that an empty range finishes immediately."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.session import SessionState
        from pmtrack.tracking.trajectory import Trajectory

        trajectory = Trajectory({1: Point(*START)})
        result = make_session(moving_frames(), trajectory).run(3, 3)
        assert result.state is SessionState.DONE
        assert result.steps == 0
        assert trajectory.times == [1]

    def test_start_frame_is_pinned(self):
        """Test that the frame tracked from gets a keyframe when it had none."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.trajectory import Trajectory

        frames = {t: blob(*START) for t in range(1, 6)}
        trajectory = Trajectory({1: Point(*START)})
        result = make_session(frames, trajectory).run(3, 5)

        assert result.tracked == [4, 5]
        assert trajectory.times == [1, 3, 4, 5]
        assert trajectory.get(3).center == Point(*START)
        assert trajectory.gaps() == [2]

    def test_no_start_keyframe(self):
        """Test that tracking needs a keyframe behind the first frame."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.trajectory import Trajectory

        trajectory = Trajectory({3: Point(*START)})
        with pytest.raises(ValueError):
            make_session(moving_frames(), trajectory).run(1, 5)

    def test_single_step(self):
        """Test calling step directly."""
        from pmtrack.core.geometry import Point
        from pmtrack.core.image import FrameSequence
        from pmtrack.tracking.search import SearchReducer
        from pmtrack.tracking.session import StepStatus, TrackSession
        from pmtrack.tracking.trajectory import Trajectory

        trajectory = Trajectory({1: Point(*START)})
        with SearchReducer(num_workers=1) as reducer:
            session = TrackSession(
                FrameSequence(moving_frames()), trajectory, make_config(), reducer=reducer
            )
            step = session.step(1, 2)

        assert step.status is StepStatus.TRACKED
        assert step.reference_time == 1
        assert step.subpixel == pytest.approx((0.0, 0.0), abs=1e-6)
        assert_tracked(trajectory, [2])


class TestParameters:
    """Tests for reference frame, offset, colorspace and aspect ratio handling."""

    def test_fixed_reference_frame(self):
        """Test extracting the pattern from a fixed frame."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.trajectory import Trajectory

        steps = []
        trajectory = Trajectory({1: Point(*START)})
        config = make_config(reference_frame=1, use_reference_frame=True)
        make_session(moving_frames(), trajectory, config, on_step=steps.append).run(1, 5)

        assert [s.reference_time for s in steps] == [1, 1, 1, 1]
        assert_tracked(trajectory, range(2, 6))

    def test_center_offset(self):
        """Test tracking a point beside the pattern."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.trajectory import Trajectory

        trajectory = Trajectory({1: Point(START[0] - 3, START[1] + 2)})
        config = make_config(offset=(3, -2))
        make_session(moving_frames(), trajectory, config).run(1, 4)
        assert_tracked(trajectory, range(1, 5), offset=(3, -2))

    def test_pixel_aspect_ratio(self):
        """Test that centers and boxes are in canonical coordinates."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.trajectory import Trajectory

        trajectory = Trajectory({1: Point(START[0] * 2, START[1])})
        config = make_config(pattern_box=(-12, -6, 14, 7), search_box=(-30, -15, 32, 16))
        make_session(moving_frames(), trajectory, config, pixel_aspect_ratio=2.0).run(1, 4)
        assert_tracked(trajectory, range(1, 5), scale_x=2.0)

    # rounding noise in a refined center can shift the rounded pattern footprint
    # by a pixel, which moves correlation estimates by a few thousandths
    @pytest.mark.parametrize("score, abs_tol", [("sad", 1e-4), ("ncc", 0.01), ("zncc", 0.01)])
    def test_other_scores(self, score, abs_tol):
        """Test tracking with each correlation and distance metric."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.trajectory import Trajectory

        trajectory = Trajectory({1: Point(*START)})
        make_session(moving_frames(), trajectory, make_config(score=score)).run(1, 4)
        assert_tracked(trajectory, range(2, 5), abs_tol=abs_tol)

    def test_lab_colorspace(self):
        """Test tracking 8-bit frames compared in Lab."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.trajectory import Trajectory

        frames = {
            t: np.round(frame * 255).astype(np.uint8) for t, frame in moving_frames().items()
        }
        trajectory = Trajectory({1: Point(*START)})
        session = make_session(frames, trajectory, make_config(colorspace="lab"))
        assert session.colorspace == "lab"
        session.run(1, 5)
        assert_tracked(trajectory, range(2, 6), abs_tol=1e-3)

    def test_unknown_colorspace(self):
        """Test colorspace validation."""
        from pmtrack.core.image import FrameSequence
        from pmtrack.tracking.session import TrackSession
        from pmtrack.tracking.trajectory import Trajectory

        with pytest.raises(ValueError):
            TrackSession(FrameSequence({}), Trajectory(), make_config(), colorspace="hsv")


class TestFailures:
    """Tests for untracked frames and fatal errors."""

    def test_missing_frame_leaves_gap(self):
        """Test that a missing frame is skipped and tracking resumes after it."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.session import SessionState
        from pmtrack.tracking.trajectory import Trajectory

        frames = moving_frames()
        frames[3] = None
        # stale keyframe from an earlier run
        trajectory = Trajectory({1: Point(*START), 3: Point(0, 0)})
        result = make_session(frames, trajectory).run(1, 5)

        assert result.state is SessionState.DONE
        assert result.lost == [3]
        assert result.tracked == [2, 4, 5]
        assert 3 not in trajectory
        assert trajectory.gaps() == [3]
        assert_tracked(trajectory, [2, 4, 5])

    def test_masked_out(self):
        """Test that a fully masked pattern writes no keyframes."""
        from pmtrack.core.geometry import Point
        from pmtrack.core.image import ArrayImage
        from pmtrack.tracking.session import SessionState, StepStatus
        from pmtrack.tracking.trajectory import Trajectory

        steps = []
        trajectory = Trajectory({1: Point(*START)})
        mask = ArrayImage(np.zeros((96, 96), np.uint8))
        result = make_session(
            moving_frames(), trajectory, mask=mask, on_step=steps.append,
        ).run(1, 4)

        assert result.state is SessionState.DONE
        assert result.lost == [2, 3, 4]
        assert trajectory.times == [1]
        assert all(s.status is StepStatus.LOST for s in steps)

    def test_mask_per_frame(self):
        """Test a mask provider that supplies one mask per frame."""
        from pmtrack.core.geometry import Point
        from pmtrack.core.image import FrameSequence
        from pmtrack.tracking.trajectory import Trajectory

        # frames without a mask are tracked unweighted
        masks = FrameSequence({t: None if t == 2 else np.ones((96, 96)) for t in range(1, 6)})
        trajectory = Trajectory({1: Point(*START)})
        result = make_session(moving_frames(), trajectory, mask=masks).run(1, 4)
        assert result.tracked == [2, 3, 4]
        assert_tracked(trajectory, range(2, 5))

    def test_format_mismatch_is_fatal(self):
        """Test that frames of different bit depth abort the session."""
        from pmtrack.core.errors import FormatMismatchError
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.session import SessionState
        from pmtrack.tracking.trajectory import Trajectory

        frames = moving_frames()
        frames[3] = np.round(frames[3] * 65535).astype(np.uint16)
        trajectory = Trajectory({1: Point(*START)})
        session = make_session(frames, trajectory)

        with pytest.raises(FormatMismatchError):
            session.run(1, 5)
        assert session.state is SessionState.FATAL
        assert session.last_result.state is SessionState.FATAL
        assert session.last_result.tracked == [2]
        assert trajectory.times == [1, 2]

    def test_channel_mismatch_is_fatal(self):
        """Test that frames with different channel counts abort the session."""
        from pmtrack.core.errors import FormatMismatchError
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.trajectory import Trajectory

        frames = moving_frames()
        frames[2] = frames[2][:, :, 0]
        trajectory = Trajectory({1: Point(*START)})
        with pytest.raises(FormatMismatchError):
            make_session(frames, trajectory).run(1, 5)

    def test_callback_error_ends_session(self):
        """Test that an exception from a callback leaves the session able to run again."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.session import SessionState
        from pmtrack.tracking.trajectory import Trajectory

        calls = []

        def on_step(step):
            calls.append(step.time)
            if len(calls) == 2:
                raise RuntimeError("callback failed")

        trajectory = Trajectory({1: Point(*START)})
        session = make_session(moving_frames(), trajectory, on_step=on_step)
        with pytest.raises(RuntimeError):
            session.run(1, 5)
        assert session.state is SessionState.FATAL
        assert session.last_result.state is SessionState.FATAL

        result = session.run(3, 5)
        assert result.state is SessionState.DONE
        assert_tracked(trajectory, range(2, 6))


class TestCancellation:
    """Tests for cancelling a session."""

    def test_progress_returns_false(self):
        """Test cancelling from the progress callback."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.session import SessionState
        from pmtrack.tracking.trajectory import Trajectory

        reported = []

        def progress(fraction):
            reported.append(fraction)
            return len(reported) < 2

        trajectory = Trajectory({1: Point(*START)})
        result = make_session(moving_frames(), trajectory, progress=progress).run(1, 5)

        assert result.state is SessionState.CANCELLED
        assert reported == [0.25, 0.5]
        assert result.steps == 2
        assert trajectory.times == [1, 2, 3]

    def test_cancel_flag(self):
        """Test a cancellation request between frames."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.session import CancelFlag, SessionState
        from pmtrack.tracking.trajectory import Trajectory

        cancel = CancelFlag()

        def on_step(step):
            if step.time == 3:
                cancel.request()

        trajectory = Trajectory({1: Point(*START)})
        session = make_session(moving_frames(), trajectory, cancel=cancel, on_step=on_step)
        result = session.run(1, 5)

        assert result.state is SessionState.CANCELLED
        assert trajectory.times == [1, 2, 3]
        assert_tracked(trajectory, [2, 3])

    def test_cancel_during_search(self):
        """Test that a step cancelled mid-search writes nothing."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.session import SessionState, StepStatus
        from pmtrack.tracking.trajectory import Trajectory

        class Countdown:
            """Requests cancellation after a number of polls."""

            def __init__(self, polls):
                self.polls = polls

            def is_requested(self):
                self.polls -= 1
                return self.polls < 0

        steps = []
        trajectory = Trajectory({1: Point(*START)})
        # one poll per frame, one per search row (18 rows) and one after the search
        session = make_session(
            moving_frames(), trajectory, cancel=Countdown(25), on_step=steps.append,
        )
        result = session.run(1, 5)

        assert result.state is SessionState.CANCELLED
        assert result.tracked == [2]
        assert steps[-1].status is StepStatus.CANCELLED
        assert trajectory.times == [1, 2]

    def test_result_summary(self):
        """Test the serializable session summary."""
        from pmtrack.core.geometry import Point
        from pmtrack.tracking.trajectory import Trajectory

        frames = moving_frames()
        frames[4] = None
        trajectory = Trajectory({1: Point(*START)})
        result = make_session(frames, trajectory).run(1, 5)
        assert result.to_dict() == {
            "state": "done",
            "first": 1,
            "last": 5,
            "steps": 4,
            "total": 4,
            "tracked": 3,
            "lost": [4],
        }
