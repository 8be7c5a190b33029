"""
Tracking module - Pattern-matching point tracker.

This module provides:
- extract_pattern: Weighted reference patch extraction
- Score functions: SSD, SAD, NCC and ZNCC
- SearchReducer: Parallel exhaustive search for the best match
- refine: Parabolic sub-pixel refinement
- TrackSession: Frame-range tracking into a Trajectory
- Track data file I/O utilities

Example:
    >>> from pmtrack.tracking import TrackSession, Trajectory
    >>> trajectory = Trajectory({1: Point(320.0, 240.0)})
    >>> session = TrackSession.from_config(frames, trajectory, config)
    >>> result = session.run(1, 100)
"""

from pmtrack.tracking.pattern import Pattern, extract_pattern
from pmtrack.tracking.scoring import (
    ScoreKind,
    ScoreFunction,
    SSDScore,
    SADScore,
    NCCScore,
    ZNCCScore,
    get_score_function,
)
from pmtrack.tracking.search import (
    BestMatch,
    Candidate,
    SearchReducer,
    TrackResult,
    search_bounds,
)
from pmtrack.tracking.subpixel import refine, refine_candidate
from pmtrack.tracking.trajectory import Keyframe, Trajectory
from pmtrack.tracking.session import (
    CancelFlag,
    SessionResult,
    SessionState,
    StepResult,
    StepStatus,
    TrackSession,
)
from pmtrack.tracking.track_io import (
    read_crv_file,
    write_crv_file,
    parse_track_line,
    read_track_csv,
    write_track_csv,
)

__all__ = [
    "Pattern",
    "extract_pattern",
    "ScoreKind",
    "ScoreFunction",
    "SSDScore",
    "SADScore",
    "NCCScore",
    "ZNCCScore",
    "get_score_function",
    "BestMatch",
    "Candidate",
    "SearchReducer",
    "TrackResult",
    "search_bounds",
    "refine",
    "refine_candidate",
    "Keyframe",
    "Trajectory",
    "CancelFlag",
    "SessionResult",
    "SessionState",
    "StepResult",
    "StepStatus",
    "TrackSession",
    "read_crv_file",
    "write_crv_file",
    "parse_track_line",
    "read_track_csv",
    "write_track_csv",
]
