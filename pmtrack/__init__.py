"""
pmtrack - Pattern-Matching Point Tracker
========================================

Tracks a point through a sequence of images by exhaustive block matching
with a choice of similarity metrics, optional mask weighting and sub-pixel
refinement.

Main modules:
- pmtrack.core: Geometry, images, video input and configuration
- pmtrack.tracking: Pattern extraction, scoring, search and track sessions

Quick start:
    >>> from pmtrack import TrackSession, Trajectory, TrackerConfig, Point
    >>> trajectory = Trajectory({1: Point(320.0, 240.0)})
    >>> session = TrackSession.from_config(frames, trajectory, TrackerConfig(score="zncc"))
    >>> session.run(1, 50)
"""

__version__ = "0.1.0"

# Convenience imports
from pmtrack.core.geometry import Point, Rect
from pmtrack.core.config import TrackerConfig
from pmtrack.tracking import (
    ScoreKind,
    TrackSession,
    Trajectory,
    SessionState,
    CancelFlag,
)

__all__ = [
    "__version__",
    "Point",
    "Rect",
    "TrackerConfig",
    "ScoreKind",
    "TrackSession",
    "Trajectory",
    "SessionState",
    "CancelFlag",
]
