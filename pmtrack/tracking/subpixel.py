"""
Sub-pixel refinement of an integer match.

A parabola is fitted through the best score and its two neighbors on
each axis; the parabola's vertex gives the fractional correction.
"""

import math
from typing import Callable

from pmtrack.tracking.search import Candidate, TrackResult


def parabola_offset(s0: float, s_prev: float, s_next: float) -> float:
    """
    Vertex offset of the parabola through (-1, s_prev), (0, s0), (1, s_next).

    Returns 0 unless s0 is a local minimum (strictly below s_prev, not
    above s_next). The result lies in (-0.5, 0.5].
    """
    if not (s0 < s_prev and s0 <= s_next):
        return 0.0
    # (s0 - s_next) + (s0 - s_prev) rather than 2*s0 - s_next - s_prev, to avoid underflow
    denominator = (s0 - s_next) + (s0 - s_prev)
    if denominator == 0 or not math.isfinite(denominator):
        return 0.0
    offset = 0.5 * (s_next - s_prev) / denominator
    return min(0.5, max(-0.5, offset))


def refine(best: Candidate, score_at: Callable[[int, int], float]) -> tuple[float, float]:
    """
    Compute the sub-pixel correction around the best candidate.

    Args:
        best: Best integer candidate
        score_at: Scores the candidate shifted by an integer (dx, dy)

    Returns:
        (dx, dy) correction, (0, 0) when the candidate is not refinable
    """
    if not best.found:
        return (0.0, 0.0)
    s0 = best.score
    dx = parabola_offset(s0, score_at(-1, 0), score_at(1, 0))
    dy = parabola_offset(s0, score_at(0, -1), score_at(0, 1))
    return (dx, dy)


def refine_candidate(best: Candidate, score_at: Callable[[int, int], float]) -> TrackResult:
    """Refine `best` and package it as a TrackResult."""
    dx, dy = refine(best, score_at)
    return TrackResult(candidate=best, dx=dx, dy=dy)
