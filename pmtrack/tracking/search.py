"""
Exhaustive block-matching search.

SearchReducer scores every integer candidate position of a search window
and reduces them to the best one. Rows of the window are split into
chunks that run on a thread pool; each chunk keeps its own best candidate
and merges it into a shared BestMatch cell at the end.
"""

import logging
import math
import operator
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from pmtrack.core.base import CancellationToken, ImageSampler
from pmtrack.core.geometry import Point, Rect
from pmtrack.tracking.pattern import Pattern
from pmtrack.tracking.scoring import ScoreFunction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A scored candidate position; `point` is None until something was scored."""
    point: Point | None = None
    score: float = math.inf

    @property
    def found(self) -> bool:
        return self.point is not None and math.isfinite(self.score)


@dataclass(frozen=True)
class TrackResult:
    """Best integer candidate plus its sub-pixel correction."""
    candidate: Candidate
    dx: float = 0.0
    dy: float = 0.0

    @property
    def position(self) -> Point:
        """Refined pixel position of the match."""
        return Point(self.candidate.point.x + self.dx, self.candidate.point.y + self.dy)

    @property
    def score(self) -> float:
        return self.candidate.score


class BestMatch:
    """
    Thread-safe reduction cell holding the best candidate seen so far.

    Example:
        >>> best = BestMatch()
        >>> best.offer(Candidate(Point(3, 4), 12.0))
        True
        >>> best.candidate.score
        12.0
    """

    def __init__(self, better: Callable[[float, float], bool] = operator.lt):
        self._better = better
        self._lock = threading.Lock()
        self._candidate = Candidate()

    def offer(self, candidate: Candidate) -> bool:
        """Replace the current best if `candidate` is strictly better."""
        with self._lock:
            if self._better(candidate.score, self._candidate.score):
                self._candidate = candidate
                return True
            return False

    @property
    def candidate(self) -> Candidate:
        with self._lock:
            return self._candidate


def search_bounds(center: Point, pattern_rect: Rect, search_rect: Rect) -> Rect:
    """
    Pixel rectangle of candidate pattern centers for a search box.

    The pattern extent is removed from the search box so that every
    candidate's footprint stays inside it. An empty result is widened to
    one pixel around its midpoint.
    """
    x1 = center.x + search_rect.x1 - pattern_rect.x1
    y1 = center.y + search_rect.y1 - pattern_rect.y1
    x2 = center.x + search_rect.x2 - pattern_rect.x2
    y2 = center.y + search_rect.y2 - pattern_rect.y2
    if x2 <= x1:
        x1 = (x1 + x2) / 2
        x2 = x1 + 1
    if y2 <= y1:
        y1 = (y1 + y2) / 2
        y2 = y1 + 1
    return Rect(x1, y1, x2, y2).to_pixels()


class SearchReducer:
    """
    Parallel exhaustive search for the best-scoring candidate.

    Ties between candidates found by different workers are resolved by
    whichever worker merges first, so the winner among equal scores is
    not deterministic when more than one worker is used.

    Example:
        >>> with SearchReducer(num_workers=4) as reducer:
        ...     best = reducer.reduce(pattern, image, window, SSDScore())
    """

    def __init__(self, num_workers: int | None = None, rows_per_chunk: int = 4):
        if num_workers is None:
            num_workers = os.cpu_count() or 1
        if num_workers < 1:
            raise ValueError("num_workers must be at least 1")
        if rows_per_chunk < 1:
            raise ValueError("rows_per_chunk must be at least 1")
        self.num_workers = num_workers
        self.rows_per_chunk = rows_per_chunk
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.num_workers, thread_name_prefix="pmtrack-search"
            )
        return self._executor

    def reduce(
        self,
        pattern: Pattern,
        other: ImageSampler,
        search_window: Rect,
        score_fn: ScoreFunction,
        cancel: CancellationToken | None = None,
    ) -> Candidate:
        """
        Find the candidate center in `search_window` with the lowest score.

        Args:
            pattern: Pattern to look for
            other: Image to search
            search_window: Pixel rectangle of candidate pattern centers
            score_fn: Metric to minimize
            cancel: Optional token polled before each row

        Returns:
            The best Candidate; its score is +inf if nothing was evaluated
        """
        window = search_window.to_pixels().intersect(other.bounds())
        if window.is_empty():
            logger.debug("Search window %s misses the image", search_window.to_tuple())
            return Candidate()

        wx1, wy1, wx2, wy2 = (int(v) for v in window.to_tuple())
        rect = pattern.rect
        pw, ph = pattern.size

        # every pixel any candidate footprint can reach, border-extended
        region = other.window(
            wx1 + int(rect.x1), wy1 + int(rect.y1),
            wx2 - 1 + int(rect.x2), wy2 - 1 + int(rect.y2),
        )[:, :, :pattern.score_components]
        views = np.moveaxis(sliding_window_view(region, (ph, pw), axis=(0, 1)), 2, -1)

        best = BestMatch()

        def scan(row_start: int, row_end: int) -> None:
            local = Candidate()
            for row in range(row_start, row_end):
                if cancel is not None and cancel.is_requested():
                    break
                scores = score_fn.score_windows(pattern, views[row])
                col = int(np.argmin(scores))
                if scores[col] < local.score:
                    local = Candidate(Point(wx1 + col, wy1 + row), float(scores[col]))
            if local.point is not None:
                best.offer(local)

        n_rows = wy2 - wy1
        chunks = [
            (start, min(start + self.rows_per_chunk, n_rows))
            for start in range(0, n_rows, self.rows_per_chunk)
        ]
        if self.num_workers == 1 or len(chunks) == 1:
            for start, end in chunks:
                scan(start, end)
        else:
            executor = self._get_executor()
            futures = [executor.submit(scan, start, end) for start, end in chunks]
            for future in futures:
                future.result()

        result = best.candidate
        logger.debug("Best candidate %s over %d rows", result, n_rows)
        return result

    def close(self) -> None:
        """Shut down the worker threads."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "SearchReducer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
