"""
Pattern similarity scores.

Every score is a dissimilarity: lower is better. All four metrics share
the same inputs, a Pattern and a stack of candidate windows of the same
size, and differ only in how they aggregate the per-pixel comparison.

Windows have shape (..., H, W, C) where (H, W) is the pattern size and C
the number of scored channels; the leading dimensions enumerate
candidates, so a whole row of candidates is scored in one call.
"""

from enum import IntEnum

import numpy as np

from pmtrack.core.base import ImageSampler
from pmtrack.tracking.pattern import Pattern

_PIXEL_AXES = (-3, -2, -1)


class ScoreKind(IntEnum):
    """Similarity metrics."""
    SSD = 0   # Sum of Squared Differences
    SAD = 1   # Sum of Absolute Differences, more robust to occlusions
    NCC = 2   # Normalized Cross-Correlation
    ZNCC = 3  # Zero-mean NCC, less sensitive to illumination changes

    @classmethod
    def parse(cls, value: "ScoreKind | str | int") -> "ScoreKind":
        """Accept a ScoreKind, its name (any case) or its integer value."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                valid = ", ".join(k.name.lower() for k in cls)
                raise ValueError(f"Unknown score '{value}'. Valid: {valid}") from None
        return cls(int(value))


def _normalized(score: np.ndarray, energy: np.ndarray) -> np.ndarray:
    """Divide by sqrt(energy); candidates with no energy score +inf."""
    sdev = np.sqrt(np.maximum(energy, 0.0))
    out = np.full(np.shape(score), np.inf)
    np.divide(score, sdev, out=out, where=sdev != 0)
    return out


class ScoreFunction:
    """Base class for similarity metrics."""

    kind: ScoreKind

    def score_windows(self, pattern: Pattern, windows: np.ndarray) -> np.ndarray:
        """
        Score a stack of candidate windows against a pattern.

        Args:
            pattern: Reference pattern
            windows: Candidate pixels, shape (..., H, W, C)

        Returns:
            Array of scores with the leading shape of `windows`
        """
        raise NotImplementedError

    def score(self, pattern: Pattern, other: ImageSampler, x: int, y: int) -> float:
        """Score the candidate whose pattern center sits at pixel (x, y) of `other`."""
        rect = pattern.rect
        window = other.window(
            int(x + rect.x1), int(y + rect.y1), int(x + rect.x2), int(y + rect.y2)
        )
        window = window[:, :, :pattern.score_components]
        return float(self.score_windows(pattern, window[np.newaxis])[0])

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class SSDScore(ScoreFunction):
    """
    Weighted sum of squared differences.

    The weight is squared along with the difference.
    """
    kind = ScoreKind.SSD

    def score_windows(self, pattern, windows):
        weights = (pattern.weights ** 2)[:, :, np.newaxis]
        diff = pattern.color_samples - windows
        return np.sum(weights * diff * diff, axis=_PIXEL_AXES)


class SADScore(ScoreFunction):
    """Weighted sum of absolute differences."""
    kind = ScoreKind.SAD

    def score_windows(self, pattern, windows):
        weights = pattern.weights[:, :, np.newaxis]
        return np.sum(weights * np.abs(pattern.color_samples - windows), axis=_PIXEL_AXES)


class NCCScore(ScoreFunction):
    """Negated cross-correlation, normalized by the candidate's energy."""
    kind = ScoreKind.NCC

    def score_windows(self, pattern, windows):
        weights = pattern.weights[:, :, np.newaxis]
        score = -np.sum(weights * pattern.color_samples * windows, axis=_PIXEL_AXES)
        energy = np.sum(weights * windows * windows, axis=_PIXEL_AXES)
        return _normalized(score, energy)


class ZNCCScore(ScoreFunction):
    """
    Zero-mean normalized cross-correlation.

    Both the pattern and each candidate have their weighted per-channel
    mean removed, which makes the score invariant to gain and offset
    changes of the candidate.
    """
    kind = ScoreKind.ZNCC

    def score_windows(self, pattern, windows):
        weights = pattern.weights[:, :, np.newaxis]
        ref = pattern.color_samples
        ref_mean = np.sum(weights * ref, axis=(0, 1)) / pattern.total_weight
        other_mean = np.sum(weights * windows, axis=(-3, -2)) / pattern.total_weight
        ref_centered = ref - ref_mean
        other_centered = windows - other_mean[..., np.newaxis, np.newaxis, :]
        score = -np.sum(weights * ref_centered * other_centered, axis=_PIXEL_AXES)
        energy = np.sum(weights * other_centered * other_centered, axis=_PIXEL_AXES)
        return _normalized(score, energy)


SCORE_FUNCTIONS: dict[ScoreKind, type[ScoreFunction]] = {
    ScoreKind.SSD: SSDScore,
    ScoreKind.SAD: SADScore,
    ScoreKind.NCC: NCCScore,
    ScoreKind.ZNCC: ZNCCScore,
}


def get_score_function(kind: ScoreKind | str | int) -> ScoreFunction:
    """
    Get the score function for a metric.

    Example:
        >>> scorer = get_score_function("zncc")
        >>> scorer.score(pattern, image, 120, 80)
    """
    return SCORE_FUNCTIONS[ScoreKind.parse(kind)]()
