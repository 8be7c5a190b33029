"""
Configuration management for the pmtrack tracker.

Provides a dataclass configuration that can be loaded from JSON files
and overridden through environment variables. A TrackerConfig also serves
as a ParameterStore whose values are constant over time.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pmtrack.core.geometry import Point, Rect
from pmtrack.tracking.scoring import ScoreKind


COLORSPACES = ("rgb", "lab")


@dataclass
class TrackerConfig:
    """
    Tracker parameters.

    Boxes are (x1, y1, x2, y2) in canonical coordinates relative to the
    tracked center.

    Example:
        config = TrackerConfig.load("tracker.json")
        session = TrackSession(frames, trajectory, config)
    """
    pattern_box: tuple[float, float, float, float] = (-15.0, -15.0, 15.0, 15.0)
    search_box: tuple[float, float, float, float] = (-30.0, -30.0, 30.0, 30.0)
    score: ScoreKind = ScoreKind.SSD
    colorspace: str = "rgb"
    reference_frame: int | None = None
    use_reference_frame: bool = False
    offset: tuple[float, float] = (0.0, 0.0)
    num_workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    rows_per_chunk: int = 4

    def __post_init__(self):
        self.score = ScoreKind.parse(self.score)
        self.pattern_box = tuple(float(v) for v in self.pattern_box)
        self.search_box = tuple(float(v) for v in self.search_box)
        self.offset = tuple(float(v) for v in self.offset)
        if len(self.pattern_box) != 4 or len(self.search_box) != 4:
            raise ValueError("Boxes must have four values (x1, y1, x2, y2)")
        if len(self.offset) != 2:
            raise ValueError("Offset must have two values (dx, dy)")
        if self.colorspace not in COLORSPACES:
            raise ValueError(
                f"Unknown colorspace '{self.colorspace}'. Valid: {', '.join(COLORSPACES)}"
            )
        if self.num_workers < 1:
            raise ValueError("num_workers must be at least 1")
        if self.rows_per_chunk < 1:
            raise ValueError("rows_per_chunk must be at least 1")

    # ParameterStore protocol; parameters are not animated

    def pattern_rect(self, time: int) -> Rect:
        return Rect.from_tuple(self.pattern_box)

    def search_rect(self, time: int) -> Rect:
        return Rect.from_tuple(self.search_box)

    def score_kind(self, time: int) -> ScoreKind:
        return self.score

    def reference_frame_at(self, time: int) -> int | None:
        if self.use_reference_frame and self.reference_frame is not None:
            return self.reference_frame
        return None

    def center_offset(self, time: int) -> Point:
        return Point(*self.offset)

    @classmethod
    def load(cls, path: str | Path) -> "TrackerConfig":
        """Load configuration from a JSON file."""
        return load_config(path)

    @classmethod
    def from_env(cls, base: "TrackerConfig | None" = None, prefix: str = "PMTRACK_") -> "TrackerConfig":
        """
        Apply environment overrides on top of a base configuration.

        Recognized variables: PMTRACK_SCORE, PMTRACK_WORKERS, PMTRACK_COLORSPACE.
        """
        data = (base or cls()).to_dict()
        env = get_env_config(prefix)
        if "score" in env:
            data["score"] = env["score"]
        if "workers" in env:
            data["num_workers"] = int(env["workers"])
        if "colorspace" in env:
            data["colorspace"] = env["colorspace"].lower()
        return config_from_dict(data)

    def save(self, path: str | Path) -> None:
        """Save configuration to a JSON file."""
        save_config(self, path)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to a JSON-serializable dictionary."""
        return {
            "pattern_box": list(self.pattern_box),
            "search_box": list(self.search_box),
            "score": self.score.name.lower(),
            "colorspace": self.colorspace,
            "reference_frame": self.reference_frame,
            "use_reference_frame": self.use_reference_frame,
            "offset": list(self.offset),
            "num_workers": self.num_workers,
            "rows_per_chunk": self.rows_per_chunk,
        }


def config_from_dict(data: dict[str, Any]) -> TrackerConfig:
    """Build a TrackerConfig from a dictionary, using defaults for missing keys."""
    defaults = TrackerConfig()
    return TrackerConfig(
        pattern_box=tuple(data.get("pattern_box", defaults.pattern_box)),
        search_box=tuple(data.get("search_box", defaults.search_box)),
        score=data.get("score", defaults.score),
        colorspace=data.get("colorspace", defaults.colorspace),
        reference_frame=data.get("reference_frame", defaults.reference_frame),
        use_reference_frame=data.get("use_reference_frame", defaults.use_reference_frame),
        offset=tuple(data.get("offset", defaults.offset)),
        num_workers=data.get("num_workers", defaults.num_workers),
        rows_per_chunk=data.get("rows_per_chunk", defaults.rows_per_chunk),
    )


def load_config(path: str | Path) -> TrackerConfig:
    """
    Load configuration from a JSON file.

    Args:
        path: Path to the JSON configuration file

    Returns:
        Parsed TrackerConfig object

    Raises:
        FileNotFoundError: If the config file doesn't exist
        json.JSONDecodeError: If the JSON is invalid
        ValueError: If a value is out of range
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r") as f:
        data = json.load(f)

    return config_from_dict(data)


def save_config(config: TrackerConfig, path: str | Path) -> None:
    """
    Save configuration to a JSON file.

    Args:
        config: Configuration object to save
        path: Output path for the JSON file
    """
    path = Path(path)
    with open(path, "w") as f:
        json.dump(config.to_dict(), f, indent=2)


def create_example_config(path: str | Path = "tracker_config.json") -> TrackerConfig:
    """
    Create an example configuration file.

    Args:
        path: Output path for the example config

    Returns:
        The created TrackerConfig object
    """
    config = TrackerConfig(
        pattern_box=(-12, -12, 12, 12),
        search_box=(-40, -40, 40, 40),
        score=ScoreKind.ZNCC,
        colorspace="rgb",
    )
    config.save(path)
    return config


def get_env_config(prefix: str = "PMTRACK_") -> dict[str, Any]:
    """
    Get configuration from environment variables.

    All environment variables starting with the prefix will be included.
    Variable names are converted to lowercase with the prefix removed.

    Example:
        PMTRACK_SCORE=zncc -> {"score": "zncc"}
    """
    config = {}
    for key, value in os.environ.items():
        if key.startswith(prefix):
            config_key = key[len(prefix):].lower()
            config[config_key] = value
    return config
