"""
BoxTrack Configuration - Tracker thresholds and backend selection.

Defaults match the behaviour the associator was tuned for. Any value can
be overridden from the environment (or a `.env` file):

    BOXTRACK_MIN_CORRELATION=0.3
    BOXTRACK_MARGINAL_CORRELATION=0.75
    BOXTRACK_MAX_OVERLAP=0.2
    BOXTRACK_MIN_SIZE=16
    BOXTRACK_PALETTE_SIZE=15
    BOXTRACK_MATCHER=opencv        # or "none" for detection-only mode
    BOXTRACK_DOWNSAMPLE=2
    BOXTRACK_HISTORY_SIZE=30
"""

import os
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from .palette import Color, DEFAULT_COLORS

ENV_PREFIX = "BOXTRACK_"
MATCHER_BACKENDS = ("opencv", "none")

logger = logging.getLogger("TrackerConfig")


def load_env_file() -> Optional[str]:
    """Load the first `.env` found next to the project, in the cwd or in $HOME."""
    possible_paths = [
        Path(__file__).resolve().parents[2] / ".env",  # src/boxtrack/../../.env
        Path.cwd() / ".env",
        Path.home() / ".env",
    ]
    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path, override=False)
            return str(env_path)
    return None


@dataclass
class TrackerConfig:
    """Thresholds for association and decay, plus matcher settings."""

    # Consider a track lost once its correlation falls below this
    min_correlation: float = 0.3
    # Incumbents at or above this correlation resist weaker overlapping detections;
    # candidates below it are not worth tracking
    marginal_correlation: float = 0.75
    # Maximum IoU between two tracked boxes before one of them has to go
    max_overlap: float = 0.2
    # Detections narrower or shorter than this (pixels) are degenerate
    min_size: float = 16.0
    palette_size: int = len(DEFAULT_COLORS)
    colors: Tuple[Color, ...] = field(default=DEFAULT_COLORS, repr=False)
    matcher_backend: str = "opencv"
    downsample_factor: int = 2
    history_size: int = 30

    def __post_init__(self):
        self.validate()

    def validate(self) -> "TrackerConfig":
        for name in ("min_correlation", "marginal_correlation", "max_overlap"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.min_size <= 0:
            raise ValueError(f"min_size must be positive, got {self.min_size}")
        if self.palette_size < 1:
            raise ValueError(f"palette_size must be >= 1, got {self.palette_size}")
        if self.palette_size > len(self.colors):
            raise ValueError(
                f"palette_size {self.palette_size} exceeds the {len(self.colors)} available colors"
            )
        if self.matcher_backend not in MATCHER_BACKENDS:
            raise ValueError(
                f"matcher_backend must be one of {MATCHER_BACKENDS}, got {self.matcher_backend!r}"
            )
        if self.downsample_factor < 1:
            raise ValueError(f"downsample_factor must be >= 1, got {self.downsample_factor}")
        if self.history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {self.history_size}")
        return self

    @property
    def palette_colors(self) -> Tuple[Color, ...]:
        return tuple(self.colors[:self.palette_size])

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        load_dotenv_file: bool = True,
        **overrides,
    ) -> "TrackerConfig":
        """
        Build a config from BOXTRACK_* variables.

        Args:
            environ: Mapping to read instead of `os.environ`
            load_dotenv_file: Load a `.env` file into `os.environ` first
            **overrides: Field values that win over the environment
        """
        if load_dotenv_file and environ is None:
            env_path = load_env_file()
            if env_path:
                logger.debug(f"Loaded environment from {env_path}")
        env = os.environ if environ is None else environ

        converters = {
            "min_correlation": float,
            "marginal_correlation": float,
            "max_overlap": float,
            "min_size": float,
            "palette_size": int,
            "matcher_backend": lambda v: v.strip().lower(),
            "downsample_factor": int,
            "history_size": int,
        }
        env_names = {
            "downsample_factor": "DOWNSAMPLE",
            "matcher_backend": "MATCHER",
        }

        values = {}
        for f in fields(cls):
            if f.name not in converters:
                continue
            var = ENV_PREFIX + env_names.get(f.name, f.name.upper())
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            try:
                values[f.name] = converters[f.name](raw)
            except ValueError:
                raise ValueError(f"Invalid value for {var}: {raw!r}") from None

        values.update(overrides)
        return cls(**values)
