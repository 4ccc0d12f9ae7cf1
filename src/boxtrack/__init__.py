"""
BoxTrack - Stable multi-box tracking on top of a per-frame detector

Turns "a set of detections this frame" plus "a set of live tracks" into
an updated set of live tracks, so a renderer can draw steady, color-coded
boxes instead of flickering raw detections.

Features:
- Optical flow + NCC visual matcher (OpenCV) following every track per frame
- Greedy, order-preserving association with overlap suppression
- Bounded palette of display colors (one per live track, never shared)
- Correlation-decay eviction every frame
- Detection-only fallback when no visual matcher is available
- One lock around every frame / detection update; snapshots for rendering

Quick Start:
    from boxtrack import MultiBoxTracker, DetectionWorker, Detection, Box

    tracker = MultiBoxTracker()
    worker = DetectionWorker(tracker, my_detector)

    while True:
        frame, ts = camera.read()                      # luma plane or BGR image
        h, w = frame.shape[:2]
        tracker.on_frame(frame, w, h, w, 0, ts)
        worker.submit(frame.copy(), ts)                # dropped while busy
        for track in tracker.snapshot():
            draw(track.position, track.color, track.label)
"""

__version__ = "1.0.0"

from .geometry import Box

from .palette import (
    Color,
    ColorPalette,
    PaletteError,
    DEFAULT_COLORS,
)

from .matcher import (
    VisualMatcher,
    MatcherError,
    MatcherUnavailableError,
    MatcherSingletonError,
    luma_plane,
)

from .opencv_matcher import OpenCVMatcher

from .tracking import (
    Detection,
    Track,
    TrackStatus,
    TrackSnapshot,
    TrackLifecycleError,
    TrackerState,
    FrameInfo,
)

from .config import TrackerConfig

from .feeder import FrameFeeder
from .associator import Associator, AssociationResult
from .multibox import MultiBoxTracker, resolve_matcher_factory
from .worker import DetectionWorker

__all__ = [
    # Version
    "__version__",

    # Geometry & palette
    "Box",
    "Color",
    "ColorPalette",
    "PaletteError",
    "DEFAULT_COLORS",

    # Visual matcher
    "VisualMatcher",
    "MatcherError",
    "MatcherUnavailableError",
    "MatcherSingletonError",
    "OpenCVMatcher",
    "luma_plane",

    # Tracking
    "Detection",
    "Track",
    "TrackStatus",
    "TrackSnapshot",
    "TrackLifecycleError",
    "TrackerState",
    "FrameInfo",
    "TrackerConfig",
    "FrameFeeder",
    "Associator",
    "AssociationResult",
    "MultiBoxTracker",
    "resolve_matcher_factory",
    "DetectionWorker",
]
