"""
BoxTrack MultiBoxTracker - Thread-safe facade over feeder and associator.

Two producers drive one serialized state machine:

    camera thread ──on_frame()──┐
                                ├──> [ RLock ] ──> tracks, palette, matcher
    detector worker ──process()─┘

    renderer ──snapshot()──> consistent copy of the live tracks

Every `on_frame` and every `process` runs entirely under the same lock.
A `process` call that arrives while another is still running is dropped.
"""

import logging
import threading
from functools import partial
from typing import Iterable, List, Optional, Tuple

from .associator import AssociationResult, Associator
from .config import TrackerConfig
from .feeder import FrameFeeder, MatcherFactory
from .geometry import Box
from .matcher import FrameBuffer, MatcherUnavailableError
from .opencv_matcher import OpenCVMatcher
from .palette import ColorPalette
from .tracking import Detection, FrameInfo, TrackerState, TrackSnapshot, TrackStatus


def _unavailable_factory(width: int, height: int, row_stride: int, always_track: bool = True):
    raise MatcherUnavailableError("visual matcher disabled by configuration")


def resolve_matcher_factory(name: str, config: Optional[TrackerConfig] = None) -> MatcherFactory:
    """Map a backend name ("opencv" / "none") to a matcher factory."""
    config = config or TrackerConfig()
    if name == "opencv":
        return partial(
            OpenCVMatcher.create,
            downsample_factor=config.downsample_factor,
            history_size=config.history_size,
        )
    if name == "none":
        return _unavailable_factory
    raise ValueError(f"Unknown matcher backend: {name!r}")


class MultiBoxTracker:
    """
    Associates detections with persistent, color-coded tracks.

    Usage:
        tracker = MultiBoxTracker()

        # Camera thread, every frame
        tracker.on_frame(luma, width, height, row_stride, 90, timestamp)

        # Detector worker, whenever a batch is ready
        tracker.process(detections, luma_at_detection, detection_timestamp)

        # Renderer
        for track in tracker.snapshot():
            draw(track.position, track.color, track.label)

        tracker.release()
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        matcher_factory: Optional[MatcherFactory] = None,
    ):
        self.config = config or TrackerConfig()
        if matcher_factory is None:
            matcher_factory = resolve_matcher_factory(self.config.matcher_backend, self.config)

        self._state = TrackerState(palette=ColorPalette(self.config.palette_colors))
        self._feeder = FrameFeeder(self._state, self.config, matcher_factory)
        self._associator = Associator(self._state, self.config)
        self._process_gate = threading.Lock()
        self.last_result: Optional[AssociationResult] = None

        self.logger = logging.getLogger("MultiBoxTracker")

    def on_frame(
        self,
        frame: FrameBuffer,
        width: int,
        height: int,
        row_stride: int,
        sensor_orientation: int,
        timestamp: int,
    ) -> bool:
        """Feed a camera frame. Returns False if its timestamp was rejected."""
        with self._state.lock:
            return self._feeder.on_frame(
                frame, width, height, row_stride, sensor_orientation, timestamp
            )

    def process(
        self,
        detections: Iterable[Detection],
        frame: FrameBuffer,
        timestamp: int,
    ) -> bool:
        """
        Reconcile one detection batch with the live tracks.

        Args:
            detections: Detector output, in detector order
            frame: The frame the detections were computed on
            timestamp: That frame's timestamp

        Returns:
            False if the batch was dropped because another one is in flight
        """
        if not self._process_gate.acquire(blocking=False):
            self.logger.debug(f"Dropping detection batch from {timestamp}: previous batch in flight")
            return False
        try:
            with self._state.lock:
                self.last_result = self._associator.process(detections, frame, timestamp)
            return True
        finally:
            self._process_gate.release()

    def snapshot(self) -> List[TrackSnapshot]:
        """Consistent point-in-time copy of the live tracks, in creation order."""
        with self._state.lock:
            return self._state.snapshot()

    def debug_detections(self) -> List[Tuple[float, Box]]:
        """(confidence, box) of every detection of the last batch, degenerate ones included."""
        with self._state.lock:
            return list(self._state.debug_detections)

    def release(self):
        """Stop tracking everything and free the visual matcher."""
        with self._state.lock:
            state = self._state
            count = len(state.tracks)
            state.clear_tracks(TrackStatus.EVICTED_RELEASED)
            if state.matcher is not None:
                state.matcher.release()
            state.matcher = None
            state.initialized = False
            state.frame_info = None
            state.last_timestamp = None
            state.debug_detections = []
        self.logger.info(f"Released ({count} tracks dropped)")

    @property
    def degraded(self) -> bool:
        with self._state.lock:
            return self._state.degraded

    @property
    def initialized(self) -> bool:
        with self._state.lock:
            return self._state.initialized

    @property
    def frame_info(self) -> Optional[FrameInfo]:
        with self._state.lock:
            return self._state.frame_info

    @property
    def live_count(self) -> int:
        with self._state.lock:
            return len(self._state.tracks)

    @property
    def palette(self) -> ColorPalette:
        return self._state.palette

    @property
    def matcher(self):
        return self._state.matcher

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
