"""
BoxTrack Frame Feeder - Per-frame matcher advance and decay sweep.

Runs on every camera frame, independent of detection cycles:

1. First frame: request the visual matcher (or fall back to
   detection-only mode if the backend is unavailable)
2. Reject non-increasing timestamps
3. Advance the matcher one frame
4. Refresh every live track's position and correlation
5. Evict tracks whose correlation decayed below the minimum
"""

import logging
from typing import Callable, List, Optional

from .config import TrackerConfig
from .matcher import FrameBuffer, MatcherUnavailableError, VisualMatcher
from .tracking import FrameInfo, Track, TrackerState, TrackStatus

MatcherFactory = Callable[..., Optional[VisualMatcher]]


class FrameFeeder:
    """
    Keeps the matcher and live tracks in step with the camera.

    The caller must hold `state.lock` around `on_frame()`.
    """

    def __init__(self, state: TrackerState, config: TrackerConfig, matcher_factory: MatcherFactory):
        self.state = state
        self.config = config
        self.matcher_factory = matcher_factory
        self.logger = logging.getLogger("FrameFeeder")

    def _initialize(self, width: int, height: int, row_stride: int, sensor_orientation: int):
        state = self.state
        state.frame_info = FrameInfo(width, height, row_stride, sensor_orientation)
        state.initialized = True

        self.logger.info(f"Initializing visual matcher: {width} x {height}")
        try:
            state.matcher = self.matcher_factory(width, height, row_stride, True)
        except MatcherUnavailableError as e:
            state.matcher = None
            self.logger.error(f"Object tracking support not found ({e}); running detection-only")
            return

        if state.matcher is None:
            self.logger.error("Object tracking support not found; running detection-only")

    def on_frame(
        self,
        frame: FrameBuffer,
        width: int,
        height: int,
        row_stride: int,
        sensor_orientation: int,
        timestamp: int,
    ) -> bool:
        """
        Feed one camera frame.

        Returns:
            False if the frame was rejected (non-increasing timestamp)
        """
        state = self.state
        if not state.initialized:
            self._initialize(width, height, row_stride, sensor_orientation)

        if state.last_timestamp is not None and timestamp <= state.last_timestamp:
            self.logger.warning(
                f"Ignoring frame with timestamp {timestamp} (last was {state.last_timestamp})"
            )
            return False
        state.last_timestamp = timestamp

        matcher = state.matcher
        if matcher is None:
            return True

        matcher.advance_frame(frame, timestamp)

        for track in state.live_tracks():
            track.refresh(matcher)

        self._sweep()
        return True

    def _sweep(self) -> List[Track]:
        """Clean up any tracks not worth following any more."""
        removed = []
        for track in self.state.live_tracks():
            if track.correlation < self.config.min_correlation:
                self.logger.debug(
                    f"Removing track {track.track_id} ({track.label}) "
                    f"because correlation is {track.correlation:.2f}"
                )
                self.state.remove_track(track, TrackStatus.EVICTED_DECAY)
                removed.append(track)
        return removed
