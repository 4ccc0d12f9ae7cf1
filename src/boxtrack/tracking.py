"""
BoxTrack Tracking State - Detections, tracks and the shared track arena.

Track lifecycle:

    CANDIDATE ──> LIVE ──> EVICTED_DECAY      (correlation fell below minimum)
        │              ├─> EVICTED_OVERLAP    (displaced by a better detection)
        │              ├─> EVICTED_WORST      (least confident, palette full)
        │              └─> EVICTED_RELEASED   (tracker released / replaced)
        └─> abandoned (handle forgotten, never becomes a track)

An evicted track never comes back. A new track that inherits an evicted
track's color is a different identity with a new `track_id`.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .geometry import Box
from .matcher import VisualMatcher
from .palette import Color, ColorPalette


class TrackStatus(Enum):
    """Lifecycle state of a track."""
    CANDIDATE = "candidate"
    LIVE = "live"
    EVICTED_DECAY = "evicted_decay"
    EVICTED_OVERLAP = "evicted_overlap"
    EVICTED_WORST = "evicted_worst"
    EVICTED_RELEASED = "evicted_released"

    @property
    def is_evicted(self) -> bool:
        return self not in (TrackStatus.CANDIDATE, TrackStatus.LIVE)


class TrackLifecycleError(RuntimeError):
    """An operation was attempted on a track that has already been evicted."""


@dataclass(frozen=True)
class Detection:
    """One raw detector output. Read-only to the tracker."""
    label: str
    confidence: float
    box: Box
    id: Optional[str] = None


@dataclass(frozen=True)
class TrackSnapshot:
    """Point-in-time copy of a live track, safe to hand to a renderer."""
    track_id: int
    label: Optional[str]
    confidence: float
    color: Color
    position: Box
    correlation: float


@dataclass(frozen=True)
class FrameInfo:
    """Geometry of the camera frames, captured on the first frame."""
    width: int
    height: int
    row_stride: int
    sensor_orientation: int = 0


@dataclass
class Track:
    """A persistently tracked object."""
    track_id: int
    handle: Optional[int]
    label: Optional[str]
    confidence: float
    color: Color
    position: Box
    correlation: float = 1.0
    status: TrackStatus = TrackStatus.CANDIDATE

    def _check_valid(self):
        if self.status.is_evicted:
            raise TrackLifecycleError(
                f"Track {self.track_id} already removed from tracking ({self.status.value})"
            )

    def promote(self):
        """CANDIDATE -> LIVE."""
        self._check_valid()
        self.status = TrackStatus.LIVE

    def refresh(self, matcher: VisualMatcher):
        """Pull the current position and correlation from the matcher."""
        self._check_valid()
        if self.handle is None:
            raise TrackLifecycleError(f"Track {self.track_id} has no matcher handle to refresh")
        self.position, self.correlation = matcher.update_position(self.handle)

    def evict(self, matcher: Optional[VisualMatcher], reason: TrackStatus):
        """Forget the matcher handle and mark the track dead."""
        self._check_valid()
        if not reason.is_evicted:
            raise ValueError(f"{reason} is not an eviction status")
        if matcher is not None and self.handle is not None:
            matcher.forget(self.handle)
        self.handle = None
        self.status = reason

    def snapshot(self) -> TrackSnapshot:
        return TrackSnapshot(
            track_id=self.track_id,
            label=self.label,
            confidence=self.confidence,
            color=self.color,
            position=self.position,
            correlation=self.correlation,
        )


@dataclass
class TrackerState:
    """
    Everything the frame feeder and associator share.

    Callers hold `lock` for the duration of a whole `on_frame` or `process`
    call; nothing in here locks on its own.
    """
    palette: ColorPalette
    matcher: Optional[VisualMatcher] = None
    initialized: bool = False
    frame_info: Optional[FrameInfo] = None
    last_timestamp: Optional[int] = None
    tracks: Dict[int, Track] = field(default_factory=dict)
    debug_detections: List[Tuple[float, Box]] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock)
    _next_track_id: int = 1

    @property
    def degraded(self) -> bool:
        """Initialized, but without a visual matcher."""
        return self.initialized and self.matcher is None

    def new_track(
        self,
        handle: Optional[int],
        detection: Detection,
        color: Color,
        position: Box,
        correlation: float,
    ) -> Track:
        """Add a live track to the arena under a freshly issued id."""
        if len(self.tracks) >= self.palette.capacity:
            raise RuntimeError(
                f"Refusing to exceed {self.palette.capacity} live tracks"
            )
        track = Track(
            track_id=self._next_track_id,
            handle=handle,
            label=detection.label,
            confidence=detection.confidence,
            color=color,
            position=position,
            correlation=correlation,
        )
        self._next_track_id += 1
        track.promote()
        self.tracks[track.track_id] = track
        return track

    def remove_track(self, track: Track, reason: TrackStatus, release_color: bool = True):
        """Evict a track, drop it from the arena and optionally return its color."""
        track.evict(self.matcher, reason)
        del self.tracks[track.track_id]
        if release_color:
            self.palette.release(track.color)

    def clear_tracks(self, reason: TrackStatus = TrackStatus.EVICTED_RELEASED):
        for track in list(self.tracks.values()):
            self.remove_track(track, reason)

    def live_tracks(self) -> List[Track]:
        return list(self.tracks.values())

    def snapshot(self) -> List[TrackSnapshot]:
        return [t.snapshot() for t in self.tracks.values()]
