"""
BoxTrack Associator - Reconciles a detection batch with the live tracks.

Greedy and order dependent: detections are handled one at a time, in the
order the detector returned them, and each one is fully resolved (accepted
or dropped, incumbents evicted) before the next is looked at. A later
detection therefore competes with tracks created earlier in the same batch.
No global assignment is attempted.

Per detection:

1. Register it with the visual matcher; drop it if its correlation on the
   current frame is below the marginal level.
2. For every live track overlapping it by more than the maximum IoU:
   - a healthy incumbent with a better detection score wins, the
     candidate is dropped;
   - otherwise the incumbent is marked for removal. The most overlapped
     one donates its color.
3. Nothing marked and no free color: the least confident track that is
   still less confident than the candidate is removed and donates.
4. Remove the marked tracks, then start tracking the candidate with the
   donated color or a fresh one.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .config import TrackerConfig
from .matcher import FrameBuffer
from .tracking import Detection, Track, TrackerState, TrackStatus


@dataclass
class AssociationResult:
    """Outcome counters for one detection cycle."""
    n_detections: int = 0
    n_degenerate: int = 0
    n_rejected: int = 0
    n_created: int = 0
    n_evicted: int = 0


class Associator:
    """
    Matches detection batches against the live tracks.

    The caller must hold `state.lock` around `process()`.
    """

    def __init__(self, state: TrackerState, config: TrackerConfig):
        self.state = state
        self.config = config
        self.logger = logging.getLogger("Associator")

    def process(
        self,
        detections: Iterable[Detection],
        frame: FrameBuffer,
        timestamp: int,
    ) -> AssociationResult:
        detections = list(detections)
        result = AssociationResult(n_detections=len(detections))
        self.logger.info(f"Processing {len(detections)} results from {timestamp}")

        state = self.state
        state.debug_detections = []
        to_track: List[Detection] = []

        for detection in detections:
            box = detection.box
            state.debug_detections.append((detection.confidence, box))

            if box.width < self.config.min_size or box.height < self.config.min_size:
                self.logger.warning(f"Degenerate rectangle! {box}")
                result.n_degenerate += 1
                continue

            to_track.append(detection)

        if not state.initialized:
            # No frame seen yet (or released): no matcher, no frame geometry
            self.logger.warning(
                f"No camera frame yet, dropping {len(to_track)} results from {timestamp}"
            )
            result.n_rejected += len(to_track)
            return result

        if state.matcher is None:
            self._replace_all(to_track, result)
            return result

        if not to_track:
            self.logger.debug("Nothing to track, aborting.")
            return result

        self.logger.debug(f"{len(to_track)} rects to track")
        for detection in to_track:
            self._handle_detection(detection, frame, timestamp, result)

        return result

    def _replace_all(self, detections: List[Detection], result: AssociationResult):
        """Detection-only mode: the batch becomes the track set, capped at the palette size."""
        state = self.state
        result.n_evicted += len(state.tracks)
        state.clear_tracks(TrackStatus.EVICTED_RELEASED)
        state.palette.reset()

        for detection in detections[:state.palette.capacity]:
            color = state.palette.acquire()
            state.new_track(
                handle=None,
                detection=detection,
                color=color,
                position=detection.box,
                correlation=1.0,
            )
            result.n_created += 1

    def _handle_detection(
        self,
        detection: Detection,
        frame: FrameBuffer,
        timestamp: int,
        result: AssociationResult,
    ) -> Optional[Track]:
        state = self.state
        matcher = state.matcher
        config = self.config

        handle = matcher.register_candidate(detection.box, frame, timestamp)
        position, correlation = matcher.update_position(handle)
        self.logger.debug(
            f"Candidate {detection.label} went from {detection.box} to {position} "
            f"with correlation {correlation:.2f}"
        )

        if correlation < config.marginal_correlation:
            self.logger.debug(f"Correlation too low to begin tracking {detection.label}.")
            matcher.forget(handle)
            result.n_rejected += 1
            return None

        to_remove: List[Tuple[Track, TrackStatus]] = []
        max_intersect = 0.0
        # Track whose color the candidate takes; None means draw from the palette
        donor: Optional[Track] = None

        for track in state.live_tracks():
            overlap = track.position.iou(position)
            if overlap <= config.max_overlap:
                continue

            if (detection.confidence < track.confidence
                    and track.correlation >= config.marginal_correlation):
                self.logger.debug(
                    f"Rejecting {detection.label} ({detection.confidence:.2f}): "
                    f"track {track.track_id} ({track.confidence:.2f}) still going strong"
                )
                matcher.forget(handle)
                result.n_rejected += 1
                return None

            to_remove.append((track, TrackStatus.EVICTED_OVERLAP))
            if overlap > max_intersect:
                max_intersect = overlap
                donor = track

        if state.palette.is_exhausted and not to_remove:
            for track in state.live_tracks():
                if track.confidence < detection.confidence:
                    if donor is None or track.confidence < donor.confidence:
                        donor = track
            if donor is not None:
                self.logger.debug("Found non-intersecting object to remove.")
                to_remove.append((donor, TrackStatus.EVICTED_WORST))
            else:
                self.logger.debug("No non-intersecting object found to remove")

        for track, reason in to_remove:
            self.logger.debug(
                f"Removing track {track.track_id} with detection confidence "
                f"{track.confidence:.2f}, correlation {track.correlation:.2f}"
            )
            state.remove_track(track, reason, release_color=track is not donor)
            result.n_evicted += 1

        if donor is None and state.palette.is_exhausted:
            self.logger.info(f"No room to track {detection.label}, aborting.")
            matcher.forget(handle)
            result.n_rejected += 1
            return None

        color = donor.color if donor is not None else state.palette.acquire()
        track = state.new_track(
            handle=handle,
            detection=detection,
            color=color,
            position=position,
            correlation=correlation,
        )
        self.logger.debug(
            f"Tracking {detection.label} as track {track.track_id} with detection "
            f"confidence {detection.confidence:.2f} at {position}"
        )
        result.n_created += 1
        return track
