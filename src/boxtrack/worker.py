"""
BoxTrack Detection Worker - Runs detection cycles off the camera thread.

At most one detection cycle is in flight. Frames submitted while the
detector is still busy are dropped, so the associator never sees two
batches computed against the same frame-relative state.
"""

import logging
import threading
from typing import Callable, List, Optional

from .matcher import FrameBuffer
from .multibox import MultiBoxTracker
from .tracking import Detection

DetectFn = Callable[[FrameBuffer], List[Detection]]


class DetectionWorker:
    """
    Background detector + association loop.

    Usage:
        worker = DetectionWorker(tracker, detector.detect)
        ...
        # Camera thread
        tracker.on_frame(frame, w, h, stride, 0, ts)
        worker.submit(frame.copy(), ts)   # False if still busy
    """

    def __init__(self, tracker: MultiBoxTracker, detect_fn: DetectFn, name: str = "DetectionWorker"):
        self.tracker = tracker
        self.detect_fn = detect_fn
        self.name = name

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._idle = threading.Event()
        self._idle.set()

        self.completed = 0
        self.dropped = 0
        self.failed = 0

        self.logger = logging.getLogger(name)

    def submit(self, frame: FrameBuffer, timestamp: int) -> bool:
        """Start a detection cycle on `frame`. Returns False if one is already running."""
        with self._lock:
            if not self._idle.is_set():
                self.dropped += 1
                self.logger.debug(f"Detector busy, dropping frame {timestamp}")
                return False
            self._idle.clear()
            self._thread = threading.Thread(
                target=self._run,
                args=(frame, timestamp),
                name=self.name,
                daemon=True,
            )
            self._thread.start()
        return True

    def _run(self, frame: FrameBuffer, timestamp: int):
        try:
            detections = self.detect_fn(frame)
            if self.tracker.process(detections, frame, timestamp):
                self.completed += 1
            else:
                self.dropped += 1
                self.logger.debug(f"Tracker busy, batch from frame {timestamp} dropped")
        except Exception:
            self.failed += 1
            self.logger.exception(f"Detection cycle for frame {timestamp} failed")
        finally:
            self._idle.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the in-flight cycle (if any) finishes. Returns False on timeout."""
        return self._idle.wait(timeout)

    @property
    def is_busy(self) -> bool:
        return not self._idle.is_set()
