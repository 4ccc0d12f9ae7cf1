"""
BoxTrack OpenCV Matcher - Optical flow + NCC visual matcher.

The bundled `VisualMatcher` backend. Each registered region is followed
in two passes per frame:

┌─────────────────────────────────────────────────────────────────┐
│  1. PREDICT   Pyramidal Lucas-Kanade flow over a point grid      │
│               inside the box, forward-backward checked.          │
│               Median displacement moves the box.                 │
├─────────────────────────────────────────────────────────────────┤
│  2. REFINE    Normalized cross-correlation (TM_CCOEFF_NORMED)    │
│               of the registered appearance in a small window     │
│               around the prediction. Peak = new box,             │
│               peak value = correlation.                          │
└─────────────────────────────────────────────────────────────────┘

Frames are reduced to luma and downsampled before tracking; boxes cross
the API in full-frame coordinates. A short frame history lets a detection
that arrives several frames late be registered on the frame it was made
from and followed forward to the present.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Tuple

import numpy as np
import cv2

from .geometry import Box
from .matcher import (
    FrameBuffer,
    MatcherError,
    MatcherSingletonError,
    VisualMatcher,
    luma_plane,
)


@dataclass
class _Region:
    """Matcher-side state of one handle. Box is in downsampled coordinates."""
    handle: int
    template: np.ndarray
    box: Box
    textured: bool
    correlation: float = 0.0
    visible: bool = True


class OpenCVMatcher(VisualMatcher):
    """
    Singleton visual matcher built on OpenCV.

    Usage:
        matcher = OpenCVMatcher.create(640, 480, 640)
        matcher.advance_frame(luma, timestamp=1)
        handle = matcher.register_candidate(Box(100, 100, 180, 180), luma, 1)
        box, correlation = matcher.update_position(handle)
        ...
        matcher.release()
    """

    DOWNSAMPLE_FACTOR = 2
    HISTORY_SIZE = 30
    GRID_SIZE = 5                      # 5x5 flow points per region
    FORWARD_BACKWARD_THRESHOLD = 1.5   # Max round-trip error in pixels
    MIN_VALID_POINTS = 4
    SEARCH_MARGIN = 0.5                # Search window pad, fraction of template size
    MIN_SEARCH_PAD = 4
    MIN_TEMPLATE_SIZE = 4
    MIN_TEMPLATE_STD = 4.0             # Below this the patch is too flat to correlate
    VISIBLE_CORRELATION = 0.5

    _instance: Optional["OpenCVMatcher"] = None
    _instance_lock = threading.Lock()

    def __init__(
        self,
        width: int,
        height: int,
        row_stride: int,
        always_track: bool = True,
        downsample_factor: int = DOWNSAMPLE_FACTOR,
        history_size: int = HISTORY_SIZE,
    ):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid frame size {width}x{height}")
        if row_stride < width:
            raise ValueError(f"row_stride {row_stride} is smaller than width {width}")
        if downsample_factor < 1:
            raise ValueError(f"downsample_factor must be >= 1, got {downsample_factor}")
        if history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {history_size}")

        self.frame_width = width
        self.frame_height = height
        self.row_stride = row_stride
        self.always_track = always_track
        self.downsample_factor = int(downsample_factor)

        self._small_w = max(1, width // self.downsample_factor)
        self._small_h = max(1, height // self.downsample_factor)

        self._history: Deque[Tuple[int, np.ndarray]] = deque(maxlen=history_size)
        self._regions: Dict[int, _Region] = {}
        self._next_handle = 1
        self._last_timestamp: Optional[int] = None
        self._released = False
        self._lock = threading.RLock()

        # LK parameters, smaller window than full-res tracking since frames are downsampled
        self.lk_params = dict(
            winSize=(15, 15),
            maxLevel=3,
            criteria=(cv2.TERM_CRITERIA_EPS | cv2.TERM_CRITERIA_COUNT, 10, 0.03)
        )

        self.logger = logging.getLogger("OpenCVMatcher")

    @classmethod
    def create(
        cls,
        width: int,
        height: int,
        row_stride: int,
        always_track: bool = True,
        downsample_factor: int = DOWNSAMPLE_FACTOR,
        history_size: int = HISTORY_SIZE,
    ) -> "OpenCVMatcher":
        with cls._instance_lock:
            if cls._instance is not None:
                raise MatcherSingletonError(
                    "Tried to create a new OpenCVMatcher before releasing the old one!"
                )
            instance = cls(
                width, height, row_stride,
                always_track=always_track,
                downsample_factor=downsample_factor,
                history_size=history_size,
            )
            cls._instance = instance

        instance.logger.info(
            f"Initialized {width}x{height} (stride {row_stride}), "
            f"tracking at {instance._small_w}x{instance._small_h}"
        )
        return instance

    @classmethod
    def live_instance(cls) -> Optional["OpenCVMatcher"]:
        with cls._instance_lock:
            return cls._instance

    # === Frame handling ===

    def _prepare(self, frame: FrameBuffer) -> np.ndarray:
        """Luma plane, downsampled to tracking resolution."""
        gray = luma_plane(frame, self.frame_width, self.frame_height, self.row_stride)
        if self.downsample_factor == 1:
            return gray
        return cv2.resize(gray, (self._small_w, self._small_h), interpolation=cv2.INTER_AREA)

    def _check_alive(self):
        if self._released:
            raise MatcherError("OpenCVMatcher used after release()")

    def advance_frame(self, frame: FrameBuffer, timestamp: int) -> None:
        with self._lock:
            self._check_alive()
            if self._last_timestamp is not None and timestamp <= self._last_timestamp:
                self.logger.warning(
                    f"Ignoring frame at {timestamp}, last frame was {self._last_timestamp}"
                )
                return

            gray = self._prepare(frame)
            prev = self._history[-1][1] if self._history else None
            self._history.append((timestamp, gray))
            self._last_timestamp = timestamp

            for region in self._regions.values():
                if prev is None:
                    region.correlation = self._score(region, gray, region.box)
                else:
                    self._step(region, prev, gray)

    # === Registration ===

    def register_candidate(self, box: Box, frame: FrameBuffer, timestamp: int) -> int:
        with self._lock:
            self._check_alive()
            gray = self._prepare(frame)

            small_box = box.scaled(1.0 / self.downsample_factor).clipped(self._small_w, self._small_h)
            x1 = int(np.floor(small_box.x1))
            y1 = int(np.floor(small_box.y1))
            x2 = int(np.ceil(small_box.x2))
            y2 = int(np.ceil(small_box.y2))
            template = gray[y1:y2, x1:x2].copy()

            textured = (
                template.shape[0] >= self.MIN_TEMPLATE_SIZE
                and template.shape[1] >= self.MIN_TEMPLATE_SIZE
                and float(template.std()) >= self.MIN_TEMPLATE_STD
            )
            if not textured:
                self.logger.debug(f"Region {box} too small or flat to correlate")

            handle = self._next_handle
            self._next_handle += 1
            region = _Region(
                handle=handle,
                template=template,
                box=Box(x1, y1, x2, y2),
                textured=textured,
            )
            self._regions[handle] = region

            if self._history and timestamp < self._history[0][0]:
                self.logger.warning(
                    f"Tried to use older position time {timestamp}, "
                    f"history starts at {self._history[0][0]}"
                )

            # Follow the region from its own frame up to the newest frame
            newer = [(ts, g) for ts, g in self._history if ts > timestamp]
            prev = gray
            for _, current in newer:
                self._step(region, prev, current)
                prev = current
            if not newer:
                region.correlation = self._score(region, gray, region.box)
            region.visible = region.correlation >= self.VISIBLE_CORRELATION

            self.logger.debug(
                f"Registered handle {handle} at {box} (t={timestamp}), "
                f"followed {len(newer)} frames, correlation {region.correlation:.2f}"
            )
            return handle

    def update_position(self, handle: int) -> Tuple[Box, float]:
        with self._lock:
            self._check_alive()
            region = self._get(handle)
            return region.box.scaled(self.downsample_factor), region.correlation

    def is_visible(self, handle: int) -> bool:
        with self._lock:
            self._check_alive()
            return self._get(handle).visible

    def forget(self, handle: int) -> None:
        with self._lock:
            self._check_alive()
            if self._regions.pop(handle, None) is None:
                raise MatcherError(f"Handle {handle} is not registered")

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            self._regions.clear()
            self._history.clear()
        with type(self)._instance_lock:
            if type(self)._instance is self:
                type(self)._instance = None
        self.logger.info("Released")

    @property
    def handle_count(self) -> int:
        with self._lock:
            return len(self._regions)

    @property
    def last_timestamp(self) -> Optional[int]:
        return self._last_timestamp

    def _get(self, handle: int) -> _Region:
        region = self._regions.get(handle)
        if region is None:
            raise MatcherError(f"Handle {handle} is not registered")
        return region

    # === Tracking ===

    def _step(self, region: _Region, prev: np.ndarray, current: np.ndarray):
        """Move one region from `prev` to `current` and re-score it."""
        if not region.textured:
            region.correlation = 0.0
            region.visible = False
            return

        if self.always_track or region.visible:
            dx, dy = self._flow_displacement(prev, current, region.box)
            predicted = region.box.translated(dx, dy)
            box, correlation = self._refine(region, current, predicted)
            if self.always_track or correlation >= self.VISIBLE_CORRELATION:
                region.box = box
            region.correlation = correlation
        else:
            # Lost regions stay where they were last seen
            region.correlation = self._score(region, current, region.box)

        region.visible = region.correlation >= self.VISIBLE_CORRELATION

    def _flow_displacement(
        self, prev: np.ndarray, current: np.ndarray, box: Box
    ) -> Tuple[float, float]:
        """Median forward-backward validated LK displacement of a point grid in `box`."""
        inset_x = box.width * 0.2
        inset_y = box.height * 0.2
        xs = np.linspace(box.x1 + inset_x, box.x2 - inset_x, self.GRID_SIZE)
        ys = np.linspace(box.y1 + inset_y, box.y2 - inset_y, self.GRID_SIZE)
        grid = np.array([[x, y] for y in ys for x in xs], dtype=np.float32)
        grid[:, 0] = np.clip(grid[:, 0], 0, prev.shape[1] - 1)
        grid[:, 1] = np.clip(grid[:, 1], 0, prev.shape[0] - 1)
        pts_prev = grid.reshape(-1, 1, 2)

        pts_next, status_fwd, _ = cv2.calcOpticalFlowPyrLK(
            prev, current, pts_prev, None, **self.lk_params
        )
        if pts_next is None:
            return 0.0, 0.0
        pts_back, status_bwd, _ = cv2.calcOpticalFlowPyrLK(
            current, prev, pts_next, None, **self.lk_params
        )
        if pts_back is None:
            return 0.0, 0.0

        fb_error = np.linalg.norm(pts_prev - pts_back, axis=2).flatten()
        valid = (
            (status_fwd.flatten() == 1)
            & (status_bwd.flatten() == 1)
            & (fb_error < self.FORWARD_BACKWARD_THRESHOLD)
        )
        if int(valid.sum()) < self.MIN_VALID_POINTS:
            return 0.0, 0.0

        deltas = (pts_next - pts_prev).reshape(-1, 2)[valid]
        return float(np.median(deltas[:, 0])), float(np.median(deltas[:, 1]))

    def _refine(
        self, region: _Region, gray: np.ndarray, predicted: Box
    ) -> Tuple[Box, float]:
        """NCC search for the template around `predicted`."""
        template = region.template
        tpl_h, tpl_w = template.shape
        cx, cy = predicted.center
        pad_x = max(self.MIN_SEARCH_PAD, int(tpl_w * self.SEARCH_MARGIN))
        pad_y = max(self.MIN_SEARCH_PAD, int(tpl_h * self.SEARCH_MARGIN))

        x1 = max(0, int(round(cx - tpl_w / 2.0)) - pad_x)
        y1 = max(0, int(round(cy - tpl_h / 2.0)) - pad_y)
        x2 = min(gray.shape[1], int(round(cx - tpl_w / 2.0)) + tpl_w + pad_x)
        y2 = min(gray.shape[0], int(round(cy - tpl_h / 2.0)) + tpl_h + pad_y)
        if x2 - x1 < tpl_w or y2 - y1 < tpl_h:
            return predicted, 0.0

        res = cv2.matchTemplate(gray[y1:y2, x1:x2], template, cv2.TM_CCOEFF_NORMED)
        _, max_val, _, max_loc = cv2.minMaxLoc(res)
        if not max_val > 0:
            # Nothing in the window resembles the template
            return predicted, 0.0
        nx1 = x1 + max_loc[0]
        ny1 = y1 + max_loc[1]
        return Box(nx1, ny1, nx1 + tpl_w, ny1 + tpl_h), self._clip_score(max_val)

    def _score(self, region: _Region, gray: np.ndarray, box: Box) -> float:
        """NCC of the template against the patch at exactly `box`."""
        if not region.textured:
            return 0.0
        tpl_h, tpl_w = region.template.shape
        x1 = int(round(box.x1))
        y1 = int(round(box.y1))
        if x1 < 0 or y1 < 0 or x1 + tpl_w > gray.shape[1] or y1 + tpl_h > gray.shape[0]:
            return 0.0
        patch = gray[y1:y1 + tpl_h, x1:x1 + tpl_w]
        res = cv2.matchTemplate(patch, region.template, cv2.TM_CCOEFF_NORMED)
        return self._clip_score(res[0, 0])

    @staticmethod
    def _clip_score(value: float) -> float:
        value = float(value)
        if not np.isfinite(value):
            return 0.0
        return min(1.0, max(0.0, value))
