"""
BoxTrack Visual Matcher - Contract for the per-object visual tracker.

A visual matcher follows registered regions from frame to frame and
reports, for each one, where it is now and how well its appearance still
correlates with the current frame. The associator and frame feeder only
talk to it through `VisualMatcher`; `OpenCVMatcher` is the bundled backend.

Backends are singletons: at most one instance of a backend may be live.
Creating a second one before `release()` is a programming error and raises
`MatcherSingletonError`.
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple, Union

import numpy as np
import cv2

from .geometry import Box

FrameBuffer = Union[bytes, bytearray, memoryview, np.ndarray]


class MatcherError(RuntimeError):
    """Misuse of a visual matcher (unknown handle, use after release)."""


class MatcherUnavailableError(MatcherError):
    """The backend cannot run here; the tracker falls back to detection-only mode."""


class MatcherSingletonError(MatcherError):
    """A second matcher instance was requested while one is still live."""


def luma_plane(
    frame: FrameBuffer,
    width: Optional[int] = None,
    height: Optional[int] = None,
    row_stride: Optional[int] = None,
) -> np.ndarray:
    """
    Normalize a frame buffer to a contiguous `height x width` uint8 luma array.

    Accepts:
    - raw bytes / 1-D arrays laid out as `height` rows of `row_stride` bytes
      (the Y plane of a camera buffer); `width` and `height` are required
    - 2-D arrays, possibly wider than `width` (padded rows)
    - 3-channel BGR or 4-channel BGRA images, converted with OpenCV
    """
    if isinstance(frame, (bytes, bytearray, memoryview)):
        arr = np.frombuffer(frame, dtype=np.uint8)
    else:
        arr = np.asarray(frame)

    if arr.ndim == 3:
        channels = arr.shape[2]
        if channels == 1:
            arr = arr[:, :, 0]
        elif channels == 3:
            arr = cv2.cvtColor(arr.astype(np.uint8, copy=False), cv2.COLOR_BGR2GRAY)
        elif channels == 4:
            arr = cv2.cvtColor(arr.astype(np.uint8, copy=False), cv2.COLOR_BGRA2GRAY)
        else:
            raise ValueError(f"Unsupported channel count: {channels}")

    if arr.ndim == 1:
        if width is None or height is None:
            raise ValueError("width and height are required for flat frame buffers")
        stride = row_stride or width
        if stride < width:
            raise ValueError(f"row_stride {stride} is smaller than width {width}")
        needed = (height - 1) * stride + width
        if arr.size < needed:
            raise ValueError(f"Frame buffer too small: {arr.size} bytes, need {needed}")
        if arr.size < height * stride:
            # Last row is allowed to stop at `width`
            arr = np.concatenate([arr, np.zeros(height * stride - arr.size, dtype=arr.dtype)])
        arr = arr[:height * stride].reshape(height, stride)
    elif arr.ndim != 2:
        raise ValueError(f"Unsupported frame shape: {arr.shape}")

    h = height if height is not None else arr.shape[0]
    w = width if width is not None else arr.shape[1]
    if arr.shape[0] < h or arr.shape[1] < w:
        raise ValueError(f"Frame {arr.shape[1]}x{arr.shape[0]} smaller than {w}x{h}")

    arr = arr[:h, :w]
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    return np.ascontiguousarray(arr)


class VisualMatcher(ABC):
    """
    Black-box stateful tracker, owned by one `MultiBoxTracker`.

    Handles are plain integers issued by the matcher; a handle is valid from
    `register_candidate()` until `forget()`.
    """

    @classmethod
    @abstractmethod
    def create(
        cls,
        width: int,
        height: int,
        row_stride: int,
        always_track: bool = True,
    ) -> "VisualMatcher":
        """
        Allocate the (singleton) matcher for frames of the given geometry.

        Raises:
            MatcherUnavailableError: backend cannot run
            MatcherSingletonError: an instance is already live
        """

    @abstractmethod
    def advance_frame(self, frame: FrameBuffer, timestamp: int) -> None:
        """Consume the next camera frame and update every registered region."""

    @abstractmethod
    def register_candidate(self, box: Box, frame: FrameBuffer, timestamp: int) -> int:
        """
        Register the appearance of `box` in `frame` (captured at `timestamp`)
        and follow it up to the current frame. Returns the new handle.
        """

    @abstractmethod
    def update_position(self, handle: int) -> Tuple[Box, float]:
        """Current position (full-frame coordinates) and correlation in [0, 1]."""

    @abstractmethod
    def forget(self, handle: int) -> None:
        """Stop following a handle. Unknown handles raise `MatcherError`."""

    @abstractmethod
    def release(self) -> None:
        """Free the backend and its singleton slot."""

    @property
    @abstractmethod
    def handle_count(self) -> int:
        """Number of handles currently registered."""
