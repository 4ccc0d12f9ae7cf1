#!/usr/bin/env python3
"""
BoxTrack - Multi-Box Tracking Demo

Drives the tracker the way a camera app would, on a synthetic scene:
1. A "camera" renders textured objects bouncing around the frame
2. Every frame goes to the tracker (optical flow + NCC follow each track)
3. Every few frames a fake detector runs on a worker thread and returns
   jittered boxes with random confidences
4. Objects periodically hide, so their tracks decay and free their color
5. Stable, color-coded boxes are printed (and optionally drawn)

Usage:
    python main_demo.py
    python main_demo.py --objects 8 --palette-size 4 --show

Controls (with --show):
    - Q/ESC: Quit
"""

import sys
import time
import logging
import argparse
import random
from typing import List, Optional

import cv2
import numpy as np

# Add src to path
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from boxtrack import (
    Box,
    Detection,
    DetectionWorker,
    MultiBoxTracker,
    TrackerConfig,
)

DEMO_LABELS = ["cup", "book", "phone", "bottle", "keyboard", "plant", "remote", "mouse"]


class SyntheticObject:
    """Noise-textured square moving at constant velocity, bouncing off the edges."""

    def __init__(self, label: str, size: int, width: int, height: int, rng: np.random.Generator):
        self.label = label
        self.size = size
        self.width = width
        self.height = height
        self.x = float(rng.integers(0, width - size))
        self.y = float(rng.integers(0, height - size))
        self.vx = float(rng.uniform(-3, 3))
        self.vy = float(rng.uniform(-3, 3))
        self.texture = rng.integers(0, 256, (size, size, 3), dtype=np.uint8)
        # Frames visible / hidden per cycle; hidden objects cannot be correlated
        self.visible_frames = int(rng.integers(90, 200))
        self.hidden_frames = int(rng.integers(20, 60))
        self.phase = int(rng.integers(0, self.visible_frames))

    def step(self):
        self.x += self.vx
        self.y += self.vy
        if self.x < 0 or self.x + self.size > self.width:
            self.vx = -self.vx
            self.x = min(max(self.x, 0), self.width - self.size)
        if self.y < 0 or self.y + self.size > self.height:
            self.vy = -self.vy
            self.y = min(max(self.y, 0), self.height - self.size)

    def visible_at(self, frame_idx: int) -> bool:
        cycle = self.visible_frames + self.hidden_frames
        return (frame_idx + self.phase) % cycle < self.visible_frames

    @property
    def box(self) -> Box:
        return Box.from_xywh(int(self.x), int(self.y), self.size, self.size)


class BoxTrackDemo:
    """
    Synthetic camera + detector loop around a MultiBoxTracker.
    """

    WINDOW_NAME = "BoxTrack Demo"

    def __init__(
            self,
            num_objects: int = 6,
            num_frames: int = 600,
            detect_every: int = 10,
            config: Optional[TrackerConfig] = None,
            resolution=(640, 480),
            show: bool = False,
            seed: int = 0,
    ):
        self.num_frames = num_frames
        self.detect_every = max(1, detect_every)
        self.width, self.height = resolution
        self.show = show

        self.rng = np.random.default_rng(seed)
        self.detector_rng = random.Random(seed)
        self.objects = [
            SyntheticObject(
                DEMO_LABELS[i % len(DEMO_LABELS)],
                int(self.rng.integers(40, 90)),
                self.width, self.height, self.rng,
            )
            for i in range(num_objects)
        ]
        self.background = self.rng.integers(100, 140, (self.height, self.width, 3), dtype=np.uint8)
        self.background = cv2.GaussianBlur(self.background, (0, 0), 8)

        self.tracker = MultiBoxTracker(config)
        self.worker = DetectionWorker(self.tracker, self._detect)
        self._frame_idx = 0

        self.logger = logging.getLogger("BoxTrackDemo")

    def _render(self) -> np.ndarray:
        frame = self.background.copy()
        for obj in self.objects:
            if not obj.visible_at(self._frame_idx):
                continue
            x, y = int(obj.x), int(obj.y)
            frame[y:y + obj.size, x:x + obj.size] = obj.texture
        return frame

    def _detect(self, frame: np.ndarray) -> List[Detection]:
        """Fake detector: jittered ground truth boxes, occasionally missing or duplicated."""
        rng = self.detector_rng
        time.sleep(rng.uniform(0.005, 0.03))  # inference latency

        detections = []
        for obj in self.objects:
            if not obj.visible_at(self._frame_idx) or rng.random() < 0.1:
                continue
            jitter = obj.size * 0.08
            box = obj.box.translated(rng.uniform(-jitter, jitter), rng.uniform(-jitter, jitter))
            detections.append(Detection(obj.label, round(rng.uniform(0.4, 0.99), 2), box))
            if rng.random() < 0.05:
                # Duplicate, overlapping box of lower quality
                dup = box.translated(jitter, jitter)
                detections.append(Detection(obj.label, round(rng.uniform(0.2, 0.6), 2), dup))
        rng.shuffle(detections)
        return detections

    def _draw(self, frame: np.ndarray) -> np.ndarray:
        for track in self.tracker.snapshot():
            x1, y1, x2, y2 = track.position.as_int_tuple()
            cv2.rectangle(frame, (x1, y1), (x2, y2), track.color, 2)
            cv2.putText(
                frame,
                f"#{track.track_id} {track.label} {track.correlation:.2f}",
                (x1, max(12, y1 - 6)),
                cv2.FONT_HERSHEY_SIMPLEX, 0.45, track.color, 1, cv2.LINE_AA,
            )
        return frame

    def _print_tracks(self):
        tracks = self.tracker.snapshot()
        print(f"\n  Frame {self._frame_idx}: {len(tracks)} tracks "
              f"({self.tracker.palette.available_count} colors free)")
        for track in tracks:
            print(f"    #{track.track_id:<4} {str(track.label):<10} conf={track.confidence:.2f} "
                  f"corr={track.correlation:.2f} color={track.color} at {track.position}")

    def run(self):
        """Run the demo."""
        self.logger.info("Starting BoxTrack Demo...")
        start = time.perf_counter()

        try:
            for self._frame_idx in range(self.num_frames):
                for obj in self.objects:
                    obj.step()
                frame = self._render()
                timestamp = self._frame_idx + 1

                self.tracker.on_frame(frame, self.width, self.height, self.width, 0, timestamp)
                if self._frame_idx % self.detect_every == 0:
                    self.worker.submit(frame.copy(), timestamp)

                if self._frame_idx % 30 == 0:
                    self._print_tracks()

                if self.show:
                    cv2.imshow(self.WINDOW_NAME, self._draw(frame))
                    key = cv2.waitKey(1) & 0xFF
                    if key in (ord('q'), 27):
                        break
        except KeyboardInterrupt:
            self.logger.info("Interrupted")
        finally:
            self.worker.wait(5.0)
            self.tracker.release()
            if self.show:
                cv2.destroyAllWindows()

        elapsed = time.perf_counter() - start
        frames = self._frame_idx + 1
        print("\n" + "=" * 60)
        print(f"  Frames: {frames} in {elapsed:.1f}s ({frames / max(elapsed, 1e-6):.1f} fps)")
        print(f"  Detection cycles: {self.worker.completed} completed, "
              f"{self.worker.dropped} dropped, {self.worker.failed} failed")
        print("=" * 60 + "\n")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="BoxTrack Multi-Box Tracking Demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Configuration:
  Thresholds can also be set through BOXTRACK_* environment variables
  or a .env file (see boxtrack.config), e.g.:
    export BOXTRACK_MAX_OVERLAP=0.3

Examples:
  python main_demo.py                          # 6 objects, 600 frames
  python main_demo.py --objects 10 --palette-size 4
  python main_demo.py --backend none           # Detection-only mode
  python main_demo.py --show                   # Draw tracks in a window
        """
    )

    parser.add_argument(
        "--objects", "-n",
        type=int,
        default=6,
        help="Number of synthetic objects"
    )
    parser.add_argument(
        "--frames", "-f",
        type=int,
        default=600,
        help="Number of frames to run"
    )
    parser.add_argument(
        "--detect-every",
        type=int,
        default=10,
        help="Submit a detection cycle every N frames"
    )
    parser.add_argument(
        "--palette-size", "-k",
        type=int,
        default=None,
        help="Maximum number of simultaneous tracks (1-15)"
    )
    parser.add_argument(
        "--backend",
        choices=["opencv", "none"],
        default=None,
        help="Visual matcher backend"
    )
    parser.add_argument(
        "--resolution", "-r",
        type=str,
        default="640x480",
        help="Resolution as WxH (e.g., 1280x720)"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=0,
        help="Random seed for the synthetic scene"
    )
    parser.add_argument(
        "--show",
        action="store_true",
        help="Display tracks in an OpenCV window"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level"
    )

    args = parser.parse_args()

    # Setup logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Parse resolution
    try:
        w, h = args.resolution.lower().split('x')
        resolution = (int(w), int(h))
    except ValueError:
        print(f"Invalid resolution format: {args.resolution}")
        sys.exit(1)

    overrides = {}
    if args.palette_size is not None:
        overrides["palette_size"] = args.palette_size
    if args.backend is not None:
        overrides["matcher_backend"] = args.backend
    try:
        config = TrackerConfig.from_env(**overrides)
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        sys.exit(1)

    # Print banner
    print("\n" + "=" * 60)
    print("  BoxTrack Multi-Box Tracker")
    print("  Synthetic Scene Demo")
    print("=" * 60)
    print(f"  Objects: {args.objects}")
    print(f"  Frames: {args.frames} ({resolution[0]}x{resolution[1]})")
    print(f"  Detection every: {args.detect_every} frames")
    print(f"  Palette: {config.palette_size} colors")
    print(f"  Matcher: {config.matcher_backend}")
    print("=" * 60)

    demo = BoxTrackDemo(
        num_objects=args.objects,
        num_frames=args.frames,
        detect_every=args.detect_every,
        config=config,
        resolution=resolution,
        show=args.show,
        seed=args.seed,
    )
    demo.run()


if __name__ == "__main__":
    main()
