"""
BoxTrack Geometry - Axis-aligned boxes in frame coordinates.

Boxes are stored as (x1, y1, x2, y2) with x2 >= x1 and y2 >= y1.
Everything the associator compares (overlap, size, donor choice) is
expressed through `Box.iou()`.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple


@dataclass(frozen=True)
class Box:
    """Axis-aligned rectangle in frame (pixel) coordinates."""
    x1: float
    y1: float
    x2: float
    y2: float

    def __post_init__(self):
        # Normalize flipped corners so width/height are never negative
        if self.x2 < self.x1:
            x1, x2 = self.x2, self.x1
            object.__setattr__(self, "x1", x1)
            object.__setattr__(self, "x2", x2)
        if self.y2 < self.y1:
            y1, y2 = self.y2, self.y1
            object.__setattr__(self, "y1", y1)
            object.__setattr__(self, "y2", y2)

    @classmethod
    def from_xywh(cls, x: float, y: float, w: float, h: float) -> "Box":
        return cls(float(x), float(y), float(x + w), float(y + h))

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> "Box":
        """Build from any [x1, y1, x2, y2] sequence (list, tuple, ndarray)."""
        if len(values) != 4:
            raise ValueError(f"Expected 4 coordinates, got {len(values)}")
        return cls(*(float(v) for v in values))

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x1 + self.x2) / 2.0, (self.y1 + self.y2) / 2.0

    def intersection(self, other: "Box") -> Optional["Box"]:
        """Overlapping region, or None when the boxes do not intersect."""
        ix1 = max(self.x1, other.x1)
        iy1 = max(self.y1, other.y1)
        ix2 = min(self.x2, other.x2)
        iy2 = min(self.y2, other.y2)
        if ix2 <= ix1 or iy2 <= iy1:
            return None
        return Box(ix1, iy1, ix2, iy2)

    def iou(self, other: "Box") -> float:
        """Intersection area / (area A + area B - intersection area)."""
        inter = self.intersection(other)
        if inter is None:
            return 0.0
        inter_area = inter.area
        union = self.area + other.area - inter_area
        return inter_area / union if union > 0 else 0.0

    def scaled(self, factor: float) -> "Box":
        return Box(self.x1 * factor, self.y1 * factor, self.x2 * factor, self.y2 * factor)

    def translated(self, dx: float, dy: float) -> "Box":
        return Box(self.x1 + dx, self.y1 + dy, self.x2 + dx, self.y2 + dy)

    def clipped(self, width: float, height: float) -> "Box":
        """Clamp to the [0, width] x [0, height] frame."""
        return Box(
            min(max(self.x1, 0.0), width),
            min(max(self.y1, 0.0), height),
            min(max(self.x2, 0.0), width),
            min(max(self.y2, 0.0), height),
        )

    def as_int_tuple(self) -> Tuple[int, int, int, int]:
        return int(round(self.x1)), int(round(self.y1)), int(round(self.x2)), int(round(self.y2))

    def __str__(self) -> str:
        return f"Box({self.x1:.1f}, {self.y1:.1f}, {self.x2:.1f}, {self.y2:.1f})"
