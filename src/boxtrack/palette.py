"""
BoxTrack Color Palette - Bounded pool of display colors.

Each live track owns exactly one color and no two live tracks share one,
so the palette size K is also the maximum number of live tracks.

Colors are handed out first-in first-out: a released color goes to the
back of the queue, so a freshly evicted track's color is the last to be
reused.
"""

from collections import deque
from typing import Deque, FrozenSet, Iterable, Optional, Tuple

# BGR (OpenCV order)
Color = Tuple[int, int, int]

DEFAULT_COLORS: Tuple[Color, ...] = (
    (255, 0, 0),      # Blue
    (0, 0, 255),      # Red
    (0, 255, 0),      # Green
    (0, 255, 255),    # Yellow
    (255, 255, 0),    # Cyan
    (255, 0, 255),    # Magenta
    (255, 255, 255),  # White
    (85, 255, 85),    # #55FF55
    (0, 165, 255),    # #FFA500 orange
    (136, 136, 255),  # #FF8888
    (255, 170, 170),  # #AAAAFF
    (170, 255, 255),  # #FFFFAA
    (170, 170, 85),   # #55AAAA
    (170, 51, 170),   # #AA33AA
    (104, 0, 13),     # #0D0068
)


class PaletteError(ValueError):
    """Raised on a double release or when releasing a foreign color."""


class ColorPalette:
    """
    Fixed set of K colors plus the subset currently available.

    Usage:
        palette = ColorPalette(DEFAULT_COLORS[:2])
        color = palette.acquire()   # None when exhausted
        ...
        palette.release(color)      # exactly once per acquired color
    """

    def __init__(self, colors: Iterable[Color] = DEFAULT_COLORS):
        self._colors: Tuple[Color, ...] = tuple(tuple(c) for c in colors)
        if not self._colors:
            raise ValueError("Palette needs at least one color")
        if len(set(self._colors)) != len(self._colors):
            raise ValueError(f"Palette colors must be distinct: {self._colors}")
        self._available: Deque[Color] = deque(self._colors)

    def acquire(self) -> Optional[Color]:
        """Take the color at the head of the queue, or None if exhausted."""
        if not self._available:
            return None
        return self._available.popleft()

    def release(self, color: Color) -> None:
        """Return an assigned color to the back of the queue."""
        color = tuple(color)
        if color not in self._colors:
            raise PaletteError(f"Color {color} does not belong to this palette")
        if color in self._available:
            raise PaletteError(f"Color {color} released twice")
        self._available.append(color)

    def reset(self) -> None:
        """Make every color available again, in palette order."""
        self._available = deque(self._colors)

    @property
    def colors(self) -> Tuple[Color, ...]:
        return self._colors

    @property
    def capacity(self) -> int:
        return len(self._colors)

    @property
    def available_count(self) -> int:
        return len(self._available)

    @property
    def available(self) -> Tuple[Color, ...]:
        return tuple(self._available)

    @property
    def assigned(self) -> FrozenSet[Color]:
        return frozenset(self._colors) - frozenset(self._available)

    @property
    def is_exhausted(self) -> bool:
        return not self._available

    def __contains__(self, color) -> bool:
        return tuple(color) in self._colors

    def __len__(self) -> int:
        return len(self._colors)

    def __repr__(self) -> str:
        return f"ColorPalette(capacity={self.capacity}, available={self.available_count})"
