"""
Color distance keyer.

Decides per pixel whether it is close enough to the reference key color
to be made transparent. Distance is plain Euclidean RGB distance.
"""

import math
import re
from dataclasses import dataclass

import numpy as np

# Largest possible distance between two 8-bit RGB colors (~441.67)
MAX_DISTANCE = math.sqrt(3) * 255

_HEX_PATTERN = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)


def _clamp_channel(value: float) -> int:
    return int(min(255, max(0, round(value))))


@dataclass(frozen=True)
class Pixel:
    """8-bit RGB(A) pixel. Channel values are clamped to 0-255."""

    r: int
    g: int
    b: int
    a: int = 255

    def __post_init__(self):
        for name in ("r", "g", "b", "a"):
            object.__setattr__(self, name, _clamp_channel(getattr(self, name)))

    @classmethod
    def from_hex(cls, value: str) -> "Pixel":
        """
        Parse '#rrggbb' (leading '#' optional).

        Unparseable input falls back to pure green, the usual key color.
        """
        match = _HEX_PATTERN.match(value.strip())
        if not match:
            return cls(0, 255, 0)
        return cls(*(int(part, 16) for part in match.groups()))

    def to_hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    @property
    def rgb(self) -> tuple[int, int, int]:
        return (self.r, self.g, self.b)

    def to_dict(self) -> dict:
        return {"r": self.r, "g": self.g, "b": self.b, "hex": self.to_hex()}


def color_distance(pixel: Pixel, reference: Pixel) -> float:
    """Euclidean distance between two colors in RGB space (alpha ignored)."""
    return math.sqrt(
        (pixel.r - reference.r) ** 2
        + (pixel.g - reference.g) ** 2
        + (pixel.b - reference.b) ** 2
    )


def should_key_out(pixel: Pixel, reference: Pixel, tolerance: float) -> bool:
    """
    Return True if the pixel should become transparent.

    Strict comparison: a pixel exactly at the tolerance distance is kept.
    """
    return color_distance(pixel, reference) < tolerance


def key_mask(image: np.ndarray, reference: Pixel, tolerance: float) -> np.ndarray:
    """
    Vectorised keyer over a whole image.

    Args:
        image: uint8 array (H, W, 3) or (H, W, 4)
        reference: Key color
        tolerance: Distance threshold

    Returns:
        Boolean (H, W) array, True where the pixel is keyed out
    """
    rgb = image[..., :3].astype(np.int32)
    ref = np.array(reference.rgb, dtype=np.int32)
    squared = np.sum((rgb - ref) ** 2, axis=-1)
    # sqrt before comparing keeps the boundary decision identical to should_key_out
    return np.sqrt(squared.astype(np.float64)) < tolerance
