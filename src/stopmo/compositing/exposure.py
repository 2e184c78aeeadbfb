"""
Exposure adjustment applied to the live source before keying.

brightness = 2 ** stops, contrast percent = 100 + 10 * |stops|.
"""

from dataclasses import dataclass

import numpy as np

MIN_STOPS = -2.0
MAX_STOPS = 2.0

_MID_GREY = 127.5


@dataclass(frozen=True)
class ExposureConfig:
    """Exposure compensation in stops, -2 to +2."""

    compensation_stops: float = 0.0

    def __post_init__(self):
        if not MIN_STOPS <= self.compensation_stops <= MAX_STOPS:
            raise ValueError(
                f"compensation_stops must be {MIN_STOPS} to {MAX_STOPS}, "
                f"got {self.compensation_stops}"
            )

    @property
    def brightness_factor(self) -> float:
        return 2.0 ** self.compensation_stops

    @property
    def contrast_percent(self) -> float:
        return 100.0 + 10.0 * abs(self.compensation_stops)

    @property
    def is_identity(self) -> bool:
        return self.compensation_stops == 0


def apply_exposure(image: np.ndarray, exposure: ExposureConfig) -> np.ndarray:
    """
    Return an exposure-adjusted copy of an RGB(A) uint8 image.

    Brightness is applied first, then contrast around mid-grey; each
    stage is clamped to 0-255. The alpha channel, if any, is copied as is.
    """
    if exposure.is_identity:
        return image.copy()

    out = image.copy()
    rgb = image[..., :3].astype(np.float32)
    rgb = np.clip(rgb * exposure.brightness_factor, 0, 255)
    contrast = exposure.contrast_percent / 100.0
    rgb = np.clip((rgb - _MID_GREY) * contrast + _MID_GREY, 0, 255)
    out[..., :3] = np.rint(rgb).astype(np.uint8)
    return out
