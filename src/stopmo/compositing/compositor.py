"""
Per-frame compositing pipeline.

exposure -> (optional) color keying -> background composite -> output.

composite_frame() is stateless: the same three inputs always produce the
same output, which lets export re-render frames independently of the live
loop. Compositor only adds a reusable output buffer for the hot path.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
from PIL import Image

from ..errors import BackgroundLoadPending
from .backgrounds import BackgroundImage
from .exposure import ExposureConfig, apply_exposure
from .keyer import MAX_DISTANCE, Pixel, key_mask

logger = logging.getLogger(__name__)

FALLBACK_FILL = (0, 0, 0)  # Solid black while the background is unavailable


@dataclass(frozen=True)
class ChromaKeyConfig:
    """
    Chroma key settings.

    background=None means no background was chosen: keying is skipped and
    the exposure-adjusted source passes through.
    """

    reference_color: Pixel = field(default_factory=lambda: Pixel(0, 255, 0))
    tolerance: float = 100.0
    background: BackgroundImage | None = None

    def __post_init__(self):
        if not 0 <= self.tolerance <= MAX_DISTANCE:
            raise ValueError(f"tolerance must be 0-{MAX_DISTANCE:.1f}, got {self.tolerance}")

    @property
    def keying_enabled(self) -> bool:
        return self.background is not None

    def to_dict(self) -> dict:
        return {
            "reference_color": self.reference_color.to_dict(),
            "tolerance": self.tolerance,
            "keying_enabled": self.keying_enabled,
            "background": self.background.label if self.background else None,
            "background_ready": self.background.is_ready if self.background else None,
        }


def _as_rgba(image: np.ndarray) -> np.ndarray:
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ValueError(f"Expected (H, W, 3|4) image, got shape {image.shape}")
    if image.shape[2] == 4:
        return image.astype(np.uint8, copy=False)
    h, w = image.shape[:2]
    rgba = np.empty((h, w, 4), dtype=np.uint8)
    rgba[..., :3] = image
    rgba[..., 3] = 255
    return rgba


def _prepare_out(out: np.ndarray | None, h: int, w: int) -> np.ndarray:
    if out is None or out.shape != (h, w, 4) or out.dtype != np.uint8:
        return np.empty((h, w, 4), dtype=np.uint8)
    return out


def composite_frame(
    source: np.ndarray,
    exposure: ExposureConfig,
    chroma: ChromaKeyConfig,
    out: np.ndarray | None = None,
) -> np.ndarray:
    """
    Composite one live source image.

    Args:
        source: RGB or RGBA uint8 image (H, W, 3|4)
        exposure: Exposure settings
        chroma: Chroma key settings
        out: Optional buffer to write into; used only if it is (H, W, 4) uint8

    Returns:
        Fully opaque RGBA image with the source's dimensions
    """
    adjusted = apply_exposure(_as_rgba(source), exposure)
    h, w = adjusted.shape[:2]
    out = _prepare_out(out, h, w)

    if not chroma.keying_enabled:
        np.copyto(out, adjusted)
        out[..., 3] = 255
        return out

    keyed = key_mask(adjusted, chroma.reference_color, chroma.tolerance)

    try:
        out[..., :3] = chroma.background.resized(w, h)
    except BackgroundLoadPending:
        out[..., :3] = FALLBACK_FILL
    out[..., 3] = 255

    # Binary alpha: opaque foreground replaces the background pixel
    np.copyto(out[..., :3], adjusted[..., :3], where=~keyed[..., None])
    return out


@dataclass(frozen=True)
class OnionSkinConfig:
    """Preview overlay of the last captured frame. Never part of captured frames."""

    enabled: bool = True
    opacity: float = 0.4

    def __post_init__(self):
        if not 0.0 <= self.opacity <= 1.0:
            raise ValueError(f"opacity must be 0-1, got {self.opacity}")

    def to_dict(self) -> dict:
        return {"enabled": self.enabled, "opacity": self.opacity}


def onion_skin(live: np.ndarray, previous: np.ndarray, opacity: float) -> np.ndarray:
    """
    Screen-blend previous over live.

    screen = 1 - (1 - live)(1 - previous), mixed with live by opacity.
    previous is stretched to the live size. Returns a new opaque RGBA image.
    """
    h, w = live.shape[:2]
    prev = previous[..., :3]
    if prev.shape[:2] != (h, w):
        img = Image.fromarray(np.ascontiguousarray(prev)).resize((w, h), Image.Resampling.BILINEAR)
        prev = np.asarray(img, dtype=np.uint8)

    a = live[..., :3].astype(np.float32) / 255.0
    b = prev.astype(np.float32) / 255.0
    screen = 1.0 - (1.0 - a) * (1.0 - b)
    mixed = a + (screen - a) * opacity

    out = np.empty((h, w, 4), dtype=np.uint8)
    out[..., :3] = np.clip(np.rint(mixed * 255.0), 0, 255)
    out[..., 3] = 255
    return out


class Compositor:
    """
    Live compositor with a reusable output buffer.

    The buffer is reallocated only when the source dimensions change.
    Callers that keep a result across render() calls must copy it.
    """

    def __init__(self):
        self._buffer: np.ndarray | None = None
        self._render_count = 0
        self._resize_count = 0

    def render(
        self,
        source: np.ndarray,
        exposure: ExposureConfig,
        chroma: ChromaKeyConfig,
    ) -> np.ndarray:
        h, w = source.shape[:2]
        if self._buffer is None or self._buffer.shape[:2] != (h, w):
            self._buffer = np.empty((h, w, 4), dtype=np.uint8)
            self._resize_count += 1
            logger.info(f"Compositor buffer allocated: {w}x{h}")

        result = composite_frame(source, exposure, chroma, out=self._buffer)
        self._render_count += 1
        return result

    def get_status(self) -> dict:
        return {
            "render_count": self._render_count,
            "buffer_allocations": self._resize_count,
            "buffer_shape": None if self._buffer is None else self._buffer.shape,
        }
