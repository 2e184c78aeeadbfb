"""
Compositing module for stopmo.

Provides:
- Pixel / should_key_out / key_mask: RGB distance color keyer
- ExposureConfig / apply_exposure: brightness + contrast exposure stage
- ChromaKeyConfig / composite_frame / Compositor: per-frame pipeline
- OnionSkinConfig / onion_skin: last-frame overlay for the preview
- BackgroundImage / BackgroundLibrary: background rasters and catalog
"""

from .backgrounds import BackgroundEntry, BackgroundImage, BackgroundLibrary, LoadState
from .compositor import ChromaKeyConfig, Compositor, OnionSkinConfig, composite_frame, onion_skin
from .exposure import ExposureConfig, apply_exposure
from .keyer import MAX_DISTANCE, Pixel, color_distance, key_mask, should_key_out

__all__ = [
    "Pixel",
    "MAX_DISTANCE",
    "color_distance",
    "should_key_out",
    "key_mask",
    "ExposureConfig",
    "apply_exposure",
    "ChromaKeyConfig",
    "Compositor",
    "composite_frame",
    "OnionSkinConfig",
    "onion_skin",
    "BackgroundEntry",
    "BackgroundImage",
    "BackgroundLibrary",
    "LoadState",
]
