"""
Camera module for stopmo.

Provides:
- LiveSource / SyntheticSource / Picamera2Source: live frame sources
- CameraController: best-effort optics adapter (focus, exposure, point of interest)
- CompositingLoop: latest-frame-wins worker producing the live preview
"""

from .controller import CameraController
from .live_loop import CompositingLoop
from .source import (
    DeviceCapabilities,
    FocusMode,
    LiveSource,
    Picamera2Source,
    SyntheticScene,
    SyntheticSource,
    create_source,
)

__all__ = [
    "CameraController",
    "CompositingLoop",
    "DeviceCapabilities",
    "FocusMode",
    "LiveSource",
    "Picamera2Source",
    "SyntheticScene",
    "SyntheticSource",
    "create_source",
]
