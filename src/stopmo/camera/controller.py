"""
Camera Controller

Best-effort optics adapter over a live source. Capabilities are queried
once; each setter forwards its value only if the device supports it, and
device failures are logged and swallowed so the capture workflow keeps
running.
"""

import logging
from typing import Any

from ..errors import DeviceCapabilityUnsupported
from .source import (
    EXPOSURE_COMPENSATION,
    FOCUS_DISTANCE,
    FOCUS_MODE,
    POINT_OF_INTEREST,
    DeviceCapabilities,
    FocusMode,
    LiveSource,
)

logger = logging.getLogger(__name__)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class CameraController:
    """Applies focus, exposure and point-of-interest settings to a live source."""

    def __init__(self, source: LiveSource):
        self.source = source
        self.capabilities: DeviceCapabilities = source.capabilities()

        self.focus_mode = FocusMode.AUTO
        self.focus_distance = (
            self.capabilities.focus_distance_range[0]
            if self.capabilities.focus_distance_range
            else 0.0
        )
        self.exposure_compensation = 0.0
        self.point_of_interest: tuple[float, float] | None = None

        logger.info(f"CameraController initialized: {self.capabilities.to_dict()}")

    def set_focus_mode(self, mode: FocusMode | str) -> bool:
        """
        Switch between continuous autofocus and manual focus.

        Raises:
            ValueError: Unknown mode name
        """
        mode = FocusMode(mode)
        self.focus_mode = mode
        if mode not in self.capabilities.focus_modes:
            logger.debug(f"Focus mode {mode.value} not supported by device")
            return False
        controls: dict[str, Any] = {FOCUS_MODE: mode}
        if mode is FocusMode.MANUAL and self.capabilities.focus_distance_range:
            controls[FOCUS_DISTANCE] = self.focus_distance
        return self._push(controls)

    def set_focus_distance(self, value: float) -> bool:
        """Set the lens position; only forwarded in manual focus mode."""
        focus_range = self.capabilities.focus_distance_range
        if focus_range is None:
            self.focus_distance = value
            return self._push({FOCUS_DISTANCE: value})
        self.focus_distance = _clamp(value, *focus_range)
        if self.focus_mode is not FocusMode.MANUAL:
            logger.debug("Focus distance stored; applied when manual focus is selected")
            return False
        return self._push({FOCUS_DISTANCE: self.focus_distance})

    def set_exposure_compensation(self, stops: float) -> bool:
        """Forward exposure compensation, clamped to the device range."""
        self.exposure_compensation = stops
        exposure_range = self.capabilities.exposure_range
        value = _clamp(stops, *exposure_range) if exposure_range else stops
        return self._push({EXPOSURE_COMPENSATION: value})

    def set_point_of_interest(self, x: float, y: float) -> bool:
        """Set the focus/metering point in normalized [0, 1] coordinates."""
        point = (_clamp(x, 0.0, 1.0), _clamp(y, 0.0, 1.0))
        self.point_of_interest = point
        return self._push({POINT_OF_INTEREST: point})

    def _push(self, controls: dict[str, Any]) -> bool:
        try:
            self.source.apply_controls(controls)
            return True
        except DeviceCapabilityUnsupported as e:
            logger.debug(f"Ignoring unsupported control: {e}")
        except Exception as e:
            logger.warning(f"Failed to apply camera controls {list(controls)}: {e}")
        return False

    def get_status(self) -> dict:
        return {
            "capabilities": self.capabilities.to_dict(),
            "focus_mode": self.focus_mode.value,
            "focus_distance": self.focus_distance,
            "exposure_compensation": self.exposure_compensation,
            "point_of_interest": self.point_of_interest,
        }
