"""
Live Sources

A live source delivers a continuous stream of RGB frames to registered
callbacks from its own capture thread, reports its optics capabilities
once, and accepts best-effort control updates.

- SyntheticSource: generated green-screen test scene, no hardware needed
- Picamera2Source: Raspberry Pi camera via picamera2 (optional extra)
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable

import numpy as np

from ..errors import DeviceCapabilityUnsupported, DeviceUnavailable

logger = logging.getLogger(__name__)

FrameCallback = Callable[[np.ndarray, datetime], None]


class FocusMode(str, Enum):
    """Focus modes exposed to the user."""

    AUTO = "auto"  # Continuous autofocus
    MANUAL = "manual"


# Control keys understood by apply_controls()
FOCUS_MODE = "focus_mode"
FOCUS_DISTANCE = "focus_distance"
EXPOSURE_COMPENSATION = "exposure_compensation"
POINT_OF_INTEREST = "point_of_interest"


@dataclass(frozen=True)
class DeviceCapabilities:
    """Optics capabilities reported by the device, queried once per session."""

    focus_modes: tuple[FocusMode, ...] = ()
    focus_distance_range: tuple[float, float] | None = None
    exposure_range: tuple[float, float] | None = None
    supports_point_of_interest: bool = False

    def supports(self, control: str) -> bool:
        if control == FOCUS_MODE:
            return bool(self.focus_modes)
        if control == FOCUS_DISTANCE:
            return self.focus_distance_range is not None
        if control == EXPOSURE_COMPENSATION:
            return self.exposure_range is not None
        if control == POINT_OF_INTEREST:
            return self.supports_point_of_interest
        return False

    def to_dict(self) -> dict:
        return {
            "focus_modes": [m.value for m in self.focus_modes],
            "focus_distance_range": self.focus_distance_range,
            "exposure_range": self.exposure_range,
            "supports_point_of_interest": self.supports_point_of_interest,
        }


class LiveSource:
    """
    Base live source: capture thread + frame callbacks.

    Subclasses implement _open(), _close(), _read_frame(), capabilities()
    and _apply(). _read_frame() must return an RGB uint8 (H, W, 3) array.
    """

    name = "live"

    def __init__(self, resolution: tuple[int, int] = (1280, 720), framerate: int = 30):
        self.resolution = resolution
        self.framerate = framerate

        self._started = False
        self._capture_thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._frame_count = 0
        self._error_count = 0
        self._frame_callbacks: list[FrameCallback] = []
        self._controls: dict[str, Any] = {}

    @property
    def started(self) -> bool:
        return self._started

    def capabilities(self) -> DeviceCapabilities:
        raise NotImplementedError

    def apply_controls(self, controls: dict[str, Any]) -> None:
        """
        Push control values to the device.

        Raises:
            DeviceCapabilityUnsupported: If any control is not supported
        """
        caps = self.capabilities()
        unsupported = [key for key in controls if not caps.supports(key)]
        if unsupported:
            raise DeviceCapabilityUnsupported(f"{self.name}: unsupported controls {unsupported}")
        self._apply(controls)
        self._controls.update(controls)

    @property
    def applied_controls(self) -> dict[str, Any]:
        return dict(self._controls)

    def on_frame(self, callback: FrameCallback) -> None:
        """Register callback for new frames (called on the capture thread)."""
        self._frame_callbacks.append(callback)
        logger.debug(f"Frame callback registered, total: {len(self._frame_callbacks)}")

    def start(self) -> None:
        """Open the device and start the capture thread."""
        if self._started:
            logger.warning(f"{self.name} source already started")
            return

        self._open()
        self._started = True
        self._stop_event.clear()

        self._capture_thread = threading.Thread(
            target=self._capture_loop,
            name=f"{self.name.capitalize()}CaptureThread",
            daemon=True,
        )
        self._capture_thread.start()
        logger.info(f"{self.name} source started: {self.resolution} @ {self.framerate}fps")

    def stop(self) -> None:
        """Stop the capture thread and release the device."""
        if not self._started:
            return

        self._stop_event.set()
        if self._capture_thread:
            self._capture_thread.join(timeout=2.0)
            self._capture_thread = None

        try:
            self._close()
        except Exception as e:
            logger.error(f"Error closing {self.name} source: {e}")

        self._started = False
        logger.info(f"{self.name} source stopped")

    def _capture_loop(self) -> None:
        logger.info("Capture loop started")
        target_interval = 1.0 / self.framerate

        while not self._stop_event.is_set():
            loop_start = time.perf_counter()

            try:
                frame = self._read_frame()
                timestamp = datetime.now()
                self._frame_count += 1

                for callback in self._frame_callbacks:
                    try:
                        callback(frame, timestamp)
                    except Exception as e:
                        logger.error(f"Frame callback error: {e}")

            except Exception as e:
                self._error_count += 1
                logger.error(f"Capture error: {e}")

            # Maintain framerate
            elapsed = time.perf_counter() - loop_start
            sleep_time = target_interval - elapsed
            if sleep_time > 0:
                self._stop_event.wait(sleep_time)

        logger.info("Capture loop stopped")

    def _open(self) -> None:
        raise NotImplementedError

    def _close(self) -> None:
        raise NotImplementedError

    def _read_frame(self) -> np.ndarray:
        raise NotImplementedError

    def _apply(self, controls: dict[str, Any]) -> None:
        raise NotImplementedError

    def get_status(self) -> dict:
        return {
            "source": self.name,
            "started": self._started,
            "resolution": self.resolution,
            "framerate": self.framerate,
            "frame_count": self._frame_count,
            "error_count": self._error_count,
            "controls": {k: _jsonable(v) for k, v in self._controls.items()},
        }

    def cleanup(self) -> None:
        self.stop()
        logger.info(f"{self.name} source resources cleaned up")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass
class SyntheticScene:
    """Parameters of the generated test scene."""

    screen_color: tuple[int, int, int] = (20, 220, 30)
    subject_color: tuple[int, int, int] = (230, 120, 40)
    subject_fraction: float = 0.25  # Subject size relative to frame height
    noise: int = 6
    seed: int | None = None


class SyntheticSource(LiveSource):
    """
    Generated live source: a green screen with a subject moving across it.

    Exposure compensation is simulated by scaling the scene brightness;
    focus settings are recorded but have no visual effect.
    """

    name = "synthetic"

    def __init__(
        self,
        resolution: tuple[int, int] = (640, 360),
        framerate: int = 30,
        capabilities: DeviceCapabilities | None = None,
        scene: SyntheticScene | None = None,
    ):
        super().__init__(resolution=resolution, framerate=framerate)
        self._capabilities = capabilities or DeviceCapabilities(
            focus_modes=(FocusMode.AUTO, FocusMode.MANUAL),
            focus_distance_range=(0.0, 10.0),
            exposure_range=(-2.0, 2.0),
            supports_point_of_interest=True,
        )
        self.scene = scene or SyntheticScene()
        self._rng = np.random.default_rng(self.scene.seed)
        self._tick = 0
        self._lock = threading.Lock()

    def capabilities(self) -> DeviceCapabilities:
        return self._capabilities

    def _open(self) -> None:
        logger.info(f"[SYNTHETIC] Scene opened: {self.resolution}")

    def _close(self) -> None:
        logger.info("[SYNTHETIC] Scene closed")

    def _apply(self, controls: dict[str, Any]) -> None:
        logger.info(f"[SYNTHETIC] Controls applied: {controls}")

    def read(self) -> np.ndarray:
        """Generate the next frame without the capture thread."""
        return self._read_frame()

    def _read_frame(self) -> np.ndarray:
        w, h = self.resolution
        with self._lock:
            tick = self._tick
            self._tick += 1
            noise = self._rng.integers(
                -self.scene.noise, self.scene.noise + 1, size=(h, w, 3), dtype=np.int16
            )

        frame = np.empty((h, w, 3), dtype=np.int16)
        frame[:] = self.scene.screen_color

        size = max(1, int(h * self.scene.subject_fraction))
        span = max(1, w - size)
        x = (tick * 4) % span
        y = (h - size) // 2
        frame[y:y + size, x:x + size] = self.scene.subject_color

        frame += noise
        stops = float(self._controls.get(EXPOSURE_COMPENSATION, 0.0))
        if stops:
            frame = frame * (2.0 ** stops)
        return np.clip(frame, 0, 255).astype(np.uint8)


class Picamera2Source(LiveSource):
    """
    Raspberry Pi camera source via picamera2.

    Maps controls to libcamera: AfMode, LensPosition, ExposureValue and
    AfWindows. picamera2 is imported on construction; it is only
    available on Raspberry Pi OS.
    """

    name = "picamera2"

    POI_WINDOW_FRACTION = 0.1  # AF window size relative to the sensor

    def __init__(self, resolution: tuple[int, int] = (1280, 720), framerate: int = 30):
        super().__init__(resolution=resolution, framerate=framerate)
        try:
            from picamera2 import Picamera2
        except ImportError as e:
            raise DeviceUnavailable("picamera2 is not installed") from e

        try:
            self._camera = Picamera2()
        except Exception as e:
            raise DeviceUnavailable(f"Camera could not be opened: {e}") from e

        config = self._camera.create_video_configuration(
            main={"size": self.resolution, "format": "RGB888"},
            controls={"FrameRate": self.framerate},
        )
        self._camera.configure(config)
        self._capabilities = self._query_capabilities()
        logger.info(f"Picamera2 configured: {self.resolution} @ {self.framerate}fps")

    def _query_capabilities(self) -> DeviceCapabilities:
        controls = self._camera.camera_controls
        focus_modes: tuple[FocusMode, ...] = ()
        if "AfMode" in controls:
            focus_modes = (FocusMode.AUTO, FocusMode.MANUAL)

        focus_range = None
        if "LensPosition" in controls:
            lo, hi, _ = controls["LensPosition"]
            focus_range = (float(lo), float(hi))

        exposure_range = None
        if "ExposureValue" in controls:
            lo, hi, _ = controls["ExposureValue"]
            exposure_range = (float(lo), float(hi))

        caps = DeviceCapabilities(
            focus_modes=focus_modes,
            focus_distance_range=focus_range,
            exposure_range=exposure_range,
            supports_point_of_interest="AfWindows" in controls,
        )
        logger.info(f"Camera capabilities: {caps.to_dict()}")
        return caps

    def capabilities(self) -> DeviceCapabilities:
        return self._capabilities

    def _open(self) -> None:
        self._camera.start()

    def _close(self) -> None:
        self._camera.stop()

    def cleanup(self) -> None:
        super().cleanup()
        self._camera.close()

    def _read_frame(self) -> np.ndarray:
        # picamera2 "RGB888" is BGR in memory
        return self._camera.capture_array("main")[..., ::-1].copy()

    def _apply(self, controls: dict[str, Any]) -> None:
        from libcamera import controls as lc

        libcamera_controls: dict[str, Any] = {}
        if FOCUS_MODE in controls:
            mode = FocusMode(controls[FOCUS_MODE])
            libcamera_controls["AfMode"] = (
                lc.AfModeEnum.Continuous if mode is FocusMode.AUTO else lc.AfModeEnum.Manual
            )
        if FOCUS_DISTANCE in controls:
            libcamera_controls["LensPosition"] = float(controls[FOCUS_DISTANCE])
        if EXPOSURE_COMPENSATION in controls:
            libcamera_controls["ExposureValue"] = float(controls[EXPOSURE_COMPENSATION])
        if POINT_OF_INTEREST in controls:
            x, y = controls[POINT_OF_INTEREST]
            sensor_w, sensor_h = self._camera.camera_properties["PixelArraySize"]
            win_w = int(sensor_w * self.POI_WINDOW_FRACTION)
            win_h = int(sensor_h * self.POI_WINDOW_FRACTION)
            left = min(max(0, int(x * sensor_w) - win_w // 2), sensor_w - win_w)
            top = min(max(0, int(y * sensor_h) - win_h // 2), sensor_h - win_h)
            libcamera_controls["AfMetering"] = lc.AfMeteringEnum.Windows
            libcamera_controls["AfWindows"] = [(left, top, win_w, win_h)]

        self._camera.set_controls(libcamera_controls)


def create_source(backend: str, resolution: tuple[int, int], framerate: int) -> LiveSource:
    """
    Create a live source for the configured backend.

    Raises:
        DeviceUnavailable: The picamera2 backend cannot be opened
        ValueError: Unknown backend
    """
    if backend == "synthetic":
        return SyntheticSource(resolution=resolution, framerate=framerate)
    if backend == "picamera2":
        return Picamera2Source(resolution=resolution, framerate=framerate)
    raise ValueError(f"Unknown camera backend: {backend}")
