"""
Live Compositing Loop

Runs one compositor pass per frame arriving from the live source. Frames
land in a single-slot mailbox: if they arrive faster than they can be
composited, the newest frame wins and intermediate ones are dropped.
A failing frame degrades to pass-through and never stops the loop.
"""

import logging
import threading
import time
from datetime import datetime

import numpy as np

from ..compositing.compositor import ChromaKeyConfig, Compositor
from ..compositing.exposure import ExposureConfig
from ..compositing.keyer import Pixel

logger = logging.getLogger(__name__)


class CompositingLoop:
    """
    Worker thread turning raw live frames into the preview image.

    exposure and chroma are replaced wholesale by the session (both are
    immutable), so the worker always reads a consistent pair.
    """

    def __init__(
        self,
        compositor: Compositor | None = None,
        exposure: ExposureConfig | None = None,
        chroma: ChromaKeyConfig | None = None,
    ):
        self.compositor = compositor or Compositor()
        self.exposure = exposure or ExposureConfig()
        self.chroma = chroma or ChromaKeyConfig()

        self._cond = threading.Condition()
        self._pending: np.ndarray | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self._preview_lock = threading.Lock()
        self._preview: np.ndarray | None = None
        self._latest_source: np.ndarray | None = None
        self._frame_timestamp: datetime | None = None

        self._frame_count = 0
        self._dropped_count = 0
        self._error_count = 0
        self._last_render_ms = 0.0

    def submit(self, frame: np.ndarray, timestamp: datetime | None = None) -> None:
        """Hand a new source frame to the loop (source frame callback)."""
        with self._cond:
            if self._pending is not None:
                self._dropped_count += 1
            self._pending = frame
            self._frame_timestamp = timestamp or datetime.now()
            self._cond.notify()

    def start(self) -> None:
        if self._thread is not None:
            logger.warning("Compositing loop already started")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="CompositingLoopThread",
            daemon=True,
        )
        self._thread.start()
        logger.info("Compositing loop started")

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        with self._cond:
            self._cond.notify_all()
        self._thread.join(timeout=2.0)
        self._thread = None
        logger.info("Compositing loop stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            with self._cond:
                self._cond.wait_for(
                    lambda: self._pending is not None or self._stop_event.is_set(),
                    timeout=0.5,
                )
                frame = self._pending
                self._pending = None
            if frame is not None:
                self.process_frame(frame)

    def process_frame(self, frame: np.ndarray) -> np.ndarray | None:
        """
        Composite one source frame and publish it as the preview.

        Returns:
            Copy of the published preview, or None if the frame was unusable
        """
        start = time.perf_counter()
        with self._preview_lock:
            self._latest_source = frame

        try:
            result = self.compositor.render(frame, self.exposure, self.chroma)
        except Exception as e:
            self._error_count += 1
            logger.error(f"Compositing error, passing frame through: {e}")
            result = _pass_through(frame)
            if result is None:
                return None

        with self._preview_lock:
            if self._preview is None or self._preview.shape != result.shape:
                self._preview = np.empty_like(result)
            np.copyto(self._preview, result)
            self._frame_count += 1
            published = self._preview.copy()

        self._last_render_ms = (time.perf_counter() - start) * 1000
        return published

    def get_preview(self) -> np.ndarray | None:
        """Copy of the latest composited frame (RGBA), None before the first frame."""
        with self._preview_lock:
            if self._preview is None:
                return None
            return self._preview.copy()

    def get_source_frame(self) -> np.ndarray | None:
        with self._preview_lock:
            if self._latest_source is None:
                return None
            return self._latest_source.copy()

    def sample_color(self, x: float, y: float) -> Pixel | None:
        """
        Eyedropper: color of the raw source at normalized (x, y).

        Returns:
            The sampled Pixel, None if no frame has arrived yet
        """
        with self._preview_lock:
            source = self._latest_source
        if source is None:
            return None
        h, w = source.shape[:2]
        px = min(w - 1, max(0, int(x * w)))
        py = min(h - 1, max(0, int(y * h)))
        r, g, b = (int(v) for v in source[py, px, :3])
        return Pixel(r, g, b)

    def get_status(self) -> dict:
        return {
            "running": self._thread is not None,
            "frame_count": self._frame_count,
            "dropped_count": self._dropped_count,
            "error_count": self._error_count,
            "last_render_ms": round(self._last_render_ms, 2),
            "last_frame": self._frame_timestamp.isoformat() if self._frame_timestamp else None,
            "exposure_stops": self.exposure.compensation_stops,
            "chroma": self.chroma.to_dict(),
            "compositor": self.compositor.get_status(),
        }


def _pass_through(frame: np.ndarray) -> np.ndarray | None:
    """Raw frame as opaque RGBA, None if it is not an image at all."""
    if frame.ndim != 3 or frame.shape[2] not in (3, 4):
        logger.error(f"Dropping frame with unexpected shape {frame.shape}")
        return None
    h, w = frame.shape[:2]
    rgba = np.empty((h, w, 4), dtype=np.uint8)
    rgba[..., :3] = frame[..., :3]
    rgba[..., 3] = 255
    return rgba
