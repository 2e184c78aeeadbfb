"""
Stop Motion Session

The application-owned state of one capture session. Wires the live
source, camera controller, compositing loop, frame store, playback clock,
exporter and captioner together and exposes them as plain methods for
the outer shell (HTTP API, CLI, tests).

Data flow:
live source -> CompositingLoop (exposure + keying) -> preview
preview --capture()--> FrameStore -> PlaybackClock / Exporter
"""

import logging
from concurrent.futures import Future
from io import BytesIO
from typing import Callable

import numpy as np
from PIL import Image

from .camera.controller import CameraController
from .camera.live_loop import CompositingLoop
from .camera.source import FocusMode, LiveSource
from .captioning.captioner import Captioner, StoryCaption
from .compositing.backgrounds import BackgroundEntry, BackgroundLibrary
from .compositing.compositor import ChromaKeyConfig, OnionSkinConfig, onion_skin
from .compositing.exposure import ExposureConfig
from .compositing.keyer import Pixel
from .errors import DeviceUnavailable, EmptySequence
from .export.exporter import ExportArtifact, Exporter
from .sequence.frame_store import Frame, FrameStore
from .sequence.playback import PlaybackClock, PlaybackState

logger = logging.getLogger(__name__)

NO_BACKGROUND = "none"


class StopMotionSession:
    """
    One capture session.

    Captures and exports are serialised: a capture requested during an
    export waits for the export to finish.
    """

    def __init__(
        self,
        source: LiveSource,
        exporter: Exporter | None = None,
        captioner: Captioner | None = None,
        backgrounds: BackgroundLibrary | None = None,
        fps: float = 12.0,
        key_color: Pixel | None = None,
        tolerance: float = 100.0,
        background_id: str = NO_BACKGROUND,
        use_timer: bool = True,
        onion: OnionSkinConfig | None = None,
    ):
        """
        Initialize the session.

        Args:
            source: Live source (started by start())
            exporter: Video exporter (ffmpeg-backed by default)
            captioner: Sequence captioner (disabled by default)
            backgrounds: Background catalog
            fps: Playback and export frame rate
            key_color: Initial chroma key reference color
            tolerance: Initial key tolerance
            background_id: Initial background ('none' disables keying)
            use_timer: Run the playback timer thread
            onion: Onion skin overlay for the live preview
        """
        self.source = source
        self.controller = CameraController(source)
        self.backgrounds = backgrounds or BackgroundLibrary()
        self.exporter = exporter or Exporter()
        self.captioner = captioner or Captioner(enabled=False)

        self.store = FrameStore()
        self.clock = PlaybackClock(self.store, fps=fps, use_timer=use_timer)
        self.loop = CompositingLoop()
        self.onion = onion or OnionSkinConfig()

        self._background_id = NO_BACKGROUND
        self._started = False
        self.set_chroma_key(
            color=key_color or Pixel(0, 255, 0),
            tolerance=tolerance,
            background_id=background_id,
        )

        source.on_frame(self.loop.submit)
        logger.info(f"StopMotionSession initialized: source={source.name}, fps={fps}")

    # ==================== Lifecycle ====================

    def start(self) -> None:
        if self._started:
            return
        self.loop.start()
        self.source.start()
        self._started = True
        logger.info("Session started")

    def cleanup(self) -> None:
        self.clock.stop()
        self.source.cleanup()
        self.loop.stop()
        self.captioner.cleanup()
        self._started = False
        logger.info("Session resources cleaned up")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()

    # ==================== Capture & sequence ====================

    def capture(self) -> Frame:
        """
        Snapshot the current composited preview into the sequence.

        Stops playback if it is running.

        Raises:
            DeviceUnavailable: No live frame has been composited yet
        """
        image = self.loop.get_preview()
        if image is None:
            raise DeviceUnavailable("No live frame available to capture yet")
        if self.clock.is_playing:
            self.clock.stop()
        return self.store.capture(image)

    def clear(self, confirm: bool = False) -> int:
        removed = self.store.clear(confirm=confirm)
        self.clock.stop()
        return removed

    def delete_frame(self, frame_id: str) -> Frame:
        frame = self.store.delete(frame_id)
        if self.store.is_empty:
            self.clock.stop()
        return frame

    def set_cursor(self, index: int) -> int:
        """Move the cursor (clamped). Does not interrupt playback."""
        return self.store.set_cursor(index)

    # ==================== Chroma key ====================

    @property
    def chroma(self) -> ChromaKeyConfig:
        return self.loop.chroma

    @property
    def background_id(self) -> str:
        return self._background_id

    def set_chroma_key(
        self,
        color: Pixel | str | None = None,
        tolerance: float | None = None,
        background_id: str | None = None,
    ) -> ChromaKeyConfig:
        """
        Update chroma key settings; omitted values are kept.

        Raises:
            KeyError: Unknown background id
            ValueError: Tolerance out of range
        """
        current = self.loop.chroma
        if isinstance(color, str):
            color = Pixel.from_hex(color)

        background = current.background
        if background_id is not None:
            background = self.backgrounds.resolve(background_id)

        chroma = ChromaKeyConfig(
            reference_color=color or current.reference_color,
            tolerance=current.tolerance if tolerance is None else tolerance,
            background=background,
        )
        self.loop.chroma = chroma
        if background_id is not None:
            self._background_id = background_id
        logger.info(
            f"Chroma key set: color={chroma.reference_color.to_hex()}, "
            f"tolerance={chroma.tolerance}, background={self._background_id}"
        )
        return chroma

    def disable_keying(self) -> ChromaKeyConfig:
        return self.set_chroma_key(background_id=NO_BACKGROUND)

    def import_background(self, data: bytes, label: str = "Custom", select: bool = True) -> BackgroundEntry:
        """Add a user image to the background catalog (optionally selecting it)."""
        entry = self.backgrounds.add_custom(data, label=label)
        if select:
            self.set_chroma_key(background_id=entry.id)
        return entry

    def sample_key_color(self, x: float, y: float) -> Pixel | None:
        """Eyedropper: use the raw live color at normalized (x, y) as the key color."""
        pixel = self.loop.sample_color(x, y)
        if pixel is None:
            logger.warning("Eyedropper: no live frame to sample yet")
            return None
        self.set_chroma_key(color=pixel)
        return pixel

    # ==================== Camera optics ====================

    @property
    def exposure(self) -> ExposureConfig:
        return self.loop.exposure

    def set_exposure(self, stops: float) -> ExposureConfig:
        """
        Set exposure compensation for both the device and the compositor.

        Raises:
            ValueError: stops outside -2..+2
        """
        exposure = ExposureConfig(compensation_stops=stops)
        self.loop.exposure = exposure
        self.controller.set_exposure_compensation(stops)
        return exposure

    def set_focus_mode(self, mode: FocusMode | str) -> bool:
        return self.controller.set_focus_mode(mode)

    def set_focus_distance(self, value: float) -> bool:
        return self.controller.set_focus_distance(value)

    def set_point_of_interest(self, x: float, y: float) -> bool:
        return self.controller.set_point_of_interest(x, y)

    # ==================== Playback ====================

    @property
    def playback_state(self) -> PlaybackState:
        return self.clock.state

    def start_playback(self) -> bool:
        return self.clock.start()

    def stop_playback(self) -> None:
        self.clock.stop()

    def set_fps(self, fps: float) -> float:
        self.clock.fps = fps
        return self.clock.fps

    # ==================== Preview ====================

    def set_onion_skin(self, enabled: bool | None = None, opacity: float | None = None) -> OnionSkinConfig:
        """
        Update the onion skin overlay; omitted values are kept.

        Raises:
            ValueError: opacity outside 0..1
        """
        self.onion = OnionSkinConfig(
            enabled=self.onion.enabled if enabled is None else enabled,
            opacity=self.onion.opacity if opacity is None else opacity,
        )
        logger.info(f"Onion skin set: enabled={self.onion.enabled}, opacity={self.onion.opacity}")
        return self.onion

    def preview(self) -> np.ndarray | None:
        """
        Image to display right now.

        While playing: the frame under the cursor. Otherwise the live
        composited output (None before the first live frame), with the last
        captured frame screen-blended over it when onion skin is on.
        """
        if self.clock.is_playing:
            frame = self.store.current_frame()
            if frame is not None:
                return frame.image

        live = self.loop.get_preview()
        if live is None or not self.onion.enabled or self.onion.opacity == 0:
            return live
        frames = self.store.snapshot()
        if not frames:
            return live
        return onion_skin(live, frames[-1].image, self.onion.opacity)

    def preview_jpeg(self, quality: int = 85) -> bytes | None:
        image = self.preview()
        if image is None:
            return None
        img = Image.fromarray(np.ascontiguousarray(image[..., :3]))
        buf = BytesIO()
        img.save(buf, "JPEG", quality=quality)
        return buf.getvalue()

    # ==================== Export & caption ====================

    def export(self, on_progress: Callable[[int, int], None] | None = None) -> ExportArtifact:
        """
        Encode the whole sequence at the playback fps.

        The cursor follows export progress. Captures wait until the
        export has finished.

        Raises:
            EmptySequence: Nothing captured
            EncodingUnavailable / EncodingFailed: Encoder problems
        """
        if self.store.is_empty:
            raise EmptySequence("Nothing to export: sequence is empty")
        self.clock.stop()

        def progress(index: int, total: int) -> None:
            self.store.set_cursor(index)
            if on_progress is not None:
                on_progress(index, total)

        with self.store.exclusive() as frames:
            return self.exporter.export(frames, self.clock.fps, on_progress=progress)

    def caption(self) -> StoryCaption | None:
        return self.captioner.caption(self.store.snapshot())

    def caption_async(self) -> Future:
        return self.captioner.caption_async(self.store.snapshot())

    def get_status(self) -> dict:
        return {
            "started": self._started,
            "frames": self.store.get_status(),
            "playback": self.clock.get_status(),
            "background_id": self._background_id,
            "onion_skin": self.onion.to_dict(),
            "live": self.loop.get_status(),
            "camera": self.controller.get_status(),
            "source": self.source.get_status(),
            "export": self.exporter.get_status(),
            "caption": self.captioner.get_status(),
        }


def create_session_from_config() -> StopMotionSession:
    """Build a session from the global configuration."""
    from .camera.source import create_source
    from .config import (
        caption_config,
        camera_config,
        chroma_config,
        export_config,
        playback_config,
        preview_config,
    )
    from .export.encoder import FFmpegEncoder, codec_priority_from_names

    source = create_source(
        camera_config.backend,
        resolution=camera_config.resolution,
        framerate=camera_config.framerate,
    )
    exporter = Exporter(
        encoder=FFmpegEncoder(
            binary=export_config.ffmpeg_binary,
            bitrate=export_config.bitrate,
            timeout=export_config.encode_timeout,
        ),
        codec_priority=codec_priority_from_names(export_config.codec_priority),
    )
    captioner = Captioner(
        api_key=caption_config.api_key,
        model=caption_config.model,
        enabled=caption_config.enabled,
        max_attempts=caption_config.max_attempts,
    )
    return StopMotionSession(
        source=source,
        exporter=exporter,
        captioner=captioner,
        fps=playback_config.fps,
        key_color=Pixel.from_hex(chroma_config.key_color),
        tolerance=chroma_config.tolerance,
        background_id=chroma_config.background,
        onion=OnionSkinConfig(
            enabled=preview_config.onion_skin,
            opacity=preview_config.onion_opacity,
        ),
    )
