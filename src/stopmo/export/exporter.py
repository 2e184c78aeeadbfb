"""
Exporter

Encodes a captured frame sequence into a single video artifact. Every
frame is held for exactly 1000/fps ms of encoded timeline. Exports are
all-or-nothing: any failure aborts the encoder and discards the output.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence

import numpy as np
from PIL import Image

from ..errors import EmptySequence, EncodingFailed, EncodingUnavailable
from ..sequence.frame_store import Frame
from .encoder import DEFAULT_CODEC_PRIORITY, FALLBACK_CODEC, CodecOption, FFmpegEncoder

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class ExportArtifact:
    """Encoded video plus what the caller needs to offer it for download."""

    data: bytes
    filename: str
    mime_type: str
    codec: str
    frame_count: int
    fps: float
    width: int
    height: int
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def frame_duration_ms(self) -> float:
        return 1000.0 / self.fps

    @property
    def duration_ms(self) -> float:
        """Total encoded duration: frame_count * 1000/fps."""
        return self.frame_count * self.frame_duration_ms

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def save(self, directory: str | Path) -> Path:
        """Write the artifact to directory/filename and return the path."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / self.filename
        path.write_bytes(self.data)
        logger.info(f"Export saved: {path} ({self.size_bytes / (1024 * 1024):.2f}MB)")
        return path

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "mime_type": self.mime_type,
            "codec": self.codec,
            "frame_count": self.frame_count,
            "fps": self.fps,
            "duration_ms": self.duration_ms,
            "width": self.width,
            "height": self.height,
            "size_bytes": self.size_bytes,
        }


def export_filename(extension: str, now: float | None = None) -> str:
    """stopmo-<unix-millis>.<ext>"""
    millis = int((time.time() if now is None else now) * 1000)
    return f"stopmo-{millis}.{extension}"


class Exporter:
    """
    Drives an encoder across a frame sequence.

    The encoder needs supported_codecs(), open(), write(), finish() and
    abort(); FFmpegEncoder is the default.
    """

    def __init__(
        self,
        encoder: FFmpegEncoder | None = None,
        codec_priority: Sequence[CodecOption] = DEFAULT_CODEC_PRIORITY,
        fallback: CodecOption = FALLBACK_CODEC,
    ):
        self.encoder = encoder or FFmpegEncoder()
        self.codec_priority = tuple(codec_priority)
        self.fallback = fallback
        self._export_count = 0
        self._last_error: str | None = None

    def select_codec(self) -> CodecOption:
        """First option in priority order the encoder supports, else the fallback."""
        supported = self.encoder.supported_codecs()
        for option in self.codec_priority:
            if option.codec in supported:
                logger.debug(f"Codec selected: {option.codec}/{option.container}")
                return option
        logger.warning(
            f"No preferred codec available (have {len(supported)} encoders), "
            f"falling back to {self.fallback.codec}/{self.fallback.container}"
        )
        return self.fallback

    def export(
        self,
        frames: Sequence[Frame],
        fps: float,
        on_progress: ProgressCallback | None = None,
    ) -> ExportArtifact:
        """
        Encode frames in order at fps.

        Args:
            frames: Ordered frames (first frame sets the output size)
            fps: Frames per second; each frame lasts 1000/fps ms
            on_progress: Called as (frame_index, total) before each frame is written

        Returns:
            The finished ExportArtifact

        Raises:
            EmptySequence: No frames given (nothing is started)
            EncodingUnavailable: Encoder could not be initialized
            EncodingFailed: A frame write or finalization failed
        """
        if not frames:
            raise EmptySequence("Nothing to export: sequence is empty")
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")

        total = len(frames)
        height, width = frames[0].image.shape[:2]
        option = self.select_codec()
        start = time.perf_counter()

        logger.info(
            f"Export started: {total} frames ({width}x{height} @ {fps}fps) "
            f"-> {option.codec}/{option.container}"
        )

        try:
            self.encoder.open(option, width, height, fps)
        except EncodingUnavailable as e:
            self._last_error = str(e)
            logger.error(f"Export failed to start: {e}")
            raise

        try:
            for index, frame in enumerate(frames):
                if on_progress is not None:
                    try:
                        on_progress(index, total)
                    except Exception as e:
                        logger.error(f"Export progress callback error: {e}")
                self.encoder.write(_to_rgb(frame.image, width, height))
            data = self.encoder.finish()
        except EncodingFailed as e:
            self.encoder.abort()
            self._last_error = str(e)
            logger.error(f"Export failed: {e}")
            raise
        except Exception as e:
            self.encoder.abort()
            self._last_error = str(e)
            logger.error(f"Export failed: {e}", exc_info=True)
            raise EncodingFailed(str(e)) from e

        self._export_count += 1
        self._last_error = None
        artifact = ExportArtifact(
            data=data,
            filename=export_filename(option.extension),
            mime_type=option.mime_type,
            codec=option.codec,
            frame_count=total,
            fps=fps,
            width=width,
            height=height,
        )
        logger.info(
            f"Export complete: {artifact.filename} ({artifact.duration_ms:.0f}ms, "
            f"{artifact.size_bytes} bytes) in {time.perf_counter() - start:.2f}s"
        )
        return artifact

    def get_status(self) -> dict:
        return {
            "export_count": self._export_count,
            "last_error": self._last_error,
            "codec_priority": [o.codec for o in self.codec_priority],
            "fallback": self.fallback.codec,
        }


def _to_rgb(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Drop alpha and resize to the export raster if needed."""
    rgb = image[..., :3]
    if rgb.shape[:2] != (height, width):
        img = Image.fromarray(np.ascontiguousarray(rgb)).resize(
            (width, height), Image.Resampling.BILINEAR
        )
        rgb = np.asarray(img, dtype=np.uint8)
    return rgb
