"""
Video Encoder

ffmpeg-backed encoder for exporting frame sequences. Raw RGB24 frames
are piped to ffmpeg stdin; output goes to a private temp file (MP4 needs
a seekable output) which is read back as bytes on finish.
"""

import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from ..errors import EncodingFailed, EncodingUnavailable

logger = logging.getLogger(__name__)


def ffmpeg_available(binary: str = "ffmpeg") -> bool:
    """True if binary (a name on PATH or a path to an executable) can be found."""
    return shutil.which(binary) is not None


@dataclass(frozen=True)
class CodecOption:
    """One container/codec combination the exporter may use."""

    container: str  # ffmpeg muxer name
    codec: str  # ffmpeg encoder name
    mime_type: str
    extension: str
    extra_args: tuple[str, ...] = ()


# Highest priority first
DEFAULT_CODEC_PRIORITY: tuple[CodecOption, ...] = (
    CodecOption(
        "mp4", "libx264", "video/mp4;codecs=avc1", "mp4",
        ("-preset", "fast", "-pix_fmt", "yuv420p", "-movflags", "+faststart"),
    ),
    CodecOption(
        "mp4", "mpeg4", "video/mp4", "mp4",
        ("-pix_fmt", "yuv420p", "-movflags", "+faststart"),
    ),
    CodecOption("webm", "libvpx-vp9", "video/webm;codecs=vp9", "webm", ("-pix_fmt", "yuv420p")),
    CodecOption("webm", "libvpx", "video/webm", "webm", ("-pix_fmt", "yuv420p")),
)

# ffmpeg's built-in MJPEG encoder, present in every build
FALLBACK_CODEC = CodecOption(
    "avi", "mjpeg", "video/x-msvideo", "avi", ("-pix_fmt", "yuvj420p", "-q:v", "3"),
)


def codec_priority_from_names(names, options=DEFAULT_CODEC_PRIORITY) -> tuple[CodecOption, ...]:
    """
    Map ffmpeg encoder names onto known codec options, keeping the given order.

    Raises:
        ValueError: Unknown encoder name or empty list
    """
    known = {o.codec: o for o in options}
    unknown = [n for n in names if n not in known]
    if unknown:
        raise ValueError(f"Unknown codecs {unknown}, expected some of {list(known)}")
    if not names:
        raise ValueError("Codec priority list is empty")
    return tuple(known[n] for n in names)


class FFmpegEncoder:
    """
    Single-use-at-a-time ffmpeg encoding session.

    open() -> write() per frame -> finish() returns the encoded bytes.
    abort() kills ffmpeg and discards partial output.
    """

    def __init__(
        self,
        binary: str = "ffmpeg",
        bitrate: int = 8_000_000,
        timeout: int = 120,
    ):
        self.binary = binary
        self.bitrate = bitrate
        self.timeout = timeout

        if not ffmpeg_available(binary):
            logger.warning(f"ffmpeg binary '{binary}' not found - video export unavailable")

        self._proc: subprocess.Popen | None = None
        self._workdir: Path | None = None
        self._output_path: Path | None = None
        self._supported: set[str] | None = None
        self._frames_written = 0

    def supported_codecs(self) -> set[str]:
        """
        Names of the video encoders this ffmpeg build provides.

        Probed once via `ffmpeg -encoders`; an empty set if ffmpeg cannot run.
        """
        if self._supported is not None:
            return self._supported

        supported: set[str] = set()
        try:
            result = subprocess.run(
                [self.binary, "-hide_banner", "-encoders"],
                capture_output=True,
                timeout=15,
                check=True,
            )
            supported = _parse_encoders(result.stdout.decode("utf-8", errors="replace"))
            logger.info(f"ffmpeg encoders probed: {len(supported)} video encoders")
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"ffmpeg encoder probe failed: {e}")

        self._supported = supported
        return supported

    def open(self, option: CodecOption, width: int, height: int, fps: float) -> None:
        """
        Start ffmpeg for a (width x height) RGB24 stream at fps.

        Raises:
            EncodingUnavailable: ffmpeg could not be started
        """
        if self._proc is not None:
            raise EncodingUnavailable("Encoder already in use")

        self._workdir = Path(tempfile.mkdtemp(prefix="stopmo-export-"))
        self._output_path = self._workdir / f"export.{option.extension}"
        self._frames_written = 0

        cmd = [
            self.binary,
            "-y",
            "-loglevel", "error",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{width}x{height}",
            "-r", str(fps),
            "-i", "pipe:0",
            # Most codecs need even dimensions
            "-vf", "pad=ceil(iw/2)*2:ceil(ih/2)*2",
            "-c:v", option.codec,
            "-b:v", str(self.bitrate),
            *option.extra_args,
            "-f", option.container,
            str(self._output_path),
        ]

        logger.info(f"Encoder opening: {option.codec}/{option.container} {width}x{height} @ {fps}fps")

        try:
            self._proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            self._cleanup_workdir()
            raise EncodingUnavailable(f"Could not start {self.binary}: {e}") from e

    def write(self, rgb: np.ndarray) -> None:
        """
        Write one RGB24 frame.

        Raises:
            EncodingFailed: ffmpeg pipe broke
        """
        if self._proc is None:
            raise EncodingFailed("Encoder is not open")
        try:
            self._proc.stdin.write(np.ascontiguousarray(rgb, dtype=np.uint8).tobytes())
            self._frames_written += 1
        except (BrokenPipeError, OSError) as e:
            raise EncodingFailed(
                f"ffmpeg pipe broken at frame {self._frames_written}: {self._stderr_tail()}"
            ) from e

    def finish(self) -> bytes:
        """
        Finalize the stream and return the encoded bytes.

        Raises:
            EncodingFailed: ffmpeg failed, timed out or produced no output
        """
        if self._proc is None:
            raise EncodingFailed("Encoder is not open")

        proc = self._proc
        try:
            proc.stdin.close()
            _, stderr = proc.communicate(timeout=self.timeout)
            if proc.returncode != 0:
                raise EncodingFailed(
                    f"ffmpeg exited with code {proc.returncode}: "
                    f"{stderr.decode('utf-8', errors='replace')[-500:]}"
                )
            if not self._output_path.exists():
                raise EncodingFailed("ffmpeg produced no output file")
            data = self._output_path.read_bytes()
            logger.info(
                f"Encoding finished: {self._frames_written} frames, "
                f"{len(data) / (1024 * 1024):.2f}MB"
            )
            return data
        except subprocess.TimeoutExpired as e:
            proc.kill()
            proc.wait()
            raise EncodingFailed(f"ffmpeg timed out after {self.timeout}s") from e
        except OSError as e:
            raise EncodingFailed(f"ffmpeg finalization failed: {e}") from e
        finally:
            self._proc = None
            self._cleanup_workdir()

    def abort(self) -> None:
        """Kill ffmpeg and discard partial output."""
        proc = self._proc
        self._proc = None
        if proc is not None:
            try:
                proc.kill()
                proc.wait(timeout=5)
            except (OSError, subprocess.SubprocessError) as e:
                logger.error(f"Error killing ffmpeg: {e}")
            logger.warning(f"Encoding aborted after {self._frames_written} frames")
        self._cleanup_workdir()

    def _stderr_tail(self) -> str:
        try:
            self._proc.kill()
            _, stderr = self._proc.communicate(timeout=5)
            return stderr.decode("utf-8", errors="replace")[-500:]
        except (OSError, subprocess.SubprocessError, ValueError):
            return "<no stderr>"

    def _cleanup_workdir(self) -> None:
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
        self._workdir = None
        self._output_path = None


def _parse_encoders(listing: str) -> set[str]:
    """
    Parse `ffmpeg -encoders` output into the set of video encoder names.

    Lines after the '------' separator look like ' V....D libx264   description'.
    """
    names: set[str] = set()
    in_table = False
    for line in listing.splitlines():
        stripped = line.strip()
        if stripped.startswith("------"):
            in_table = True
            continue
        if not in_table or not stripped:
            continue
        parts = stripped.split()
        if len(parts) >= 2 and parts[0].startswith("V"):
            names.add(parts[1])
    return names
