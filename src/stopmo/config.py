"""
Configuration management for stopmo using Pydantic settings.

Loads configuration from:
1. .env file (if present)
2. config/config.json (defaults)
3. Environment variables (override with STOPMO_ prefix)
"""

import json
import logging
import math
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
RUNTIME_DIR = PROJECT_ROOT / "runtime"

# Largest possible RGB distance for 8-bit channels
MAX_KEY_TOLERANCE = math.sqrt(3) * 255

# Load .env file from project root (if exists)
_env_file = PROJECT_ROOT / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
    logger.debug(f"Loaded environment from {_env_file}")


def load_json_config() -> dict[str, Any]:
    """Load configuration from config.json file."""
    config_file = CONFIG_DIR / "config.json"
    if config_file.exists():
        with open(config_file) as f:
            return json.load(f)
    return {}


_json_config = load_json_config()


class CameraConfig(BaseSettings):
    """Live source configuration."""

    model_config = {"env_prefix": "STOPMO_CAMERA_"}

    backend: str = Field(
        default=_json_config.get("camera", {}).get("backend", "synthetic"),
        description="Live source backend: 'synthetic' or 'picamera2'",
    )
    resolution: tuple[int, int] = Field(
        default=tuple(_json_config.get("camera", {}).get("resolution", [1280, 720])),
        description="Capture resolution (width, height)",
    )
    framerate: int = Field(
        default=_json_config.get("camera", {}).get("framerate", 30),
        description="Live source frame rate",
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v):
        if v not in ("synthetic", "picamera2"):
            raise ValueError(f"backend must be 'synthetic' or 'picamera2', got {v}")
        return v

    @field_validator("resolution", mode="before")
    @classmethod
    def parse_resolution(cls, v):
        if isinstance(v, list):
            return tuple(v)
        return v

    @field_validator("framerate")
    @classmethod
    def validate_framerate(cls, v):
        if v < 1 or v > 120:
            raise ValueError(f"framerate must be between 1 and 120, got {v}")
        return v


class ChromaConfig(BaseSettings):
    """Default chroma key settings applied at session start."""

    model_config = {"env_prefix": "STOPMO_CHROMA_"}

    key_color: str = Field(
        default=_json_config.get("chroma", {}).get("key_color", "#00ff00"),
        description="Reference color to key out (#rrggbb)",
    )
    tolerance: float = Field(
        default=_json_config.get("chroma", {}).get("tolerance", 100.0),
        description="Maximum RGB distance still treated as key color",
    )
    background: str = Field(
        default=_json_config.get("chroma", {}).get("background", "space"),
        description="Background catalog id ('none' disables keying)",
    )

    @field_validator("tolerance")
    @classmethod
    def validate_tolerance(cls, v):
        if v < 0 or v > MAX_KEY_TOLERANCE:
            raise ValueError(f"tolerance must be 0-{MAX_KEY_TOLERANCE:.1f}, got {v}")
        return v


class PlaybackConfig(BaseSettings):
    """Sequence playback configuration."""

    model_config = {"env_prefix": "STOPMO_PLAYBACK_"}

    fps: float = Field(
        default=_json_config.get("playback", {}).get("fps", 12),
        description="Playback and export frame rate",
    )

    @field_validator("fps")
    @classmethod
    def validate_fps(cls, v):
        if v <= 0:
            raise ValueError(f"fps must be positive, got {v}")
        return v


class PreviewConfig(BaseSettings):
    """Live preview configuration."""

    model_config = {"env_prefix": "STOPMO_PREVIEW_"}

    onion_skin: bool = Field(
        default=_json_config.get("preview", {}).get("onion_skin", True),
        description="Overlay the last captured frame on the live preview",
    )
    onion_opacity: float = Field(
        default=_json_config.get("preview", {}).get("onion_opacity", 0.4),
        description="Onion skin opacity (0-1)",
    )

    @field_validator("onion_opacity")
    @classmethod
    def validate_onion_opacity(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"onion_opacity must be 0-1, got {v}")
        return v


class ExportConfig(BaseSettings):
    """Video export configuration."""

    model_config = {"env_prefix": "STOPMO_EXPORT_"}

    ffmpeg_binary: str = Field(
        default=_json_config.get("export", {}).get("ffmpeg_binary", "ffmpeg"),
        description="ffmpeg executable name or path",
    )
    bitrate: int = Field(
        default=_json_config.get("export", {}).get("bitrate", 8_000_000),
        description="Target video bitrate (bits per second)",
    )
    encode_timeout: int = Field(
        default=_json_config.get("export", {}).get("encode_timeout", 120),
        description="Seconds to wait for ffmpeg to finalize",
    )
    output_dir: str = Field(
        default=_json_config.get("export", {}).get(
            "output_dir", str(RUNTIME_DIR / "exports")
        ),
        description="Directory where saved exports are written",
    )
    codec_priority: list[str] = Field(
        default=_json_config.get("export", {}).get(
            "codec_priority", ["libx264", "mpeg4", "libvpx-vp9", "libvpx"]
        ),
        description="ffmpeg encoders to try, highest priority first",
    )

    @field_validator("codec_priority")
    @classmethod
    def validate_codec_priority(cls, v):
        from .export.encoder import codec_priority_from_names

        codec_priority_from_names(v)
        return v


class CaptionConfig(BaseSettings):
    """Generative captioning configuration."""

    model_config = {"env_prefix": "STOPMO_CAPTION_"}

    enabled: bool = Field(
        default=_json_config.get("caption", {}).get("enabled", True),
        description="Enable captioning of finished sequences",
    )
    api_key: str = Field(
        default=_json_config.get("caption", {}).get("api_key", ""),
        description="Gemini API key",
    )
    model: str = Field(
        default=_json_config.get("caption", {}).get("model", "gemini-2.5-flash"),
        description="Gemini model name",
    )
    max_attempts: int = Field(
        default=_json_config.get("caption", {}).get("max_attempts", 3),
        description="Attempts before falling back to the default caption",
    )

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v):
        if v < 1:
            raise ValueError(f"max_attempts must be >= 1, got {v}")
        return v


class APIConfig(BaseSettings):
    """FastAPI server configuration."""

    model_config = {"env_prefix": "STOPMO_API_"}

    enabled: bool = Field(
        default=_json_config.get("api", {}).get("enabled", True),
        description="Enable REST API server",
    )
    host: str = Field(
        default=_json_config.get("api", {}).get("host", "127.0.0.1"),
        description="API server bind host",
    )
    port: int = Field(
        default=_json_config.get("api", {}).get("port", 8080),
        description="API server port",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = {"env_prefix": "STOPMO_LOGGING_"}

    level: str = Field(
        default=_json_config.get("logging", {}).get("level", "INFO"),
        description="Log level",
    )
    file: str = Field(
        default=_json_config.get("logging", {}).get(
            "file", str(RUNTIME_DIR / "logs" / "stopmo.log")
        ),
        description="Log file path",
    )


# Global configuration instances
camera_config = CameraConfig()
chroma_config = ChromaConfig()
playback_config = PlaybackConfig()
preview_config = PreviewConfig()
export_config = ExportConfig()
caption_config = CaptionConfig()
api_config = APIConfig()
logging_config = LoggingConfig()


def setup_logging() -> None:
    """Configure logging for the application with log rotation."""
    from logging.handlers import RotatingFileHandler

    log_dir = Path(logging_config.file).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        logging_config.file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, logging_config.level.upper()))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(logging.StreamHandler())

    logger.info(
        f"Logging configured: level={logging_config.level}, "
        f"file={logging_config.file} (rotating, 10MB max, 5 backups)"
    )


def ensure_runtime_dirs() -> None:
    """Create runtime directories if they don't exist."""
    dirs = [
        Path(export_config.output_dir),
        Path(logging_config.file).parent,
    ]
    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {d}")
