"""
Export module for stopmo.

Provides:
- Exporter / ExportArtifact: sequence -> single video artifact
- FFmpegEncoder: ffmpeg subprocess encoder with codec probing
- CodecOption priority list and fallback
"""

from .encoder import (
    DEFAULT_CODEC_PRIORITY,
    FALLBACK_CODEC,
    CodecOption,
    FFmpegEncoder,
    codec_priority_from_names,
    ffmpeg_available,
)
from .exporter import ExportArtifact, Exporter, export_filename

__all__ = [
    "Exporter",
    "ExportArtifact",
    "export_filename",
    "FFmpegEncoder",
    "CodecOption",
    "DEFAULT_CODEC_PRIORITY",
    "FALLBACK_CODEC",
    "codec_priority_from_names",
    "ffmpeg_available",
]
