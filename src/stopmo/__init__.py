"""
stopmo - Stop motion capture with live chroma key compositing

Live camera -> exposure + chroma key -> capture -> playback -> video export
"""

__version__ = "1.0.0"
__author__ = "stopmo Team"
