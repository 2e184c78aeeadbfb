"""
API module for stopmo.

Provides:
- FastAPI server driving a StopMotionSession
- REST endpoints for capture, playback, keying, optics and export
"""

from .server import create_app, start_server

__all__ = ["create_app", "start_server"]
