"""
FastAPI Server - REST API driving a capture session

Provides HTTP endpoints for:
- Status and health checks
- Live preview, capture and the frame sequence
- Playback control
- Chroma key, backgrounds and camera optics
- Video export and captioning

Security: Designed for local use. Do NOT expose directly to the internet
without authentication.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from PIL import UnidentifiedImageError
from pydantic import BaseModel, Field

from .. import __version__
from ..errors import (
    DeviceUnavailable,
    EmptySequence,
    EncodingFailed,
    EncodingUnavailable,
    OutOfRange,
)

logger = logging.getLogger(__name__)


# Pydantic models for API


class ActionResponse(BaseModel):
    """Action result response."""

    success: bool
    message: str
    timestamp: str
    data: dict[str, Any] | None = None


class ClearRequest(BaseModel):
    confirm: bool = False


class CursorRequest(BaseModel):
    index: int


class FpsRequest(BaseModel):
    fps: float = Field(gt=0)


class ChromaRequest(BaseModel):
    """Chroma key update; omitted fields are left unchanged."""

    color: str | None = None
    tolerance: float | None = Field(default=None, ge=0)
    background_id: str | None = None


class OnionSkinRequest(BaseModel):
    """Onion skin update; omitted fields are left unchanged."""

    enabled: bool | None = None
    opacity: float | None = Field(default=None, ge=0.0, le=1.0)


class PointRequest(BaseModel):
    """Normalized image coordinates."""

    x: float
    y: float


class ExposureRequest(BaseModel):
    stops: float = Field(ge=-2.0, le=2.0)


class FocusModeRequest(BaseModel):
    mode: str


class FocusDistanceRequest(BaseModel):
    value: float


# Global session reference
_session = None


def set_session(session) -> None:
    """Set the session the endpoints operate on."""
    global _session
    _session = session


def _require_session():
    if _session is None:
        raise HTTPException(status_code=503, detail="Session not available")
    return _session


def _action(message: str, success: bool = True, data: dict | None = None) -> ActionResponse:
    return ActionResponse(
        success=success,
        message=message,
        timestamp=datetime.now().isoformat(),
        data=data,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="stopmo API",
        description="REST API for stop motion capture with live chroma key",
        version=__version__,
    )

    # ==================== Error mapping ====================

    @app.exception_handler(OutOfRange)
    async def out_of_range_handler(request: Request, exc: OutOfRange):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(EmptySequence)
    async def empty_sequence_handler(request: Request, exc: EmptySequence):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(EncodingUnavailable)
    @app.exception_handler(EncodingFailed)
    async def encoding_handler(request: Request, exc: Exception):
        logger.error(f"Export failed: {exc}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(DeviceUnavailable)
    async def device_handler(request: Request, exc: DeviceUnavailable):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    # ==================== Status Endpoints ====================

    @app.get("/", response_model=dict)
    async def root():
        """Root endpoint - basic health check."""
        return {
            "service": "stopmo",
            "version": __version__,
            "status": "running" if _session is not None else "idle",
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.get("/status")
    async def get_status():
        """Get full session status."""
        session = _require_session()
        return {"timestamp": datetime.now().isoformat(), **session.get_status()}

    @app.get("/preview.jpg")
    async def preview(quality: int = Query(default=85, ge=1, le=100)):
        """Current preview: playback frame while playing, live composite otherwise."""
        session = _require_session()
        image_bytes = session.preview_jpeg(quality=quality)
        if image_bytes is None:
            raise HTTPException(status_code=503, detail="No live frame yet")
        return Response(
            content=image_bytes,
            media_type="image/jpeg",
            headers={"Content-Disposition": 'inline; filename="preview.jpg"'},
        )

    @app.get("/preview/onion-skin")
    async def get_onion_skin():
        session = _require_session()
        return session.onion.to_dict()

    @app.post("/preview/onion-skin", response_model=ActionResponse)
    async def set_onion_skin(request: OnionSkinRequest):
        """Overlay the last captured frame on the live preview."""
        session = _require_session()
        onion = session.set_onion_skin(enabled=request.enabled, opacity=request.opacity)
        return _action(
            f"Onion skin {'on' if onion.enabled else 'off'} at {onion.opacity:.0%}",
            data=onion.to_dict(),
        )

    # ==================== Sequence Endpoints ====================

    @app.post("/capture", response_model=ActionResponse)
    async def capture():
        """Append the current composited preview to the sequence."""
        session = _require_session()
        frame = await asyncio.to_thread(session.capture)
        return _action(
            f"Captured frame {len(session.store)}",
            data={"frame": frame.to_dict(), "cursor": session.store.cursor},
        )

    @app.get("/frames")
    async def list_frames():
        session = _require_session()
        frames = session.store.snapshot()
        return {
            "count": len(frames),
            "cursor": session.store.cursor,
            "frames": [f.to_dict() for f in frames],
        }

    @app.get("/frames/{index}.jpg")
    async def frame_image(index: int, quality: int = Query(default=90, ge=1, le=100)):
        session = _require_session()
        frame = session.store.frame_at(index)
        return Response(content=frame.to_jpeg(quality=quality), media_type="image/jpeg")

    @app.delete("/frames/{frame_id}", response_model=ActionResponse)
    async def delete_frame(frame_id: str):
        session = _require_session()
        try:
            await asyncio.to_thread(session.delete_frame, frame_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown frame: {frame_id}")
        return _action("Frame deleted", data={"count": len(session.store), "cursor": session.store.cursor})

    @app.post("/frames/clear", response_model=ActionResponse)
    async def clear_frames(request: ClearRequest):
        """Remove every frame. Requires confirm=true."""
        session = _require_session()
        if not request.confirm:
            raise HTTPException(status_code=400, detail="Clearing requires confirm=true")
        # Waits for a running export to release the sequence
        removed = await asyncio.to_thread(session.clear, True)
        return _action(f"Cleared {removed} frames", data={"removed": removed})

    @app.post("/cursor", response_model=ActionResponse)
    async def set_cursor(request: CursorRequest):
        session = _require_session()
        cursor = session.set_cursor(request.index)
        return _action(f"Cursor at {cursor}", data={"cursor": cursor})

    # ==================== Playback Endpoints ====================

    @app.post("/playback/start", response_model=ActionResponse)
    async def start_playback():
        session = _require_session()
        started = session.start_playback()
        return _action(
            "Playback started" if started else "Nothing to play",
            success=started,
            data=session.clock.get_status(),
        )

    @app.post("/playback/stop", response_model=ActionResponse)
    async def stop_playback():
        session = _require_session()
        await asyncio.to_thread(session.stop_playback)
        return _action("Playback stopped", data=session.clock.get_status())

    @app.post("/playback/fps", response_model=ActionResponse)
    async def set_fps(request: FpsRequest):
        session = _require_session()
        fps = await asyncio.to_thread(session.set_fps, request.fps)
        return _action(f"Playback at {fps:g} fps", data={"fps": fps, "period_ms": session.clock.period_ms})

    # ==================== Chroma Key Endpoints ====================

    @app.post("/chroma", response_model=ActionResponse)
    async def set_chroma(request: ChromaRequest):
        session = _require_session()
        try:
            chroma = session.set_chroma_key(
                color=request.color,
                tolerance=request.tolerance,
                background_id=request.background_id,
            )
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown background: {request.background_id}")
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return _action(
            "Chroma key updated",
            data={**chroma.to_dict(), "background_id": session.background_id},
        )

    @app.post("/chroma/disable", response_model=ActionResponse)
    async def disable_chroma():
        session = _require_session()
        session.disable_keying()
        return _action("Chroma keying disabled")

    @app.post("/chroma/sample", response_model=ActionResponse)
    async def sample_chroma(request: PointRequest):
        """Eyedropper: set the key color from the live image."""
        session = _require_session()
        pixel = session.sample_key_color(request.x, request.y)
        if pixel is None:
            raise HTTPException(status_code=503, detail="No live frame to sample yet")
        return _action(f"Key color set to {pixel.to_hex()}", data=pixel.to_dict())

    @app.get("/backgrounds")
    async def list_backgrounds():
        session = _require_session()
        return {
            "selected": session.background_id,
            "backgrounds": [e.to_dict() for e in session.backgrounds.entries()],
        }

    @app.post("/backgrounds", response_model=ActionResponse)
    async def upload_background(request: Request, label: str = "Custom", select: bool = True):
        """Import a background from the raw request body (JPEG, PNG, ...)."""
        session = _require_session()
        data = await request.body()
        if not data:
            raise HTTPException(status_code=422, detail="Empty image upload")
        try:
            entry = session.import_background(data, label=label, select=select)
        except UnidentifiedImageError:
            raise HTTPException(status_code=422, detail="Upload is not a decodable image")
        return _action(f"Background {entry.id} added", data=entry.to_dict())

    # ==================== Camera Endpoints ====================

    @app.post("/camera/exposure", response_model=ActionResponse)
    async def set_exposure(request: ExposureRequest):
        session = _require_session()
        exposure = session.set_exposure(request.stops)
        return _action(
            f"Exposure {exposure.compensation_stops:+.1f} EV",
            data={
                "stops": exposure.compensation_stops,
                "brightness_factor": exposure.brightness_factor,
                "contrast_percent": exposure.contrast_percent,
            },
        )

    @app.post("/camera/focus-mode", response_model=ActionResponse)
    async def set_focus_mode(request: FocusModeRequest):
        session = _require_session()
        try:
            applied = session.set_focus_mode(request.mode)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return _action(
            f"Focus mode {request.mode}" if applied else "Focus mode not supported by device",
            success=applied,
        )

    @app.post("/camera/focus-distance", response_model=ActionResponse)
    async def set_focus_distance(request: FocusDistanceRequest):
        session = _require_session()
        applied = session.set_focus_distance(request.value)
        return _action(
            "Focus distance set" if applied else "Focus distance not applied",
            success=applied,
            data={"focus_distance": session.controller.focus_distance},
        )

    @app.post("/camera/point-of-interest", response_model=ActionResponse)
    async def set_point_of_interest(request: PointRequest):
        session = _require_session()
        applied = session.set_point_of_interest(request.x, request.y)
        return _action(
            "Point of interest set" if applied else "Point of interest not supported by device",
            success=applied,
        )

    # ==================== Export & Caption ====================

    @app.post("/export")
    async def export(save: bool = False):
        """Encode the sequence and return the video file."""
        session = _require_session()
        artifact = await asyncio.to_thread(session.export)

        headers = {
            "Content-Disposition": f'attachment; filename="{artifact.filename}"',
            "X-Frame-Count": str(artifact.frame_count),
            "X-Duration-Ms": f"{artifact.duration_ms:.0f}",
        }
        if save:
            from ..config import export_config

            path = await asyncio.to_thread(artifact.save, export_config.output_dir)
            headers["X-Saved-Path"] = str(path)

        return Response(content=artifact.data, media_type=artifact.mime_type, headers=headers)

    @app.post("/caption")
    async def caption():
        """Generate a title and story for the current sequence."""
        session = _require_session()
        result = await asyncio.to_thread(session.caption)
        if result is None:
            raise HTTPException(status_code=409, detail="Nothing to caption: sequence is empty")
        return result.model_dump()

    return app


async def start_server(host: str = "127.0.0.1", port: int = 8080, session=None) -> None:
    """
    Start the API server.

    Args:
        host: Bind host
        port: Bind port
        session: StopMotionSession instance
    """
    set_session(session)
    app = create_app()

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=True,
    )
    server = uvicorn.Server(config)

    logger.info(f"Starting API server on {host}:{port}")
    await server.serve()
