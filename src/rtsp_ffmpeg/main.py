"""
rtsp-ffmpeg Service
===================

FastAPI entry point serving frames of one supervised stream.

Endpoints:
    GET  /             - Service information
    GET  /health       - Liveness probe (is process alive?)
    GET  /ready        - Readiness probe (decoder running + frame received?)
    GET  /metrics      - Supervisor state and counters
    GET  /frame.jpg    - Latest complete frame
    GET  /stream.mjpg  - multipart/x-mixed-replace MJPEG feed
    POST /start        - Start the decoder
    POST /stop         - Stop the decoder
    POST /restart      - Restart a running decoder
    WS   /ws/frames    - Binary JPEG frames as they complete
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response, StreamingResponse

from rtsp_ffmpeg import __version__
from rtsp_ffmpeg.config import load_config, setup_logging
from rtsp_ffmpeg.errors import StreamError
from rtsp_ffmpeg.models import StreamEvent, StreamStatus
from rtsp_ffmpeg.stream import StreamController


logger = logging.getLogger(__name__)

settings = load_config()
setup_logging(settings)


MJPEG_BOUNDARY = "frame"
DISCONNECT_POLL_SECONDS = 1.0


# =============================================================================
# Global State
# =============================================================================

_controller: Optional[StreamController] = None
_startup_time: float = time.time()


def get_controller() -> Optional[StreamController]:
    return _controller


def _log_stream_error(error: StreamError) -> None:
    logger.error(f"Stream error ({type(error).__name__}): {error}")


def _not_configured() -> JSONResponse:
    return JSONResponse(
        {"error": "No stream input configured (set RTSP_FFMPEG_INPUT)"},
        status_code=503,
    )


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the configured stream and stop it on shutdown."""
    global _controller, _startup_time

    _startup_time = time.time()
    logger.info(f"Starting rtsp-ffmpeg {__version__}")

    if settings.stream is None:
        logger.warning("No stream input configured, serving without a decoder")
    else:
        _controller = StreamController(settings.stream)
        _controller.on(StreamEvent.ERROR, _log_stream_error)
        logger.info(f"Stream input: {settings.stream.input}")
        # Missing ffmpeg is fatal for the service
        await _controller.start()

    yield

    logger.info("Shutting down gracefully...")
    if _controller is not None:
        await _controller.stop()
    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="rtsp-ffmpeg",
    description="JPEG frame extraction from live video streams",
    version=__version__,
    lifespan=lifespan,
)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    controller = get_controller()
    return JSONResponse({
        "service": "rtsp-ffmpeg",
        "version": __version__,
        "input": controller.config.input if controller else None,
        "state": controller.state.value if controller else None,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness probe - is there a frame to serve?

    Returns 200 once the decoder is running and has produced a frame,
    503 otherwise.
    """
    controller = get_controller()

    running = controller.running if controller else False
    has_frame = controller is not None and controller.latest_frame is not None

    body = {
        "status": "ready" if running and has_frame else "not_ready",
        "decoder_running": running,
        "frame_available": has_frame,
    }
    return JSONResponse(body, status_code=200 if running and has_frame else 503)


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Supervisor state and counters."""
    controller = get_controller()
    if controller is None:
        return _not_configured()

    status = StreamStatus.from_controller(controller)
    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        **status.model_dump(mode="json"),
    })


@app.get("/frame.jpg")
async def latest_frame() -> Response:
    """Latest complete frame as image/jpeg."""
    controller = get_controller()
    if controller is None:
        return _not_configured()

    frame = controller.latest_frame
    if frame is None:
        return JSONResponse({"error": "No frame available yet"}, status_code=503)

    return Response(
        content=frame.data,
        media_type="image/jpeg",
        headers={
            "Cache-Control": "no-store",
            "X-Frame-Index": str(frame.index),
        },
    )


@app.get("/stream.mjpg")
async def mjpeg_stream(request: Request) -> Response:
    """Live MJPEG feed, one multipart part per frame."""
    controller = get_controller()
    if controller is None:
        return _not_configured()

    async def parts() -> AsyncIterator[bytes]:
        buffer = controller.open_buffer()
        try:
            # Poll so a client that left is noticed even while no frames arrive
            while not await request.is_disconnected():
                frame = await buffer.get(timeout=DISCONNECT_POLL_SECONDS)
                if frame is None:
                    continue
                yield (
                    f"--{MJPEG_BOUNDARY}\r\n"
                    "Content-Type: image/jpeg\r\n"
                    f"Content-Length: {len(frame)}\r\n\r\n"
                ).encode("ascii") + frame + b"\r\n"
        finally:
            controller.close_buffer(buffer)
            logger.debug("MJPEG client disconnected")

    return StreamingResponse(
        parts(),
        media_type=f"multipart/x-mixed-replace; boundary={MJPEG_BOUNDARY}",
        headers={"Cache-Control": "no-store"},
    )


@app.post("/start")
async def start_stream() -> JSONResponse:
    """Start the decoder (no-op while running)."""
    controller = get_controller()
    if controller is None:
        return _not_configured()

    try:
        await controller.start()
    except StreamError as e:
        logger.error(f"Failed to start stream: {e}")
        return JSONResponse({"error": str(e)}, status_code=500)

    return JSONResponse(StreamStatus.from_controller(controller).model_dump(mode="json"))


@app.post("/stop")
async def stop_stream() -> JSONResponse:
    """Stop the decoder."""
    controller = get_controller()
    if controller is None:
        return _not_configured()

    await controller.stop()
    return JSONResponse(StreamStatus.from_controller(controller).model_dump(mode="json"))


@app.post("/restart")
async def restart_stream() -> JSONResponse:
    """Restart the decoder if it is running."""
    controller = get_controller()
    if controller is None:
        return _not_configured()

    try:
        await controller.restart()
    except StreamError as e:
        logger.error(f"Failed to restart stream: {e}")
        return JSONResponse({"error": str(e)}, status_code=500)

    return JSONResponse(StreamStatus.from_controller(controller).model_dump(mode="json"))


# =============================================================================
# WebSocket Endpoints
# =============================================================================

@app.websocket("/ws/frames")
async def frame_stream(websocket: WebSocket) -> None:
    """WebSocket endpoint pushing each frame as a binary message."""
    await websocket.accept()

    controller = get_controller()
    if controller is None:
        await websocket.close(code=1011, reason="No stream input configured")
        return

    async def send_frames() -> None:
        async for frame in controller.frames():
            await websocket.send_bytes(frame.data)

    async def wait_for_disconnect() -> None:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    logger.info("Client connected to /ws/frames")
    tasks = [
        asyncio.create_task(send_frames(), name="ws_send_frames"),
        asyncio.create_task(wait_for_disconnect(), name="ws_wait_disconnect"),
    ]
    try:
        # Whichever ends first (client gone or send failed) ends the session
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"WebSocket error: {error}")
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Client disconnected from /ws/frames")


# =============================================================================
# Main Entry Point
# =============================================================================

def run() -> None:
    """Console entry point."""
    import uvicorn

    # Container platforms use PORT env var
    port = int(os.environ.get("PORT", settings.server.port))

    uvicorn.run(
        "rtsp_ffmpeg.main:app",
        host=settings.server.host,
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    run()
