"""
rtsp-ffmpeg
===========

Continuous JPEG frame extraction from live video streams via ffmpeg.

One StreamController supervises one ffmpeg process, cuts its stdout into
complete JPEG frames and emits them as ``data`` events.

Components:
    - stream: Reassembler, process supervisor and controller
    - config: Stream options and service settings
    - models: Event names and API schemas
    - main: FastAPI service serving the latest frame and an MJPEG feed

Example:
    from rtsp_ffmpeg import StreamController

    controller = StreamController(input="rtsp://camera.local/stream1", rate=5)
    controller.on("data", lambda frame: print(frame))
    await controller.start()
"""

__version__ = "0.1.0"

from rtsp_ffmpeg.config import StreamConfig
from rtsp_ffmpeg.errors import (
    DecoderExitError,
    DecoderStderrError,
    ExecutableNotFoundError,
    ProcessSpawnError,
    StreamConfigError,
    StreamError,
)
from rtsp_ffmpeg.models import StreamEvent
from rtsp_ffmpeg.stream import Frame, FrameReassembler, StreamController

__all__ = [
    "__version__",
    "DecoderExitError",
    "DecoderStderrError",
    "ExecutableNotFoundError",
    "Frame",
    "FrameReassembler",
    "ProcessSpawnError",
    "StreamConfig",
    "StreamConfigError",
    "StreamController",
    "StreamError",
    "StreamEvent",
]
