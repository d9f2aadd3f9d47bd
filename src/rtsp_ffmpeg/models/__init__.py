"""
Data Models
===========

Event names and API schemas for rtsp-ffmpeg.

Models:
    - StreamEvent: Names of controller events
    - FrameInfo: Frame metadata exposed over HTTP
    - StreamStatus: Supervisor state and counters snapshot
"""

from rtsp_ffmpeg.models.events import StreamEvent
from rtsp_ffmpeg.models.status import FrameInfo, StreamStatus

__all__ = [
    "StreamEvent",
    "FrameInfo",
    "StreamStatus",
]
