"""
Stream Module
=============

Frame extraction from an ffmpeg child process.

This module provides:
    - Frame: Immutable completed JPEG image
    - FrameReassembler: Cuts decoder stdout into frames at FF D9
    - FrameBuffer: Latest-frame slot for async consumers
    - ProcessSupervisor: Spawns, watches and respawns the decoder
    - StreamController: Public start/stop/restart API with events

Example:
    from rtsp_ffmpeg.stream import StreamController

    controller = StreamController(input="rtsp://camera.local/stream1")
    controller.on("data", handle_frame)
    await controller.start()
"""

from rtsp_ffmpeg.stream.frame import Frame
from rtsp_ffmpeg.stream.buffer import FrameBuffer
from rtsp_ffmpeg.stream.reassembler import EOI_MARKER, FrameReassembler, aiter_frames, iter_frames
from rtsp_ffmpeg.stream.command import build_command, build_ffmpeg_args
from rtsp_ffmpeg.stream.supervisor import ProcessSupervisor, SupervisorMetrics, SupervisorState
from rtsp_ffmpeg.stream.controller import StreamController


__all__ = [
    "EOI_MARKER",
    "Frame",
    "FrameBuffer",
    "FrameReassembler",
    "ProcessSupervisor",
    "StreamController",
    "SupervisorMetrics",
    "SupervisorState",
    "aiter_frames",
    "build_command",
    "build_ffmpeg_args",
    "iter_frames",
]
