"""
Status Schema
=============

Pydantic models returned by the HTTP service.

Example:
    status = StreamStatus.from_controller(controller)
    return JSONResponse(status.model_dump(mode="json"))
"""

from typing import Optional

from pydantic import BaseModel, Field


class FrameInfo(BaseModel):
    """Metadata of the most recent frame (never the image itself)."""

    index: int = Field(..., ge=0, description="Frame counter since controller creation")
    timestamp: float = Field(..., gt=0, description="UNIX time the frame completed")
    size: int = Field(..., ge=0, description="JPEG size in bytes")


class StreamStatus(BaseModel):
    """
    Snapshot of one stream's supervisor state and counters.

    Attributes:
        input: Stream URI being decoded
        state: Supervisor state (IDLE, STARTING, RUNNING, STOPPING)
        running: Whether a decoder process is live
        pid: Decoder process id when running
        restart_pending: Whether a delayed respawn is scheduled
        spawn_count: Processes spawned so far
        restart_count: Automatic respawns after clean exits
        frames_emitted: Frames delivered to subscribers
        bytes_read: Bytes read from decoder stdout
        last_returncode: Exit status of the last decoder that ended on its own
        latest_frame: Metadata of the newest frame, if any
    """

    input: str
    state: str
    running: bool
    pid: Optional[int] = None
    restart_pending: bool = False
    spawn_count: int = 0
    restart_count: int = 0
    frames_emitted: int = 0
    bytes_read: int = 0
    last_returncode: Optional[int] = None
    latest_frame: Optional[FrameInfo] = None

    @classmethod
    def from_controller(cls, controller) -> "StreamStatus":
        """Build a snapshot from a StreamController."""
        supervisor = controller.supervisor
        frame = controller.latest_frame

        return cls(
            input=controller.config.input,
            state=supervisor.state.value,
            running=supervisor.running,
            pid=supervisor.pid,
            restart_pending=supervisor.restart_pending,
            latest_frame=(
                FrameInfo(index=frame.index, timestamp=frame.timestamp, size=len(frame))
                if frame is not None
                else None
            ),
            **supervisor.metrics.to_dict(),
        )
