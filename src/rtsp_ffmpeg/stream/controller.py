"""
Stream Controller
=================

Public entry point: one controller extracts JPEG frames from one stream.

Composes a FrameReassembler and a ProcessSupervisor, validates options
at construction, and re-emits lifecycle and frame events to subscribers.

Events:
    start  - decoder spawned (no payload)
    stop   - decoder terminated (no payload)
    data   - one complete frame is ready (payload: Frame, the raw JPEG bytes)
    exit   - decoder exited on its own (payload: return code)
    error  - background failure (payload: StreamError subclass)

Example:
    from rtsp_ffmpeg import StreamController

    controller = StreamController(input="rtsp://camera.local/stream1", rate=5)
    controller.on("data", lambda frame: print(len(frame)))

    async with controller:
        async for frame in controller.frames():
            save(frame.data)
"""

import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from rtsp_ffmpeg.config import StreamConfig, build_stream_config
from rtsp_ffmpeg.errors import StreamConfigError
from rtsp_ffmpeg.models import StreamEvent
from rtsp_ffmpeg.stream.buffer import FrameBuffer
from rtsp_ffmpeg.stream.command import build_command
from rtsp_ffmpeg.stream.frame import Frame
from rtsp_ffmpeg.stream.reassembler import FrameReassembler
from rtsp_ffmpeg.stream.supervisor import ProcessSupervisor, SupervisorState


logger = logging.getLogger(__name__)


Listener = Callable[..., Any]


class StreamController:
    """
    Start/stop/restart a decoded stream and fan its events out.

    All listeners run synchronously on the event loop, in stream order.
    A listener that raises is logged and does not affect the stream or
    other listeners.

    Attributes:
        config: Validated, immutable stream options
        latest_frame: Most recently completed frame, or None
    """

    def __init__(self, config: Optional[StreamConfig] = None, **options: Any) -> None:
        """
        Initialize stream controller.

        Args:
            config: Prebuilt StreamConfig. If omitted, ``options`` are
                validated into one.
            **options: input, rate, resolution, quality, arguments, cmd, ...

        Raises:
            StreamConfigError: If ``input`` is missing or an option is invalid
        """
        if config is not None and options:
            raise StreamConfigError("pass either a StreamConfig or keyword options, not both")

        self.config = config if config is not None else build_stream_config(options)

        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self.latest_frame: Optional[Frame] = None

        self._reassembler = FrameReassembler()
        self._supervisor = ProcessSupervisor(
            command=build_command(self.config),
            reassembler=self._reassembler,
            emit=self.emit,
            restart_delay=self.config.restart_delay_seconds,
            fatal_stderr=self.config.fatal_stderr,
            stop_timeout=self.config.stop_timeout_seconds,
            read_chunk_size=self.config.read_chunk_size,
            source=self.config.input,
        )

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def state(self) -> SupervisorState:
        return self._supervisor.state

    @property
    def running(self) -> bool:
        """Whether a decoder process is currently live."""
        return self._supervisor.running

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def on(self, event: str, listener: Listener) -> Listener:
        """Subscribe ``listener`` to ``event``. Returns the listener."""
        self._listeners[StreamEvent(event).value].append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        """Unsubscribe ``listener``; unknown listeners are ignored."""
        listeners = self._listeners.get(StreamEvent(event).value, [])
        if listener in listeners:
            listeners.remove(listener)

    def once(self, event: str, listener: Listener) -> Listener:
        """Subscribe ``listener`` for a single delivery of ``event``."""

        def _wrapper(*args: Any) -> Any:
            self.off(event, _wrapper)
            return listener(*args)

        return self.on(event, _wrapper)

    def emit(self, event: str, *args: Any) -> None:
        """Deliver ``event`` to every subscriber in subscription order."""
        key = StreamEvent(event).value
        if key == StreamEvent.DATA.value:
            self.latest_frame = args[0]

        # Copy so listeners may unsubscribe while being called
        for listener in list(self._listeners.get(key, [])):
            try:
                listener(*args)
            except Exception:
                logger.exception(f"Listener for '{event}' event failed")

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(StreamEvent(event).value, []))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start the decoder. No-op while one is live.

        Raises:
            ExecutableNotFoundError: ffmpeg is not installed / not on PATH
            ProcessSpawnError: Any other spawn fault
        """
        await self._supervisor.start()

    async def stop(self) -> None:
        """Stop the decoder. Always emits ``stop``."""
        await self._supervisor.stop()

    async def restart(self) -> None:
        """Restart the decoder; does nothing if it was never started."""
        await self._supervisor.restart()

    async def frames(self, maxsize: int = 1) -> AsyncIterator[Frame]:
        """
        Iterate completed frames as they arrive.

        Never ends on its own; break out of the loop to unsubscribe.
        Consumers slower than the stream skip to the newest frame.

        Args:
            maxsize: Frames held for a lagging consumer
        """
        buffer = self.open_buffer(maxsize)
        try:
            while True:
                yield await buffer.get()
        finally:
            self.close_buffer(buffer)

    def open_buffer(self, maxsize: int = 1) -> FrameBuffer:
        """
        Subscribe a new FrameBuffer to ``data``.

        For consumers that need to poll with a timeout (``buffer.get(timeout)``)
        rather than block in ``frames()``. Pair with close_buffer().
        """
        buffer = FrameBuffer(maxsize=maxsize)
        self.on(StreamEvent.DATA, buffer.put_nowait)
        return buffer

    def close_buffer(self, buffer: FrameBuffer) -> None:
        self.off(StreamEvent.DATA, buffer.put_nowait)

    async def __aenter__(self) -> "StreamController":
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    def __repr__(self) -> str:
        return f"StreamController(input={self.config.input!r}, state={self.state.value})"
