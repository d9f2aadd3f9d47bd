"""
Frame Buffer
=============

Latest-frame slot between the event-driven pump and async consumers.

Design Rules:
    - Holds at most ``maxsize`` frames (1 by default)
    - A new frame replaces the oldest unread one instead of blocking
      the decoder pump
    - Does NOT process or modify frames
"""

import asyncio
import logging
from typing import Optional

from rtsp_ffmpeg.stream.frame import Frame


logger = logging.getLogger(__name__)


class FrameBuffer:
    """
    Drop-oldest frame queue fed synchronously from ``data`` events.

    Slow consumers see the most recent frame rather than a growing
    backlog.

    Example:
        buffer = FrameBuffer()
        controller.on("data", buffer.put_nowait)

        frame = await buffer.get()
    """

    def __init__(self, maxsize: int = 1) -> None:
        """
        Initialize frame buffer.

        Args:
            maxsize: Maximum frames held. Must be >= 1.
        """
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self._queue: asyncio.Queue[Frame] = asyncio.Queue(maxsize=maxsize)
        self._dropped_count: int = 0
        self._total_put: int = 0

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    @property
    def size(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        """Frames replaced before anyone read them."""
        return self._dropped_count

    def put_nowait(self, frame: Frame) -> bool:
        """
        Store a frame, evicting the oldest if the buffer is full.

        Returns:
            True if nothing was evicted.
        """
        self._total_put += 1
        evicted = False

        if self._queue.full():
            self._queue.get_nowait()
            self._dropped_count += 1
            evicted = True
            logger.debug(f"Consumer lagging, replaced frame (dropped {self._dropped_count})")

        self._queue.put_nowait(frame)
        return not evicted

    async def get(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """
        Wait for the next frame.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next frame, or None if timeout occurred.
        """
        try:
            if timeout is not None:
                return await asyncio.wait_for(self._queue.get(), timeout=timeout)
            return await self._queue.get()
        except asyncio.TimeoutError:
            return None

    def clear(self) -> int:
        """Drop all buffered frames and return how many were dropped."""
        cleared = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            cleared += 1
        return cleared

    def metrics(self) -> dict:
        return {
            "size": self.size,
            "maxsize": self.maxsize,
            "dropped_count": self._dropped_count,
            "total_put": self._total_put,
        }
