"""
Frame Reassembler
=================

Recovers JPEG image boundaries from the decoder's unstructured stdout.

ffmpeg running with ``-f image2 -update 1 -`` writes back-to-back JPEG
images with no length prefix, and the pipe hands them over in arbitrary
chunk sizes. The end-of-image marker (FF D9) is the only boundary signal.

Boundary detection scans the accumulated bytes rather than only the tail
of the newest chunk, so a marker split across two chunks, or sitting in
the middle of a chunk, still closes a frame. Bytes following a marker
start the next frame.

Example:
    reassembler = FrameReassembler()

    for chunk in chunks:
        for frame in reassembler.feed(chunk):
            handle(frame)
"""

import asyncio
import time
from typing import AsyncIterator, Iterable, Iterator, List

from rtsp_ffmpeg.stream.frame import Frame


EOI_MARKER = b"\xff\xd9"


class FrameReassembler:
    """
    Accumulates decoder output and cuts it into complete frames.

    Chunks must be fed in arrival order from a single task. The working
    buffer is private; only the Frame copies it produces are observable.

    Attributes:
        frames_emitted: Total frames produced since construction
        bytes_received: Total bytes fed since construction
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.frames_emitted: int = 0
        self.bytes_received: int = 0

    @property
    def pending_bytes(self) -> int:
        """Bytes accumulated towards the next, not yet complete, frame."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[Frame]:
        """
        Accumulate one chunk and return every frame it completes.

        Args:
            chunk: Raw bytes read from the decoder, possibly empty

        Returns:
            Completed frames in stream order (usually zero or one)
        """
        if not chunk:
            return []

        # A marker may straddle the previous chunk's last byte
        search_from = max(len(self._buffer) - 1, 0)
        self._buffer.extend(chunk)
        self.bytes_received += len(chunk)

        frames = []
        while True:
            end = self._buffer.find(EOI_MARKER, search_from)
            if end == -1:
                break
            cut = end + len(EOI_MARKER)
            frames.append(self._complete(bytes(self._buffer[:cut])))
            del self._buffer[:cut]
            search_from = 0

        return frames

    def reset(self) -> int:
        """
        Discard any partially accumulated frame.

        Returns:
            Number of bytes discarded.
        """
        discarded = len(self._buffer)
        self._buffer = bytearray()
        return discarded

    def _complete(self, data: bytes) -> Frame:
        frame = Frame(
            data=data,
            index=self.frames_emitted,
            timestamp=time.time(),
        )
        self.frames_emitted += 1
        return frame


def iter_frames(chunks: Iterable[bytes]) -> Iterator[Frame]:
    """Lazily cut an iterable of byte chunks into frames."""
    reassembler = FrameReassembler()
    for chunk in chunks:
        yield from reassembler.feed(chunk)


async def aiter_frames(
    reader: asyncio.StreamReader,
    chunk_size: int = 65536,
) -> AsyncIterator[Frame]:
    """
    Lazily cut an asyncio stream into frames until EOF.

    Args:
        reader: Stream to read, typically a subprocess stdout
        chunk_size: Maximum bytes per read
    """
    reassembler = FrameReassembler()
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            return
        for frame in reassembler.feed(chunk):
            yield frame
