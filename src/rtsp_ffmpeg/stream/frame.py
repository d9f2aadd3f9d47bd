"""
Frame Data Model
=================

Completed frame handed to subscribers.

Design Rules:
    - This is the ONLY frame format passed to subscribers
    - A Frame IS the raw JPEG bytes (a ``bytes`` subclass), so it can be
      written, compared and sliced like any other bytes payload
    - Holds an immutable copy of the JPEG bytes (never a view of the
      reassembler's working buffer)
    - Does NOT decode or validate image content
"""


class Frame(bytes):
    """
    One complete JPEG image cut from the decoder output.

    The frame itself is the image bytes, ending with the FF D9
    end-of-image marker. Delivery metadata rides along as read-only
    attributes.

    Attributes:
        index: Per-reassembler counter, starts at 0 for the first frame
        timestamp: UNIX timestamp when the end-of-image marker arrived
    """

    def __new__(cls, data: bytes, index: int = 0, timestamp: float = 0.0) -> "Frame":
        frame = super().__new__(cls, data)
        frame.__dict__.update(index=index, timestamp=timestamp)
        return frame

    @property
    def data(self) -> bytes:
        """The image as plain ``bytes``."""
        return bytes(self)

    def __setattr__(self, name, value):
        raise AttributeError(f"Frame is immutable, cannot set {name!r}")

    def __delattr__(self, name):
        raise AttributeError(f"Frame is immutable, cannot delete {name!r}")

    def __reduce__(self):
        return (Frame, (bytes(self), self.index, self.timestamp))

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full image."""
        return (
            f"Frame(index={self.index}, "
            f"timestamp={self.timestamp:.3f}, "
            f"size={len(self)})"
        )
