"""
Stream Errors
=============

Typed exceptions raised or signalled by the frame extraction pipeline.

Raised synchronously:
    - StreamConfigError: invalid or missing options at construction
    - ExecutableNotFoundError: decoder binary missing from PATH
    - ProcessSpawnError: any other OS-level spawn fault

Signalled through the ``error`` event (never raised from background tasks):
    - DecoderStderrError: decoder wrote to its error stream
    - DecoderExitError: decoder exited with a non-zero status

All diagnostic detail is logged right before the error is raised or emitted.
Attributes exist for callers that want to branch on the failure kind.
"""

from typing import Optional


class StreamError(Exception):
    """
    Base class for all stream errors.

    Attributes:
        source: Input URI of the stream that failed, if known
        retryable: Whether retrying the same operation may succeed
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.source = source
        self.retryable = retryable


class StreamConfigError(StreamError, ValueError):
    """Raised when stream options are missing or invalid."""
    pass


class ExecutableNotFoundError(StreamError):
    """Raised when the decoder executable cannot be located."""

    def __init__(self, cmd: str, source: Optional[str] = None) -> None:
        super().__init__(
            f"FFmpeg executable {cmd!r} wasn't found. "
            "Install ffmpeg or point the `cmd` option at it.",
            source=source,
        )
        self.cmd = cmd


class ProcessSpawnError(StreamError):
    """Raised when the decoder process fails to spawn for any other reason."""
    pass


class DecoderStderrError(StreamError):
    """Decoder produced output on its error stream."""

    def __init__(self, output: str, source: Optional[str] = None) -> None:
        super().__init__(f"Decoder error output: {output}", source=source)
        self.output = output


class DecoderExitError(StreamError):
    """Decoder exited with a non-zero status and will not be restarted."""

    def __init__(self, returncode: int, source: Optional[str] = None) -> None:
        super().__init__(
            f"Decoder exited with status {returncode}",
            source=source,
        )
        self.returncode = returncode
