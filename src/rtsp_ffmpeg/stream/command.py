"""
Decoder Command
===============

Builds the ffmpeg invocation for a StreamConfig.

The output is a stream of JPEG images written to stdout, one per
output frame, with ffmpeg's own logging silenced so that anything on
stderr is a genuine problem.
"""

from typing import List

from rtsp_ffmpeg.config import StreamConfig


def build_ffmpeg_args(config: StreamConfig) -> List[str]:
    """
    Build ffmpeg arguments (without the executable).

    Passthrough ``arguments`` are placed after the input and scaling
    options and before the output format, so they act as output options.
    """
    args = [
        "-loglevel", "quiet",
        "-i", config.input,
        "-r", str(config.rate),
    ]
    if config.quality:
        args += ["-q:v", str(config.quality)]
    if config.resolution:
        args += ["-s", config.resolution]
    args += list(config.arguments)
    args += [
        "-f", "image2",
        "-update", "1",
        "-",
    ]
    return args


def build_command(config: StreamConfig) -> List[str]:
    """Full argv for spawning the decoder."""
    return [config.cmd, *build_ffmpeg_args(config)]
