#!/usr/bin/env python3
"""
Frame Capture Script
====================

Standalone script to exercise a stream end to end against a real camera.

This script:
    1. Starts ffmpeg on the given input
    2. Writes each frame to <output>/frame_<index>.jpg
    3. Stops after --count frames or --duration seconds
    4. Reports a final summary

Prerequisites:
    - ffmpeg on PATH (or --cmd)
    - Install the package: pip install -e .

Usage:
    python scripts/capture_frames.py rtsp://camera.local/stream1 --count 20
    python scripts/capture_frames.py rtsp://camera.local/stream1 --duration 60 --rate 2
"""

import argparse
import asyncio
import logging
import os
import sys
import time
from pathlib import Path

from rtsp_ffmpeg import StreamController, StreamError


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def capture(
    url: str,
    output: Path,
    count: int,
    duration: float,
    rate: int,
    resolution: str,
    cmd: str,
) -> dict:
    """
    Capture frames into ``output``.

    Returns:
        Summary dict
    """
    logger.info("=" * 60)
    logger.info(f"Input: {url}")
    logger.info(f"Output: {output}")
    logger.info(f"Limit: {count or 'unlimited'} frames / {duration or 'unlimited'} seconds")
    logger.info("=" * 60)

    output.mkdir(parents=True, exist_ok=True)

    controller = StreamController(
        input=url,
        rate=rate,
        resolution=resolution,
        cmd=cmd,
    )
    controller.on("start", lambda: logger.info("Decoder started"))
    controller.on("stop", lambda: logger.info("Decoder stopped"))
    controller.on("error", lambda error: logger.error(f"Stream error: {error}"))

    saved = 0
    start_time = time.time()

    async def consume() -> None:
        nonlocal saved
        async for frame in controller.frames(maxsize=8):
            path = output / f"frame_{frame.index:06d}.jpg"
            await asyncio.to_thread(path.write_bytes, frame.data)
            saved += 1
            if count and saved >= count:
                return

    try:
        await controller.start()
        await asyncio.wait_for(consume(), timeout=duration or None)
    except asyncio.TimeoutError:
        logger.info(f"Duration ({duration}s) reached")
    except StreamError as e:
        logger.error(f"Could not start stream: {e}")
    except KeyboardInterrupt:
        logger.info("Capture interrupted by user")
    finally:
        await controller.stop()

    total_time = time.time() - start_time
    metrics = controller.supervisor.metrics
    avg_fps = saved / total_time if total_time > 0 else 0

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {total_time:.1f} seconds")
    logger.info(f"Frames saved: {saved}")
    logger.info(f"Average FPS: {avg_fps:.1f}")
    logger.info(f"Bytes read: {metrics.bytes_read}")
    logger.info(f"Automatic restarts: {metrics.restart_count}")
    logger.info(f"Last exit status: {metrics.last_returncode}")
    logger.info("=" * 60)

    return {
        "duration": total_time,
        "frames_saved": saved,
        "avg_fps": avg_fps,
        "restarts": metrics.restart_count,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Capture JPEG frames from a live stream with ffmpeg"
    )
    parser.add_argument(
        "url",
        nargs="?",
        default=os.environ.get("RTSP_FFMPEG_INPUT"),
        help="Stream URI (default: $RTSP_FFMPEG_INPUT)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("frames"),
        help="Directory for captured frames (default: ./frames)",
    )
    parser.add_argument("--count", type=int, default=10, help="Frames to capture, 0 = no limit")
    parser.add_argument("--duration", type=float, default=0, help="Seconds to run, 0 = no limit")
    parser.add_argument("--rate", type=int, default=10, help="Frames per second (default: 10)")
    parser.add_argument("--resolution", type=str, default=None, help="Output size as WxH")
    parser.add_argument("--cmd", type=str, default="ffmpeg", help="ffmpeg executable")

    args = parser.parse_args()
    if not args.url:
        parser.error("a stream URI is required")

    result = asyncio.run(capture(
        url=args.url,
        output=args.output,
        count=args.count,
        duration=args.duration,
        rate=args.rate,
        resolution=args.resolution,
        cmd=args.cmd,
    ))

    # Exit with appropriate code
    sys.exit(0 if result["frames_saved"] > 0 else 1)


if __name__ == "__main__":
    main()
