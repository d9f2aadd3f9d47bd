"""
rtsp-ffmpeg Configuration
=========================

This module handles configuration loading for the frame extraction service.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    RTSP_FFMPEG_INPUT          -> stream.input
    RTSP_FFMPEG_RATE           -> stream.rate
    RTSP_FFMPEG_RESOLUTION     -> stream.resolution
    RTSP_FFMPEG_QUALITY        -> stream.quality
    RTSP_FFMPEG_CMD            -> stream.cmd
    RTSP_FFMPEG_RESTART_DELAY  -> stream.restart_delay_seconds
    RTSP_FFMPEG_FATAL_STDERR   -> stream.fatal_stderr
    RTSP_FFMPEG_PORT           -> server.port
    RTSP_FFMPEG_LOG_LEVEL      -> logging.level
    PORT                       -> server.port (container platforms)

Example:
    from rtsp_ffmpeg.config import load_config

    settings = load_config()
    print(settings.stream.input)
    print(settings.server.port)
"""

import os
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rtsp_ffmpeg.errors import StreamConfigError


logger = logging.getLogger(__name__)


DEFAULT_RATE = 10
DEFAULT_QUALITY = 3


# =============================================================================
# Configuration Models
# =============================================================================

class StreamConfig(BaseModel):
    """
    Options for one decoded stream.

    Immutable once built. Only ``input`` is required.
    """

    model_config = ConfigDict(frozen=True)

    input: str = Field(
        ...,
        min_length=1,
        description="Stream URI, e.g. rtsp://camera.local:554/stream1",
    )
    rate: int = Field(
        default=DEFAULT_RATE,
        gt=0,
        description="Output frame rate (frames per second)",
    )
    resolution: Optional[str] = Field(
        default=None,
        pattern=r"^\d+x\d+$",
        description="Output resolution in WxH format",
    )
    quality: int = Field(
        default=DEFAULT_QUALITY,
        ge=1,
        le=31,
        description="JPEG quality scale passed to -q:v (lower is better)",
    )
    arguments: Tuple[str, ...] = Field(
        default=(),
        description="Extra ffmpeg arguments inserted before the output format",
    )
    cmd: str = Field(
        default="ffmpeg",
        min_length=1,
        description="Decoder executable name or path",
    )
    restart_delay_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Delay before respawning after a clean decoder exit",
    )
    fatal_stderr: bool = Field(
        default=True,
        description="Treat any decoder stderr output as a fatal error",
    )
    stop_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Grace period between terminate and kill on stop",
    )
    read_chunk_size: int = Field(
        default=65536,
        ge=1,
        description="Maximum bytes read from decoder stdout per chunk",
    )

    @field_validator("rate", mode="before")
    @classmethod
    def _default_rate(cls, value: Any) -> Any:
        return value or DEFAULT_RATE

    @field_validator("quality", mode="before")
    @classmethod
    def _default_quality(cls, value: Any) -> Any:
        # 0 and None mean "use the default", not "disable"
        return value or DEFAULT_QUALITY

    @field_validator("arguments", mode="before")
    @classmethod
    def _default_arguments(cls, value: Any) -> Any:
        return value or ()


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the frame extraction service.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    ``stream`` stays None until an input URI is configured.
    """

    stream: Optional[StreamConfig] = None
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def build_stream_config(options: Mapping[str, Any]) -> StreamConfig:
    """
    Validate a plain options mapping into a StreamConfig.

    Args:
        options: Keyword options (input, rate, resolution, quality, ...)

    Returns:
        StreamConfig: Validated, immutable configuration

    Raises:
        StreamConfigError: If ``input`` is missing or any option is invalid
    """
    if not options.get("input"):
        raise StreamConfigError("no `input` parameter")

    try:
        return StreamConfig.model_validate(dict(options))
    except ValidationError as e:
        raise StreamConfigError(
            f"invalid stream options: {e}",
            source=str(options.get("input")),
        ) from e


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration

    Raises:
        StreamConfigError: If the stream section is present but invalid
    """
    # Find config file
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    # Load from YAML if exists
    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    # Apply environment variable overrides
    _apply_env_overrides(config_data)

    stream_data = config_data.get("stream")
    if stream_data is not None:
        # Same validation path as programmatic construction
        config_data["stream"] = build_stream_config(stream_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Stream settings
    if env_input := os.environ.get("RTSP_FFMPEG_INPUT"):
        config_data.setdefault("stream", {})["input"] = env_input
    if env_rate := os.environ.get("RTSP_FFMPEG_RATE"):
        config_data.setdefault("stream", {})["rate"] = int(env_rate)
    if env_res := os.environ.get("RTSP_FFMPEG_RESOLUTION"):
        config_data.setdefault("stream", {})["resolution"] = env_res
    if env_quality := os.environ.get("RTSP_FFMPEG_QUALITY"):
        config_data.setdefault("stream", {})["quality"] = int(env_quality)
    if env_cmd := os.environ.get("RTSP_FFMPEG_CMD"):
        config_data.setdefault("stream", {})["cmd"] = env_cmd
    if env_delay := os.environ.get("RTSP_FFMPEG_RESTART_DELAY"):
        config_data.setdefault("stream", {})["restart_delay_seconds"] = float(env_delay)
    if env_stderr := os.environ.get("RTSP_FFMPEG_FATAL_STDERR"):
        config_data.setdefault("stream", {})["fatal_stderr"] = (
            env_stderr.lower() in ("1", "true", "yes", "on")
        )

    # Server settings (container platforms use PORT env var)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("RTSP_FFMPEG_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("RTSP_FFMPEG_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
