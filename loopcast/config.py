"""
Configuration management for loopcast.

Reads configuration from an optional .env file and environment variables
with sensible defaults. The resulting StreamerConfig is immutable and is
handed to every component explicitly; nothing else reads the environment.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

from loopcast.errors import EXIT_MISSING_CREDENTIAL, ConfigError, FatalError


# Default .env file location
DEFAULT_ENV_FILE = Path("/etc/loopcast/stream.env")

DEFAULT_INGEST_URL = "rtmp://live.twitch.tv/app"
PLACEHOLDER_STREAM_KEY = "your_stream_key_here"

DEFAULT_VIDEO_FILE_TYPES = "mp4 mkv mov avi webm flv"
DEFAULT_MUSIC_FILE_TYPES = "mp3 flac wav ogg m4a aac"

LOG_LEVEL_ALIASES = {
    "DBG": "DEBUG",
    "INF": "INFO",
    "WAR": "WARNING",
    "WARN": "WARNING",
    "ERR": "ERROR",
}
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_BITRATE_RE = re.compile(r"^(\d+(?:\.\d+)?)([kKmM]?)$")
_RESOLUTION_RE = re.compile(r"^(\d+)x(\d+)$")

logger = logging.getLogger(__name__)


def _load_env_file(env_file: Optional[str] = None) -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(env_file or os.getenv("LOOPCAST_ENV_FILE", str(DEFAULT_ENV_FILE)))
    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return _parse_bool(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, str(default)).strip()
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"Invalid {name}: {value} (must be an integer)")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, str(default)).strip()
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"Invalid {name}: {value} (must be a number)")


def parse_file_types(value: str) -> Tuple[str, ...]:
    """
    Parse a list of file extensions.

    Accepts whitespace or comma separated values, tolerates surrounding
    quotes and leading dots, and lower-cases everything.

    Args:
        value: Raw extension list (e.g. ``"mp4 MKV .mov"``)

    Returns:
        Tuple of unique extensions without dots, in input order
    """
    result = []
    for token in re.split(r"[\s,]+", value.strip().strip("'\"")):
        token = token.strip().strip("'\"").lstrip(".").lower()
        if token and token not in result:
            result.append(token)
    return tuple(result)


def normalize_log_level(value: str) -> str:
    """Map a log level name (including DBG/INF/WAR/ERR) to a logging level name."""
    level = value.strip().upper()
    return LOG_LEVEL_ALIASES.get(level, level)


def split_bitrate(value: str) -> Tuple[float, str]:
    """
    Split a bitrate like ``2500k`` into its number and unit suffix.

    Raises:
        ConfigError: If the value is not ``<number>[kKmM]``
    """
    match = _BITRATE_RE.match(value.strip())
    if not match:
        raise ConfigError(f"Invalid bitrate format: {value} (expected e.g. '2500k')")
    return float(match.group(1)), match.group(2)


@dataclass(frozen=True)
class StreamerConfig:
    """loopcast configuration loaded from .env file and environment variables."""

    # Output
    stream_key: str = ""
    ingest_url: str = DEFAULT_INGEST_URL

    # Logging
    log_dir: str = "/data"
    log_level: str = "INFO"
    enable_script_log_file: bool = False
    script_log_file: str = "/data/stream.log"
    enable_ffmpeg_log_file: bool = False
    ffmpeg_log_file: str = "/data/ffmpeg.log"
    ffmpeg_log_level: str = ""
    enable_progress_updates: bool = False

    # Video source
    video_dir: str = "/videos"
    video_file_types: Tuple[str, ...] = parse_file_types(DEFAULT_VIDEO_FILE_TYPES)
    video_playlist: str = "/data/video_list.txt"

    # Background music
    enable_music: bool = False
    music_dir: str = "/music"
    music_file_types: Tuple[str, ...] = parse_file_types(DEFAULT_MUSIC_FILE_TYPES)
    music_list: str = "/data/music_list.txt"
    music_track_file: str = "/data/music.m4a"
    music_volume: float = 1.0

    # Retry / loop policy
    max_retry_attempts: int = 3
    retry_delay: float = 10.0
    enable_loop: bool = False
    loop_restart_delay: float = 0.0
    enable_shuffle: bool = False

    # Encoding
    stream_resolution: str = "1280x720"
    stream_framerate: float = 30.0
    video_bitrate: str = "2500k"
    audio_bitrate: str = "64k"
    audio_sample_rate: int = 44100
    use_video_filter: bool = True

    # Hardware acceleration
    enable_hw_accel: bool = False
    vaapi_device: str = "/dev/dri/renderD128"

    @property
    def width(self) -> int:
        return int(_RESOLUTION_RE.match(self.stream_resolution).group(1))

    @property
    def height(self) -> int:
        return int(_RESOLUTION_RE.match(self.stream_resolution).group(2))

    @property
    def gop_size(self) -> int:
        """Keyframe interval in frames (two seconds of video)."""
        return int(round(self.stream_framerate * 2))

    @property
    def bufsize(self) -> str:
        """Rate control buffer size: 2.5x the target video bitrate, same unit."""
        number, unit = split_bitrate(self.video_bitrate)
        return f"{round(number * 2.5):.0f}{unit}"

    @property
    def framerate_arg(self) -> str:
        """Framerate formatted for the encoder command line (``30`` not ``30.0``)."""
        return f"{self.stream_framerate:g}"

    @property
    def output_url(self) -> str:
        return f"{self.ingest_url}/{self.stream_key}"

    @property
    def effective_ffmpeg_log_level(self) -> str:
        if self.enable_ffmpeg_log_file:
            return self.ffmpeg_log_level or "info"
        return "warning"

    @property
    def duration_cache_file(self) -> str:
        return os.path.join(self.log_dir, "duration_cache.txt")

    @property
    def last_played_file(self) -> str:
        return os.path.join(self.log_dir, "last_played.txt")

    @property
    def state_file(self) -> str:
        return os.path.join(self.log_dir, "stream_state.json")

    @classmethod
    def load_config(cls, env_file: Optional[str] = None) -> "StreamerConfig":
        """
        Load configuration from environment variables.

        Args:
            env_file: Optional .env path (default: LOOPCAST_ENV_FILE or
                /etc/loopcast/stream.env)

        Returns:
            StreamerConfig instance with loaded values

        Raises:
            ConfigError: If a value is malformed
        """
        # Load .env file first (if it exists)
        _load_env_file(env_file)

        log_dir = os.getenv("LOG_DIR", "/data").rstrip("/") or "/"

        ingest_url = os.getenv("TWITCH_INGEST_URL", DEFAULT_INGEST_URL).strip()
        ingest_url = ingest_url.rstrip("/") or DEFAULT_INGEST_URL

        config = cls(
            stream_key=os.getenv("TWITCH_STREAM_KEY", "").strip(),
            ingest_url=ingest_url,
            log_dir=log_dir,
            log_level=normalize_log_level(os.getenv("LOG_LEVEL", "INFO")),
            enable_script_log_file=_env_bool("ENABLE_SCRIPT_LOG_FILE", False),
            script_log_file=os.getenv("SCRIPT_LOG_FILE", os.path.join(log_dir, "stream.log")),
            enable_ffmpeg_log_file=_env_bool("ENABLE_FFMPEG_LOG_FILE", False),
            ffmpeg_log_file=os.getenv("FFMPEG_LOG_FILE", os.path.join(log_dir, "ffmpeg.log")),
            ffmpeg_log_level=os.getenv("FFMPEG_LOG_LEVEL", "").strip(),
            enable_progress_updates=_env_bool("ENABLE_PROGRESS_UPDATES", False),
            video_dir=os.getenv("VIDEO_DIR", "/videos"),
            video_file_types=parse_file_types(os.getenv("VIDEO_FILE_TYPES", DEFAULT_VIDEO_FILE_TYPES)),
            video_playlist=os.getenv("VIDEO_PLAYLIST", os.path.join(log_dir, "video_list.txt")),
            enable_music=_env_bool("ENABLE_MUSIC", False),
            music_dir=os.getenv("MUSIC_DIR", "/music"),
            music_file_types=parse_file_types(os.getenv("MUSIC_FILE_TYPES", DEFAULT_MUSIC_FILE_TYPES)),
            music_list=os.getenv("MUSIC_LIST", os.path.join(log_dir, "music_list.txt")),
            music_track_file=os.getenv("MUSIC_TRACK_FILE", os.path.join(log_dir, "music.m4a")),
            music_volume=_env_float("MUSIC_VOLUME", 1.0),
            max_retry_attempts=_env_int("MAX_RETRY_ATTEMPTS", 3),
            retry_delay=_env_float("RETRY_DELAY", 10),
            enable_loop=_env_bool("ENABLE_LOOP", False),
            loop_restart_delay=_env_float("LOOP_RESTART_DELAY", 0),
            enable_shuffle=_env_bool("ENABLE_SHUFFLE", False),
            stream_resolution=os.getenv("STREAM_RESOLUTION", "1280x720").strip(),
            stream_framerate=_env_float("STREAM_FRAMERATE", 30),
            video_bitrate=os.getenv("VIDEO_BITRATE", "2500k").strip(),
            audio_bitrate=os.getenv("AUDIO_BITRATE", "64k").strip(),
            audio_sample_rate=_env_int("AUDIO_SAMPLE_RATE", 44100),
            use_video_filter=_env_bool("USE_VIDEO_FILTER", True),
            enable_hw_accel=_env_bool("ENABLE_HW_ACCEL", False),
            vaapi_device=os.getenv("VAAPI_DEVICE", "/dev/dri/renderD128"),
        )

        # Validate configuration
        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        The stream credential is checked separately by
        ``require_stream_key`` so that a missing key maps to its own exit code.

        Raises:
            ConfigError: If configuration is invalid
        """
        if not _RESOLUTION_RE.match(self.stream_resolution):
            raise ConfigError(f"Invalid STREAM_RESOLUTION: {self.stream_resolution} (must be WIDTHxHEIGHT)")
        if self.width <= 0 or self.height <= 0:
            raise ConfigError(f"Invalid STREAM_RESOLUTION: {self.stream_resolution} (dimensions must be positive)")

        if self.stream_framerate <= 0:
            raise ConfigError(f"Invalid STREAM_FRAMERATE: {self.stream_framerate:g} (must be positive)")

        for name, value in (("VIDEO_BITRATE", self.video_bitrate), ("AUDIO_BITRATE", self.audio_bitrate)):
            try:
                number, _ = split_bitrate(value)
            except ConfigError:
                raise ConfigError(f"Invalid {name}: {value} (expected e.g. '2500k')")
            if number <= 0:
                raise ConfigError(f"Invalid {name}: {value} (must be positive)")

        if self.audio_sample_rate <= 0:
            raise ConfigError(f"Invalid AUDIO_SAMPLE_RATE: {self.audio_sample_rate} (must be positive)")

        if self.max_retry_attempts < 1:
            raise ConfigError(f"Invalid MAX_RETRY_ATTEMPTS: {self.max_retry_attempts} (must be at least 1)")

        if self.retry_delay < 0:
            raise ConfigError(f"Invalid RETRY_DELAY: {self.retry_delay:g} (must not be negative)")

        if self.loop_restart_delay < 0:
            raise ConfigError(f"Invalid LOOP_RESTART_DELAY: {self.loop_restart_delay:g} (must not be negative)")

        if self.music_volume < 0:
            raise ConfigError(f"Invalid MUSIC_VOLUME: {self.music_volume:g} (must not be negative)")

        if self.log_level not in VALID_LOG_LEVELS:
            raise ConfigError(f"Invalid LOG_LEVEL: {self.log_level} (must be one of {', '.join(VALID_LOG_LEVELS)})")

    def require_stream_key(self) -> None:
        """
        Ensure a usable stream credential is configured.

        Raises:
            FatalError: With EXIT_MISSING_CREDENTIAL when the key is unset or
                still the placeholder value
        """
        if not self.stream_key or self.stream_key == PLACEHOLDER_STREAM_KEY:
            raise FatalError(
                "TWITCH_STREAM_KEY is not set. Provide your stream key via the environment or the env file.",
                EXIT_MISSING_CREDENTIAL,
            )


def load_config(env_file: Optional[str] = None) -> StreamerConfig:
    """
    Load configuration from environment.

    Returns:
        StreamerConfig instance

    Raises:
        ConfigError: If configuration is invalid
    """
    return StreamerConfig.load_config(env_file)
