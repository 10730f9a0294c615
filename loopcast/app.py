"""
Command-line entry point for loopcast.

Startup order:
- Load and validate configuration (.env file + environment)
- Check the stream credential, required binaries and the state directory
- Configure logging and print the configuration banner
- Install signal handlers and run the stream supervisor

Example:
    ```bash
    # Uses /etc/loopcast/stream.env when present
    loopcast

    # Explicit env file, verbose logging
    python -m loopcast --env-file ./stream.env --log-level DEBUG
    ```
"""

import argparse
import dataclasses
import logging
import os
import shutil
import signal
from typing import List, Optional

from loopcast.config import VALID_LOG_LEVELS, StreamerConfig, load_config, normalize_log_level
from loopcast.encoder.stream_supervisor import StreamSupervisor, resolve_hwaccel
from loopcast.errors import (
    EXIT_MISSING_DEPENDENCY,
    EXIT_STATE_DIR_UNWRITABLE,
    FatalError,
    signal_exit_code,
)
from loopcast.media.music_track import AudioTrackPreparer
from loopcast.media.probe import MediaProber
from loopcast.monitor.progress_monitor import progress_tool_available
from loopcast.playlist.builder import PlaylistBuilder
from loopcast.playlist.duration_cache import DurationCache
from loopcast.reporting import log_configuration, setup_logging
from loopcast.state.last_played import LastPlayedPointer
from loopcast.state.session_store import SessionStore

logger = logging.getLogger(__name__)

REQUIRED_BINARIES = ("ffmpeg", "ffprobe")
SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


def check_dependencies() -> None:
    """
    Ensure ffmpeg and ffprobe are on PATH.

    Raises:
        FatalError: With EXIT_MISSING_DEPENDENCY listing what is missing
    """
    missing = [name for name in REQUIRED_BINARIES if shutil.which(name) is None]
    if missing:
        raise FatalError(
            f"Missing required dependencies: {', '.join(missing)}. Please install them.",
            EXIT_MISSING_DEPENDENCY,
        )
    if not progress_tool_available():
        logger.warning("'progress' command not found. Now-playing tracking will be disabled.")


def check_permissions(*directories: str) -> None:
    """
    Ensure every directory exists (creating it if needed) and is writable.

    Raises:
        FatalError: With EXIT_STATE_DIR_UNWRITABLE
    """
    for directory in directories:
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise FatalError(f"Cannot create directory {directory}: {e}", EXIT_STATE_DIR_UNWRITABLE)
        if not os.access(directory, os.W_OK):
            raise FatalError(
                f"Directory {directory} is not writable. Check volume permissions.",
                EXIT_STATE_DIR_UNWRITABLE,
            )


def build_supervisor(config: StreamerConfig, hwaccel: bool) -> StreamSupervisor:
    """Wire the supervisor and its collaborators for production use."""
    prober = MediaProber()
    builder = PlaylistBuilder(prober)
    duration_cache = DurationCache(config.duration_cache_file, prober)
    return StreamSupervisor(
        config,
        builder=builder,
        prober=prober,
        duration_cache=duration_cache,
        music_preparer=AudioTrackPreparer(config, builder, duration_cache),
        session_store=SessionStore(config.state_file),
        pointer=LastPlayedPointer(config.last_played_file),
        hwaccel=hwaccel,
    )


def install_signal_handlers(supervisor: StreamSupervisor) -> None:
    def _handler(signum, frame):
        supervisor.request_shutdown(signum)

    for sig in SHUTDOWN_SIGNALS:
        signal.signal(sig, _handler)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="loopcast",
        description="Loop a video library to a live RTMP ingest with ffmpeg",
    )
    parser.add_argument(
        "--env-file",
        help="Path to a .env file (default: $LOOPCAST_ENV_FILE or /etc/loopcast/stream.env)",
    )
    parser.add_argument(
        "--log-level",
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ERROR or DBG/INF/WAR/ERR)",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable ANSI colors in console output",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run loopcast.

    Returns:
        Process exit status: 0 on a clean finish, the FatalError exit code on
        startup or playlist failures, 128 + signum after a signal
    """
    args = _parse_args(argv)
    color = not args.no_color
    bootstrap_level = normalize_log_level(args.log_level) if args.log_level else "INFO"
    if bootstrap_level not in VALID_LOG_LEVELS:
        bootstrap_level = "INFO"
    setup_logging(level=bootstrap_level, color=color)

    try:
        config = load_config(args.env_file)
        if args.log_level:
            config = dataclasses.replace(config, log_level=normalize_log_level(args.log_level))
            config.validate()
        config.require_stream_key()
        check_dependencies()

        log_file = config.script_log_file if config.enable_script_log_file else None
        directories = [config.log_dir]
        if log_file:
            directories.append(os.path.dirname(os.path.abspath(log_file)))
        check_permissions(*directories)
        setup_logging(level=config.log_level, log_file=log_file, color=color)

        hwaccel = resolve_hwaccel(config)
        log_configuration(config, hwaccel)

        supervisor = build_supervisor(config, hwaccel)
        install_signal_handlers(supervisor)
        return supervisor.run()
    except FatalError as e:
        logger.critical(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        logger.warning("Interrupted before the supervisor started.")
        return signal_exit_code(signal.SIGINT)
