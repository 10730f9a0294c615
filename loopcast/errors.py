"""
Error types and process exit codes for loopcast.

Fatal errors propagate to the CLI entry point, which logs a single diagnostic
line and exits with the error's exit code. Everything else is handled where
it happens.
"""

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_MISSING_CREDENTIAL = 2
EXIT_VIDEO_DIR_MISSING = 3
EXIT_NO_VIDEO_FILES = 4
EXIT_STATE_DIR_UNWRITABLE = 5
EXIT_MISSING_DEPENDENCY = 6
EXIT_INVALID_CONFIG = 7


def signal_exit_code(signum: int) -> int:
    """Conventional shell exit status for a process ended by ``signum``."""
    return 128 + int(signum)


class StreamerError(Exception):
    """Base class for all loopcast errors."""


class FatalError(StreamerError):
    """
    Unrecoverable condition. The process must stop with ``exit_code``.

    Args:
        message: Single-line diagnostic shown to the operator
        exit_code: Process exit status (one of the EXIT_* constants)
    """

    def __init__(self, message: str, exit_code: int = EXIT_FAILURE) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ConfigError(FatalError):
    """Malformed configuration value."""

    def __init__(self, message: str) -> None:
        super().__init__(message, EXIT_INVALID_CONFIG)


class PlaylistSourceError(StreamerError):
    """Playlist source directory is missing or unreadable."""

    def __init__(self, source_dir: str, reason: str = "does not exist") -> None:
        super().__init__(f"Source directory {source_dir} {reason}")
        self.source_dir = source_dir
