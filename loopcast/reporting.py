"""
Logging setup and operator-facing reporting for loopcast.

Provides:
- Colored console logging and a rotating script log file
- An in-place progress line that never reaches the log file
- Human-readable durations and encoder command lines
- The startup configuration banner with host system information
"""

import logging
import logging.handlers
import os
import platform
import shutil
import subprocess
import sys
from typing import Dict, List, Optional, Sequence

from loopcast.config import StreamerConfig

logger = logging.getLogger(__name__)

PROGRESS_LOGGER_NAME = "loopcast.progress"
NOW_PLAYING_MARKER = "▶"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5


# ANSI color codes for prettier output
class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'
    RED = '\033[31m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    BLUE = '\033[34m'
    MAGENTA = '\033[35m'
    CYAN = '\033[36m'
    WHITE = '\033[37m'


class ColoredFormatter(logging.Formatter):
    """
    Console formatter that colors messages by level.

    Now-playing lines (starting with the play marker) are highlighted so
    that track changes stand out in a long-running console.
    """

    COLORS = {
        'DEBUG': Colors.DIM + Colors.WHITE,
        'INFO': Colors.CYAN,
        'WARNING': Colors.YELLOW,
        'ERROR': Colors.RED,
        'CRITICAL': Colors.BOLD + Colors.RED,
    }

    def __init__(self, fmt: str = '%(asctime)s %(levelname)s %(message)s', use_color: bool = True):
        super().__init__(fmt=fmt, datefmt='%Y-%m-%d %H:%M:%S')
        self.use_color = use_color

    def format(self, record):
        if not self.use_color:
            return super().format(record)

        original_msg, original_args = record.msg, record.args
        message = record.getMessage()
        if record.levelno == logging.INFO and message.startswith(NOW_PLAYING_MARKER):
            colored = f"{Colors.GREEN}{Colors.BOLD}{message}{Colors.RESET}"
        else:
            colored = f"{self.COLORS.get(record.levelname, '')}{message}{Colors.RESET}"
        record.msg, record.args = colored, None
        try:
            return super().format(record)
        finally:
            record.msg, record.args = original_msg, original_args


class ProgressLineFormatter(logging.Formatter):
    """Formats progress records as a single console line rewritten in place."""

    def format(self, record):
        return f"\r\033[K{record.getMessage()}"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None, color: bool = True) -> None:
    """
    Configure logging for the application.

    Args:
        level: Root log level name
        log_file: Optional script log path. When given, records are also
                  written there with rotation at 10MB, keeping 5 backups.
        color: Whether console output uses ANSI colors

    Note:
        Progress records go to a dedicated non-propagating logger whose only
        handler writes to the console, so they never reach the log file.
    """
    handlers: List[logging.Handler] = []

    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding='utf-8'
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter(use_color=color))
    handlers.append(console_handler)

    logging.basicConfig(level=getattr(logging, level, logging.INFO), handlers=handlers, force=True)

    progress_logger = logging.getLogger(PROGRESS_LOGGER_NAME)
    progress_logger.propagate = False
    progress_logger.setLevel(logging.INFO)
    for handler in list(progress_logger.handlers):
        progress_logger.removeHandler(handler)
    progress_handler = logging.StreamHandler(sys.stdout)
    progress_handler.terminator = ""
    progress_handler.setFormatter(ProgressLineFormatter())
    progress_logger.addHandler(progress_handler)


def format_duration(seconds) -> str:
    """
    Format a duration as ``[Dd ]Hh:MMm:SSs``.

    Fractional seconds are truncated. Negative, empty or non-numeric input
    formats as zero.

    Examples:
        >>> format_duration(3725.9)
        '1h:02m:05s'
        >>> format_duration(90061)
        '1d 1h:01m:01s'
    """
    try:
        total = int(float(seconds))
    except (TypeError, ValueError):
        return "0h:00m:00s"
    if total <= 0:
        return "0h:00m:00s"

    days, remainder = divmod(total, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)
    prefix = f"{days}d " if days > 0 else ""
    return f"{prefix}{hours}h:{minutes:02d}m:{secs:02d}s"


def format_command_for_log(args: Sequence[str]) -> str:
    """Render an argument list as a copy-pasteable shell line."""
    rendered = []
    for arg in args:
        if not arg or any(ch in arg for ch in " \t[];'\""):
            rendered.append('"' + arg.replace('"', '\\"') + '"')
        else:
            rendered.append(arg)
    return " ".join(rendered)


def _run_first_line(cmd: List[str]) -> Optional[str]:
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.SubprocessError):
        return None
    output = (result.stdout or result.stderr or "").strip()
    return output.splitlines()[0] if output else None


def _tool_version(tool: str, flag: str = "-version") -> str:
    if shutil.which(tool) is None:
        return "not installed"
    line = _run_first_line([tool, flag])
    if not line:
        return "unknown"
    words = line.replace(f"{tool} version", "").split()
    return words[0] if words else "unknown"


def _os_name() -> str:
    try:
        with open("/etc/os-release", "r") as f:
            fields = dict(
                line.rstrip("\n").split("=", 1) for line in f if "=" in line
            )
    except OSError:
        return f"{platform.system()} (unknown)"
    name = fields.get("NAME", "").strip('"')
    version = fields.get("VERSION_ID", "").strip('"')
    return f"{name} {version}".strip() or "Linux (unknown)"


def _cpu_model() -> str:
    model = ""
    cores = 0
    try:
        with open("/proc/cpuinfo", "r") as f:
            for line in f:
                if line.startswith("processor"):
                    cores += 1
                elif not model and line.startswith("model name"):
                    model = line.split(":", 1)[1].strip()
    except OSError:
        pass
    if not model:
        model = platform.processor()
    if not cores:
        cores = os.cpu_count() or 0
    if model and cores:
        return f"{model} ({cores} cores)"
    return model or "unknown"


def _vaapi_versions(device: str) -> Dict[str, str]:
    if not os.path.exists(device) or shutil.which("vainfo") is None:
        return {"vaapi": "not detected", "driver": "not detected"}
    try:
        result = subprocess.run(
            ["vainfo", "--display", "drm", "--device", device],
            capture_output=True, text=True, timeout=5
        )
        output = (result.stdout or "") + (result.stderr or "")
    except (OSError, subprocess.SubprocessError):
        output = ""

    info = {"vaapi": "unknown", "driver": "unknown"}
    for line in output.splitlines():
        lowered = line.lower()
        if "va-api version:" in lowered and info["vaapi"] == "unknown":
            info["vaapi"] = line.split(":", 1)[1].strip() or "unknown"
        elif "driver version:" in lowered and info["driver"] == "unknown":
            driver = line.split(":", 1)[1].strip()
            if driver.endswith(" ()"):
                driver = driver[:-3]
            info["driver"] = driver or "unknown"
    return info


def gather_system_info(vaapi_device: str) -> Dict[str, str]:
    """
    Collect host details shown in the startup banner.

    Every probe is best-effort; failures show as ``unknown`` or
    ``not installed`` rather than raising.
    """
    info = {
        "linux": _os_name(),
        "cpu": _cpu_model(),
        "ffmpeg": _tool_version("ffmpeg"),
        "ffprobe": _tool_version("ffprobe"),
        "progress": _tool_version("progress", "-v"),
    }
    info.update(_vaapi_versions(vaapi_device))
    return info


def render_configuration(config: StreamerConfig, system_info: Dict[str, str], hwaccel: bool) -> List[str]:
    """
    Build the startup configuration banner as a list of lines.

    Args:
        config: Active configuration
        system_info: Output of gather_system_info()
        hwaccel: Whether hardware acceleration will actually be used
    """
    stream_rows = [
        ("Source", config.video_playlist),
        ("Resolution", config.stream_resolution),
        ("Framerate", f"{config.framerate_arg}fps"),
        ("Video bitrate", config.video_bitrate),
        ("GOP", f"{config.gop_size} (2s)"),
        ("Buffer size", config.bufsize),
        ("HW accel", str(hwaccel).lower()),
    ]
    if hwaccel:
        stream_rows.append(("VA-API device", config.vaapi_device))
    stream_rows.extend([
        ("Audio bitrate", config.audio_bitrate),
        ("Music", str(config.enable_music).lower()),
        ("Loop", str(config.enable_loop).lower()),
        ("Shuffle", str(config.enable_shuffle).lower()),
    ])
    system_rows = [
        ("Linux", system_info.get("linux", "unknown")),
        ("CPU", system_info.get("cpu", "unknown")),
        ("VA-API", system_info.get("vaapi", "unknown")),
        ("Driver", system_info.get("driver", "unknown")),
        ("FFmpeg", system_info.get("ffmpeg", "unknown")),
        ("FFprobe", system_info.get("ffprobe", "unknown")),
        ("Progress", system_info.get("progress", "unknown")),
    ]

    label_width = max(len(label) for label, _ in stream_rows + system_rows)
    body = [f"{label.ljust(label_width)} : {value}" for label, value in stream_rows]
    system_body = [f"{label.ljust(label_width)} : {value}" for label, value in system_rows]
    width = max(len(line) for line in body + system_body + ["Stream configuration"])

    lines = [f"╔{'═' * (width + 2)}╗"]
    lines.append(f"║ {'Stream configuration'.ljust(width)} ║")
    lines.append(f"╟{'─' * (width + 2)}╢")
    lines.extend(f"║ {line.ljust(width)} ║" for line in body)
    lines.append(f"╟{'─' * (width + 2)}╢")
    lines.extend(f"║ {line.ljust(width)} ║" for line in system_body)
    lines.append(f"╚{'═' * (width + 2)}╝")
    return lines


def log_configuration(config: StreamerConfig, hwaccel: bool) -> None:
    """Log the startup banner."""
    logger.warning("=== STREAM START ===")
    for line in render_configuration(config, gather_system_info(config.vaapi_device), hwaccel):
        logger.info(line)
