"""
ffprobe wrapper for container duration and audio stream presence.

Every failure (missing binary, timeout, unparseable output) degrades to
"unknown" instead of raising, so one bad file never aborts a playlist build.
"""

import logging
import subprocess
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 30.0


class MediaProber:
    """
    Probe media files with ffprobe.

    Args:
        ffprobe_bin: ffprobe executable name or path
        timeout: Seconds to wait for a single probe
        runner: subprocess.run compatible callable (injectable for tests)
    """

    def __init__(
        self,
        ffprobe_bin: str = "ffprobe",
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.ffprobe_bin = ffprobe_bin
        self.timeout = timeout
        self._run = runner

    def _probe(self, args: List[str], path: str) -> Optional[str]:
        cmd = [self.ffprobe_bin, "-v", "error", *args, path]
        try:
            result = self._run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"ffprobe timed out after {self.timeout:g}s on {path}")
            return None
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"ffprobe failed on {path}: {e}")
            return None
        if result.returncode != 0:
            logger.debug(f"ffprobe exited with {result.returncode} on {path}")
            return None
        return result.stdout or ""

    def duration(self, path: str) -> Optional[float]:
        """
        Return the container duration of ``path`` in seconds.

        Returns:
            Duration as float, or None when it cannot be determined
        """
        output = self._probe(
            ["-show_entries", "format=duration", "-of", "default=noprint_wrappers=1:nokey=1"],
            path,
        )
        if not output:
            return None
        for line in reversed(output.strip().splitlines()):
            try:
                value = float(line.strip())
            except ValueError:
                continue
            if value >= 0:
                return value
        return None

    def has_audio(self, path: str) -> bool:
        """Return True if ``path`` has at least one audio stream."""
        output = self._probe(
            ["-select_streams", "a", "-show_entries", "stream=codec_type", "-of", "csv=p=0"],
            path,
        )
        if not output:
            return False
        return any(line.strip() for line in output.splitlines())
