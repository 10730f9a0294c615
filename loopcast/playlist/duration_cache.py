"""
Total playlist duration with an on-disk cache.

Cache file lines look like ``<key>:<totalSeconds> <fileCount>`` where the key
is the md5 of ``"<source_dir>:<count>\\n"``. A hit needs both the key and
the stored count to match.

Known limitation: two different sets of files in the same directory with the
same count share a key, so the second one reads the first one's total.
"""

import hashlib
import logging
import os
from typing import Dict, Optional, Tuple

from loopcast.media.probe import MediaProber
from loopcast.playlist.manifest import Playlist
from loopcast.state.atomic import atomic_write_text

logger = logging.getLogger(__name__)


def cache_key(source_dir: str, file_count: int) -> str:
    return hashlib.md5(f"{source_dir}:{file_count}\n".encode("utf-8")).hexdigest()


class DurationCache:
    """
    Compute and cache the total duration of a playlist.

    Args:
        cache_file: Path of the cache file
        prober: Fallback for entries without a duration annotation
    """

    def __init__(self, cache_file: str, prober: MediaProber) -> None:
        self.cache_file = cache_file
        self.prober = prober

    def _read_lines(self) -> Dict[str, str]:
        lines: Dict[str, str] = {}
        try:
            with open(self.cache_file, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if ":" not in line:
                        continue
                    key, value = line.split(":", 1)
                    lines[key] = value
        except FileNotFoundError:
            pass
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read duration cache {self.cache_file}: {e} - recomputing")
            return {}
        return lines

    def _lookup(self, key: str, file_count: int) -> Optional[float]:
        value = self._read_lines().get(key)
        if value is None:
            return None
        parts = value.split()
        if len(parts) != 2:
            return None
        try:
            total, count = float(parts[0]), int(parts[1])
        except ValueError:
            return None
        if count != file_count:
            return None
        return total

    def _store(self, key: str, total: float, file_count: int) -> None:
        lines = self._read_lines()
        lines.pop(key, None)
        body = "".join(f"{k}:{v}\n" for k, v in lines.items())
        body += f"{key}:{total:.6f} {file_count}\n"
        try:
            atomic_write_text(self.cache_file, body)
        except OSError as e:
            logger.warning(f"Failed to update duration cache {self.cache_file}: {e}")

    def get_total_duration(
        self, playlist: Playlist, source_dir: str, use_cache: bool = True
    ) -> Tuple[float, int]:
        """
        Total duration of ``playlist`` in seconds, plus its entry count.

        Never raises: unknown durations contribute 0.

        Args:
            playlist: Playlist to measure
            source_dir: Directory the playlist was built from (part of the key)
            use_cache: When False, the cache file is neither read nor written

        Returns:
            (total_seconds, file_count)
        """
        file_count = len(playlist)
        key = cache_key(source_dir, file_count)
        label = os.path.basename(source_dir.rstrip("/")) or source_dir

        if use_cache:
            cached = self._lookup(key, file_count)
            if cached is not None:
                logger.debug(f"Cache hit for {label} ({file_count} files)")
                return cached, file_count

        logger.info(f"Calculating durations for {label} ({file_count} files)...")

        total = 0.0
        missing = [entry for entry in playlist if entry.duration is None]
        for entry in playlist:
            if entry.duration is not None:
                total += entry.duration

        if missing:
            logger.warning("Some files missing duration metadata, probing with ffprobe...")
            for entry in missing:
                duration = self.prober.duration(entry.path)
                if duration:
                    total += duration

        if use_cache:
            self._store(key, total, file_count)

        return total, file_count
