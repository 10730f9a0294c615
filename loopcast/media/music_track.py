"""
Background music track preparation.

The music directory is flattened into one concatenated file so the encoder
can loop a single input indefinitely.
"""

import logging
import os
import subprocess
from typing import Callable, Optional

from loopcast.config import StreamerConfig
from loopcast.errors import PlaylistSourceError
from loopcast.playlist.builder import PlaylistBuilder, PlaylistOrder
from loopcast.playlist.duration_cache import DurationCache
from loopcast.reporting import format_duration

logger = logging.getLogger(__name__)

CONCAT_TIMEOUT = 600


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove {path}: {e}")


class AudioTrackPreparer:
    """
    Build the music playlist and concatenate it into a single track.

    Args:
        config: Active configuration (music paths and file types)
        builder: Playlist builder
        duration_cache: Used to report the music playlist length
        runner: subprocess.run compatible callable (injectable for tests)
        ffmpeg_bin: ffmpeg executable name or path
    """

    def __init__(
        self,
        config: StreamerConfig,
        builder: PlaylistBuilder,
        duration_cache: DurationCache,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        ffmpeg_bin: str = "ffmpeg",
    ) -> None:
        self.config = config
        self.builder = builder
        self.duration_cache = duration_cache
        self._run = runner
        self.ffmpeg_bin = ffmpeg_bin

    def prepare(self, order: PlaylistOrder = PlaylistOrder.SORTED) -> Optional[str]:
        """
        Regenerate the music playlist and the concatenated track.

        Returns:
            Path of the concatenated track, or None when music has to be
            disabled for this session (missing or empty directory, or a
            failed concatenation)
        """
        config = self.config
        try:
            playlist = self.builder.build(
                config.music_dir,
                config.music_file_types,
                config.music_list,
                order=order,
                annotate_duration=False,
                media_type="Music",
            )
        except PlaylistSourceError as e:
            logger.warning(f"{e} - disabling music.")
            return None
        except OSError as e:
            logger.warning(f"Failed to write music playlist {config.music_list}: {e} - disabling music.")
            return None

        if len(playlist) == 0:
            logger.warning(f"Found no music files under {config.music_dir} - disabling music.")
            _remove_quietly(config.music_list)
            _remove_quietly(config.music_track_file)
            return None

        total, count = self.duration_cache.get_total_duration(playlist, config.music_dir)
        logger.warning(f"Music playlist duration: {format_duration(total)} - {count} files")

        logger.info("Concatenating music files into a single track for looping...")
        cmd = [
            self.ffmpeg_bin, "-hide_banner", "-nostdin", "-loglevel", "error",
            "-y", "-f", "concat", "-safe", "0", "-i", config.music_list,
            "-c", "copy", config.music_track_file,
        ]
        try:
            result = self._run(cmd, capture_output=True, text=True, timeout=CONCAT_TIMEOUT)
            failed = result.returncode != 0
            detail = (result.stderr or "").strip().splitlines()[-1:] if failed else []
        except (OSError, subprocess.SubprocessError) as e:
            failed = True
            detail = [str(e)]

        if failed:
            suffix = f": {detail[0]}" if detail else ""
            logger.error(f"Failed to concatenate music files{suffix}. Disabling music for this session.")
            _remove_quietly(config.music_track_file)
            return None

        logger.info(f"Successfully created concatenated music file at {config.music_track_file}")
        return config.music_track_file
