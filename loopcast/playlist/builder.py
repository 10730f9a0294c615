"""
Playlist builder.

Scans a media directory recursively, orders the matches and writes a concat
manifest. Whether a missing or empty source is fatal is the caller's call:
the builder only reports it.
"""

import enum
import logging
import os
import random
from typing import Iterable, List, Optional

from loopcast.errors import PlaylistSourceError
from loopcast.media.probe import MediaProber
from loopcast.playlist.manifest import Playlist, PlaylistEntry, write_manifest

logger = logging.getLogger(__name__)


class PlaylistOrder(enum.Enum):
    """How scanned files are ordered in the manifest."""
    SORTED = "sorted"
    SHUFFLED = "shuffled"


class PlaylistBuilder:
    """
    Build concat manifests from media directories.

    Args:
        prober: Used for duration annotation
        rng: Random source for shuffled order (default: a fresh random.Random)
    """

    def __init__(self, prober: MediaProber, rng: Optional[random.Random] = None) -> None:
        self.prober = prober
        self.rng = rng or random.Random()

    def scan(self, source_dir: str, extensions: Iterable[str]) -> List[str]:
        """
        Recursively list files under ``source_dir`` with an allowed extension.

        Matching is case-insensitive. Returned paths are absolute, in
        lexicographic order.

        Raises:
            PlaylistSourceError: If ``source_dir`` is missing or unreadable
        """
        if not os.path.isdir(source_dir):
            raise PlaylistSourceError(source_dir)
        if not os.access(source_dir, os.R_OK | os.X_OK):
            raise PlaylistSourceError(source_dir, "is not readable")

        suffixes = tuple("." + ext.lower().lstrip(".") for ext in extensions)
        if not suffixes:
            return []

        root = os.path.abspath(source_dir)
        matches = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            for filename in filenames:
                if filename.lower().endswith(suffixes):
                    full = os.path.join(dirpath, filename)
                    if os.path.isfile(full):
                        matches.append(full)
        matches.sort()
        return matches

    def build(
        self,
        source_dir: str,
        extensions: Iterable[str],
        output_path: str,
        order: PlaylistOrder = PlaylistOrder.SORTED,
        annotate_duration: bool = False,
        media_type: str = "Video",
    ) -> Playlist:
        """
        Scan ``source_dir`` and write its manifest to ``output_path``.

        Args:
            source_dir: Directory to scan recursively
            extensions: Allowed file extensions (case-insensitive, no dot)
            output_path: Manifest destination, replaced atomically
            order: Lexicographic or random order
            annotate_duration: Probe each file and record its duration
            media_type: Label used in log messages

        Returns:
            The written Playlist (possibly empty)

        Raises:
            PlaylistSourceError: If ``source_dir`` is missing or unreadable
            OSError: If the manifest cannot be written
        """
        extensions = list(extensions)
        logger.info(f"Generating {media_type} list from {source_dir} for types: {' '.join(extensions)}...")

        if not extensions:
            logger.warning(f"No file types specified for {media_type}. Playlist will be empty.")
            return write_manifest(output_path, [], annotate_duration)

        files = self.scan(source_dir, extensions)
        if order is PlaylistOrder.SHUFFLED:
            logger.info(f"Shuffle mode enabled for {media_type}.")
            self.rng.shuffle(files)

        entries = []
        for path in files:
            duration = self.prober.duration(path) if annotate_duration else None
            entries.append(PlaylistEntry(path=path, duration=duration))

        playlist = write_manifest(output_path, entries, annotate_duration)
        logger.info(f"{media_type} file list generated at {output_path} with {len(playlist)} entries")
        return playlist
