"""Playlist scanning, concat manifests and duration totals."""

from loopcast.playlist.builder import PlaylistBuilder, PlaylistOrder
from loopcast.playlist.duration_cache import DurationCache
from loopcast.playlist.manifest import EntryPosition, Playlist, PlaylistEntry, read_manifest

__all__ = [
    "DurationCache",
    "EntryPosition",
    "Playlist",
    "PlaylistBuilder",
    "PlaylistEntry",
    "PlaylistOrder",
    "read_manifest",
]
