"""
Concat-demuxer manifest format.

Each entry is one line::

    file '/videos/a b.mp4' # duration: 1325.44

Single quotes inside a path are written as ``'\\''`` (close quote, escaped
quote, reopen quote), which is how the concat demuxer expects them. A
duration of ``0`` means the probe failed and is read back as unknown.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from loopcast.state.atomic import atomic_write_text

logger = logging.getLogger(__name__)

_LINE_RE = re.compile(
    r"^file\s+(?P<path>(?:'[^']*'|\\')+|\S+)"
    r"(?:\s*#\s*duration:\s*(?P<duration>[0-9]+(?:\.[0-9]+)?))?\s*$"
)
_TOKEN_RE = re.compile(r"'([^']*)'|\\(')")


@dataclass(frozen=True)
class PlaylistEntry:
    """One manifest line. ``duration`` is None when unknown."""
    path: str
    duration: Optional[float] = None


@dataclass(frozen=True)
class EntryPosition:
    """Where an entry sits in a playlist (``index`` is 1-based)."""
    index: int
    total: int
    entry: PlaylistEntry


@dataclass(frozen=True)
class Playlist:
    """Ordered, immutable sequence of entries backed by a manifest file."""
    path: str
    entries: Tuple[PlaylistEntry, ...] = ()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[PlaylistEntry]:
        return iter(self.entries)

    @property
    def first(self) -> Optional[PlaylistEntry]:
        return self.entries[0] if self.entries else None

    def locate(self, path: str) -> Optional[EntryPosition]:
        """Find ``path`` in the playlist, or None if it is not listed."""
        for i, entry in enumerate(self.entries, start=1):
            if entry.path == path:
                return EntryPosition(index=i, total=len(self.entries), entry=entry)
        return None

    def entry_after(self, index: int) -> Optional[PlaylistEntry]:
        """Entry following the 1-based ``index``; None after the last one."""
        if 1 <= index < len(self.entries):
            return self.entries[index]
        return None


def quote_path(path: str) -> str:
    return "'" + path.replace("'", "'\\''") + "'"


def _unquote(token: str) -> str:
    if not token.startswith(("'", "\\")):
        return token
    return "".join(quoted or escaped for quoted, escaped in _TOKEN_RE.findall(token))


def format_seconds(seconds: float) -> str:
    text = f"{seconds:.6f}".rstrip("0").rstrip(".")
    return text or "0"


def format_entry(entry: PlaylistEntry, annotate: bool) -> str:
    line = f"file {quote_path(entry.path)}"
    if annotate:
        line += f" # duration: {format_seconds(entry.duration or 0)}"
    return line


def parse_entry(line: str) -> Optional[PlaylistEntry]:
    """Parse one manifest line; None for blank, comment or malformed lines."""
    match = _LINE_RE.match(line.strip())
    if not match:
        return None
    path = _unquote(match.group("path"))
    if not path:
        return None
    duration = None
    if match.group("duration") is not None:
        value = float(match.group("duration"))
        duration = value if value > 0 else None
    return PlaylistEntry(path=path, duration=duration)


def write_manifest(path: str, entries: Sequence[PlaylistEntry], annotate: bool) -> Playlist:
    """
    Write entries to ``path`` atomically.

    Raises:
        OSError: If the manifest cannot be written
    """
    lines = [format_entry(entry, annotate) for entry in entries]
    atomic_write_text(path, "".join(line + "\n" for line in lines))
    return Playlist(path=path, entries=tuple(entries))


def read_manifest(path: str) -> Playlist:
    """Read a manifest; a missing or unreadable file reads as empty."""
    entries: List[PlaylistEntry] = []
    if not os.path.exists(path):
        return Playlist(path=path)
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                entry = parse_entry(line)
                if entry is not None:
                    entries.append(entry)
    except OSError as e:
        logger.warning(f"Failed to read manifest {path}: {e}")
    return Playlist(path=path, entries=tuple(entries))
