"""Crash-resilient on-disk state for loopcast."""

from loopcast.state.atomic import atomic_write_text
from loopcast.state.last_played import LastPlayedCell, LastPlayedPointer
from loopcast.state.session_store import SessionStore, StreamSession

__all__ = [
    "atomic_write_text",
    "LastPlayedCell",
    "LastPlayedPointer",
    "SessionStore",
    "StreamSession",
]
