"""
Session state storage for loopcast.

Provides atomic, crash-resistant JSON storage of the streaming session so that
a restarted process can report what was last on air.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Optional

from loopcast.state.atomic import atomic_write_text

logger = logging.getLogger(__name__)


@dataclass
class StreamSession:
    """What is persisted between runs."""
    last_played: str = ""
    loop_count: int = 0
    stream_start_time: Optional[float] = None


class SessionStore:
    """
    Simple JSON-based session storage with atomic writes.

    Best-effort by contract: load() never raises and save() only logs on
    failure, because session continuity is a convenience.
    """

    def __init__(self, path: str):
        """
        Initialize session store.

        Args:
            path: Path to JSON state file
        """
        self.path = path
        logger.debug(f"SessionStore initialized with path: {path}")

    def save(self, session: StreamSession) -> bool:
        """
        Save session to JSON file atomically.

        Args:
            session: Session to persist

        Returns:
            True if the file was written
        """
        data = {
            "last_played": session.last_played,
            "loop_count": session.loop_count,
            "last_update": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            "stream_start_time": session.stream_start_time,
        }
        try:
            atomic_write_text(self.path, json.dumps(data, indent=2) + "\n")
        except OSError as e:
            logger.warning(f"Failed to save session state to {self.path}: {e}")
            return False
        logger.debug(f"Session state saved to {self.path}")
        return True

    def load(self) -> StreamSession:
        """
        Load session from JSON file.

        Returns:
            Stored session, or a default session if the file doesn't exist or
            is invalid
        """
        if not os.path.exists(self.path):
            logger.debug(f"No session state file found at {self.path}")
            return StreamSession()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("state file does not contain an object")
            last_played = data.get("last_played") or ""
            loop_count = int(data.get("loop_count") or 0)
            start = data.get("stream_start_time")
            stream_start_time = float(start) if start is not None else None
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to load session state: {e}")
            return StreamSession()

        if not isinstance(last_played, str) or loop_count < 0:
            logger.warning(f"Ignoring malformed session state in {self.path}")
            return StreamSession()

        logger.debug(f"Session state loaded from {self.path}")
        return StreamSession(
            last_played=last_played,
            loop_count=loop_count,
            stream_start_time=stream_start_time,
        )
