"""
Last-played tracking shared between the progress monitor and the supervisor.

The monitor owns writes while an encoder run is live. The supervisor reads
only after joining the monitor. The in-memory cell is the primary channel;
the pointer file exists for crash recovery.
"""

import logging
import os
import threading
from typing import Optional

from loopcast.state.atomic import atomic_write_text

logger = logging.getLogger(__name__)


class LastPlayedCell:
    """Thread-safe holder for the most recently detected file."""

    def __init__(self, initial: Optional[str] = None) -> None:
        self._lock = threading.Lock()
        self._value = initial

    def set(self, path: Optional[str]) -> None:
        with self._lock:
            self._value = path

    def get(self) -> Optional[str]:
        with self._lock:
            return self._value


class LastPlayedPointer:
    """Single-line file holding the absolute path of the last played file."""

    def __init__(self, path: str) -> None:
        self.path = path

    def write(self, played: str) -> bool:
        try:
            atomic_write_text(self.path, played + "\n")
        except OSError as e:
            logger.warning(f"Failed to write last played pointer {self.path}: {e}")
            return False
        return True

    def read(self) -> Optional[str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                value = f.readline().strip()
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable last played pointer {self.path}: {e}")
            return None
        return value or None

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to clear last played pointer {self.path}: {e}")
