"""
Atomic file replacement.

All files loopcast owns (manifests, duration cache, session state, last-played
pointer) are rewritten wholesale: write a temporary sibling, then rename it
over the target so a reader never sees a half-written file.
"""

import logging
import os

logger = logging.getLogger(__name__)


def atomic_write_text(path: str, text: str) -> None:
    """
    Replace ``path`` with ``text`` atomically.

    Creates parent directories as needed. The temporary file lives in the
    same directory so the final rename never crosses filesystems.

    Raises:
        OSError: If the file cannot be written; the temporary file is removed
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp = f"{path}.tmp.{os.getpid()}"
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except OSError:
        # Clean up temp file on error
        try:
            if os.path.exists(tmp):
                os.remove(tmp)
        except OSError:
            pass
        raise
