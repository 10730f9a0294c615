"""
Parser for `progress` tool snapshots.

A snapshot is free text such as::

    [12345] ffmpeg /videos/Season 1/Episode 01.mkv
            42.7% (512.0 MiB / 1.2 GiB)

Parsing is best-effort: either field may be missing and garbage input yields
NO_MATCH instead of an exception.
"""

import os
import re
from dataclasses import dataclass
from typing import Iterable, Optional

_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)%")


@dataclass(frozen=True)
class ProgressSnapshot:
    """Result of parsing one snapshot."""
    current_file: Optional[str] = None
    percent: Optional[float] = None

    @property
    def matched(self) -> bool:
        return self.current_file is not None

    @property
    def percent_text(self) -> str:
        return f"{self.percent:.1f}%" if self.percent is not None else "0.0%"


NO_MATCH = ProgressSnapshot()


def _path_patterns(extensions: Iterable[str]):
    alternation = "|".join(re.escape(ext.lstrip(".")) for ext in extensions if ext)
    if not alternation:
        return None, None
    # Absolute or ./ relative paths may contain spaces; the shortest match
    # ending in an allowed extension followed by whitespace wins.
    anchored = re.compile(
        rf"(?:^|(?<=\s))(\.?/[^\n]*?\.(?:{alternation}))(?=\s|$)",
        re.IGNORECASE | re.MULTILINE,
    )
    bare = re.compile(rf"(\S+\.(?:{alternation}))(?=\s|$)", re.IGNORECASE | re.MULTILINE)
    return anchored, bare


def parse_snapshot(
    text: Optional[str],
    extensions: Iterable[str],
    exclude_path: Optional[str] = None,
) -> ProgressSnapshot:
    """
    Extract the current file and percent-complete from a snapshot.

    Args:
        text: Raw snapshot output (may be None or empty)
        extensions: Allowed video extensions, without dots
        exclude_path: File to ignore when looking for the current file
            (the looped music track)

    Returns:
        ProgressSnapshot, or NO_MATCH when nothing could be extracted
    """
    if not text or not isinstance(text, str):
        return NO_MATCH

    lines = text.splitlines()
    if exclude_path:
        excluded_name = os.path.basename(exclude_path)
        lines = [line for line in lines if exclude_path not in line and excluded_name not in line]
    filtered = "\n".join(lines)

    current_file = None
    anchored, bare = _path_patterns(extensions)
    if anchored is not None:
        match = anchored.search(filtered) or bare.search(filtered)
        if match:
            current_file = match.group(1).strip()

    percent = None
    percent_match = _PERCENT_RE.search(text)
    if percent_match:
        try:
            percent = float(percent_match.group(1))
        except ValueError:
            percent = None

    if current_file is None and percent is None:
        return NO_MATCH
    return ProgressSnapshot(current_file=current_file, percent=percent)
