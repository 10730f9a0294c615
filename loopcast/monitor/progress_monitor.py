"""
Progress monitor for one encoder run.

Polls the `progress` tool for the encoder's open files, logs a now-playing
line whenever the current file changes, and records the last file seen so
the supervisor can report it after the run.

The monitor stops on its own once the encoder is no longer running; the
supervisor only joins it (with a bounded wait) or asks it to stop on
shutdown.
"""

import logging
import os
import shutil
import subprocess
import threading
from typing import Callable, Iterable, Optional

import psutil

from loopcast.monitor.progress_parser import NO_MATCH, ProgressSnapshot, parse_snapshot
from loopcast.playlist.manifest import Playlist
from loopcast.reporting import NOW_PLAYING_MARKER, PROGRESS_LOGGER_NAME, format_duration
from loopcast.state.last_played import LastPlayedCell, LastPlayedPointer

logger = logging.getLogger(__name__)
progress_logger = logging.getLogger(PROGRESS_LOGGER_NAME)

PROGRESS_TOOL = "progress"
SNAPSHOT_TIMEOUT = 5.0


def progress_tool_available() -> bool:
    return shutil.which(PROGRESS_TOOL) is not None


def take_progress_snapshot(
    pid: int, runner: Callable[..., subprocess.CompletedProcess] = subprocess.run
) -> str:
    """Run ``progress -q -p <pid>``; any failure yields an empty snapshot."""
    try:
        result = runner(
            [PROGRESS_TOOL, "-q", "-p", str(pid)],
            capture_output=True, text=True, timeout=SNAPSHOT_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"progress snapshot failed: {e}")
        return ""
    return result.stdout or ""


def encoder_running(pid: int) -> bool:
    """True while ``pid`` exists and is not a zombie."""
    try:
        proc = psutil.Process(pid)
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.Error:
        return False


class ProgressMonitor:
    """
    Background now-playing tracker for a single encoder process.

    Args:
        encoder_pid: PID of the encoder to watch
        playlist: Playlist being streamed (for position and duration)
        extensions: Allowed video extensions
        last_played: Shared cell the supervisor reads after join()
        pointer: On-disk last-played pointer (crash recovery)
        loop_count: Current loop iteration, shown in now-playing lines
        exclude_path: Music track to ignore in snapshots
        progress_updates: Emit in-place percent updates between transitions
        snapshot: Callable(pid) -> str (default: take_progress_snapshot)
        is_running: Callable(pid) -> bool (default: encoder_running)
        startup_grace: Seconds to wait before the first poll
        poll_interval: Seconds between polls after a non-empty snapshot
        idle_interval: Seconds between polls after an empty snapshot
    """

    def __init__(
        self,
        encoder_pid: int,
        playlist: Playlist,
        extensions: Iterable[str],
        last_played: LastPlayedCell,
        pointer: LastPlayedPointer,
        loop_count: int,
        *,
        exclude_path: Optional[str] = None,
        progress_updates: bool = False,
        snapshot: Optional[Callable[[int], str]] = None,
        is_running: Optional[Callable[[int], bool]] = None,
        startup_grace: float = 3.0,
        poll_interval: float = 1.0,
        idle_interval: float = 2.0,
    ) -> None:
        self.encoder_pid = encoder_pid
        self.playlist = playlist
        self.extensions = tuple(extensions)
        self.last_played = last_played
        self.pointer = pointer
        self.loop_count = loop_count
        self.exclude_path = exclude_path
        self.progress_updates = progress_updates
        self._snapshot = snapshot or take_progress_snapshot
        self._is_running = is_running or encoder_running
        self.startup_grace = startup_grace
        self.poll_interval = poll_interval
        self.idle_interval = idle_interval

        self.last_logged_file: Optional[str] = None
        self._progress_line_open = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run,
            name=f"progress-monitor-{self.encoder_pid}",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Started progress monitor for encoder PID={self.encoder_pid}")

    def stop(self) -> None:
        """Ask the monitor to finish; it persists the last file on the way out."""
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the monitor thread.

        Returns:
            True if the thread has finished
        """
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def poll_once(self) -> Optional[ProgressSnapshot]:
        """
        Take and handle one snapshot.

        Returns:
            The parsed snapshot, or None if the snapshot was empty
        """
        text = self._snapshot(self.encoder_pid)
        if not text or not text.strip():
            return None
        snap = parse_snapshot(text, self.extensions, self.exclude_path)
        if snap is NO_MATCH:
            logger.debug("Progress snapshot had no recognizable file or percent")
            return snap

        if snap.current_file and snap.current_file != self.last_logged_file:
            self._announce(snap)
        elif self.progress_updates and snap.current_file and snap.percent is not None:
            progress_logger.info(f"Progress: {os.path.basename(snap.current_file)} ({snap.percent_text})")
            self._progress_line_open = True
        return snap

    def _announce(self, snap: ProgressSnapshot) -> None:
        self._close_progress_line()
        name = os.path.basename(snap.current_file)
        position = self.playlist.locate(snap.current_file)
        if position is None:
            logger.info(f"{NOW_PLAYING_MARKER} [{self.loop_count}] {name} ({snap.percent_text})")
        else:
            line = (
                f"{NOW_PLAYING_MARKER} [{self.loop_count}|{position.index}/{position.total}] "
                f"{name} ({snap.percent_text})"
            )
            if position.entry.duration:
                line += f" ⏱ {format_duration(position.entry.duration)}"
            logger.info(line)

        self.last_logged_file = snap.current_file
        self._persist()

    def _persist(self) -> None:
        if self.last_logged_file:
            self.last_played.set(self.last_logged_file)
            self.pointer.write(self.last_logged_file)

    def _close_progress_line(self) -> None:
        if self._progress_line_open:
            progress_logger.info("")
            self._progress_line_open = False

    def _run(self) -> None:
        try:
            # Give the encoder a moment to open its first file
            if self._stop_event.wait(self.startup_grace):
                return
            while not self._stop_event.is_set() and self._is_running(self.encoder_pid):
                try:
                    snap = self.poll_once()
                except Exception as e:
                    logger.warning(f"Progress monitor poll failed: {e}")
                    snap = None
                interval = self.idle_interval if snap is None else self.poll_interval
                self._stop_event.wait(interval)
        finally:
            self._close_progress_line()
            self._persist()
            logger.debug(f"Progress monitor for PID={self.encoder_pid} exiting")
