"""
Stream supervisor.

Owns the encoder process for the lifetime of the stream: builds the video
playlist, launches one ffmpeg per attempt alongside a progress monitor,
classifies each exit, retries transient failures with a fixed backoff, and
restarts the playlist when looping is enabled.

State machine (see transitions.py)::

    IDLE -> PLAYLIST_READY -> STREAMING -> SUCCEEDED | FAILED
    FAILED (transient, attempts left) -> RETRYING -> STREAMING
    SUCCEEDED | FAILED -> LOOP_RESTART -> PLAYLIST_READY   (looping on)
    SUCCEEDED | FAILED -> TERMINATED                       (looping off)
    any state -> TERMINATED                                (shutdown request)

There is no stall timeout: a live encoder runs until it exits or a shutdown
is requested.
"""

from __future__ import annotations

import collections
import logging
import os
import signal
import subprocess
import threading
import time
from typing import Callable, Deque, IO, List, Optional, Tuple

from loopcast.config import StreamerConfig
from loopcast.encoder.command_builder import build_encoder_invocation
from loopcast.encoder.transitions import (
    ALLOWED_TRANSITIONS,
    ExitClassification,
    SupervisorState,
    classify_exit,
    state_after_exit,
    state_after_failure,
    state_after_iteration,
)
from loopcast.errors import (
    EXIT_NO_VIDEO_FILES,
    EXIT_OK,
    EXIT_STATE_DIR_UNWRITABLE,
    EXIT_VIDEO_DIR_MISSING,
    FatalError,
    PlaylistSourceError,
    signal_exit_code,
)
from loopcast.media.music_track import AudioTrackPreparer
from loopcast.media.probe import MediaProber
from loopcast.monitor.progress_monitor import ProgressMonitor, progress_tool_available
from loopcast.playlist.builder import PlaylistBuilder, PlaylistOrder
from loopcast.playlist.duration_cache import DurationCache
from loopcast.playlist.manifest import Playlist
from loopcast.reporting import format_command_for_log, format_duration
from loopcast.state.last_played import LastPlayedCell, LastPlayedPointer
from loopcast.state.session_store import SessionStore, StreamSession

logger = logging.getLogger(__name__)
ffmpeg_logger = logging.getLogger("loopcast.encoder.ffmpeg")

# Exit status reported when the encoder could not be spawned at all
SPAWN_FAILURE_EXIT_CODE = 127

WAIT_POLL_INTERVAL = 0.5
ENCODER_STOP_TIMEOUT = 10.0
MONITOR_JOIN_GRACE = 3.0
DRAIN_JOIN_TIMEOUT = 2.0
STDERR_TAIL_LINES = 200
LOG_TAIL_BYTES = 64 * 1024

MonitorFactory = Callable[[int, Playlist, int, Optional[str]], Optional[ProgressMonitor]]


def resolve_hwaccel(config: StreamerConfig) -> bool:
    """Hardware acceleration is used only when requested and the device exists."""
    if not config.enable_hw_accel:
        return False
    if not os.path.exists(config.vaapi_device):
        logger.warning(
            f"VA-API device {config.vaapi_device} not found. Falling back to software encoding."
        )
        return False
    return True


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


class StreamSupervisor:
    """
    Run the streaming loop.

    Args:
        config: Active configuration
        builder: Playlist builder for the video (and music) manifests
        prober: Used to check whether the first video carries audio
        duration_cache: Reports playlist length each iteration
        music_preparer: Builds the looped background track
        session_store: Session persistence
        pointer: On-disk last-played pointer
        popen: subprocess.Popen compatible factory (injectable for tests)
        monitor_factory: Callable(pid, playlist, loop_count, exclude_path)
            returning a started-able monitor or None (default: a
            ProgressMonitor when the `progress` tool is installed)
        on_state_change: Optional callback when state changes
        hwaccel: Use the VA-API pipeline (default: resolve_hwaccel(config))
        wait: Callable(seconds) -> bool used for backoff and restart
            delays; returns True when shutdown was requested meanwhile
        clock: Wall clock used for session uptime
    """

    def __init__(
        self,
        config: StreamerConfig,
        *,
        builder: PlaylistBuilder,
        prober: MediaProber,
        duration_cache: DurationCache,
        music_preparer: AudioTrackPreparer,
        session_store: SessionStore,
        pointer: LastPlayedPointer,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        monitor_factory: Optional[MonitorFactory] = None,
        on_state_change: Optional[Callable[[SupervisorState], None]] = None,
        hwaccel: Optional[bool] = None,
        wait: Optional[Callable[[float], bool]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.builder = builder
        self.prober = prober
        self.duration_cache = duration_cache
        self.music_preparer = music_preparer
        self.session_store = session_store
        self.pointer = pointer
        self._popen = popen
        self._monitor_factory = monitor_factory or self._default_monitor_factory
        self.on_state_change = on_state_change
        self.hwaccel = resolve_hwaccel(config) if hwaccel is None else hwaccel
        self._clock = clock

        self._state = SupervisorState.IDLE
        self._state_lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._shutdown_signum: Optional[int] = None
        self._shutdown_logged = False
        self._wait = wait or self._shutdown_event.wait
        self._warned_no_progress = False

        self.last_played = LastPlayedCell()
        self.loop_count = 0
        self.music_enabled = config.enable_music
        self.session = StreamSession()
        self.start_time: Optional[float] = None

    # ------------------------------------------------------------------ state

    def get_state(self) -> SupervisorState:
        with self._state_lock:
            return self._state

    def _set_state(self, new_state: SupervisorState) -> None:
        with self._state_lock:
            old_state = self._state
            if new_state not in ALLOWED_TRANSITIONS[old_state]:
                raise RuntimeError(f"Illegal supervisor transition {old_state.name} -> {new_state.name}")
            self._state = new_state
        logger.debug(f"Supervisor state {old_state.name} -> {new_state.name}")
        if self.on_state_change:
            self.on_state_change(new_state)

    def _terminate(self) -> None:
        if self.get_state() is not SupervisorState.TERMINATED:
            self._set_state(SupervisorState.TERMINATED)

    # --------------------------------------------------------------- shutdown

    def request_shutdown(self, signum: Optional[int] = None) -> None:
        """
        Ask the supervisor to stop. Safe to call from a signal handler.

        Only records the request; the main loop logs it once it notices. The
        running encoder is terminated within one wait interval and the
        process exit status becomes 128 + signum.
        """
        if self._shutdown_signum is None and signum is not None:
            self._shutdown_signum = signum
        self._shutdown_event.set()

    def _log_shutdown_request(self) -> None:
        if self._shutdown_logged:
            return
        self._shutdown_logged = True
        signum = self._shutdown_signum
        label = f" {_signal_name(signum)}" if signum is not None else ""
        logger.warning(f"Received shutdown signal{label}. Cleaning up...")

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_event.is_set()

    def _sleep(self, seconds: float) -> bool:
        if seconds <= 0:
            return self._shutdown_event.is_set()
        return bool(self._wait(seconds)) or self._shutdown_event.is_set()

    def _finish_shutdown(self) -> int:
        self._log_shutdown_request()
        self._save_session()
        self._terminate()
        exit_code = signal_exit_code(self._shutdown_signum) if self._shutdown_signum else EXIT_OK
        logger.warning(f"Cleanup complete. Exiting with code {exit_code}.")
        return exit_code

    # ---------------------------------------------------------------- session

    def _recover_session(self) -> None:
        previous = self.session_store.load()
        if previous.last_played:
            logger.info(f"Recovered last played: {os.path.basename(previous.last_played)}")
            self.last_played.set(previous.last_played)
        if previous.loop_count:
            logger.info(f"Previous session reached loop {previous.loop_count}")
        self.session = StreamSession(
            last_played=previous.last_played,
            loop_count=0,
            stream_start_time=self.start_time,
        )

    def _current_last_played(self) -> Optional[str]:
        return self.last_played.get() or self.pointer.read()

    def _save_session(self) -> None:
        last = self._current_last_played()
        if last:
            self.session.last_played = last
        self.session.loop_count = self.loop_count
        self.session_store.save(self.session)

    # --------------------------------------------------------------- playlist

    def _build_video_playlist(self) -> Playlist:
        config = self.config
        order = PlaylistOrder.SHUFFLED if config.enable_shuffle else PlaylistOrder.SORTED
        logger.info(f"Checking for videos in {config.video_dir}...")
        try:
            playlist = self.builder.build(
                config.video_dir,
                config.video_file_types,
                config.video_playlist,
                order=order,
                annotate_duration=True,
                media_type="Video",
            )
        except PlaylistSourceError:
            raise FatalError(
                f"Video source directory not found at {config.video_dir}. ABORTING.",
                EXIT_VIDEO_DIR_MISSING,
            )
        except OSError as e:
            raise FatalError(
                f"Cannot write video playlist {config.video_playlist}: {e}",
                EXIT_STATE_DIR_UNWRITABLE,
            )

        if len(playlist) == 0:
            try:
                os.remove(config.video_playlist)
            except OSError:
                pass
            raise FatalError(
                f"Found no video files in {config.video_dir} matching types "
                f"'{' '.join(config.video_file_types)}'. ABORTING.",
                EXIT_NO_VIDEO_FILES,
            )
        return playlist

    def _prepare_music(self) -> Optional[str]:
        if not self.music_enabled:
            return None
        order = PlaylistOrder.SHUFFLED if self.config.enable_shuffle else PlaylistOrder.SORTED
        track = self.music_preparer.prepare(order)
        if track is None:
            self.music_enabled = False
        return track

    # ----------------------------------------------------------------- encoder

    def _default_monitor_factory(
        self, pid: int, playlist: Playlist, loop_count: int, exclude_path: Optional[str]
    ) -> Optional[ProgressMonitor]:
        if not progress_tool_available():
            if not self._warned_no_progress:
                logger.warning("'progress' command not found. Cannot monitor currently playing file.")
                self._warned_no_progress = True
            return None
        return ProgressMonitor(
            pid,
            playlist,
            self.config.video_file_types,
            self.last_played,
            self.pointer,
            loop_count,
            exclude_path=exclude_path,
            progress_updates=self.config.enable_progress_updates,
        )

    def _stderr_drain(self, stream: IO, tail: Deque[str]) -> None:
        """Log encoder stderr lines with an [FFMPEG] prefix and keep a tail."""
        try:
            for raw in iter(stream.readline, b""):
                if not raw:
                    break
                if isinstance(raw, bytes):
                    line = raw.decode(errors="ignore").rstrip()
                else:
                    line = str(raw).rstrip()
                if line:
                    ffmpeg_logger.warning(f"[FFMPEG] {line}")
                    tail.append(line)
        except (OSError, ValueError) as e:
            logger.debug(f"Stderr read error (likely closed): {e}")
        logger.debug("FFmpeg stderr drain thread exiting")

    def _read_log_since(self, offset: int) -> Optional[str]:
        try:
            with open(self.config.ffmpeg_log_file, "rb") as f:
                f.seek(0, os.SEEK_END)
                end = f.tell()
                f.seek(max(offset, end - LOG_TAIL_BYTES))
                return f.read().decode(errors="ignore")
        except OSError as e:
            logger.warning(f"Failed to read ffmpeg log {self.config.ffmpeg_log_file}: {e}")
            return None

    def _build_command(self, playlist: Playlist, music_track: Optional[str]) -> List[str]:
        source_has_audio = True
        if music_track is None:
            logger.info("Music is disabled. Using video audio directly.")
            first = playlist.first
            source_has_audio = first is not None and self.prober.has_audio(first.path)
            if source_has_audio:
                logger.info("Copying audio stream without re-encoding (-c:a copy).")
            else:
                logger.warning("Video has no audio stream. Encoding silent audio.")
        elif abs(self.config.music_volume - 1.0) < 1e-9:
            logger.info("Music enabled, replacing video audio (stream copy).")
        else:
            logger.info(f"Music enabled at volume {self.config.music_volume:g}. Audio will be re-encoded.")

        return build_encoder_invocation(
            self.config,
            playlist.path,
            music_track,
            hwaccel=self.hwaccel,
            source_has_audio=source_has_audio,
        )

    def _stop_encoder(self, proc: subprocess.Popen) -> None:
        logger.info(f"Stopping ffmpeg (PID: {proc.pid})...")
        try:
            proc.terminate()
        except OSError as e:
            logger.warning(f"Error stopping encoder process: {e}")
            return
        try:
            proc.wait(timeout=ENCODER_STOP_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning(f"Encoder did not exit within {ENCODER_STOP_TIMEOUT:g}s of SIGTERM")

    def _stream_once(self, playlist: Playlist, music_track: Optional[str]) -> Tuple[int, Optional[str]]:
        """
        Launch one encoder run and block until it ends.

        Returns:
            (exit_code, encoder output captured during the run or None)
        """
        cmd = self._build_command(playlist, music_track)
        printable = format_command_for_log(cmd)
        if self.config.stream_key:
            printable = printable.replace(self.config.stream_key, "<stream-key>")
        logger.debug(f"Executing FFmpeg command: {printable}")

        log_handle = None
        log_offset = 0
        if self.config.enable_ffmpeg_log_file:
            try:
                os.makedirs(os.path.dirname(os.path.abspath(self.config.ffmpeg_log_file)), exist_ok=True)
                log_handle = open(self.config.ffmpeg_log_file, "ab")
                log_offset = log_handle.tell()
            except OSError as e:
                logger.warning(f"Cannot open ffmpeg log {self.config.ffmpeg_log_file}: {e} - logging to console")
                log_handle = None

        try:
            if log_handle is not None:
                proc = self._popen(cmd, stdin=subprocess.DEVNULL, stdout=log_handle, stderr=subprocess.STDOUT)
            else:
                proc = self._popen(cmd, stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
        except OSError as e:
            logger.error(f"Failed to start encoder process: {e}")
            if log_handle is not None:
                log_handle.close()
            return SPAWN_FAILURE_EXIT_CODE, None

        logger.info(f"Started ffmpeg PID={proc.pid}")

        tail: Deque[str] = collections.deque(maxlen=STDERR_TAIL_LINES)
        drain_thread = None
        if log_handle is None and proc.stderr is not None:
            drain_thread = threading.Thread(
                target=self._stderr_drain,
                args=(proc.stderr, tail),
                name=f"ffmpeg-stderr-{proc.pid}",
                daemon=True,
            )
            drain_thread.start()

        exclude = music_track if music_track else None
        monitor = self._monitor_factory(proc.pid, playlist, self.loop_count, exclude)
        if monitor is not None:
            monitor.start()

        exit_code = None
        try:
            while exit_code is None:
                try:
                    exit_code = proc.wait(timeout=WAIT_POLL_INTERVAL)
                except subprocess.TimeoutExpired:
                    if self._shutdown_event.is_set():
                        self._log_shutdown_request()
                        self._stop_encoder(proc)
                        exit_code = proc.poll()
                        if exit_code is None:
                            exit_code = signal_exit_code(signal.SIGTERM)
        finally:
            if log_handle is not None:
                log_handle.close()
            if drain_thread is not None:
                drain_thread.join(timeout=DRAIN_JOIN_TIMEOUT)

        if monitor is not None:
            if self._shutdown_event.is_set():
                monitor.stop()
            if not monitor.join(timeout=MONITOR_JOIN_GRACE):
                monitor.stop()
                if not monitor.join(timeout=MONITOR_JOIN_GRACE):
                    logger.warning("Progress monitor did not stop within the grace period")

        self._report_last_played(playlist)
        self._save_session()

        if log_handle is not None:
            log_text = self._read_log_since(log_offset)
        else:
            log_text = "\n".join(tail)
        return exit_code, log_text

    def _report_last_played(self, playlist: Playlist) -> None:
        last = self._current_last_played()
        if not last:
            return
        position = playlist.locate(last)
        if position is None:
            logger.info(f"Last Played: {os.path.basename(last)}")
            return
        logger.info(f"Last Played: {os.path.basename(last)} (File {position.index}/{position.total})")
        upcoming = playlist.entry_after(position.index)
        if upcoming is not None:
            logger.info(f"  ->   Next: {os.path.basename(upcoming.path)}")

    # -------------------------------------------------------------- main loop

    def _log_iteration_header(self) -> None:
        logger.warning(f"=== STREAMING LOOP START [{self.loop_count}] ===")
        last = self._current_last_played()
        if last:
            logger.warning(f"  Last played   : {os.path.basename(last)}")
        else:
            logger.warning("  Last played   : (none - first run)")
        if self.start_time is not None:
            elapsed = self._clock() - self.start_time
            started = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(self.start_time))
            logger.warning(f"  Session uptime: {format_duration(elapsed)} (since {started})")

    def _run_attempts(self, playlist: Playlist, music_track: Optional[str]) -> Optional[SupervisorState]:
        """
        Stream the playlist, retrying transient failures.

        Returns:
            The loop-control state to enter next, or None when a shutdown
            was requested
        """
        max_attempts = self.config.max_retry_attempts
        attempts = 0
        while True:
            self._set_state(SupervisorState.STREAMING)
            attempts += 1
            exit_code, log_text = self._stream_once(playlist, music_track)
            if self._shutdown_event.is_set():
                return None

            classification = classify_exit(exit_code, log_text)
            self._set_state(state_after_exit(classification))
            if classification is ExitClassification.SUCCESS:
                logger.info("FFmpeg process exited with code 0.")
                return state_after_iteration(self.config.enable_loop)

            logger.error(f"FFmpeg process exited with code {exit_code} ({classification.value}).")
            next_state = state_after_failure(
                classification, attempts, max_attempts, self.config.enable_loop
            )
            if next_state is SupervisorState.RETRYING:
                logger.error("Network error detected. Will retry if attempts remain.")
                self._set_state(SupervisorState.RETRYING)
                logger.warning(
                    f"Retry attempt {attempts}/{max_attempts} in {self.config.retry_delay:g} seconds..."
                )
                if self._sleep(self.config.retry_delay):
                    return None
                continue

            if classification is ExitClassification.TRANSIENT:
                logger.error(f"Max retry attempts ({max_attempts}) reached. Giving up.")
            return next_state

    def run(self) -> int:
        """
        Run until the playlist finishes (looping off) or shutdown.

        Returns:
            EXIT_OK, or 128 + signum after a signal-driven shutdown

        Raises:
            FatalError: If the video source is missing or empty
        """
        self.start_time = self._clock()
        try:
            self._recover_session()
            playlist = self._build_video_playlist()
            if self._shutdown_event.is_set():
                return self._finish_shutdown()
            self._set_state(SupervisorState.PLAYLIST_READY)

            while True:
                self.loop_count += 1
                self._log_iteration_header()

                if self.config.enable_shuffle and self.loop_count > 1:
                    playlist = self._build_video_playlist()
                if self.get_state() is SupervisorState.LOOP_RESTART:
                    self._set_state(SupervisorState.PLAYLIST_READY)

                music_track = self._prepare_music()

                total, count = self.duration_cache.get_total_duration(playlist, self.config.video_dir)
                logger.warning(f"Video playlist duration: {format_duration(total)} - {count} files")

                if self._shutdown_event.is_set():
                    return self._finish_shutdown()

                next_state = self._run_attempts(playlist, music_track)
                if next_state is None:
                    return self._finish_shutdown()

                self._set_state(next_state)
                if next_state is SupervisorState.TERMINATED:
                    logger.warning("Looping is disabled. Exiting.")
                    self._save_session()
                    return EXIT_OK

                if self.config.loop_restart_delay > 0:
                    logger.info(
                        f"Looping enabled. Restarting stream in {self.config.loop_restart_delay:g} seconds..."
                    )
                    if self._sleep(self.config.loop_restart_delay):
                        return self._finish_shutdown()
                else:
                    logger.info("Looping enabled. Restarting stream immediately...")
                    if self._shutdown_event.is_set():
                        return self._finish_shutdown()
        except FatalError:
            self._terminate()
            raise
