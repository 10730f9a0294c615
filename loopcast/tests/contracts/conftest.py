"""
Shared pytest fixtures for loopcast contract tests.
"""
import logging

import pytest

from loopcast.config import StreamerConfig
from loopcast.encoder.stream_supervisor import StreamSupervisor
from loopcast.media.music_track import AudioTrackPreparer
from loopcast.playlist.builder import PlaylistBuilder
from loopcast.playlist.duration_cache import DurationCache
from loopcast.reporting import PROGRESS_LOGGER_NAME
from loopcast.state.last_played import LastPlayedPointer
from loopcast.state.session_store import SessionStore
from loopcast.tests.contracts.test_doubles import FakeProber, RecordingWait, ScriptedPopen, completed


@pytest.fixture
def make_config(tmp_path):
    """Factory for StreamerConfig rooted in tmp_path."""
    def _make(**overrides):
        data = tmp_path / "data"
        values = dict(
            stream_key="live_test_key",
            log_dir=str(data),
            script_log_file=str(data / "stream.log"),
            ffmpeg_log_file=str(data / "ffmpeg.log"),
            video_dir=str(tmp_path / "videos"),
            video_playlist=str(data / "video_list.txt"),
            music_dir=str(tmp_path / "music"),
            music_list=str(data / "music_list.txt"),
            music_track_file=str(data / "music.m4a"),
            retry_delay=0.0,
        )
        values.update(overrides)
        return StreamerConfig(**values)
    return _make


@pytest.fixture
def video_dir(tmp_path):
    """Three videos (mixed case, one nested) plus a file that must be ignored."""
    root = tmp_path / "videos"
    (root / "sub").mkdir(parents=True)
    (root / "a.mp4").write_bytes(b"a")
    (root / "b.mkv").write_bytes(b"b")
    (root / "sub" / "c.MOV").write_bytes(b"c")
    (root / "notes.txt").write_text("not a video")
    return root


@pytest.fixture
def make_supervisor():
    """Factory wiring a StreamSupervisor with fakes for every external process."""
    def _make(config, popen=None, prober=None, wait=None, monitor_factory=None,
              music_runner=None, on_state_change=None):
        prober = prober or FakeProber(default_duration=60.0)
        builder = PlaylistBuilder(prober)
        cache = DurationCache(config.duration_cache_file, prober)
        music_runner = music_runner or (lambda cmd, **kwargs: completed(cmd))
        supervisor = StreamSupervisor(
            config,
            builder=builder,
            prober=prober,
            duration_cache=cache,
            music_preparer=AudioTrackPreparer(config, builder, cache, runner=music_runner),
            session_store=SessionStore(config.state_file),
            pointer=LastPlayedPointer(config.last_played_file),
            popen=popen or ScriptedPopen([0]),
            monitor_factory=monitor_factory or (lambda pid, playlist, loop_count, exclude: None),
            on_state_change=on_state_change,
            hwaccel=False,
            wait=wait or RecordingWait(),
        )
        return supervisor
    return _make


@pytest.fixture
def restore_logging():
    """Undo setup_logging() side effects on the root and progress loggers."""
    root = logging.getLogger()
    progress = logging.getLogger(PROGRESS_LOGGER_NAME)
    saved = (list(root.handlers), root.level, list(progress.handlers), progress.propagate, progress.level)
    yield
    for handler in root.handlers:
        if handler not in saved[0]:
            handler.close()
    root.handlers[:] = saved[0]
    root.setLevel(saved[1])
    progress.handlers[:] = saved[2]
    progress.propagate = saved[3]
    progress.setLevel(saved[4])
