"""
Contract tests for ProgressMonitor.

Snapshots are scripted; no `progress` tool or encoder process is needed.
"""

import logging
from unittest.mock import Mock, patch

import psutil

from loopcast.monitor.progress_monitor import ProgressMonitor, encoder_running, take_progress_snapshot
from loopcast.monitor.progress_parser import NO_MATCH
from loopcast.playlist.manifest import Playlist, PlaylistEntry
from loopcast.state.last_played import LastPlayedCell, LastPlayedPointer
from loopcast.tests.contracts.test_doubles import completed

EXTS = ("mp4", "mkv")

PLAYLIST = Playlist(
    "/data/video_list.txt",
    (
        PlaylistEntry("/videos/a.mp4", 3725.0),
        PlaylistEntry("/videos/b.mkv", None),
        PlaylistEntry("/videos/c.mp4", 60.0),
    ),
)


class ScriptedSnapshots:
    """Returns each scripted snapshot once, then empty output."""

    def __init__(self, *snapshots):
        self.snapshots = list(snapshots)

    def __call__(self, pid):
        return self.snapshots.pop(0) if self.snapshots else ""


def _monitor(tmp_path, *snapshots, **kwargs):
    kwargs.setdefault("startup_grace", 0)
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("idle_interval", 0.01)
    return ProgressMonitor(
        4242,
        PLAYLIST,
        EXTS,
        LastPlayedCell(),
        LastPlayedPointer(str(tmp_path / "last_played.txt")),
        2,
        snapshot=ScriptedSnapshots(*snapshots),
        **kwargs,
    )


class TestPollOnce:

    def test_announces_playlist_position_and_duration(self, tmp_path, caplog):
        monitor = _monitor(tmp_path, "[4242] ffmpeg /videos/a.mp4\n 12.5% (1 MiB / 8 MiB)")

        with caplog.at_level(logging.INFO):
            monitor.poll_once()

        assert "▶ [2|1/3] a.mp4 (12.5%) ⏱ 1h:02m:05s" in caplog.text
        assert monitor.last_played.get() == "/videos/a.mp4"
        assert monitor.pointer.read() == "/videos/a.mp4"

    def test_unknown_duration_is_omitted(self, tmp_path, caplog):
        monitor = _monitor(tmp_path, "[4242] ffmpeg /videos/b.mkv\n 1.0%")
        with caplog.at_level(logging.INFO):
            monitor.poll_once()
        assert "▶ [2|2/3] b.mkv (1.0%)" in caplog.text
        assert "⏱" not in caplog.text

    def test_file_outside_playlist(self, tmp_path, caplog):
        monitor = _monitor(tmp_path, "[4242] ffmpeg /elsewhere/x.mp4\n 7.0%")
        with caplog.at_level(logging.INFO):
            monitor.poll_once()
        assert "▶ [2] x.mp4 (7.0%)" in caplog.text

    def test_same_file_is_announced_once(self, tmp_path, caplog):
        monitor = _monitor(
            tmp_path,
            "[4242] ffmpeg /videos/a.mp4\n 1.0%",
            "[4242] ffmpeg /videos/a.mp4\n 2.0%",
            "[4242] ffmpeg /videos/b.mkv\n 0.1%",
        )
        with caplog.at_level(logging.INFO):
            for _ in range(3):
                monitor.poll_once()

        announcements = [r.getMessage() for r in caplog.records if r.getMessage().startswith("▶")]
        assert len(announcements) == 2
        assert monitor.last_played.get() == "/videos/b.mkv"

    def test_progress_updates_use_progress_logger(self, tmp_path):
        monitor = _monitor(
            tmp_path,
            "[4242] ffmpeg /videos/a.mp4\n 1.0%",
            "[4242] ffmpeg /videos/a.mp4\n 2.0%",
            "[4242] ffmpeg /videos/b.mkv\n 0.1%",
            progress_updates=True,
        )
        with patch("loopcast.monitor.progress_monitor.progress_logger") as progress_logger:
            for _ in range(3):
                monitor.poll_once()

        messages = [c.args[0] for c in progress_logger.info.call_args_list]
        assert messages == ["Progress: a.mp4 (2.0%)", ""]

    def test_no_progress_updates_by_default(self, tmp_path):
        monitor = _monitor(tmp_path, "[4242] ffmpeg /videos/a.mp4\n 1.0%", "[4242] ffmpeg /videos/a.mp4\n 2.0%")
        with patch("loopcast.monitor.progress_monitor.progress_logger") as progress_logger:
            monitor.poll_once()
            monitor.poll_once()
        progress_logger.info.assert_not_called()

    def test_empty_and_garbage_snapshots(self, tmp_path):
        monitor = _monitor(tmp_path, "", "garbage only")
        assert monitor.poll_once() is None
        assert monitor.poll_once() is NO_MATCH
        assert monitor.last_played.get() is None

    def test_music_track_is_not_announced(self, tmp_path):
        monitor = _monitor(
            tmp_path,
            "[4242] ffmpeg /data/music.mp4\n 50.0%",
            exclude_path="/data/music.mp4",
        )
        monitor.poll_once()
        assert monitor.last_played.get() is None


class TestLifecycle:

    def test_stops_when_encoder_exits(self, tmp_path):
        running = Mock(side_effect=[True, True, False])
        monitor = _monitor(
            tmp_path,
            "[4242] ffmpeg /videos/c.mp4\n 99.0%",
            is_running=running,
        )
        monitor.start()

        assert monitor.join(timeout=5)
        assert not monitor.is_alive()
        assert monitor.last_played.get() == "/videos/c.mp4"
        assert monitor.pointer.read() == "/videos/c.mp4"

    def test_stop_ends_the_thread(self, tmp_path):
        monitor = _monitor(tmp_path, is_running=lambda pid: True)
        monitor.start()
        monitor.stop()
        assert monitor.join(timeout=5)

    def test_poll_errors_do_not_kill_the_monitor(self, tmp_path, caplog):
        snapshot = Mock(side_effect=[RuntimeError("boom"), "[4242] ffmpeg /videos/a.mp4\n 1.0%", ""])
        running = Mock(side_effect=[True, True, False])
        monitor = ProgressMonitor(
            4242, PLAYLIST, EXTS, LastPlayedCell(), LastPlayedPointer(str(tmp_path / "lp.txt")), 1,
            snapshot=snapshot, is_running=running,
            startup_grace=0, poll_interval=0.01, idle_interval=0.01,
        )
        with caplog.at_level(logging.WARNING):
            monitor.start()
            assert monitor.join(timeout=5)

        assert "Progress monitor poll failed: boom" in caplog.text
        assert monitor.last_played.get() == "/videos/a.mp4"

    def test_join_before_start(self, tmp_path):
        assert _monitor(tmp_path).join(timeout=0)


class TestHelpers:

    def test_snapshot_runs_progress_for_pid(self):
        runner = Mock(return_value=completed(["progress"], stdout="[1] ffmpeg /v/a.mp4"))
        assert take_progress_snapshot(1234, runner=runner) == "[1] ffmpeg /v/a.mp4"
        assert runner.call_args[0][0] == ["progress", "-q", "-p", "1234"]

    def test_snapshot_failure_is_empty(self):
        runner = Mock(side_effect=FileNotFoundError("progress"))
        assert take_progress_snapshot(1234, runner=runner) == ""

    def test_encoder_running_missing_process(self):
        with patch("loopcast.monitor.progress_monitor.psutil.Process", side_effect=psutil.NoSuchProcess(1)):
            assert encoder_running(1) is False

    def test_encoder_running_zombie(self):
        proc = Mock()
        proc.is_running.return_value = True
        proc.status.return_value = psutil.STATUS_ZOMBIE
        with patch("loopcast.monitor.progress_monitor.psutil.Process", return_value=proc):
            assert encoder_running(1) is False

    def test_encoder_running_live(self):
        proc = Mock()
        proc.is_running.return_value = True
        proc.status.return_value = psutil.STATUS_SLEEPING
        with patch("loopcast.monitor.progress_monitor.psutil.Process", return_value=proc):
            assert encoder_running(1) is True
