"""
Contract tests for background music track preparation.
"""

import logging
import subprocess
from unittest.mock import Mock

from loopcast.media.music_track import AudioTrackPreparer
from loopcast.playlist.builder import PlaylistBuilder
from loopcast.playlist.duration_cache import DurationCache
from loopcast.tests.contracts.test_doubles import FakeProber, completed


def _preparer(config, runner):
    prober = FakeProber(default_duration=180.0)
    builder = PlaylistBuilder(prober)
    return AudioTrackPreparer(config, builder, DurationCache(config.duration_cache_file, prober), runner=runner)


def _music_dir(tmp_path, *names):
    root = tmp_path / "music"
    root.mkdir()
    for name in names:
        (root / name).write_bytes(b"m")
    return root


class TestPrepare:

    def test_concatenates_playlist_into_track(self, make_config, tmp_path, caplog):
        _music_dir(tmp_path, "b.mp3", "a.FLAC", "cover.jpg")
        config = make_config(enable_music=True)
        runner = Mock(side_effect=lambda cmd, **kw: completed(cmd))

        with caplog.at_level(logging.INFO):
            track = _preparer(config, runner).prepare()

        assert track == config.music_track_file
        cmd = runner.call_args[0][0]
        assert cmd[cmd.index("-i") + 1] == config.music_list
        assert cmd[-1] == config.music_track_file
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert runner.call_args[1]["timeout"] == 600

        with open(config.music_list) as f:
            lines = f.read().splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("a.FLAC'")
        assert "Music playlist duration: 0h:06m:00s - 2 files" in caplog.text

    def test_missing_directory_disables_music(self, make_config, caplog):
        runner = Mock()
        with caplog.at_level(logging.WARNING):
            assert _preparer(make_config(enable_music=True), runner).prepare() is None
        assert "disabling music" in caplog.text
        runner.assert_not_called()

    def test_empty_directory_disables_music_and_cleans_up(self, make_config, tmp_path, caplog):
        _music_dir(tmp_path, "readme.txt")
        config = make_config(enable_music=True)
        (tmp_path / "data").mkdir(exist_ok=True)
        with open(config.music_track_file, "wb") as f:
            f.write(b"old track")
        runner = Mock()

        with caplog.at_level(logging.WARNING):
            assert _preparer(config, runner).prepare() is None

        assert f"Found no music files under {config.music_dir} - disabling music." in caplog.text
        runner.assert_not_called()
        assert not (tmp_path / "data" / "music.m4a").exists()
        assert not (tmp_path / "data" / "music_list.txt").exists()

    def test_failed_concatenation_disables_music(self, make_config, tmp_path, caplog):
        _music_dir(tmp_path, "a.mp3")
        config = make_config(enable_music=True)
        runner = Mock(side_effect=lambda cmd, **kw: completed(cmd, returncode=1, stderr="x\nInvalid data found"))

        with caplog.at_level(logging.ERROR):
            assert _preparer(config, runner).prepare() is None

        assert "Failed to concatenate music files: Invalid data found." in caplog.text
        assert "Disabling music for this session." in caplog.text

    def test_concatenation_timeout_disables_music(self, make_config, tmp_path):
        _music_dir(tmp_path, "a.mp3")
        runner = Mock(side_effect=subprocess.TimeoutExpired(cmd="ffmpeg", timeout=600))
        assert _preparer(make_config(enable_music=True), runner).prepare() is None
