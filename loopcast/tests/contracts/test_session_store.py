"""
Contract tests for session persistence and the last-played pointer.
"""

import json
import os

import pytest

from loopcast.state.atomic import atomic_write_text
from loopcast.state.last_played import LastPlayedCell, LastPlayedPointer
from loopcast.state.session_store import SessionStore, StreamSession


class TestSessionStore:

    def test_round_trip(self, tmp_path):
        store = SessionStore(str(tmp_path / "state" / "stream_state.json"))
        session = StreamSession(last_played="/videos/a.mp4", loop_count=4, stream_start_time=1700000000.5)

        assert store.save(session) is True
        assert store.load() == session

    def test_file_contents(self, tmp_path):
        path = tmp_path / "stream_state.json"
        SessionStore(str(path)).save(StreamSession(last_played="/videos/a.mp4", loop_count=1))

        data = json.loads(path.read_text())
        assert data["last_played"] == "/videos/a.mp4"
        assert data["loop_count"] == 1
        assert "last_update" in data

    def test_missing_file_gives_default(self, tmp_path):
        assert SessionStore(str(tmp_path / "none.json")).load() == StreamSession()

    def test_corrupt_file_gives_default(self, tmp_path):
        path = tmp_path / "stream_state.json"
        path.write_text("{not json")
        assert SessionStore(str(path)).load() == StreamSession()

    def test_malformed_values_give_default(self, tmp_path):
        path = tmp_path / "stream_state.json"
        path.write_text(json.dumps({"last_played": 7, "loop_count": 2}))
        assert SessionStore(str(path)).load() == StreamSession()

        path.write_text(json.dumps(["a", "b"]))
        assert SessionStore(str(path)).load() == StreamSession()

    def test_unwritable_path_returns_false(self, tmp_path, caplog):
        target = tmp_path / "is_a_dir"
        target.mkdir()
        assert SessionStore(str(target)).save(StreamSession(loop_count=1)) is False
        assert "Failed to save session state" in caplog.text


class TestLastPlayed:

    def test_pointer_round_trip(self, tmp_path):
        pointer = LastPlayedPointer(str(tmp_path / "last_played.txt"))
        assert pointer.read() is None
        assert pointer.write("/videos/Season 1/Episode 01.mkv") is True
        assert pointer.read() == "/videos/Season 1/Episode 01.mkv"

        pointer.clear()
        assert pointer.read() is None
        pointer.clear()

    def test_undecodable_pointer_reads_as_none(self, tmp_path, caplog):
        path = tmp_path / "last_played.txt"
        path.write_bytes(b"\xff\xfe\n")

        assert LastPlayedPointer(str(path)).read() is None
        assert "Ignoring unreadable last played pointer" in caplog.text

    def test_undecodable_session_file_gives_default(self, tmp_path):
        path = tmp_path / "stream_state.json"
        path.write_bytes(b"\xff\xfe{}")
        assert SessionStore(str(path)).load() == StreamSession()

    def test_cell(self):
        cell = LastPlayedCell()
        assert cell.get() is None
        cell.set("/videos/a.mp4")
        assert cell.get() == "/videos/a.mp4"
        assert LastPlayedCell("/x.mp4").get() == "/x.mp4"


class TestAtomicWrite:

    def test_replaces_content_and_leaves_no_temp_file(self, tmp_path):
        path = tmp_path / "nested" / "file.txt"
        atomic_write_text(str(path), "one\n")
        atomic_write_text(str(path), "two\n")

        assert path.read_text() == "two\n"
        assert os.listdir(path.parent) == ["file.txt"]

    def test_failure_removes_temporary_file(self, tmp_path):
        target = tmp_path / "dir_target"
        target.mkdir()
        with pytest.raises(OSError):
            atomic_write_text(str(target), "data")
        assert os.listdir(tmp_path) == ["dir_target"]
