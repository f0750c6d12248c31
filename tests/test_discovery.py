"""Tests for session discovery."""

from datetime import datetime, timedelta

import pytest

from token_monitor.errors import DiscoveryError, NoSessionsFoundError
from token_monitor.services.discovery import SessionLocator
from token_monitor.utils.file_system import MemoryFileSystem

ROOT = "/home/user/.claude/projects"
BASE = 1_770_000_000.0


@pytest.fixture
def fs():
    fs = MemoryFileSystem()
    fs.write_file(f"{ROOT}/proj-a/old.jsonl", b"{}\n", mtime=BASE)
    fs.write_file(f"{ROOT}/proj-a/newest.jsonl", b"{}\n", mtime=BASE + 300)
    fs.write_file(f"{ROOT}/proj-b/middle.jsonl", b"{}\n", mtime=BASE + 200)
    return fs


def ids(sessions):
    return [s.session_id for s in sessions]


class TestDiscover:
    """Tests for SessionLocator.discover."""

    def test_sorted_newest_first(self, fs):
        result = SessionLocator(fs).discover(ROOT)

        assert ids(result.sessions) == ["newest", "middle", "old"]
        assert result.active_id == "newest"
        assert result.error_count == 0

    def test_session_fields(self, fs):
        session = SessionLocator(fs).discover(ROOT).sessions[1]

        assert session.project == "proj-b"
        assert str(session.file_path) == f"{ROOT}/proj-b/middle.jsonl"
        assert session.file_name == "middle.jsonl"
        assert session.size == 3
        assert session.last_modified == datetime.fromtimestamp(BASE + 200)

    def test_skips_agent_empty_and_other_files(self, fs):
        fs.write_file(f"{ROOT}/proj-a/agent-1234.jsonl", b"{}\n", mtime=BASE + 900)
        fs.write_file(f"{ROOT}/proj-a/empty.jsonl", b"", mtime=BASE + 900)
        fs.write_file(f"{ROOT}/proj-a/notes.txt", b"hello", mtime=BASE + 900)
        fs.write_file(f"{ROOT}/stray.jsonl", b"{}\n", mtime=BASE + 900)

        result = SessionLocator(fs).discover(ROOT)

        assert ids(result.sessions) == ["newest", "middle", "old"]

    def test_nested_transcripts_found(self, fs):
        fs.write_file(f"{ROOT}/proj-b/sub/dir/deep.jsonl", b"{}\n", mtime=BASE + 50)

        result = SessionLocator(fs).discover(ROOT)

        assert "deep" in ids(result.sessions)
        deep = next(s for s in result.sessions if s.session_id == "deep")
        assert deep.project == "proj-b"

    def test_same_name_in_two_projects(self, fs):
        fs.write_file(f"{ROOT}/proj-b/old.jsonl", b"{}\n", mtime=BASE + 10)

        result = SessionLocator(fs).discover(ROOT)

        assert ids(result.sessions).count("old") == 2
        assert {s.project for s in result.sessions if s.session_id == "old"} == {
            "proj-a",
            "proj-b",
        }

    def test_max_results(self, fs):
        result = SessionLocator(fs).discover(ROOT, max_results=2)

        assert ids(result.sessions) == ["newest", "middle"]
        assert result.active_id == "newest"

    def test_non_positive_max_results_means_unlimited(self, fs):
        assert len(SessionLocator(fs).discover(ROOT, max_results=0).sessions) == 3

    def test_active_within(self, fs, fake_clock):
        clock = fake_clock(datetime.fromtimestamp(BASE + 400))
        locator = SessionLocator(fs, clock=clock)

        result = locator.discover(ROOT, active_within=timedelta(seconds=250))

        assert ids(result.sessions) == ["newest", "middle"]

    def test_nothing_recent(self, fs, fake_clock):
        clock = fake_clock(datetime.fromtimestamp(BASE + 10_000))
        result = SessionLocator(fs, clock=clock).discover(
            ROOT, active_within=timedelta(minutes=5)
        )

        assert result.sessions == []
        assert result.active_id is None

    def test_missing_root(self):
        with pytest.raises(DiscoveryError):
            SessionLocator(MemoryFileSystem()).discover("/nowhere")

    def test_empty_root(self):
        fs = MemoryFileSystem()
        fs.mkdir_all(ROOT)

        result = SessionLocator(fs).discover(ROOT)

        assert result.sessions == []
        assert result.active_id is None

    def test_custom_extension(self, fs):
        fs.write_file(f"{ROOT}/proj-a/other.log", b"x", mtime=BASE)

        result = SessionLocator(fs, extension=".log").discover(ROOT)

        assert ids(result.sessions) == ["other"]

    def test_real_directory(self, tmp_path):
        project = tmp_path / "my-project"
        project.mkdir()
        (project / "abc.jsonl").write_text('{"type": "user"}\n')
        (project / "agent-xyz.jsonl").write_text('{"type": "user"}\n')

        result = SessionLocator().discover(str(tmp_path))

        assert ids(result.sessions) == ["abc"]
        assert result.sessions[0].project == "my-project"


class TestFindActive:
    """Tests for SessionLocator.find_active."""

    def test_returns_newest(self, fs):
        assert SessionLocator(fs).find_active(ROOT).session_id == "newest"

    def test_no_sessions(self):
        fs = MemoryFileSystem()
        fs.mkdir_all(ROOT)

        with pytest.raises(NoSessionsFoundError):
            SessionLocator(fs).find_active(ROOT)

    def test_missing_root(self):
        with pytest.raises(NoSessionsFoundError):
            SessionLocator(MemoryFileSystem()).find_active("/nowhere")


class TestNewSessions:
    def test_only_unknown_ids(self, fs):
        locator = SessionLocator(fs)
        fs.write_file(f"{ROOT}/proj-b/fresh.jsonl", b"{}\n", mtime=BASE + 500)

        found = locator.new_sessions(ROOT, {"newest", "middle", "old"})

        assert ids(found) == ["fresh"]

    def test_nothing_new(self, fs):
        locator = SessionLocator(fs)
        assert locator.new_sessions(ROOT, ["newest", "middle", "old"]) == []
