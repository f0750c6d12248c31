"""Tests for the transcript parse cache."""

import os
import threading

import pytest

from token_monitor.services.transcript_cache import TranscriptCache
from token_monitor.utils.file_system import MemoryFileSystem


class CountingFileSystem(MemoryFileSystem):
    """MemoryFileSystem that counts content reads."""

    def __init__(self):
        super().__init__()
        self.opens = 0

    def open(self, path):
        self.opens += 1
        return super().open(path)


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


class TestTranscriptCache:
    """Tests for TranscriptCache."""

    def test_parses_summary(self, assistant_line, clock):
        fs = CountingFileSystem()
        fs.write_file("/p/s.jsonl", (assistant_line(60, 40) + "\n").encode(), mtime=1.0)
        cache = TranscriptCache(fs, clock=clock)

        summary = cache.parse("/p/s.jsonl")

        assert summary.total_tokens == 100
        assert summary.message_count == 1

    def test_valid_entry_does_not_read_file(self, assistant_line, clock):
        fs = CountingFileSystem()
        fs.write_file("/p/s.jsonl", (assistant_line(60, 40) + "\n").encode(), mtime=1.0)
        cache = TranscriptCache(fs, clock=clock)

        cache.parse("/p/s.jsonl")
        clock.now += 1
        summary = cache.parse("/p/s.jsonl")

        assert fs.opens == 1
        assert summary.total_tokens == 100

    def test_modification_invalidates(self, assistant_line, clock):
        fs = CountingFileSystem()
        fs.write_file("/p/s.jsonl", (assistant_line(60, 40) + "\n").encode(), mtime=1.0)
        cache = TranscriptCache(fs, clock=clock)
        assert cache.parse("/p/s.jsonl").total_tokens == 100

        fs.append_file("/p/s.jsonl", (assistant_line(60, 40) + "\n").encode(), mtime=2.0)

        assert cache.parse("/p/s.jsonl").total_tokens == 200
        assert fs.opens == 2

    def test_ttl_expiry_rereads(self, assistant_line, clock):
        fs = CountingFileSystem()
        fs.write_file("/p/s.jsonl", (assistant_line() + "\n").encode(), mtime=1.0)
        cache = TranscriptCache(fs, ttl_seconds=5.0, clock=clock)

        cache.parse("/p/s.jsonl")
        clock.now += 4.9
        cache.parse("/p/s.jsonl")
        assert fs.opens == 1

        clock.now += 0.2
        cache.parse("/p/s.jsonl")
        assert fs.opens == 2

    def test_missing_file_returns_zero_summary(self, clock):
        cache = TranscriptCache(MemoryFileSystem(), clock=clock)

        summary = cache.parse("/p/missing.jsonl")

        assert summary.total_tokens == 0
        assert summary.message_count == 0
        assert len(cache) == 0

    def test_only_last_lines_counted(self, assistant_line, clock):
        fs = MemoryFileSystem()
        content = "".join(assistant_line(1, 0) + "\n" for _ in range(10))
        fs.write_file("/p/s.jsonl", content.encode(), mtime=1.0)
        cache = TranscriptCache(fs, clock=clock)

        assert cache.parse("/p/s.jsonl", max_lines=3).input_tokens == 3

    def test_tail_window_drops_cut_line(self, assistant_line, clock):
        fs = MemoryFileSystem()
        line = assistant_line(1, 0)
        content = "".join(line + "\n" for _ in range(50))
        fs.write_file("/p/s.jsonl", content.encode(), mtime=1.0)
        # Window holds three whole lines plus part of a fourth
        cache = TranscriptCache(fs, tail_bytes=3 * (len(line) + 1) + 10, clock=clock)

        summary = cache.parse("/p/s.jsonl", max_lines=100)

        assert summary.message_count == 3

    def test_malformed_lines_skipped(self, assistant_line, clock):
        fs = MemoryFileSystem()
        content = f"{assistant_line(5, 5)}\nnot json\n{{\"type\": \"assistant\", \n"
        fs.write_file("/p/s.jsonl", content.encode(), mtime=1.0)
        cache = TranscriptCache(fs, clock=clock)

        assert cache.parse("/p/s.jsonl").total_tokens == 10

    def test_clear(self, assistant_line, clock):
        fs = CountingFileSystem()
        fs.write_file("/p/s.jsonl", (assistant_line() + "\n").encode(), mtime=1.0)
        cache = TranscriptCache(fs, clock=clock)
        cache.parse("/p/s.jsonl")

        cache.clear()
        assert len(cache) == 0
        cache.parse("/p/s.jsonl")
        assert fs.opens == 2

    def test_entry_records_mtime(self, assistant_line, clock):
        fs = MemoryFileSystem()
        fs.write_file("/p/s.jsonl", (assistant_line() + "\n").encode(), mtime=7.0)
        cache = TranscriptCache(fs, clock=clock)
        cache.parse("/p/s.jsonl")

        entry = cache.get_entry("/p/s.jsonl")
        assert entry.mtime_ns == 7_000_000_000
        assert entry.written_at == clock.now

    def test_real_files(self, tmp_path, assistant_line):
        """Cache coherency against the real file system."""
        transcript = tmp_path / "s.jsonl"
        transcript.write_text(assistant_line(60, 40) + "\n")
        os.utime(transcript, (1_000_000, 1_000_000))
        cache = TranscriptCache()
        assert cache.parse(str(transcript)).total_tokens == 100

        with open(transcript, "a") as f:
            f.write(assistant_line(60, 40) + "\n")
        os.utime(transcript, (2_000_000, 2_000_000))

        assert cache.parse(str(transcript)).total_tokens == 200

    def test_returned_summary_is_a_copy(self, assistant_line, clock):
        fs = MemoryFileSystem()
        fs.write_file("/p/s.jsonl", (assistant_line(60, 40) + "\n").encode(), mtime=1.0)
        cache = TranscriptCache(fs, clock=clock)

        first = cache.parse("/p/s.jsonl")
        first.input_tokens = 0

        assert cache.parse("/p/s.jsonl").input_tokens == 60

    def test_mixed_timestamp_formats(self, tmp_path, assistant_line):
        transcript = tmp_path / "s.jsonl"
        transcript.write_text(
            assistant_line(timestamp="2026-02-02T18:14:51.091Z")
            + "\n"
            + assistant_line(timestamp="2026-02-02T18:15:51")
            + "\n"
        )

        summary = TranscriptCache().parse(str(transcript))

        assert summary.message_count == 2
        assert summary.session_start < summary.session_end


class TestConcurrentParse:
    """Racing callers on an unchanged file."""

    def test_concurrent_callers_agree(self, tmp_path, assistant_line):
        transcript = tmp_path / "s.jsonl"
        transcript.write_text(
            "".join(assistant_line(60, 40) + "\n" for _ in range(50))
        )
        cache = TranscriptCache(ttl_seconds=60)
        results = []
        results_lock = threading.Lock()
        start = threading.Barrier(8)

        def worker():
            start.wait()
            for _ in range(25):
                summary = cache.parse(str(transcript))
                with results_lock:
                    results.append(summary)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 200
        assert all(s == results[0] for s in results)
        assert results[0].total_tokens == 5000
        assert results[0].message_count == 50
        assert len(cache) == 1
        entry = cache.get_entry(str(transcript))
        assert entry.summary == results[0]
        assert entry.mtime_ns == os.stat(transcript).st_mtime_ns
