"""Tests for transcript line parsing."""

import json

import pytest

from token_monitor.errors import TranscriptParseError
from token_monitor.utils.transcript import (
    calculate_stats,
    is_assistant_message,
    parse_line,
    parse_timestamp,
    summarize_lines,
)


class TestIsAssistantMessage:
    """Tests for the cheap assistant pre-check."""

    def test_assistant_line(self, assistant_line):
        assert is_assistant_message(assistant_line())

    def test_spacing_around_colon(self):
        assert is_assistant_message('{"type" : "assistant"}')

    def test_user_line(self, user_line):
        assert not is_assistant_message(user_line)

    def test_assistant_word_elsewhere(self):
        """The word alone is not enough; it must be the type value."""
        line = '{"type": "user", "message": {"role": "assistant"}}'
        assert not is_assistant_message(line)

    def test_broken_json_still_matches(self):
        assert is_assistant_message('{"type": "assistant", "message": {')


class TestParseLine:
    """Tests for parse_line."""

    def test_parses_assistant_message(self, assistant_line):
        msg = parse_line(assistant_line(input_tokens=10, output_tokens=5))

        assert msg is not None
        assert msg.type == "assistant"
        assert msg.session_id == "test-session"
        assert msg.message.model == "claude-sonnet-4-5-20250929"
        assert msg.message.usage.input_tokens == 10
        assert msg.message.usage.output_tokens == 5

    def test_non_assistant_returns_none(self, user_line):
        assert parse_line(user_line) is None

    def test_blank_line_returns_none(self):
        assert parse_line("   ") is None

    def test_malformed_assistant_line_raises(self):
        with pytest.raises(TranscriptParseError) as exc_info:
            parse_line('{"type": "assistant", "message": {')
        assert exc_info.value.line.startswith('{"type": "assistant"')

    def test_malformed_other_line_returns_none(self):
        assert parse_line("not json at all") is None

    def test_wrong_usage_type_raises(self):
        line = json.dumps(
            {"type": "assistant", "message": {"usage": {"input_tokens": "many"}}}
        )
        with pytest.raises(TranscriptParseError):
            parse_line(line)

    def test_missing_usage_defaults_to_zero(self):
        msg = parse_line(json.dumps({"type": "assistant", "message": {}}))
        assert msg is not None
        assert msg.message.usage.input_tokens == 0

    def test_json_array_returns_none(self):
        assert parse_line('["type", "assistant"]') is None


class TestCalculateStats:
    """Tests for calculate_stats."""

    def test_total_excludes_cache(self, assistant_line):
        msg = parse_line(
            assistant_line(input_tokens=100, output_tokens=50, cache_read=1000, cache_creation=20)
        )
        stats = calculate_stats(msg)

        assert stats.input == 100
        assert stats.output == 50
        assert stats.cache_read == 1000
        assert stats.cache_creation == 20
        assert stats.total == 150


class TestParseTimestamp:
    def test_zulu_suffix(self):
        ts = parse_timestamp("2026-02-02T18:14:51.091Z")
        assert ts is not None
        assert ts.year == 2026
        assert ts.utcoffset().total_seconds() == 0

    def test_naive_value_is_utc(self):
        ts = parse_timestamp("2026-02-02T18:15:51")
        assert ts is not None
        assert ts.utcoffset().total_seconds() == 0

    def test_invalid(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None


class TestSummarizeLines:
    """Tests for summarize_lines."""

    def test_accumulates_assistant_messages(self, assistant_line, user_line):
        lines = [
            user_line,
            assistant_line(input_tokens=10, output_tokens=5, cache_read=7),
            assistant_line(
                input_tokens=20,
                output_tokens=10,
                model="claude-opus-4-5-20251101",
                timestamp="2026-02-02T18:20:00Z",
            ),
        ]
        summary = summarize_lines(lines)

        assert summary.input_tokens == 30
        assert summary.output_tokens == 15
        assert summary.cache_tokens == 7
        assert summary.total_tokens == 45
        assert summary.message_count == 2
        assert summary.model == "claude-opus-4-5-20251101"

    def test_skips_malformed_lines(self, assistant_line):
        lines = [
            assistant_line(input_tokens=10, output_tokens=5),
            '{"type": "assistant", "broken',
            "garbage",
            "",
        ]
        summary = summarize_lines(lines)

        assert summary.message_count == 1
        assert summary.total_tokens == 15

    def test_tracks_time_span(self, assistant_line, user_line):
        lines = [
            assistant_line(timestamp="2026-02-02T18:00:00Z"),
            assistant_line(timestamp="2026-02-02T18:10:00Z"),
        ]
        summary = summarize_lines(lines)

        assert summary.duration_seconds == 600

    def test_mixed_timestamp_formats(self, assistant_line):
        lines = [
            assistant_line(timestamp="2026-02-02T18:14:51.091Z"),
            assistant_line(timestamp="2026-02-02T18:15:51"),
        ]
        summary = summarize_lines(lines)

        assert summary.message_count == 2
        assert summary.duration_seconds == pytest.approx(59.909)

    def test_empty(self):
        summary = summarize_lines([])
        assert summary.total_tokens == 0
        assert summary.model is None
        assert summary.duration_seconds is None
