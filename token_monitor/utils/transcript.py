"""Claude Code transcript line parsing.

Transcripts are newline-delimited JSON. Only ``type == "assistant"`` lines
carry token usage, so a cheap textual pre-check filters lines before paying
for full deserialization.
"""

import json
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import TranscriptParseError
from ..models.session import TokenStats, TranscriptSummary

_ASSISTANT_TYPE_RE = re.compile(r'"type"\s*:\s*"assistant"')


class Usage(BaseModel):
    """Token usage block of an assistant message."""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cache_creation_input_tokens: int = Field(default=0, ge=0)
    cache_read_input_tokens: int = Field(default=0, ge=0)

    model_config = ConfigDict(extra="ignore")


class MessageBody(BaseModel):
    """The ``message`` object of an assistant entry."""

    model: str = ""
    id: Optional[str] = None
    role: Optional[str] = None
    stop_reason: Optional[str] = None
    usage: Usage = Field(default_factory=Usage)

    model_config = ConfigDict(extra="ignore")


class AssistantMessage(BaseModel):
    """An assistant entry in a transcript."""

    type: str
    uuid: Optional[str] = None
    timestamp: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    message: MessageBody = Field(default_factory=MessageBody)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def is_assistant_message(line: str) -> bool:
    """Quickly check whether a line looks like an assistant entry."""
    return bool(_ASSISTANT_TYPE_RE.search(line))


def parse_line(line: str) -> Optional[AssistantMessage]:
    """Parse a transcript line.

    Returns:
        The assistant message, or None for blank lines, other entry types
        and malformed lines that do not look assistant-shaped.

    Raises:
        TranscriptParseError: The line looks like an assistant entry but
            cannot be decoded.
    """
    line = line.strip()
    if not line:
        return None

    looks_assistant = is_assistant_message(line)
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        if looks_assistant:
            raise TranscriptParseError(line, e) from e
        return None

    if not isinstance(record, dict) or record.get("type") != "assistant":
        return None

    try:
        return AssistantMessage.model_validate(record)
    except ValidationError as e:
        raise TranscriptParseError(line, e) from e


def calculate_stats(msg: AssistantMessage) -> TokenStats:
    """Token delta for one assistant message."""
    usage = msg.message.usage
    return TokenStats(
        input=usage.input_tokens,
        output=usage.output_tokens,
        cache_read=usage.cache_read_input_tokens,
        cache_creation=usage.cache_creation_input_tokens,
    )


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO timestamps such as ``2026-02-02T18:14:51.091Z``.

    Values without an offset are taken as UTC, so every result is aware.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _entry_timestamp(line: str) -> Optional[datetime]:
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict):
        return None
    timestamp = record.get("timestamp")
    return parse_timestamp(timestamp) if isinstance(timestamp, str) else None


def summarize_lines(lines: Iterable[str]) -> TranscriptSummary:
    """Accumulate token totals over transcript lines.

    Malformed lines are skipped; one bad line never aborts the pass.
    """
    summary = TranscriptSummary()

    for line in lines:
        line = line.strip()
        if not line:
            continue

        timestamp = _entry_timestamp(line)
        if timestamp is not None:
            if summary.session_start is None or timestamp < summary.session_start:
                summary.session_start = timestamp
            if summary.session_end is None or timestamp > summary.session_end:
                summary.session_end = timestamp

        try:
            msg = parse_line(line)
        except TranscriptParseError:
            continue
        if msg is None:
            continue

        stats = calculate_stats(msg)
        summary.input_tokens += stats.input
        summary.output_tokens += stats.output
        summary.cache_tokens += stats.cache_read
        summary.cache_creation_tokens += stats.cache_creation
        summary.message_count += 1
        if msg.message.model:
            summary.model = msg.message.model

    return summary
