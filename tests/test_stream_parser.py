"""Tests for StreamEventParser: event decoding and two-pass extraction."""
from __future__ import annotations

import json

import pytest

from wallbounce.engine.models import (
    AgentMessage,
    ParseDegradation,
    TokenUsageEvent,
    UnknownEvent,
)
from wallbounce.engine.stream_parser import StreamEventParser


def _legacy_message(text: str) -> str:
    return json.dumps({"id": "0", "msg": {"type": "agent_message", "message": text}})


def _legacy_usage(inp: int, out: int, total: int | None = None) -> str:
    usage = {"input_tokens": inp, "output_tokens": out}
    if total is not None:
        usage["total_tokens"] = total
    return json.dumps(
        {"id": "0", "msg": {"type": "token_count", "info": {"last_token_usage": usage}}}
    )


def _exec_message(text: str) -> str:
    return json.dumps(
        {"type": "item.completed", "item": {"id": "item_1", "type": "agent_message", "text": text}}
    )


def _exec_usage(inp: int, out: int) -> str:
    return json.dumps(
        {"type": "turn.completed", "usage": {"input_tokens": inp, "cached_input_tokens": 0, "output_tokens": out}}
    )


@pytest.fixture
def parser() -> StreamEventParser:
    return StreamEventParser()


# ── Line decoding ──


def test_is_candidate_accepts_both_envelopes(parser: StreamEventParser) -> None:
    assert parser.is_candidate('{"id": "0", "msg": {}}')
    assert parser.is_candidate('  {"type": "thread.started"}')
    assert not parser.is_candidate("[2025-01-01T00:00:00] codex")
    assert not parser.is_candidate('{"msg": {"type": "agent_message"}}')


def test_decode_line_returns_typed_events(parser: StreamEventParser) -> None:
    assert parser.decode_line(_legacy_message("hi")) == AgentMessage(text="hi")
    assert parser.decode_line(_exec_message("yo")) == AgentMessage(text="yo")
    assert parser.decode_line(_legacy_usage(3, 4, 7)) == TokenUsageEvent(3, 4, 7)
    assert parser.decode_line(_exec_usage(3, 4)) == TokenUsageEvent(3, 4, 7)


def test_decode_line_swallows_malformed_records(parser: StreamEventParser) -> None:
    broken = '{"id": "0", "msg": {"type": "agent_message", "message": '
    assert parser.decode_line(broken) == UnknownEvent(raw_line=broken)

    wrong_type = json.dumps({"type": "turn.completed", "usage": {"input_tokens": "ten", "output_tokens": 1}})
    assert isinstance(parser.decode_line(wrong_type), UnknownEvent)

    empty_message = _legacy_message("")
    assert isinstance(parser.decode_line(empty_message), UnknownEvent)


def test_decode_events_skips_blank_lines(parser: StreamEventParser) -> None:
    raw = "\n".join(["banner", "", _exec_message("a"), "   ", _exec_usage(1, 2)])
    events = parser.decode_events(raw)
    assert [type(e) for e in events] == [UnknownEvent, AgentMessage, TokenUsageEvent]


# ── Extraction ──


def test_parse_legacy_stream_is_exact(parser: StreamEventParser) -> None:
    raw = "\n".join([
        "Reading prompt from stdin...",
        _legacy_message("The answer is 42."),
        _legacy_usage(120, 45, 165),
    ])
    parsed = parser.parse(raw, "What is the answer?")
    assert parsed.extracted_text == "The answer is 42."
    assert parsed.token_usage.input == 120
    assert parsed.token_usage.output == 45
    assert parsed.token_usage.total == 165
    assert parsed.token_usage.exact is True
    assert parsed.degradations == []
    assert not parsed.degraded


def test_parse_exec_stream_totals_missing_total(parser: StreamEventParser) -> None:
    raw = "\n".join([
        json.dumps({"type": "thread.started", "thread_id": "t1"}),
        json.dumps({"type": "turn.started"}),
        _exec_message("Use a mutex."),
        _exec_usage(200, 30),
    ])
    parsed = parser.parse(raw, "prompt")
    assert parsed.extracted_text == "Use a mutex."
    assert parsed.token_usage.total == 230
    assert parsed.token_usage.exact is True


def test_first_message_and_last_usage_win(parser: StreamEventParser) -> None:
    raw = "\n".join([
        _exec_message("first"),
        _exec_usage(10, 1),
        _exec_message("second"),
        _exec_usage(50, 9),
    ])
    parsed = parser.parse(raw, "p")
    assert parsed.extracted_text == "first"
    assert (parsed.token_usage.input, parsed.token_usage.output) == (50, 9)


def test_malformed_lines_between_records_are_ignored(parser: StreamEventParser) -> None:
    raw = "\n".join([
        '{"type": "item.completed", "item": ',
        "warning: something odd",
        _exec_message("still found"),
        '{"type": "turn.completed", "usage": nope}',
        _exec_usage(7, 8),
    ])
    parsed = parser.parse(raw, "p")
    assert parsed.extracted_text == "still found"
    assert parsed.token_usage.total == 15
    assert parsed.token_usage.exact is True


def test_delimited_transcript_falls_back_with_estimate(parser: StreamEventParser) -> None:
    raw = (
        "[2025-01-01T00:00:00] OpenAI Codex\n"
        "[2025-01-01T00:00:01] codex\n"
        "Hello there\n"
        "[2025-01-01T00:00:02] tokens used: 42\n"
    )
    parsed = parser.parse(raw, "abcdefgh")
    assert parsed.extracted_text == "Hello there"
    assert parsed.token_usage.exact is False
    assert parsed.token_usage.input == 2
    assert parsed.token_usage.output == 3
    assert parsed.token_usage.total == 5
    assert parsed.degradations == [
        ParseDegradation.TEXT_FROM_DELIMITERS,
        ParseDegradation.USAGE_ESTIMATED,
    ]


def test_header_without_bracketed_footer_uses_line_walk(parser: StreamEventParser) -> None:
    raw = "[ts] codex\nline one\nline two\ntokens used: 9\ntrailing\n"
    parsed = parser.parse(raw, "")
    assert parsed.extracted_text == "line one\nline two"
    assert ParseDegradation.TEXT_FROM_DELIMITERS in parsed.degradations


def test_unstructured_output_returns_trimmed_raw(parser: StreamEventParser) -> None:
    parsed = parser.parse("  just some text \n\n", "p")
    assert parsed.extracted_text == "just some text"
    assert ParseDegradation.TEXT_RAW in parsed.degradations
    assert ParseDegradation.USAGE_ESTIMATED in parsed.degradations


def test_empty_output_has_zero_estimated_usage(parser: StreamEventParser) -> None:
    parsed = parser.parse("  \n", "x" * 40)
    assert parsed.extracted_text == ""
    assert parsed.token_usage.input == 0
    assert parsed.token_usage.output == 0
    assert parsed.token_usage.total == 0
    assert ParseDegradation.USAGE_ESTIMATED in parsed.degradations
    assert parsed.token_usage.exact is False


def test_usage_without_message_keeps_exact_usage(parser: StreamEventParser) -> None:
    parsed = parser.parse("plain answer\n" + _legacy_usage(5, 6, 11), "p")
    assert parsed.token_usage.exact is True
    assert parsed.token_usage.total == 11
    assert ParseDegradation.USAGE_ESTIMATED not in parsed.degradations
    assert ParseDegradation.TEXT_RAW in parsed.degradations
