"""Tolerant decoder for Codex CLI output.

Codex writes newline-delimited JSON records interleaved with plain
text (banners, progress lines, stray stderr merged by wrappers). Each
line is decoded independently into a typed event; a line that fails to
decode becomes UnknownEvent and never aborts the pass.

Two record shapes are recognised:

  legacy envelope
    {"id": "0", "msg": {"type": "agent_message", "message": "..."}}
    {"id": "0", "msg": {"type": "token_count", "info": {"last_token_usage":
        {"input_tokens": 120, "output_tokens": 45, "total_tokens": 165}}}}

  exec --json
    {"type": "item.completed", "item": {"type": "agent_message", "text": "..."}}
    {"type": "turn.completed", "usage": {"input_tokens": 120, "output_tokens": 45}}

Extraction runs two passes over the event list: forward for the first
agent message (the canonical response), backward for the last usage
record (counts are cumulative, so the tail is final).
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any

from .models import (
    AgentMessage,
    ParseDegradation,
    ParsedOutput,
    StreamEvent,
    TokenUsage,
    TokenUsageEvent,
    UnknownEvent,
)
from .token_estimate import estimate_tokens_generic

logger = logging.getLogger(__name__)

RECORD_START_RE = re.compile(r'^\s*\{\s*"(?:id|type)"\s*:')

# Plain-text transcript: "[ts] codex\n<answer>\n[ts] tokens used: N"
_CODEX_BLOCK_RE = re.compile(r"\[.*?\] codex\n([\s\S]*?)\[.*?\] tokens used:")
_CODEX_HEADER_MARKER = "] codex"
_TEXT_STOP_MARKERS = ("tokens used:", "Reading prompt from stdin")


def _as_count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def _usage_from_mapping(usage: Any) -> TokenUsageEvent | None:
    if not isinstance(usage, dict):
        return None
    input_tokens = _as_count(usage.get("input_tokens"))
    output_tokens = _as_count(usage.get("output_tokens"))
    if input_tokens is None or output_tokens is None:
        return None
    total = _as_count(usage.get("total_tokens"))
    if total is None:
        total = input_tokens + output_tokens
    return TokenUsageEvent(input=input_tokens, output=output_tokens, total=total)


class StreamEventParser:
    """Decode raw CLI output into events and extract text + usage."""

    def is_candidate(self, line: str) -> bool:
        """True when the line starts like a structured record."""
        return bool(RECORD_START_RE.match(line))

    def decode_line(self, line: str) -> StreamEvent:
        """Decode one line. Anything not well-formed is UnknownEvent."""
        if not self.is_candidate(line):
            return UnknownEvent(raw_line=line)
        try:
            record = json.loads(line)
        except (json.JSONDecodeError, ValueError):
            logger.debug("Skipping undecodable record line: %.80s", line)
            return UnknownEvent(raw_line=line)
        if not isinstance(record, dict):
            return UnknownEvent(raw_line=line)

        event = self._decode_legacy(record) or self._decode_exec(record)
        return event or UnknownEvent(raw_line=line)

    @staticmethod
    def _decode_legacy(record: dict) -> StreamEvent | None:
        msg = record.get("msg")
        if "id" not in record or not isinstance(msg, dict):
            return None
        msg_type = msg.get("type")
        if msg_type == "agent_message":
            message = msg.get("message")
            if isinstance(message, str) and message:
                return AgentMessage(text=message)
        elif msg_type == "token_count":
            info = msg.get("info")
            if isinstance(info, dict):
                return _usage_from_mapping(info.get("last_token_usage"))
        return None

    @staticmethod
    def _decode_exec(record: dict) -> StreamEvent | None:
        etype = record.get("type")
        if etype == "item.completed":
            item = record.get("item")
            if isinstance(item, dict) and item.get("type") == "agent_message":
                text = item.get("text")
                if isinstance(text, str) and text:
                    return AgentMessage(text=text)
        elif etype == "turn.completed":
            return _usage_from_mapping(record.get("usage"))
        return None

    def decode_events(self, raw_output: str) -> list[StreamEvent]:
        """Decode every non-blank line of *raw_output*, in order."""
        return [
            self.decode_line(line)
            for line in raw_output.splitlines()
            if line.strip()
        ]

    def parse(self, raw_output: str, original_input: str) -> ParsedOutput:
        """Extract the response text and token usage from raw output."""
        events = self.decode_events(raw_output)
        degradations: list[ParseDegradation] = []

        message = next(
            (e for e in events if isinstance(e, AgentMessage)), None
        )
        if message is not None:
            text = message.text
        else:
            text = self._text_from_delimiters(raw_output)
            if text:
                degradations.append(ParseDegradation.TEXT_FROM_DELIMITERS)
            else:
                text = raw_output.strip()
                degradations.append(ParseDegradation.TEXT_RAW)

        usage_event = next(
            (e for e in reversed(events) if isinstance(e, TokenUsageEvent)),
            None,
        )
        if usage_event is not None:
            usage = TokenUsage(
                input=usage_event.input,
                output=usage_event.output,
                total=usage_event.total,
                exact=True,
            )
            logger.info(
                "Token count extracted from output: input=%d output=%d total=%d",
                usage.input, usage.output, usage.total,
            )
        elif not raw_output.strip():
            # empty output counts as zero usage
            usage = TokenUsage(exact=False)
            degradations.append(ParseDegradation.USAGE_ESTIMATED)
            logger.warning("Empty output, token usage recorded as zero")
        else:
            input_tokens = estimate_tokens_generic(original_input)
            output_tokens = estimate_tokens_generic(text)
            usage = TokenUsage(
                input=input_tokens,
                output=output_tokens,
                total=input_tokens + output_tokens,
                exact=False,
            )
            degradations.append(ParseDegradation.USAGE_ESTIMATED)
            logger.warning(
                "Token count fallback to estimation: input=%d output=%d",
                input_tokens, output_tokens,
            )

        if ParseDegradation.TEXT_RAW in degradations and raw_output.strip():
            logger.warning("No structured response found, returning raw output")
        return ParsedOutput(
            extracted_text=text,
            token_usage=usage,
            degradations=degradations,
        )

    @staticmethod
    def _text_from_delimiters(raw_output: str) -> str:
        """Recover the answer from a plain-text Codex transcript."""
        match = _CODEX_BLOCK_RE.search(raw_output)
        if match and match.group(1).strip():
            return match.group(1).strip()

        started = False
        collected: list[str] = []
        for line in raw_output.splitlines():
            if not started:
                if _CODEX_HEADER_MARKER in line:
                    started = True
                continue
            if any(marker in line for marker in _TEXT_STOP_MARKERS):
                break
            collected.append(line)
        return "\n".join(collected).strip()
