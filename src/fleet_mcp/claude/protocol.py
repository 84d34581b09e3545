"""Decoder for the Claude CLI ``stream-json`` output protocol.

The CLI writes one JSON object per line. Three kinds matter to the engine:

* ``assistant`` messages whose content blocks are ``text`` or ``tool_use``;
* the terminal ``result`` event carrying the authoritative output, session id,
  cost, duration, error flag and permission denials.

Everything else (system events, user echoes, malformed lines) is ignored so
newer CLI versions can add event kinds without breaking the decoder.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import ValidationError

from .models import ASK_USER_QUESTION, ClaudeResult, PermissionDenial, parse_questions

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AssistantText:
    text: str


@dataclass(slots=True)
class ToolUse:
    tool_use_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ResultEvent:
    result: ClaudeResult
    has_output: bool


StreamEvent = Union[AssistantText, ToolUse, ResultEvent]


def decode_event(payload: Any) -> list[StreamEvent]:
    """Translate a parsed JSON object into zero or more stream events."""

    if not isinstance(payload, dict):
        return []

    kind = payload.get("type")
    if kind == "assistant":
        message = payload.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            return []
        events: list[StreamEvent] = []
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and block.get("text"):
                events.append(AssistantText(str(block["text"])))
            elif block.get("type") == "tool_use" and block.get("name"):
                tool_input = block.get("input")
                events.append(
                    ToolUse(
                        tool_use_id=str(block.get("id") or ""),
                        name=str(block["name"]),
                        input=tool_input if isinstance(tool_input, dict) else {},
                    )
                )
        return events

    if kind == "result":
        denials: list[PermissionDenial] = []
        for raw in payload.get("permission_denials") or []:
            if not isinstance(raw, dict) or raw.get("tool_name") != ASK_USER_QUESTION:
                continue
            tool_input = raw.get("tool_input")
            if not isinstance(tool_input, dict) or not parse_questions(tool_input.get("questions")):
                continue
            try:
                denials.append(PermissionDenial.model_validate(raw))
            except ValidationError:
                logger.debug("Skipping malformed permission denial", extra={"denial": raw})
        output = payload.get("result")
        result = ClaudeResult(
            output=output if isinstance(output, str) else "",
            session_id=str(payload.get("session_id") or ""),
            duration_ms=payload.get("duration_ms") or 0,
            cost_usd=payload.get("total_cost_usd") or 0.0,
            is_error=bool(payload.get("is_error", False)),
            permission_denials=denials,
        )
        return [ResultEvent(result=result, has_output=isinstance(output, str))]

    return []


class StreamDecoder:
    """Line-buffering state machine over raw stdout bytes."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Consume a chunk and return events for every completed line."""

        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        events: list[StreamEvent] = []
        for line in lines:
            events.extend(self._decode_line(line))
        return events

    def flush(self) -> list[StreamEvent]:
        """Decode whatever is left once the stream has ended."""

        self._pending += self._decoder.decode(b"", final=True)
        line, self._pending = self._pending, ""
        return self._decode_line(line)

    @staticmethod
    def _decode_line(line: str) -> list[StreamEvent]:
        stripped = line.strip()
        if not stripped:
            return []
        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError:
            return []
        return decode_event(payload)


__all__ = [
    "AssistantText",
    "ResultEvent",
    "StreamDecoder",
    "StreamEvent",
    "ToolUse",
    "decode_event",
]
