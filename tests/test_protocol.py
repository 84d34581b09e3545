from __future__ import annotations

import json

from fleet_mcp.claude.models import ClaudeResult, PermissionDenial
from fleet_mcp.claude.protocol import (
    AssistantText,
    ResultEvent,
    StreamDecoder,
    ToolUse,
    decode_event,
)


def _line(payload: dict) -> bytes:
    return (json.dumps(payload) + "\n").encode("utf-8")


def test_decoder_buffers_partial_lines() -> None:
    decoder = StreamDecoder()
    raw = _line({"type": "assistant", "message": {"content": [{"type": "text", "text": "hi"}]}})

    assert decoder.feed(raw[:10]) == []
    assert decoder.pending

    events = decoder.feed(raw[10:])

    assert events == [AssistantText("hi")]
    assert decoder.pending == ""


def test_decoder_handles_split_multibyte_characters() -> None:
    decoder = StreamDecoder()
    raw = _line({"type": "assistant", "message": {"content": [{"type": "text", "text": "café ☕"}]}})
    raw = raw.replace(b"\\u00e9", "é".encode()).replace(b"\\u2615", "☕".encode())
    split = raw.index("☕".encode()) + 1

    events = decoder.feed(raw[:split]) + decoder.feed(raw[split:])

    assert events == [AssistantText("café ☕")]


def test_flush_decodes_trailing_line_without_newline() -> None:
    decoder = StreamDecoder()
    decoder.feed(json.dumps({"type": "result", "result": "done", "session_id": "s"}))

    events = decoder.flush()

    assert len(events) == 1
    assert isinstance(events[0], ResultEvent)
    assert events[0].result.output == "done"


def test_assistant_message_yields_text_and_tool_use() -> None:
    events = decode_event(
        {
            "type": "assistant",
            "message": {
                "content": [
                    {"type": "text", "text": "Reading file"},
                    {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "a.py"}},
                    {"type": "text", "text": ""},
                    "garbage",
                ]
            },
        }
    )

    assert events == [
        AssistantText("Reading file"),
        ToolUse(tool_use_id="t1", name="Read", input={"file_path": "a.py"}),
    ]


def test_unknown_and_non_object_events_are_ignored() -> None:
    assert decode_event({"type": "system", "subtype": "init"}) == []
    assert decode_event({"type": "user"}) == []
    assert decode_event(["not", "an", "object"]) == []
    assert StreamDecoder().feed(b"{broken json\n") == []


def test_result_keeps_only_question_denials() -> None:
    (event,) = decode_event(
        {
            "type": "result",
            "result": "I need input",
            "session_id": "sess-1",
            "duration_ms": 40,
            "total_cost_usd": 0.01,
            "is_error": False,
            "permission_denials": [
                {"tool_name": "Bash", "tool_use_id": "b1", "tool_input": {"command": "rm"}},
                {"tool_name": "AskUserQuestion", "tool_use_id": "q0", "tool_input": {}},
                {
                    "tool_name": "AskUserQuestion",
                    "tool_use_id": "q1",
                    "tool_input": {"questions": [{"question": "Proceed?", "options": []}]},
                },
            ],
        }
    )

    assert isinstance(event, ResultEvent)
    assert event.has_output is True
    denials = event.result.permission_denials
    assert [denial.tool_use_id for denial in denials] == ["q1"]
    denial = event.result.question_denial()
    assert denial is not None
    assert denial.questions[0].question == "Proceed?"


def test_result_drops_denials_without_usable_questions() -> None:
    (event,) = decode_event(
        {
            "type": "result",
            "result": "",
            "session_id": "sess-2",
            "permission_denials": [
                {
                    "tool_name": "AskUserQuestion",
                    "tool_use_id": "q-bad",
                    "tool_input": {"questions": [{"header": "no text"}, "loose string"]},
                },
                {"tool_name": "AskUserQuestion", "tool_use_id": "q-dict", "tool_input": {"questions": {"a": 1}}},
            ],
        }
    )

    assert event.result.permission_denials == []
    assert event.result.question_denial() is None


def test_question_denial_requires_questions() -> None:
    result = ClaudeResult(
        permission_denials=[PermissionDenial(tool_name="AskUserQuestion", tool_use_id="x")]
    )

    assert result.question_denial() is None


def test_result_defaults_when_fields_missing() -> None:
    (event,) = decode_event({"type": "result"})

    assert event.has_output is False
    assert event.result.output == ""
    assert event.result.session_id == ""
    assert event.result.cost_usd == 0.0
