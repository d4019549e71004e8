from __future__ import annotations

import json

import pytest

from agentpanel.messages import (
    AssistantMessage,
    PartialMessage,
    ResultMessage,
    SessionInfoMessage,
    StreamErrorMessage,
    SystemMessage,
    TextPart,
    ToolResultPart,
    ToolUsePart,
    UnknownPart,
    UnparsedMessage,
    UserMessage,
    error_result,
    message_to_json,
    parse_line,
    parse_message,
)


def test_parse_assistant_with_mixed_content_parts():
    message = parse_message(
        {
            "type": "assistant",
            "message": {
                "id": "msg_1",
                "content": [
                    {"type": "text", "text": "Looking"},
                    {"type": "tool_use", "id": "toolu_1", "name": "Read", "input": {"path": "a.py"}},
                    {"type": "image", "source": {}},
                ],
                "usage": {"input_tokens": 10, "output_tokens": 4},
            },
        }
    )

    assert isinstance(message, AssistantMessage)
    text, tool_use, unknown = message.message.content
    assert isinstance(text, TextPart) and text.text == "Looking"
    assert isinstance(tool_use, ToolUsePart) and tool_use.input == {"path": "a.py"}
    assert isinstance(unknown, UnknownPart) and unknown.type == "image"
    assert message.message.usage is not None
    assert message.message.usage.total == 14


def test_user_content_string_and_meta_alias():
    message = parse_message({"type": "user", "isMeta": True, "message": {"content": "hello"}})
    assert isinstance(message, UserMessage)
    assert message.is_meta is True
    assert isinstance(message.message.content[0], TextPart)


def test_tool_result_keeps_numeric_id():
    message = parse_message(
        {
            "type": "user",
            "message": {"content": [{"type": "tool_result", "tool_use_id": 7, "content": "ok"}]},
        }
    )
    assert isinstance(message, UserMessage)
    part = message.message.content[0]
    assert isinstance(part, ToolResultPart)
    assert part.tool_use_id == 7


def test_system_result_and_streaming_kinds():
    system = parse_message({"type": "system", "subtype": "init", "session_id": "s1", "model": "m"})
    assert isinstance(system, SystemMessage) and system.session_id == "s1"

    result = parse_message({"type": "result", "total_cost_usd": 0.25, "duration_ms": 1200})
    assert isinstance(result, ResultMessage)
    assert result.cost == 0.25

    partial = parse_message(
        {"type": "partial", "tool_calls": [{"content": "ab", "partial_tool_call_index": 0}]}
    )
    assert isinstance(partial, PartialMessage)
    assert partial.tool_calls[0].partial_tool_call_index == 0

    info = parse_message({"type": "session_info", "session_id": "s", "project_id": "p"})
    assert isinstance(info, SessionInfoMessage) and info.project_id == "p"

    err = parse_message({"type": "error", "error": {"message": "boom"}})
    assert isinstance(err, StreamErrorMessage)


def test_unknown_and_invalid_payloads_become_unparsed():
    unknown = parse_message({"type": "telemetry", "x": 1})
    assert isinstance(unknown, UnparsedMessage)
    assert unknown.type == "telemetry"

    not_object = parse_message([1, 2])
    assert isinstance(not_object, UnparsedMessage)

    invalid = parse_message({"type": "result", "duration_ms": "soon"})
    assert isinstance(invalid, UnparsedMessage)
    assert invalid.raw == {"type": "result", "duration_ms": "soon"}


def test_parse_line_raises_on_malformed_json():
    with pytest.raises(json.JSONDecodeError):
        parse_line("{not json")


def test_message_to_json_keeps_extra_fields_and_aliases():
    message = parse_message({"type": "user", "isMeta": True, "uuid": "u-1", "message": {"content": []}})
    dumped = json.loads(message_to_json(message))
    assert dumped["isMeta"] is True
    assert dumped["uuid"] == "u-1"

    unparsed = parse_message({"type": "mystery", "n": 1})
    assert json.loads(message_to_json(unparsed)) == {"type": "mystery", "n": 1}


def test_error_result_shape():
    message = error_result("Failed to execute agent: nope")
    assert message.is_error is True
    assert message.subtype == "error"
    assert message.result == "Failed to execute agent: nope"
    assert message.duration_ms == 0
    assert message.usage is not None and message.usage.total == 0


def test_null_and_fractional_counters_are_coerced():
    result = parse_message(
        {
            "type": "result",
            "duration_ms": 1200.7,
            "num_turns": 3.0,
            "usage": {"input_tokens": None, "output_tokens": 42.0},
        }
    )
    assert isinstance(result, ResultMessage)
    assert result.duration_ms == 1200
    assert result.num_turns == 3
    assert result.usage.input_tokens == 0
    assert result.usage.output_tokens == 42
    assert result.usage.total == 42

    assistant = parse_message({"type": "assistant", "message": {"usage": {"input_tokens": 5.5}}})
    assert isinstance(assistant, AssistantMessage)
    assert assistant.message.usage.input_tokens == 5
