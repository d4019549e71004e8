from __future__ import annotations

import json

from agentpanel.config import PanelConfig
from agentpanel.messages import (
    AssemblerState,
    PartialMessage,
    ResultMessage,
    StreamAssembler,
    TokenUsage,
    error_result,
)
from agentpanel.telemetry import InMemoryTelemetrySink


def line(payload: dict) -> str:
    return json.dumps(payload)


def partial(index: int, content: str) -> str:
    return line({"type": "partial", "tool_calls": [{"content": content, "partial_tool_call_index": index}]})


def test_every_line_lands_in_both_containers_in_order():
    assembler = StreamAssembler()
    lines = [
        line({"type": "system", "subtype": "init", "session_id": "s1"}),
        line({"type": "assistant", "message": {"content": "hi"}}),
        line({"type": "mystery"}),
    ]
    for raw in lines:
        assembler.handle_line(raw)

    assert assembler.raw_lines.snapshot() == lines
    assert len(assembler.messages) == 3
    assert assembler.to_jsonl() == "\n".join(lines)


def test_malformed_line_is_dropped_and_counted():
    telemetry = InMemoryTelemetrySink()
    assembler = StreamAssembler(telemetry=telemetry)

    assert assembler.handle_line("{broken") is None
    assert assembler.handle_line("   ") is None
    assembler.handle_line(line({"type": "start"}))

    assert len(assembler.messages) == 1
    assert len(assembler.raw_lines) == 1
    assert telemetry.counter_total("assembler.lines_dropped") == 1


def test_containers_are_trimmed_independently_to_their_caps():
    assembler = StreamAssembler(config=PanelConfig(max_messages=5, max_raw_lines=3))
    for i in range(10):
        assembler.handle_line(line({"type": "assistant", "message": {"content": f"m{i}"}}))

    assert len(assembler.messages) == 5
    assert len(assembler.raw_lines) == 3
    assert json.loads(assembler.raw_lines[0])["message"]["content"] == "m7"


def test_default_caps_hold_for_long_feeds():
    assembler = StreamAssembler()
    for i in range(1200):
        assembler.handle_line(line({"type": "assistant", "message": {"content": str(i)}}))
    assert len(assembler.messages) == 1000
    assert len(assembler.raw_lines) == 1000


def test_streaming_transitions_notify_start_and_settle():
    changes: list[tuple[bool, str | None]] = []
    assembler = StreamAssembler(on_streaming_change=lambda streaming, sid: changes.append((streaming, sid)))

    assembler.handle_line(line({"type": "start"}))
    assert assembler.state is AssemblerState.STREAMING
    assert assembler.is_streaming

    assembler.handle_line(line({"type": "response", "message": {"usage": {"input_tokens": 1, "output_tokens": 2}}}))
    assert assembler.is_streaming

    assembler.handle_line(line({"type": "response", "message": {"content": []}}))
    assert assembler.state is AssemblerState.SETTLED
    assembler.handle_line(line({"type": "result"}))

    assert changes == [(True, None), (False, None)]


def test_error_event_settles_stream():
    changes: list[bool] = []
    assembler = StreamAssembler(on_streaming_change=lambda streaming, _sid: changes.append(streaming))
    assembler.handle_line(line({"type": "start"}))
    assembler.handle_line(line({"type": "error", "error": "overloaded"}))
    assert changes == [True, False]
    assert not assembler.is_streaming


def test_partial_accumulation_is_capped_at_ten_thousand_chars():
    assembler = StreamAssembler()
    assembler.handle_line(line({"type": "start"}))
    chunk = "x" * 1000
    for _ in range(12):
        assembler.handle_line(partial(0, chunk))

    assert len(assembler.accumulated("tool-0")) == 10_000
    last = assembler.messages[-1]
    assert isinstance(last, PartialMessage)
    assert last.tool_calls[0].accumulated_content is not None
    assert len(last.tool_calls[0].accumulated_content) == 10_000


def test_partial_accumulation_is_keyed_by_index_and_reset_on_start():
    assembler = StreamAssembler()
    assembler.handle_line(line({"type": "start"}))
    assembler.handle_line(partial(0, "ab"))
    assembler.handle_line(partial(1, "zz"))
    assembler.handle_line(partial(0, "cd"))
    assert assembler.accumulated("tool-0") == "abcd"
    assert assembler.accumulated("tool-1") == "zz"

    assembler.handle_line(line({"type": "start"}))
    assert assembler.accumulated("tool-0") == ""


def test_token_updates_come_from_response_and_result_usage():
    updates: list[TokenUsage] = []
    assembler = StreamAssembler(on_token_update=updates.append)

    assembler.handle_line(line({"type": "response", "message": {"usage": {"input_tokens": 5, "output_tokens": 7}}}))
    assembler.handle_line(line({"type": "response", "message": {"content": []}}))
    assembler.handle_line(line({"type": "result", "usage": {"input_tokens": 20, "output_tokens": 30}}))

    assert [update.total for update in updates] == [12, 50]


def test_session_info_fires_once_per_distinct_identity():
    seen: list[tuple[str, str]] = []
    assembler = StreamAssembler(on_session_info=lambda sid, pid: seen.append((sid, pid)))

    info = line({"type": "session_info", "session_id": "s1", "project_id": "p1"})
    assembler.handle_line(info)
    assembler.handle_line(info)
    assembler.handle_line(line({"type": "session_info", "session_id": "s1"}))
    assembler.handle_line(line({"type": "session_info", "session_id": "s2", "project_id": "p1"}))

    assert seen == [("s1", "p1"), ("s2", "p1")]
    assert assembler.session_id == "s2"


def test_failing_callback_does_not_abort_consumption():
    def explode(_usage: TokenUsage) -> None:
        raise RuntimeError("listener bug")

    assembler = StreamAssembler(on_token_update=explode)
    assembler.handle_line(line({"type": "result", "usage": {"input_tokens": 1, "output_tokens": 1}}))
    assert len(assembler.messages) == 1


def test_append_skips_transitions():
    updates: list[TokenUsage] = []
    assembler = StreamAssembler(on_token_update=updates.append)
    assembler.append(error_result("boom"))

    assert updates == []
    assert isinstance(assembler.messages[0], ResultMessage)
    assert json.loads(assembler.raw_lines[0])["is_error"] is True


def test_load_output_replaces_timeline_and_skips_bad_lines():
    assembler = StreamAssembler()
    assembler.handle_line(line({"type": "start"}))
    blob = "\n".join(
        [
            line({"type": "assistant", "message": {"content": "a", "usage": {"input_tokens": 1, "output_tokens": 2}}}),
            "not json",
            "",
            line({"type": "result", "usage": {"input_tokens": 3, "output_tokens": 4}}),
        ]
    )

    assert assembler.load_output(blob) == 2
    assert len(assembler.messages) == 2
    assert len(assembler.raw_lines) == 2
    assert assembler.total_tokens() == 10


def test_clear_resets_state():
    assembler = StreamAssembler()
    assembler.handle_line(line({"type": "start"}))
    assembler.handle_line(line({"type": "session_info", "session_id": "s", "project_id": "p"}))
    assembler.clear()

    assert len(assembler.messages) == 0
    assert assembler.state is AssemblerState.IDLE
    assert assembler.session_id is None


def test_to_markdown_uses_retained_messages():
    assembler = StreamAssembler()
    assembler.handle_line(line({"type": "assistant", "message": {"content": "Working on it"}}))
    text = assembler.to_markdown("agent", "task", "sonnet")
    assert "Working on it" in text


def test_response_with_usage_keeps_streaming_until_result():
    changes: list[bool] = []
    assembler = StreamAssembler(on_streaming_change=lambda streaming, _sid: changes.append(streaming))
    assembler.handle_line(line({"type": "start"}))
    assembler.handle_line(line({"type": "response", "message": {"usage": {"input_tokens": 3, "output_tokens": 4}}}))
    assert changes == [True]

    assembler.handle_line(line({"type": "result", "usage": {"input_tokens": 3, "output_tokens": 4}}))
    assert changes == [True, False]


def test_deeply_nested_line_is_dropped_not_raised():
    telemetry = InMemoryTelemetrySink()
    assembler = StreamAssembler(telemetry=telemetry)
    nested = "[" * 200_000 + "]" * 200_000

    assert assembler.handle_line(nested) is None
    assert len(assembler.messages) == 0
    assert telemetry.counter_total("assembler.lines_dropped") == 1

    blob = "\n".join([nested, line({"type": "result"})])
    assert assembler.load_output(blob) == 1
    assert telemetry.counter_total("assembler.lines_dropped") == 2
