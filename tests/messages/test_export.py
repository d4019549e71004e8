from __future__ import annotations

from datetime import datetime, timezone

from agentpanel.messages import parse_message, to_jsonl, to_markdown
from agentpanel.messages.export import tool_result_text
from agentpanel.messages.types import ToolResultPart


def test_to_jsonl_joins_lines_verbatim():
    lines = ['{"type":"start"}', '{"type":"result"}']
    assert to_jsonl(lines) == '{"type":"start"}\n{"type":"result"}'
    assert to_jsonl([]) == ""


def test_tool_result_text_flattens_content_shapes():
    assert tool_result_text(ToolResultPart(content="plain")) == "plain"
    assert tool_result_text(ToolResultPart(content=[{"type": "text", "text": "a"}, "b"])) == "a\nb"
    assert tool_result_text(ToolResultPart(content=None)) == ""
    assert '"k": 1' in tool_result_text(ToolResultPart(content={"k": 1}))


def test_to_markdown_renders_transcript_sections():
    messages = [
        parse_message({"type": "system", "subtype": "init", "session_id": "s1", "model": "sonnet", "cwd": "/p"}),
        parse_message({"type": "start"}),
        parse_message(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "text", "text": "Reading file"},
                        {"type": "tool_use", "id": "t1", "name": "Read", "input": {"path": "x"}},
                    ],
                    "usage": {"input_tokens": 3, "output_tokens": 2},
                },
            }
        ),
        parse_message(
            {"type": "user", "message": {"content": [{"type": "tool_result", "tool_use_id": "t1", "content": "data"}]}}
        ),
        parse_message(
            {
                "type": "result",
                "result": "Done",
                "cost_usd": 0.5,
                "duration_ms": 2500,
                "num_turns": 2,
                "usage": {"input_tokens": 3, "output_tokens": 2},
            }
        ),
    ]

    text = to_markdown(
        "reviewer",
        "review code",
        "sonnet",
        messages,
        generated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )

    assert text.startswith("# Agent Execution: reviewer\n")
    assert "**Date:** 2026-01-01T00:00:00+00:00" in text
    assert "- Session ID: `s1`" in text
    assert "### Tool: Read" in text
    assert "```\ndata\n```" in text
    assert "- **Cost:** $0.5000 USD" in text
    assert "- **Duration:** 2.50s" in text
    assert "- **Total Tokens:** 5 (3 in, 2 out)" in text
