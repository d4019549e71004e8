"""
Read-only projections of a timeline for copy/export.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable

from .types import (
    AssistantMessage,
    ResultMessage,
    StreamMessage,
    SystemMessage,
    TextPart,
    ToolResultPart,
    ToolUsePart,
    UserMessage,
)


def to_jsonl(raw_lines: Iterable[str]) -> str:
    """Join retained raw feed lines back into a JSONL document."""
    return "\n".join(raw_lines)


def tool_result_text(part: ToolResultPart) -> str:
    """Flatten a tool result's content into display text."""
    content = part.content
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks: list[str] = []
        for item in content:
            if isinstance(item, str):
                chunks.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                chunks.append(item["text"])
            else:
                chunks.append(json.dumps(item, ensure_ascii=False))
        return "\n".join(chunks)
    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"]
    return json.dumps(content, ensure_ascii=False, indent=2)


def to_markdown(
    agent_name: str,
    task: str,
    model: str,
    messages: Iterable[StreamMessage],
    *,
    generated_at: datetime | None = None,
) -> str:
    """
    Render a human-readable transcript of a run.

    Only system init, assistant, user and result messages contribute; streaming
    control events are omitted.
    """
    stamp = (generated_at or datetime.now(timezone.utc)).isoformat()
    out = [
        f"# Agent Execution: {agent_name}\n\n",
        f"**Task:** {task}\n",
        f"**Model:** {model}\n",
        f"**Date:** {stamp}\n\n",
        "---\n\n",
    ]

    for msg in messages:
        if isinstance(msg, SystemMessage) and msg.subtype == "init":
            out.append("## System Initialization\n\n")
            out.append(f"- Session ID: `{msg.session_id or 'N/A'}`\n")
            out.append(f"- Model: `{msg.model or 'default'}`\n")
            if msg.cwd:
                out.append(f"- Working Directory: `{msg.cwd}`\n")
            if msg.tools:
                out.append(f"- Tools: {', '.join(msg.tools)}\n")
            out.append("\n")

        elif isinstance(msg, AssistantMessage):
            out.append("## Assistant\n\n")
            for part in msg.message.content:
                if isinstance(part, TextPart):
                    out.append(f"{part.text}\n\n")
                elif isinstance(part, ToolUsePart):
                    out.append(f"### Tool: {part.name}\n\n")
                    out.append(f"```json\n{json.dumps(part.input, indent=2, ensure_ascii=False)}\n```\n\n")
            usage = msg.message.usage
            if usage is not None:
                out.append(f"*Tokens: {usage.input_tokens} in, {usage.output_tokens} out*\n\n")

        elif isinstance(msg, UserMessage):
            out.append("## User\n\n")
            for part in msg.message.content:
                if isinstance(part, TextPart):
                    out.append(f"{part.text}\n\n")
                elif isinstance(part, ToolResultPart):
                    out.append("### Tool Result\n\n")
                    out.append(f"```\n{tool_result_text(part)}\n```\n\n")

        elif isinstance(msg, ResultMessage):
            out.append("## Execution Result\n\n")
            if msg.result:
                out.append(f"{msg.result}\n\n")
            if msg.error:
                out.append(f"**Error:** {msg.error}\n\n")
            if msg.cost is not None:
                out.append(f"- **Cost:** ${msg.cost:.4f} USD\n")
            if msg.duration_ms is not None:
                out.append(f"- **Duration:** {msg.duration_ms / 1000:.2f}s\n")
            if msg.num_turns is not None:
                out.append(f"- **Turns:** {msg.num_turns}\n")
            if msg.usage is not None:
                out.append(
                    f"- **Total Tokens:** {msg.usage.total} "
                    f"({msg.usage.input_tokens} in, {msg.usage.output_tokens} out)\n"
                )

    return "".join(out)
