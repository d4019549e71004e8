"""
Join tool results to the tool invocations that produced them.
"""

from __future__ import annotations

from typing import Sequence

from .types import (
    AssistantMessage,
    StreamMessage,
    TextPart,
    ToolResultPart,
    ToolUsePart,
    UserMessage,
)

# Tool names (lower-cased) that have a specialized view; their plain-text
# results are redundant next to that view.
TOOLS_WITH_VIEWS: frozenset[str] = frozenset(
    {"task", "edit", "multiedit", "todowrite", "ls", "read", "glob", "bash", "write", "grep"}
)
EXTERNAL_TOOL_PREFIX = "mcp__"


def _same_id(left: str | int | None, right: str | int | None) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)


def find_tool_use(
    timeline: Sequence[StreamMessage],
    tool_use_id: str | int | None,
    name_filter: str | None = None,
    *,
    before: int | None = None,
) -> ToolUsePart | None:
    """
    Find the tool_use part that produced `tool_use_id`.

    The timeline is scanned from the newest entry backward, since a result
    always follows its invocation.

    Args:
        timeline: Messages in arrival order.
        tool_use_id: Id carried by the tool result.
        name_filter: Optional tool name, matched case-insensitively.
        before: Only consider entries with an index lower than this.

    Returns:
        The matching `ToolUsePart`, or `None` when uncorrelated.
    """
    if tool_use_id is None:
        return None
    wanted_name = name_filter.lower() if name_filter else None
    start = len(timeline) if before is None else min(before, len(timeline))

    for index in range(start - 1, -1, -1):
        message = timeline[index]
        if not isinstance(message, AssistantMessage):
            continue
        for part in message.message.content:
            if not isinstance(part, ToolUsePart) or not _same_id(part.id, tool_use_id):
                continue
            if wanted_name is not None and part.name.lower() != wanted_name:
                continue
            return part
    return None


def _has_view(tool_use: ToolUsePart) -> bool:
    return tool_use.name.lower() in TOOLS_WITH_VIEWS or tool_use.name.startswith(EXTERNAL_TOOL_PREFIX)


def has_dedicated_view(
    tool_result: ToolResultPart,
    timeline: Sequence[StreamMessage],
    *,
    before: int | None = None,
) -> bool:
    """Return `True` when the result's invocation is shown by a specialized view."""
    tool_use = find_tool_use(timeline, tool_result.tool_use_id, before=before)
    if tool_use is None:
        return False
    return _has_view(tool_use)


def should_skip_message(message: StreamMessage, timeline: Sequence[StreamMessage], index: int) -> bool:
    """
    Decide whether a timeline entry would render as nothing.

    Skipped: meta entries without a summary or leaf, empty user messages, and
    user messages whose only content is tool results already covered by a
    dedicated view.
    """
    is_meta = getattr(message, "is_meta", False)
    if is_meta and not getattr(message, "leaf_uuid", None) and not getattr(message, "summary", None):
        return True

    if not isinstance(message, UserMessage):
        return False
    if is_meta:
        return True

    parts = message.message.content
    if not parts:
        return True

    for part in parts:
        if isinstance(part, TextPart):
            return False
        if isinstance(part, ToolResultPart) and not has_dedicated_view(part, timeline, before=index):
            return False
    return True


def displayable_messages(timeline: Sequence[StreamMessage]) -> list[StreamMessage]:
    """Return the entries of `timeline` that have visible content, in order."""
    return [
        message
        for index, message in enumerate(timeline)
        if not should_skip_message(message, timeline, index)
    ]
