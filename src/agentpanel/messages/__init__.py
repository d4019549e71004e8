"""
Stream message types, bounded timelines and tool correlation.
"""

from .bounded import BoundedList
from .types import (
    AssistantMessage,
    ContentPart,
    MessageBody,
    PartialMessage,
    PartialToolCall,
    ResponseMessage,
    ResultMessage,
    SessionInfoMessage,
    StartMessage,
    StreamErrorMessage,
    StreamMessage,
    SystemMessage,
    TextPart,
    ThinkingPart,
    ToolResultPart,
    ToolUsePart,
    UnknownPart,
    UnparsedMessage,
    Usage,
    UserMessage,
    error_result,
    message_to_json,
    parse_line,
    parse_message,
)
from .correlator import (
    TOOLS_WITH_VIEWS,
    displayable_messages,
    find_tool_use,
    has_dedicated_view,
    should_skip_message,
)
from .export import to_jsonl, to_markdown
from .assembler import AssemblerState, StreamAssembler, TokenUsage

__all__ = [
    "BoundedList",
    "StreamMessage",
    "ContentPart",
    "SystemMessage",
    "AssistantMessage",
    "UserMessage",
    "ResultMessage",
    "StartMessage",
    "PartialMessage",
    "PartialToolCall",
    "ResponseMessage",
    "SessionInfoMessage",
    "StreamErrorMessage",
    "UnparsedMessage",
    "MessageBody",
    "Usage",
    "TextPart",
    "ThinkingPart",
    "ToolUsePart",
    "ToolResultPart",
    "UnknownPart",
    "parse_message",
    "parse_line",
    "message_to_json",
    "error_result",
    "TOOLS_WITH_VIEWS",
    "find_tool_use",
    "has_dedicated_view",
    "should_skip_message",
    "displayable_messages",
    "to_jsonl",
    "to_markdown",
    "StreamAssembler",
    "AssemblerState",
    "TokenUsage",
]
