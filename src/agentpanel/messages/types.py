from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the closed set of stream message and content part types read from an
agent's JSON-lines feed.
"""

import json
import math
from typing import Annotated, Any, Literal, TypeAlias, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, ValidationError, field_validator


class _WireModel(BaseModel):
    """Base for feed models; unknown keys are kept so re-serialization is lossless."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ---------------------------------------------------------------------------
# Content parts
# ---------------------------------------------------------------------------


class TextPart(_WireModel):
    type: Literal["text"] = "text"
    text: str = ""


class ThinkingPart(_WireModel):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""


class ToolUsePart(_WireModel):
    type: Literal["tool_use"] = "tool_use"
    id: str | int | None = None
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(_WireModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str | int | None = None
    content: Any = None
    is_error: bool = False


class UnknownPart(_WireModel):
    """Content part whose `type` is missing or not one we model."""

    type: str | None = None


_PART_TAGS = frozenset({"text", "thinking", "tool_use", "tool_result"})


def _part_tag(value: Any) -> str:
    part_type = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return part_type if part_type in _PART_TAGS else "unknown"


ContentPart: TypeAlias = Annotated[
    Union[
        Annotated[TextPart, Tag("text")],
        Annotated[ThinkingPart, Tag("thinking")],
        Annotated[ToolUsePart, Tag("tool_use")],
        Annotated[ToolResultPart, Tag("tool_result")],
        Annotated[UnknownPart, Tag("unknown")],
    ],
    Discriminator(_part_tag),
]


def _whole_number(value: Any) -> Any:
    # NaN and inf are left for validation to reject.
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return value


class Usage(_WireModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @field_validator("input_tokens", "output_tokens", mode="before")
    @classmethod
    def _coerce_count(cls, value: Any) -> Any:
        return 0 if value is None else _whole_number(value)

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


class MessageBody(_WireModel):
    """Provider message envelope carried by assistant, user and response events."""

    id: str | None = None
    role: str | None = None
    model: str | None = None
    content: list[ContentPart] = Field(default_factory=list)
    usage: Usage | None = None

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [{"type": "text", "text": value}]
        if isinstance(value, list):
            return [
                item if isinstance(item, (dict, BaseModel)) else {"type": None, "value": item}
                for item in value
            ]
        return value


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class _TimelineMessage(_WireModel):
    is_meta: bool = Field(False, alias="isMeta")
    leaf_uuid: str | None = Field(None, alias="leafUuid")
    summary: str | None = None
    session_id: str | None = None


class SystemMessage(_TimelineMessage):
    type: Literal["system"] = "system"
    subtype: str | None = None
    model: str | None = None
    cwd: str | None = None
    tools: list[str] | None = None


class AssistantMessage(_TimelineMessage):
    type: Literal["assistant"] = "assistant"
    message: MessageBody = Field(default_factory=MessageBody)


class UserMessage(_TimelineMessage):
    type: Literal["user"] = "user"
    message: MessageBody = Field(default_factory=MessageBody)


class ResultMessage(_TimelineMessage):
    type: Literal["result"] = "result"
    subtype: str | None = None
    result: str | None = None
    error: Any = None
    is_error: bool = False
    duration_ms: int | None = None
    cost_usd: float | None = None
    total_cost_usd: float | None = None
    num_turns: int | None = None
    usage: Usage | None = None

    @field_validator("duration_ms", "num_turns", mode="before")
    @classmethod
    def _coerce_whole(cls, value: Any) -> Any:
        return _whole_number(value)

    @property
    def cost(self) -> float | None:
        return self.cost_usd if self.cost_usd is not None else self.total_cost_usd


class StartMessage(_TimelineMessage):
    type: Literal["start"] = "start"


class PartialToolCall(_WireModel):
    content: str | None = None
    partial_tool_call_index: int | None = None
    accumulated_content: str | None = None


class PartialMessage(_TimelineMessage):
    type: Literal["partial"] = "partial"
    tool_calls: list[PartialToolCall] = Field(default_factory=list)


class ResponseMessage(_TimelineMessage):
    type: Literal["response"] = "response"
    message: MessageBody | None = None


class SessionInfoMessage(_TimelineMessage):
    type: Literal["session_info"] = "session_info"
    project_id: str | None = None


class StreamErrorMessage(_TimelineMessage):
    type: Literal["error"] = "error"
    error: Any = None


class UnparsedMessage(BaseModel):
    """Feed entry that did not match any known message shape."""

    type: str | None = None
    raw: Any = None
    reason: str = ""


StreamMessage: TypeAlias = Union[
    SystemMessage,
    AssistantMessage,
    UserMessage,
    ResultMessage,
    StartMessage,
    PartialMessage,
    ResponseMessage,
    SessionInfoMessage,
    StreamErrorMessage,
    UnparsedMessage,
]

_MESSAGE_TYPES: dict[str, type[_TimelineMessage]] = {
    "system": SystemMessage,
    "assistant": AssistantMessage,
    "user": UserMessage,
    "result": ResultMessage,
    "start": StartMessage,
    "partial": PartialMessage,
    "response": ResponseMessage,
    "session_info": SessionInfoMessage,
    "error": StreamErrorMessage,
}


def parse_message(payload: Any) -> StreamMessage:
    """
    Map one decoded feed object onto its message model.

    Unknown `type` values, non-object payloads and payloads failing validation
    become `UnparsedMessage` rather than raising.
    """
    if not isinstance(payload, dict):
        return UnparsedMessage(raw=payload, reason="payload is not a JSON object")

    message_type = payload.get("type")
    model = _MESSAGE_TYPES.get(message_type) if isinstance(message_type, str) else None
    if model is None:
        return UnparsedMessage(
            type=message_type if isinstance(message_type, str) else None,
            raw=payload,
            reason=f"unknown message type {message_type!r}",
        )

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        return UnparsedMessage(type=message_type, raw=payload, reason=str(e))


def parse_line(line: str) -> StreamMessage:
    """
    Decode and parse one JSON line.

    Raises:
        json.JSONDecodeError: When `line` is not valid JSON.
    """
    return parse_message(json.loads(line))


def message_to_json(message: StreamMessage) -> str:
    """Serialize a message back to one compact JSON line."""
    if isinstance(message, UnparsedMessage):
        return json.dumps(message.raw, ensure_ascii=False, separators=(",", ":"), default=str)
    return message.model_dump_json(by_alias=True, exclude_unset=True)


def error_result(text: str) -> ResultMessage:
    """Build the synthetic terminal message used to explain a failed run."""
    return ResultMessage(
        type="result",
        subtype="error",
        is_error=True,
        result=text,
        duration_ms=0,
        usage=Usage(input_tokens=0, output_tokens=0),
    )
