"""
Per-run consumer that turns the raw JSON-lines feed into a bounded timeline.

The assembler owns two independent bounded containers: parsed messages and
the raw lines they came from. Both are trimmed separately after each append.
Errors local to one line never escape `handle_line`.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Callable

import structlog

from ..config import PanelConfig
from ..telemetry import NullTelemetrySink, TelemetrySink
from .bounded import BoundedList
from .export import to_jsonl, to_markdown
from .types import (
    AssistantMessage,
    PartialMessage,
    ResponseMessage,
    ResultMessage,
    SessionInfoMessage,
    StartMessage,
    StreamErrorMessage,
    StreamMessage,
    Usage,
    message_to_json,
    parse_message,
)

logger = structlog.get_logger(__name__)

StreamingChangeCallback = Callable[[bool, "str | None"], None]
TokenUpdateCallback = Callable[["TokenUsage"], None]
SessionInfoCallback = Callable[[str, str], None]


class AssemblerState(str, enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    SETTLED = "settled"


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token counters reported upward; `total` is input plus output."""

    input_tokens: int
    output_tokens: int

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens

    @staticmethod
    def from_usage(usage: Usage) -> "TokenUsage":
        return TokenUsage(input_tokens=usage.input_tokens, output_tokens=usage.output_tokens)


class StreamAssembler:
    """
    Normalize one run's event feed into timeline entries.

    Callbacks:
        on_streaming_change: `(is_streaming, session_id)` on stream start/settle.
        on_token_update: `TokenUsage` from `response` and `result` usage counters.
        on_session_info: `(session_id, project_id)`, once per distinct identity.
    """

    def __init__(
        self,
        *,
        config: PanelConfig | None = None,
        on_streaming_change: StreamingChangeCallback | None = None,
        on_token_update: TokenUpdateCallback | None = None,
        on_session_info: SessionInfoCallback | None = None,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        cfg = config or PanelConfig()
        self.max_accumulated_chars = cfg.max_accumulated_chars
        self.messages: BoundedList[StreamMessage] = BoundedList(cfg.max_messages)
        self.raw_lines: BoundedList[str] = BoundedList(cfg.max_raw_lines)
        self.state = AssemblerState.IDLE
        self.session_id: str | None = None
        self.project_id: str | None = None
        self._accumulated: dict[str, str] = {}
        self._on_streaming_change = on_streaming_change
        self._on_token_update = on_token_update
        self._on_session_info = on_session_info
        self._telemetry = telemetry or NullTelemetrySink()

    @property
    def is_streaming(self) -> bool:
        return self.state is AssemblerState.STREAMING

    def accumulated(self, key: str) -> str:
        """Return the reassembled text for one streaming tool-call key."""
        return self._accumulated.get(key, "")

    def handle_line(self, line: str) -> StreamMessage | None:
        """
        Consume one raw feed line.

        Returns:
            The parsed message, or `None` when the line was blank or malformed.
        """
        if not line.strip():
            return None
        try:
            payload = json.loads(line)
        except (ValueError, RecursionError, TypeError) as e:
            logger.warning("Dropping malformed feed line", error=str(e), line=line[:200])
            self._telemetry.increment_counter("assembler.lines_dropped")
            return None
        return self.handle(parse_message(payload), raw=line)

    def handle(self, message: StreamMessage, *, raw: str | None = None) -> StreamMessage:
        """
        Apply state transitions for `message` and append it to both containers.

        Args:
            message: Parsed feed message.
            raw: Raw feed line; when omitted the message is re-serialized.
        """
        if isinstance(message, StartMessage):
            self._accumulated = {}
            self.state = AssemblerState.STREAMING
            self._notify_streaming(True)
        elif isinstance(message, PartialMessage):
            self._accumulate(message)
        elif isinstance(message, ResponseMessage):
            usage = message.message.usage if message.message is not None else None
            if usage is not None:
                self._notify_tokens(usage)
            else:
                self.settle()
        elif isinstance(message, ResultMessage):
            if message.usage is not None:
                self._notify_tokens(message.usage)
            self.settle()
        elif isinstance(message, StreamErrorMessage):
            self.settle()
        elif isinstance(message, SessionInfoMessage):
            self._record_session(message)

        self.append(message, raw=raw)
        return message

    def append(self, message: StreamMessage, *, raw: str | None = None) -> None:
        """Append `message` to both containers without any state transition."""
        self.messages.append(message)
        self.raw_lines.append(raw if raw is not None else message_to_json(message))

    def _accumulate(self, message: PartialMessage) -> None:
        for tool_call in message.tool_calls:
            if not tool_call.content or tool_call.partial_tool_call_index is None:
                continue
            key = f"tool-{tool_call.partial_tool_call_index}"
            current = self._accumulated.get(key, "")
            remaining = self.max_accumulated_chars - len(current)
            if remaining > 0:
                current = current + tool_call.content[:remaining]
                self._accumulated[key] = current
            tool_call.accumulated_content = current

    def settle(self) -> None:
        """Leave the streaming state, notifying listeners if it was active."""
        was_streaming = self.state is AssemblerState.STREAMING
        self.state = AssemblerState.SETTLED
        if was_streaming:
            self._notify_streaming(False)

    def _record_session(self, message: SessionInfoMessage) -> None:
        if not message.session_id or not message.project_id:
            return
        if (message.session_id, message.project_id) == (self.session_id, self.project_id):
            return
        self.session_id = message.session_id
        self.project_id = message.project_id
        if self._on_session_info is not None:
            try:
                self._on_session_info(message.session_id, message.project_id)
            except Exception:
                logger.exception("Session info callback failed", session_id=message.session_id)

    def _notify_streaming(self, is_streaming: bool) -> None:
        if self._on_streaming_change is None:
            return
        try:
            self._on_streaming_change(is_streaming, self.session_id)
        except Exception:
            logger.exception("Streaming change callback failed", is_streaming=is_streaming)

    def _notify_tokens(self, usage: Usage) -> None:
        if self._on_token_update is None:
            return
        try:
            self._on_token_update(TokenUsage.from_usage(usage))
        except Exception:
            logger.exception("Token update callback failed")

    def load_output(self, blob: str) -> int:
        """
        Replace the timeline with the lines of a stored JSONL blob.

        Bad lines are logged and skipped; no state callbacks fire.

        Returns:
            Number of lines loaded before capping.
        """
        loaded: list[StreamMessage] = []
        raw: list[str] = []
        for line in blob.splitlines():
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except (ValueError, RecursionError) as e:
                logger.warning("Skipping malformed stored line", error=str(e))
                self._telemetry.increment_counter("assembler.lines_dropped")
                continue
            loaded.append(parse_message(payload))
            raw.append(line)
        self.messages.replace(loaded)
        self.raw_lines.replace(raw)
        self._accumulated = {}
        return len(loaded)

    def clear(self) -> None:
        self.messages.clear()
        self.raw_lines.clear()
        self._accumulated = {}
        self.state = AssemblerState.IDLE
        self.session_id = None
        self.project_id = None

    def total_tokens(self) -> int:
        """Sum usage over retained assistant and result messages."""
        total = 0
        for message in self.messages:
            if isinstance(message, AssistantMessage) and message.message.usage is not None:
                total += message.message.usage.total
            elif isinstance(message, ResultMessage) and message.usage is not None:
                total += message.usage.total
        return total

    def to_jsonl(self) -> str:
        return to_jsonl(self.raw_lines)

    def to_markdown(self, agent_name: str, task: str, model: str) -> str:
        return to_markdown(agent_name, task, model, self.messages)
