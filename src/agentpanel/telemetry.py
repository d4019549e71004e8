"""
Telemetry sinks for run supervision.

Process control, sessions, the assembler and the registry report lifecycle
events, counters and timings through a `TelemetrySink`. The default sink drops
everything; `InMemoryTelemetrySink` keeps what it receives for inspection.
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Protocol, TypeAlias

JsonPrimitive: TypeAlias = str | int | float | bool | None
JsonValue: TypeAlias = JsonPrimitive | list["JsonValue"] | dict[str, "JsonValue"]
Attributes: TypeAlias = dict[str, JsonValue]


@dataclass(frozen=True, slots=True)
class TelemetryEvent:
    """
    One lifecycle event, e.g. `process.started` or `session.stopped`.

    Attributes:
        name: Dotted event name.
        timestamp_ms: Epoch milliseconds when the event was emitted.
        attributes: JSON-safe details such as `run_id`.
    """

    name: str
    timestamp_ms: int
    attributes: Attributes = field(default_factory=dict)


class TelemetrySink(Protocol):
    """Destination for panel events, counters and timings."""

    def record_event(self, event: TelemetryEvent) -> None: ...

    def increment_counter(self, name: str, value: int = 1, *, attributes: Attributes | None = None) -> None: ...

    def record_histogram(self, name: str, value: float, *, attributes: Attributes | None = None) -> None: ...


@dataclass(slots=True)
class NullTelemetrySink:
    """Sink used when no telemetry is configured."""

    def record_event(self, event: TelemetryEvent) -> None:
        return None

    def increment_counter(self, name: str, value: int = 1, *, attributes: Attributes | None = None) -> None:
        return None

    def record_histogram(self, name: str, value: float, *, attributes: Attributes | None = None) -> None:
        return None


@dataclass(slots=True)
class InMemoryTelemetrySink:
    """Sink that keeps every measurement; attributes on counters are not retained."""

    _events: list[TelemetryEvent] = field(default_factory=list)
    _counters: Counter[str] = field(default_factory=Counter)
    _histograms: list[tuple[str, float]] = field(default_factory=list)

    def record_event(self, event: TelemetryEvent) -> None:
        self._events.append(event)

    def increment_counter(self, name: str, value: int = 1, *, attributes: Attributes | None = None) -> None:
        self._counters[name] += int(value)

    def record_histogram(self, name: str, value: float, *, attributes: Attributes | None = None) -> None:
        self._histograms.append((name, float(value)))

    def events(self) -> list[TelemetryEvent]:
        return list(self._events)

    def event_names(self) -> list[str]:
        return [event.name for event in self._events]

    def counter_total(self, name: str) -> int:
        """Sum of increments for `name`; `0` when it was never touched."""
        return self._counters[name]

    def histogram_values(self, name: str) -> list[float]:
        return [value for recorded, value in self._histograms if recorded == name]


def emit(sink: TelemetrySink, name: str, **attributes: JsonValue) -> None:
    """Record a `name` event on `sink`, stamped with the current time."""
    sink.record_event(TelemetryEvent(name=name, timestamp_ms=now_ms(), attributes=dict(attributes)))


def now_ms() -> int:
    return int(time.time() * 1000)
