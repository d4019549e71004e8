"""
In-process event channels with cancellable subscriptions.

Each run publishes on four channels scoped by its id. Listener callbacks run
synchronously inside `publish`, in publish order, so per-run ordering holds.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Iterable

import structlog

logger = structlog.get_logger(__name__)

_CHANNEL_END = object()

RUN_UPDATE_CHANNEL = "agent-run-update"


def output_channel(run_id: int) -> str:
    return f"agent-output:{run_id}"


def error_channel(run_id: int) -> str:
    return f"agent-error:{run_id}"


def complete_channel(run_id: int) -> str:
    return f"agent-complete:{run_id}"


def cancelled_channel(run_id: int) -> str:
    return f"agent-cancelled:{run_id}"


def run_channels(run_id: int) -> tuple[str, str, str, str]:
    """Return the output, error, complete and cancelled channel names for a run."""
    return (
        output_channel(run_id),
        error_channel(run_id),
        complete_channel(run_id),
        cancelled_channel(run_id),
    )


class Subscription:
    """
    Handle for one channel subscription.

    A subscription either dispatches to a callback or buffers payloads for its
    async `stream`. `cancel()` is idempotent and is the only teardown path;
    once cancelled nothing further is delivered.
    """

    def __init__(
        self,
        bus: "EventBus",
        channel: str,
        callback: Callable[[Any], None] | None = None,
    ) -> None:
        self.channel = channel
        self._bus = bus
        self._callback = callback
        self._queue: asyncio.Queue[object] | None = None if callback is not None else asyncio.Queue()
        self._stream_taken = False
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    @property
    def stream(self) -> AsyncIterator[Any]:
        """
        Return the payload stream of a queue-backed subscription.

        Raises:
            RuntimeError: For callback subscriptions, or on a second consumer.
        """
        if self._queue is None:
            raise RuntimeError("Callback subscriptions have no stream")
        if self._stream_taken:
            raise RuntimeError("Subscription.stream supports a single consumer")
        self._stream_taken = True
        return self._iter_stream()

    async def _iter_stream(self) -> AsyncIterator[Any]:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            if item is _CHANNEL_END:
                break
            yield item

    def deliver(self, payload: Any) -> None:
        if self._cancelled:
            return
        if self._callback is not None:
            self._callback(payload)
        elif self._queue is not None:
            self._queue.put_nowait(payload)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._bus._remove(self)
        if self._queue is not None:
            self._queue.put_nowait(_CHANNEL_END)

    def __repr__(self) -> str:
        state = "active" if self.active else "cancelled"
        return f"Subscription({self.channel!r}, {state})"


class EventBus:
    """Process-wide publish/subscribe hub keyed by channel name."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscription]] = {}

    def listen(self, channel: str, callback: Callable[[Any], None]) -> Subscription:
        """Register `callback` for every payload published on `channel`."""
        subscription = Subscription(self, channel, callback)
        self._subscribers.setdefault(channel, []).append(subscription)
        return subscription

    def subscribe(self, channel: str) -> Subscription:
        """Open a queue-backed subscription consumed through `stream`."""
        subscription = Subscription(self, channel)
        self._subscribers.setdefault(channel, []).append(subscription)
        return subscription

    def publish(self, channel: str, payload: Any = None) -> int:
        """
        Deliver `payload` to every live subscriber of `channel`.

        Listener failures are logged and do not stop delivery to others.

        Returns:
            Number of subscriptions the payload was offered to.
        """
        subscribers = list(self._subscribers.get(channel, ()))
        for subscription in subscribers:
            try:
                subscription.deliver(payload)
            except Exception:
                logger.exception("Event listener failed", channel=channel)
        return len(subscribers)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    @staticmethod
    def release_all(subscriptions: Iterable[Subscription]) -> None:
        for subscription in list(subscriptions):
            subscription.cancel()

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.channel)
        if not subscribers:
            return
        try:
            subscribers.remove(subscription)
        except ValueError:
            return
        if not subscribers:
            del self._subscribers[subscription.channel]
