"""Named in-process channel carrying streamed reply events."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from ..ui.models.chat_models import StreamEvent, parse_stream_event
from .backend_types import STREAM_CHANNEL_NAME

__all__ = ["ChannelSubscription", "StreamChannel"]

LOGGER = logging.getLogger(__name__)

_CLOSED = object()


class ChannelSubscription:
    """One subscriber's FIFO view of a :class:`StreamChannel`.

    Iterating yields events in publication order and stops once the
    subscription is closed.
    """

    def __init__(self, channel: "StreamChannel") -> None:
        self._channel = channel
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def _deliver(self, event: StreamEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def __aiter__(self) -> "ChannelSubscription":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.task_done()
            raise StopAsyncIteration
        return item

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every event delivered so far has been acknowledged."""
        if self._closed:
            return
        await self._queue.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel._remove(self)
        self._queue.put_nowait(_CLOSED)
        LOGGER.debug("Closed subscription to %s", self._channel.name)


class StreamChannel:
    """Fan-out of stream events to every open subscription.

    Publishing never blocks: each subscriber owns an unbounded queue, so events
    are delivered in order even when a consumer falls behind.
    """

    def __init__(self, name: str = STREAM_CHANNEL_NAME) -> None:
        self.name = name
        self._subscriptions: list[ChannelSubscription] = []

    def subscribe(self) -> ChannelSubscription:
        subscription = ChannelSubscription(self)
        self._subscriptions.append(subscription)
        LOGGER.debug("New subscription to %s (%d total)", self.name, len(self._subscriptions))
        return subscription

    def publish(self, event: StreamEvent | Mapping[str, Any]) -> StreamEvent:
        parsed = parse_stream_event(event)
        for subscription in list(self._subscriptions):
            subscription._deliver(parsed)
        return parsed

    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()

    def _remove(self, subscription: ChannelSubscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
