"""Bounded multi-subscriber broadcast channel with oldest-drop overflow."""

import asyncio
import logging
from collections import deque
from typing import Generic, TypeVar

from brc20_watcher.core.errors import ChannelClosed

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Subscription(Generic[T]):
    """One subscriber's view of a broadcast channel.

    Receives every value sent after it subscribed, in send order. When the
    buffer is full the oldest unread value is dropped and `dropped` grows.
    """

    def __init__(self, channel: "BroadcastChannel[T]", capacity: int) -> None:
        self._channel = channel
        self._buffer: deque[T] = deque(maxlen=capacity)
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return len(self._buffer)

    def _push(self, value: T) -> None:
        if len(self._buffer) == self._buffer.maxlen:
            self.dropped += 1
            logger.debug(
                "broadcast_subscriber_lagged",
                extra={"channel": self._channel.name, "dropped": self.dropped},
            )
        self._buffer.append(value)
        self._ready.set()

    def _close(self) -> None:
        self._closed = True
        self._ready.set()

    async def recv(self) -> T:
        """Return the next value, waiting for one if the buffer is empty."""

        while not self._buffer:
            if self._closed:
                raise ChannelClosed(self._channel.name)
            self._ready.clear()
            await self._ready.wait()
        return self._buffer.popleft()

    def unsubscribe(self) -> None:
        self._channel._detach(self)
        self._close()

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        try:
            return await self.recv()
        except ChannelClosed:
            raise StopAsyncIteration from None


class BroadcastChannel(Generic[T]):
    """Fan a value out to every current subscriber without blocking the sender."""

    def __init__(self, capacity: int, name: str = "broadcast") -> None:
        if capacity < 1:
            raise ValueError("broadcast capacity must be positive")
        self.capacity = capacity
        self.name = name
        self._subscribers: list[Subscription[T]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self, self.capacity)
        if self._closed:
            subscription._close()
        else:
            self._subscribers.append(subscription)
        return subscription

    def send(self, value: T) -> int:
        """Deliver `value` to all subscribers and return how many received it."""

        if self._closed:
            return 0
        for subscription in self._subscribers:
            subscription._push(value)
        return len(self._subscribers)

    def close(self) -> None:
        """Close the channel; subscribers drain what is buffered, then stop."""

        if self._closed:
            return
        self._closed = True
        for subscription in self._subscribers:
            subscription._close()
        self._subscribers.clear()

    def _detach(self, subscription: Subscription[T]) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
