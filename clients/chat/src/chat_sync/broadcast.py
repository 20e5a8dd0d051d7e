"""Fan-out of session events to any number of observers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger("chat_sync")

T = TypeVar("T")

_CLOSED = object()


@dataclass
class Subscription(Generic[T]):
    callback: Callable[[T], None]
    broadcast: "Broadcast[T]"

    def deliver(self, event: T) -> None:
        self.callback(event)

    def cancel(self) -> None:
        self.broadcast.unsubscribe(self)


class Listener(Generic[T]):
    """Async iterator over events published after it was created."""

    def __init__(self, broadcast: "Broadcast[T]") -> None:
        self._broadcast = broadcast
        self._queue: asyncio.Queue = asyncio.Queue()
        self._done = False

    def _push(self, item: object) -> None:
        self._queue.put_nowait(item)

    def __aiter__(self) -> "Listener[T]":
        return self

    async def __anext__(self) -> T:
        if self._done:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._done = True
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    def close(self) -> None:
        self._broadcast._drop_listener(self)
        self._push(_CLOSED)


class Broadcast(Generic[T]):
    """Delivers each published event to every current subscriber; no history is kept."""

    def __init__(self, name: str = "events") -> None:
        self.name = name
        self._subscriptions: List[Subscription[T]] = []
        self._listeners: List[Listener[T]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: Callable[[T], None]) -> Subscription[T]:
        subscription = Subscription(callback=callback, broadcast=self)
        if not self._closed:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription[T]) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return

    def listen(self) -> Listener[T]:
        listener: Listener[T] = Listener(self)
        if self._closed:
            listener._push(_CLOSED)
        else:
            self._listeners.append(listener)
        return listener

    def _drop_listener(self, listener: Listener[T]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return

    def publish(self, event: T) -> None:
        if self._closed:
            return
        for subscription in list(self._subscriptions):
            try:
                subscription.deliver(event)
            except Exception:
                logger.exception("Subscriber to %s stream raised; continuing delivery", self.name)
        for listener in list(self._listeners):
            listener._push(event)

    def close(self, reason: Optional[str] = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._subscriptions.clear()
        for listener in list(self._listeners):
            listener._push(_CLOSED)
        self._listeners.clear()
        if reason:
            logger.debug("Closed %s stream: %s", self.name, reason)
