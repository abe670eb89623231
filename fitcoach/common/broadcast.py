"""
Multicast of a current value to any number of async subscribers.

Every subscriber receives the current value first, then every published value
in publish order. Subscriptions unregister on `aclose()`, on leaving an
`async with` block, or when they are garbage collected.
"""
from __future__ import annotations

import asyncio
import itertools
import weakref
from typing import Dict, Generic, TypeVar

T = TypeVar("T")

_CLOSED = object()


class StateBroadcaster(Generic[T]):
    def __init__(self, initial: T):
        self._value = initial
        self._queues: Dict[int, asyncio.Queue] = {}
        self._ids = itertools.count()
        self._closed = False

    @property
    def value(self) -> T:
        return self._value

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def publish(self, value: T) -> None:
        self._value = value
        for queue in list(self._queues.values()):
            queue.put_nowait(value)

    def subscribe(self) -> "Subscription[T]":
        token = next(self._ids)
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self._value)
        if self._closed:
            queue.put_nowait(_CLOSED)
        else:
            self._queues[token] = queue
        return Subscription(self, token, queue)

    def close(self) -> None:
        """End every subscription after its pending values are consumed."""
        self._closed = True
        for queue in self._queues.values():
            queue.put_nowait(_CLOSED)
        self._queues.clear()

    def _remove(self, token: int) -> None:
        self._queues.pop(token, None)


class Subscription(Generic[T]):
    def __init__(self, owner: StateBroadcaster[T], token: int, queue: asyncio.Queue):
        self._queue = queue
        self._finalizer = weakref.finalize(self, owner._remove, token)

    @property
    def active(self) -> bool:
        return self._finalizer.alive

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if not self._finalizer.alive and self._queue.empty():
            raise StopAsyncIteration
        value = await self._queue.get()
        if value is _CLOSED:
            self._finalizer()
            raise StopAsyncIteration
        return value

    async def aclose(self) -> None:
        self._finalizer()

    def cancel(self) -> None:
        self._finalizer()

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._finalizer()
