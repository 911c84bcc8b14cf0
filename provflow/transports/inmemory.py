"""In-process tick queue for tests and local runs."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from ..contracts import TickMessage
from .base import BaseTransport

RawTick = Tuple[str, TickMessage]


class InMemoryTransport(BaseTransport[RawTick]):
    """Per-topic FIFO queues with an in-flight list per topic.

    ``published`` records every publish in order so tests can inspect the
    tick chain of an instance.
    """

    def __init__(self, poll_interval: float = 0.1) -> None:
        self._queues: Dict[str, Deque[RawTick]] = defaultdict(deque)
        self._in_flight: Dict[str, List[RawTick]] = defaultdict(list)
        self._lock = asyncio.Lock()
        self._poll_interval = poll_interval
        self.published: list[Tuple[str, TickMessage]] = []

    async def publish(self, topic: str, message: TickMessage) -> None:
        async with self._lock:
            self._queues[topic].append((topic, message))
            self.published.append((topic, message))

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])

    def in_flight(self, topic: str) -> int:
        return len(self._in_flight[topic])

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawTick, TickMessage]]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None

        while deadline is None or loop.time() < deadline:
            async with self._lock:
                raw_message = None
                if self._queues[topic]:
                    raw_message = self._queues[topic].popleft()
                    self._in_flight[topic].append(raw_message)
            if raw_message is not None:
                yield raw_message, raw_message[1]
                continue

            await asyncio.sleep(self._poll_interval)

    async def ack(self, raw_message: RawTick) -> None:
        async with self._lock:
            in_flight = self._in_flight[raw_message[0]]
            for index, candidate in enumerate(in_flight):
                if candidate is raw_message:
                    del in_flight[index]
                    break

    async def recover(self, topic: str) -> int:
        async with self._lock:
            stranded = self._in_flight.pop(topic, [])
            self._queues[topic].extend(stranded)
        return len(stranded)
