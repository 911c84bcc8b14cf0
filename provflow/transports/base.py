"""Delivery contract for tick messages."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import TickMessage

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Carries tick messages from launchers and workers to workers.

    Delivery is at least once. A received tick stays in flight until the
    worker acks it, and ``recover`` returns whatever a dead worker left in
    flight to the queue. Duplicates are expected; the runner drops any tick
    whose generation the instance has moved past.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, message: TickMessage) -> None:
        """Enqueue a tick. Workers hold it until ``message.due_at``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, TickMessage]]:
        """Move ticks from the queue into flight and yield them.

        Args:
            topic: Tick topic to consume.
            lifespan: Seconds to keep consuming. ``None`` runs until cancelled.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Drop a handled tick from flight."""
        raise NotImplementedError

    async def requeue(
        self, topic: str, raw_message: RawMessageT, message: TickMessage
    ) -> None:
        """Replace an in-flight tick with ``message``.

        The replacement is published before the original is acked, so a crash
        in between leaves a duplicate rather than nothing.
        """
        await self.publish(topic, message)
        await self.ack(raw_message)

    async def recover(self, topic: str) -> int:
        """Return ticks left in flight on ``topic`` to its queue.

        Returns the number of ticks moved. Brokers without an in-flight area
        have nothing to recover.
        """
        return 0
