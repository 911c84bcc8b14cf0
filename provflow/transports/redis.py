"""Redis transport for cross-process messaging."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from pydantic import ValidationError

from ..contracts import TickMessage
from .base import BaseTransport

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport[Tuple[str, str]]):
    """Reliable-queue transport on Redis lists.

    Ticks are LPUSHed onto ``provflow:<topic>`` and BLMOVEd into
    ``provflow:<topic>:processing`` on receipt; an ack LREMs them from there.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        if client is None and redis is None:
            raise ImportError("redis package is required for RedisTransport")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = client

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        # Test connection
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def _queue(topic: str) -> str:
        return f"provflow:{topic}"

    @staticmethod
    def _processing(topic: str) -> str:
        return f"provflow:{topic}:processing"

    async def publish(self, topic: str, message: TickMessage) -> None:
        """Publish message to Redis list (acting as queue)."""
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self._queue(topic), message.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Tuple[str, str], TickMessage]]:
        """Move ticks into the topic's processing list and yield them."""
        if not self._redis:
            await self.connect()

        queue_name = self._queue(topic)
        processing = self._processing(topic)
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time:
                elapsed = loop.time() - start_time
                if elapsed >= lifespan:
                    break

            # Blocking move with timeout; the tick stays in processing until acked
            message_json = await self._redis.blmove(
                queue_name, processing, 1, src="RIGHT", dest="LEFT"
            )

            if message_json:
                try:
                    message = TickMessage.from_json(message_json)
                except ValidationError as e:
                    logger.warning(f"Discarding unparsable tick: {e}")
                    await self._redis.lrem(processing, 1, message_json)
                    continue
                yield (processing, message_json), message

            # Brief sleep to prevent busy waiting when no messages
            await asyncio.sleep(0.01)

    async def ack(self, raw_message: Tuple[str, str]) -> None:
        """Remove the tick from the processing list it was moved to."""
        processing, message_json = raw_message
        await self._redis.lrem(processing, 1, message_json)

    async def recover(self, topic: str) -> int:
        """Push every tick left in processing back onto the consuming end of the queue."""
        if not self._redis:
            await self.connect()
        moved = 0
        while await self._redis.lmove(
            self._processing(topic), self._queue(topic), src="RIGHT", dest="RIGHT"
        ):
            moved += 1
        if moved:
            logger.info(f"Recovered {moved} in-flight ticks on {topic}")
        return moved
