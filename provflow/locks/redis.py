"""Redis lock service shared by workers in different processes."""

from __future__ import annotations

import uuid
from typing import Any, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from .base import LockService

# delete only if the caller still owns the lock
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisLockService(LockService):
    """``SET NX EX`` locks with compare-and-delete release."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        expires_in: int = 25,
        client: Optional[Any] = None,
    ) -> None:
        super().__init__(expires_in)
        if client is None and redis is None:
            raise ImportError("redis package is required for RedisLockService")

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
        await self._redis.ping()

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def _key(lock_key: str) -> str:
        return f"provflow:lock:{lock_key}"

    async def obtain_write_lock(self, lock_key: str, expires_in: int) -> Optional[str]:
        if not self._redis:
            await self.connect()
        token = uuid.uuid4().hex
        acquired = await self._redis.set(self._key(lock_key), token, nx=True, ex=expires_in)
        return token if acquired else None

    async def release_write_lock(self, lock_key: str, token: str) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.eval(_RELEASE_SCRIPT, 1, self._key(lock_key), token)
