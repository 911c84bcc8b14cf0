"""In-process lock service for tests and single-process workers."""

from __future__ import annotations

import time
import uuid
from typing import Dict, Optional, Tuple

from .base import LockService


class InMemoryLockService(LockService):
    """Locks held in a dict; check-and-set runs without an await point."""

    def __init__(self, expires_in: int = 25) -> None:
        super().__init__(expires_in)
        self._locks: Dict[str, Tuple[str, float]] = {}

    def is_locked(self, lock_key: str) -> bool:
        held = self._locks.get(lock_key)
        return held is not None and held[1] > time.monotonic()

    async def obtain_write_lock(self, lock_key: str, expires_in: int) -> Optional[str]:
        if self.is_locked(lock_key):
            return None
        token = uuid.uuid4().hex
        self._locks[lock_key] = (token, time.monotonic() + expires_in)
        return token

    async def release_write_lock(self, lock_key: str, token: str) -> None:
        held = self._locks.get(lock_key)
        if held is not None and held[0] == token:
            del self._locks[lock_key]
