"""Named lock services guarding shared policy documents."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ProvflowConfig, load_config
from .base import LockService
from .inmemory import InMemoryLockService


def get_lock_service(
    backend: Optional[str] = None, config: Optional[ProvflowConfig] = None
) -> LockService:
    """Build the lock service named by ``backend``, ``PROVFLOW_LOCKS`` or the config.

    Policy updates from several worker processes only exclude each other
    through the Redis service.
    """
    config = config or load_config()
    name = (backend or os.getenv("PROVFLOW_LOCKS") or config.locks.backend).lower()
    expires_in = config.locks.expires_in

    if name == "inmemory":
        return InMemoryLockService(expires_in=expires_in)
    if name == "redis":
        from .redis import RedisLockService

        return RedisLockService(**config.locks.redis.model_dump(), expires_in=expires_in)
    raise ValueError(f"Unsupported lock backend: {name}")


__all__ = ["LockService", "InMemoryLockService", "get_lock_service"]
