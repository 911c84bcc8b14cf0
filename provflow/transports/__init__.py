"""Tick transports and the configured-transport factory."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ProvflowConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport


def get_transport(
    backend: Optional[str] = None, config: Optional[ProvflowConfig] = None
) -> BaseTransport:
    """Build the tick transport named by ``backend``, ``PROVFLOW_TRANSPORT`` or the config.

    Workers and launchers of one deployment must share a broker; the
    in-memory transport only connects coroutines of a single process.
    """
    config = config or load_config()
    name = (backend or os.getenv("PROVFLOW_TRANSPORT") or config.transport.backend).lower()

    if name == "inmemory":
        return InMemoryTransport()
    if name == "redis":
        from .redis import RedisTransport

        return RedisTransport(**config.transport.redis.model_dump())
    raise ValueError(f"Unsupported transport backend: {name}")


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
