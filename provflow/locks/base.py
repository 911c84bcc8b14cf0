"""Named write locks with fail-fast acquisition."""

from __future__ import annotations

import abc
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..constants import DEFAULT_LOCK_EXPIRES_IN
from ..errors import LockContentionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LockService(metaclass=abc.ABCMeta):
    """Exclusive locks keyed by an arbitrary string.

    A lock expires ``expires_in`` seconds after it was obtained so a crashed
    holder cannot block the key forever.
    """

    def __init__(self, expires_in: int = DEFAULT_LOCK_EXPIRES_IN) -> None:
        self.expires_in = expires_in

    @abc.abstractmethod
    async def obtain_write_lock(self, lock_key: str, expires_in: int) -> Optional[str]:
        """Return a write token, or ``None`` when the lock is held."""
        raise NotImplementedError

    @abc.abstractmethod
    async def release_write_lock(self, lock_key: str, token: str) -> None:
        """Release the lock if ``token`` still owns it."""
        raise NotImplementedError

    async def try_write_lock_and_run(
        self,
        lock_key: str,
        fn: Callable[[], Awaitable[T]],
        expires_in: Optional[int] = None,
    ) -> T:
        """Run ``fn`` while holding ``lock_key``.

        Raises:
            LockContentionError: immediately if the lock is already held.
        """
        token = await self.obtain_write_lock(lock_key, expires_in or self.expires_in)
        if token is None:
            raise LockContentionError(lock_key)
        logger.debug(f"Obtained lock {lock_key}")
        try:
            return await fn()
        finally:
            try:
                await self.release_write_lock(lock_key, token)
            except Exception as e:
                logger.info(f"The release of lock {lock_key} has an issue: {e}")
