"""Lock service tests."""

import pytest

from provflow.errors import LockContentionError
from provflow.locks.inmemory import InMemoryLockService
from provflow.locks.redis import RedisLockService


class FakeRedis:
    """Just enough of redis.asyncio for the lock service."""

    def __init__(self):
        self.values = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def eval(self, script, numkeys, key, token):
        if self.values.get(key) == token:
            del self.values[key]
            return 1
        return 0


@pytest.mark.asyncio
async def test_held_lock_fails_fast():
    locks = InMemoryLockService()
    token = await locks.obtain_write_lock("policy|bucket", 25)
    assert token is not None

    async def never_runs():
        raise AssertionError("must not run while the lock is held")

    with pytest.raises(LockContentionError) as exc:
        await locks.try_write_lock_and_run("policy|bucket", never_runs)
    assert exc.value.lock_key == "policy|bucket"


@pytest.mark.asyncio
async def test_lock_released_when_fn_raises():
    locks = InMemoryLockService()

    async def boom():
        raise RuntimeError("merge failed")

    with pytest.raises(RuntimeError):
        await locks.try_write_lock_and_run("policy|bucket", boom)
    assert not locks.is_locked("policy|bucket")


@pytest.mark.asyncio
async def test_expired_lock_can_be_taken_over():
    locks = InMemoryLockService()
    assert await locks.obtain_write_lock("k", 0) is not None
    assert await locks.obtain_write_lock("k", 25) is not None


@pytest.mark.asyncio
async def test_release_ignores_foreign_token():
    locks = InMemoryLockService()
    await locks.obtain_write_lock("k", 25)
    await locks.release_write_lock("k", "someone-else")
    assert locks.is_locked("k")


@pytest.mark.asyncio
async def test_redis_lock_set_nx_and_compare_delete():
    client = FakeRedis()
    locks = RedisLockService(client=client, expires_in=10)

    token = await locks.obtain_write_lock("policy|bucket", 10)
    assert token is not None
    assert await locks.obtain_write_lock("policy|bucket", 10) is None

    await locks.release_write_lock("policy|bucket", "stale")
    assert "provflow:lock:policy|bucket" in client.values

    await locks.release_write_lock("policy|bucket", token)
    assert client.values == {}


@pytest.mark.asyncio
async def test_redis_try_write_lock_and_run_returns_result():
    locks = RedisLockService(client=FakeRedis())

    async def work():
        return "done"

    assert await locks.try_write_lock_and_run("k", work) == "done"
