"""Transport tests."""

from datetime import datetime, timezone

import pytest

from provflow.contracts import TickMessage
from provflow.transports.inmemory import InMemoryTransport
from provflow.transports.redis import RedisTransport


class FakeRedis:
    def __init__(self):
        self.lists = {}

    async def ping(self):
        return True

    async def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)

    async def lmove(self, source, destination, src="LEFT", dest="RIGHT"):
        items = self.lists.get(source) or []
        if not items:
            return None
        value = items.pop(0 if src == "LEFT" else -1)
        target = self.lists.setdefault(destination, [])
        if dest == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        return value

    async def blmove(self, source, destination, timeout, src="LEFT", dest="RIGHT"):
        return await self.lmove(source, destination, src=src, dest=dest)

    async def lrem(self, key, count, value):
        items = self.lists.get(key) or []
        if value in items:
            items.remove(value)
            return 1
        return 0

    async def aclose(self):
        pass


@pytest.mark.asyncio
async def test_inmemory_transport_basic():
    """Test basic InMemoryTransport publish/subscribe."""
    transport = InMemoryTransport()
    due = datetime(2030, 1, 1, tzinfo=timezone.utc)

    await transport.publish("ticks", TickMessage(instance_id="inst-1", due_at=due))
    assert transport.pending("ticks") == 1

    message_received = False
    async for raw_msg, received in transport.subscribe("ticks"):
        assert received.instance_id == "inst-1"
        assert received.due_at == due

        await transport.ack(raw_msg)
        message_received = True
        break

    assert message_received
    assert transport.pending("ticks") == 0


@pytest.mark.asyncio
async def test_inmemory_subscribe_honours_lifespan():
    transport = InMemoryTransport(poll_interval=0.01)
    received = [m async for _, m in transport.subscribe("ticks", lifespan=0.05)]
    assert received == []


@pytest.mark.asyncio
async def test_redis_transport_round_trip():
    client = FakeRedis()
    transport = RedisTransport(client=client)
    assert transport.host == "localhost"
    assert transport.port == 6379

    await transport.publish("ticks", TickMessage(instance_id="inst-1"))
    await transport.publish("ticks", TickMessage(instance_id="inst-2"))
    assert len(client.lists["provflow:ticks"]) == 2

    received = []
    async for raw, message in transport.subscribe("ticks", lifespan=0.5):
        received.append(message.instance_id)
        await transport.ack(raw)
        if len(received) == 2:
            break
    assert received == ["inst-1", "inst-2"]


@pytest.mark.asyncio
async def test_inmemory_unacked_ticks_are_recovered():
    transport = InMemoryTransport(poll_interval=0.01)
    await transport.publish("ticks", TickMessage(instance_id="inst-1"))

    async for _, message in transport.subscribe("ticks"):
        break
    assert transport.pending("ticks") == 0
    assert transport.in_flight("ticks") == 1

    assert await transport.recover("ticks") == 1
    assert transport.pending("ticks") == 1
    assert transport.in_flight("ticks") == 0


@pytest.mark.asyncio
async def test_inmemory_requeue_replaces_in_flight_tick():
    transport = InMemoryTransport(poll_interval=0.01)
    await transport.publish("ticks", TickMessage(instance_id="inst-1", generation=4))

    async for raw, message in transport.subscribe("ticks"):
        await transport.requeue("ticks", raw, message.redelivered(30))
        break

    assert transport.in_flight("ticks") == 0
    requeued = transport.published[-1][1]
    assert requeued.generation == 4
    assert requeued.redeliveries == 1
    assert requeued.seconds_until_due() > 25


@pytest.mark.asyncio
async def test_redis_ticks_stay_in_processing_until_acked():
    client = FakeRedis()
    transport = RedisTransport(client=client)
    await transport.publish("ticks", TickMessage(instance_id="inst-1"))

    async for raw, message in transport.subscribe("ticks", lifespan=0.5):
        break
    assert client.lists["provflow:ticks"] == []
    assert len(client.lists["provflow:ticks:processing"]) == 1

    assert await transport.recover("ticks") == 1
    assert client.lists["provflow:ticks:processing"] == []

    async for raw, message in transport.subscribe("ticks", lifespan=0.5):
        await transport.ack(raw)
        break
    assert message.instance_id == "inst-1"
    assert client.lists["provflow:ticks:processing"] == []
    assert client.lists["provflow:ticks"] == []
