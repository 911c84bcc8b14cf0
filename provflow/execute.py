"""Worker that drives many workflow instances from a tick transport."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

from .constants import DEFAULT_TICK_TOPIC
from .contracts import TickMessage
from .scheduler import StepRunner
from .transports import BaseTransport
from .utils.retry import compute_backoff

logger = logging.getLogger(__name__)

InFlight = Tuple[Any, TickMessage]


class StepWorker:
    """Executes due ticks by listening to transport messages.

    Every received tick runs in its own task: it sleeps until the tick is due,
    advances the instance through the runner, publishes the follow-up tick
    and only then acks the received one. Instances proceed concurrently; the
    runner keeps ticks of one instance sequential.

    Stopping hands ticks that are still sleeping back to the transport, so
    another worker picks them up. A tick whose run raises (a repository or
    broker outage; step errors fail the instance instead) is handed back with
    exponential backoff.
    """

    def __init__(
        self,
        transport: BaseTransport,
        runner: StepRunner,
        topic: str = DEFAULT_TICK_TOPIC,
        max_retry_delay: float = 300.0,
    ) -> None:
        self._transport = transport
        self._runner = runner
        self._topic = topic
        self._max_retry_delay = max_retry_delay
        self._tasks: Dict[asyncio.Task, InFlight] = {}
        self._sleeping: Dict[asyncio.Task, InFlight] = {}
        self.handled_ticks = 0

    async def start(self, lifespan: Optional[float] = None, recover: bool = False) -> None:
        """Start listening for tick messages on the worker topic.

        Args:
            lifespan: Seconds to keep consuming; ``None`` runs until cancelled.
            recover: Resume stranded instances before consuming.
        """
        if recover:
            await self.recover()
        try:
            async for raw_message, message in self._transport.subscribe(
                self._topic, lifespan=lifespan
            ):
                task = asyncio.create_task(self._handle_tick(raw_message, message))
                self._tasks[task] = self._sleeping[task] = (raw_message, message)
                task.add_done_callback(self._discard)
        finally:
            await self.stop()

    async def recover(self) -> int:
        """Requeue stranded ticks and republish the current tick of every RUNNING instance.

        Returns the number of ticks republished from persisted state. Ticks
        that duplicate one still queued are dropped as stale when they run.
        """
        await self._transport.recover(self._topic)
        ticks = await self._runner.pending_ticks()
        for tick in ticks:
            await self._transport.publish(self._topic, tick)
        logger.info(f"Republished {len(ticks)} ticks of running instances on {self._topic}")
        return len(ticks)

    async def stop(self) -> None:
        """Hand back ticks still waiting to become due and let running ticks finish."""
        sleeping = dict(self._sleeping)
        for task in sleeping:
            task.cancel()
        if sleeping:
            await asyncio.gather(*sleeping, return_exceptions=True)
        for task, (raw_message, message) in sleeping.items():
            if task.cancelled():
                await self._transport.requeue(self._topic, raw_message, message)
        if sleeping:
            logger.info(f"Handed back {len(sleeping)} waiting ticks on {self._topic}")

        running = list(self._tasks)
        if running:
            await asyncio.gather(*running, return_exceptions=True)

    def _discard(self, task: asyncio.Task) -> None:
        self._tasks.pop(task, None)
        self._sleeping.pop(task, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Tick task failed: {task.exception()!r}")

    async def _handle_tick(self, raw_message: Any, message: TickMessage) -> None:
        await asyncio.sleep(message.seconds_until_due())
        self._sleeping.pop(asyncio.current_task(), None)

        instance_id = message.instance_id
        try:
            follow_up = await self._runner.advance(message)
        except LookupError as e:
            logger.warning(f"Dropping tick: {e}")
            await self._transport.ack(raw_message)
            return
        except Exception:
            delay = min(compute_backoff(message.redeliveries), self._max_retry_delay)
            logger.exception(f"Tick for instance {instance_id} failed; retrying in {delay:.1f}s")
            await self._transport.requeue(
                self._topic, raw_message, message.redelivered(delay)
            )
            return
        finally:
            self.handled_ticks += 1

        if follow_up is None:
            logger.debug(f"No follow-up tick for instance {instance_id}")
        else:
            await self._transport.publish(self._topic, follow_up)
        await self._transport.ack(raw_message)
