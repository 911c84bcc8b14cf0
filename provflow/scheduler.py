"""Wait decision interpreter driving workflow instances step by step."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from .config import StepSettings
from .constants import DEFAULT_FUZZ_BAND
from .contracts import TickMessage, WaitDecision
from .errors import PollTimeoutError
from .persistence import (
    FailureRecord,
    InstanceStatus,
    LoopState,
    WorkflowInstance,
    WorkflowRepository,
)
from .registry import StepRegistry
from .services import StepServices
from .state import Payload, StepState
from .steps import START, Step, StepResult

logger = logging.getLogger(__name__)


async def pending_ticks(
    repository: WorkflowRepository, instance_id: Optional[str] = None
) -> List[TickMessage]:
    """Rebuild the current tick of every RUNNING instance from its persisted LoopState.

    Raises:
        LookupError: when ``instance_id`` names no instance.
    """
    if instance_id is not None:
        instance = await repository.get_instance(instance_id)
        if instance is None:
            raise LookupError(f"workflow instance {instance_id!r} not found")
        instances = [instance]
    else:
        instances = await repository.list_instances()
    return [
        TickMessage(
            instance_id=instance.instance_id,
            due_at=instance.loop.due_at or datetime.now(timezone.utc),
            generation=instance.loop.generation,
        )
        for instance in instances
        if not instance.status.is_terminal
    ]


class StepRunner:
    """Advances persisted workflow instances one tick at a time.

    A tick loads the instance fresh, invokes exactly one step method (plus the
    ``then_call`` of a poll that just succeeded), persists the outcome and
    returns the delay until the next tick, or ``None`` once the instance is
    terminal. Any exception marks the instance FAILED and reaches the step's
    ``on_fail`` exactly once.

    Every executed tick bumps the persisted ``LoopState.generation`` and
    records when the next one is due, so transport messages can be checked
    against the instance before they run.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        registry: StepRegistry,
        services: StepServices,
        settings: Optional[StepSettings] = None,
        fuzz_band: float = DEFAULT_FUZZ_BAND,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._services = services
        self._settings = settings or StepSettings()
        self._fuzz_band = fuzz_band
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def tick(self, instance_id: str) -> Optional[float]:
        """Run the next due method of ``instance_id``.

        Ticks of the same instance never overlap within this runner.
        """
        async with self._locks[instance_id]:
            delay = await self._tick(await self._load(instance_id))
        if delay is None:
            self._forget(instance_id)
        return delay

    async def advance(self, message: TickMessage) -> Optional[TickMessage]:
        """Run ``message`` if it is the current tick of its instance.

        Returns the tick to publish next. Stale messages (a generation the
        instance has already moved past) return ``None`` without running
        anything; a message that arrives before the persisted due time is
        handed back re-stamped with that time.
        """
        instance_id = message.instance_id
        async with self._locks[instance_id]:
            instance = await self._load(instance_id)
            loop = instance.loop
            if instance.status.is_terminal:
                follow_up = None
            elif message.generation != loop.generation:
                logger.info(
                    f"Dropping stale tick of instance {instance_id}: generation "
                    f"{message.generation}, current {loop.generation}"
                )
                return None
            elif loop.due_at is not None and datetime.now(timezone.utc) < loop.due_at:
                logger.debug(f"Tick of instance {instance_id} arrived early")
                return message.model_copy(update={"due_at": loop.due_at})
            else:
                delay = await self._tick(instance)
                follow_up = None
                if delay is not None:
                    follow_up = TickMessage(
                        instance_id=instance_id,
                        due_at=datetime.now(timezone.utc) + timedelta(seconds=delay),
                        generation=loop.generation + 1,
                    )
        if follow_up is None:
            self._forget(instance_id)
        return follow_up

    async def pending_ticks(self, instance_id: Optional[str] = None) -> List[TickMessage]:
        return await pending_ticks(self._repository, instance_id)

    async def run_to_completion(
        self,
        instance_id: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> WorkflowInstance:
        """Tick until terminal, sleeping between ticks with ``sleep``."""
        while True:
            delay = await self.tick(instance_id)
            if delay is None:
                break
            await sleep(delay)
        return await self._load(instance_id)

    def _forget(self, instance_id: str) -> None:
        lock = self._locks.get(instance_id)
        if lock is not None and not lock.locked():
            del self._locks[instance_id]

    async def _load(self, instance_id: str) -> WorkflowInstance:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise LookupError(f"workflow instance {instance_id!r} not found")
        return instance

    async def _tick(self, instance: WorkflowInstance) -> Optional[float]:
        instance_id = instance.instance_id
        if instance.status.is_terminal:
            logger.debug(f"Instance {instance_id} is already {instance.status.value}")
            return None

        step_name = instance.current_step
        if step_name is None:
            await self._repository.mark_instance_status(instance_id, InstanceStatus.COMPLETED)
            return None

        step: Optional[Step] = None
        try:
            step = self._build_step(instance, step_name)
            loop = instance.loop
            pending = loop.pending

            if pending is None:
                logger.info(f"Starting step {step_name} of instance {instance_id}")
                await self._repository.mark_step_started(instance_id, step_name)
                result = await step.invoke(START)
            elif pending.is_poll:
                attempts = loop.attempts + 1
                logger.debug(
                    f"Instance {instance_id} step {step_name}: check {pending.check} "
                    f"attempt {attempts}/{pending.max_attempts}"
                )
                if await step.invoke(pending.check) is not True:
                    if attempts >= (pending.max_attempts or 0):
                        raise PollTimeoutError(pending.check, attempts)
                    return await self._schedule(
                        instance,
                        loop.model_copy(update={"attempts": attempts}),
                        pending.next_delay(self._fuzz_band),
                    )
                if pending.then_call is None:
                    return await self._complete_step(instance, step_name)
                result = await step.invoke(pending.then_call)
            else:
                result = await step.invoke(pending.then_call)

            return await self._handle_result(instance, step_name, result)
        except Exception as e:
            await self._fail(instance, step_name, step, e)
            return None

    def _build_step(self, instance: WorkflowInstance, step_name: str) -> Step:
        return self._registry.create(
            step_name,
            instance_id=instance.instance_id,
            payload=Payload(instance.payload),
            state=StepState(instance.instance_id, instance.state, self._repository),
            services=self._services,
            settings=self._settings,
        )

    async def _handle_result(
        self, instance: WorkflowInstance, step_name: str, result: StepResult
    ) -> Optional[float]:
        if isinstance(result, WaitDecision):
            delay = await self._schedule(
                instance,
                LoopState(step_index=instance.loop.step_index, pending=result),
                result.next_delay(self._fuzz_band),
            )
            logger.info(
                f"Instance {instance.instance_id} step {step_name} waits {delay:.1f}s "
                f"(check={result.check}, then_call={result.then_call})"
            )
            return delay
        return await self._complete_step(instance, step_name)

    async def _complete_step(
        self, instance: WorkflowInstance, step_name: str
    ) -> Optional[float]:
        instance_id = instance.instance_id
        await self._repository.mark_step_completed(instance_id, step_name, status="completed")
        next_index = instance.loop.step_index + 1
        delay = await self._schedule(instance, LoopState(step_index=next_index), 0.0)
        logger.info(f"Step {step_name} of instance {instance_id} completed")

        if next_index < len(instance.step_ids):
            return delay
        await self._repository.mark_instance_status(instance_id, InstanceStatus.COMPLETED)
        logger.info(f"Instance {instance_id} completed")
        return None

    async def _schedule(
        self, instance: WorkflowInstance, loop: LoopState, delay: float
    ) -> float:
        """Persist ``loop`` as the next generation, due ``delay`` seconds from now."""
        loop = loop.model_copy(
            update={
                "generation": instance.loop.generation + 1,
                "due_at": datetime.now(timezone.utc) + timedelta(seconds=delay),
            }
        )
        await self._repository.save_loop(instance.instance_id, loop)
        return delay

    async def _fail(
        self,
        instance: WorkflowInstance,
        step_name: str,
        step: Optional[Step],
        error: Exception,
    ) -> None:
        instance_id = instance.instance_id
        logger.error(
            f"Step {step_name} of instance {instance_id} failed: "
            f"{type(error).__name__}: {error}"
        )
        failure = FailureRecord(
            error_type=type(error).__name__,
            message=str(error),
            step_name=step_name,
            on_fail_invoked=step is not None,
        )
        await self._repository.mark_step_completed(
            instance_id, step_name, status="failed", error=str(error)
        )
        # terminal before compensation so a redelivered tick cannot run on_fail again
        await self._repository.mark_instance_status(
            instance_id, InstanceStatus.FAILED, failure=failure
        )
        if step is not None:
            await step.safe_on_fail(error)
