"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Dict

from .models import FailureRecord, InstanceStatus, LoopState, StepRecord, WorkflowInstance
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Reads return copies so callers never
    share mutable state with the store.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        self._step_id = 0

    # ------------------------------------------------------------------
    async def create_instance(
        self, instance_id: str, step_ids: list[str], payload: dict | None = None
    ) -> None:
        if instance_id in self._instances:
            raise ValueError(f"instance {instance_id!r} already exists")
        self._instances[instance_id] = WorkflowInstance(
            instance_id=instance_id,
            step_ids=list(step_ids),
            payload=copy.deepcopy(payload or {}),
        )

    async def set_state_key(self, instance_id: str, key: str, value: Any) -> None:
        wf = self._instances.get(instance_id)
        if wf:
            wf.state[key] = copy.deepcopy(value)

    async def save_loop(self, instance_id: str, loop: LoopState) -> None:
        wf = self._instances.get(instance_id)
        if wf:
            wf.loop = loop.model_copy(deep=True)

    async def mark_step_started(self, instance_id: str, step_name: str) -> None:
        wf = self._instances.get(instance_id)
        if not wf:
            return
        # ignore duplicate starts while the step is open
        for step in wf.steps:
            if step.step_name == step_name and step.completed_at is None:
                return
        self._step_id += 1
        wf.steps.append(
            StepRecord(
                id=self._step_id,
                instance_id=instance_id,
                step_name=step_name,
                started_at=datetime.now(timezone.utc),
            )
        )

    async def mark_step_completed(
        self,
        instance_id: str,
        step_name: str,
        status: str,
        error: str | None = None,
    ) -> None:
        wf = self._instances.get(instance_id)
        if not wf:
            return
        for step in wf.steps:
            if step.step_name == step_name and step.completed_at is None:
                step.completed_at = datetime.now(timezone.utc)
                step.status = status
                step.error = error
                break

    async def mark_instance_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        failure: FailureRecord | None = None,
    ) -> None:
        wf = self._instances.get(instance_id)
        if wf:
            wf.status = status
            if failure is not None:
                wf.failure = failure.model_copy()

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        wf = self._instances.get(instance_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_instances(self) -> list[WorkflowInstance]:
        return [wf.model_copy(deep=True) for wf in self._instances.values()]
