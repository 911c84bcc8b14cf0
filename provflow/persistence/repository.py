"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Any, Protocol

from .models import FailureRecord, InstanceStatus, LoopState, WorkflowInstance


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends."""

    async def create_instance(
        self, instance_id: str, step_ids: list[str], payload: dict | None = None
    ) -> None:
        """Persist a new running instance with empty state."""

    async def set_state_key(self, instance_id: str, key: str, value: Any) -> None:
        """Write one state key (last write wins)."""

    async def save_loop(self, instance_id: str, loop: LoopState) -> None:
        """Persist the scheduler memento."""

    async def mark_step_started(self, instance_id: str, step_name: str) -> None:
        """Record start of a step."""

    async def mark_step_completed(
        self,
        instance_id: str,
        step_name: str,
        status: str,
        error: str | None = None,
    ) -> None:
        """Record completion of a step."""

    async def mark_instance_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        failure: FailureRecord | None = None,
    ) -> None:
        """Set the instance status and, for failures, the failure record."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve the instance by id."""

    async def list_instances(self) -> list[WorkflowInstance]:
        """Return all persisted instances."""
