"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import WaitDecision


class InstanceStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not InstanceStatus.RUNNING


class StepRecord(BaseModel):
    """Record of an individual step execution."""

    id: Optional[int] = None
    instance_id: str
    step_name: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    status: Optional[str] = None
    error: Optional[str] = None


class LoopState(BaseModel):
    """Scheduler memento: where the instance is and what it is waiting for.

    ``generation`` counts executed ticks and ``due_at`` is when the next one
    may run. A tick message stamped with any other generation is stale.
    """

    step_index: int = 0
    pending: Optional[WaitDecision] = None
    attempts: int = 0
    generation: int = 0
    due_at: Optional[datetime] = None


class FailureRecord(BaseModel):
    error_type: str
    message: str
    step_name: Optional[str] = None
    on_fail_invoked: bool = False


class WorkflowInstance(BaseModel):
    """Persisted workflow instance data."""

    instance_id: str
    step_ids: list[str] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    state: dict[str, Any] = Field(default_factory=dict)
    status: InstanceStatus = InstanceStatus.RUNNING
    loop: LoopState = Field(default_factory=LoopState)
    failure: Optional[FailureRecord] = None
    steps: list[StepRecord] = Field(default_factory=list)

    @property
    def current_step(self) -> Optional[str]:
        if self.loop.step_index < len(self.step_ids):
            return self.step_ids[self.loop.step_index]
        return None
