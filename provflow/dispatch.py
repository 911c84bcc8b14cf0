"""Workflow launcher for provflow."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from .constants import DEFAULT_TICK_TOPIC
from .contracts import TickMessage
from .persistence import WorkflowRepository
from .registry import StepRegistry, WorkflowTemplate
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class WorkflowLauncher:
    """Service responsible for launching new workflow instances."""

    def __init__(
        self,
        repository: WorkflowRepository,
        registry: StepRegistry,
        transport: Optional[BaseTransport] = None,
        topic: str = DEFAULT_TICK_TOPIC,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._transport = transport
        self._topic = topic

    def _resolve_steps(self, workflow: Union[str, WorkflowTemplate, List[str]]) -> List[str]:
        if isinstance(workflow, WorkflowTemplate):
            step_ids = list(workflow.step_ids)
        elif isinstance(workflow, str):
            step_ids = list(self._registry.template(workflow).step_ids)
        else:
            step_ids = list(workflow)
        if not step_ids:
            raise ValueError("a workflow needs at least one step")
        for step_id in step_ids:
            self._registry.get(step_id)
        return step_ids

    async def launch(
        self,
        workflow: Union[str, WorkflowTemplate, List[str]],
        payload: Optional[Dict[str, Any]] = None,
        instance_id: Optional[str] = None,
    ) -> str:
        """Persist a new instance and, with a transport, publish its first tick.

        Args:
            workflow: Template id, template or explicit list of step ids.
            payload: Launch parameters, immutable for the instance lifetime.
            instance_id: Optional caller-assigned identifier.

        Returns:
            Identifier of the new workflow instance.
        """
        step_ids = self._resolve_steps(workflow)
        instance_id = instance_id or str(uuid.uuid4())
        await self._repository.create_instance(instance_id, step_ids, payload or {})
        logger.info(f"Launched instance {instance_id} with steps {step_ids}")

        if self._transport is not None:
            await self._transport.publish(self._topic, TickMessage(instance_id=instance_id))
        return instance_id
