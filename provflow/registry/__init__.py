"""Step registry: step classes by stable name plus workflow templates."""

from __future__ import annotations

from typing import Dict, Optional, Type

from ..config import StepSettings
from ..services import StepServices
from ..state import Payload, StepState
from ..steps import BUILTIN_STEPS, Step
from .models import RegistrySnapshot, SemanticVersion, StepDescriptor, WorkflowTemplate


class StepRegistry:
    """Maps step ids onto step classes and builds fresh step instances."""

    def __init__(self) -> None:
        self._steps: Dict[str, Type[Step]] = {}
        self._templates: Dict[str, WorkflowTemplate] = {}

    def register(self, step_cls: Type[Step], name: Optional[str] = None) -> StepDescriptor:
        step_id = name or step_cls.name
        if not step_id:
            raise ValueError(f"{step_cls.__name__} has no step name")
        existing = self._steps.get(step_id)
        if existing is not None and existing is not step_cls:
            raise ValueError(f"step {step_id!r} is already registered")
        self._steps[step_id] = step_cls
        return self.describe(step_id)

    def register_template(self, template: WorkflowTemplate) -> None:
        missing = [s for s in template.step_ids if s not in self._steps]
        if missing:
            raise ValueError(f"template {template.id!r} uses unregistered steps: {missing}")
        self._templates[template.id] = template

    def get(self, step_id: str) -> Type[Step]:
        try:
            return self._steps[step_id]
        except KeyError:
            raise LookupError(f"step {step_id!r} is not registered") from None

    def template(self, template_id: str) -> WorkflowTemplate:
        try:
            return self._templates[template_id]
        except KeyError:
            raise LookupError(f"workflow template {template_id!r} is not registered") from None

    def describe(self, step_id: str) -> StepDescriptor:
        step_cls = self.get(step_id)
        return StepDescriptor(
            name=step_id,
            version=SemanticVersion.parse(step_cls.version),
            description=step_cls.description or None,
            continuations=[member.value for member in step_cls.Continuation],
        )

    def create(
        self,
        step_id: str,
        *,
        instance_id: str,
        payload: Payload,
        state: StepState,
        services: StepServices,
        settings: Optional[StepSettings] = None,
    ) -> Step:
        return self.get(step_id)(
            instance_id=instance_id,
            payload=payload,
            state=state,
            services=services,
            settings=settings,
        )

    def snapshot(self) -> RegistrySnapshot:
        return RegistrySnapshot(
            steps=[self.describe(step_id) for step_id in sorted(self._steps)],
            templates=list(self._templates.values()),
        )


def default_registry() -> StepRegistry:
    """Registry holding the built-in steps and one template per step."""
    registry = StepRegistry()
    for step_cls in BUILTIN_STEPS:
        registry.register(step_cls)
        registry.register_template(
            WorkflowTemplate(id=step_cls.name, title=step_cls.description, step_ids=[step_cls.name])
        )
    return registry


__all__ = [
    "RegistrySnapshot",
    "SemanticVersion",
    "StepDescriptor",
    "StepRegistry",
    "WorkflowTemplate",
    "default_registry",
]
