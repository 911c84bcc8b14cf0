"""State keys and helpers shared by the environment steps."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..backends.models import Credentials
from ..backends.status import STACK_FAILED, StatusClass, classify_stack_status
from ..errors import BackendOperationFailed
from .base import Step

logger = logging.getLogger(__name__)

REQUEST_CONTEXT = "REQUEST_CONTEXT"
STACK_ID = "STACK_ID"
ENVIRONMENT_ID = "ENVIRONMENT_ID"
S3_STUDY_PREFIXES = "S3_STUDY_PREFIXES"

ENVIRONMENT_KIND = "environment"


def principal_name(request_context: Dict[str, Any]) -> str:
    principal = request_context.get("principalIdentifier") or {}
    return principal.get("username") or principal.get("uid") or "system"


def stack_failure(status: str, reason: Optional[str]) -> BackendOperationFailed:
    return BackendOperationFailed(reason or f"stack operation ended in {status}", status=status)


def classify_provisioning_status(status: str, reason: Optional[str]) -> StatusClass:
    """Classify a stack being created; a deleted stack counts as a failure."""
    bucket = classify_stack_status(status)
    if bucket is StatusClass.FAILED:
        raise stack_failure(status, reason)
    if status == "DELETE_COMPLETE":
        raise BackendOperationFailed("stack deleted before provisioning completed", status=status)
    return bucket


class EnvironmentStep(Step):
    """Base for steps operating on one environment record and its stack."""

    def environment_id(self) -> str:
        return self.state.optional_string(ENVIRONMENT_ID) or self.payload.string("environmentId")

    async def cfn_credentials(self) -> Credentials:
        request_context = self.state.optional_object(REQUEST_CONTEXT) or self.payload.object(
            "requestContext"
        )
        return await self.assume_role(
            self.payload.string("cfnExecutionRole"),
            f"provflow-{principal_name(request_context)}",
            self.payload.string("roleExternalId"),
        )

    async def update_environment(self, changes: Dict[str, Any]) -> None:
        environment_id = self.environment_id()
        logger.info(f"Updating environment {environment_id}: {sorted(changes)}")
        await self.services.require("resources").update(
            ENVIRONMENT_KIND, environment_id, changes
        )

    async def failed_event_reasons(self, stack_id: str) -> str:
        credentials = await self.cfn_credentials()
        events = await self.services.require("stacks").describe_events(credentials, stack_id)
        return " ".join(
            event.resource_status_reason or ""
            for event in events
            if event.resource_status in STACK_FAILED
        )
