"""Tears down a workspace environment after revoking its data access."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from ..backends.status import StatusClass, classify_stack_status
from ..errors import BenignCleanupError, LockContentionError
from ..policy.access import DataAccessManager
from .common import (
    ENVIRONMENT_ID,
    ENVIRONMENT_KIND,
    REQUEST_CONTEXT,
    STACK_ID,
    EnvironmentStep,
    stack_failure,
)

logger = logging.getLogger(__name__)


class DeleteEnvironment(EnvironmentStep):
    """Revoke, clean up, delete the stack and wait for it to disappear.

    The workspace role is removed from shared policies before the stack that
    owns the role is deleted; a policy still naming a deleted role would be
    rejected on its next write.
    """

    name = "delete-environment"
    description = "Terminate a workspace environment"

    class Continuation(str, Enum):
        REVOKE_ACCESS = "revoke_access"
        DELETE_STACK = "delete_stack"
        CHECK_CFN_COMPLETED = "check_cfn_completed"
        MARK_TERMINATED = "mark_terminated"

    async def start(self):
        environment_id = self.payload.string("environmentId")
        await self.state.set_key(ENVIRONMENT_ID, environment_id)
        await self.state.set_key(REQUEST_CONTEXT, self.payload.object("requestContext"))

        record = await self.services.require("resources").must_find(
            ENVIRONMENT_KIND, environment_id
        )
        stack_id = record.data.get("stackId")
        if not stack_id:
            logger.info(f"Environment {environment_id} has no stack; nothing to clean up")
            await self.mark_terminated()
            return None

        await self.state.set_key(STACK_ID, stack_id)
        logger.info(f"Deleting stack {stack_id} for environment {environment_id}")

        if not await self.revoke_access():
            return (
                self.wait(20, fuzz=True)
                .max_attempts(10)
                .until(self.Continuation.REVOKE_ACCESS)
                .then_call(self.Continuation.DELETE_STACK)
            )
        return await self.delete_stack()

    async def revoke_access(self) -> bool:
        record = await self.services.require("resources").must_find(
            ENVIRONMENT_KIND, self.environment_id()
        )
        instance_info = record.data.get("instanceInfo") or {}
        role_arn = instance_info.get("WorkspaceInstanceRoleArn")
        prefixes = instance_info.get("s3Prefixes") or []
        if not role_arn or not prefixes:
            return True

        access = DataAccessManager(self.services.policy_updater(), self.settings)
        try:
            await access.revoke_study_access(role_arn, prefixes)
        except LockContentionError as e:
            logger.info(f"{e}; revocation will be retried before deletion")
            return False
        return True

    async def delete_stack(self):
        stack_id = self.state.string(STACK_ID)
        credentials = await self.cfn_credentials()
        await asyncio.gather(
            self.delete_keypair(),
            self.update_environment({"status": "TERMINATING"}),
            self.services.require("stacks").delete(credentials, stack_id),
        )
        return (
            self.wait(80, fuzz=True)
            .max_attempts(120)
            .until(self.Continuation.CHECK_CFN_COMPLETED)
            .then_call(self.Continuation.MARK_TERMINATED)
        )

    async def delete_keypair(self) -> None:
        request_context = self.state.optional_object(REQUEST_CONTEXT) or {}
        try:
            await self.services.require("keypairs").delete(
                request_context, self.environment_id()
            )
        except BenignCleanupError as e:
            logger.info(f"Skipping key pair cleanup: {e}")

    async def check_cfn_completed(self) -> bool:
        stack_id = self.state.string(STACK_ID)
        description = await self.describe_stack(await self.cfn_credentials(), stack_id)
        bucket = classify_stack_status(description.status)
        if bucket is StatusClass.FAILED:
            raise stack_failure(description.status, description.status_reason)
        return bucket is StatusClass.SUCCESS and description.status == "DELETE_COMPLETE"

    async def mark_terminated(self) -> None:
        await self.update_environment({"status": "TERMINATED"})

    async def on_fail(self, error: BaseException) -> None:
        await self.update_environment({"status": "TERMINATING_FAILED"})
