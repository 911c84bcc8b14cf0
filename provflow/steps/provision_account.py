"""Creates a member account, onboards it with a stack and opens shared artifacts to it."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Dict, Optional

from ..backends.models import Credentials, StackParameter, StackSpec
from ..backends.status import StatusClass, classify_account_status
from ..constants import STACK_CAPABILITIES
from ..errors import BackendOperationFailed, LockContentionError, RevisionConflictError
from ..policy.access import DataAccessManager
from .base import Step
from .common import REQUEST_CONTEXT, STACK_ID, classify_provisioning_status, principal_name

logger = logging.getLogger(__name__)

REQUEST_ID = "REQUEST_ID"
ACCOUNT_ID = "ACCOUNT_ID"
ACCOUNT_ARN = "ACCOUNT_ARN"
APP_STREAM_ROLES_CREATED = "APP_STREAM_ROLES_CREATED"

ACCOUNT_KIND = "account"
AWS_ACCOUNT_KIND = "aws-account"
ONBOARD_TEMPLATE = "onboard-account"
MEMBER_ACCESS_ROLE = "OrganizationAccountAccessRole"


class ProvisionAccount(Step):
    """Provision a new account inside an existing organization.

    Flow: request the account, poll until the organization reports it,
    record it, give the new account time to settle, deploy the onboarding
    stack into it and poll that stack to completion. With AppStream enabled
    the image is shared and the service roles are created between the settle
    wait and the deployment, and the stack only counts as complete once its
    fleet is running.
    """

    name = "provision-account"
    description = "Create a member account and deploy its onboarding stack"

    class Continuation(str, Enum):
        CHECK_ACCOUNT_CREATION_COMPLETED = "check_account_creation_completed"
        SAVE_ACCOUNT_TO_DB = "save_account_to_db"
        SHARE_IMAGE_WITH_MEMBER_ACCOUNT = "share_image_with_member_account"
        CREATE_APP_STREAM_ROLES = "create_app_stream_roles"
        DEPLOY_STACK = "deploy_stack"
        CHECK_CFN_COMPLETED = "check_cfn_completed"

    async def start(self):
        request_context = self.payload.object("requestContext")
        await self.state.set_key(REQUEST_CONTEXT, request_context)

        if self.state.has(REQUEST_ID):
            logger.info(
                f"Account request {self.state.string(REQUEST_ID)} already submitted "
                f"for instance {self.instance_id}"
            )
        else:
            account_name = self.payload.string("accountName")
            email = self.payload.string("accountEmail")
            credentials = await self.master_credentials()
            logger.info(f"Creating account {account_name} ({email})")
            request_id = await self.services.require("organizations").create_account(
                credentials, account_name, email
            )
            await self.state.set_key(REQUEST_ID, request_id)

        return (
            self.wait(10)
            .max_attempts(120)
            .until(self.Continuation.CHECK_ACCOUNT_CREATION_COMPLETED)
            .then_call(self.Continuation.SAVE_ACCOUNT_TO_DB)
        )

    async def check_account_creation_completed(self) -> bool:
        request_id = self.state.string(REQUEST_ID)
        credentials = await self.master_credentials()
        status = await self.services.require(
            "organizations"
        ).describe_create_account_status(credentials, request_id)

        bucket = classify_account_status(status.state)
        if bucket is StatusClass.FAILED:
            raise BackendOperationFailed(
                status.failure_reason or f"account creation {request_id} failed",
                status=status.state,
            )
        if bucket is StatusClass.PENDING:
            return False

        logger.info(f"Account created with id {status.account_id}")
        await self.state.set_key(ACCOUNT_ID, status.account_id)
        return True

    async def save_account_to_db(self):
        account_id = self.state.string(ACCOUNT_ID)
        credentials = await self.master_credentials()
        account = await self.services.require("organizations").describe_account(
            credentials, account_id
        )
        await self.state.set_key(ACCOUNT_ARN, account.arn)

        data = {
            "accountName": self.payload.string("accountName"),
            "email": self.payload.string("accountEmail"),
            "accountArn": account.arn,
        }
        resources = self.services.require("resources")
        existing = await resources.get(ACCOUNT_KIND, account_id)
        try:
            if existing is None:
                await resources.save(ACCOUNT_KIND, account_id, {**data, "status": "PENDING"})
            else:
                await resources.update(
                    ACCOUNT_KIND, account_id, data, expected_revision=existing.rev
                )
        except RevisionConflictError as e:
            logger.info(f"{e}; saving account {account_id} again")
            return self.wait(5).then_call(self.Continuation.SAVE_ACCOUNT_TO_DB)

        # the organization needs settle time before the account accepts stacks
        if self.settings.is_app_stream_enabled:
            return self.wait(60 * 5).then_call(self.Continuation.SHARE_IMAGE_WITH_MEMBER_ACCOUNT)
        return self.wait(60 * 5).then_call(self.Continuation.DEPLOY_STACK)

    async def share_image_with_member_account(self):
        account_id = self.state.string(ACCOUNT_ID)
        image_name = self.payload.string("appStreamImageName")
        await self.services.require("appstream").share_image(
            self.state.object(REQUEST_CONTEXT), account_id, image_name
        )
        logger.info(f"Shared AppStream image {image_name} with account {account_id}")
        return self.wait(10).then_call(self.Continuation.CREATE_APP_STREAM_ROLES)

    async def create_app_stream_roles(self):
        account_id = self.state.string(ACCOUNT_ID)
        if self.state.has(APP_STREAM_ROLES_CREATED):
            logger.info(f"AppStream roles already exist in account {account_id}")
        else:
            await self.services.require("appstream").create_service_roles(
                await self.member_credentials(), account_id
            )
            await self.state.set_key(APP_STREAM_ROLES_CREATED, account_id)

        # the account must be cleared for launching instances before the stack goes in
        return self.wait(60 * 10).then_call(self.Continuation.DEPLOY_STACK)

    async def deploy_stack(self):
        if self.state.has(STACK_ID):
            logger.info(f"Onboarding stack {self.state.string(STACK_ID)} already submitted")
        else:
            request_context = self.state.object(REQUEST_CONTEXT)
            username = principal_name(request_context)
            template = await self.services.require("templates").get_template(ONBOARD_TEMPLATE)
            stack_name = f"initial-stack-{int(time.time() * 1000)}"

            spec = StackSpec(
                name=stack_name,
                template_body=template,
                parameters=self.stack_parameters(stack_name),
                capabilities=list(STACK_CAPABILITIES),
                tags={
                    "Description": f"Created by {username} for newly created AWS account",
                    "CreatedBy": username,
                },
            )
            credentials = await self.member_credentials()
            stack_id = await self.services.require("stacks").submit(credentials, spec)
            await self.state.set_key(STACK_ID, stack_id)
            await self.update_account({"stackId": stack_id})

        return self.wait(20).max_attempts(120).until(self.Continuation.CHECK_CFN_COMPLETED)

    def stack_parameters(self, stack_name: str) -> list[StackParameter]:
        values = {
            "Namespace": stack_name,
            "CentralAccountId": self.payload.string("callerAccountId"),
            "ExternalId": self.payload.string("externalId"),
            "WorkflowRoleArn": self.payload.string("workflowRoleArn"),
            "ApiHandlerArn": self.payload.string("apiHandlerArn"),
            "AppStreamFleetDesiredInstances": self.payload.optional_string(
                "appStreamFleetDesiredInstances", "0"
            ),
            "AppStreamDisconnectTimeoutSeconds": self.payload.optional_string(
                "appStreamDisconnectTimeoutSeconds", "0"
            ),
            "AppStreamIdleDisconnectTimeoutSeconds": self.payload.optional_string(
                "appStreamIdleDisconnectTimeoutSeconds", "0"
            ),
            "AppStreamMaxUserDurationSeconds": self.payload.optional_string(
                "appStreamMaxUserDurationSeconds", "0"
            ),
            "AppStreamImageName": self.payload.optional_string("appStreamImageName", ""),
            "AppStreamInstanceType": self.payload.optional_string("appStreamInstanceType", ""),
            "AppStreamFleetType": self.payload.optional_string("appStreamFleetType", "ON_DEMAND"),
            "LaunchConstraintRolePrefix": self.settings.launch_constraint_role_prefix,
            "LaunchConstraintPolicyPrefix": self.settings.launch_constraint_policy_prefix,
            "EnableAppStream": str(self.settings.is_app_stream_enabled).lower(),
            "EnableFlowLogs": str(self.settings.enable_flow_logs).lower(),
            "DomainName": self.settings.domain_name,
        }
        return [StackParameter(key=k, value=v) for k, v in values.items()]

    async def check_cfn_completed(self) -> bool:
        stack_id = self.state.string(STACK_ID)
        credentials = await self.member_credentials()
        description = await self.describe_stack(credentials, stack_id)
        if (
            classify_provisioning_status(description.status, description.status_reason)
            is StatusClass.PENDING
        ):
            return False

        outputs = self.stack_outputs(description)
        account_id = self.state.string(ACCOUNT_ID)
        access = DataAccessManager(self.services.policy_updater(), self.settings)
        try:
            await access.grant_artifacts_access(account_id)
        except LockContentionError as e:
            logger.info(f"{e}; retrying on the next check")
            return False

        if self.settings.is_app_stream_enabled:
            fleet_name = outputs.get("AppStreamFleet")
            if not fleet_name:
                raise BackendOperationFailed("onboarding stack has no AppStreamFleet output")
            if not await self.app_stream_fleet_running(fleet_name):
                logger.info(f"Waiting for AppStream fleet {fleet_name} to start")
                return False
            subnet_id = outputs.get("PrivateWorkspaceSubnet")
            app_stream_data = {
                "appStreamStackName": outputs.get("AppStreamStackName"),
                "appStreamSecurityGroupId": outputs.get("AppStreamSecurityGroup"),
                "appStreamFleetName": fleet_name,
                "route53HostedZone": outputs.get("Route53HostedZone"),
            }
        else:
            subnet_id = outputs.get("VpcPublicSubnet1")
            app_stream_data = {}

        resources = self.services.require("resources")
        account = await resources.must_find(ACCOUNT_KIND, account_id)
        await resources.save(
            AWS_ACCOUNT_KIND,
            account_id,
            {
                "accountId": account_id,
                "name": self.payload.string("accountName"),
                "description": self.payload.optional_string("description", ""),
                "externalId": self.payload.string("externalId"),
                "roleArn": outputs.get("CrossAccountExecutionRoleArn"),
                "xAccEnvMgmtRoleArn": outputs.get("CrossAccountEnvMgmtRoleArn"),
                "vpcId": outputs.get("VPC"),
                "subnetId": subnet_id,
                "encryptionKeyArn": outputs.get("EncryptionKeyArn"),
                "onboardStatusRoleArn": outputs.get("OnboardStatusRoleArn"),
                "publicRouteTableId": outputs.get("PublicRouteTableId"),
                "cfnStackName": description.name,
                "cfnStackId": description.stack_id,
                "permissionStatus": "CURRENT",
                **app_stream_data,
            },
        )
        try:
            await self.update_account(
                {
                    "status": "COMPLETED",
                    "cfnInfo": {
                        "stackId": stack_id,
                        "vpcId": outputs.get("VPC"),
                        "subnetId": subnet_id,
                        "crossAccountExecutionRoleArn": outputs.get(
                            "CrossAccountExecutionRoleArn"
                        ),
                        "crossAccountEnvMgmtRoleArn": outputs.get("CrossAccountEnvMgmtRoleArn"),
                        "encryptionKeyArn": outputs.get("EncryptionKeyArn"),
                    },
                },
                expected_revision=account.rev,
            )
        except RevisionConflictError as e:
            logger.info(f"{e}; retrying on the next check")
            return False
        return True

    async def app_stream_fleet_running(self, fleet_name: str) -> bool:
        """Start a stopped fleet and report whether it is running yet."""
        appstream = self.services.require("appstream")
        credentials = await self.member_credentials()
        state = await appstream.fleet_state(credentials, fleet_name)
        if state == "STOPPED":
            await appstream.start_fleet(credentials, fleet_name)
            return False
        return state == "RUNNING"

    async def on_fail(self, error: BaseException) -> None:
        account_id = self.state.optional_string(ACCOUNT_ID)
        if account_id is None:
            logger.warning(
                f"Account provisioning failed before an account existed: {error}"
            )
            return
        resources = self.services.require("resources")
        if await resources.get(ACCOUNT_KIND, account_id) is None:
            await resources.save(ACCOUNT_KIND, account_id, {"status": "FAILED"})
        else:
            await self.update_account({"status": "FAILED"})

    async def update_account(
        self, changes: Dict[str, Any], expected_revision: Optional[int] = None
    ) -> None:
        account_id = self.state.string(ACCOUNT_ID)
        logger.info(f"Updating account {account_id}: {sorted(changes)}")
        await self.services.require("resources").update(
            ACCOUNT_KIND, account_id, changes, expected_revision=expected_revision
        )

    async def master_credentials(self) -> Credentials:
        request_context = self.state.optional_object(REQUEST_CONTEXT) or self.payload.object(
            "requestContext"
        )
        return await self.assume_role(
            self.payload.string("masterRoleArn"),
            f"provflow-{principal_name(request_context)}-OrgRole",
            self.payload.string("externalId"),
        )

    async def member_credentials(self) -> Credentials:
        account_id = self.state.string(ACCOUNT_ID)
        request_context = self.state.object(REQUEST_CONTEXT)
        return await self.assume_role(
            f"arn:aws:iam::{account_id}:role/{MEMBER_ACCESS_ROLE}",
            f"provflow-{principal_name(request_context)}-CfnRole",
            self.payload.string("externalId"),
            credentials=await self.master_credentials(),
        )
