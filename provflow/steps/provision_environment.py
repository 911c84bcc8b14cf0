"""Launches a workspace environment stack into a provisioned account."""

from __future__ import annotations

import logging
import random
import string
import time
from enum import Enum
from typing import Any, Dict, List

from ..backends.models import StackParameter, StackSpec
from ..backends.status import StatusClass
from ..constants import STACK_CAPABILITIES
from ..errors import LockContentionError
from ..policy.access import DataAccessManager
from .common import (
    ENVIRONMENT_ID,
    ENVIRONMENT_KIND,
    REQUEST_CONTEXT,
    S3_STUDY_PREFIXES,
    STACK_ID,
    EnvironmentStep,
    classify_provisioning_status,
    principal_name,
)

logger = logging.getLogger(__name__)

ENVIRONMENT_TEMPLATES = {
    "ec2-linux": "ec2-linux-instance",
    "ec2-windows": "ec2-windows-instance",
    "ec2-rstudio": "ec2-rstudio-instance",
    "sagemaker": "sagemaker-notebook-instance",
    "emr": "emr-cluster",
}

# types that skip a parameter group
NO_MOUNTS = {"ec2-windows"}
NO_INSTANCE_ACCESS = {"sagemaker"}
NO_INSTANCE_TYPE = {"emr"}

DNS_OUTPUTS = {"ec2-rstudio": ("rstudio", "Ec2WorkspaceDnsName")}

_STACK_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


def environment_stack_name() -> str:
    suffix = "".join(random.choice(_STACK_SUFFIX_ALPHABET) for _ in range(12))
    return f"analysis-{int(time.time() * 1000)}-{suffix}"


def emr_parameters(instance_info: Dict[str, Any]) -> Dict[str, str]:
    config = instance_info.get("config") or {}
    bid_price = config.get("spotBidPrice")
    on_demand = not bid_price
    if on_demand:
        logger.info("Launching on demand core nodes")
    else:
        logger.info(f"Launching spot core nodes with a bid price of {bid_price:.3f}")
    return {
        "DiskSizeGB": str(config["diskSizeGb"]),
        "MasterInstanceType": instance_info["size"],
        "WorkerInstanceType": config["workerInstanceSize"],
        "CoreNodeCount": str(config["workerInstanceCount"]),
        "Market": "ON_DEMAND" if on_demand else "SPOT",
        # at most three decimal places are accepted
        "WorkerBidPrice": "0" if on_demand else f"{bid_price:.3f}",
    }


class ProvisionEnvironment(EnvironmentStep):
    """Submit the environment's stack and poll it to completion.

    Each environment type maps to its own template and contributes its own
    parameter set; the poll and completion handling are shared.
    """

    name = "provision-environment"
    description = "Launch a workspace environment stack"

    class Continuation(str, Enum):
        CHECK_CFN_COMPLETED = "check_cfn_completed"

    async def start(self):
        env_type = self.payload.string("type")
        environment_id = self.payload.string("environmentId")
        request_context = self.payload.object("requestContext")
        await self.state.set_key(ENVIRONMENT_ID, environment_id)
        await self.state.set_key(REQUEST_CONTEXT, request_context)

        if self.state.has(STACK_ID):
            logger.info(f"Environment stack {self.state.string(STACK_ID)} already submitted")
        else:
            await self.submit_stack(env_type, environment_id, request_context)

        return self.wait(60, fuzz=True).max_attempts(120).until(
            self.Continuation.CHECK_CFN_COMPLETED
        )

    async def submit_stack(
        self, env_type: str, environment_id: str, request_context: Dict[str, Any]
    ) -> None:
        if env_type not in ENVIRONMENT_TEMPLATES:
            raise ValueError(f"Unknown environment type requested: {env_type}")

        record = await self.services.require("resources").must_find(
            ENVIRONMENT_KIND, environment_id
        )
        environment = record.data
        instance_info = environment.get("instanceInfo") or {}
        stack_name = environment_stack_name()
        template = await self.services.require("templates").get_template(
            ENVIRONMENT_TEMPLATES[env_type]
        )
        credentials = await self.cfn_credentials()

        params: Dict[str, str] = {}
        if env_type == "emr":
            params.update(emr_parameters(instance_info))

        if env_type not in NO_MOUNTS:
            mounts = await self.services.require("mounts").get_mount_parameters(
                request_context, environment
            )
            params["S3Mounts"] = mounts.s3_mounts
            params["IamPolicyDocument"] = mounts.iam_policy_document
            params["EnvironmentInstanceFiles"] = (
                mounts.environment_instance_files or self.settings.environment_instance_files
            )
            # only prefixes inside the study bucket; never the whole bucket
            await self.state.set_key(S3_STUDY_PREFIXES, list(mounts.s3_prefixes))

        if env_type not in NO_INSTANCE_ACCESS:
            params["AmiId"] = self.payload.string("amiImage")
            params["AccessFromCIDRBlock"] = self.payload.string("cidr")
            params["KeyName"] = await self.services.require("keypairs").create(
                request_context, environment_id, credentials
            )

        if env_type not in NO_INSTANCE_TYPE:
            params["InstanceType"] = instance_info["size"]

        params["Namespace"] = stack_name
        params["VPC"] = self.payload.string("vpcId")
        params["Subnet"] = self.payload.string("subnetId")
        params["EncryptionKeyArn"] = self.payload.string("encryptionKeyArn")

        username = principal_name(request_context)
        spec = StackSpec(
            name=stack_name,
            template_body=template,
            parameters=[StackParameter(key=k, value=v) for k, v in params.items()],
            capabilities=list(STACK_CAPABILITIES),
            tags={
                "Description": f"Created by {username}",
                "Env": environment_id,
                "Proj": str(environment.get("indexId", "")),
                "CreatedBy": username,
            },
        )
        stack_id = await self.services.require("stacks").submit(credentials, spec)
        await self.state.set_key(STACK_ID, stack_id)
        await self.update_environment({"stackId": stack_id})
        logger.info(f"Submitted {env_type} stack {stack_name} for environment {environment_id}")

    async def check_cfn_completed(self) -> bool:
        stack_id = self.state.string(STACK_ID)
        credentials = await self.cfn_credentials()
        description = await self.describe_stack(credentials, stack_id)
        if (
            classify_provisioning_status(description.status, description.status_reason)
            is StatusClass.PENDING
        ):
            return False

        outputs = self.stack_outputs(description)
        prefixes: List[str] = self.state.optional_array(S3_STUDY_PREFIXES)
        if prefixes:
            access = DataAccessManager(self.services.policy_updater(), self.settings)
            try:
                await access.grant_study_access(outputs["WorkspaceInstanceRoleArn"], prefixes)
            except LockContentionError as e:
                logger.info(f"{e}; retrying on the next check")
                return False

        env_type = self.payload.string("type")
        if env_type in DNS_OUTPUTS:
            kind, output_key = DNS_OUTPUTS[env_type]
            await self.services.require("dns").create_record(
                kind, self.environment_id(), outputs[output_key]
            )

        record = await self.services.require("resources").must_find(
            ENVIRONMENT_KIND, self.environment_id()
        )
        instance_info = {
            **(record.data.get("instanceInfo") or {}),
            **outputs,
            "s3Prefixes": prefixes,
        }
        await self.update_environment({"status": "COMPLETED", "instanceInfo": instance_info})
        return True

    async def on_fail(self, error: BaseException) -> None:
        stack_id = self.state.optional_string(STACK_ID)
        reason = ""
        if stack_id:
            try:
                reason = await self.failed_event_reasons(stack_id)
            except Exception as e:
                logger.warning(f"Could not read failure events of stack {stack_id}: {e}")
        await self.update_environment({"status": "FAILED", "error": reason or str(error)})
