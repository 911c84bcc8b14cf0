"""Provision and tear down a workspace environment against in-memory backends.

Run the whole lifecycle in one process:

    python guides/local_environment_example.py

or point a worker at the same wiring:

    PYTHONPATH=. provflow worker start --services guides.local_environment_example:build_services
"""

import asyncio

from provflow import (
    StepRunner,
    StepServices,
    WorkflowLauncher,
    default_registry,
    get_repository,
)
from provflow.backends.inmemory import (
    InMemoryAppStreamService,
    InMemoryDnsService,
    InMemoryIdentityBackend,
    InMemoryKeypairService,
    InMemoryOrganizationsBackend,
    InMemoryPolicyStore,
    InMemoryResourceService,
    InMemoryStackBackend,
    InMemoryStudyMountService,
    InMemoryTemplateCatalog,
)
from provflow.locks import get_lock_service

PAYLOAD = {
    "type": "ec2-linux",
    "environmentId": "env-demo",
    "requestContext": {"principalIdentifier": {"username": "demo"}},
    "cfnExecutionRole": "arn:aws:iam::111111111111:role/cfn-execution",
    "roleExternalId": "demo-external-id",
    "amiImage": "ami-0demo",
    "cidr": "10.0.0.0/16",
    "vpcId": "vpc-demo",
    "subnetId": "subnet-demo",
    "encryptionKeyArn": "arn:aws:kms:eu-west-1:111111111111:key/demo",
}


def build_services() -> StepServices:
    return StepServices(
        identity=InMemoryIdentityBackend(),
        organizations=InMemoryOrganizationsBackend(),
        stacks=InMemoryStackBackend(
            outputs={"WorkspaceInstanceRoleArn": "arn:aws:iam::111111111111:role/ws-demo"}
        ),
        templates=InMemoryTemplateCatalog(),
        resources=InMemoryResourceService(),
        locks=get_lock_service(),
        policies=InMemoryPolicyStore(),
        keypairs=InMemoryKeypairService(),
        dns=InMemoryDnsService(),
        mounts=InMemoryStudyMountService(),
        appstream=InMemoryAppStreamService(),
    )


async def main():
    services = build_services()
    await services.resources.save(
        "environment",
        "env-demo",
        {"studyIds": ["genomics"], "instanceInfo": {"size": "t3.large"}},
    )

    repository = get_repository()
    registry = default_registry()
    launcher = WorkflowLauncher(repository, registry)
    runner = StepRunner(repository, registry, services)

    provision_id = await launcher.launch("provision-environment", PAYLOAD)
    # skip the real waits between polls
    instance = await runner.run_to_completion(provision_id, sleep=lambda _: asyncio.sleep(0))
    print("Provisioned:", instance.status.value)
    print("Bucket policy:", (await services.policies.get_policy("provflow-studydata")).to_policy_json())

    delete_id = await launcher.launch("delete-environment", PAYLOAD)
    instance = await runner.run_to_completion(delete_id, sleep=lambda _: asyncio.sleep(0))
    print("Deleted:", instance.status.value)


if __name__ == "__main__":
    asyncio.run(main())
