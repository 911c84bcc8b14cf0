"""Environment teardown step tests."""

import copy

import pytest

from provflow.backends.inmemory import InMemoryStackBackend
from provflow.backends.models import StackSpec
from provflow.persistence import InstanceStatus
from provflow.policy import DataAccessManager
from provflow.steps import DeleteEnvironment

ROLE = "arn:aws:iam::111111111111:role/workspace"


def _payload(environment_id="env-1"):
    return {
        "environmentId": environment_id,
        "requestContext": {"principalIdentifier": {"username": "bob"}},
        "cfnExecutionRole": "arn:aws:iam::111111111111:role/cfn",
        "roleExternalId": "ext-1",
    }


async def _provisioned(services, settings):
    """Persist a completed environment whose role holds study access."""
    stack_id = await services.stacks.submit(
        None, StackSpec(name="analysis-1", template_body="{}")
    )
    await services.keypairs.create({}, "env-1", None)
    await services.resources.save(
        "environment",
        "env-1",
        {
            "status": "COMPLETED",
            "stackId": stack_id,
            "instanceInfo": {
                "WorkspaceInstanceRoleArn": ROLE,
                "s3Prefixes": ["studies/s1/"],
            },
        },
    )
    access = DataAccessManager(services.policy_updater(), settings)
    await access.grant_study_access(ROLE, ["studies/s1/"])
    return stack_id


async def _run(make_runner, launcher, services, sleep):
    runner = make_runner(services)
    instance_id = await launcher.launch("delete-environment", _payload())
    return await runner.run_to_completion(instance_id, sleep=sleep)


@pytest.mark.asyncio
async def test_access_is_revoked_before_stack_deletion(
    make_services, make_runner, launcher, settings, journal, instant_sleep
):
    services = make_services()
    stack_id = await _provisioned(services, settings)
    journal.clear()

    instance = await _run(make_runner, launcher, services, instant_sleep)

    assert instance.status == InstanceStatus.COMPLETED
    calls = [entry[0] for entry in journal]
    assert calls.index("stack.delete") > max(
        i for i, call in enumerate(calls) if call == "policy.put"
    )
    assert ("stack.delete", stack_id) in journal
    assert services.policies.principals("provflow-studydata", "List:studies/s1/") == []
    assert services.policies.principals("alias/provflow-studydata", "Allow workspace access") == []

    environment = await services.resources.get("environment", "env-1")
    assert environment.data["status"] == "TERMINATED"
    assert services.keypairs.keypairs == {}


@pytest.mark.asyncio
async def test_environment_without_stack_is_terminated(
    make_services, make_runner, launcher, journal, instant_sleep, delays
):
    services = make_services()
    await services.resources.save("environment", "env-1", {"status": "FAILED"})

    instance = await _run(make_runner, launcher, services, instant_sleep)

    assert instance.status == InstanceStatus.COMPLETED
    environment = await services.resources.get("environment", "env-1")
    assert environment.data["status"] == "TERMINATED"
    assert delays == []
    assert not any(entry[0] == "stack.delete" for entry in journal)


@pytest.mark.asyncio
async def test_missing_keypair_does_not_block_teardown(
    make_services, make_runner, launcher, settings, instant_sleep
):
    services = make_services()
    await _provisioned(services, settings)
    await services.keypairs.delete({}, "env-1")

    instance = await _run(make_runner, launcher, services, instant_sleep)

    assert instance.status == InstanceStatus.COMPLETED
    environment = await services.resources.get("environment", "env-1")
    assert environment.data["status"] == "TERMINATED"


@pytest.mark.asyncio
async def test_failed_deletion_marks_terminating_failed(
    make_services, make_runner, launcher, settings, instant_sleep
):
    services = make_services()
    stack_id = await _provisioned(services, settings)

    class StuckStacks(InMemoryStackBackend):
        async def delete(self, credentials, stack_id):
            await super().delete(credentials, stack_id)
            self.set_script(stack_id, ["DELETE_IN_PROGRESS", "DELETE_FAILED"], reason="in use")

    stuck = StuckStacks(journal=services.stacks.journal)
    stuck.stacks = services.stacks.stacks
    services.stacks = stuck

    instance = await _run(make_runner, launcher, services, instant_sleep)

    assert instance.status == InstanceStatus.FAILED
    assert instance.failure.message == "in use"
    environment = await services.resources.get("environment", "env-1")
    assert environment.data["status"] == "TERMINATING_FAILED"
    assert stack_id in stuck.stacks


@pytest.mark.asyncio
async def test_contended_revoke_is_retried_before_deletion(
    make_services, make_runner, launcher, settings, journal
):
    services = make_services()
    await _provisioned(services, settings)
    runner = make_runner(services)
    instance_id = await launcher.launch("delete-environment", _payload())

    token = await services.locks.obtain_write_lock("policy|provflow-studydata", 25)
    delay = await runner.tick(instance_id)
    assert 16 <= delay <= 24
    assert not any(entry[0] == "stack.delete" for entry in journal)

    await runner.tick(instance_id)
    assert not any(entry[0] == "stack.delete" for entry in journal)

    await services.locks.release_write_lock("policy|provflow-studydata", token)
    await runner.tick(instance_id)
    assert any(entry[0] == "stack.delete" for entry in journal)
    assert services.policies.principals("provflow-studydata", "Get:studies/s1/") == []

    instance = await runner.run_to_completion(instance_id, sleep=_no_sleep)
    assert instance.status == InstanceStatus.COMPLETED


async def _no_sleep(delay):
    return None


@pytest.mark.asyncio
async def test_revoke_without_recorded_access_is_a_no_op(make_services, make_step, journal):
    services = make_services()
    await services.resources.save(
        "environment", "env-1", {"stackId": "arn:stack/x", "instanceInfo": {}}
    )
    step = await make_step(DeleteEnvironment, services, _payload())

    assert await step.revoke_access() is True
    assert not any(entry[0] == "policy.put" for entry in journal)


def _footprint(services):
    return {
        "stacks": sorted(services.stacks.stacks),
        "records": {
            key: copy.deepcopy(record.data) for key, record in services.resources.records.items()
        },
        "policies": {
            resource_id: document
            for resource_id, (document, _) in services.policies.documents.items()
        },
        "keypairs": dict(services.keypairs.keypairs),
    }


_DELETE = DeleteEnvironment.Continuation.DELETE_STACK
_CHECK = DeleteEnvironment.Continuation.CHECK_CFN_COMPLETED
_TERMINATED = DeleteEnvironment.Continuation.MARK_TERMINATED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "preceding, method",
    [
        (["start"], _DELETE),
        # the first check sees DELETE_IN_PROGRESS; both repeats see DELETE_COMPLETE
        (["start", _CHECK], _CHECK),
        (["start", _CHECK, _CHECK], _TERMINATED),
    ],
)
async def test_teardown_method_runs_twice_without_new_side_effects(
    make_services, make_step, settings, preceding, method
):
    services = make_services()
    await _provisioned(services, settings)
    step = await make_step(DeleteEnvironment, services, _payload())
    for earlier in preceding:
        await step.invoke(earlier)

    first = await (await make_step(DeleteEnvironment, services, _payload())).invoke(method)
    footprint = _footprint(services)
    second = await (await make_step(DeleteEnvironment, services, _payload())).invoke(method)

    assert second == first
    assert _footprint(services) == footprint
    assert services.policies.principals("provflow-studydata", "List:studies/s1/") == []
