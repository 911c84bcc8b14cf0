"""Shared fixtures wiring in-memory collaborators together."""

import pytest

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
from provflow.config import StepSettings
from provflow.dispatch import WorkflowLauncher
from provflow.locks.inmemory import InMemoryLockService
from provflow.persistence import InMemoryWorkflowRepository
from provflow.registry import default_registry
from provflow.scheduler import StepRunner
from provflow.services import StepServices
from provflow.state import Payload, StepState


@pytest.fixture
def journal():
    return []


@pytest.fixture
def settings():
    return StepSettings()


@pytest.fixture
def make_services(journal):
    def _make(
        stack_statuses=("CREATE_IN_PROGRESS", "CREATE_COMPLETE"),
        stack_outputs=None,
        status_reason=None,
        account_states=("IN_PROGRESS", "SUCCEEDED"),
        policy_latency=0.0,
        identity_failures=0,
        fleet_states=("STARTING", "RUNNING"),
    ) -> StepServices:
        return StepServices(
            identity=InMemoryIdentityBackend(identity_failures, journal=journal),
            organizations=InMemoryOrganizationsBackend(account_states, journal=journal),
            stacks=InMemoryStackBackend(
                stack_statuses, stack_outputs, status_reason, journal=journal
            ),
            templates=InMemoryTemplateCatalog(),
            resources=InMemoryResourceService(journal=journal),
            locks=InMemoryLockService(),
            policies=InMemoryPolicyStore(policy_latency, journal=journal),
            keypairs=InMemoryKeypairService(journal=journal),
            dns=InMemoryDnsService(journal=journal),
            mounts=InMemoryStudyMountService(),
            appstream=InMemoryAppStreamService(fleet_states, journal=journal),
        )

    return _make


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def make_runner(repository, registry, settings):
    def _make(services: StepServices) -> StepRunner:
        return StepRunner(repository, registry, services, settings=settings)

    return _make


@pytest.fixture
def launcher(repository, registry):
    return WorkflowLauncher(repository, registry)


@pytest.fixture
def delays():
    return []


@pytest.fixture
def instant_sleep(delays):
    async def _sleep(delay):
        delays.append(delay)

    return _sleep


@pytest.fixture
def make_step(repository, settings):
    """Build a step directly, backed by a persisted instance."""

    async def _make(step_cls, services, payload, state=None, instance_id="inst-1"):
        if await repository.get_instance(instance_id) is None:
            await repository.create_instance(instance_id, [step_cls.name], payload)
            for key, value in (state or {}).items():
                await repository.set_state_key(instance_id, key, value)
        instance = await repository.get_instance(instance_id)
        return step_cls(
            instance_id=instance_id,
            payload=Payload(instance.payload),
            state=StepState(instance_id, instance.state, repository),
            services=services,
            settings=settings,
        )

    return _make
