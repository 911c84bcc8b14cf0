"""In-process collaborator implementations for tests and local runs.

Every fake accepts an optional ``journal`` list and appends ``(call, *args)``
tuples to it, so tests can assert the order of calls across collaborators.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import (
    BackendOperationFailed,
    BenignCleanupError,
    IdentityBackendError,
    PolicyWriteConflictError,
    ResourceNotFoundError,
    RevisionConflictError,
)
from ..policy.models import AccessPolicyDocument
from .base import (
    AppStreamService,
    DnsService,
    IdentityBackend,
    KeypairService,
    OrganizationsBackend,
    PolicyStore,
    ResourceService,
    StackBackend,
    StudyMountService,
    TemplateCatalog,
)
from .models import (
    AccountCreationStatus,
    AccountInfo,
    Credentials,
    MountParameters,
    ResourceRecord,
    StackDescription,
    StackEvent,
    StackOutput,
    StackSpec,
)
from .status import STACK_FAILED


class _Journaled:
    def __init__(self, journal: Optional[List[Tuple[Any, ...]]] = None) -> None:
        self.journal = journal if journal is not None else []

    def _record(self, *entry: Any) -> None:
        self.journal.append(entry)


@dataclass
class _FakeStack:
    spec: StackSpec
    script: List[str]
    reason: Optional[str] = None
    outputs: Dict[str, str] = field(default_factory=dict)
    events: List[StackEvent] = field(default_factory=list)
    status: str = "CREATE_IN_PROGRESS"


class InMemoryStackBackend(_Journaled, StackBackend):
    """Stacks that walk through a scripted list of statuses, one per describe."""

    def __init__(
        self,
        statuses: Sequence[str] = ("CREATE_IN_PROGRESS", "CREATE_COMPLETE"),
        outputs: Optional[Dict[str, str]] = None,
        status_reason: Optional[str] = None,
        journal: Optional[List[Tuple[Any, ...]]] = None,
    ) -> None:
        super().__init__(journal)
        self.statuses = list(statuses)
        self.outputs = dict(outputs or {})
        self.status_reason = status_reason
        self.stacks: Dict[str, _FakeStack] = {}
        self._ids = itertools.count(1)

    async def submit(self, credentials: Credentials, spec: StackSpec) -> str:
        stack_id = f"arn:stack/{spec.name}/{next(self._ids)}"
        self._record("stack.submit", spec.name)
        self.stacks[stack_id] = _FakeStack(
            spec=spec,
            script=list(self.statuses),
            reason=self.status_reason,
            outputs=dict(self.outputs),
        )
        return stack_id

    def add_stack(self, stack_id: str, spec: StackSpec, statuses: Sequence[str]) -> None:
        self.stacks[stack_id] = _FakeStack(spec=spec, script=list(statuses))

    def set_script(
        self, stack_id: str, statuses: Sequence[str], reason: Optional[str] = None
    ) -> None:
        stack = self._stack(stack_id)
        stack.script = list(statuses)
        stack.reason = reason

    def _stack(self, stack_id: str) -> _FakeStack:
        try:
            return self.stacks[stack_id]
        except KeyError:
            raise ResourceNotFoundError("stack", stack_id) from None

    async def describe(self, credentials: Credentials, stack_id: str) -> StackDescription:
        stack = self._stack(stack_id)
        self._record("stack.describe", stack_id)
        if stack.script:
            stack.status = stack.script.pop(0) if len(stack.script) > 1 else stack.script[0]
        if stack.status in STACK_FAILED and not stack.events:
            stack.events.append(
                StackEvent(
                    logical_id=stack.spec.name,
                    resource_status=stack.status,
                    resource_status_reason=stack.reason,
                )
            )
        return StackDescription(
            stack_id=stack_id,
            name=stack.spec.name,
            status=stack.status,
            status_reason=stack.reason,
            outputs=[StackOutput(key=k, value=v) for k, v in stack.outputs.items()],
        )

    async def delete(self, credentials: Credentials, stack_id: str) -> None:
        stack = self._stack(stack_id)
        self._record("stack.delete", stack_id)
        stack.script = ["DELETE_IN_PROGRESS", "DELETE_COMPLETE"]

    async def describe_events(
        self, credentials: Credentials, stack_id: str
    ) -> List[StackEvent]:
        return list(self._stack(stack_id).events)


class InMemoryOrganizationsBackend(_Journaled, OrganizationsBackend):
    def __init__(
        self,
        states: Sequence[str] = ("IN_PROGRESS", "SUCCEEDED"),
        failure_reason: Optional[str] = None,
        journal: Optional[List[Tuple[Any, ...]]] = None,
    ) -> None:
        super().__init__(journal)
        self.states = list(states)
        self.failure_reason = failure_reason
        self.requests: Dict[str, Dict[str, Any]] = {}
        self.accounts: Dict[str, AccountInfo] = {}
        self._ids = itertools.count(1)

    async def create_account(
        self, credentials: Credentials, account_name: str, email: str
    ) -> str:
        n = next(self._ids)
        request_id = f"car-{n:04d}"
        account_id = f"{n:012d}"
        self._record("org.create_account", account_name, email)
        self.requests[request_id] = {"script": list(self.states), "account_id": account_id}
        self.accounts[account_id] = AccountInfo(
            account_id=account_id,
            arn=f"arn:aws:organizations::000000000000:account/o-fake/{account_id}",
            name=account_name,
            email=email,
        )
        return request_id

    async def describe_create_account_status(
        self, credentials: Credentials, request_id: str
    ) -> AccountCreationStatus:
        request = self.requests.get(request_id)
        if request is None:
            raise ResourceNotFoundError("account creation request", request_id)
        script = request["script"]
        state = script.pop(0) if len(script) > 1 else script[0]
        return AccountCreationStatus(
            request_id=request_id,
            state=state,
            account_id=request["account_id"] if state == "SUCCEEDED" else None,
            failure_reason=self.failure_reason if state == "FAILED" else None,
        )

    async def describe_account(self, credentials: Credentials, account_id: str) -> AccountInfo:
        try:
            return self.accounts[account_id]
        except KeyError:
            raise ResourceNotFoundError("account", account_id) from None


class InMemoryIdentityBackend(_Journaled, IdentityBackend):
    """Issues fake credentials; ``transient_failures`` calls fail first."""

    def __init__(
        self,
        transient_failures: int = 0,
        journal: Optional[List[Tuple[Any, ...]]] = None,
    ) -> None:
        super().__init__(journal)
        self.transient_failures = transient_failures
        self.calls = 0

    async def assume_role(
        self,
        role_arn: str,
        session_name: str,
        external_id: Optional[str] = None,
        credentials: Optional[Credentials] = None,
    ) -> Credentials:
        self.calls += 1
        self._record("identity.assume_role", role_arn)
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise IdentityBackendError(f"throttled assuming {role_arn}", transient=True)
        return Credentials(
            access_key_id=f"AKIA{self.calls:012d}",
            secret_access_key="secret",
            session_token=f"token-{session_name}",
        )


class InMemoryTemplateCatalog(TemplateCatalog):
    def __init__(self, templates: Optional[Dict[str, str]] = None) -> None:
        self.templates = templates

    async def get_template(self, name: str) -> str:
        if self.templates is None:
            return json.dumps({"Description": name})
        try:
            return self.templates[name]
        except KeyError:
            raise ResourceNotFoundError("template", name) from None


class InMemoryResourceService(_Journaled, ResourceService):
    def __init__(self, journal: Optional[List[Tuple[Any, ...]]] = None) -> None:
        super().__init__(journal)
        self.records: Dict[Tuple[str, str], ResourceRecord] = {}

    async def get(self, kind: str, record_id: str) -> Optional[ResourceRecord]:
        record = self.records.get((kind, record_id))
        return record.model_copy(deep=True) if record else None

    async def save(self, kind: str, record_id: str, data: Dict[str, Any]) -> ResourceRecord:
        existing = self.records.get((kind, record_id))
        record = ResourceRecord(
            kind=kind,
            id=record_id,
            rev=existing.rev + 1 if existing else 0,
            data=copy.deepcopy(data),
        )
        self._record("resource.save", kind, record_id)
        self.records[(kind, record_id)] = record
        return record.model_copy(deep=True)

    async def update(
        self,
        kind: str,
        record_id: str,
        changes: Dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> ResourceRecord:
        existing = self.records.get((kind, record_id))
        if existing is None:
            raise ResourceNotFoundError(kind, record_id)
        if expected_revision is not None and expected_revision != existing.rev:
            raise RevisionConflictError(kind, record_id, expected_revision, existing.rev)
        self._record("resource.update", kind, record_id, dict(changes))
        existing.data.update(copy.deepcopy(changes))
        existing.rev += 1
        return existing.model_copy(deep=True)


class InMemoryKeypairService(_Journaled, KeypairService):
    def __init__(self, journal: Optional[List[Tuple[Any, ...]]] = None) -> None:
        super().__init__(journal)
        self.keypairs: Dict[str, str] = {}

    async def create(
        self,
        request_context: Dict[str, Any],
        environment_id: str,
        credentials: Credentials,
    ) -> str:
        key_name = f"{environment_id}-key"
        self._record("keypair.create", environment_id)
        self.keypairs[environment_id] = key_name
        return key_name

    async def delete(self, request_context: Dict[str, Any], environment_id: str) -> None:
        self._record("keypair.delete", environment_id)
        if self.keypairs.pop(environment_id, None) is None:
            raise BenignCleanupError(f"no key pair for environment {environment_id!r}")


class InMemoryDnsService(_Journaled, DnsService):
    def __init__(self, journal: Optional[List[Tuple[Any, ...]]] = None) -> None:
        super().__init__(journal)
        self.records: Dict[Tuple[str, str], str] = {}

    async def create_record(self, kind: str, environment_id: str, dns_name: str) -> None:
        self._record("dns.create_record", kind, environment_id, dns_name)
        self.records[(kind, environment_id)] = dns_name

    async def delete_record(self, kind: str, environment_id: str, dns_name: str) -> None:
        self._record("dns.delete_record", kind, environment_id, dns_name)
        self.records.pop((kind, environment_id), None)


class InMemoryStudyMountService(StudyMountService):
    """Mounts every study listed on the environment under ``studies/<id>/``."""

    async def get_mount_parameters(
        self, request_context: Dict[str, Any], environment: Dict[str, Any]
    ) -> MountParameters:
        study_ids = environment.get("studyIds") or []
        prefixes = [f"studies/{study_id}/" for study_id in study_ids]
        mounts = [{"id": study_id, "prefix": prefix} for study_id, prefix in zip(study_ids, prefixes)]
        return MountParameters(
            s3_mounts=json.dumps(mounts),
            iam_policy_document=json.dumps({"Version": "2012-10-17", "Statement": []}),
            s3_prefixes=prefixes,
        )


class InMemoryPolicyStore(_Journaled, PolicyStore):
    """Policy documents with revision checks.

    ``latency`` adds an await point to reads and writes so concurrent callers
    actually interleave in tests.
    """

    def __init__(
        self,
        latency: float = 0.0,
        journal: Optional[List[Tuple[Any, ...]]] = None,
    ) -> None:
        super().__init__(journal)
        self.latency = latency
        self.documents: Dict[str, Tuple[str, int]] = {}

    async def get_policy(self, resource_id: str) -> Optional[AccessPolicyDocument]:
        await asyncio.sleep(self.latency)
        stored = self.documents.get(resource_id)
        if stored is None:
            return None
        data, revision = stored
        return AccessPolicyDocument.from_policy_json(data, revision)

    async def put_policy(
        self,
        resource_id: str,
        document: AccessPolicyDocument,
        expected_revision: Optional[int],
    ) -> int:
        await asyncio.sleep(self.latency)
        current = self.documents.get(resource_id)
        current_revision = current[1] if current else None
        if current_revision != expected_revision:
            raise PolicyWriteConflictError(resource_id, expected_revision, current_revision)
        revision = (current_revision or 0) + 1
        self._record("policy.put", resource_id)
        self.documents[resource_id] = (document.to_policy_json(), revision)
        return revision

    def principals(self, resource_id: str, sid: str) -> List[str]:
        stored = self.documents.get(resource_id)
        if stored is None:
            return []
        statement = AccessPolicyDocument.from_policy_json(stored[0]).find(sid)
        return statement.principals() if statement else []


class InMemoryAppStreamService(_Journaled, AppStreamService):
    """Fleets report ``fleet_states`` in order once started, one per describe.

    Creating the service roles twice fails the way IAM does for an existing
    role.
    """

    def __init__(
        self,
        fleet_states: Sequence[str] = ("STARTING", "RUNNING"),
        journal: Optional[List[Tuple[Any, ...]]] = None,
    ) -> None:
        super().__init__(journal)
        self.fleet_states = list(fleet_states)
        self.shared_images: Dict[str, List[str]] = {}
        self.role_accounts: List[str] = []
        self.fleets: Dict[str, List[str]] = {}

    async def share_image(
        self, request_context: Dict[str, Any], account_id: str, image_name: str
    ) -> None:
        self._record("appstream.share_image", account_id, image_name)
        accounts = self.shared_images.setdefault(image_name, [])
        if account_id not in accounts:
            accounts.append(account_id)

    async def create_service_roles(self, credentials: Credentials, account_id: str) -> None:
        self._record("appstream.create_service_roles", account_id)
        if account_id in self.role_accounts:
            raise BackendOperationFailed("Role with name AmazonAppStreamServiceAccess already exists")
        self.role_accounts.append(account_id)

    async def fleet_state(self, credentials: Credentials, fleet_name: str) -> str:
        script = self.fleets.get(fleet_name)
        if script is None:
            return "STOPPED"
        return script.pop(0) if len(script) > 1 else script[0]

    async def start_fleet(self, credentials: Credentials, fleet_name: str) -> None:
        self._record("appstream.start_fleet", fleet_name)
        if fleet_name in self.fleets:
            raise BackendOperationFailed(f"fleet {fleet_name} is already starting")
        self.fleets[fleet_name] = list(self.fleet_states)
