"""Interfaces of the external collaborators steps talk to."""

from __future__ import annotations

import abc
from typing import Any, Dict, List, Optional

from ..errors import ResourceNotFoundError
from ..policy.models import AccessPolicyDocument
from .models import (
    AccountCreationStatus,
    AccountInfo,
    Credentials,
    MountParameters,
    ResourceRecord,
    StackDescription,
    StackEvent,
    StackSpec,
)


class StackBackend(metaclass=abc.ABCMeta):
    """Infrastructure stack orchestrator."""

    @abc.abstractmethod
    async def submit(self, credentials: Credentials, spec: StackSpec) -> str:
        """Start stack creation and return the stack id."""
        raise NotImplementedError

    @abc.abstractmethod
    async def describe(self, credentials: Credentials, stack_id: str) -> StackDescription:
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, credentials: Credentials, stack_id: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def describe_events(
        self, credentials: Credentials, stack_id: str
    ) -> List[StackEvent]:
        raise NotImplementedError


class OrganizationsBackend(metaclass=abc.ABCMeta):
    """Creates member accounts inside an existing organization."""

    @abc.abstractmethod
    async def create_account(
        self, credentials: Credentials, account_name: str, email: str
    ) -> str:
        """Request account creation and return the request id."""
        raise NotImplementedError

    @abc.abstractmethod
    async def describe_create_account_status(
        self, credentials: Credentials, request_id: str
    ) -> AccountCreationStatus:
        raise NotImplementedError

    @abc.abstractmethod
    async def describe_account(
        self, credentials: Credentials, account_id: str
    ) -> AccountInfo:
        raise NotImplementedError


class IdentityBackend(metaclass=abc.ABCMeta):
    """Role assumption yielding short-lived credentials."""

    @abc.abstractmethod
    async def assume_role(
        self,
        role_arn: str,
        session_name: str,
        external_id: Optional[str] = None,
        credentials: Optional[Credentials] = None,
    ) -> Credentials:
        """Exchange ``credentials`` (or the ambient identity) for role credentials.

        Raises:
            IdentityBackendError: when the exchange fails.
        """
        raise NotImplementedError


class TemplateCatalog(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    async def get_template(self, name: str) -> str:
        raise NotImplementedError


class ResourceService(metaclass=abc.ABCMeta):
    """Persistence for account and environment metadata records."""

    @abc.abstractmethod
    async def get(self, kind: str, record_id: str) -> Optional[ResourceRecord]:
        raise NotImplementedError

    async def must_find(self, kind: str, record_id: str) -> ResourceRecord:
        record = await self.get(kind, record_id)
        if record is None:
            raise ResourceNotFoundError(kind, record_id)
        return record

    @abc.abstractmethod
    async def save(self, kind: str, record_id: str, data: Dict[str, Any]) -> ResourceRecord:
        """Create or replace a record."""
        raise NotImplementedError

    @abc.abstractmethod
    async def update(
        self,
        kind: str,
        record_id: str,
        changes: Dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> ResourceRecord:
        """Shallow-merge ``changes`` into an existing record.

        Raises:
            ResourceNotFoundError: when the record does not exist.
            RevisionConflictError: when ``expected_revision`` is stale.
        """
        raise NotImplementedError


class KeypairService(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    async def create(
        self,
        request_context: Dict[str, Any],
        environment_id: str,
        credentials: Credentials,
    ) -> str:
        """Create a key pair for the environment and return its name."""
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, request_context: Dict[str, Any], environment_id: str) -> None:
        """Delete the environment key pair.

        Raises:
            BenignCleanupError: when no key pair exists for the environment.
        """
        raise NotImplementedError


class DnsService(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    async def create_record(self, kind: str, environment_id: str, dns_name: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def delete_record(self, kind: str, environment_id: str, dns_name: str) -> None:
        raise NotImplementedError


class StudyMountService(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    async def get_mount_parameters(
        self, request_context: Dict[str, Any], environment: Dict[str, Any]
    ) -> MountParameters:
        raise NotImplementedError


class PolicyStore(metaclass=abc.ABCMeta):
    """Read/write access to shared resource policy documents."""

    @abc.abstractmethod
    async def get_policy(self, resource_id: str) -> Optional[AccessPolicyDocument]:
        """Return the current document with its revision, or ``None``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def put_policy(
        self,
        resource_id: str,
        document: AccessPolicyDocument,
        expected_revision: Optional[int],
    ) -> int:
        """Write the full document and return the new revision.

        Raises:
            PolicyWriteConflictError: when the stored revision differs from
                ``expected_revision`` (``None`` means "must not exist yet").
        """
        raise NotImplementedError


class AppStreamService(metaclass=abc.ABCMeta):
    """Streaming-desktop image sharing and fleet control for member accounts."""

    @abc.abstractmethod
    async def share_image(
        self, request_context: Dict[str, Any], account_id: str, image_name: str
    ) -> None:
        """Share ``image_name`` from the central account with ``account_id``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def create_service_roles(self, credentials: Credentials, account_id: str) -> None:
        """Create the service and autoscaling roles the fleet needs in ``account_id``.

        Raises:
            BackendOperationFailed: when the roles already exist.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def fleet_state(self, credentials: Credentials, fleet_name: str) -> str:
        """Return the fleet state, e.g. ``STOPPED``, ``STARTING`` or ``RUNNING``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def start_fleet(self, credentials: Credentials, fleet_name: str) -> None:
        raise NotImplementedError
