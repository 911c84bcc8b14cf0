"""Provisioning backend interfaces, value objects and in-memory fakes."""

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
    StackParameter,
    StackSpec,
)
from .status import StatusClass, classify_account_status, classify_stack_status

__all__ = [
    "AccountCreationStatus",
    "AccountInfo",
    "AppStreamService",
    "Credentials",
    "DnsService",
    "IdentityBackend",
    "KeypairService",
    "MountParameters",
    "OrganizationsBackend",
    "PolicyStore",
    "ResourceRecord",
    "ResourceService",
    "StackBackend",
    "StackDescription",
    "StackEvent",
    "StackOutput",
    "StackParameter",
    "StackSpec",
    "StatusClass",
    "StudyMountService",
    "TemplateCatalog",
    "classify_account_status",
    "classify_stack_status",
]
