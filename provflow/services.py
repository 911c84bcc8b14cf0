"""Typed bundle of the collaborators a step may talk to."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .backends.base import (
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
from .errors import ServiceNotConfiguredError
from .locks.base import LockService
from .policy.updater import LockedPolicyUpdater


@dataclass
class StepServices:
    """Collaborators injected into every step at construction.

    Steps call ``require`` instead of reading attributes directly so a missing
    collaborator fails with the collaborator's name rather than an
    ``AttributeError`` on ``None``.
    """

    identity: Optional[IdentityBackend] = None
    organizations: Optional[OrganizationsBackend] = None
    stacks: Optional[StackBackend] = None
    templates: Optional[TemplateCatalog] = None
    resources: Optional[ResourceService] = None
    locks: Optional[LockService] = None
    policies: Optional[PolicyStore] = None
    keypairs: Optional[KeypairService] = None
    dns: Optional[DnsService] = None
    mounts: Optional[StudyMountService] = None
    appstream: Optional[AppStreamService] = None

    def require(self, name: str) -> Any:
        service = getattr(self, name, None)
        if service is None:
            raise ServiceNotConfiguredError(name)
        return service

    def policy_updater(self) -> LockedPolicyUpdater:
        return LockedPolicyUpdater(self.require("locks"), self.require("policies"))
