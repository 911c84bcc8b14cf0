"""Read-merge-write updates of shared resource policies under a named lock."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Mapping, Optional

from .models import AccessPolicyDocument, PolicyStatement

if TYPE_CHECKING:
    from ..backends.base import PolicyStore
    from ..locks.base import LockService

logger = logging.getLogger(__name__)

StatementMutation = Callable[[Optional[PolicyStatement]], Optional[PolicyStatement]]


def policy_lock_key(resource_id: str) -> str:
    return f"policy|{resource_id}"


class LockedPolicyUpdater:
    """Serializes policy edits per resource.

    Every update takes the ``policy|<resource-id>`` lock fail-fast, reads the
    full document, changes statements by Sid and writes the whole document
    back at the revision it was read at. Contention surfaces as
    ``LockContentionError``; a write racing a writer that bypassed the lock
    surfaces as ``PolicyWriteConflictError``. Neither is retried here.
    """

    def __init__(self, lock_service: "LockService", policy_store: "PolicyStore") -> None:
        self.lock_service = lock_service
        self.policy_store = policy_store

    async def update_statements(
        self, resource_id: str, mutations: Mapping[str, StatementMutation]
    ) -> AccessPolicyDocument:
        """Apply one mutation per Sid of ``resource_id`` in a single locked write.

        Each mutation receives the current statement (or ``None``) and returns
        its replacement. Returning ``None`` or a statement with no principals
        removes the Sid from the document.
        """

        async def _merge() -> AccessPolicyDocument:
            document = await self.policy_store.get_policy(resource_id)
            if document is None:
                document = AccessPolicyDocument.empty()
            expected_revision = document.revision

            for sid, mutate in mutations.items():
                updated = mutate(document.find(sid))
                if updated is None or not updated.principals():
                    document.drop_statement(sid)
                else:
                    document.put_statement(updated)

            document.revision = await self.policy_store.put_policy(
                resource_id, document, expected_revision
            )
            return document

        return await self.lock_service.try_write_lock_and_run(
            policy_lock_key(resource_id), _merge
        )

    async def update(
        self, resource_id: str, sid: str, mutate: StatementMutation
    ) -> AccessPolicyDocument:
        return await self.update_statements(resource_id, {sid: mutate})

    async def grant_principal(
        self,
        resource_id: str,
        sid: str,
        principal: str,
        default_statement: Callable[[], PolicyStatement],
    ) -> AccessPolicyDocument:
        """Add ``principal`` to statement ``sid``, creating it if needed."""
        document = await self.update(
            resource_id, sid, granting(principal, default_statement)
        )
        logger.info(f"Granted {principal} on {resource_id} ({sid})")
        return document

    async def revoke_principal(
        self, resource_id: str, sid: str, principal: str
    ) -> AccessPolicyDocument:
        """Remove ``principal`` from statement ``sid``; absent statements stay absent."""
        document = await self.update(resource_id, sid, revoking(principal))
        logger.info(f"Revoked {principal} on {resource_id} ({sid})")
        return document


def granting(
    principal: str, default_statement: Callable[[], PolicyStatement]
) -> StatementMutation:
    def _grant(statement: Optional[PolicyStatement]) -> PolicyStatement:
        return (statement or default_statement()).with_principal(principal)

    return _grant


def revoking(principal: str) -> StatementMutation:
    def _revoke(statement: Optional[PolicyStatement]) -> Optional[PolicyStatement]:
        if statement is None:
            return None
        return statement.without_principal(principal)

    return _revoke
