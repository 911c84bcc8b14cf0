"""Exception taxonomy for provflow workflows."""

from __future__ import annotations

from typing import Optional


class ProvflowError(Exception):
    """Base class for all provflow errors."""


class MissingKeyError(ProvflowError, KeyError):
    """A required state or payload key is absent."""

    def __init__(self, key: str, source: str = "state") -> None:
        self.key = key
        self.source = source
        super().__init__(f"{source} key {key!r} is missing")

    def __str__(self) -> str:
        return self.args[0]


class StateValueTypeError(ProvflowError, TypeError):
    """A state or payload value does not have the requested type."""

    def __init__(self, key: str, expected: str, actual: object, source: str = "state") -> None:
        self.key = key
        self.expected = expected
        super().__init__(
            f"{source} key {key!r} holds {type(actual).__name__}, expected {expected}"
        )


class BackendOperationFailed(ProvflowError):
    """A provisioning backend reported a terminal failure."""

    def __init__(self, reason: str, status: Optional[str] = None) -> None:
        self.reason = reason
        self.status = status
        super().__init__(reason)


class PollTimeoutError(ProvflowError):
    """A poll exhausted its attempts without the check succeeding."""

    def __init__(self, method: str, attempts: int) -> None:
        self.method = method
        self.attempts = attempts
        super().__init__(f"timed out: {method} did not succeed after {attempts} attempts")


class LockContentionError(ProvflowError):
    """A named lock is held elsewhere. Retry with a fresh wait decision."""

    def __init__(self, lock_key: str, message: Optional[str] = None) -> None:
        self.lock_key = lock_key
        super().__init__(message or f"could not obtain lock {lock_key!r}")


class PolicyWriteConflictError(LockContentionError):
    """The policy document changed between read and write."""

    def __init__(self, resource_id: str, expected: Optional[int], actual: Optional[int]) -> None:
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"policy|{resource_id}",
            f"policy for {resource_id!r} changed (expected revision {expected}, found {actual})",
        )


class BenignCleanupError(ProvflowError):
    """Cleanup target is already gone; safe to ignore during teardown."""


class StatusClassificationError(ProvflowError, ValueError):
    """A backend status string has no known classification."""

    def __init__(self, status: str, kind: str = "stack") -> None:
        self.status = status
        super().__init__(f"unrecognized {kind} status: {status!r}")


class WaitDecisionError(ProvflowError, ValueError):
    """A wait decision was configured inconsistently."""


class UnknownContinuationError(ProvflowError, LookupError):
    """A persisted method name does not name a continuation of the step."""

    def __init__(self, step_name: str, method: str) -> None:
        self.step_name = step_name
        self.method = method
        super().__init__(f"step {step_name!r} has no continuation {method!r}")


class ServiceNotConfiguredError(ProvflowError, LookupError):
    """A step asked for a collaborator that was not provided."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"service {name!r} is not configured")


class RevisionConflictError(ProvflowError):
    """A resource record was updated with a stale revision."""

    def __init__(self, kind: str, record_id: str, expected: int, actual: int) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(
            f"{kind} {record_id!r} is at revision {actual}, update expected {expected}"
        )


class ResourceNotFoundError(ProvflowError, LookupError):
    """A resource record does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id!r} not found")


class IdentityBackendError(ProvflowError):
    """Credential exchange failed. Transient failures may be retried."""

    def __init__(self, message: str, transient: bool = True) -> None:
        self.transient = transient
        super().__init__(message)
