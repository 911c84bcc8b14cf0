"""Classification of backend status strings into polling buckets."""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping

from ..errors import StatusClassificationError


class StatusClass(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


STACK_FAILED = frozenset(
    {
        "CREATE_FAILED",
        "ROLLBACK_FAILED",
        "DELETE_FAILED",
        "UPDATE_FAILED",
        "UPDATE_ROLLBACK_FAILED",
        "ROLLBACK_COMPLETE",
        "UPDATE_ROLLBACK_COMPLETE",
        "IMPORT_ROLLBACK_FAILED",
        "IMPORT_ROLLBACK_COMPLETE",
    }
)

STACK_SUCCESS = frozenset(
    {"CREATE_COMPLETE", "DELETE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"}
)

STACK_PENDING = frozenset(
    {
        "CREATE_IN_PROGRESS",
        "ROLLBACK_IN_PROGRESS",
        "DELETE_IN_PROGRESS",
        "UPDATE_IN_PROGRESS",
        "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
        "UPDATE_ROLLBACK_IN_PROGRESS",
        "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS",
        "REVIEW_IN_PROGRESS",
        "IMPORT_IN_PROGRESS",
        "IMPORT_ROLLBACK_IN_PROGRESS",
    }
)

ACCOUNT_CREATION_STATUSES: Mapping[str, StatusClass] = MappingProxyType(
    {
        "IN_PROGRESS": StatusClass.PENDING,
        "SUCCEEDED": StatusClass.SUCCESS,
        "FAILED": StatusClass.FAILED,
    }
)


def classify_stack_status(status: str) -> StatusClass:
    """Map a stack status onto exactly one bucket.

    Raises:
        StatusClassificationError: for any status not listed above.
    """
    if status in STACK_FAILED:
        return StatusClass.FAILED
    if status in STACK_SUCCESS:
        return StatusClass.SUCCESS
    if status in STACK_PENDING:
        return StatusClass.PENDING
    raise StatusClassificationError(status, "stack")


def classify_account_status(state: str) -> StatusClass:
    try:
        return ACCOUNT_CREATION_STATUSES[state]
    except KeyError:
        raise StatusClassificationError(state, "account creation") from None
