"""Workflow instance persistence: models, the repository contract and its backends."""

from __future__ import annotations

from typing import Dict, Optional

from ..config import ProvflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import (
    FailureRecord,
    InstanceStatus,
    LoopState,
    StepRecord,
    WorkflowInstance,
)
from .postgres import PostgresWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

# one repository per database URL; "" is the process-local in-memory store
_repositories: Dict[str, WorkflowRepository] = {}


def get_repository(
    database_url: Optional[str] = None, config: Optional[ProvflowConfig] = None
) -> WorkflowRepository:
    """Return the repository for ``database_url`` or the configured database.

    ``load_config`` already folds ``PROVFLOW_DATABASE_URL``/``DATABASE_URL``
    into the config. Without any URL the in-memory repository is used, and
    repeated calls in one process return the same repository for a URL.
    """
    if database_url is None:
        database_url = (config or load_config()).database_url or ""
    if database_url not in _repositories:
        _repositories[database_url] = _open_repository(database_url)
    return _repositories[database_url]


def _open_repository(database_url: str) -> WorkflowRepository:
    if not database_url:
        return InMemoryWorkflowRepository()
    scheme, _, location = database_url.partition("://")
    if scheme == "sqlite":
        return SQLiteWorkflowRepository(location)
    if scheme in ("postgres", "postgresql"):
        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "FailureRecord",
    "InstanceStatus",
    "LoopState",
    "StepRecord",
    "WorkflowInstance",
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "PostgresWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
]
