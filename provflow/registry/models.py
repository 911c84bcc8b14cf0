"""Pydantic models describing registered steps and workflow templates."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class SemanticVersion(BaseModel):
    """Semantic version with ``major.minor.patch`` components."""

    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, value: str) -> "SemanticVersion":
        """Parse a dotted semantic version string."""
        parts = value.split(".")
        if len(parts) != 3:
            raise ValueError("Semantic version must have three components")
        major, minor, patch = (int(p) for p in parts)
        return cls(major=major, minor=minor, patch=patch)

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.major}.{self.minor}.{self.patch}"


class StepDescriptor(BaseModel):
    """Metadata describing a registered step class."""

    name: str
    version: SemanticVersion
    description: Optional[str] = None
    continuations: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _ensure_name(cls, v: str) -> str:
        if not v:
            raise ValueError("step name must be a non-empty string")
        return v


class WorkflowTemplate(BaseModel):
    """Ordered list of step ids launched together as one workflow."""

    id: str
    title: Optional[str] = None
    step_ids: List[str] = Field(..., min_length=1)

    @classmethod
    def from_yaml(cls, text: str) -> "WorkflowTemplate":
        return cls.model_validate(yaml.safe_load(text) or {})

    @classmethod
    def load(cls, path: str) -> "WorkflowTemplate":
        with open(path) as f:
            return cls.from_yaml(f.read())


class RegistrySnapshot(BaseModel):
    """Point-in-time listing of the registry contents."""

    steps: List[StepDescriptor] = Field(default_factory=list)
    templates: List[WorkflowTemplate] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    schema_version: str = "1"
