"""Value objects exchanged with provisioning backends."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Credentials(BaseModel):
    """Short-lived access tuple issued by the identity backend."""

    access_key_id: str
    secret_access_key: str = Field(repr=False)
    session_token: str = Field(repr=False)
    expiration: Optional[datetime] = None


class StackParameter(BaseModel):
    key: str
    value: str


class StackSpec(BaseModel):
    """Stack submission request."""

    name: str
    template_body: str
    parameters: List[StackParameter] = Field(default_factory=list)
    capabilities: List[str] = Field(default_factory=list)
    tags: Dict[str, str] = Field(default_factory=dict)

    def parameter(self, key: str) -> Optional[str]:
        for param in self.parameters:
            if param.key == key:
                return param.value
        return None


class StackOutput(BaseModel):
    key: str
    value: str


class StackDescription(BaseModel):
    stack_id: str
    name: str
    status: str
    status_reason: Optional[str] = None
    outputs: List[StackOutput] = Field(default_factory=list)

    def output_map(self) -> Dict[str, str]:
        return {output.key: output.value for output in self.outputs}


class StackEvent(BaseModel):
    logical_id: str
    resource_status: str
    resource_status_reason: Optional[str] = None
    timestamp: Optional[datetime] = None


class AccountCreationStatus(BaseModel):
    request_id: str
    state: str
    account_id: Optional[str] = None
    failure_reason: Optional[str] = None


class AccountInfo(BaseModel):
    account_id: str
    arn: str
    name: Optional[str] = None
    email: Optional[str] = None


class MountParameters(BaseModel):
    """Study mount configuration handed to an environment stack."""

    s3_mounts: str = "[]"
    iam_policy_document: str = "{}"
    environment_instance_files: str = ""
    s3_prefixes: List[str] = Field(default_factory=list)


class ResourceRecord(BaseModel):
    """Catalog record with an optimistic revision counter."""

    kind: str
    id: str
    rev: int = 0
    data: Dict[str, Any] = Field(default_factory=dict)
