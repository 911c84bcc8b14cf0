"""Access policy document models."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..constants import EMPTY_POLICY_ID, POLICY_SCHEMA_VERSION


class PolicyStatement(BaseModel):
    """One statement of a resource policy, identified by its Sid."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    sid: str = Field(alias="Sid")
    effect: str = Field(default="Allow", alias="Effect")
    principal: Dict[str, Union[str, List[str]]] = Field(
        default_factory=lambda: {"AWS": []}, alias="Principal"
    )
    action: Union[str, List[str]] = Field(alias="Action")
    resource: Union[str, List[str]] = Field(alias="Resource")
    condition: Optional[Dict[str, Any]] = Field(default=None, alias="Condition")

    def principals(self) -> List[str]:
        """AWS principals as a list; a single string principal is allowed."""
        value = self.principal.get("AWS", [])
        if isinstance(value, str):
            return [value] if value else []
        return list(value)

    def with_principal(self, principal: str) -> "PolicyStatement":
        merged = self.principals()
        if principal not in merged:
            merged.append(principal)
        return self.model_copy(update={"principal": {**self.principal, "AWS": merged}})

    def without_principal(self, principal: str) -> "PolicyStatement":
        remaining = [p for p in self.principals() if p != principal]
        return self.model_copy(update={"principal": {**self.principal, "AWS": remaining}})


class AccessPolicyDocument(BaseModel):
    """A full resource policy plus the store revision it was read at."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default=EMPTY_POLICY_ID, alias="Id")
    version: str = Field(default=POLICY_SCHEMA_VERSION, alias="Version")
    statements: List[PolicyStatement] = Field(default_factory=list, alias="Statement")
    revision: Optional[int] = Field(default=None, exclude=True)

    @classmethod
    def empty(cls) -> "AccessPolicyDocument":
        return cls()

    def find(self, sid: str) -> Optional[PolicyStatement]:
        for statement in self.statements:
            if statement.sid == sid:
                return statement
        return None

    def put_statement(self, statement: PolicyStatement) -> None:
        """Drop any statement with the same Sid and append ``statement``."""
        self.drop_statement(statement.sid)
        self.statements.append(statement)

    def drop_statement(self, sid: str) -> None:
        self.statements = [s for s in self.statements if s.sid != sid]

    def to_policy_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_policy_json(cls, data: str, revision: Optional[int] = None) -> "AccessPolicyDocument":
        document = cls.model_validate_json(data)
        document.revision = revision
        return document
