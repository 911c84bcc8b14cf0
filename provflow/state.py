"""Typed, fail-fast access to workflow payload and state values.

Both accessors wrap a snapshot loaded fresh from the repository at the start
of every scheduler tick. ``StepState.set_key`` writes through to the
repository immediately, so nothing a step needs after a suspension lives only
in memory.
"""

from __future__ import annotations

import copy
import json
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional

from .errors import MissingKeyError, StateValueTypeError

if TYPE_CHECKING:
    from .persistence import WorkflowRepository

_MISSING = object()


class _TypedValues:
    _source = "state"

    def __init__(self, values: Mapping[str, Any]) -> None:
        self._values = values

    def has(self, key: str) -> bool:
        return key in self._values

    def keys(self) -> list[str]:
        return list(self._values.keys())

    def _get(self, key: str, expected: type, label: str, default: Any = _MISSING) -> Any:
        if key not in self._values or self._values[key] is None:
            if default is _MISSING:
                raise MissingKeyError(key, self._source)
            return default
        value = self._values[key]
        if not isinstance(value, expected):
            raise StateValueTypeError(key, label, value, self._source)
        return copy.deepcopy(value)

    def string(self, key: str) -> str:
        return self._get(key, str, "string")

    def object(self, key: str) -> dict[str, Any]:
        return self._get(key, dict, "object")

    def array(self, key: str) -> list[Any]:
        return self._get(key, list, "array")

    def optional_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._get(key, str, "string", default)

    def optional_object(
        self, key: str, default: Optional[dict[str, Any]] = None
    ) -> Optional[dict[str, Any]]:
        return self._get(key, dict, "object", default)

    def optional_array(self, key: str, default: Iterable[Any] = ()) -> list[Any]:
        return self._get(key, list, "array", list(default))


class Payload(_TypedValues):
    """Read-only launch parameters of a workflow instance."""

    _source = "payload"

    def __init__(self, values: Mapping[str, Any]) -> None:
        super().__init__(MappingProxyType(copy.deepcopy(dict(values))))


class StepState(_TypedValues):
    """Mutable per-instance state backed by the workflow repository."""

    def __init__(
        self,
        instance_id: str,
        values: Mapping[str, Any],
        repository: "WorkflowRepository",
    ) -> None:
        super().__init__(copy.deepcopy(dict(values)))
        self.instance_id = instance_id
        self._repository = repository

    async def set_key(self, key: str, value: Any) -> None:
        """Persist ``value`` under ``key``; the last write wins."""
        try:
            json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StateValueTypeError(key, "JSON-serializable value", value) from e
        await self._repository.set_state_key(self.instance_id, key, value)
        self._values[key] = copy.deepcopy(value)  # type: ignore[index]
