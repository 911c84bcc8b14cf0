"""Core contracts exchanged between steps, the scheduler and transports."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field

from .constants import DEFAULT_FUZZ_BAND
from .errors import WaitDecisionError
from .utils.retry import fuzz as fuzz_delay

MethodRef = Union[str, Enum]


def method_name(method: MethodRef) -> str:
    """Return the persisted string form of a continuation reference."""
    if isinstance(method, Enum):
        return str(method.value)
    return method


class WaitDecision(BaseModel):
    """How the scheduler should resume a suspended step.

    ``check`` set means poll mode: the check runs every ``seconds`` until it
    returns ``True`` or ``max_attempts`` checks have been spent. ``then_call``
    runs once after the wait (or after a successful check). A poll without
    ``then_call`` completes the step when the check succeeds.
    """

    seconds: float
    fuzz: bool = False
    check: Optional[str] = None
    then_call: Optional[str] = None
    max_attempts: Optional[int] = None

    @property
    def is_poll(self) -> bool:
        return self.check is not None

    def next_delay(self, band: float = DEFAULT_FUZZ_BAND) -> float:
        """Delay before the next invocation, re-drawn on every call when fuzzed."""
        if self.fuzz:
            return fuzz_delay(self.seconds, band)
        return self.seconds


class WaitDecisionBuilder:
    """Fluent builder returned by ``Step.wait``."""

    def __init__(self, seconds: float, fuzz: bool = False) -> None:
        if seconds < 0:
            raise WaitDecisionError("wait seconds must be >= 0")
        self._seconds = seconds
        self._fuzz = fuzz
        self._max_attempts: Optional[int] = None
        self._check: Optional[str] = None
        self._then_call: Optional[str] = None

    def max_attempts(self, attempts: int) -> "WaitDecisionBuilder":
        self._max_attempts = attempts
        return self

    def until(self, check: MethodRef) -> "WaitDecisionBuilder":
        self._check = method_name(check)
        return self

    def then_call(self, method: MethodRef) -> "WaitDecisionBuilder":
        self._then_call = method_name(method)
        return self

    def build(self) -> WaitDecision:
        """Validate and freeze the decision."""
        if self._check is None and self._then_call is None:
            raise WaitDecisionError("wait decision needs until() or then_call()")
        if self._check is not None:
            if not self._max_attempts or self._max_attempts < 1:
                raise WaitDecisionError(
                    f"polling {self._check!r} requires max_attempts >= 1"
                )
            max_attempts = self._max_attempts
        else:
            max_attempts = None
        return WaitDecision(
            seconds=self._seconds,
            fuzz=self._fuzz,
            check=self._check,
            then_call=self._then_call,
            max_attempts=max_attempts,
        )


class TickMessage(BaseModel):
    """Transport envelope asking a worker to advance one workflow instance.

    ``generation`` is the instance's tick generation the message was issued
    for; ``redeliveries`` counts how often a worker handed it back after an
    infrastructure error.
    """

    instance_id: str
    due_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    generation: int = 0
    redeliveries: int = 0
    message_version: str = "1.1"

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "TickMessage":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)

    def seconds_until_due(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max(0.0, (self.due_at - now).total_seconds())

    def redelivered(self, delay: float) -> "TickMessage":
        """Copy of this tick due ``delay`` seconds from now."""
        return self.model_copy(
            update={
                "due_at": datetime.now(timezone.utc) + timedelta(seconds=delay),
                "redeliveries": self.redeliveries + 1,
            }
        )
