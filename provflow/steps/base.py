"""Resumable step contract shared by all provisioning steps."""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Dict, Optional, Union

from ..backends.models import Credentials, StackDescription
from ..config import StepSettings
from ..contracts import MethodRef, WaitDecision, WaitDecisionBuilder, method_name
from ..errors import IdentityBackendError, UnknownContinuationError
from ..services import StepServices
from ..state import Payload, StepState
from ..utils.retry import compute_backoff

logger = logging.getLogger(__name__)

START = "start"

StepResult = Union[None, bool, WaitDecision]


class Step:
    """One resumable phase of a provisioning workflow.

    ``start`` and every continuation return ``None`` when the step is done or
    a wait decision (built with ``self.wait``) describing how to resume.
    Checks used with ``until`` return ``True`` once the awaited operation has
    finished. Nothing may be kept on ``self`` across a suspension; a fresh
    instance is built for every invocation and anything later methods need
    goes through ``self.state``.
    """

    name: ClassVar[str] = ""
    version: ClassVar[str] = "1.0.0"
    description: ClassVar[str] = ""

    class Continuation(str, Enum):
        pass

    credential_attempts: ClassVar[int] = 3

    def __init__(
        self,
        *,
        instance_id: str,
        payload: Payload,
        state: StepState,
        services: StepServices,
        settings: Optional[StepSettings] = None,
    ) -> None:
        self.instance_id = instance_id
        self.payload = payload
        self.state = state
        self.services = services
        self.settings = settings or StepSettings()

    def wait(self, seconds: float, fuzz: bool = False) -> WaitDecisionBuilder:
        return WaitDecisionBuilder(seconds, fuzz=fuzz)

    async def start(self) -> Any:
        raise NotImplementedError

    async def on_fail(self, error: BaseException) -> None:
        """Compensate side effects of a failed run. Called at most once."""

    def resolve(self, method: MethodRef) -> Callable[[], Awaitable[Any]]:
        """Map a persisted method name onto a bound coroutine method."""
        name = method_name(method)
        if name == START:
            return self.start
        try:
            member = self.Continuation(name)
        except ValueError:
            raise UnknownContinuationError(self.name, name) from None
        fn = getattr(self, member.value, None)
        if fn is None or not inspect.iscoroutinefunction(fn):
            raise UnknownContinuationError(self.name, name)
        return fn

    async def invoke(self, method: MethodRef) -> StepResult:
        """Run ``method`` and normalize its result.

        Builders are validated here, so a misconfigured wait decision fails
        the step at the point it was returned.
        """
        result = await self.resolve(method)()
        if isinstance(result, WaitDecisionBuilder):
            return result.build()
        if result is None or isinstance(result, (bool, WaitDecision)):
            return result
        raise TypeError(
            f"{self.name}.{method_name(method)} returned {type(result).__name__}; "
            "expected None, bool or a wait decision"
        )

    async def safe_on_fail(self, error: BaseException) -> None:
        try:
            await self.on_fail(error)
        except Exception as e:
            logger.error(
                f"on_fail of {self.name} for instance {self.instance_id} raised "
                f"{type(e).__name__}: {e} (original error: {error})"
            )

    async def assume_role(
        self,
        role_arn: str,
        session_name: str,
        external_id: Optional[str] = None,
        credentials: Optional[Credentials] = None,
    ) -> Credentials:
        """Exchange credentials, retrying transient identity errors with backoff."""
        identity = self.services.require("identity")
        attempt = 0
        while True:
            try:
                return await identity.assume_role(
                    role_arn, session_name, external_id, credentials=credentials
                )
            except IdentityBackendError as e:
                attempt += 1
                if not e.transient or attempt >= self.credential_attempts:
                    raise
                delay = compute_backoff(attempt - 1)
                logger.warning(
                    f"Assuming {role_arn} failed ({e}); retry {attempt} in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

    async def describe_stack(
        self, credentials: Credentials, stack_id: str
    ) -> StackDescription:
        return await self.services.require("stacks").describe(credentials, stack_id)

    @staticmethod
    def stack_outputs(description: StackDescription) -> Dict[str, str]:
        return description.output_map()
