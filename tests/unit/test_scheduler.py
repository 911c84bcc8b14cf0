"""StepRunner interpretation of wait decisions."""

from datetime import datetime, timezone
from enum import Enum

import pytest

from provflow.contracts import TickMessage
from provflow.errors import BackendOperationFailed
from provflow.persistence import InstanceStatus
from provflow.registry import StepRegistry
from provflow.scheduler import StepRunner
from provflow.services import StepServices
from provflow.steps import Step


def _runner(repository, *step_classes):
    registry = StepRegistry()
    for step_cls in step_classes:
        registry.register(step_cls)
    return StepRunner(repository, registry, StepServices())


@pytest.mark.asyncio
async def test_poll_times_out_after_max_attempts(repository, instant_sleep, delays):
    calls = {"check": 0, "on_fail": []}

    class NeverDone(Step):
        name = "never-done"

        class Continuation(str, Enum):
            CHECK = "check"

        async def start(self):
            return self.wait(10).max_attempts(5).until(self.Continuation.CHECK)

        async def check(self):
            calls["check"] += 1
            return False

        async def on_fail(self, error):
            calls["on_fail"].append(error)

    runner = _runner(repository, NeverDone)
    await repository.create_instance("i-1", ["never-done"], {})
    instance = await runner.run_to_completion("i-1", sleep=instant_sleep)

    assert calls["check"] == 5
    assert len(calls["on_fail"]) == 1
    assert instance.status == InstanceStatus.FAILED
    assert instance.failure.error_type == "PollTimeoutError"
    assert "timed out" in instance.failure.message
    assert instance.failure.on_fail_invoked
    assert delays == [10, 10, 10, 10, 10]


@pytest.mark.asyncio
async def test_on_fail_errors_are_dropped_and_not_repeated(repository, instant_sleep):
    calls = {"on_fail": 0}

    class Broken(Step):
        name = "broken"

        async def start(self):
            raise BackendOperationFailed("Insufficient capacity")

        async def on_fail(self, error):
            calls["on_fail"] += 1
            raise RuntimeError("cleanup failed too")

    runner = _runner(repository, Broken)
    await repository.create_instance("i-1", ["broken"], {})
    instance = await runner.run_to_completion("i-1", sleep=instant_sleep)

    assert instance.status == InstanceStatus.FAILED
    assert instance.failure.message == "Insufficient capacity"
    assert await runner.tick("i-1") is None
    assert calls["on_fail"] == 1


@pytest.mark.asyncio
async def test_successful_poll_runs_then_call(repository, instant_sleep, delays):
    order = []

    class Polled(Step):
        name = "polled"

        class Continuation(str, Enum):
            READY = "ready"
            FINISH = "finish"

        async def start(self):
            order.append("start")
            return self.wait(3).max_attempts(10).until(self.Continuation.READY).then_call(
                self.Continuation.FINISH
            )

        async def ready(self):
            count = len([o for o in order if o == "ready"])
            order.append("ready")
            return count >= 2

        async def finish(self):
            order.append("finish")
            await self.state.set_key("finished", True)

    runner = _runner(repository, Polled)
    await repository.create_instance("i-1", ["polled"], {})
    instance = await runner.run_to_completion("i-1", sleep=instant_sleep)

    assert order == ["start", "ready", "ready", "ready", "finish"]
    assert instance.status == InstanceStatus.COMPLETED
    assert instance.state["finished"] is True
    assert delays == [3, 3, 3]


@pytest.mark.asyncio
async def test_fuzzed_delay_is_redrawn_within_band(repository, instant_sleep, delays):
    class Fuzzy(Step):
        name = "fuzzy"

        class Continuation(str, Enum):
            CHECK = "check"

        async def start(self):
            return self.wait(100, fuzz=True).max_attempts(20).until(self.Continuation.CHECK)

        async def check(self):
            return False

    runner = _runner(repository, Fuzzy)
    await repository.create_instance("i-1", ["fuzzy"], {})
    await runner.run_to_completion("i-1", sleep=instant_sleep)

    assert len(delays) == 20
    assert all(80 <= d <= 120 for d in delays)


@pytest.mark.asyncio
async def test_steps_run_in_sequence_with_shared_state(repository, instant_sleep):
    class First(Step):
        name = "first"

        async def start(self):
            await self.state.set_key("greeting", "hello")

    class Second(Step):
        name = "second"

        class Continuation(str, Enum):
            FINISH = "finish"

        async def start(self):
            return self.wait(1).then_call(self.Continuation.FINISH)

        async def finish(self):
            greeting = self.state.string("greeting")
            await self.state.set_key("greeting", f"{greeting} world")

    runner = _runner(repository, First, Second)
    await repository.create_instance("i-1", ["first", "second"], {})
    instance = await runner.run_to_completion("i-1", sleep=instant_sleep)

    assert instance.status == InstanceStatus.COMPLETED
    assert instance.state["greeting"] == "hello world"
    assert [(s.step_name, s.status) for s in instance.steps] == [
        ("first", "completed"),
        ("second", "completed"),
    ]


@pytest.mark.asyncio
async def test_unknown_persisted_continuation_fails_instance(repository):
    class Simple(Step):
        name = "simple"

        class Continuation(str, Enum):
            FINISH = "finish"

        async def start(self):
            return self.wait(1).then_call(self.Continuation.FINISH)

        async def finish(self):
            return None

    runner = _runner(repository, Simple)
    await repository.create_instance("i-1", ["simple"], {})
    await runner.tick("i-1")

    instance = await repository.get_instance("i-1")
    pending = instance.loop.pending.model_copy(update={"then_call": "dropped_method"})
    await repository.save_loop("i-1", instance.loop.model_copy(update={"pending": pending}))

    assert await runner.tick("i-1") is None
    instance = await repository.get_instance("i-1")
    assert instance.status == InstanceStatus.FAILED
    assert instance.failure.error_type == "UnknownContinuationError"


@pytest.mark.asyncio
async def test_invalid_wait_decision_fails_instance(repository, instant_sleep):
    class NoBound(Step):
        name = "no-bound"

        class Continuation(str, Enum):
            CHECK = "check"

        async def start(self):
            return self.wait(5).until(self.Continuation.CHECK)

        async def check(self):
            return True

    runner = _runner(repository, NoBound)
    await repository.create_instance("i-1", ["no-bound"], {})
    instance = await runner.run_to_completion("i-1", sleep=instant_sleep)

    assert instance.status == InstanceStatus.FAILED
    assert instance.failure.error_type == "WaitDecisionError"


@pytest.mark.asyncio
async def test_unregistered_step_fails_without_on_fail(repository):
    runner = _runner(repository)
    await repository.create_instance("i-1", ["missing"], {})

    assert await runner.tick("i-1") is None
    instance = await repository.get_instance("i-1")
    assert instance.status == InstanceStatus.FAILED
    assert not instance.failure.on_fail_invoked


@pytest.mark.asyncio
async def test_tick_of_unknown_instance_raises(repository):
    runner = _runner(repository)
    with pytest.raises(LookupError):
        await runner.tick("nope")


class _CountingPoll(Step):
    name = "counting-poll"
    checks = 0

    class Continuation(str, Enum):
        CHECK = "check"

    async def start(self):
        return self.wait(0).max_attempts(3).until(self.Continuation.CHECK)

    async def check(self):
        type(self).checks += 1
        return type(self).checks >= 2


@pytest.mark.asyncio
async def test_duplicate_tick_message_runs_once(repository):
    _CountingPoll.checks = 0
    runner = _runner(repository, _CountingPoll)
    await repository.create_instance("i-1", ["counting-poll"], {})
    first = TickMessage(instance_id="i-1")

    follow_up = await runner.advance(first)
    assert follow_up is not None
    assert follow_up.generation == 1
    assert await runner.advance(first) is None

    instance = await repository.get_instance("i-1")
    assert instance.loop.generation == 1
    assert len(instance.steps) == 1

    second = await runner.advance(follow_up)
    assert second is not None and second.generation == 2
    assert await runner.advance(follow_up) is None
    assert _CountingPoll.checks == 1

    assert await runner.advance(second) is None
    assert _CountingPoll.checks == 2
    instance = await repository.get_instance("i-1")
    assert instance.status == InstanceStatus.COMPLETED


@pytest.mark.asyncio
async def test_tick_before_persisted_due_time_is_restamped(repository):
    class Sleeper(Step):
        name = "sleeper"

        class Continuation(str, Enum):
            FINISH = "finish"

        async def start(self):
            return self.wait(600).then_call(self.Continuation.FINISH)

        async def finish(self):
            return None

    runner = _runner(repository, Sleeper)
    await repository.create_instance("i-1", ["sleeper"], {})
    follow_up = await runner.advance(TickMessage(instance_id="i-1"))

    early = follow_up.model_copy(update={"due_at": datetime.now(timezone.utc)})
    restamped = await runner.advance(early)

    instance = await repository.get_instance("i-1")
    assert restamped.generation == follow_up.generation
    assert restamped.due_at == instance.loop.due_at
    assert instance.loop.generation == 1
    assert instance.status == InstanceStatus.RUNNING


@pytest.mark.asyncio
async def test_pending_ticks_cover_running_instances_only(repository, instant_sleep):
    _CountingPoll.checks = 0
    runner = _runner(repository, _CountingPoll)
    await repository.create_instance("running", ["counting-poll"], {})
    await repository.create_instance("done", ["counting-poll"], {})
    await runner.tick("running")
    await runner.run_to_completion("done", sleep=instant_sleep)

    ticks = await runner.pending_ticks()

    instance = await repository.get_instance("running")
    assert [(t.instance_id, t.generation) for t in ticks] == [("running", 1)]
    assert ticks[0].due_at == instance.loop.due_at
    assert [t.instance_id for t in await runner.pending_ticks("running")] == ["running"]


@pytest.mark.asyncio
async def test_instance_locks_are_released_once_terminal(repository, instant_sleep):
    _CountingPoll.checks = 0
    runner = _runner(repository, _CountingPoll)
    await repository.create_instance("i-1", ["counting-poll"], {})
    await runner.tick("i-1")
    assert "i-1" in runner._locks

    await runner.run_to_completion("i-1", sleep=instant_sleep)
    assert "i-1" not in runner._locks


@pytest.mark.asyncio
async def test_run_to_completion_of_unknown_instance_raises(repository):
    runner = _runner(repository)
    with pytest.raises(LookupError):
        await runner.run_to_completion("nope")
