"""Wait decision builder and tick message tests."""

from datetime import datetime, timedelta, timezone
from enum import Enum

import pytest

from provflow.contracts import TickMessage, WaitDecision, WaitDecisionBuilder, method_name
from provflow.errors import WaitDecisionError
from provflow.utils import fuzz


class Methods(str, Enum):
    CHECK = "check_done"
    NEXT = "do_next"


def test_poll_decision_keeps_method_names():
    decision = WaitDecisionBuilder(20).max_attempts(120).until(Methods.CHECK).then_call(Methods.NEXT).build()
    assert decision.check == "check_done"
    assert decision.then_call == "do_next"
    assert decision.max_attempts == 120
    assert decision.is_poll


def test_until_without_max_attempts_fails_at_build():
    with pytest.raises(WaitDecisionError):
        WaitDecisionBuilder(5).until("check").build()
    with pytest.raises(WaitDecisionError):
        WaitDecisionBuilder(5).max_attempts(0).until("check").build()


def test_builder_needs_a_continuation():
    with pytest.raises(WaitDecisionError):
        WaitDecisionBuilder(5).max_attempts(3).build()


def test_negative_wait_rejected():
    with pytest.raises(WaitDecisionError):
        WaitDecisionBuilder(-1)


def test_then_call_ignores_max_attempts():
    decision = WaitDecisionBuilder(300).max_attempts(7).then_call("deploy").build()
    assert decision.max_attempts is None
    assert not decision.is_poll


def test_fuzzed_delays_stay_in_band():
    decision = WaitDecision(seconds=10, fuzz=True, then_call="next")
    samples = [decision.next_delay() for _ in range(1000)]
    assert all(8.0 <= s <= 12.0 for s in samples)
    assert len(set(samples)) > 1


def test_unfuzzed_delay_is_exact():
    decision = WaitDecision(seconds=10, then_call="next")
    assert {decision.next_delay() for _ in range(20)} == {10}


def test_fuzz_band_is_configurable():
    samples = [fuzz(100, band=0.5) for _ in range(500)]
    assert all(50.0 <= s <= 150.0 for s in samples)
    with pytest.raises(ValueError):
        fuzz(10, band=1.0)


def test_wait_decision_round_trips_as_plain_strings():
    decision = WaitDecisionBuilder(60, fuzz=True).max_attempts(3).until(Methods.CHECK).build()
    restored = WaitDecision.model_validate_json(decision.model_dump_json())
    assert restored == decision
    assert method_name(Methods.NEXT) == "do_next"
    assert method_name("plain") == "plain"


def test_tick_message_due_time():
    now = datetime.now(timezone.utc)
    message = TickMessage(instance_id="i-1", due_at=now + timedelta(seconds=30))
    assert 29 <= message.seconds_until_due(now) <= 30
    assert TickMessage(instance_id="i-1", due_at=now - timedelta(seconds=5)).seconds_until_due(now) == 0.0
    assert TickMessage.from_json(message.to_json()).instance_id == "i-1"
