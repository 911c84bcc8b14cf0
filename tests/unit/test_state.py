"""Typed payload and state accessor tests."""

import pytest

from provflow.errors import MissingKeyError, StateValueTypeError
from provflow.persistence import InMemoryWorkflowRepository
from provflow.state import Payload, StepState


def test_required_accessors_name_missing_key():
    payload = Payload({"name": "acct"})
    with pytest.raises(MissingKeyError) as exc:
        payload.string("accountEmail")
    assert "accountEmail" in str(exc.value)
    assert isinstance(exc.value, KeyError)


def test_none_counts_as_missing():
    with pytest.raises(MissingKeyError):
        Payload({"x": None}).object("x")


def test_wrong_type_is_reported():
    payload = Payload({"ids": "not-a-list"})
    with pytest.raises(StateValueTypeError) as exc:
        payload.array("ids")
    assert "ids" in str(exc.value)


def test_optional_accessors_fall_back_to_default():
    payload = Payload({"present": ["a"]})
    assert payload.optional_string("missing") is None
    assert payload.optional_string("missing", "d") == "d"
    assert payload.optional_object("missing", {"k": 1}) == {"k": 1}
    assert payload.optional_array("missing") == []
    assert payload.optional_array("present") == ["a"]


def test_payload_is_immutable_and_values_are_copies():
    source = {"ctx": {"uid": "u-1"}}
    payload = Payload(source)
    source["ctx"]["uid"] = "changed"
    ctx = payload.object("ctx")
    ctx["uid"] = "mutated"
    assert payload.object("ctx") == {"uid": "u-1"}
    assert not hasattr(payload, "set_key")


@pytest.mark.asyncio
async def test_set_key_writes_through_and_last_write_wins():
    repo = InMemoryWorkflowRepository()
    await repo.create_instance("i-1", ["s"], {})
    state = StepState("i-1", {}, repo)

    await state.set_key("STACK_ID", "stack-1")
    await state.set_key("STACK_ID", "stack-2")

    assert state.string("STACK_ID") == "stack-2"
    assert state.has("STACK_ID")
    stored = await repo.get_instance("i-1")
    assert stored.state == {"STACK_ID": "stack-2"}


@pytest.mark.asyncio
async def test_set_key_rejects_values_that_cannot_be_persisted():
    repo = InMemoryWorkflowRepository()
    await repo.create_instance("i-1", ["s"], {})
    state = StepState("i-1", {}, repo)
    with pytest.raises(StateValueTypeError):
        await state.set_key("bad", object())
    assert not state.has("bad")
