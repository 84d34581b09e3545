from __future__ import annotations

import pytest

from fleet_mcp.errors import ValidationError
from fleet_mcp.events import EventBus
from fleet_mcp.targets import TargetKey, is_valid_name, target_key, validate_target


@pytest.mark.parametrize("name", ["alice", "data_team", "v1.2", "web-app"])
def test_valid_names(name: str) -> None:
    assert is_valid_name(name)


@pytest.mark.parametrize("name", ["", ".", "..", "a/b", "a b", "../x", "ñame"])
def test_invalid_names(name: str) -> None:
    assert not is_valid_name(name)


def test_target_key_round_trip() -> None:
    key = TargetKey.parse(target_key("agent", "bob"))

    assert key == TargetKey("agent", "bob")
    assert str(key) == "agent:bob"


def test_validate_target_rejects_unknown_type() -> None:
    with pytest.raises(ValidationError):
        validate_target("robot", "bob")
    with pytest.raises(ValidationError):
        TargetKey.parse("agent-bob")


def test_event_bus_isolates_failing_listener() -> None:
    bus = EventBus()
    received: list[int] = []

    def broken(_value: int) -> None:
        raise RuntimeError("listener bug")

    bus.on("tick", broken)
    unsubscribe = bus.on("tick", received.append)
    bus.emit("tick", 1)
    unsubscribe()
    bus.emit("tick", 2)

    assert received == [1]
    assert bus.listener_count("tick") == 1
