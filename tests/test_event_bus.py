from __future__ import annotations

import logging

import pytest

from sessiondeck.backend import EventBus


def test_bus_delivers_in_subscription_order() -> None:
    bus = EventBus()
    seen: list[tuple[str, object]] = []
    bus.listen("session-created", lambda payload: seen.append(("first", payload)))
    bus.listen("session-created", lambda payload: seen.append(("second", payload)))
    bus.listen("session-deleted", lambda payload: seen.append(("other", payload)))

    delivered = bus.emit("session-created", {"id": 1})

    assert delivered == 2
    assert seen == [("first", {"id": 1}), ("second", {"id": 1})]


def test_unlisten_is_idempotent() -> None:
    bus = EventBus()
    seen: list[object] = []
    unlisten = bus.listen("tick", seen.append)

    unlisten()
    unlisten()
    bus.emit("tick", 1)

    assert seen == []
    assert bus.listener_count("tick") == 0


def test_handler_may_unlisten_itself_during_dispatch() -> None:
    bus = EventBus()
    seen: list[str] = []
    unlisten_holder: list = []

    def once(payload) -> None:
        seen.append("once")
        unlisten_holder[0]()

    unlisten_holder.append(bus.listen("tick", once))
    bus.listen("tick", lambda payload: seen.append("always"))

    bus.emit("tick", None)
    bus.emit("tick", None)

    assert seen == ["once", "always", "always"]


def test_failing_handler_does_not_block_others(caplog: pytest.LogCaptureFixture) -> None:
    bus = EventBus()
    seen: list[object] = []

    def broken(payload) -> None:
        raise RuntimeError("boom")

    bus.listen("tick", broken)
    bus.listen("tick", seen.append)

    with caplog.at_level(logging.ERROR):
        bus.emit("tick", 7)

    assert seen == [7]
    assert "Event handler failed" in caplog.text
