from __future__ import annotations

import asyncio
import itertools
import logging

import pytest

from sessiondeck.backend import InMemoryBackend
from sessiondeck.models import SessionStatus
from sessiondeck.models.events import (
    SESSION_CREATED,
    SESSION_DELETED,
    SESSION_EVENTS,
    SESSION_SERVER_DETECTED,
    SESSION_STATUS_CHANGED,
    SESSION_UPDATED,
    SessionStatusChangedEvent,
)
from sessiondeck.router import EventRouter
from sessiondeck.store import AgentStatusTracker, SessionCache


def make_router():
    backend = InMemoryBackend()
    cache = SessionCache(backend)
    tracker = AgentStatusTracker()
    router = EventRouter(backend, cache, tracker)
    router.start()
    return backend, cache, tracker, router


def session_payload(status: str = "initializing") -> dict:
    return {"id": "s-1", "numericId": 1, "status": status}


def test_backend_events_flow_into_cache() -> None:
    backend, cache, _, router = make_router()

    async def scenario() -> str:
        session = await backend.create_session()
        await backend.update_session(session["id"], {"assignedBranch": "feature/cache"})
        return session["id"]

    session_id = asyncio.run(scenario())

    assert cache.get(session_id).assigned_branch == "feature/cache"
    router.stop()


@pytest.mark.parametrize(
    "order",
    list(itertools.permutations([SESSION_CREATED, SESSION_UPDATED, SESSION_DELETED])),
)
def test_any_event_order_converges_after_delete(order: tuple[str, ...]) -> None:
    backend, cache, tracker, _ = make_router()
    tracker.upsert("s-1", "working", "Editing")
    payloads = {
        SESSION_CREATED: {"session": session_payload()},
        SESSION_UPDATED: {"session": session_payload("working"), "changedFields": ["status"]},
        SESSION_DELETED: {"sessionId": "s-1"},
    }

    for name in order:
        backend.bus.emit(name, payloads[name])

    assert "s-1" not in cache
    assert "s-1" not in tracker


def test_updated_before_created_still_caches_latest() -> None:
    backend, cache, _, _ = make_router()

    backend.bus.emit(SESSION_UPDATED, {"session": session_payload("working"), "changedFields": []})

    assert cache.get("s-1").status is SessionStatus.WORKING


def test_invalid_payload_triggers_resync(caplog: pytest.LogCaptureFixture) -> None:
    backend, cache, _, router = make_router()

    async def scenario() -> None:
        router.stop()
        await backend.create_session()
        await backend.create_session()
        router.start()
        backend.bus.emit(SESSION_UPDATED, {"session": {"numericId": "not-a-number"}})
        await router.drain()

    with caplog.at_level(logging.ERROR):
        asyncio.run(scenario())

    assert [session.numeric_id for session in cache.sorted_sessions()] == [1, 2]
    assert backend.call_count("list_sessions") == 1
    assert "Invalid backend event" in caplog.text


def test_telemetry_listeners_receive_status_events() -> None:
    backend, cache, _, router = make_router()
    received: list[tuple[str, object]] = []
    unsubscribe = router.on_telemetry(lambda name, event: received.append((name, event)))
    cache.upsert(session_payload())

    change = {"sessionId": "s-1", "oldStatus": "idle", "newStatus": "working"}
    backend.bus.emit(SESSION_STATUS_CHANGED, change)
    backend.bus.emit(SESSION_STATUS_CHANGED, {**change, "sessionId": "unknown"})
    unsubscribe()
    backend.bus.emit(SESSION_STATUS_CHANGED, change)

    assert len(received) == 2
    name, event = received[0]
    assert name == SESSION_STATUS_CHANGED
    assert isinstance(event, SessionStatusChangedEvent)
    assert event.new_status is SessionStatus.WORKING
    assert received[1][1].session_id == "unknown"


def test_server_detected_before_created_reaches_telemetry() -> None:
    backend, cache, _, router = make_router()
    received: list[tuple[str, object]] = []
    router.on_telemetry(lambda name, event: received.append((name, event)))

    backend.bus.emit(
        SESSION_SERVER_DETECTED,
        {"sessionId": "s-1", "url": "http://localhost:3000", "port": 3000},
    )
    backend.bus.emit(SESSION_CREATED, {"session": session_payload()})

    assert [name for name, _ in received] == [SESSION_SERVER_DETECTED]
    assert received[0][1].port == 3000
    assert "s-1" in cache


def test_stop_unlistens_every_event() -> None:
    backend, _, _, router = make_router()

    assert router.started
    router.start()
    assert all(backend.bus.listener_count(name) == 1 for name in SESSION_EVENTS)

    router.stop()

    assert not router.started
    assert all(backend.bus.listener_count(name) == 0 for name in SESSION_EVENTS)
