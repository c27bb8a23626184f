from __future__ import annotations

import asyncio
import logging

import pytest

from sessiondeck.backend import BackendUnavailableError, InMemoryBackend, StaleReferenceError
from sessiondeck.models import SessionStatus, SessionUpdate, TerminalMode
from sessiondeck.pty import PtyService
from sessiondeck.store import CacheChange, CacheInvariantError, SessionCache


def test_create_assigns_sequential_numeric_ids() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)

    async def scenario() -> list[int]:
        for _ in range(6):
            await cache.create()
        return [session.numeric_id for session in cache.sorted_sessions()]

    assert asyncio.run(scenario()) == [1, 2, 3, 4, 5, 6]
    assert len(cache) == 6


def test_deleting_other_session_keeps_active_pointer() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)

    async def scenario() -> None:
        created = [await cache.create() for _ in range(6)]
        cache.set_active(created[4].id)
        await cache.delete(created[2].id)

    asyncio.run(scenario())

    assert [session.numeric_id for session in cache.sorted_sessions()] == [1, 2, 4, 5, 6]
    assert cache.active_session is not None
    assert cache.active_session.numeric_id == 5


def test_deleting_active_session_clears_pointer() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)

    async def scenario() -> str:
        session = await cache.create(TerminalMode.PLAIN_TERMINAL)
        cache.set_active(session.id)
        await cache.delete(session.id)
        return session.id

    session_id = asyncio.run(scenario())

    assert session_id not in cache
    assert cache.active_id is None


def test_snapshots_are_read_only_and_stable() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)

    async def scenario() -> None:
        await cache.create()
        before = cache.sessions
        await cache.create()
        assert len(before) == 1
        assert len(cache.sessions) == 2
        with pytest.raises(TypeError):
            before["x"] = None  # type: ignore[index]

    asyncio.run(scenario())


def test_upsert_inserts_unknown_session() -> None:
    cache = SessionCache(InMemoryBackend())

    session = cache.upsert({"id": "remote-1", "numericId": 9, "status": "idle"})

    assert session is not None
    assert cache.get("remote-1") == session
    assert cache.by_status("idle") == [session]


def test_upsert_rejects_invalid_record() -> None:
    cache = SessionCache(InMemoryBackend())

    with pytest.raises(CacheInvariantError):
        cache.upsert({"id": "broken"})


def test_removed_ids_are_never_resurrected() -> None:
    cache = SessionCache(InMemoryBackend())
    cache.upsert({"id": "s-1", "numericId": 1})

    assert cache.remove("s-1") is True
    assert cache.upsert({"id": "s-1", "numericId": 1, "status": "working"}) is None
    cache.reset([{"id": "s-1", "numericId": 1}, {"id": "s-2", "numericId": 2}])

    assert list(cache.sessions) == ["s-2"]


def test_update_stores_backend_result() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)

    async def scenario():
        session = await cache.create()
        return await cache.update(session.id, SessionUpdate(status=SessionStatus.WORKING))

    updated = asyncio.run(scenario())

    assert updated is not None
    assert cache.get(updated.id).status is SessionStatus.WORKING


def test_null_update_result_removes_entry() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)
    cache.upsert({"id": "gone", "numericId": 4})

    result = asyncio.run(cache.update("gone", {"status": "idle"}))

    assert result is None
    assert "gone" not in cache


def test_null_update_for_uncached_session_leaves_cache_untouched() -> None:
    cache = SessionCache(InMemoryBackend())
    cache.upsert({"id": "a", "numericId": 1})
    cache.upsert({"id": "b", "numericId": 2})
    cache.set_active("b")
    snapshot = cache.sessions
    changes: list[CacheChange] = []
    cache.subscribe(changes.append)

    result = asyncio.run(cache.update("ghost", {"status": "idle"}))

    assert result is None
    assert set(cache.sessions) == {"a", "b"}
    assert cache.sessions is snapshot
    assert cache.active_id == "b"
    assert changes == []


def test_tombstones_survive_resync() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)

    async def scenario() -> str:
        session = await cache.create()
        await cache.delete(session.id)
        await cache.fetch_all()
        return session.id

    session_id = asyncio.run(scenario())

    assert cache.upsert({"id": session_id, "numericId": 1, "status": "working"}) is None
    assert session_id not in cache


def test_delete_racing_update_does_not_resurrect() -> None:
    backend = InMemoryBackend(latency=0.01)
    cache = SessionCache(backend)

    async def scenario():
        session = await cache.create()
        update_task = asyncio.create_task(cache.update(session.id, {"status": "working"}))
        await asyncio.sleep(0)
        delete_task = asyncio.create_task(cache.delete(session.id))
        updated, _ = await asyncio.gather(update_task, delete_task)
        return session.id, updated

    session_id, updated = asyncio.run(scenario())

    assert updated.status is SessionStatus.WORKING
    assert session_id not in cache
    assert cache.upsert(updated) is None


def test_delete_treats_stale_reference_as_success() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)
    cache.upsert({"id": "s-1", "numericId": 1})
    backend.inject_failure("delete_session", StaleReferenceError("s-1"))

    asyncio.run(cache.delete("s-1"))

    assert "s-1" not in cache
    assert cache.error is None
    assert not cache.is_deleting("s-1")


def test_delete_transport_failure_keeps_entry() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)
    cache.upsert({"id": "s-1", "numericId": 1})
    backend.inject_failure("delete_session", BackendUnavailableError("offline"))

    with pytest.raises(BackendUnavailableError):
        asyncio.run(cache.delete("s-1"))

    assert "s-1" in cache
    assert cache.error == "offline"
    assert cache.tracks("s-1")


def test_create_failure_sets_error_and_raises() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)
    backend.inject_failure("create_session", BackendUnavailableError("refused"))

    with pytest.raises(BackendUnavailableError):
        asyncio.run(cache.create())

    assert cache.error == "refused"
    assert len(cache) == 0


def test_fetch_all_failure_keeps_previous_snapshot() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)

    async def scenario():
        await backend.create_session()
        await backend.create_session()
        await cache.fetch_all()
        snapshot = cache.sessions
        backend.inject_failure("list_sessions", BackendUnavailableError("timeout"))
        result = await cache.fetch_all()
        return snapshot, result

    snapshot, result = asyncio.run(scenario())

    assert cache.sessions is snapshot
    assert [session.numeric_id for session in result] == [1, 2]
    assert cache.error == "timeout"
    assert cache.is_loading is False


def test_fetch_all_clears_error_and_missing_active() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)
    cache.upsert({"id": "local-only", "numericId": 99})
    cache.set_active("local-only")
    cache.error = "earlier failure"

    asyncio.run(cache.fetch_all())

    assert len(cache) == 0
    assert cache.active_id is None
    assert cache.error is None


def test_listeners_receive_changes(caplog: pytest.LogCaptureFixture) -> None:
    cache = SessionCache(InMemoryBackend())
    changes: list[CacheChange] = []

    def broken(change: CacheChange) -> None:
        raise RuntimeError("listener bug")

    cache.subscribe(broken)
    unsubscribe = cache.subscribe(changes.append)

    with caplog.at_level(logging.ERROR):
        cache.upsert({"id": "s-1", "numericId": 1})
        cache.set_active("s-1")
        cache.remove("s-1")
    unsubscribe()
    cache.upsert({"id": "s-2", "numericId": 2})

    assert [change.kind for change in changes] == ["upserted", "active", "removed"]
    assert changes[-1].session_id == "s-1"
    assert "s-1" not in changes[-1].sessions
    assert "Store listener failed" in caplog.text


def test_spawn_pty_forwards_to_service() -> None:
    backend = InMemoryBackend()
    cache = SessionCache(backend)

    async def scenario() -> int | None:
        session = await cache.create()
        with pytest.raises(RuntimeError):
            await cache.spawn_pty(session.id)
        cache.pty = PtyService(backend, presence=cache.tracks)
        try:
            return await cache.spawn_pty(session.id, "/srv")
        finally:
            await cache.pty.close()

    pid = asyncio.run(scenario())

    assert pid is not None
    assert backend.call_count("spawn_session_pty") == 1
