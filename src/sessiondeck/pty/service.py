"""Client-side façade over backend PTY operations."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from ..backend.errors import StaleReferenceError
from ..backend.protocol import SessionBackend
from .stream import OutputCallback, OutputChannel

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class _PendingResize:
    cols: int
    rows: int
    waiters: list[asyncio.Future[None]] = field(default_factory=list)


class PtyService:
    """Spawn, feed, resize, watch and kill the PTY bound to each session.

    Per-session guarantees:

    * concurrent spawns while one is pending share its result;
    * writes reach the backend in call order;
    * at most one resize is in flight, and a newer geometry replaces any that
      has not been sent yet.

    ``presence`` reports whether a session is still live in the local cache.
    A stale-reference failure for a session that is no longer live is the
    expected fallout of a concurrent delete and resolves quietly; every other
    failure propagates to the caller.
    """

    def __init__(
        self,
        backend: SessionBackend,
        *,
        presence: Callable[[str], bool] | None = None,
        output_buffer: int = 0,
    ) -> None:
        self._backend = backend
        self._presence = presence
        self._output_buffer = output_buffer
        self._spawns: dict[str, tuple[str, asyncio.Future]] = {}
        self._writes: dict[str, deque[tuple[bytes, asyncio.Future[None]]]] = {}
        self._writers: dict[str, asyncio.Task[None]] = {}
        self._resizes: dict[str, _PendingResize] = {}
        self._resizers: dict[str, asyncio.Task[None]] = {}
        self._channels: dict[str, OutputChannel] = {}

    # -- failure policy --------------------------------------------------------------

    def _absorbs(self, session_id: str, exc: BaseException) -> bool:
        if not isinstance(exc, StaleReferenceError) or self._presence is None:
            return False
        return not self._presence(session_id)

    def _settle(self, future: asyncio.Future[None], session_id: str, operation: str, exc: BaseException) -> None:
        if future.done():
            return
        if self._absorbs(session_id, exc):
            logger.debug(
                "Ignoring failure for session being removed",
                extra={"session_id": session_id, "operation": operation},
            )
            future.set_result(None)
            return
        logger.warning(
            "PTY operation failed",
            extra={"session_id": session_id, "operation": operation, "error": str(exc)},
        )
        future.set_exception(exc)

    async def _guard(self, session_id: str, operation: str, call: Awaitable[T]) -> T | None:
        try:
            return await call
        except StaleReferenceError as exc:
            if not self._absorbs(session_id, exc):
                raise
            logger.debug(
                "Ignoring failure for session being removed",
                extra={"session_id": session_id, "operation": operation},
            )
            return None

    # -- spawn -----------------------------------------------------------------------

    def _coalesced(
        self, session_id: str, kind: str, factory: Callable[[], Awaitable[T]]
    ) -> asyncio.Future:
        pending = self._spawns.get(session_id)
        if pending is not None:
            logger.debug(
                "Joining pending spawn",
                extra={"session_id": session_id, "pending_kind": pending[0]},
            )
            return pending[1]

        task = asyncio.ensure_future(factory())
        self._spawns[session_id] = (kind, task)

        def _forget(done: asyncio.Future) -> None:
            current = self._spawns.get(session_id)
            if current is not None and current[1] is done:
                del self._spawns[session_id]

        task.add_done_callback(_forget)
        return task

    async def spawn(self, session_id: str, working_directory: str | None = None) -> int | None:
        """Start the session's PTY and return its pid.

        A second call while the first is still pending shares the first call's
        result, so two near-simultaneous requests yield one process.
        """

        pending = self._spawns.get(session_id)
        if pending is not None and pending[0] == "shell":
            # A bare shell is starting; let it settle, then bind the session to it.
            await self._guard(session_id, "spawn", asyncio.shield(pending[1]))

        task = self._coalesced(
            session_id,
            "session",
            lambda: self._backend.spawn_session_pty(session_id, working_directory),
        )
        pid = await self._guard(session_id, "spawn", asyncio.shield(task))
        if pid is not None:
            logger.info("Terminal ready", extra={"session_id": session_id, "pid": pid})
        return pid

    async def spawn_shell(self, session_id: str) -> None:
        """Start a bare shell PTY without session bookkeeping."""

        task = self._coalesced(session_id, "shell", lambda: self._backend.spawn_pty(session_id))
        await self._guard(session_id, "spawn_shell", asyncio.shield(task))

    # -- write -----------------------------------------------------------------------

    def write(self, session_id: str, data: bytes | str) -> asyncio.Future[None]:
        """Queue ``data`` for the session's PTY input.

        The write is enqueued when this method is called, not when the returned
        future is awaited, so call order is delivery order.
        """

        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        chunk = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        self._writes.setdefault(session_id, deque()).append((chunk, future))
        if session_id not in self._writers:
            self._writers[session_id] = loop.create_task(self._drain_writes(session_id))
        return future

    async def _drain_writes(self, session_id: str) -> None:
        queue = self._writes[session_id]
        try:
            while queue:
                chunk, future = queue[0]
                try:
                    await self._backend.write_pty(session_id, chunk)
                except Exception as exc:
                    self._settle(future, session_id, "write", exc)
                else:
                    if not future.done():
                        future.set_result(None)
                queue.popleft()
        finally:
            self._writers.pop(session_id, None)
            self._writes.pop(session_id, None)
            for _, future in queue:
                future.cancel()

    # -- resize ----------------------------------------------------------------------

    def resize(self, session_id: str, cols: int, rows: int) -> asyncio.Future[None]:
        """Request new geometry; rapid calls collapse onto the latest one."""

        if cols < 1 or rows < 1:
            raise ValueError("Terminal geometry must be at least 1x1")

        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()
        pending = self._resizes.get(session_id)
        if pending is None:
            self._resizes[session_id] = _PendingResize(cols, rows, [future])
        else:
            pending.cols, pending.rows = cols, rows
            pending.waiters.append(future)

        if session_id not in self._resizers:
            self._resizers[session_id] = loop.create_task(self._drain_resizes(session_id))
        return future

    async def _drain_resizes(self, session_id: str) -> None:
        current: _PendingResize | None = None
        try:
            while session_id in self._resizes:
                current = self._resizes.pop(session_id)
                try:
                    await self._backend.resize_pty(session_id, current.cols, current.rows)
                except Exception as exc:
                    for waiter in current.waiters:
                        self._settle(waiter, session_id, "resize", exc)
                else:
                    for waiter in current.waiters:
                        if not waiter.done():
                            waiter.set_result(None)
                current = None
        finally:
            self._resizers.pop(session_id, None)
            if current is not None:
                for waiter in current.waiters:
                    waiter.cancel()

    # -- output ----------------------------------------------------------------------

    def on_output(self, session_id: str, callback: OutputCallback) -> Callable[[], None]:
        """Subscribe to the session's raw output; the result unsubscribes."""

        channel = self._channels.get(session_id)
        if channel is None:
            channel = OutputChannel(
                session_id,
                self._backend,
                buffer_size=self._output_buffer,
                on_released=self._release_channel,
            )
            self._channels[session_id] = channel
        return channel.subscribe(callback)

    def _release_channel(self, session_id: str) -> None:
        self._channels.pop(session_id, None)
        logger.debug("Output channel released", extra={"session_id": session_id})

    def has_output_channel(self, session_id: str) -> bool:
        return session_id in self._channels

    # -- kill ------------------------------------------------------------------------

    async def kill(self, session_id: str) -> None:
        """Terminate the session's whole process group."""

        await self._guard(session_id, "kill", self._backend.kill_pty(session_id))
        logger.info("Terminal kill requested", extra={"session_id": session_id})

    # -- teardown --------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel drain tasks and release every output channel."""

        tasks = [*self._writers.values(), *self._resizers.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        # Drain tasks cancelled before their first step never reach their cleanup.
        for queue in self._writes.values():
            for _, future in queue:
                future.cancel()
        self._writes.clear()
        for pending in self._resizes.values():
            for waiter in pending.waiters:
                waiter.cancel()
        self._resizes.clear()

        for channel in list(self._channels.values()):
            channel.release()


__all__ = ["PtyService"]
