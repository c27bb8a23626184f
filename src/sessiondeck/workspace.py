"""Composition root wiring backend, stores, PTY service and event router."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from .backend.errors import BackendError
from .backend.protocol import SessionBackend
from .config import SessionDeckSettings, get_settings
from .models.agent import AgentStatus, StatusProjection
from .models.session import SessionUpdate
from .pty.service import PtyService
from .router import EventRouter
from .store.agent_status import AgentChange, AgentStatusTracker
from .store.session_cache import CacheChange, SessionCache

logger = logging.getLogger(__name__)


class Workspace:
    """Owns one backend connection and every client-side store built on it.

    Removing a session from the cache also clears its agent status. When a
    ``projection`` policy is supplied, agent reports are projected onto the
    session's status through the backend; without one the two stay independent.
    """

    def __init__(
        self,
        backend: SessionBackend,
        *,
        settings: SessionDeckSettings | None = None,
        projection: StatusProjection | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.backend = backend
        self.projection = projection
        self.cache = SessionCache(backend)
        self.agents = AgentStatusTracker(clock=clock)
        self.pty = PtyService(
            backend,
            presence=self.cache.tracks,
            output_buffer=self.settings.output_buffer,
        )
        self.cache.pty = self.pty
        self.router = EventRouter(backend, self.cache, self.agents)
        self._projections: set[asyncio.Task] = set()
        self._unsubscribers = [
            self.cache.subscribe(self._on_cache_change),
            self.agents.subscribe(self._on_agent_change),
        ]

    async def start(self) -> None:
        """Listen for push events, then load the initial session list."""

        self.router.start()
        sessions = await self.cache.fetch_all()
        logger.info("Workspace ready", extra={"sessions": len(sessions)})

    async def close(self) -> None:
        self.router.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        for task in list(self._projections):
            task.cancel()
        if self._projections:
            await asyncio.gather(*list(self._projections), return_exceptions=True)
        await self.router.drain()
        await self.pty.close()

    async def settle(self) -> None:
        """Wait for pending projections and resyncs."""

        while self._projections:
            await asyncio.gather(*list(self._projections), return_exceptions=True)
        await self.router.drain()

    def _on_cache_change(self, change: CacheChange) -> None:
        if change.kind == "removed" and change.session_id is not None:
            self.agents.clear(change.session_id)
        elif change.kind == "reset":
            for session_id in list(self.agents.statuses):
                if session_id not in change.sessions:
                    self.agents.clear(session_id)

    def _on_agent_change(self, change: AgentChange) -> None:
        if self.projection is None or change.kind != "upserted" or change.status is None:
            return
        self._project(change.status)

    def _project(self, status: AgentStatus) -> None:
        target = self.projection(status) if self.projection is not None else None
        session = self.cache.get(status.session_id)
        if target is None or session is None or session.status == target:
            return
        if not self.cache.tracks(status.session_id):
            return

        task = asyncio.get_running_loop().create_task(
            self.cache.update(status.session_id, SessionUpdate(status=target))
        )
        self._projections.add(task)
        task.add_done_callback(self._projection_done)
        logger.debug(
            "Projecting agent state",
            extra={
                "session_id": status.session_id,
                "state": status.state.value,
                "target": target.value,
            },
        )

    def _projection_done(self, task: asyncio.Task) -> None:
        self._projections.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, BackendError):
            logger.warning("Status projection failed", extra={"error": str(exc)})
        elif exc is not None:
            logger.error("Status projection raised", exc_info=exc)


__all__ = ["Workspace"]
