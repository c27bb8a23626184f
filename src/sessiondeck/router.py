"""Routes backend push events into the local stores."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from pydantic import ValidationError

from .backend.protocol import SessionBackend, Unlisten
from .models.events import (
    SESSION_EVENTS,
    SessionCreatedEvent,
    SessionDeletedEvent,
    SessionUpdatedEvent,
    parse_event,
)
from .models.session import WireModel
from .store.agent_status import AgentStatusTracker
from .store.errors import CacheInvariantError
from .store.session_cache import SessionCache

logger = logging.getLogger(__name__)

TelemetryListener = Callable[[str, WireModel], None]


class EventRouter:
    """Subscribes to the backend's session events and keeps the cache converged.

    Record-bearing events go through the cache's merge primitives. Status, stop
    and server notifications carry no record of their own (a matching
    ``session-updated`` always follows), so they are only logged and forwarded
    to telemetry listeners, including events for sessions not cached yet;
    listeners filter for themselves. A payload that fails validation triggers a
    full resync instead of a partial merge.
    """

    def __init__(
        self,
        backend: SessionBackend,
        cache: SessionCache,
        tracker: AgentStatusTracker,
    ) -> None:
        self._backend = backend
        self._cache = cache
        self._tracker = tracker
        self._unlisteners: list[Unlisten] = []
        self._telemetry: tuple[TelemetryListener, ...] = ()
        self._resyncs: set[asyncio.Task] = set()

    @property
    def started(self) -> bool:
        return bool(self._unlisteners)

    def start(self) -> None:
        if self._unlisteners:
            return
        for name in SESSION_EVENTS:
            self._unlisteners.append(self._backend.listen(name, self._handler(name)))
        logger.debug("Event router listening", extra={"events": list(SESSION_EVENTS)})

    def stop(self) -> None:
        unlisteners, self._unlisteners = self._unlisteners, []
        for unlisten in unlisteners:
            unlisten()
        for task in list(self._resyncs):
            task.cancel()

    def on_telemetry(self, listener: TelemetryListener) -> Callable[[], None]:
        """Register a listener for status, stop and server notifications."""

        self._telemetry = (*self._telemetry, listener)

        def unsubscribe() -> None:
            self._telemetry = tuple(item for item in self._telemetry if item is not listener)

        return unsubscribe

    def _handler(self, name: str) -> Callable[[Any], None]:
        def handle(payload: Any) -> None:
            self.dispatch(name, payload)

        return handle

    def dispatch(self, name: str, payload: Any) -> None:
        try:
            event = parse_event(name, payload)
            self._route(name, event)
        except (ValidationError, CacheInvariantError) as exc:
            logger.error(
                "Invalid backend event; resynchronising",
                extra={"event": name, "error": str(exc)},
            )
            self._schedule_resync()

    def _route(self, name: str, event: WireModel) -> None:
        if isinstance(event, SessionUpdatedEvent):
            self._cache.upsert(event.session)
            logger.debug(
                "Session updated",
                extra={"session_id": event.session.id, "changed": event.changed_fields},
            )
        elif isinstance(event, SessionCreatedEvent):
            self._cache.upsert(event.session)
        elif isinstance(event, SessionDeletedEvent):
            self._cache.remove(event.session_id)
            self._tracker.clear(event.session_id)
        else:
            self._report(name, event)

    def _report(self, name: str, event: WireModel) -> None:
        session_id = getattr(event, "session_id", None)
        if session_id not in self._cache:
            logger.debug("Event for uncached session", extra={"event": name, "session_id": session_id})
        logger.info("Session event", extra={"event": name, **event.model_dump(mode="json")})
        for listener in self._telemetry:
            try:
                listener(name, event)
            except Exception:
                logger.exception("Telemetry listener failed", extra={"event": name})

    def _schedule_resync(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running loop; resync deferred to next fetch")
            return
        task = loop.create_task(self._cache.fetch_all())
        self._resyncs.add(task)
        task.add_done_callback(self._resyncs.discard)

    async def drain(self) -> None:
        """Wait for any scheduled resyncs to finish."""

        while self._resyncs:
            await asyncio.gather(*list(self._resyncs), return_exceptions=True)


__all__ = ["EventRouter", "TelemetryListener"]
