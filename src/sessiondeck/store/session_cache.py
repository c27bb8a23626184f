"""Local mirror of the backend session registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, Literal, Mapping

from pydantic import ValidationError

from ..backend.errors import BackendError, StaleReferenceError
from ..backend.protocol import SessionBackend
from ..models.session import Session, SessionStatus, SessionUpdate, TerminalMode
from .errors import CacheInvariantError
from .observable import Observable

if TYPE_CHECKING:
    from ..pty.service import PtyService

logger = logging.getLogger(__name__)

ChangeKind = Literal["reset", "upserted", "removed", "active", "error"]


@dataclass(slots=True, frozen=True)
class CacheChange:
    """Notification describing one cache mutation."""

    kind: ChangeKind
    session_id: str | None
    sessions: Mapping[str, Session]


class SessionCache(Observable[CacheChange]):
    """Single-writer cache of session records keyed by id.

    The cache never applies a caller's intended change optimistically: it only
    stores records the backend returned or pushed. Every mutation publishes a
    fresh read-only mapping, so snapshots taken earlier stay consistent.

    Merging is last-write-wins by arrival. Ids removed by the backend are kept
    as tombstones; because ids are never reused, late upserts for them are
    dropped instead of resurrecting the session. Tombstones live as long as the
    cache: a resync that no longer lists an id does not prove every event for it
    has been delivered, so none are pruned.
    """

    def __init__(self, backend: SessionBackend) -> None:
        super().__init__()
        self._backend = backend
        self._sessions: Mapping[str, Session] = MappingProxyType({})
        self._tombstones: set[str] = set()
        self._pending_deletes: dict[str, int] = {}
        self.active_id: str | None = None
        self.is_loading = False
        self.error: str | None = None
        self.pty: PtyService | None = None

    # -- snapshots & selectors -------------------------------------------------------

    @property
    def sessions(self) -> Mapping[str, Session]:
        return self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def sorted_sessions(self) -> list[Session]:
        return sorted(self._sessions.values(), key=lambda session: session.numeric_id)

    def by_status(self, status: SessionStatus | str) -> list[Session]:
        wanted = SessionStatus(status)
        return [session for session in self.sorted_sessions() if session.status == wanted]

    @property
    def active_session(self) -> Session | None:
        if self.active_id is None:
            return None
        return self._sessions.get(self.active_id)

    def is_deleting(self, session_id: str) -> bool:
        return self._pending_deletes.get(session_id, 0) > 0

    def tracks(self, session_id: str) -> bool:
        """True while the session is cached and no delete for it is in flight."""

        return session_id in self._sessions and not self.is_deleting(session_id)

    # -- merge primitives ------------------------------------------------------------

    def _publish(self, sessions: dict[str, Session], kind: ChangeKind, session_id: str | None) -> None:
        self._sessions = MappingProxyType(sessions)
        self._notify(CacheChange(kind=kind, session_id=session_id, sessions=self._sessions))

    @staticmethod
    def _coerce(payload: Any) -> Session:
        try:
            return Session.model_validate(payload)
        except ValidationError as exc:
            raise CacheInvariantError(f"Backend returned an invalid session record: {exc}") from exc

    def upsert(self, payload: Any) -> Session | None:
        """Insert or replace a record by id; returns ``None`` for tombstoned ids."""

        session = self._coerce(payload)
        if session.id in self._tombstones:
            logger.debug("Ignoring upsert for removed session", extra={"session_id": session.id})
            return None

        sessions = dict(self._sessions)
        sessions[session.id] = session
        self._publish(sessions, "upserted", session.id)
        return session

    def remove(self, session_id: str) -> bool:
        """Drop a record by id and clear the active pointer if it pointed there."""

        self._tombstones.add(session_id)
        if session_id not in self._sessions:
            return False

        sessions = dict(self._sessions)
        del sessions[session_id]
        if self.active_id == session_id:
            self.active_id = None
        self._publish(sessions, "removed", session_id)
        return True

    def reset(self, payloads: Iterable[Any]) -> None:
        """Replace the whole map with a full listing from the backend."""

        sessions: dict[str, Session] = {}
        for payload in payloads:
            session = self._coerce(payload)
            if session.id not in self._tombstones:
                sessions[session.id] = session
        if self.active_id is not None and self.active_id not in sessions:
            self.active_id = None
        self._publish(sessions, "reset", None)

    def set_active(self, session_id: str | None) -> None:
        self.active_id = session_id
        self._notify(CacheChange(kind="active", session_id=session_id, sessions=self._sessions))

    def _fail(self, exc: BaseException) -> None:
        self.error = str(exc)
        self._notify(CacheChange(kind="error", session_id=None, sessions=self._sessions))

    # -- backend round trips ---------------------------------------------------------

    async def fetch_all(self) -> list[Session]:
        """Resynchronise from the backend; on failure keep the previous snapshot."""

        self.is_loading = True
        self.error = None
        try:
            payloads = await self._backend.list_sessions()
            self.reset(payloads)
        except (BackendError, CacheInvariantError) as exc:
            logger.warning("Session resync failed", extra={"error": str(exc)})
            self._fail(exc)
        finally:
            self.is_loading = False
        return self.sorted_sessions()

    async def create(
        self,
        mode: TerminalMode | str | None = None,
        working_directory: str | None = None,
    ) -> Session:
        mode_value = TerminalMode(mode).value if mode is not None else None
        try:
            payload = await self._backend.create_session(mode_value, working_directory)
        except BackendError as exc:
            self._fail(exc)
            raise

        session = self._coerce(payload)
        self.upsert(session)
        logger.info(
            "Session cached",
            extra={"session_id": session.id, "numeric_id": session.numeric_id},
        )
        return session

    async def update(
        self, session_id: str, fields: SessionUpdate | Mapping[str, Any]
    ) -> Session | None:
        """Send a partial patch and store the backend's canonical result.

        ``None`` from the backend means the session is gone: the entry is removed if
        present and nothing else is touched. A result that arrives after the session
        left the cache (or while it is being deleted) is not applied.
        """

        update = fields if isinstance(fields, SessionUpdate) else SessionUpdate.model_validate(fields)
        try:
            result = await self._backend.update_session(session_id, update.to_payload())
        except BackendError as exc:
            self._fail(exc)
            raise

        if result is None:
            self.remove(session_id)
            return None

        session = self._coerce(result)
        if not self.tracks(session.id):
            logger.debug(
                "Discarding update for session no longer cached",
                extra={"session_id": session.id},
            )
            return session

        self.upsert(session)
        return session

    async def delete(self, session_id: str) -> None:
        """Delete on the backend, then drop the local record once confirmed."""

        self._pending_deletes[session_id] = self._pending_deletes.get(session_id, 0) + 1
        try:
            await self._backend.delete_session(session_id)
        except StaleReferenceError:
            logger.debug("Session already gone on backend", extra={"session_id": session_id})
        except BackendError as exc:
            self._fail(exc)
            raise
        finally:
            remaining = self._pending_deletes[session_id] - 1
            if remaining:
                self._pending_deletes[session_id] = remaining
            else:
                del self._pending_deletes[session_id]

        self.remove(session_id)
        logger.info("Session removed", extra={"session_id": session_id})

    async def spawn_pty(self, session_id: str, working_directory: str | None = None) -> int | None:
        if self.pty is None:
            raise RuntimeError("No PTY service is attached to this cache")
        try:
            return await self.pty.spawn(session_id, working_directory)
        except BackendError as exc:
            self._fail(exc)
            raise


__all__ = ["CacheChange", "ChangeKind", "SessionCache"]
