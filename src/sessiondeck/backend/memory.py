"""In-process reference registry honouring the backend contract.

``InMemoryBackend`` keeps sessions, processes and pseudo-terminals in memory and
emits the same push events a real registry would. It never forks: PTYs are
simulated records that capture written bytes and echo them on the session's
output channel. Tests and embedders without a native backend use it as the
collaborator behind the cache and PTY service.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping
from uuid import uuid4

from ..config import SessionDeckSettings
from ..models.events import (
    SESSION_CREATED,
    SESSION_DELETED,
    SESSION_SERVER_DETECTED,
    SESSION_STATUS_CHANGED,
    SESSION_STOPPED,
    SESSION_UPDATED,
    pty_output_event,
)
from ..models.process import ManagedProcess, ManagedProcessStatus, ProcessSource
from ..models.session import Session, SessionStatus, SessionUpdate, TerminalMode
from ..modes import ModeCatalog
from .bus import EventBus
from .errors import StaleReferenceError
from .protocol import EventHandler, Unlisten
from .url_detection import detect_server_url

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SimulatedPty:
    """State of one simulated pseudo-terminal."""

    session_id: str
    pid: int
    pgid: int
    cwd: str
    command: str
    cols: int
    rows: int
    received: bytearray = field(default_factory=bytearray)
    resizes: list[tuple[int, int]] = field(default_factory=list)
    alive: bool = True


class InMemoryBackend:
    """Backend registry kept entirely in memory."""

    def __init__(
        self,
        *,
        settings: SessionDeckSettings | None = None,
        modes: ModeCatalog | None = None,
        latency: float = 0.0,
        echo: bool = True,
        default_directory: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = settings or SessionDeckSettings()
        self.bus = EventBus()
        self.latency = latency
        self.echo = echo
        self._modes = modes or ModeCatalog()
        self._default_geometry = (settings.default_cols, settings.default_rows)
        self._default_directory = default_directory or str(Path.home())
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._sessions: dict[str, Session] = {}
        self._next_numeric_id = 1
        self._next_pid = 4000
        self._processes: dict[int, ManagedProcess] = {}
        self._session_pids: dict[str, list[int]] = {}
        self._ptys: dict[str, SimulatedPty] = {}
        self._failures: dict[str, list[BaseException]] = {}
        self.calls: list[tuple[str, str | None]] = []

    # -- push events -----------------------------------------------------------------

    def listen(self, event: str, handler: EventHandler) -> Unlisten:
        return self.bus.listen(event, handler)

    def _emit(self, event: str, payload: Any) -> None:
        self.bus.emit(event, payload)

    # -- simulation hooks ------------------------------------------------------------

    def inject_failure(self, operation: str, error: BaseException) -> None:
        """Make the next call to ``operation`` raise ``error`` before touching state."""

        self._failures.setdefault(operation, []).append(error)

    def call_count(self, operation: str, session_id: str | None = None) -> int:
        return sum(
            1
            for name, target in self.calls
            if name == operation and (session_id is None or target == session_id)
        )

    async def _enter(self, operation: str, session_id: str | None = None) -> None:
        self.calls.append((operation, session_id))
        await asyncio.sleep(self.latency)
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    # -- sessions --------------------------------------------------------------------

    async def list_sessions(self) -> list[dict[str, Any]]:
        await self._enter("list_sessions")
        ordered = sorted(self._sessions.values(), key=lambda session: session.numeric_id)
        return [session.to_payload() for session in ordered]

    async def create_session(
        self, mode: str | None = None, working_directory: str | None = None
    ) -> dict[str, Any]:
        await self._enter("create_session")
        now = self._clock()
        session = Session(
            id=str(uuid4()),
            numeric_id=self._next_numeric_id,
            mode=TerminalMode(mode) if mode else TerminalMode.CLAUDE_CODE,
            working_directory=working_directory,
            created_at=now,
            last_activity=now,
        )
        self._next_numeric_id += 1
        self._sessions[session.id] = session

        payload = session.to_payload()
        self._emit(SESSION_CREATED, {"session": payload})
        logger.info(
            "Session created",
            extra={"session_id": session.id, "numeric_id": session.numeric_id},
        )
        return payload

    async def update_session(
        self, session_id: str, fields: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        await self._enter("update_session", session_id)
        # PID and launch state belong to the PTY lifecycle, not to callers.
        update = SessionUpdate.model_validate(dict(fields)).model_copy(
            update={"terminal_pid": None, "is_terminal_launched": None}
        )
        session = self._apply(session_id, update)
        return session.to_payload() if session is not None else None

    async def delete_session(self, session_id: str) -> None:
        await self._enter("delete_session", session_id)
        self._terminate_group(session_id)
        for pid in self._session_pids.pop(session_id, []):
            self._processes.pop(pid, None)

        if self._sessions.pop(session_id, None) is not None:
            self._emit(SESSION_DELETED, {"sessionId": session_id})
            logger.info("Session deleted", extra={"session_id": session_id})

    def _apply(
        self, session_id: str, update: SessionUpdate, *, clear_terminal_pid: bool = False
    ) -> Session | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None

        now = self._clock()
        updated, changed = update.apply_to(session, now=now)
        if clear_terminal_pid and updated.terminal_pid is not None:
            updated = updated.model_copy(update={"terminal_pid": None, "last_activity": now})
            changed.append("terminalPid")
        if not changed:
            return session

        self._sessions[session_id] = updated
        self._emit(
            SESSION_UPDATED,
            {"session": updated.to_payload(), "changedFields": changed},
        )
        if "status" in changed:
            self._emit(
                SESSION_STATUS_CHANGED,
                {
                    "sessionId": session_id,
                    "oldStatus": session.status.value,
                    "newStatus": updated.status.value,
                },
            )
        return updated

    # -- processes -------------------------------------------------------------------

    def _allocate_pid(self) -> int:
        pid = self._next_pid
        self._next_pid += 1
        return pid

    def _register(self, process: ManagedProcess) -> ManagedProcess:
        self._processes[process.pid] = process
        self._session_pids.setdefault(process.session_id, []).append(process.pid)
        return process

    def register_process(
        self,
        session_id: str,
        *,
        source: ProcessSource = ProcessSource.BACKGROUND,
        command: str = "",
        port: int | None = None,
    ) -> ManagedProcess:
        """Track a descendant of the session's PTY, joining its process group."""

        if session_id not in self._sessions:
            raise StaleReferenceError(session_id)
        pid = self._allocate_pid()
        pty = self._ptys.get(session_id)
        pgid = pty.pgid if pty is not None and pty.alive else pid
        return self._register(
            ManagedProcess(
                session_id=session_id,
                pid=pid,
                pgid=pgid,
                source=source,
                command=command,
                status=ManagedProcessStatus.RUNNING,
                port=port,
                server_url=f"http://localhost:{port}" if port else None,
            )
        )

    def processes_for(self, session_id: str) -> list[ManagedProcess]:
        return [
            self._processes[pid]
            for pid in self._session_pids.get(session_id, [])
            if pid in self._processes
        ]

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def pty(self, session_id: str) -> SimulatedPty | None:
        return self._ptys.get(session_id)

    def _live_pty(self, session_id: str) -> SimulatedPty:
        pty = self._ptys.get(session_id)
        if pty is None or not pty.alive:
            raise StaleReferenceError(session_id, "no running terminal")
        return pty

    def _terminate_group(self, session_id: str) -> list[ManagedProcess]:
        pty = self._ptys.pop(session_id, None)
        if pty is None:
            return []
        pty.alive = False

        reclaimed: list[ManagedProcess] = []
        remaining: list[int] = []
        for pid in self._session_pids.get(session_id, []):
            process = self._processes.get(pid)
            if process is None:
                continue
            if process.pgid != pty.pgid:
                remaining.append(pid)
                continue
            reclaimed.append(process.model_copy(update={"status": ManagedProcessStatus.STOPPED}))
            del self._processes[pid]
        self._session_pids[session_id] = remaining

        logger.info(
            "Process group terminated",
            extra={"session_id": session_id, "pgid": pty.pgid, "reclaimed": len(reclaimed)},
        )
        return reclaimed

    def _stopped(self, session_id: str, exit_code: int | None, reason: str) -> None:
        self._emit(
            SESSION_STOPPED,
            {"sessionId": session_id, "exitCode": exit_code, "reason": reason},
        )
        self._apply(
            session_id,
            SessionUpdate(
                status=SessionStatus.DONE,
                is_terminal_launched=False,
                is_cli_running=False,
            ),
            clear_terminal_pid=True,
        )

    def exit_process(self, session_id: str, exit_code: int | None = 0, reason: str = "exited") -> None:
        """Simulate the PTY leader exiting on its own."""

        self._terminate_group(session_id)
        if session_id in self._sessions:
            self._stopped(session_id, exit_code, reason)

    # -- PTY operations --------------------------------------------------------------

    def _spawn(self, session_id: str, working_directory: str | None) -> int:
        session = self._sessions.get(session_id)
        if session is None:
            raise StaleReferenceError(session_id)

        existing = self._ptys.get(session_id)
        if existing is not None and existing.alive:
            logger.info(
                "Terminal already running",
                extra={"session_id": session_id, "pid": existing.pid},
            )
            return existing.pid

        pid = self._allocate_pid()
        command = self._modes.command_for(session.mode)
        cols, rows = self._default_geometry
        self._ptys[session_id] = SimulatedPty(
            session_id=session_id,
            pid=pid,
            pgid=pid,
            cwd=working_directory or session.working_directory or self._default_directory,
            command=command,
            cols=cols,
            rows=rows,
        )
        self._register(
            ManagedProcess(
                session_id=session_id,
                pid=pid,
                pgid=pid,
                source=ProcessSource.TERMINAL,
                command=command,
                status=ManagedProcessStatus.RUNNING,
            )
        )
        self._apply(session_id, SessionUpdate(terminal_pid=pid, is_terminal_launched=True))
        logger.info("Terminal spawned", extra={"session_id": session_id, "pid": pid})
        return pid

    async def spawn_session_pty(self, session_id: str, working_directory: str | None = None) -> int:
        await self._enter("spawn_session_pty", session_id)
        return self._spawn(session_id, working_directory)

    async def spawn_pty(self, session_id: str) -> None:
        await self._enter("spawn_pty", session_id)
        self._spawn(session_id, None)

    async def write_pty(self, session_id: str, data: bytes) -> None:
        await self._enter("write_pty", session_id)
        pty = self._live_pty(session_id)
        chunk = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        pty.received.extend(chunk)
        if self.echo:
            self.emit_output(session_id, chunk)

    async def resize_pty(self, session_id: str, cols: int, rows: int) -> None:
        await self._enter("resize_pty", session_id)
        pty = self._live_pty(session_id)
        pty.cols, pty.rows = cols, rows
        pty.resizes.append((cols, rows))

    async def kill_pty(self, session_id: str) -> None:
        await self._enter("kill_pty", session_id)
        self._live_pty(session_id)
        self._terminate_group(session_id)
        self._stopped(session_id, None, "killed")

    def emit_output(self, session_id: str, data: bytes | str) -> None:
        """Publish terminal output and scan it for an announced dev server."""

        chunk = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        self._emit(pty_output_event(session_id), chunk)

        server = detect_server_url(chunk.decode("utf-8", errors="replace"))
        session = self._sessions.get(session_id)
        if server is None or session is None or session.server_url == server.url:
            return
        self._emit(
            SESSION_SERVER_DETECTED,
            {"sessionId": session_id, "url": server.url, "port": server.port},
        )
        self._apply(session_id, SessionUpdate(server_url=server.url, assigned_port=server.port))


__all__ = ["InMemoryBackend", "SimulatedPty"]
