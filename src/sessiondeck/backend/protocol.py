"""Collaborator surface the core expects from a backend registry."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Protocol

EventHandler = Callable[[Any], None]
Unlisten = Callable[[], None]


class SessionBackend(Protocol):
    """Request/response calls plus named push-event subscription.

    Session payloads may be ``Session`` models or camelCase mappings; the cache
    validates whatever comes back.
    """

    async def list_sessions(self) -> list[Any]:
        ...

    async def create_session(
        self, mode: str | None = None, working_directory: str | None = None
    ) -> Any:
        ...

    async def update_session(self, session_id: str, fields: Mapping[str, Any]) -> Any | None:
        ...

    async def delete_session(self, session_id: str) -> None:
        ...

    async def spawn_session_pty(self, session_id: str, working_directory: str | None = None) -> int:
        ...

    async def spawn_pty(self, session_id: str) -> None:
        ...

    async def write_pty(self, session_id: str, data: bytes) -> None:
        ...

    async def resize_pty(self, session_id: str, cols: int, rows: int) -> None:
        ...

    async def kill_pty(self, session_id: str) -> None:
        ...

    def listen(self, event: str, handler: EventHandler) -> Unlisten:
        ...


__all__ = ["EventHandler", "SessionBackend", "Unlisten"]
