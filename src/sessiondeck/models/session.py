"""Session records exchanged with the backend registry."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for records that travel as camelCase JSON-like payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SessionStatus(str, Enum):
    INITIALIZING = "initializing"
    IDLE = "idle"
    WORKING = "working"
    WAITING = "waiting"
    DONE = "done"
    ERROR = "error"


class TerminalMode(str, Enum):
    CLAUDE_CODE = "claudeCode"
    GEMINI_CLI = "geminiCli"
    OPENAI_CODEX = "openAiCodex"
    PLAIN_TERMINAL = "plainTerminal"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(WireModel):
    """A single terminal/agent workspace as known to the backend registry."""

    id: str = Field(..., description="Opaque backend-assigned identifier, never reused.")
    numeric_id: int = Field(..., description="Stable display ordinal assigned at creation.")
    status: SessionStatus = SessionStatus.INITIALIZING
    mode: TerminalMode = TerminalMode.CLAUDE_CODE
    working_directory: str | None = None
    assigned_branch: str | None = None
    terminal_pid: int | None = None
    is_terminal_launched: bool = False
    is_cli_running: bool = False
    assigned_port: int | None = None
    server_url: str | None = None
    custom_run_command: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    last_activity: datetime = Field(default_factory=_utcnow)


class SessionUpdate(WireModel):
    """Partial patch for a session; unset fields are left untouched."""

    status: SessionStatus | None = None
    mode: TerminalMode | None = None
    working_directory: str | None = None
    assigned_branch: str | None = None
    terminal_pid: int | None = None
    is_terminal_launched: bool | None = None
    is_cli_running: bool | None = None
    assigned_port: int | None = None
    server_url: str | None = None
    custom_run_command: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def apply_to(
        self, session: Session, *, now: datetime | None = None
    ) -> tuple[Session, list[str]]:
        """Return the patched session and the camelCase names of fields that changed."""

        changes: dict[str, Any] = {}
        changed_fields: list[str] = []
        for name, value in self.model_dump(exclude_none=True).items():
            if getattr(session, name) == value:
                continue
            changes[name] = value
            changed_fields.append(to_camel(name))

        if not changes:
            return session, []

        changes["last_activity"] = now or _utcnow()
        return session.model_copy(update=changes), changed_fields


__all__ = ["Session", "SessionStatus", "SessionUpdate", "TerminalMode", "WireModel"]
