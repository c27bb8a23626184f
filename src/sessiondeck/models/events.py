"""Push event names and payloads emitted by the backend registry."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from .session import Session, SessionStatus, WireModel

SESSION_CREATED = "session-created"
SESSION_UPDATED = "session-updated"
SESSION_STATUS_CHANGED = "session-status-changed"
SESSION_STOPPED = "session-stopped"
SESSION_SERVER_DETECTED = "session-server-detected"
SESSION_DELETED = "session-deleted"

PTY_OUTPUT_PREFIX = "pty-output-"


def pty_output_event(session_id: str) -> str:
    """Return the dynamically named output channel for a session."""

    return f"{PTY_OUTPUT_PREFIX}{session_id}"


class SessionCreatedEvent(WireModel):
    session: Session


class SessionUpdatedEvent(WireModel):
    session: Session
    changed_fields: list[str] = Field(default_factory=list)


class SessionStatusChangedEvent(WireModel):
    session_id: str
    old_status: SessionStatus
    new_status: SessionStatus


class SessionStoppedEvent(WireModel):
    session_id: str
    exit_code: int | None = None
    reason: str


class SessionServerDetectedEvent(WireModel):
    session_id: str
    url: str
    port: int


class SessionDeletedEvent(WireModel):
    session_id: str


EVENT_MODELS: dict[str, type[WireModel]] = {
    SESSION_CREATED: SessionCreatedEvent,
    SESSION_UPDATED: SessionUpdatedEvent,
    SESSION_STATUS_CHANGED: SessionStatusChangedEvent,
    SESSION_STOPPED: SessionStoppedEvent,
    SESSION_SERVER_DETECTED: SessionServerDetectedEvent,
    SESSION_DELETED: SessionDeletedEvent,
}

SESSION_EVENTS: tuple[str, ...] = tuple(EVENT_MODELS)


def parse_event(name: str, payload: Any) -> WireModel:
    """Validate a raw push payload into its typed event model.

    Raises ``KeyError`` for unknown event names and ``pydantic.ValidationError``
    for malformed payloads.
    """

    model = EVENT_MODELS[name]
    return model.model_validate(payload)


__all__ = [
    "EVENT_MODELS",
    "PTY_OUTPUT_PREFIX",
    "SESSION_CREATED",
    "SESSION_DELETED",
    "SESSION_EVENTS",
    "SESSION_SERVER_DETECTED",
    "SESSION_STATUS_CHANGED",
    "SESSION_STOPPED",
    "SESSION_UPDATED",
    "SessionCreatedEvent",
    "SessionDeletedEvent",
    "SessionServerDetectedEvent",
    "SessionStatusChangedEvent",
    "SessionStoppedEvent",
    "SessionUpdatedEvent",
    "parse_event",
    "pty_output_event",
]
