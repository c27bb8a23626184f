"""Failures surfaced by backend calls."""

from __future__ import annotations


class BackendError(RuntimeError):
    """Base class for backend call failures."""


class BackendUnavailableError(BackendError):
    """Raised when the backend cannot be reached or rejects the call."""


class StaleReferenceError(BackendError):
    """Raised when a call targets a session or process the registry no longer holds."""

    def __init__(self, session_id: str, detail: str | None = None) -> None:
        self.session_id = session_id
        message = f"Session '{session_id}' is no longer available"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


__all__ = ["BackendError", "BackendUnavailableError", "StaleReferenceError"]
