"""Agent activity reports and their projection onto session status."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Callable

from .session import SessionStatus, WireModel


class AgentState(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    NEEDS_INPUT = "needs_input"
    FINISHED = "finished"
    ERROR = "error"


class AgentStatus(WireModel):
    """Latest activity reported by the agent running in a session.

    Each report replaces the previous one wholesale.
    """

    session_id: str
    state: AgentState
    message: str
    needs_input_prompt: str | None = None
    timestamp: datetime


AGENT_STATE_TO_SESSION_STATUS: dict[AgentState, SessionStatus] = {
    AgentState.IDLE: SessionStatus.IDLE,
    AgentState.WORKING: SessionStatus.WORKING,
    AgentState.NEEDS_INPUT: SessionStatus.WAITING,
    AgentState.FINISHED: SessionStatus.DONE,
    AgentState.ERROR: SessionStatus.ERROR,
}

# Decides which session status, if any, an agent report should be projected onto.
StatusProjection = Callable[[AgentStatus], SessionStatus | None]


def project_agent_state(state: AgentState | str) -> SessionStatus:
    return AGENT_STATE_TO_SESSION_STATUS[AgentState(state)]


def table_projection(status: AgentStatus) -> SessionStatus | None:
    """Projection policy that applies the static mapping table."""

    return project_agent_state(status.state)


__all__ = [
    "AGENT_STATE_TO_SESSION_STATUS",
    "AgentState",
    "AgentStatus",
    "StatusProjection",
    "project_agent_state",
    "table_projection",
]
