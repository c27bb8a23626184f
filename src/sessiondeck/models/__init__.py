"""Wire models shared by the cache, PTY service and backend registry."""

from .agent import (
    AGENT_STATE_TO_SESSION_STATUS,
    AgentState,
    AgentStatus,
    StatusProjection,
    project_agent_state,
    table_projection,
)
from .process import ManagedProcess, ManagedProcessStatus, ProcessSource
from .session import Session, SessionStatus, SessionUpdate, TerminalMode

__all__ = [
    "AGENT_STATE_TO_SESSION_STATUS",
    "AgentState",
    "AgentStatus",
    "ManagedProcess",
    "ManagedProcessStatus",
    "ProcessSource",
    "Session",
    "SessionStatus",
    "SessionUpdate",
    "StatusProjection",
    "TerminalMode",
    "project_agent_state",
    "table_projection",
]
