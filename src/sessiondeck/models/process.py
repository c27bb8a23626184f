"""Processes tracked by the backend registry."""

from __future__ import annotations

from enum import Enum

from .session import WireModel


class ManagedProcessStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class ProcessSource(str, Enum):
    TERMINAL = "terminal"
    DEV_SERVER = "devServer"
    BACKGROUND = "background"
    SYSTEM = "system"


class ManagedProcess(WireModel):
    """A process owned by the registry; ``session_id`` is a back-reference only."""

    session_id: str
    pid: int
    pgid: int
    source: ProcessSource
    command: str
    status: ManagedProcessStatus = ManagedProcessStatus.STARTING
    port: int | None = None
    server_url: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in {ManagedProcessStatus.STARTING, ManagedProcessStatus.RUNNING}


__all__ = ["ManagedProcess", "ManagedProcessStatus", "ProcessSource"]
