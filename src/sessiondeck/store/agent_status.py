"""Sparse per-session map of the latest agent activity."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Literal, Mapping

from ..models.agent import AgentState, AgentStatus
from .observable import Observable

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class AgentChange:
    kind: Literal["upserted", "cleared", "reset"]
    session_id: str | None
    status: AgentStatus | None
    statuses: Mapping[str, AgentStatus]


class AgentStatusTracker(Observable[AgentChange]):
    """Holds the last agent report per session.

    Reports arrive on their own channel, correlated only by session id, and each
    one replaces the previous record wholesale.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        super().__init__()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._statuses: Mapping[str, AgentStatus] = MappingProxyType({})

    @property
    def statuses(self) -> Mapping[str, AgentStatus]:
        return self._statuses

    def __len__(self) -> int:
        return len(self._statuses)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._statuses

    def get(self, session_id: str) -> AgentStatus | None:
        return self._statuses.get(session_id)

    def all(self) -> list[AgentStatus]:
        return list(self._statuses.values())

    def by_state(self, state: AgentState | str) -> list[AgentStatus]:
        wanted = AgentState(state)
        return [status for status in self._statuses.values() if status.state == wanted]

    def upsert(
        self,
        session_id: str,
        state: AgentState | str,
        message: str,
        needs_input_prompt: str | None = None,
    ) -> AgentStatus:
        status = AgentStatus(
            session_id=session_id,
            state=AgentState(state),
            message=message,
            needs_input_prompt=needs_input_prompt,
            timestamp=self._clock(),
        )
        statuses = dict(self._statuses)
        statuses[session_id] = status
        self._statuses = MappingProxyType(statuses)
        logger.debug(
            "Agent status updated",
            extra={"session_id": session_id, "state": status.state.value},
        )
        self._notify(AgentChange("upserted", session_id, status, self._statuses))
        return status

    def clear(self, session_id: str) -> bool:
        if session_id not in self._statuses:
            return False
        statuses = dict(self._statuses)
        del statuses[session_id]
        self._statuses = MappingProxyType(statuses)
        self._notify(AgentChange("cleared", session_id, None, self._statuses))
        return True

    def clear_all(self) -> None:
        self._statuses = MappingProxyType({})
        self._notify(AgentChange("reset", None, None, self._statuses))


__all__ = ["AgentChange", "AgentStatusTracker"]
