"""Single-writer stores for sessions and agent activity."""

from .agent_status import AgentChange, AgentStatusTracker
from .errors import CacheInvariantError
from .session_cache import CacheChange, SessionCache

__all__ = [
    "AgentChange",
    "AgentStatusTracker",
    "CacheChange",
    "CacheInvariantError",
    "SessionCache",
]
