"""FastMCP channel on which agents running inside sessions report their activity."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import FastMCP

from . import __version__
from .backend.memory import InMemoryBackend
from .config import SessionDeckSettings, configure_logging, get_settings
from .models.agent import AgentState
from .modes import load_modes
from .workspace import Workspace

logger = logging.getLogger(__name__)

_VALID_STATES = ", ".join(state.value for state in AgentState)


@dataclass(slots=True)
class ToolHandles:
    report_agent_status: Any
    clear_agent_status: Any
    list_sessions: Any


def register_tools(server: FastMCP, *, workspace: Workspace) -> ToolHandles:
    """Register the agent status tools on the server."""

    async def _report_agent_status(
        session_id: str,
        state: str,
        message: str,
        needs_input_prompt: str | None = None,
    ) -> dict[str, Any]:
        """Record the latest activity for a session."""

        try:
            parsed = AgentState(state)
        except ValueError as exc:
            raise ValueError(f"Unknown agent state '{state}'. Expected one of: {_VALID_STATES}") from exc

        if session_id not in workspace.cache:
            logger.warning("Agent status for unknown session", extra={"session_id": session_id})

        status = workspace.agents.upsert(session_id, parsed, message, needs_input_prompt)
        logger.info(
            "Agent status reported",
            extra={"session_id": session_id, "state": parsed.value},
        )
        return status.model_dump(mode="json")

    async def _clear_agent_status(session_id: str) -> dict[str, Any]:
        """Forget the recorded activity for a session."""

        cleared = workspace.agents.clear(session_id)
        return {"session_id": session_id, "cleared": cleared}

    def _list_sessions() -> list[dict[str, Any]]:
        """List cached sessions with any agent activity attached."""

        catalog = []
        for session in workspace.cache.sorted_sessions():
            agent = workspace.agents.get(session.id)
            catalog.append(
                {
                    "id": session.id,
                    "numeric_id": session.numeric_id,
                    "mode": session.mode.value,
                    "status": session.status.value,
                    "working_directory": session.working_directory,
                    "server_url": session.server_url,
                    "agent": agent.model_dump(mode="json") if agent is not None else None,
                }
            )
        return catalog

    tool_report = server.tool(
        name="report_agent_status",
        description=(
            "Report what the agent in a session is doing. State is one of "
            f"{_VALID_STATES}; include needs_input_prompt when waiting on the user."
        ),
    )(_report_agent_status)

    tool_clear = server.tool(
        name="clear_agent_status",
        description="Clear the reported agent activity for a session.",
    )(_clear_agent_status)

    tool_list = server.tool(
        name="list_sessions",
        description="List sessions known to the workspace with their latest agent status.",
    )(_list_sessions)

    return ToolHandles(
        report_agent_status=tool_report,
        clear_agent_status=tool_clear,
        list_sessions=tool_list,
    )


def create_server(
    workspace: Workspace,
    settings: Optional[SessionDeckSettings] = None,
) -> FastMCP:
    """Instantiate the FastMCP server bound to ``workspace``."""

    settings = settings or get_settings()

    server = FastMCP(
        name=settings.server_name,
        instructions=(
            "Agents running inside sessiondeck terminals report their progress here. "
            "Call report_agent_status whenever your state changes, passing the session id "
            "from your environment."
        ),
    )

    handles = register_tools(server, workspace=workspace)

    def _status_resource() -> str:
        """Return a JSON string summarizing the workspace."""

        cache = workspace.cache
        status_counts: dict[str, int] = {}
        for session in cache.sessions.values():
            status_counts[session.status.value] = status_counts.get(session.status.value, 0) + 1

        agent_counts: dict[str, int] = {}
        for status in workspace.agents.all():
            agent_counts[status.state.value] = agent_counts.get(status.state.value, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "sessions": {
                "count": len(cache),
                "active_id": cache.active_id,
                "status_counts": status_counts,
                "loading": cache.is_loading,
                "error": cache.error,
            },
            "agents": {
                "count": len(workspace.agents),
                "state_counts": agent_counts,
                "needs_input": [
                    {"session_id": status.session_id, "prompt": status.needs_input_prompt}
                    for status in workspace.agents.by_state(AgentState.NEEDS_INPUT)
                ],
            },
            "projection": workspace.projection is not None,
        }
        return json.dumps(payload)

    server.resource(
        "resource://sessiondeck/status",
        name="sessiondeck_status",
        description="Session counts and the latest agent activity for this workspace.",
        mime_type="application/json",
    )(_status_resource)

    setattr(server, "workspace", workspace)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_resource", _status_resource)
    return server


def build_workspace(settings: SessionDeckSettings) -> Workspace:
    """Build a workspace over the in-process registry using the configured modes."""

    modes = load_modes(settings.mode_paths)
    backend = InMemoryBackend(settings=settings, modes=modes)
    return Workspace(backend, settings=settings)


async def _serve(server: FastMCP, workspace: Workspace) -> None:
    await workspace.start()
    try:
        await server.run_async()
    finally:
        await workspace.close()


def main() -> None:
    """Entry point for running the sessiondeck status server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    workspace = build_workspace(settings)
    server = create_server(workspace, settings)
    logger.info(
        "Launching sessiondeck status server",
        extra={
            "version": __version__,
            "server_name": settings.server_name,
            "log_level": settings.log_level,
            "mode_paths": [str(path) for path in settings.mode_paths],
        },
    )
    asyncio.run(_serve(server, workspace))


__all__ = ["ToolHandles", "build_workspace", "create_server", "main", "register_tools"]


if __name__ == "__main__":
    main()
