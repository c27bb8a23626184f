"""Terminal mode definitions."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from ..models.session import TerminalMode


class ModeDefinition(BaseModel):
    """Describes which CLI tool a terminal mode launches."""

    id: TerminalMode = Field(..., description="Terminal mode this definition configures.")
    command: str = Field(
        default="",
        description="Command line started in the PTY; empty runs the user's shell.",
    )
    display_name: str = Field(..., description="Human-friendly name for the mode.")

    @field_validator("command", mode="before")
    @classmethod
    def _normalize_command(cls, value: str | None) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("display_name")
    @classmethod
    def _require_display_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Mode display_name must not be empty")
        return normalized


BUILTIN_MODES: dict[TerminalMode, ModeDefinition] = {
    TerminalMode.CLAUDE_CODE: ModeDefinition(
        id=TerminalMode.CLAUDE_CODE, command="claude", display_name="Claude Code"
    ),
    TerminalMode.GEMINI_CLI: ModeDefinition(
        id=TerminalMode.GEMINI_CLI, command="gemini", display_name="Gemini CLI"
    ),
    TerminalMode.OPENAI_CODEX: ModeDefinition(
        id=TerminalMode.OPENAI_CODEX, command="codex", display_name="OpenAI Codex"
    ),
    TerminalMode.PLAIN_TERMINAL: ModeDefinition(
        id=TerminalMode.PLAIN_TERMINAL, command="", display_name="Terminal"
    ),
}


__all__ = ["BUILTIN_MODES", "ModeDefinition"]
