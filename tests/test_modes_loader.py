from pathlib import Path
import textwrap

import pytest

from sessiondeck.models import TerminalMode
from sessiondeck.modes import ModeCatalog, ModeLoadError, ModeLoader, load_modes


def write_mode(path: Path, *, command: str, display_name: str = "Claude") -> None:
    path.write_text(
        textwrap.dedent(
            """
            id: claudeCode
            command: {command}
            display_name: {display_name}
            """
        ).strip().format(command=command, display_name=display_name),
        encoding="utf-8",
    )


def test_builtin_catalog_commands(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SHELL", "/bin/zsh")
    catalog = ModeCatalog()

    assert catalog.command_for(TerminalMode.CLAUDE_CODE) == "claude"
    assert catalog.command_for("geminiCli") == "gemini"
    assert catalog.command_for("openAiCodex") == "codex"
    assert catalog.command_for("plainTerminal") == "/bin/zsh"


def test_plain_terminal_defaults_to_bash(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SHELL", raising=False)

    assert ModeCatalog().command_for(TerminalMode.PLAIN_TERMINAL) == "/bin/bash"


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_mode(base / "claude.yaml", command="claude --base")
    write_mode(override / "claude.yml", command="claude --override")

    catalog = ModeLoader([base, override]).load_all()

    assert catalog.command_for(TerminalMode.CLAUDE_CODE) == "claude --override"
    assert catalog.command_for(TerminalMode.GEMINI_CLI) == "gemini"


def test_loader_accepts_lists(tmp_path: Path) -> None:
    (tmp_path / "modes.yaml").write_text(
        textwrap.dedent(
            """
            - id: geminiCli
              command: gemini --yolo
              display_name: Gemini
            - id: openAiCodex
              command: codex --full-auto
              display_name: Codex
            """
        ).strip(),
        encoding="utf-8",
    )

    catalog = load_modes([tmp_path])

    assert catalog.command_for("geminiCli") == "gemini --yolo"
    assert catalog["openAiCodex"].display_name == "Codex"


def test_loader_handles_missing_paths(tmp_path: Path) -> None:
    loader = ModeLoader([tmp_path / "missing"])

    assert loader.search_paths == []
    assert len(loader.load_all().definitions()) == 4


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("id: vimMode\ndisplay_name: Vim", encoding="utf-8")
    (tmp_path / "empty_name.yaml").write_text("id: claudeCode\ndisplay_name: '  '", encoding="utf-8")

    with pytest.raises(ModeLoadError) as excinfo:
        ModeLoader([tmp_path]).load_all()

    assert "broken.yaml" in str(excinfo.value)
    assert "empty_name.yaml" in str(excinfo.value)
