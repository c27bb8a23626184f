"""Mode catalog loading utilities."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Mapping

import yaml
from pydantic import ValidationError

from ..models.session import TerminalMode
from .models import BUILTIN_MODES, ModeDefinition


class ModeLoadError(RuntimeError):
    """Raised when one or more mode files cannot be parsed."""


class ModeCatalog:
    """Resolved set of mode definitions."""

    def __init__(self, definitions: Mapping[TerminalMode, ModeDefinition] | None = None) -> None:
        self._definitions = dict(BUILTIN_MODES)
        if definitions:
            self._definitions.update(definitions)

    def __getitem__(self, mode: TerminalMode | str) -> ModeDefinition:
        return self._definitions[TerminalMode(mode)]

    def definitions(self) -> list[ModeDefinition]:
        return list(self._definitions.values())

    def command_for(self, mode: TerminalMode | str) -> str:
        """Return the command a PTY in this mode runs, falling back to the login shell."""

        command = self[mode].command
        if command:
            return command
        return os.environ.get("SHELL") or "/bin/bash"


class ModeLoader:
    """Loads terminal mode overrides from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> ModeCatalog:
        """Load overrides from all configured search paths.

        Later search paths override earlier ones when mode ids collide. A file may hold
        a single mapping or a list of mappings.
        """

        overrides: dict[TerminalMode, ModeDefinition] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                entries = document if isinstance(document, list) else [document]
                for entry in entries:
                    try:
                        definition = ModeDefinition.model_validate(entry)
                    except ValidationError as exc:
                        errors.append(f"Mode validation error in {path}: {exc}")
                        continue
                    overrides[definition.id] = definition

        if errors:
            raise ModeLoadError("; ".join(errors))

        return ModeCatalog(overrides)


def load_modes(search_paths: Iterable[Path] | None = None) -> ModeCatalog:
    """Convenience wrapper for loading the mode catalog from the provided paths."""

    return ModeLoader(search_paths).load_all()


__all__ = ["ModeCatalog", "ModeLoadError", "ModeLoader", "load_modes"]
