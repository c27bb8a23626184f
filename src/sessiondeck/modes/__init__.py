"""Terminal mode catalog and loader exports."""

from .loader import ModeCatalog, ModeLoadError, ModeLoader, load_modes
from .models import BUILTIN_MODES, ModeDefinition

__all__ = [
    "BUILTIN_MODES",
    "ModeCatalog",
    "ModeDefinition",
    "ModeLoadError",
    "ModeLoader",
    "load_modes",
]
