"""Cache-level failures."""

from __future__ import annotations


class CacheInvariantError(RuntimeError):
    """Raised when a payload cannot be merged into the cache without breaking its invariants."""


__all__ = ["CacheInvariantError"]
