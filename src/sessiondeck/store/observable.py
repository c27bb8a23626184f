"""Observer plumbing shared by the single-writer stores."""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

ChangeT = TypeVar("ChangeT")


class Observable(Generic[ChangeT]):
    """Broadcasts change notifications to subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: tuple[Callable[[ChangeT], None], ...] = ()

    def subscribe(self, listener: Callable[[ChangeT], None]) -> Callable[[], None]:
        """Register ``listener``; the returned callable unsubscribes it."""

        token = _Token(listener)
        self._listeners = (*self._listeners, token)

        def unsubscribe() -> None:
            self._listeners = tuple(item for item in self._listeners if item is not token)

        return unsubscribe

    def _notify(self, change: ChangeT) -> None:
        for listener in self._listeners:
            try:
                listener(change)
            except Exception:
                logger.exception(
                    "Store listener failed",
                    extra={"store": type(self).__name__},
                )


class _Token:
    __slots__ = ("listener",)

    def __init__(self, listener: Callable) -> None:
        self.listener = listener

    def __call__(self, change) -> None:
        self.listener(change)


__all__ = ["Observable"]
