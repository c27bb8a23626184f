"""Name-keyed push event channel."""

from __future__ import annotations

import logging
from typing import Any

from .protocol import EventHandler, Unlisten

logger = logging.getLogger(__name__)


class _Subscription:
    __slots__ = ("event", "handler")

    def __init__(self, event: str, handler: EventHandler) -> None:
        self.event = event
        self.handler = handler


class EventBus:
    """Fire-and-forget publish/subscribe keyed by event name.

    Delivery is synchronous and follows subscription order. Handler lists are
    replaced on every change, so a handler may unlisten itself mid-dispatch.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, tuple[_Subscription, ...]] = {}

    def listen(self, event: str, handler: EventHandler) -> Unlisten:
        subscription = _Subscription(event, handler)
        self._subscriptions[event] = (*self._subscriptions.get(event, ()), subscription)

        def unlisten() -> None:
            current = self._subscriptions.get(event, ())
            remaining = tuple(sub for sub in current if sub is not subscription)
            if len(remaining) == len(current):
                return
            if remaining:
                self._subscriptions[event] = remaining
            else:
                self._subscriptions.pop(event, None)

        return unlisten

    def emit(self, event: str, payload: Any) -> int:
        """Deliver ``payload`` to every handler of ``event``; returns the handler count."""

        subscriptions = self._subscriptions.get(event, ())
        for subscription in subscriptions:
            try:
                subscription.handler(payload)
            except Exception:
                logger.exception("Event handler failed", extra={"event": event})
        return len(subscriptions)

    def listener_count(self, event: str) -> int:
        return len(self._subscriptions.get(event, ()))


__all__ = ["EventBus"]
