"""Per-session output channels.

Each session's byte stream is its own channel with its own subscriber list. Every
subscriber owns a queue and a delivery task, so a slow consumer only delays
itself. Chunks carry no framing: they may split lines or multi-byte characters,
which ``TextStreamDecoder`` takes care of for text consumers.
"""

from __future__ import annotations

import asyncio
import codecs
import inspect
import logging
from typing import Any, Awaitable, Callable

from ..backend.protocol import SessionBackend, Unlisten
from ..models.events import pty_output_event

logger = logging.getLogger(__name__)

OutputCallback = Callable[[bytes], Awaitable[None] | None]


def _as_bytes(payload: Any) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)


class TextStreamDecoder:
    """Incremental UTF-8 decoder that holds back incomplete characters."""

    def __init__(self, errors: str = "replace") -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors=errors)

    def decode(self, chunk: bytes) -> str:
        return self._decoder.decode(chunk)

    def flush(self) -> str:
        return self._decoder.decode(b"", final=True)


class _Subscriber:
    def __init__(self, session_id: str, callback: OutputCallback, buffer_size: int) -> None:
        self.session_id = session_id
        self.callback = callback
        self.queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=buffer_size)
        self.task = asyncio.get_running_loop().create_task(self._deliver())

    def offer(self, chunk: bytes) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            logger.warning(
                "Output buffer full; dropped oldest chunk",
                extra={"session_id": self.session_id, "buffer": self.queue.maxsize},
            )
        self.queue.put_nowait(chunk)

    async def _deliver(self) -> None:
        while True:
            chunk = await self.queue.get()
            try:
                result = self.callback(chunk)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Output callback failed", extra={"session_id": self.session_id})

    def cancel(self) -> None:
        self.task.cancel()


class OutputChannel:
    """Backend subscription for ``pty-output-<session>`` fanned out to local subscribers."""

    def __init__(
        self,
        session_id: str,
        backend: SessionBackend,
        *,
        buffer_size: int = 0,
        on_released: Callable[[str], None] | None = None,
    ) -> None:
        # Subscribers need a running loop; fail before touching the backend.
        asyncio.get_running_loop()
        self.session_id = session_id
        self._buffer_size = buffer_size
        self._on_released = on_released
        self._subscribers: tuple[_Subscriber, ...] = ()
        self._unlisten: Unlisten | None = backend.listen(
            pty_output_event(session_id), self._dispatch
        )

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _dispatch(self, payload: Any) -> None:
        chunk = _as_bytes(payload)
        for subscriber in self._subscribers:
            subscriber.offer(chunk)

    def subscribe(self, callback: OutputCallback) -> Callable[[], None]:
        subscriber = _Subscriber(self.session_id, callback, self._buffer_size)
        self._subscribers = (*self._subscribers, subscriber)

        def unsubscribe() -> None:
            if subscriber not in self._subscribers:
                return
            subscriber.cancel()
            self._subscribers = tuple(item for item in self._subscribers if item is not subscriber)
            if not self._subscribers:
                self.release()

        return unsubscribe

    def release(self) -> None:
        """Cancel every subscriber and drop the backend subscription."""

        for subscriber in self._subscribers:
            subscriber.cancel()
        self._subscribers = ()
        if self._unlisten is not None:
            self._unlisten()
            self._unlisten = None
            if self._on_released is not None:
                self._on_released(self.session_id)


__all__ = ["OutputCallback", "OutputChannel", "TextStreamDecoder"]
