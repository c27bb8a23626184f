"""PTY lifecycle helpers."""

from .service import PtyService
from .stream import OutputCallback, OutputChannel, TextStreamDecoder

__all__ = ["OutputCallback", "OutputChannel", "PtyService", "TextStreamDecoder"]
