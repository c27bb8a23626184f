"""Backend collaborator surface, push channel and reference registry."""

from .bus import EventBus
from .errors import BackendError, BackendUnavailableError, StaleReferenceError
from .memory import InMemoryBackend, SimulatedPty
from .protocol import EventHandler, SessionBackend, Unlisten
from .url_detection import DetectedServer, detect_server_url

__all__ = [
    "BackendError",
    "BackendUnavailableError",
    "DetectedServer",
    "EventBus",
    "EventHandler",
    "InMemoryBackend",
    "SessionBackend",
    "SimulatedPty",
    "StaleReferenceError",
    "Unlisten",
    "detect_server_url",
]
