"""Localhost server detection in terminal output."""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class DetectedServer:
    url: str
    port: int


_URL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"https?://localhost:(\d+)"),
    re.compile(r"https?://127\.0\.0\.1:(\d+)"),
    re.compile(r"https?://0\.0\.0\.0:(\d+)"),
    re.compile(r"https?://\[::1\]:(\d+)"),
    # Vite / Next.js banners
    re.compile(r"Local:?\s+https?://[^\s]+:(\d+)"),
    re.compile(r"(?:listening|running|started|ready)\s+(?:on\s+)?port\s+(\d+)"),
    re.compile(
        r"(?:Server|App|Application)\s+(?:running|listening|started)\s+(?:at|on)\s+https?://[^\s:]+:(\d+)"
    ),
)


def detect_server_url(output: str) -> DetectedServer | None:
    """Return the first localhost server announced in ``output``, if any."""

    for pattern in _URL_PATTERNS:
        match = pattern.search(output)
        if match is None:
            continue
        port = int(match.group(1))
        if 0 < port < 65536:
            return DetectedServer(url=f"http://localhost:{port}", port=port)
    return None


__all__ = ["DetectedServer", "detect_server_url"]
