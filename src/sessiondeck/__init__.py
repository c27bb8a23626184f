"""Session cache, PTY lifecycle and agent status core."""

__version__ = "0.1.0"
