"""Keyboard input for the display: quit and acknowledge."""

import asyncio
import sys
from typing import Optional, TextIO

import structlog


logger = structlog.get_logger()

QUIT_KEYS = ("q", "Q")


class UserInput:
    """
    Watches a line-buffered terminal for user actions.

    ``q`` followed by Enter (or ``request_quit``, wired to Ctrl-C) asks the
    display to disconnect; any other line acknowledges a pending wait.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream if stream is not None else sys.stdin
        self.quit_requested = asyncio.Event()
        self.acknowledged = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def interactive(self) -> bool:
        try:
            return self.stream.isatty()
        except (ValueError, OSError):
            return False

    def start(self) -> None:
        """Begin watching the stream (no-op when it is not a terminal)."""
        if not self.interactive or self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(self.stream.fileno(), self._on_readable)

    def stop(self) -> None:
        if self._loop is not None:
            self._loop.remove_reader(self.stream.fileno())
            self._loop = None

    def request_quit(self) -> None:
        if not self.quit_requested.is_set():
            logger.info("user_quit_requested")
        self.quit_requested.set()
        self.acknowledged.set()

    def feed(self, line: str) -> None:
        """Handle one line of input."""
        if line.strip() in QUIT_KEYS:
            self.request_quit()
        else:
            self.acknowledged.set()

    def _on_readable(self) -> None:
        line = self.stream.readline()
        if not line:
            # EOF; nothing more will arrive
            self.stop()
            self.acknowledged.set()
            return
        self.feed(line)
