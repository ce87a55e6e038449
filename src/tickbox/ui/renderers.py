"""
Event consumers: a live terminal view and a plain line log.

Both drain the event bus until end of stream. When a Wait event was seen
they keep the result on screen until the user acknowledges it; a quit
request disconnects from the bus at any point.
"""

import asyncio
import sys
import time
from typing import Optional, TextIO

import structlog
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from ..core.state import Task
from ..orchestrator.events import AddLine, Event, EventReceiver, Status
from .input import UserInput
from .view import STATE_STYLE, WorkflowView


logger = structlog.get_logger()

DONE_BANNER = "========DONE=========="


class Renderer:
    """Common consume loop; subclasses draw."""

    # Seconds between idle ticks while no event arrives
    tick = 0.05

    def __init__(
        self,
        view: Optional[WorkflowView] = None,
        user_input: Optional[UserInput] = None,
    ):
        self.view = view or WorkflowView()
        self.user_input = user_input
        self.quit = False

    async def consume(self, receiver: EventReceiver) -> None:
        """Drain ``receiver`` until end of stream or a quit request."""
        self.open()
        recv_task: Optional[asyncio.Future] = None
        quit_task: Optional[asyncio.Future] = None
        if self.user_input is not None:
            self.user_input.start()
            quit_task = asyncio.ensure_future(self.user_input.quit_requested.wait())
        try:
            while True:
                if recv_task is None:
                    recv_task = asyncio.ensure_future(receiver.recv())
                waiters = {recv_task} if quit_task is None else {recv_task, quit_task}
                done, _ = await asyncio.wait(
                    waiters, timeout=self.tick, return_when=asyncio.FIRST_COMPLETED
                )
                if not done:
                    self.on_tick()
                    continue
                if recv_task in done:
                    event = recv_task.result()
                    recv_task = None
                    if event is None:
                        break
                    previous = self.view.apply(event)
                    self.on_event(event, previous)
                    continue
                # Quit requested while the workflow still produces events
                self.quit = True
                receiver.close()
                logger.info("consumer_closed", reason="user_quit")
                return

            if self.view.wait:
                await self._wait_for_user()
        finally:
            for future in (recv_task, quit_task):
                if future is not None:
                    future.cancel()
            if self.user_input is not None:
                self.user_input.stop()
            self.close()

    async def _wait_for_user(self) -> None:
        if self.user_input is None or not self.user_input.interactive:
            logger.info("wait_skipped", reason="no interactive input")
            return
        self.user_input.acknowledged.clear()
        self.on_waiting()
        await self.user_input.acknowledged.wait()

    # ==================== Drawing hooks ====================

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def on_event(self, event: Event, previous: Optional[Task]) -> None:
        pass

    def on_tick(self) -> None:
        pass

    def on_waiting(self) -> None:
        pass


class PlainRenderer(Renderer):
    """Writes output lines and state changes to a text stream."""

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        view: Optional[WorkflowView] = None,
        user_input: Optional[UserInput] = None,
    ):
        super().__init__(view=view, user_input=user_input)
        self.stream = stream if stream is not None else sys.stdout

    def on_event(self, event: Event, previous: Optional[Task]) -> None:
        if isinstance(event, AddLine):
            self._write(event.text)
        elif isinstance(event, Status):
            # Initial pending rows are not news
            if previous is None and event.task.state.label == "pending":
                return
            self._write(f"[{event.task.state.label}] {event.task.name}")

    def on_waiting(self) -> None:
        self._write("Press Enter to exit.")

    def close(self) -> None:
        for task in self.view.tasks:
            self._write(self.view.status_line(task))
        self._write(DONE_BANNER)

    def _write(self, text: str) -> None:
        self.stream.write(text + "\n")
        self.stream.flush()


class LiveRenderer(Renderer):
    """
    Full-screen view: workflow status on top, command output below.

    Redraws are throttled to ``refresh_per_second``.
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        view: Optional[WorkflowView] = None,
        user_input: Optional[UserInput] = None,
        refresh_per_second: float = 20.0,
        screen: bool = True,
    ):
        super().__init__(view=view, user_input=user_input)
        self.console = console or Console()
        self.refresh_interval = 1.0 / max(1.0, refresh_per_second)
        self.screen = screen
        self._live: Optional[Live] = None
        self._dirty = False
        self._last_draw = 0.0
        self._footer = "q + Enter: quit"

    def open(self) -> None:
        self._live = Live(
            self.render(),
            console=self.console,
            auto_refresh=False,
            screen=self.screen,
            transient=False,
        )
        self._live.start(refresh=True)

    def close(self) -> None:
        if self._live is None:
            return
        try:
            self._live.stop()
        finally:
            self._live = None
        # The alternate screen is gone; leave the result in the scrollback
        for task in self.view.tasks:
            _, colour = STATE_STYLE[task.state.label]
            self.console.print(Text(self.view.status_line(task), style=colour))
        self.console.print(DONE_BANNER)

    def on_event(self, event: Event, previous: Optional[Task]) -> None:
        self._dirty = True
        self._draw()

    def on_tick(self) -> None:
        self._draw()

    def on_waiting(self) -> None:
        counts = self.view.counts()
        if counts.get("failed"):
            self._footer = "Workflow failed. Enter: exit"
        else:
            self._footer = "Workflow finished. Enter: exit"
        self._dirty = True
        self._draw(force=True)

    def _draw(self, force: bool = False) -> None:
        if self._live is None or not self._dirty:
            return
        now = time.monotonic()
        if not force and now - self._last_draw < self.refresh_interval:
            return
        self._live.update(self.render(), refresh=True)
        self._dirty = False
        self._last_draw = now

    def render(self) -> Layout:
        status = Text(no_wrap=True, overflow="ellipsis")
        for task in self.view.tasks:
            _, colour = STATE_STYLE[task.state.label]
            status.append(self.view.status_line(task) + "\n", style=colour)

        # Half the screen minus the panel borders
        height = max(1, self.console.size.height // 2 - 2)
        output = Text.from_ansi(
            "\n".join(self.view.tail(height)), no_wrap=True, overflow="ellipsis"
        )

        layout = Layout()
        layout.split_column(
            Layout(Panel(status, title="Workflow", subtitle=self._footer), name="top", ratio=1),
            Layout(Panel(output, title="Command output"), name="bottom", ratio=1),
        )
        return layout
