"""Renderer-side state built from the event stream."""

from collections import deque
from typing import Optional

from ..core.state import Task
from ..orchestrator.events import AddLine, Event, Status, Wait


UNCHECKED = "☐"
CHECKED = "☑"
FAILED = "☒"

DEFAULT_SCROLLBACK = 10_000

# state label -> (marker, colour)
STATE_STYLE: dict[str, tuple[str, str]] = {
    "pending": (UNCHECKED, "yellow"),
    "running": (UNCHECKED, "blue"),
    "complete": (CHECKED, "green"),
    "failed": (FAILED, "red"),
    "skipped": (UNCHECKED, "bright_black"),
}


class WorkflowView:
    """
    Status board and scrollback for one run.

    Status events upsert by ``task.n``: a new index is appended, a known
    index is replaced in place, rows never move.
    """

    def __init__(self, scrollback: int = DEFAULT_SCROLLBACK):
        self._rows: dict[int, Task] = {}
        self.lines: deque[str] = deque(maxlen=scrollback)
        self.wait = False

    def apply(self, event: Event) -> Optional[Task]:
        """Fold one event in; returns the previous snapshot on a Status update."""
        if isinstance(event, Status):
            previous = self._rows.get(event.task.n)
            self._rows[event.task.n] = event.task
            return previous
        if isinstance(event, AddLine):
            self.lines.append(event.text)
        elif isinstance(event, Wait):
            self.wait = True
        return None

    @property
    def tasks(self) -> list[Task]:
        return list(self._rows.values())

    def tail(self, count: int) -> list[str]:
        """Last ``count`` scrollback lines, oldest first."""
        if count <= 0:
            return []
        return list(self.lines)[-count:]

    def status_line(self, task: Task) -> str:
        marker, _ = STATE_STYLE[task.state.label]
        return f"{marker} {task.name}"

    def counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for task in self._rows.values():
            counts[task.state.label] = counts.get(task.state.label, 0) + 1
        return counts
