"""Task descriptors and their monotonic execution state."""

import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Union

from .errors import InvalidTransition


@dataclass(frozen=True)
class Pending:
    """Loaded, not dispatched yet."""
    label = "pending"
    terminal = False


@dataclass(frozen=True)
class Running:
    """Dispatched; ``started_at`` is a ``time.monotonic()`` reading."""
    started_at: float
    label = "running"
    terminal = False

    def elapsed(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.started_at


@dataclass(frozen=True)
class Complete:
    """Process exited with status 0."""
    duration: float
    label = "complete"
    terminal = True


@dataclass(frozen=True)
class Failed:
    """Process exited non-zero, was signaled, or could not be launched."""
    duration: float
    label = "failed"
    terminal = True


@dataclass(frozen=True)
class Skipped:
    """Filtered out, or left undispatched after the run stopped."""
    label = "skipped"
    terminal = True


State = Union[Pending, Running, Complete, Failed, Skipped]

# Allowed transitions, keyed by current state type
_TRANSITIONS: dict[type, tuple[type, ...]] = {
    Pending: (Running, Skipped),
    Running: (Complete, Failed),
    Complete: (),
    Failed: (),
    Skipped: (),
}


def can_transition(current: State, new: State) -> bool:
    """Check whether ``current`` may move to ``new``."""
    return isinstance(new, _TRANSITIONS[type(current)])


@dataclass(frozen=True)
class Task:
    """
    One schedulable step backed by one executable file.

    Instances are immutable snapshots: state changes produce a new Task via
    ``with_state`` so a snapshot handed to a consumer never changes under it.
    """
    n: int              # Position in run order, assigned once at load
    id: int             # Numeric filename prefix, drives order and sync ranges
    name: str
    path: Path
    state: State = Pending()

    def with_state(self, state: State) -> "Task":
        """Return a copy in ``state``, rejecting non-monotonic transitions."""
        if not can_transition(self.state, state):
            raise InvalidTransition(
                f"{self.name}: cannot go from {self.state.label} to {state.label}",
                task_name=self.name,
            )
        return replace(self, state=state)

    @property
    def failed(self) -> bool:
        return isinstance(self.state, Failed)

    @property
    def finished(self) -> bool:
        return self.state.terminal
