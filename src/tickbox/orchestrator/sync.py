"""Sync policies: which tasks may share a parallel batch."""

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Pattern, Sequence, Union

from ..core.state import Task


@dataclass(frozen=True)
class Sequential:
    """Every task is a barrier."""


@dataclass(frozen=True)
class Ranges:
    """Parallel groups by inclusive id range, first containing range wins."""
    ranges: tuple[tuple[int, int], ...]

    def group_of(self, task: Task) -> Optional[tuple[int, int]]:
        for lo, hi in self.ranges:
            if lo <= task.id <= hi:
                return lo, hi
        return None


@dataclass(frozen=True)
class NamePattern:
    """Parallel groups by task name, first matching pattern wins."""
    patterns: tuple[Pattern, ...]

    def group_of(self, task: Task) -> Optional[Pattern]:
        for pattern in self.patterns:
            if pattern.search(task.name):
                return pattern
        return None


SyncPolicy = Union[Sequential, Ranges, NamePattern]


def resolve_policy(
    ranges: Optional[Sequence[tuple[int, int]]] = None,
    patterns: Optional[Sequence[Union[str, Pattern]]] = None,
) -> SyncPolicy:
    """Pick the policy: explicit ranges, then name patterns, then sequential."""
    if ranges:
        return Ranges(ranges=tuple((int(lo), int(hi)) for lo, hi in ranges))
    if patterns:
        return NamePattern(
            patterns=tuple(re.compile(p) if isinstance(p, str) else p for p in patterns)
        )
    return Sequential()


def sync_point(task: Task, running: Iterable[Task], policy: SyncPolicy) -> bool:
    """
    True when ``task`` must wait for ``running`` to drain before it starts.

    A task joins the running batch only if it belongs to a declared group
    and every running task is a member of that same group.
    """
    if isinstance(policy, Ranges):
        group = policy.group_of(task)
        if group is None:
            return True
        lo, hi = group
        return not all(lo <= other.id <= hi for other in running)

    if isinstance(policy, NamePattern):
        pattern = policy.group_of(task)
        if pattern is None:
            return True
        return not all(pattern.search(other.name) for other in running)

    return True
