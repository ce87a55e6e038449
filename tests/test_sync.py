"""Tests for sync-point decisions."""

import re
from pathlib import Path

import pytest

from tickbox.core.state import Task
from tickbox.orchestrator.sync import (
    NamePattern,
    Ranges,
    Sequential,
    resolve_policy,
    sync_point,
)


def task(task_id, name=None):
    name = name or f"{task_id:02d}-step"
    return Task(n=task_id, id=task_id, name=name, path=Path("/steps") / name)


class TestRanges:
    """Test id range groups."""

    def test_joins_batch_inside_range(self):
        policy = Ranges(ranges=((0, 3),))
        assert not sync_point(task(3), [task(1), task(2)], policy)

    def test_outside_any_range_is_barrier(self):
        policy = Ranges(ranges=((0, 2),))
        assert sync_point(task(3), [task(1), task(2)], policy)

    def test_running_member_outside_range(self):
        policy = Ranges(ranges=((5, 9),))
        assert sync_point(task(6), [task(2), task(5)], policy)

    def test_first_matching_range_wins(self):
        policy = Ranges(ranges=((0, 2), (2, 5)))
        # id 2 belongs to (0, 2); a running id 4 is outside that group
        assert sync_point(task(2), [task(4)], policy)
        assert not sync_point(task(2), [task(0), task(1)], policy)

    def test_empty_running_set(self):
        policy = Ranges(ranges=((0, 2),))
        assert not sync_point(task(1), [], policy)
        assert sync_point(task(7), [], policy)

    def test_range_bounds_inclusive(self):
        policy = Ranges(ranges=((10, 20),))
        assert not sync_point(task(20), [task(10)], policy)


class TestNamePattern:
    """Test regex name groups."""

    def test_not_all_running_match(self):
        policy = NamePattern(patterns=(re.compile("^01-"),))
        running = [task(1, "01-a"), task(2, "02-b")]
        assert sync_point(task(3, "01-c"), running, policy)

    def test_all_running_match(self):
        policy = NamePattern(patterns=(re.compile("^01-"),))
        running = [task(1, "01-a"), task(2, "01-b")]
        assert not sync_point(task(3, "01-c"), running, policy)

    def test_unmatched_name_is_barrier(self):
        policy = NamePattern(patterns=(re.compile("^01-"),))
        assert sync_point(task(3, "03-c"), [task(1, "01-a")], policy)

    def test_first_matching_pattern_wins(self):
        policy = NamePattern(patterns=(re.compile("test"), re.compile("lint")))
        # "lint-test" matches "test" first, so "lint-a" is outside its group
        assert sync_point(task(3, "03-lint-test"), [task(1, "01-lint-a")], policy)


class TestSequential:
    """Sequential policy always drains."""

    @pytest.mark.parametrize("running", [[], [task(1)], [task(1), task(2)]])
    def test_always_sync(self, running):
        assert sync_point(task(3), running, Sequential())


class TestResolvePolicy:
    """Ranges beat name patterns, both beat sequential."""

    def test_ranges_take_priority(self):
        policy = resolve_policy(ranges=[(0, 2)], patterns=["^01-"])
        assert policy == Ranges(ranges=((0, 2),))

    def test_patterns_when_no_ranges(self):
        policy = resolve_policy(ranges=[], patterns=["^01-", "^02-"])
        assert isinstance(policy, NamePattern)
        assert [p.pattern for p in policy.patterns] == ["^01-", "^02-"]

    def test_sequential_default(self):
        assert resolve_policy() == Sequential()
