"""Shared fixtures: step scripts on disk and an event-collecting run helper."""

import asyncio
import os
import stat
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from tickbox.core.environment import Environment
from tickbox.core.registry import load_tasks
from tickbox.orchestrator.events import EventBus
from tickbox.orchestrator.scheduler import WorkflowScheduler


@pytest.fixture
def step_dir(tmp_path):
    """Empty directory for step scripts."""
    path = tmp_path / "steps"
    path.mkdir()
    return path


@pytest.fixture
def write_step(step_dir):
    """Write an executable /bin/sh step script and return its path."""

    def _write(name: str, body: str):
        path = step_dir / name
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _write


@pytest.fixture
def environment(tmp_path):
    """Environment rooted at the test's temp dir, without a git lookup."""
    tempdir = tmp_path / "tmp"
    tempdir.mkdir()
    return Environment(
        cwd=tmp_path,
        variables={
            "TICKBOX_TEMPDIR": str(tempdir),
            "TICKBOX_CWD": str(tmp_path),
            "GREETING": "hello",
        },
    )


@pytest.fixture
def run_collect(step_dir, environment):
    """
    Run the steps in ``step_dir`` and collect every event.

    Returns ``(success, events, scheduler)``.
    """

    async def _run(concurrency=1, policy=None, name_filter="", wait=False, **scheduler_kwargs):
        tasks = load_tasks(step_dir)
        bus = EventBus()
        sender = bus.sender()
        scheduler_kwargs.setdefault("shell", "/bin/sh")
        scheduler = WorkflowScheduler(sender, **scheduler_kwargs)

        async def produce():
            with sender:
                return await scheduler.run(
                    tasks,
                    concurrency=concurrency,
                    policy=policy,
                    name_filter=name_filter,
                    env=environment,
                    wait=wait,
                )

        async def collect():
            return [event async for event in bus.receiver()]

        success, events = await asyncio.wait_for(asyncio.gather(produce(), collect()), 30)
        return success, events, scheduler

    return _run
