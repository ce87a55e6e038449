"""Workflow scheduling with a concurrency cap and sync-point barriers."""

import asyncio
import re
import time
from typing import Callable, Optional, Pattern, Sequence, Union

import structlog

from ..core.environment import Environment
from ..core.errors import ConsumerGone, SpawnError
from ..core.state import Complete, Failed, Pending, Running, Skipped, Task
from .events import AddLine, Event, EventSender, Status, Wait
from .supervisor import (
    DEFAULT_LINE_LIMIT,
    DEFAULT_SHELL,
    ProcessSupervisor,
    Success,
)
from .sync import Sequential, SyncPolicy, sync_point


logger = structlog.get_logger()

SupervisorFactory = Callable[[Task, Environment, EventSender], ProcessSupervisor]


class WorkflowScheduler:
    """
    Dispatches tasks in order onto supervised subprocesses.

    Features:
    - Bounded running set (concurrency cap)
    - Sync points: a task joins the running batch only when the policy
      puts it in the same parallel group as every running task
    - Fail-fast, drain-in-flight: the first failure stops dispatch but
      already running siblings are awaited
    - Name filter: non-matching tasks are skipped without using a slot
    """

    def __init__(
        self,
        events: EventSender,
        shell: str = DEFAULT_SHELL,
        line_limit: int = DEFAULT_LINE_LIMIT,
        supervisor_factory: Optional[SupervisorFactory] = None,
    ):
        self.events = events
        self.shell = shell
        self.line_limit = line_limit
        self._supervisor_factory = supervisor_factory or self._default_supervisor

        self.tasks: list[Task] = []
        # Running set: handle -> task.n
        self._running: dict[asyncio.Task, int] = {}
        self._stopped = False
        self._wait_sent = False
        self._consumer_gone = False

    async def run(
        self,
        tasks: Sequence[Task],
        concurrency: int,
        policy: Optional[SyncPolicy] = None,
        name_filter: Union[str, Pattern] = "",
        env: Optional[Environment] = None,
        wait: bool = False,
    ) -> bool:
        """
        Run the workflow.

        Args:
            tasks: Tasks in run order
            concurrency: Maximum number of tasks running at once
            policy: Sync policy (sequential when omitted)
            name_filter: Tasks whose name does not match are skipped
            env: Environment handed to every subprocess
            wait: Ask the consumer to wait for the user at the end

        Returns:
            False if any task failed, True otherwise
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        policy = policy or Sequential()
        if isinstance(name_filter, str):
            name_filter = re.compile(name_filter)
        if env is None:
            raise ValueError("an environment is required")

        self.tasks = list(tasks)
        self._running.clear()
        self._stopped = False
        self._wait_sent = False
        self._consumer_gone = False

        logger.info(
            "workflow_started",
            tasks=len(self.tasks),
            concurrency=concurrency,
            policy=type(policy).__name__,
        )

        # Show the whole workflow up front
        for task in self.tasks:
            await self._emit(Status(task))

        try:
            for task in list(self.tasks):
                if self._stopped:
                    break

                if not name_filter.search(task.name):
                    await self._set_state(task, Skipped())
                    continue

                if len(self._running) >= concurrency:
                    await self._reap(asyncio.FIRST_COMPLETED)
                    if self._stopped:
                        break

                if self._running and sync_point(task, self._running_tasks(), policy):
                    await self._reap(asyncio.ALL_COMPLETED)
                    if self._stopped:
                        break

                await self._launch(task, env)

            if self._running:
                await self._reap(asyncio.ALL_COMPLETED)
        finally:
            await self._abandon_running()

        if self._stopped:
            await self._skip_undispatched()

        if wait:
            await self._send_wait()

        success = not self._consumer_gone and not any(task.failed for task in self.tasks)
        logger.info("workflow_finished", success=success, **self.summary())
        return success

    def summary(self) -> dict[str, int]:
        """Count of tasks per state label."""
        counts: dict[str, int] = {}
        for task in self.tasks:
            counts[task.state.label] = counts.get(task.state.label, 0) + 1
        return counts

    def running_count(self) -> int:
        return len(self._running)

    # ==================== Internal Methods ====================

    def _default_supervisor(
        self, task: Task, env: Environment, events: EventSender
    ) -> ProcessSupervisor:
        return ProcessSupervisor(
            task, env, events, shell=self.shell, line_limit=self.line_limit
        )

    def _running_tasks(self) -> list[Task]:
        return [self.tasks[n] for n in self._running.values()]

    async def _emit(self, event: Event) -> None:
        """Send an event; a vanished consumer stops further dispatch."""
        if self._consumer_gone:
            return
        try:
            await self.events.send(event)
        except ConsumerGone:
            self._consumer_gone = True
            self._stopped = True
            logger.warning("consumer_disconnected", running=len(self._running))

    async def _set_state(self, task: Task, state) -> Task:
        task = self.tasks[task.n].with_state(state)
        self.tasks[task.n] = task
        await self._emit(Status(task))
        return task

    async def _launch(self, task: Task, env: Environment) -> None:
        task = await self._set_state(task, Running(started_at=time.monotonic()))
        handle = asyncio.ensure_future(self._supervise(task, env))
        self._running[handle] = task.n
        logger.info("task_started", task=task.name, n=task.n, running=len(self._running))

    async def _supervise(self, task: Task, env: Environment) -> bool:
        """Run one task; task-local errors never escape this coroutine."""
        events = self.events.clone()
        try:
            supervisor = self._supervisor_factory(task, env, events)
            outcome = await supervisor.execute()
            return isinstance(outcome, Success)
        except SpawnError as e:
            logger.error("task_spawn_failed", task=task.name, error=e.to_dict())
            try:
                await events.send(AddLine(e.message))
            except ConsumerGone:
                pass
            return False
        except ConsumerGone:
            return False
        except Exception:
            logger.exception("task_supervision_error", task=task.name)
            return False
        finally:
            events.close()

    async def _reap(self, mode: str) -> None:
        """Wait for one (FIRST_COMPLETED) or all (ALL_COMPLETED) running tasks."""
        done, _ = await asyncio.wait(list(self._running), return_when=mode)
        for handle in sorted(done, key=lambda h: self._running[h]):
            n = self._running.pop(handle)
            await self._finish(self.tasks[n], handle.result())

    async def _finish(self, task: Task, success: bool) -> None:
        duration = task.state.elapsed()
        if success:
            task = await self._set_state(task, Complete(duration=duration))
        else:
            task = await self._set_state(task, Failed(duration=duration))
        logger.info(
            "task_finished",
            task=task.name,
            n=task.n,
            state=task.state.label,
            duration=round(duration, 3),
        )
        if not success:
            await self._on_failure(task)

    async def _on_failure(self, task: Task) -> None:
        if not self._stopped:
            logger.warning("scheduler_stopped", failed_task=task.name)
        self._stopped = True
        await self._send_wait()

    async def _send_wait(self) -> None:
        if not self._wait_sent:
            self._wait_sent = True
            await self._emit(Wait())

    async def _skip_undispatched(self) -> None:
        for task in list(self.tasks):
            if isinstance(task.state, Pending):
                await self._set_state(task, Skipped())

    async def _abandon_running(self) -> None:
        """Cancel handles still running when run() exits abnormally."""
        if not self._running:
            return
        for handle in self._running:
            handle.cancel()
        await asyncio.gather(*self._running, return_exceptions=True)
        for handle, n in list(self._running.items()):
            task = self.tasks[n]
            self.tasks[n] = task.with_state(Failed(duration=task.state.elapsed()))
        self._running.clear()
