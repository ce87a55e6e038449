"""
Process supervisor - runs one step and streams its output.

Owns the subprocess of a single task, interleaves its stdout and stderr
lines by arrival time and turns the exit into a summary line and an
ExitOutcome for the scheduler.
"""

import asyncio
import os
import shlex
import signal
from dataclasses import dataclass
from typing import Optional, Union

import structlog

from ..core.environment import Environment
from ..core.errors import ConsumerGone, PipeReadError, SpawnError
from ..core.state import Task
from .events import AddLine, EventSender


logger = structlog.get_logger()

DEFAULT_SHELL = "/bin/sh"
DEFAULT_LINE_LIMIT = 1024 * 1024


@dataclass(frozen=True)
class Success:
    """Exit status 0."""


@dataclass(frozen=True)
class NonZeroExit:
    code: int


@dataclass(frozen=True)
class Signaled:
    signal: str


ExitOutcome = Union[Success, NonZeroExit, Signaled]


def outcome_from_returncode(returncode: int) -> ExitOutcome:
    """Map a subprocess return code (negative means killed by signal)."""
    if returncode == 0:
        return Success()
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = f"signal {-returncode}"
        return Signaled(signal=name)
    return NonZeroExit(code=returncode)


def describe_outcome(task_name: str, outcome: ExitOutcome) -> str:
    """Summary line written after a step exits."""
    if isinstance(outcome, Success):
        return f"{task_name} exited with code 0"
    if isinstance(outcome, NonZeroExit):
        return f"{task_name} exited with code {outcome.code}"
    return f"{task_name} terminated by {outcome.signal}"


def decode_line(raw: bytes) -> str:
    """Decode one pipe line, dropping the trailing newline."""
    text = raw.decode("utf-8", errors="replace")
    if text.endswith("\n"):
        text = text[:-1]
        if text.endswith("\r"):
            text = text[:-1]
    return text


class ProcessSupervisor:
    """
    Supervises the subprocess of one task.

    One instance per task execution. Output lines are forwarded as AddLine
    events in the order they complete; if the consumer disconnects while
    the process runs, the process is killed and ConsumerGone propagates.
    """

    def __init__(
        self,
        task: Task,
        env: Environment,
        events: EventSender,
        shell: str = DEFAULT_SHELL,
        line_limit: int = DEFAULT_LINE_LIMIT,
    ):
        self.task = task
        self.env = env
        self.events = events
        self.shell = shell
        self.line_limit = line_limit
        self._process: Optional[asyncio.subprocess.Process] = None
        self._log = logger.bind(task=task.name, task_n=task.n)

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    async def execute(self) -> ExitOutcome:
        """
        Run the task to completion.

        Raises:
            SpawnError: the shell could not be launched.
            ConsumerGone: the consumer disconnected; the process was killed.
        """
        await self.events.send(AddLine(f"Running {self.task.name}"))
        process = await self._spawn()
        try:
            returncode = await self._multiplex(process)
        except ConsumerGone:
            self._log.warning("consumer_disconnected", pid=process.pid)
            await self._kill(process)
            raise
        except BaseException:
            await self._kill(process)
            raise

        outcome = outcome_from_returncode(returncode)
        self._log.debug("process_exited", pid=process.pid, returncode=returncode)
        try:
            await self.events.send(AddLine(""))
            await self.events.send(AddLine(describe_outcome(self.task.name, outcome)))
        except ConsumerGone:
            self._log.warning("consumer_disconnected", pid=process.pid)
            raise
        return outcome

    async def _spawn(self) -> asyncio.subprocess.Process:
        command = shlex.quote(str(self.task.path))
        try:
            process = await asyncio.create_subprocess_exec(
                self.shell, "-c", command,
                cwd=str(self.env.cwd),
                env=self.env.for_process(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.line_limit,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnError(
                f"Failed to execute {self.task.name}: {e}",
                task_name=self.task.name,
                context={"shell": self.shell, "path": str(self.task.path)},
            )
        self._process = process
        self._log.debug("process_spawned", pid=process.pid)
        return process

    async def _multiplex(self, process: asyncio.subprocess.Process) -> int:
        """
        Race stderr, stdout and process exit until all three are done.

        The exit is recorded when it wins, but the summary waits until both
        pipes reached end of input so trailing output is not lost.
        """
        streams = {"stderr": process.stderr, "stdout": process.stdout}
        pending: dict[asyncio.Future, str] = {}
        for name, stream in streams.items():
            pending[asyncio.ensure_future(self._read_line(stream))] = name
        pending[asyncio.ensure_future(process.wait())] = "exit"

        returncode: Optional[int] = None
        try:
            while pending:
                done, _ = await asyncio.wait(
                    pending.keys(), return_when=asyncio.FIRST_COMPLETED
                )
                # Deliver in a stable order when several sources are ready at once
                for future in sorted(done, key=lambda f: pending[f]):
                    source = pending.pop(future)
                    if source == "exit":
                        returncode = future.result()
                        continue
                    line, more = await self._collect_line(future, source)
                    if line is not None:
                        await self.events.send(AddLine(line))
                    if more:
                        pending[asyncio.ensure_future(self._read_line(streams[source]))] = source
        finally:
            for future in pending:
                future.cancel()

        return returncode if returncode is not None else await process.wait()

    async def _read_line(self, stream: asyncio.StreamReader) -> bytes:
        """
        Read one line, or the unterminated tail at end of input.

        Raises ValueError for a line over the limit after consuming it up
        to and including its newline.
        """
        try:
            return await stream.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            return e.partial
        except asyncio.LimitOverrunError:
            await self._discard_line(stream)
            raise ValueError(f"line exceeds {self.line_limit} bytes")

    async def _discard_line(self, stream: asyncio.StreamReader) -> None:
        while True:
            try:
                await stream.readuntil(b"\n")
                return
            except asyncio.LimitOverrunError as e:
                await stream.readexactly(e.consumed)
            except asyncio.IncompleteReadError:
                return

    async def _collect_line(
        self, future: asyncio.Future, source: str
    ) -> tuple[Optional[str], bool]:
        """
        Result of one readline as ``(line to emit, keep reading)``.

        A line longer than the limit is reported and skipped; any other read
        failure is reported and ends that stream.
        """
        try:
            raw = future.result()
        except ValueError as e:
            # Oversized line, already discarded
            error = PipeReadError(
                f"{source} line too long: {e}", task_name=self.task.name, stream=source
            )
            return self._report(error), True
        except OSError as e:
            error = PipeReadError(
                f"{source} read failed: {e}", task_name=self.task.name, stream=source
            )
            return self._report(error), False
        if not raw:
            return None, False
        return decode_line(raw), True

    def _report(self, error: PipeReadError) -> str:
        self._log.warning("pipe_read_error", error=error.to_dict())
        return f"Error reading {error.context['stream']}: {error.message}"

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        # The group outlives an exited shell while background children hold it
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
        await process.wait()
        self._log.info("process_killed", pid=process.pid, returncode=process.returncode)
